import logging
import os
import secrets
from datetime import datetime
from typing import Optional, Tuple

from fastapi import HTTPException, UploadFile, status

from config import settings

logger = logging.getLogger(__name__)

IMAGE = "image"
VIDEO = "video"
PDF = "pdf"
EXCEL = "excel"

ALLOWED_EXTENSIONS = {
    IMAGE: {".jpg", ".jpeg", ".png", ".gif", ".bmp", ".webp", ".svg"},
    VIDEO: {".mp4", ".mov", ".avi", ".wmv", ".flv", ".webm"},
    PDF: {".pdf"},
    EXCEL: {".xlsx", ".xlsm"},
}

ALLOWED_MIME_PREFIXES = {
    IMAGE: ("image/",),
    VIDEO: ("video/",),
    PDF: ("application/pdf",),
    EXCEL: (
        "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
        "application/vnd.ms-excel.sheet.macroenabled.12",
    ),
}

DANGEROUS_EXTENSIONS = {
    ".exe", ".bat", ".cmd", ".com", ".pif", ".scr", ".vbs", ".js", ".jar", ".sh",
    ".php", ".asp", ".aspx", ".jsp", ".py", ".rb", ".pl", ".cgi",
}

# browsers and curl fall back to these when they cannot tell
GENERIC_MIME_TYPES = {"", "application/octet-stream"}


def _reject(message: str):
    raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=message)


def read_upload(file: UploadFile, kind: str, max_size: int, field: str) -> Tuple[bytes, str]:
    """Check name, extension, MIME type and size of an upload and return its bytes and extension."""
    filename = os.path.basename(file.filename or "")
    if not filename or filename.startswith("."):
        _reject(f"Invalid file name for {field}")

    ext = os.path.splitext(filename)[1].lower()
    if ext in DANGEROUS_EXTENSIONS:
        _reject(f"Dangerous file type not allowed for {field}")
    allowed = ALLOWED_EXTENSIONS[kind]
    if ext not in allowed:
        _reject(f"Invalid file type for {field}. Allowed: {', '.join(sorted(allowed))}")

    content_type = (file.content_type or "").lower()
    if content_type not in GENERIC_MIME_TYPES and not content_type.startswith(ALLOWED_MIME_PREFIXES[kind]):
        _reject(f"Invalid content type for {field}: {content_type}")

    content = file.file.read(max_size + 1)
    if len(content) > max_size:
        _reject(f"File too large for {field}. Maximum size is {max_size // (1024 * 1024)}MB")
    if not content:
        _reject(f"Empty file for {field}")
    return content, ext


def generated_name(user_id: int, field: str, ext: str) -> str:
    timestamp = int(datetime.now().timestamp() * 1000)
    return f"{user_id}-{field}-{timestamp}-{secrets.token_hex(6)}{ext}"


def store_bytes(content: bytes, area: str, filename: str) -> str:
    base = os.path.realpath(settings.UPLOAD_DIR)
    target_dir = os.path.realpath(os.path.join(base, area))
    target = os.path.realpath(os.path.join(target_dir, filename))
    if os.path.commonpath([base, target]) != base:
        _reject("Invalid upload path")

    os.makedirs(target_dir, exist_ok=True)
    with open(target, "wb") as buffer:
        buffer.write(content)
    logger.info("Stored upload %s", target)
    return f"/uploads/{area}/{filename}"


def save_upload(file: UploadFile, kind: str, max_size: int, area: str, user_id: int, field: str) -> str:
    content, ext = read_upload(file, kind, max_size, field)
    return store_bytes(content, area, generated_name(user_id, field, ext))


def remove_upload(public_path: Optional[str]):
    """Delete a previously stored file; a missing file is not an error."""
    if not public_path or not public_path.startswith("/uploads/"):
        return
    base = os.path.realpath(settings.UPLOAD_DIR)
    target = os.path.realpath(os.path.join(base, public_path[len("/uploads/"):]))
    if os.path.commonpath([base, target]) != base:
        return
    try:
        os.remove(target)
    except FileNotFoundError:
        pass
    except OSError as e:
        logger.warning("Could not delete upload %s: %s", target, e)
