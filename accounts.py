import logging
from fastapi import HTTPException, UploadFile, status
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

import models
import uploads
from authentication import get_password_hash, verify_password
from config import settings
from schema import PasswordUpdateIn, RegisterIn

logger = logging.getLogger(__name__)


def load_user(db: Session, user_id: int) -> models.User:
    user = db.get(models.User, user_id)
    if not user:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    return user


def ensure_email_free(db: Session, email: str, exclude_user_id: int = None):
    query = db.query(models.User).filter(models.User.email == email.lower())
    if exclude_user_id is not None:
        query = query.filter(models.User.id != exclude_user_id)
    if query.first():
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Email already registered")


def save_new_user(db: Session, user: models.User):
    db.add(user)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        logger.warning("Concurrent registration for %s rejected", user.email)
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Email already registered")
    db.refresh(user)


def create_account(db: Session, payload: RegisterIn, role: str = None, active: bool = False) -> models.User:
    ensure_email_free(db, payload.email)
    user = models.User(
        first_name=payload.first_name,
        last_name=payload.last_name,
        email=payload.email.lower(),
        hashed_password=get_password_hash(payload.password),
        phone=payload.phone,
        address=payload.address,
        role=role or payload.role,
        status=active,
        labo_type=payload.labo_type,
        payment_methods=[],
    )
    save_new_user(db, user)
    logger.info("Registered %s account %s", user.role, user.id)
    return user


def change_password(db: Session, user: models.User, payload: PasswordUpdateIn):
    if not verify_password(payload.current_password, user.hashed_password):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Current password is incorrect")
    user.hashed_password = get_password_hash(payload.new_password)
    db.commit()


def save_profile_image(db: Session, user: models.User, file: UploadFile) -> models.Attachment:
    """One profile image per user; a new upload replaces the stored file."""
    path = uploads.save_upload(
        file, uploads.IMAGE, settings.MAX_IMAGE_SIZE, "profiles", user.id, "profileImage"
    )
    attachment = db.query(models.Attachment).filter(models.Attachment.user_id == user.id).first()
    if attachment:
        old_path = attachment.image
        attachment.image = path
    else:
        old_path = None
        attachment = models.Attachment(user_id=user.id, image=path)
        db.add(attachment)
    db.commit()
    db.refresh(attachment)
    uploads.remove_upload(old_path)
    return attachment


def get_profile_image(db: Session, user_id: int) -> models.Attachment:
    attachment = db.query(models.Attachment).filter(models.Attachment.user_id == user_id).first()
    if not attachment:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Profile image not found")
    return attachment


def store_papier(db: Session, user: models.User, kind: str, identity: str,
                 tax_number: str = None, commercial_register: str = None):
    """Creates or replaces the user's document bundle. Returns (papier, created)."""
    papier = db.query(models.Papier).filter(models.Papier.user_id == user.id).first()
    created = papier is None
    old_paths = []
    if created:
        papier = models.Papier(user_id=user.id)
        db.add(papier)
    else:
        old_paths = [papier.identity, papier.tax_number, papier.commercial_register]
    papier.type = kind
    papier.identity = identity
    papier.tax_number = tax_number
    papier.commercial_register = commercial_register
    db.commit()
    db.refresh(papier)
    for path in old_paths:
        uploads.remove_upload(path)
    return papier, created
