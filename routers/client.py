import logging
import secrets
from datetime import timedelta
from typing import Optional

from fastapi import APIRouter, Depends, File, HTTPException, Request, Response, UploadFile, status
from sqlalchemy.orm import Session

import accounts
import authentication
import database
import email_service
import models
import notification_service
import uploads
from config import settings
from realtime import ADMIN_ROOM, EVENT_NEW_PROBLEM, EventPublisher, get_publisher
from schema import (
    ForgotPasswordIn, LoginIn, PapierOut, PasswordUpdateIn, ProfileUpdateIn, RefreshIn, RegisterIn,
    ResetPasswordIn, SupportIn, UserOut, VerifyResetCodeIn, dump,
)
from subscriptions import check_login_allowed

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/client", tags=["Client"])


def _user_agent(request: Request) -> str:
    return request.headers.get("user-agent", "")


# --- Registration & login ---
@router.post("/register", status_code=status.HTTP_201_CREATED)
def register(payload: RegisterIn, db: Session = Depends(database.obtain_db_session)):
    user = accounts.create_account(db, payload)
    return {
        "success": True,
        "message": "User registered successfully",
        "data": dump(UserOut, user),
        "token": authentication.token_for_user(user),
    }


@router.post("/login")
def login(payload: LoginIn, request: Request, db: Session = Depends(database.obtain_db_session)):
    user = db.query(models.User).filter(models.User.email == payload.email).first()
    if not user or not authentication.verify_password(payload.password, user.hashed_password):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid email or password")

    check_login_allowed(db, user)

    authentication.purge_expired_refresh_tokens(db)
    refresh_token = authentication.issue_refresh_token(db, user, _user_agent(request))
    db.commit()
    db.refresh(user)
    logger.info("User %s logged in", user.id)
    return {
        "success": True,
        "message": "Login successful",
        "data": dump(UserOut, user),
        "token": authentication.token_for_user(user),
        "refreshToken": refresh_token,
    }


@router.post("/refresh-token")
def refresh_token(payload: RefreshIn, request: Request, db: Session = Depends(database.obtain_db_session)):
    user, new_refresh_token = authentication.rotate_refresh_token(db, payload.refresh_token, _user_agent(request))
    return {
        "success": True,
        "message": "Token refreshed successfully",
        "token": authentication.token_for_user(user),
        "refreshToken": new_refresh_token,
    }


# --- Password reset ---
def _purge_expired_codes(db: Session):
    db.query(models.PasswordReset).filter(models.PasswordReset.expires_at <= models.utcnow()).delete(
        synchronize_session=False
    )


def _valid_reset_code(db: Session, email: str, code: str) -> models.PasswordReset:
    _purge_expired_codes(db)
    reset = (
        db.query(models.PasswordReset)
        .filter(
            models.PasswordReset.email == email,
            models.PasswordReset.code == code,
            models.PasswordReset.used.is_(False),
            models.PasswordReset.expires_at > models.utcnow(),
        )
        .first()
    )
    if not reset:
        db.commit()
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Code invalide ou expiré")
    return reset


@router.post("/forgot-password")
def forgot_password(payload: ForgotPasswordIn, db: Session = Depends(database.obtain_db_session)):
    user = db.query(models.User).filter(models.User.email == payload.email).first()
    if user:
        _purge_expired_codes(db)
        db.query(models.PasswordReset).filter(
            models.PasswordReset.email == payload.email, models.PasswordReset.used.is_(False)
        ).update({models.PasswordReset.used: True}, synchronize_session=False)
        code = f"{secrets.randbelow(1_000_000):06d}"
        db.add(models.PasswordReset(
            email=payload.email,
            code=code,
            expires_at=models.utcnow() + timedelta(minutes=settings.RESET_CODE_EXPIRE_MIN),
        ))
        db.commit()
        email_service.send_reset_code(payload.email, code)
    # same answer whether or not the account exists
    return {
        "success": True,
        "message": "Si cet email est enregistré, un code de réinitialisation a été envoyé",
    }


@router.post("/verify-reset-code")
def verify_reset_code(payload: VerifyResetCodeIn, db: Session = Depends(database.obtain_db_session)):
    _valid_reset_code(db, payload.email, payload.code)
    db.commit()
    return {"success": True, "message": "Code vérifié avec succès"}


@router.post("/reset-password")
def reset_password(payload: ResetPasswordIn, db: Session = Depends(database.obtain_db_session)):
    reset = _valid_reset_code(db, payload.email, payload.code)
    user = db.query(models.User).filter(models.User.email == payload.email).first()
    if not user:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")

    reset.used = True
    user.hashed_password = authentication.get_password_hash(payload.new_password)
    authentication.revoke_refresh_tokens(db, user.id)
    db.commit()
    logger.info("Password reset for user %s", user.id)
    return {"success": True, "message": "Mot de passe réinitialisé avec succès"}


# --- Support ---
@router.post("/support", status_code=status.HTTP_201_CREATED)
def contact_support(
    payload: SupportIn,
    db: Session = Depends(database.obtain_db_session),
    publisher: EventPublisher = Depends(get_publisher),
):
    problem = models.Problem(email=payload.email, phone=payload.phone, message=payload.message)
    db.add(problem)
    db.commit()
    db.refresh(problem)

    email_service.send_support_message(payload.email, payload.phone, payload.message)
    notification_service.push(publisher, ADMIN_ROOM, EVENT_NEW_PROBLEM, {
        "problemId": problem.id,
        "email": problem.email,
        "phone": problem.phone,
        "message": problem.message,
        "createdAt": problem.created_at,
    })
    return {"success": True, "message": "Votre message a été envoyé avec succès", "data": {"id": problem.id}}


# --- Authenticated account routes ---
@router.get("/profile")
def get_profile(
    identity: authentication.TokenIdentity = Depends(authentication.verify_user_session),
    db: Session = Depends(database.obtain_db_session),
):
    return {"success": True, "data": dump(UserOut, accounts.load_user(db, identity.id))}


@router.put("/profile")
def update_profile(
    payload: ProfileUpdateIn,
    identity: authentication.TokenIdentity = Depends(authentication.verify_user_session),
    db: Session = Depends(database.obtain_db_session),
):
    user = accounts.load_user(db, identity.id)
    for key, value in payload.model_dump(exclude_none=True).items():
        setattr(user, key, value)
    db.commit()
    db.refresh(user)
    return {"success": True, "message": "Profile updated successfully", "data": dump(UserOut, user)}


@router.put("/password")
def update_password(
    payload: PasswordUpdateIn,
    identity: authentication.TokenIdentity = Depends(authentication.verify_user_session),
    db: Session = Depends(database.obtain_db_session),
):
    accounts.change_password(db, accounts.load_user(db, identity.id), payload)
    return {"success": True, "message": "Password updated successfully"}


@router.get("/devices")
def get_devices(
    identity: authentication.TokenIdentity = Depends(authentication.verify_user_session),
    db: Session = Depends(database.obtain_db_session),
):
    sessions = authentication.active_sessions(db, identity.id)
    return {
        "success": True,
        "data": {
            "devices": [
                {
                    "id": s.id,
                    "userAgent": s.user_agent,
                    "createdAt": s.created_at,
                    "expiresAt": s.expires_at,
                }
                for s in sessions
            ],
        },
    }


@router.get("/role")
def get_role(identity: authentication.TokenIdentity = Depends(authentication.verify_user_session)):
    return {"success": True, "data": {"role": identity.role, "laboType": identity.labo_type}}


@router.post("/documents")
def upload_identity(
    response: Response,
    identity: UploadFile = File(...),
    Tax_number: Optional[UploadFile] = File(None),
    commercial_register: Optional[UploadFile] = File(None),
    token: authentication.TokenIdentity = Depends(authentication.client_only),
    db: Session = Depends(database.obtain_db_session),
):
    extra = [name for name, f in (("Tax_number", Tax_number), ("commercial_register", commercial_register)) if f]
    if extra:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Clients can only upload identity document. Unauthorized fields: {', '.join(extra)}",
        )

    user = accounts.load_user(db, token.id)
    path = uploads.save_upload(identity, uploads.PDF, settings.MAX_DOCUMENT_SIZE, "documents", user.id, "identity")
    papier, created = accounts.store_papier(db, user, models.ROLE_CLIENT, identity=path)
    response.status_code = status.HTTP_201_CREATED if created else status.HTTP_200_OK
    return {
        "success": True,
        "message": "Document uploaded successfully" if created else "Document updated successfully",
        "data": dump(PapierOut, papier),
    }
