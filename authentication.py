import secrets
from datetime import datetime, timedelta, timezone
from typing import Optional
from jose import JWTError, jwt
from passlib.context import CryptContext
from pydantic import BaseModel, ValidationError
from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.orm import Session
from config import settings
import models
import subscriptions

crypto_ctx = CryptContext(schemes=["bcrypt"], deprecated="auto")
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="client/login")
optional_oauth2_scheme = OAuth2PasswordBearer(tokenUrl="client/login", auto_error=False)


class TokenIdentity(BaseModel):
    id: int
    email: str
    role: str
    labo_type: Optional[str] = None


def get_password_hash(password):
    return crypto_ctx.hash(password)

def verify_password(plain_password, hashed_password):
    return crypto_ctx.verify(plain_password, hashed_password)

def generate_access_token(data: dict, expires_delta: Optional[timedelta] = None):
    to_encode = data.copy()
    if expires_delta:
        expire = datetime.now(timezone.utc) + expires_delta
    else:
        expire = datetime.now(timezone.utc) + timedelta(minutes=settings.TOKEN_EXPIRE_MIN)
    to_encode.update({"exp": expire})
    encoded_jwt = jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGO)
    return encoded_jwt

def token_for_user(user: models.User) -> str:
    claims = {"sub": str(user.id), "id": user.id, "email": user.email, "role": user.role}
    if user.role == models.ROLE_CLIENT and user.labo_type:
        claims["laboType"] = user.labo_type
    return generate_access_token(data=claims)

def decode_access_token(token: str) -> TokenIdentity:
    """Raises JWTError or ValidationError when the token is unusable."""
    payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGO])
    return TokenIdentity(
        id=payload.get("id"),
        email=payload.get("email"),
        role=payload.get("role"),
        labo_type=payload.get("laboType"),
    )

async def verify_user_session(token: str = Depends(oauth2_scheme)) -> TokenIdentity:
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Session invalid or expired",
        headers={"WWW-Authenticate": "Bearer"},
    )
    try:
        return decode_access_token(token)
    except (JWTError, ValidationError):
        raise credentials_exception

async def optional_identity(token: Optional[str] = Depends(optional_oauth2_scheme)) -> Optional[TokenIdentity]:
    if not token:
        return None
    try:
        return decode_access_token(token)
    except (JWTError, ValidationError):
        return None

def require_role(*roles: str):
    async def role_gate(identity: TokenIdentity = Depends(verify_user_session)) -> TokenIdentity:
        if identity.role not in roles:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Access denied. Insufficient permissions",
            )
        return identity
    return role_gate

client_only = require_role(models.ROLE_CLIENT)
supplier_only = require_role(models.ROLE_SUPPLIER)
admin_only = require_role(models.ROLE_ADMIN)


# refresh tokens
def purge_expired_refresh_tokens(db: Session):
    db.query(models.RefreshToken).filter(models.RefreshToken.expires_at <= models.utcnow()).delete(
        synchronize_session=False
    )

def issue_refresh_token(db: Session, user: models.User, user_agent: str = "") -> str:
    token = secrets.token_urlsafe(48)
    db.add(models.RefreshToken(
        user_id=user.id,
        token=token,
        user_agent=(user_agent or "")[:255],
        expires_at=models.utcnow() + timedelta(days=settings.REFRESH_TOKEN_EXPIRE_DAYS),
    ))
    return token

def rotate_refresh_token(db: Session, token: str, user_agent: str = ""):
    purge_expired_refresh_tokens(db)
    stored = (
        db.query(models.RefreshToken)
        .filter(models.RefreshToken.token == token, models.RefreshToken.expires_at > models.utcnow())
        .first()
    )
    user = db.get(models.User, stored.user_id) if stored else None
    if not user:
        db.commit()
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid or expired refresh token")
    try:
        subscriptions.check_login_allowed(db, user)
    except HTTPException:
        revoke_refresh_tokens(db, user.id)
        db.commit()
        raise
    db.delete(stored)
    new_token = issue_refresh_token(db, user, user_agent or stored.user_agent)
    db.commit()
    return user, new_token

def revoke_refresh_tokens(db: Session, user_id: int):
    db.query(models.RefreshToken).filter(models.RefreshToken.user_id == user_id).delete(
        synchronize_session=False
    )

def active_sessions(db: Session, user_id: int):
    purge_expired_refresh_tokens(db)
    db.commit()
    return (
        db.query(models.RefreshToken)
        .filter(models.RefreshToken.user_id == user_id, models.RefreshToken.expires_at > models.utcnow())
        .order_by(models.RefreshToken.created_at.desc())
        .all()
    )
