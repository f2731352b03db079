import hmac
import secrets
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterable, Optional

import structlog
from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from passlib.context import CryptContext
from sqlalchemy.orm import Session

from . import config, models
from .database import commit_unique
from .errors import (
    AccessDenied,
    AuthorizationError,
    ConflictError,
    InternalError,
    InvalidCredentials,
    InvalidOrExpiredCode,
    InvalidToken,
)
from .models import UserRole, utcnow

logger = structlog.get_logger(__name__)

# --- Password hashing ---
pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto", bcrypt__rounds=10)

security = HTTPBearer(auto_error=False)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """
    Verify a plaintext password against a bcrypt hash.

    Parameters
    ----------
    plain_password : str
        Raw password provided by the user.
    hashed_password : str
        Previously stored bcrypt hash.

    Returns
    -------
    bool
        True if the password matches, False otherwise.
    """
    return pwd_context.verify(plain_password, hashed_password)


def get_password_hash(password: str) -> str:
    """
    Hash a plaintext password using bcrypt (cost factor 10).
    """
    return pwd_context.hash(password)


def effective_role(
    stored_role: Optional[UserRole], email: str, admin_emails: Iterable[str]
) -> UserRole:
    """
    Stored role, upgraded to admin when the email is on the allow-list.

    Parameters
    ----------
    stored_role : Optional[UserRole]
        Role persisted on the user record.
    email : str
        Account email.
    admin_emails : Iterable[str]
        Lower-cased allow-list from ADMIN_EMAILS.

    Returns
    -------
    UserRole
        ADMIN or USER.
    """
    if stored_role == UserRole.ADMIN:
        return UserRole.ADMIN
    if email and email.lower() in set(admin_emails):
        return UserRole.ADMIN
    return UserRole.USER


# ---------- DB helpers ----------

def get_user_by_email(db: Session, email: str) -> Optional[models.User]:
    return db.query(models.User).filter(models.User.email == email).first()


def register_user(db: Session, email: str, password: str) -> models.User:
    """
    Create a password account.

    Raises
    ------
    ConflictError
        If an account with this email already exists.
    """
    if get_user_by_email(db, email):
        logger.info("register_duplicate", email=email)
        raise ConflictError("User already exists")

    user = models.User(email=email, password=get_password_hash(password))
    db.add(user)
    commit_unique(db, "User already exists")
    db.refresh(user)
    logger.info("user_registered", user_id=user.id, email=email)
    return user


def authenticate_user(db: Session, email: str, password: str) -> models.User:
    """
    Check email/password credentials.

    Unknown email and wrong password produce the same message so the
    endpoint cannot be used to enumerate accounts.

    Raises
    ------
    InvalidCredentials
        If the credentials do not match a password account.
    """
    user = get_user_by_email(db, email)
    if not user:
        raise InvalidCredentials()
    if not user.password:
        raise InvalidCredentials(
            "User does not have a password. Please use email verification."
        )
    if not verify_password(password, user.password):
        raise InvalidCredentials()
    return user


def generate_verification_code() -> str:
    return str(secrets.randbelow(900000) + 100000)


def issue_verification_code(db: Session, email: str) -> str:
    """
    Store a fresh 6-digit code on the user, creating the user if absent.

    Returns
    -------
    str
        The generated code, for delivery by the caller.
    """
    code = generate_verification_code()
    expires = utcnow() + timedelta(minutes=config.VERIFICATION_CODE_TTL_MINUTES)

    user = get_user_by_email(db, email)
    if user is None:
        user = models.User(email=email)
        db.add(user)
    user.verification_code = code
    user.verification_code_expires = expires
    commit_unique(db, "User already exists")
    return code


def consume_verification_code(db: Session, email: str, code: str) -> models.User:
    """
    Validate and clear a verification code.

    Raises
    ------
    InvalidOrExpiredCode
        If no matching, unexpired code exists for the email.
    """
    user = get_user_by_email(db, email)
    if user is None or not user.verification_code:
        raise InvalidOrExpiredCode()
    if not hmac.compare_digest(user.verification_code, code):
        raise InvalidOrExpiredCode()
    if user.verification_code_expires is None or user.verification_code_expires < utcnow():
        raise InvalidOrExpiredCode()

    user.verification_code = None
    user.verification_code_expires = None
    db.commit()
    db.refresh(user)
    return user


def upsert_google_user(db: Session, profile: Dict[str, Any]) -> models.User:
    """
    Find or create the account for a verified Google profile.

    The Google id, display name and picture are only filled in the first
    time the account is linked.
    """
    email = profile["email"].lower()
    user = get_user_by_email(db, email)
    if user is None:
        user = models.User(
            email=email,
            google_id=profile.get("sub"),
            name=profile.get("name"),
            picture=profile.get("picture"),
        )
        db.add(user)
        logger.info("google_user_created", email=email)
    elif not user.google_id:
        user.google_id = profile.get("sub")
        user.name = profile.get("name")
        user.picture = profile.get("picture")
    commit_unique(db, "User already exists")
    db.refresh(user)
    return user


# ---------- JWT helpers ----------

def create_access_token(user: models.User, expires_delta: Optional[timedelta] = None) -> str:
    """
    Create a signed JWT for ``user``.

    Payload is ``{userId, name: <email>, role, exp}``; the role is the
    effective role at issue time.
    """
    if not config.ACCESS_TOKEN_SECRET:
        raise InternalError("ACCESS_TOKEN_SECRET is not configured")

    role = effective_role(user.role, user.email, config.ADMIN_EMAILS)
    expire = datetime.now(timezone.utc) + (
        expires_delta or timedelta(hours=config.ACCESS_TOKEN_EXPIRE_HOURS)
    )
    payload = {
        "userId": user.id,
        "name": user.email,
        "role": role.value,
        "exp": expire,
    }
    return jwt.encode(payload, config.ACCESS_TOKEN_SECRET, algorithm=config.ALGORITHM)


def decode_access_token(token: str) -> Dict[str, Any]:
    """
    Verify signature and expiry and return the claims.

    Raises
    ------
    InvalidToken
        If the token is malformed, badly signed, expired or missing claims.
    """
    if not config.ACCESS_TOKEN_SECRET:
        raise InternalError("ACCESS_TOKEN_SECRET is not configured")
    try:
        payload = jwt.decode(
            token, config.ACCESS_TOKEN_SECRET, algorithms=[config.ALGORITHM]
        )
    except JWTError as exc:
        raise InvalidToken(str(exc) or "Invalid token")

    if payload.get("userId") is None or not payload.get("name"):
        raise InvalidToken()
    payload.setdefault("role", UserRole.USER.value)
    return payload


async def get_current_claims(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> Dict[str, Any]:
    """
    Dependency: decoded claims for a required bearer token.

    Raises
    ------
    AccessDenied
        401 when no bearer token was sent.
    InvalidToken
        400 when the token fails verification.
    """
    if credentials is None or not credentials.credentials:
        raise AccessDenied()
    return decode_access_token(credentials.credentials)


async def get_optional_claims(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> Optional[Dict[str, Any]]:
    """
    Dependency: claims when a valid token is present, else None.

    An invalid token is treated as anonymous rather than rejected.
    """
    if credentials is None or not credentials.credentials:
        return None
    try:
        return decode_access_token(credentials.credentials)
    except InvalidToken as exc:
        logger.info("optional_token_rejected", reason=exc.detail)
        return None


async def require_admin(
    claims: Dict[str, Any] = Depends(get_current_claims),
) -> Dict[str, Any]:
    """
    Dependency: claims of an admin caller, 403 otherwise.
    """
    if claims.get("role") != UserRole.ADMIN.value:
        raise AuthorizationError()
    return claims
