import structlog
from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from .. import schemas
from ..auth import (
    authenticate_user,
    consume_verification_code,
    create_access_token,
    issue_verification_code,
    register_user,
    upsert_google_user,
)
from ..database import get_db
from ..google_identity import GoogleVerifier, get_google_verifier
from ..mailer import Mailer, get_mailer
from ..rate_limiter import auth_limiter

logger = structlog.get_logger(__name__)

router = APIRouter(tags=["auth"], dependencies=[Depends(auth_limiter)])


# ---------- Registration ----------

@router.post(
    "/register",
    response_model=schemas.Token,
    status_code=status.HTTP_201_CREATED,
)
def register(body: schemas.RegisterRequest, db: Session = Depends(get_db)):
    """
    Register a password account and return a bearer token.

    Raises
    ------
    ConflictError
        If the email is already registered (400).
    """
    user = register_user(db, body.email, body.password)
    return {"token": create_access_token(user)}


# ---------- Login (token) ----------

@router.post("/login", response_model=schemas.Token)
def login(body: schemas.LoginRequest, db: Session = Depends(get_db)):
    """
    Exchange email + password for a 24h bearer token.

    Raises
    ------
    InvalidCredentials
        On unknown email or wrong password (400, same message for both).
    """
    user = authenticate_user(db, body.email, body.password)
    logger.info("user_login", user_id=user.id, method="password")
    return {"token": create_access_token(user)}


# ---------- Email code ----------

@router.post("/auth/send-code", response_model=schemas.MessageResponse)
def send_code(
    body: schemas.SendCodeRequest,
    db: Session = Depends(get_db),
    mailer: Mailer = Depends(get_mailer),
):
    """
    Email a 6-digit sign-in code, creating the account if needed.

    The response is identical for new and existing emails.
    """
    code = issue_verification_code(db, body.email)
    mailer.send_verification_code(body.email, code)
    return {"message": "Verification code sent"}


@router.post("/auth/verify-code", response_model=schemas.Token)
def verify_code(body: schemas.VerifyCodeRequest, db: Session = Depends(get_db)):
    user = consume_verification_code(db, body.email, body.code)
    logger.info("user_login", user_id=user.id, method="code")
    return {"token": create_access_token(user)}


# ---------- Google ----------

@router.post("/auth/google", response_model=schemas.Token)
def google_auth(
    body: schemas.GoogleAuthRequest,
    db: Session = Depends(get_db),
    verifier: GoogleVerifier = Depends(get_google_verifier),
):
    """
    Sign in with a Google ID token or access token.

    The Google profile is verified server-side, the account is upserted by
    email, and our own bearer token is returned.
    """
    profile = verifier.resolve(credential=body.credential, access_token=body.access_token)
    user = upsert_google_user(db, profile)
    logger.info("user_login", user_id=user.id, method="google")
    return {"token": create_access_token(user)}
