import hmac
import logging
import secrets

import bcrypt
import crud
from config import ADMIN_COOKIE, Settings, get_settings
from database import get_db
from errors import ClientError, MissingCredentials
from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.orm import Session

logger = logging.getLogger("shortdrop.auth")

TOKEN_BYTES = 48  # 64 url-safe characters
BCRYPT_MAX_BYTES = 72


def hash_password(password: str, salt: str) -> str:
    return bcrypt.hashpw(password.encode(), salt.encode()).decode()


def _check_credentials(username: str, password: str) -> None:
    if not username or not password:
        raise MissingCredentials("Username and password are required")
    if len(password.encode()) > BCRYPT_MAX_BYTES:
        raise ClientError(f"Password must be at most {BCRYPT_MAX_BYTES} bytes")


def login(db: Session, username: str, password: str) -> str | None:
    """Authenticate the admin and open a session.

    With no admin account yet, the first credentials presented become the
    account. Returns the new session token, or None when authentication fails.
    """
    _check_credentials(username, password)

    admin = crud.get_admin(db)
    if admin is None:
        salt = bcrypt.gensalt().decode()
        if crud.create_admin(db, username, hash_password(password, salt), salt):
            logger.info("Admin account bootstrapped for %s", username)
        admin = crud.get_admin(db)

    username_ok = hmac.compare_digest(username.encode(), admin.username.encode())
    password_ok = hmac.compare_digest(
        hash_password(password, admin.salt).encode(), admin.password_hash.encode()
    )
    if not (username_ok and password_ok):
        logger.warning("Failed admin login for %s", username)
        return None

    token = secrets.token_urlsafe(TOKEN_BYTES)
    crud.insert_session(db, token)
    logger.info("Admin %s logged in", username)
    return token


def validate_session(db: Session, token: str | None, max_age: int = 0) -> bool:
    if not token:
        return False
    session = crud.get_session(db, token)
    if session is None:
        return False
    if max_age and crud.now() - session.created_at > max_age:
        crud.delete_session(db, token)
        logger.info("Expired admin session removed")
        return False
    return True


def logout(db: Session, token: str | None) -> None:
    if token:
        crud.delete_session(db, token)
    logger.info("Admin logged out")


def get_admin_token(request: Request) -> str | None:
    return request.cookies.get(ADMIN_COOKIE)


def current_admin(
    request: Request,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
) -> str | None:
    """The caller's session token if it is a live admin session, else None."""
    token = get_admin_token(request)
    if not validate_session(db, token, settings.session_ttl_seconds):
        return None
    return token


def require_admin(request: Request, token: str | None = Depends(current_admin)) -> str:
    if token is None:
        logger.warning("Rejected admin request to %s", request.url.path)
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid session")
    return token
