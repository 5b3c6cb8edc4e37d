import hashlib
import hmac
import logging
import os
from datetime import datetime, timedelta, timezone
from typing import Generator

import jwt
from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from .config import settings
from .database import SessionLocal
from .errors import AuthorizationError
from .models.user import User

logger = logging.getLogger(__name__)

# auto_error is off so a missing header gets the same 401 as a bad token
security = HTTPBearer(auto_error=False)

PBKDF2_ITERATIONS = 200_000


def get_db() -> Generator[Session, None, None]:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def hash_password(password: str) -> str:
    salt = os.urandom(16)
    digest = hashlib.pbkdf2_hmac("sha256", password.encode(), salt, PBKDF2_ITERATIONS)
    return f"pbkdf2_sha256${PBKDF2_ITERATIONS}${salt.hex()}${digest.hex()}"


def verify_password(password: str, password_hash: str) -> bool:
    try:
        scheme, iterations, salt, expected = password_hash.split("$")
    except ValueError:
        return False
    if scheme != "pbkdf2_sha256":
        return False
    digest = hashlib.pbkdf2_hmac(
        "sha256", password.encode(), bytes.fromhex(salt), int(iterations)
    )
    return hmac.compare_digest(digest.hex(), expected)


def create_access_token(user: User, expires: timedelta | None = None) -> str:
    expires = expires or timedelta(minutes=settings.access_token_expire_minutes)
    payload = {
        "sub": str(user.id),
        "role": user.role,
        "exp": datetime.now(timezone.utc) + expires,
    }
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
    db: Session = Depends(get_db),
) -> User:
    """Resolve the bearer token to a stored user.

    Every failure (no header, bad signature, expired token, missing subject,
    deleted user) raises the same :class:`AuthorizationError`.
    """
    if credentials is None:
        raise AuthorizationError()
    try:
        payload = jwt.decode(
            credentials.credentials, settings.jwt_secret, algorithms=[settings.jwt_algorithm]
        )
        user_id = int(payload["sub"])
    except (jwt.PyJWTError, KeyError, TypeError, ValueError):
        logger.info("rejected bearer token", exc_info=True)
        raise AuthorizationError()

    user = db.get(User, user_id)
    if user is None:
        logger.info("token references missing user id=%s", user_id)
        raise AuthorizationError()
    return user
