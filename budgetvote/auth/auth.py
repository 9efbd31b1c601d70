import logging
import os
import secrets
from datetime import UTC, datetime, timedelta
from typing import Optional

from fastapi import Depends, HTTPException, Request, status
from jose import JWTError, jwt
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from budgetvote.config.loader import (
    get_access_token_expire_minutes,
    get_auto_provision_users,
)
from budgetvote.database import get_db
from budgetvote.models.user import User, UserRole

# Dedicated logger for authentication events
logger = logging.getLogger("auth_module")
logger.setLevel(os.getenv("LOG_LEVEL", "INFO").upper())


# --- Configuration ---
def generate_dev_key() -> str:
    """Generate a throwaway signing key for development environments ONLY."""
    key = secrets.token_urlsafe(48)
    logger.warning(
        "\n"
        + "*" * 80
        + "\n"
        + "DEVELOPMENT MODE: Using generated secret key.\n"
        + "Tokens will not survive a restart and this is NOT secure for production.\n"
        + "Set BUDGETVOTE_JWT_SECRET_KEY in your environment variables.\n"
        + "*" * 80
    )
    return key


def validate_secret_key(key: str) -> bool:
    if not key:
        return False
    if len(key) < 32:
        logger.error("JWT secret key must be at least 32 characters long.")
        return False
    return True


def _is_production_mode() -> bool:
    env = os.getenv("BUDGETVOTE_ENV", "development").strip().lower()
    return env in {"production", "prod"}


SECRET_KEY = os.getenv("BUDGETVOTE_JWT_SECRET_KEY")
ALGORITHM = "HS256"
JWT_ISSUER = os.getenv("BUDGETVOTE_JWT_ISSUER", "budgetvote")
ACCESS_TOKEN_EXPIRE_MINUTES = get_access_token_expire_minutes()

if not SECRET_KEY:
    if _is_production_mode():
        raise RuntimeError(
            "Missing BUDGETVOTE_JWT_SECRET_KEY while BUDGETVOTE_ENV is set to "
            "production. Configure a strong static secret before startup."
        )
    SECRET_KEY = generate_dev_key()
elif not validate_secret_key(SECRET_KEY):
    raise RuntimeError(
        "Invalid JWT secret key configuration. The key must be at least 32 "
        "characters long. Update BUDGETVOTE_JWT_SECRET_KEY."
    )
else:
    logger.info("JWT secret key validated and loaded from environment.")


# --- Token Utilities ---


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    """
    Sign a token for ``data``. The 'sub' claim carries the user's login.

    Issuing tokens to end users belongs to the identity provider; this is
    used by operators and tests.
    """
    to_encode = data.copy()
    issued_at = datetime.now(UTC)
    expire = issued_at + (
        expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES)
    )
    to_encode.update({"exp": expire, "iat": issued_at, "iss": JWT_ISSUER})
    return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)


async def get_token_from_request(request: Request) -> Optional[str]:
    """
    Read the JWT from the 'access_token' cookie, or from an
    'Authorization: Bearer' header when no cookie is present.
    """
    raw = request.cookies.get("access_token") or request.headers.get(
        "Authorization"
    )
    if not raw:
        logger.debug("No access token found in request.")
        return None
    if raw.startswith("Bearer "):
        return raw.split(" ", 1)[1]
    return raw


# --- User Retrieval Dependencies ---


async def get_current_user(
    token: Optional[str] = Depends(get_token_from_request),
) -> str:
    """Return the login ('sub') of a valid token or raise 401."""
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials. Invalid or expired token.",
        headers={"WWW-Authenticate": "Bearer"},
    )
    if token is None:
        logger.warning("Authentication required: no token supplied.")
        raise credentials_exception

    try:
        payload = jwt.decode(
            token,
            SECRET_KEY,
            algorithms=[ALGORITHM],
            issuer=JWT_ISSUER,
            options={"verify_aud": False},
        )
    except JWTError as exc:
        logger.warning("JWTError during token decoding: %s", exc)
        raise credentials_exception

    login: Optional[str] = payload.get("sub")
    if not login:
        logger.error("Token payload is missing the 'sub' claim.")
        raise credentials_exception
    return login


def _provision_user(db: Session, login: str) -> User:
    user = User(login=login, display_name=login, role=UserRole.PARTICIPANT.value)
    db.add(user)
    try:
        db.commit()
    except IntegrityError:
        # Another request provisioned the same login first.
        db.rollback()
        existing = db.query(User).filter(User.login == login).first()
        if existing is None:
            raise
        return existing
    db.refresh(user)
    logger.info("Provisioned participant account for login '%s'", login)
    return user


async def get_current_active_user(
    login: str = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> User:
    """
    Resolve the token subject to a User row.

    Identities are owned by the external provider, so an unknown login becomes
    a participant unless auto provisioning is switched off.
    """
    user = db.query(User).filter(User.login == login).first()
    if user is None:
        if not get_auto_provision_users():
            logger.warning("Token subject '%s' has no account", login)
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="User associated with token not found.",
            )
        user = _provision_user(db, login)
    if not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN, detail="User account is disabled."
        )
    return user


async def require_admin(user: User = Depends(get_current_active_user)) -> User:
    if not user.is_privileged:
        logger.warning(
            "Access denied: user '%s' with role '%s' is not an admin",
            user.login,
            user.role,
        )
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Administrator role required.",
        )
    return user


__all__ = [
    "create_access_token",
    "get_token_from_request",
    "get_current_user",
    "get_current_active_user",
    "require_admin",
    "ACCESS_TOKEN_EXPIRE_MINUTES",
    "ALGORITHM",
    "JWT_ISSUER",
]
