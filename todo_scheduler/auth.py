from datetime import datetime, timedelta, timezone
from typing import Optional
from fastapi import Depends, HTTPException, status, Request
from fastapi.security import OAuth2PasswordBearer
from passlib.context import CryptContext
from jose import JWTError, jwt
import secrets
import logging

from .config import Settings

logger = logging.getLogger(__name__)

ALGORITHM = "HS256"
TOKEN_COOKIE = "token"

# Tokens carry a salted hash of the sign-in password; changing the password
# makes every previously issued token fail verification.
pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/signin", auto_error=False)


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def check_password(settings: Settings, password: str) -> bool:
    if not settings.auth_enabled:
        return False
    return secrets.compare_digest(password.encode("utf-8"), settings.password.encode("utf-8"))


def create_access_token(settings: Settings, expires_delta: Optional[timedelta] = None) -> tuple[str, datetime]:
    """Sign a token for the configured password; return it with its expiry."""
    now = datetime.now(timezone.utc)
    expire = now + (expires_delta if expires_delta is not None else timedelta(hours=settings.token_expire_hours))
    to_encode = {
        "pwd_hash": pwd_context.hash(settings.password),
        "iat": int(now.timestamp()),
        # RFC 7519 NumericDate
        "exp": int(expire.timestamp()),
    }
    return jwt.encode(to_encode, settings.secret_key, algorithm=ALGORITHM), expire


async def require_auth(
    request: Request,
    bearer: Optional[str] = Depends(oauth2_scheme),
    settings: Settings = Depends(get_settings),
) -> None:
    """Dependency guarding the task routes.

    The token cookie takes precedence over an Authorization header. Nothing
    is checked when no password is configured.
    """
    if not settings.auth_enabled:
        return
    token = request.cookies.get(TOKEN_COOKIE) or bearer
    if not token:
        logger.warning('no authentication token for %s %s', request.method, request.url.path)
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Authentification required")
    try:
        payload = jwt.decode(token, settings.secret_key, algorithms=[ALGORITHM])
    except JWTError as e:
        logger.warning('token rejected: %s', str(e))
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid token")
    pwd_hash = payload.get("pwd_hash")
    try:
        valid = bool(pwd_hash) and pwd_context.verify(settings.password, pwd_hash)
    except ValueError:
        # not a hash passlib recognises
        valid = False
    if not valid:
        logger.warning('token rejected: password changed since issue')
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="token expired")
