from datetime import timedelta
from typing import Optional

from jose import JWTError, jwt

from .config.settings import get_settings
from .utils.datetime_utils import utcnow

settings = get_settings()
SECRET_KEY = settings.secret_key
ALGORITHM = settings.algorithm
ACCESS_TOKEN_EXPIRE_MINUTES = settings.access_token_expire_minutes


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    to_encode = data.copy()
    expire = utcnow() + (expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)


def decode_access_token(token: str) -> Optional[str]:
    """Return the subject (user email) of a valid token, or None."""
    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    except JWTError:
        return None
    return payload.get("sub")


def create_oauth_state_token(state: str, code_verifier: Optional[str]) -> str:
    """Signed, short-lived record of a pending Google sign-in."""
    data = {"purpose": "oauth_state", "state": state, "code_verifier": code_verifier}
    return create_access_token(data, timedelta(minutes=settings.oauth_state_expire_minutes))


def decode_oauth_state_token(token: Optional[str]) -> Optional[dict]:
    if not token:
        return None
    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    except JWTError:
        return None
    if payload.get("purpose") != "oauth_state" or not payload.get("state"):
        return None
    return payload
