import logging
import secrets
from typing import Optional
from urllib.parse import quote

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import JSONResponse, RedirectResponse
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.orm import Session

from .. import schemas
from ..config.settings import get_settings
from ..models.db import crud
from ..models.db.database import get_db
from ..security import (
    create_access_token,
    create_oauth_state_token,
    decode_access_token,
    decode_oauth_state_token,
)
from ..services import google_oauth
from ..services.gmail_service import GmailClient
from ..services.gmail_watch import setup_gmail_watch
from ..utils.api_helpers import handle_service_error

logger = logging.getLogger(__name__)

router = APIRouter()
settings = get_settings()

# Bearer header for API clients; the board page relies on the cookie instead.
bearer_scheme = HTTPBearer(scheme_name="Bearer", auto_error=False)


@router.get("/signin")
def signin():
    """Send the browser to Google's consent screen."""
    try:
        pending = google_oauth.get_authorization_url()
    except ValueError as e:
        raise handle_service_error(RuntimeError(str(e)), "Google OAuth")

    response = RedirectResponse(url=pending.url, status_code=status.HTTP_307_TEMPORARY_REDIRECT)
    response.set_cookie(
        key=settings.oauth_state_cookie_name,
        value=create_oauth_state_token(pending.state, pending.code_verifier),
        httponly=True,
        samesite="lax",
        secure=settings.is_production(),
        max_age=settings.oauth_state_expire_minutes * 60,
    )
    return response


@router.get("/callback")
def oauth_callback(
    request: Request,
    code: Optional[str] = None,
    state: Optional[str] = None,
    error: Optional[str] = None,
    db: Session = Depends(get_db),
):
    """
    OAuth redirect target. Stores the mailbox's tokens, starts the Gmail watch
    and signs the user in to the board.

    Only completes a sign-in this browser started: ``state`` must match the
    signed cookie set by ``/auth/signin``, which also carries the PKCE verifier.
    """
    if error:
        logger.warning("Google sign-in failed: %s", error)
        return RedirectResponse(url=f"/?auth_error={quote(error)}", status_code=status.HTTP_303_SEE_OTHER)

    if not code:
        return RedirectResponse(url="/", status_code=status.HTTP_303_SEE_OTHER)

    pending = decode_oauth_state_token(request.cookies.get(settings.oauth_state_cookie_name))
    state_matches = bool(pending and state) and secrets.compare_digest(
        state.encode("utf-8"), pending["state"].encode("utf-8")
    )
    if not state_matches:
        logger.warning("Rejected OAuth callback with missing or mismatched state")
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid OAuth state")

    try:
        credentials = google_oauth.exchange_code(code, pending.get("code_verifier"), state)
        client = GmailClient(credentials)
        email = client.get_profile()["emailAddress"].lower()
    except Exception as e:
        logger.error("OAuth code exchange failed: %s", e)
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="OAuth failed")

    user = crud.get_or_create_user(db, email)
    email_session = crud.upsert_email_session(
        db,
        user_id=user.id,
        email=email,
        access_token=credentials.token,
        refresh_token=credentials.refresh_token,
    )

    watch = setup_gmail_watch(db, email_session, client)
    if not watch.success:
        logger.warning("Signed in %s but Gmail watch setup failed: %s", email, watch.error)

    access_token = create_access_token(data={"sub": email})
    response = RedirectResponse(url="/", status_code=status.HTTP_303_SEE_OTHER)
    response.set_cookie(
        key=settings.auth_cookie_name,
        value=access_token,
        httponly=True,
        samesite="lax",
        secure=settings.is_production(),
        max_age=settings.access_token_expire_minutes * 60,
    )
    response.delete_cookie(settings.oauth_state_cookie_name)
    logger.info("User %s signed in", email)
    return response


@router.post("/signout")
def signout():
    response = JSONResponse({"message": "Signed out"})
    response.delete_cookie(settings.auth_cookie_name)
    return response


def get_current_user(
    request: Request,
    db: Session = Depends(get_db),
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
):
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    token = credentials.credentials if credentials else request.cookies.get(settings.auth_cookie_name)
    if not token:
        raise credentials_exception

    email = decode_access_token(token)
    if email is None:
        raise credentials_exception
    token_data = schemas.TokenData(email=email)

    user = crud.get_user_by_email(db, email=token_data.email)
    if user is None:
        raise credentials_exception
    return user


def get_current_active_user(current_user: schemas.User = Depends(get_current_user)):
    if not current_user.is_active:
        raise HTTPException(status_code=400, detail="Inactive user")
    return current_user


@router.get("/me", response_model=schemas.User)
def read_current_user(current_user: schemas.User = Depends(get_current_active_user)):
    return current_user
