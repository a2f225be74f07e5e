"""
Google OAuth: the sign-in flow and access-token refresh for stored sessions.
"""
import logging
from dataclasses import dataclass
from typing import Callable, Optional

from google.auth.exceptions import RefreshError
from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials
from google_auth_oauthlib.flow import Flow
from googleapiclient.errors import HttpError
from sqlalchemy.orm import Session

from ..config.settings import get_settings
from ..models.db import crud
from .gmail_service import GmailClient, build_credentials, http_error_status

logger = logging.getLogger(__name__)

settings = get_settings()

# OAuth error codes after which the stored refresh token can never work again
INVALID_GRANT_MARKERS = ("invalid_grant", "invalid_request", "invalid_client")


class SessionRevokedError(RuntimeError):
    """The stored Google session is unusable and has been deleted."""


def _client_config() -> dict:
    return {
        "web": {
            "client_id": settings.google_client_id,
            "client_secret": settings.google_client_secret,
            "auth_uri": settings.google_auth_uri,
            "token_uri": settings.google_token_uri,
            "redirect_uris": [settings.oauth_redirect_uri],
        }
    }


@dataclass
class AuthorizationRequest:
    """Consent URL plus what the callback needs to finish the same flow."""
    url: str
    state: str
    code_verifier: Optional[str]


def build_flow(state: Optional[str] = None, code_verifier: Optional[str] = None) -> Flow:
    if not settings.google_configured():
        raise ValueError("Google OAuth not configured. Set GOOGLE_CLIENT_ID and GOOGLE_CLIENT_SECRET.")
    flow = Flow.from_client_config(
        _client_config(),
        scopes=settings.google_oauth_scopes,
        state=state,
        code_verifier=code_verifier,
        autogenerate_code_verifier=code_verifier is None,
    )
    flow.redirect_uri = settings.oauth_redirect_uri
    return flow


def get_authorization_url() -> AuthorizationRequest:
    """
    Start a sign-in: consent URL asking for offline access so Google returns
    a refresh token. The PKCE verifier and state must come back to
    ``exchange_code``.
    """
    flow = build_flow()
    auth_url, state = flow.authorization_url(
        access_type="offline",
        include_granted_scopes="true",
        prompt="consent",
    )
    return AuthorizationRequest(url=auth_url, state=state, code_verifier=flow.code_verifier)


def exchange_code(code: str, code_verifier: Optional[str], state: Optional[str] = None) -> Credentials:
    flow = build_flow(state=state, code_verifier=code_verifier)
    flow.fetch_token(code=code)
    return flow.credentials

def is_invalid_grant_error(error: Exception) -> bool:
    message = str(error).lower()
    return any(marker in message for marker in INVALID_GRANT_MARKERS)


def refresh_access_token(db: Session, email_session) -> str:
    """
    Refresh the session's access token and persist it.

    A rotated refresh token is stored as well. When Google rejects the refresh
    token outright the session is deleted so the user has to sign in again.

    Raises:
        SessionRevokedError: the session was irrecoverable and has been removed.
    """
    email = email_session.email
    if not email_session.refresh_token:
        logger.warning("No refresh token stored for %s, removing session", email)
        crud.delete_email_session_by_email(db, email)
        raise SessionRevokedError("No refresh token - session removed")

    credentials = build_credentials(None, email_session.refresh_token)
    try:
        credentials.refresh(Request())
    except RefreshError as e:
        logger.error("Error refreshing access token for %s: %s", email, e)
        if is_invalid_grant_error(e):
            logger.info("OAuth2 error detected, removing invalid session for %s", email)
            crud.delete_email_session_by_email(db, email)
            raise SessionRevokedError("Invalid OAuth2 credentials - session removed") from e
        raise

    if not credentials.token:
        raise RuntimeError("No access token in refresh response")

    rotated = credentials.refresh_token if credentials.refresh_token != email_session.refresh_token else None
    crud.update_session_tokens(db, email_session, credentials.token, rotated)
    logger.info("Refreshed access token for %s", email)
    return credentials.token


def _persist_auto_refreshed_token(db: Session, email_session, client) -> None:
    # googleapiclient refreshes expired credentials on its own; keep the database in step
    token = getattr(getattr(client, "credentials", None), "token", None)
    if isinstance(token, str) and token and token != email_session.access_token:
        crud.update_session_tokens(db, email_session, token)


def ensure_valid_access_token(
    db: Session,
    email_session,
    client_factory: Optional[Callable[[str, Optional[str]], GmailClient]] = None,
) -> GmailClient:
    """
    Return a Gmail client whose token has just been proven to work.

    Probes ``users.getProfile``; on a 401 or an invalid-grant style error the
    token is refreshed and a fresh client built. Other API errors propagate.
    """
    factory = client_factory or GmailClient.from_tokens
    client = factory(email_session.access_token, email_session.refresh_token)
    try:
        client.get_profile()
    except (HttpError, RefreshError) as e:
        if http_error_status(e) != 401 and not is_invalid_grant_error(e):
            raise
        logger.info("Access token expired or invalid for %s, refreshing...", email_session.email)
        new_access_token = refresh_access_token(db, email_session)
        return factory(new_access_token, email_session.refresh_token)

    _persist_auto_refreshed_token(db, email_session, client)
    return client
