"""
Debug and manual-test endpoints. Mounted under /api and switched off with
DEBUG_ROUTES_ENABLED=false.
"""
import logging
from typing import Any, Dict

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from .. import schemas
from ..config.settings import get_settings
from ..models.db import crud
from ..models.db.database import get_db
from ..services import application_tracker as application_service
from ..services.gemini_service import EmailAnalysisError, analyze_email_strict
from ..services.gmail_watch import setup_gmail_watch, stop_gmail_watch
from ..utils.api_helpers import check_resource_exists, mask_token
from .auth import get_current_active_user

logger = logging.getLogger(__name__)


def require_debug_routes():
    if not get_settings().debug_routes_enabled:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Not Found")


router = APIRouter(dependencies=[Depends(require_debug_routes)])


def _session_for(db: Session, user) -> Any:
    email_session = crud.get_email_session_for_user(db, user.id)
    if email_session is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="No Gmail session for this user. Please sign in through Google."
        )
    return email_session


@router.get("/debug/jobs", response_model=schemas.DebugJobs, summary="All Applications")
def debug_jobs(db: Session = Depends(get_db)):
    applications = application_service.get_all_applications(db)
    return schemas.DebugJobs(count=len(applications), jobs=applications)


@router.get("/debug/sessions", response_model=schemas.DebugSessions, summary="All Email Sessions")
def debug_sessions(db: Session = Depends(get_db)):
    sessions = []
    for email_session in crud.list_email_sessions(db):
        data = schemas.EmailSession.model_validate(email_session).model_dump()
        data["access_token"] = mask_token(data["access_token"])
        data["refresh_token"] = mask_token(data["refresh_token"])
        sessions.append(data)
    return schemas.DebugSessions(count=len(sessions), sessions=sessions)


@router.get("/admin/token", summary="Current Gmail Access Token")
def admin_token(
    db: Session = Depends(get_db),
    current_user: schemas.User = Depends(get_current_active_user)
) -> Dict[str, Any]:
    email_session = crud.get_email_session_for_user(db, current_user.id)
    check_resource_exists(email_session, "Email session")
    return {
        "email": email_session.email,
        "access_token": email_session.access_token,
        "watch_expiration": email_session.watch_expiration,
    }


@router.post("/test/email-analysis", response_model=schemas.EmailAnalysisResponse, summary="Analyze Email")
def test_email_analysis(content: schemas.EmailContent):
    """
    Run the job-email classifier on a hand-written email.
    """
    if not content.subject.strip() or not content.body.strip():
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Missing required fields: subject and body are required"
        )

    try:
        analysis = analyze_email_strict(content)
    except EmailAnalysisError as e:
        logger.error("Email analysis failed: %s", e)
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Failed to analyze email")
    return schemas.EmailAnalysisResponse(analysis=analysis)


@router.post("/test/setup-gmail-watch", summary="Set Up Gmail Watch")
def test_setup_gmail_watch(
    db: Session = Depends(get_db),
    current_user: schemas.User = Depends(get_current_active_user)
) -> Dict[str, Any]:
    email_session = _session_for(db, current_user)
    result = setup_gmail_watch(db, email_session)
    if not result.success:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to set up Gmail notifications: {result.error}"
        )
    return {
        "message": "Gmail notifications set up successfully",
        "topic_name": get_settings().pubsub_topic_path,
        "expiration": result.expiration,
        "history_id": result.history_id,
    }


@router.post("/test/stop-gmail-watch", summary="Stop Gmail Watch")
def test_stop_gmail_watch(
    db: Session = Depends(get_db),
    current_user: schemas.User = Depends(get_current_active_user)
) -> Dict[str, Any]:
    email_session = _session_for(db, current_user)
    if not stop_gmail_watch(db, email_session):
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to stop Gmail notifications"
        )
    return {"message": "Gmail notifications stopped"}
