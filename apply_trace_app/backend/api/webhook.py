"""
Gmail push-notification endpoint. Pub/Sub posts here whenever a watched
mailbox changes.
"""
import logging
from typing import Any, Optional

from fastapi import APIRouter, Body, Depends, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from ..config.settings import get_settings
from ..models.db.database import get_db
from ..services.webhook_processor import WebhookProcessor

logger = logging.getLogger(__name__)
router = APIRouter()
settings = get_settings()


def get_webhook_processor(db: Session = Depends(get_db)) -> WebhookProcessor:
    return WebhookProcessor(db)


@router.post("/gmail", summary="Gmail Pub/Sub Push")
def gmail_webhook(
    body: Any = Body(None),
    token: Optional[str] = None,
    processor: WebhookProcessor = Depends(get_webhook_processor),
):
    if settings.pubsub_verification_token and token != settings.pubsub_verification_token:
        logger.warning("Webhook called with an invalid verification token")
        return JSONResponse(status_code=status.HTTP_403_FORBIDDEN, content={"error": "Invalid verification token"})

    try:
        outcome = processor.handle(body)
    except Exception as e:
        logger.error("Error processing webhook: %s", e, exc_info=True)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": "Internal server error"}
        )

    return JSONResponse(status_code=outcome.status_code, content=outcome.body)
