import logging
from datetime import timedelta
from typing import Optional

from sqlalchemy.orm import Session

from .. import schemas
from ..config.settings import get_settings
from ..utils.datetime_utils import as_utc, from_epoch_millis, utcnow
from .gmail_service import GmailClient

logger = logging.getLogger(__name__)

settings = get_settings()


class GmailWatchError(RuntimeError):
    pass


def setup_gmail_watch(db: Session, email_session, client: Optional[GmailClient] = None) -> schemas.WatchResult:
    """
    Register push notifications for the session's INBOX.

    Stores the watch expiration on the session and, for a mailbox seen for the
    first time, seeds ``last_history_id`` from the watch response. Failures are
    logged and reported in the result rather than raised.
    """
    try:
        topic_name = settings.pubsub_topic_path
        if not topic_name:
            raise GmailWatchError("Pub/Sub topic is not configured")

        client = client or GmailClient.from_tokens(email_session.access_token, email_session.refresh_token)
        response = client.watch(topic_name, label_ids=["INBOX"])

        expiration = from_epoch_millis(response.get("expiration"))
        history_id = int(response["historyId"]) if response.get("historyId") else None

        email_session.watch_expiration = expiration
        if email_session.last_history_id is None and history_id is not None:
            email_session.last_history_id = history_id
        db.commit()

        logger.info("Gmail watch active for %s until %s", email_session.email, expiration)
        return schemas.WatchResult(success=True, expiration=expiration, history_id=history_id)
    except Exception as e:
        db.rollback()
        logger.error("Error setting up Gmail watch for %s: %s", email_session.email, e)
        return schemas.WatchResult(success=False, error=str(e))


def watch_needs_renewal(email_session, threshold: Optional[timedelta] = None) -> bool:
    threshold = threshold or timedelta(hours=settings.watch_renewal_threshold_hours)
    expiration = as_utc(email_session.watch_expiration)
    if expiration is None:
        return True
    return expiration - utcnow() <= threshold


def check_and_renew_gmail_watch(db: Session, email_session, client: Optional[GmailClient] = None) -> schemas.WatchResult:
    if not watch_needs_renewal(email_session):
        return schemas.WatchResult(success=True, expiration=as_utc(email_session.watch_expiration))
    logger.info("Gmail watch for %s is missing or about to expire, renewing", email_session.email)
    return setup_gmail_watch(db, email_session, client)


def stop_gmail_watch(db: Session, email_session, client: Optional[GmailClient] = None) -> bool:
    try:
        client = client or GmailClient.from_tokens(email_session.access_token, email_session.refresh_token)
        client.stop()
    except Exception as e:
        logger.error("Error stopping Gmail watch for %s: %s", email_session.email, e)
        return False

    email_session.watch_expiration = None
    db.commit()
    logger.info("Gmail watch stopped for %s", email_session.email)
    return True
