"""
Gmail push-notification handling.

A notification only says "mailbox X changed up to history id N". Turning that
into board updates means: decode the Pub/Sub envelope, find the stored session
for the mailbox, make sure its token still works, work out which messages are
new, classify each one and reconcile the result with the existing applications.
"""
import base64
import binascii
import json
import logging
from dataclasses import asdict, dataclass, field
from datetime import timedelta
from typing import Any, Callable, Dict, List, Optional

from googleapiclient.errors import HttpError
from sqlalchemy.orm import Session

from .. import schemas
from ..config.settings import Settings, get_settings
from ..models.db import crud
from ..models.db.application import JobStatus
from . import application_tracker
from .gemini_service import analyze_email
from .gmail_service import (
    GmailClient,
    ParsedEmail,
    collect_history_message_ids,
    http_error_status,
    is_recent,
    parse_message,
)
from .gmail_watch import check_and_renew_gmail_watch
from .google_oauth import SessionRevokedError, ensure_valid_access_token
from .rate_limiter import WebhookRateLimiter

logger = logging.getLogger(__name__)

_settings = get_settings()

webhook_rate_limiter = WebhookRateLimiter(
    max_requests=_settings.webhook_rate_limit_requests,
    window_seconds=_settings.webhook_rate_limit_window_seconds,
)

TEST_MESSAGE = "test"
METADATA_HEADERS = ["subject", "from", "to", "date"]


class InvalidNotificationError(ValueError):
    pass


@dataclass
class GmailNotification:
    email_address: str
    history_id: int


@dataclass
class ProcessingStats:
    messages_found: int = 0
    created: int = 0
    updated: int = 0
    skipped: int = 0
    errors: int = 0


@dataclass
class ProcessingOutcome:
    status_code: int
    body: Dict[str, Any]
    stats: ProcessingStats = field(default_factory=ProcessingStats)


def decode_notification(body: Any) -> Optional[GmailNotification]:
    """
    Decode a Pub/Sub push envelope.

    Returns None for the literal ``test`` payload Pub/Sub sends when a
    subscription is verified.
    """
    message = body.get("message") if isinstance(body, dict) else None
    data = message.get("data") if isinstance(message, dict) else None
    if not data:
        raise InvalidNotificationError("Invalid message format")

    try:
        decoded = base64.b64decode(data).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError, ValueError) as e:
        raise InvalidNotificationError("Invalid message data") from e

    logger.debug("Decoded message data: %s", decoded)
    if decoded.strip() == TEST_MESSAGE:
        return None

    try:
        payload = json.loads(decoded)
    except json.JSONDecodeError as e:
        raise InvalidNotificationError("Invalid message data") from e

    if not isinstance(payload, dict):
        raise InvalidNotificationError("Invalid message data")

    email_address = payload.get("emailAddress")
    history_id = payload.get("historyId")
    if not email_address or not history_id:
        raise InvalidNotificationError("Missing required Gmail data")

    try:
        history_id = int(history_id)
    except (TypeError, ValueError) as e:
        raise InvalidNotificationError("Missing required Gmail data") from e

    return GmailNotification(email_address=str(email_address).strip().lower(), history_id=history_id)


class WebhookProcessor:
    def __init__(
        self,
        db: Session,
        analyzer: Optional[Callable[[str, str], schemas.EmailAnalysis]] = None,
        client_factory: Optional[Callable[[str, Optional[str]], GmailClient]] = None,
        rate_limiter: Optional[WebhookRateLimiter] = None,
        settings: Optional[Settings] = None,
    ):
        self.db = db
        self.analyzer = analyzer or analyze_email
        self.client_factory = client_factory
        self.rate_limiter = rate_limiter or webhook_rate_limiter
        self.settings = settings or _settings

    def handle(self, body: Any) -> ProcessingOutcome:
        try:
            notification = decode_notification(body)
        except InvalidNotificationError as e:
            logger.error("Rejecting Pub/Sub message: %s", e)
            return ProcessingOutcome(400, {"error": str(e)})

        if notification is None:
            logger.info("Received test message, acknowledging")
            return ProcessingOutcome(200, {"success": True})

        if self.rate_limiter.is_rate_limited(notification.email_address):
            logger.warning("Rate limit exceeded for %s", notification.email_address)
            return ProcessingOutcome(429, {"error": "Rate limit exceeded"})

        email_session = crud.get_email_session_by_email(self.db, notification.email_address)
        if email_session is None:
            logger.info("No session found for email %s. User needs to sign in again.", notification.email_address)
            return ProcessingOutcome(404, {
                "success": False,
                "error": "No session found for this email. Please sign in through Google to create a session.",
            })

        if email_session.last_history_id is not None and email_session.last_history_id >= notification.history_id:
            logger.info("Skipping already processed history ID: %s", notification.history_id)
            return ProcessingOutcome(200, {"success": True, "skipped": True})

        try:
            client = ensure_valid_access_token(self.db, email_session, self.client_factory)
        except SessionRevokedError as e:
            logger.warning("Session for %s revoked: %s", notification.email_address, e)
            return ProcessingOutcome(401, {"error": "Session invalid and removed. Please re-authenticate."})

        stats = ProcessingStats()
        message_ids = self.collect_message_ids(client, email_session, notification)
        stats.messages_found = len(message_ids)
        logger.info("Found %s message(s) to process for %s", len(message_ids), notification.email_address)

        for message_id in message_ids:
            self.process_message(client, email_session, message_id, stats)

        crud.update_last_history_id(self.db, email_session, notification.history_id)

        watch = check_and_renew_gmail_watch(self.db, email_session, client)
        if not watch.success:
            logger.error("Failed to renew Gmail watch: %s", watch.error)

        logger.info("Finished processing notification for %s: %s", notification.email_address, stats)
        return ProcessingOutcome(200, {"success": True, **asdict(stats)}, stats)

    def collect_message_ids(self, client: GmailClient, email_session, notification: GmailNotification) -> List[str]:
        start_history_id = email_session.last_history_id or notification.history_id
        message_ids: List[str] = []
        try:
            history = client.list_history(start_history_id)
            message_ids = collect_history_message_ids(history)
        except HttpError as e:
            if http_error_status(e) != 404:
                raise
            logger.warning("History ID %s is no longer available, falling back to recent messages", start_history_id)

        if not message_ids:
            logger.info("No messages in history, checking recent messages...")
            message_ids = self._recent_message_ids(client)
        return message_ids

    def _recent_message_ids(self, client: GmailClient) -> List[str]:
        messages = client.list_messages(max_results=1, label_ids=["INBOX"])
        if not messages or not messages[0].get("id"):
            return []

        message_id = messages[0]["id"]
        details = client.get_message(message_id, format="metadata", metadata_headers=METADATA_HEADERS)
        window = timedelta(minutes=self.settings.recent_message_window_minutes)
        if is_recent(details.get("internalDate"), window):
            logger.info("Found recent message: %s", message_id)
            return [message_id]

        logger.info("Most recent message %s is too old, nothing to process", message_id)
        return []

    def process_message(self, client: GmailClient, email_session, message_id: str, stats: ProcessingStats) -> None:
        """Classify and reconcile one message. Failures are logged and counted, never raised."""
        try:
            if application_tracker.email_already_processed(self.db, email_session.user_id, message_id):
                logger.info("Skipping already processed message: %s", message_id)
                stats.skipped += 1
                return

            try:
                message = client.get_message(message_id, format="full")
            except HttpError as e:
                if http_error_status(e) == 404:
                    logger.info("Message no longer exists: %s", message_id)
                    stats.skipped += 1
                    return
                raise

            parsed = parse_message(message)
            logger.info("Processing email %s (subject=%r, body length=%s)", message_id, parsed.subject, len(parsed.body))

            analysis = self.analyzer(parsed.subject, parsed.body)
            logger.debug("Analysis result for %s: %s", message_id, analysis)

            if not (analysis.is_job_related and analysis.confidence > self.settings.analysis_confidence_threshold):
                logger.info(
                    "Email %s not job-related or low confidence (job_related=%s, confidence=%.2f)",
                    message_id, analysis.is_job_related, analysis.confidence
                )
                stats.skipped += 1
                return

            result = self.reconcile(email_session.user_id, analysis, parsed)
            if result == "created":
                stats.created += 1
            elif result == "updated":
                stats.updated += 1
            else:
                stats.skipped += 1
        except Exception as e:
            self.db.rollback()
            stats.errors += 1
            logger.error("Error processing message %s: %s", message_id, e, exc_info=True)

    def reconcile(self, user_id: str, analysis: schemas.EmailAnalysis, email: ParsedEmail) -> str:
        """
        Apply one classified email to the user's applications.

        Returns "created", "updated" or "unchanged".
        """
        kind = analysis.type
        company, role = analysis.company_name, analysis.role_title

        if kind == schemas.EmailAnalysisType.REJECTION:
            existing = application_tracker.find_matching_application(self.db, user_id, company)
            if existing is not None:
                if existing.status == JobStatus.REJECTED:
                    logger.info("Application %s already rejected, skipping update", existing.id)
                    return "unchanged"
                application_tracker.set_status_from_email(
                    self.db, existing, JobStatus.REJECTED, rejection_email_id=email.message_id
                )
                logger.info("Updated application %s (%s) to REJECTED", existing.id, company)
                return "updated"
            self._create(user_id, analysis, email, JobStatus.REJECTED, rejection_email_id=email.message_id)
            return "created"

        if kind == schemas.EmailAnalysisType.INTERVIEW_REQUEST:
            existing = application_tracker.find_matching_application(self.db, user_id, company, role)
            if existing is not None:
                application_tracker.set_status_from_email(
                    self.db, existing, JobStatus.INTERVIEW_SCHEDULED, interview_request_email_id=email.message_id
                )
                logger.info("Updated application %s (%s / %s) to INTERVIEW_SCHEDULED", existing.id, company, role)
                return "updated"
            self._create(user_id, analysis, email, JobStatus.INTERVIEW_SCHEDULED,
                         interview_request_email_id=email.message_id)
            return "created"

        if kind == schemas.EmailAnalysisType.APPLICATION:
            existing = application_tracker.find_matching_application(self.db, user_id, company, role)
            if existing is not None:
                logger.info("Similar application already exists (%s), skipping creation", existing.id)
                return "unchanged"
            self._create(user_id, analysis, email, JobStatus.APPLIED)
            return "created"

        logger.info("Skipping email %s - no action needed", email.message_id)
        return "unchanged"

    def _create(self, user_id: str, analysis: schemas.EmailAnalysis, email: ParsedEmail, status: JobStatus, **email_refs):
        db_application = application_tracker.create_application_from_email(
            self.db,
            user_id=user_id,
            company_name=analysis.company_name,
            role_title=analysis.role_title,
            status=status,
            email_id=email.message_id,
            applied_date=email.timestamp,
            location=analysis.location,
            **email_refs,
        )
        logger.info(
            "Created %s application %s for %s / %s",
            status.value, db_application.id, analysis.company_name, analysis.role_title
        )
        return db_application
