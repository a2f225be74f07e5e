"""
Gmail API access for the webhook: authenticated client, history and message
retrieval, watch management and message parsing.
"""
import base64
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from email.utils import parsedate_to_datetime
from typing import Any, Dict, Iterable, List, Optional

from google.oauth2.credentials import Credentials
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from ..config.settings import get_settings
from ..utils.datetime_utils import as_utc, from_epoch_millis, utcnow

logger = logging.getLogger(__name__)

settings = get_settings()


@dataclass
class ParsedEmail:
    """The parts of a Gmail message the analyzer needs."""
    message_id: str
    subject: str
    from_address: str
    to: str
    timestamp: datetime
    body: str


def build_credentials(access_token: str, refresh_token: Optional[str] = None) -> Credentials:
    return Credentials(
        token=access_token,
        refresh_token=refresh_token,
        token_uri=settings.google_token_uri,
        client_id=settings.google_client_id,
        client_secret=settings.google_client_secret,
        scopes=settings.google_oauth_scopes,
    )


def http_error_status(error: Exception) -> Optional[int]:
    """HTTP status of a googleapiclient HttpError, or None for anything else."""
    if not isinstance(error, HttpError):
        return None
    try:
        return int(error.resp.status)
    except (AttributeError, TypeError, ValueError):
        return None


class GmailClient:
    """Thin wrapper over the Gmail v1 ``users`` resource for the signed-in mailbox."""

    def __init__(self, credentials: Credentials):
        self.credentials = credentials
        self.service = build("gmail", "v1", credentials=credentials, cache_discovery=False)

    @classmethod
    def from_tokens(cls, access_token: str, refresh_token: Optional[str] = None) -> "GmailClient":
        return cls(build_credentials(access_token, refresh_token))

    def get_profile(self) -> Dict[str, Any]:
        return self.service.users().getProfile(userId="me").execute()

    def list_history(self, start_history_id: int) -> List[Dict[str, Any]]:
        """All history records after ``start_history_id``, following pagination."""
        records = []
        page_token = None
        while True:
            response = self.service.users().history().list(
                userId="me",
                startHistoryId=str(start_history_id),
                pageToken=page_token,
            ).execute()
            records.extend(response.get("history", []))
            page_token = response.get("nextPageToken")
            if not page_token:
                return records

    def list_messages(self, max_results: int = 1, label_ids: Optional[List[str]] = None) -> List[Dict[str, Any]]:
        response = self.service.users().messages().list(
            userId="me",
            maxResults=max_results,
            labelIds=label_ids or ["INBOX"],
        ).execute()
        return response.get("messages", [])

    def get_message(self, message_id: str, format: str = "full", metadata_headers: Optional[List[str]] = None) -> Dict[str, Any]:
        kwargs = {"userId": "me", "id": message_id, "format": format}
        if metadata_headers:
            kwargs["metadataHeaders"] = metadata_headers
        return self.service.users().messages().get(**kwargs).execute()

    def watch(self, topic_name: str, label_ids: Optional[List[str]] = None) -> Dict[str, Any]:
        return self.service.users().watch(
            userId="me",
            body={
                "labelIds": label_ids or ["INBOX"],
                "topicName": topic_name,
                "labelFilterAction": "include",
            },
        ).execute()

    def stop(self) -> None:
        self.service.users().stop(userId="me").execute()


def collect_history_message_ids(history: Iterable[Dict[str, Any]]) -> List[str]:
    """Unique message ids from ``messages`` and ``messagesAdded`` of each record, in order."""
    seen = {}
    for record in history or []:
        for message in record.get("messages", []):
            if message.get("id"):
                seen.setdefault(message["id"], None)
        for added in record.get("messagesAdded", []):
            message_id = (added.get("message") or {}).get("id")
            if message_id:
                seen.setdefault(message_id, None)
    return list(seen)


def is_recent(internal_date_ms, window: timedelta, now: Optional[datetime] = None) -> bool:
    received = from_epoch_millis(internal_date_ms)
    if received is None:
        return False
    return (as_utc(now) or utcnow()) - received < window


def get_header(headers: List[Dict[str, str]], name: str) -> Optional[str]:
    name = name.lower()
    for header in headers or []:
        if (header.get("name") or "").lower() == name:
            return header.get("value")
    return None


def decode_body_data(data: str) -> str:
    if not data:
        return ""
    padded = data + "=" * (-len(data) % 4)
    return base64.urlsafe_b64decode(padded.encode("ascii")).decode("utf-8", errors="replace")


def _collect_plain_text(part: Dict[str, Any]) -> str:
    text = ""
    for sub_part in part.get("parts", []) or []:
        if sub_part.get("mimeType") == "text/plain" and (sub_part.get("body") or {}).get("data"):
            text += decode_body_data(sub_part["body"]["data"])
        elif sub_part.get("parts"):
            text += _collect_plain_text(sub_part)
    return text


def extract_body(message: Dict[str, Any]) -> str:
    payload = message.get("payload") or {}
    body_data = (payload.get("body") or {}).get("data")
    if body_data:
        body = decode_body_data(body_data)
    else:
        body = _collect_plain_text(payload)

    if not body:
        logger.debug("Failed to extract full body of %s, falling back to snippet", message.get("id"))
        body = message.get("snippet") or ""
    return body


def extract_timestamp(message: Dict[str, Any], date_header: Optional[str] = None) -> datetime:
    """Date header first (carries the sender's timezone), then internalDate, then now."""
    if date_header:
        try:
            parsed = parsedate_to_datetime(date_header)
            return as_utc(parsed)
        except (TypeError, ValueError, IndexError):
            logger.debug("Unparseable Date header %r", date_header)

    internal = from_epoch_millis(message.get("internalDate"))
    if internal is not None:
        return internal
    return utcnow()


def parse_message(message: Dict[str, Any]) -> ParsedEmail:
    headers = (message.get("payload") or {}).get("headers", [])
    date_header = get_header(headers, "date")
    return ParsedEmail(
        message_id=message.get("id", ""),
        subject=get_header(headers, "subject") or "",
        from_address=get_header(headers, "from") or "",
        to=get_header(headers, "to") or "",
        timestamp=extract_timestamp(message, date_header),
        body=extract_body(message),
    )
