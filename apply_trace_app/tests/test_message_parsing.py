"""
Test Gmail message parsing and history helpers.
"""
import base64
from datetime import datetime, timedelta, timezone
from unittest.mock import Mock

from googleapiclient.errors import HttpError

from apply_trace_app.backend.services import gmail_service

from conftest import make_gmail_message


def b64url(text):
    return base64.urlsafe_b64encode(text.encode("utf-8")).decode("ascii").rstrip("=")


class TestBodyExtraction:

    def test_single_part_body(self):
        message = {"id": "m1", "payload": {"body": {"data": b64url("Hello there")}}}

        assert gmail_service.extract_body(message) == "Hello there"

    def test_multipart_prefers_plain_text_parts(self):
        message = make_gmail_message("m2", "Subject", "Plain text body")

        assert gmail_service.extract_body(message) == "Plain text body"

    def test_nested_parts_are_walked(self):
        message = {
            "id": "m3",
            "payload": {
                "mimeType": "multipart/mixed",
                "parts": [
                    {
                        "mimeType": "multipart/alternative",
                        "parts": [
                            {"mimeType": "text/plain", "body": {"data": b64url("Nested ")}},
                            {"mimeType": "text/html", "body": {"data": b64url("<b>ignored</b>")}},
                        ],
                    },
                    {"mimeType": "text/plain", "body": {"data": b64url("and more")}},
                ],
            },
        }

        assert gmail_service.extract_body(message) == "Nested and more"

    def test_falls_back_to_snippet(self):
        message = {
            "id": "m4",
            "snippet": "Snippet text",
            "payload": {"parts": [{"mimeType": "text/html", "body": {"data": b64url("<p>html</p>")}}]},
        }

        assert gmail_service.extract_body(message) == "Snippet text"

    def test_unpadded_base64url_with_unicode(self):
        assert gmail_service.decode_body_data(b64url("Grüße ✓")) == "Grüße ✓"


class TestTimestamps:

    def test_date_header_wins(self):
        message = {"internalDate": "0"}

        timestamp = gmail_service.extract_timestamp(message, "Tue, 15 Oct 2024 10:00:00 +0200")

        assert timestamp == datetime(2024, 10, 15, 8, 0, tzinfo=timezone.utc)

    def test_internal_date_when_header_unparseable(self):
        message = {"internalDate": "1728898200000"}

        timestamp = gmail_service.extract_timestamp(message, "not a date")

        assert timestamp == datetime(2024, 10, 14, 9, 30, tzinfo=timezone.utc)

    def test_now_when_nothing_usable(self):
        before = datetime.now(timezone.utc)

        timestamp = gmail_service.extract_timestamp({}, None)

        assert timestamp >= before

    def test_is_recent(self):
        now = datetime(2024, 10, 14, 10, 0, tzinfo=timezone.utc)
        window = timedelta(minutes=60)

        assert gmail_service.is_recent("1728898200000", window, now=now)
        assert not gmail_service.is_recent("1728898200000", window, now=now + timedelta(hours=2))
        assert not gmail_service.is_recent(None, window, now=now)


class TestParseMessage:

    def test_headers_are_case_insensitive(self):
        message = make_gmail_message("m5", "Your application", "Body", sender="HR <hr@acme.com>")
        message["payload"]["headers"][0]["name"] = "SUBJECT"

        parsed = gmail_service.parse_message(message)

        assert parsed.message_id == "m5"
        assert parsed.subject == "Your application"
        assert parsed.from_address == "HR <hr@acme.com>"
        assert parsed.body == "Body"
        assert parsed.timestamp == datetime(2024, 10, 14, 9, 30, tzinfo=timezone.utc)

    def test_missing_headers(self):
        parsed = gmail_service.parse_message({"id": "m6", "snippet": "hi", "payload": {}})

        assert parsed.subject == ""
        assert parsed.body == "hi"


class TestHistory:

    def test_collect_history_message_ids_deduplicates(self):
        history = [
            {"id": "1", "messages": [{"id": "a"}], "messagesAdded": [{"message": {"id": "a"}}]},
            {"id": "2", "messagesAdded": [{"message": {"id": "b"}}, {"message": {}}]},
            {"id": "3", "labelsAdded": [{"message": {"id": "c"}}]},
        ]

        assert gmail_service.collect_history_message_ids(history) == ["a", "b"]

    def test_list_history_follows_pages(self):
        client = gmail_service.GmailClient.__new__(gmail_service.GmailClient)
        client.service = Mock()
        history_list = client.service.users.return_value.history.return_value.list
        history_list.return_value.execute.side_effect = [
            {"history": [{"id": "1"}], "nextPageToken": "page-2"},
            {"history": [{"id": "2"}]},
        ]

        records = client.list_history(100)

        assert [record["id"] for record in records] == ["1", "2"]
        history_list.assert_any_call(userId="me", startHistoryId="100", pageToken="page-2")

    def test_http_error_status(self):
        error = HttpError(Mock(status=404, reason="Not Found"), b"")

        assert gmail_service.http_error_status(error) == 404
        assert gmail_service.http_error_status(ValueError("x")) is None
