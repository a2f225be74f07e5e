"""
Pytest configuration and shared fixtures for the Apply Trace tests.
"""
import base64
import json
import os
from datetime import timedelta
from unittest.mock import Mock

import pytest

os.environ.setdefault("TESTING", "true")
os.environ.setdefault("SECRET_KEY", "test-secret-key-for-jwt-tokens-12345678901234567890123456789012")
os.environ.setdefault("DEBUG_ROUTES_ENABLED", "true")

from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from apply_trace_app.backend.main import app
from apply_trace_app.backend.models.db.database import get_db, Base
from apply_trace_app.backend.models.db import crud
from apply_trace_app.backend import schemas
from apply_trace_app.backend.api.webhook import get_webhook_processor
from apply_trace_app.backend.security import create_access_token
from apply_trace_app.backend.services.rate_limiter import WebhookRateLimiter
from apply_trace_app.backend.services.webhook_processor import WebhookProcessor
from apply_trace_app.backend.utils.datetime_utils import utcnow

TEST_EMAIL = "test@example.com"


# Test Database Setup
@pytest.fixture(scope="session")
def test_db_engine():
    """Create a test database engine using SQLite in memory."""
    engine = create_engine(
        "sqlite://",
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    yield engine
    engine.dispose()


@pytest.fixture(scope="function")
def test_db_session(test_db_engine):
    """Create a test database session on freshly created tables."""
    Base.metadata.create_all(bind=test_db_engine)
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=test_db_engine)
    session = TestingSessionLocal()
    yield session
    session.close()
    Base.metadata.drop_all(bind=test_db_engine)


@pytest.fixture(scope="function")
def test_client(test_db_session):
    """Create a test client with overridden database dependency."""
    def override_get_db():
        try:
            yield test_db_session
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    client = TestClient(app)
    yield client
    app.dependency_overrides.clear()


# User Fixtures
@pytest.fixture
def test_user(test_db_session):
    """Create a test user in the database."""
    return crud.get_or_create_user(test_db_session, TEST_EMAIL)


@pytest.fixture
def email_session(test_db_session, test_user):
    """Stored Gmail session with an active watch and a known history cursor."""
    return crud.upsert_email_session(
        test_db_session,
        user_id=test_user.id,
        email=test_user.email,
        access_token="access-token-1234567890",
        refresh_token="refresh-token-1234567890",
        last_history_id=1000,
        watch_expiration=utcnow() + timedelta(days=6),
    )


@pytest.fixture
def auth_headers(test_user):
    """Bearer header for the test user."""
    token = create_access_token(data={"sub": test_user.email})
    return {"Authorization": f"Bearer {token}"}


# Gmail Fixtures
def make_gmail_message(message_id, subject, body, date="Mon, 14 Oct 2024 09:30:00 +0000", sender="jobs@acme.com"):
    """Gmail API ``messages.get`` payload with a single text/plain part."""
    encoded = base64.urlsafe_b64encode(body.encode("utf-8")).decode("ascii").rstrip("=")
    return {
        "id": message_id,
        "snippet": body[:50],
        "internalDate": "1728898200000",
        "payload": {
            "mimeType": "multipart/alternative",
            "headers": [
                {"name": "Subject", "value": subject},
                {"name": "From", "value": sender},
                {"name": "To", "value": TEST_EMAIL},
                {"name": "Date", "value": date},
            ],
            "body": {"size": 0},
            "parts": [
                {"mimeType": "text/plain", "body": {"data": encoded}},
                {"mimeType": "text/html", "body": {"data": encoded}},
            ],
        },
    }


def pubsub_body(email_address=TEST_EMAIL, history_id=2000):
    """Pub/Sub push envelope as delivered to the webhook."""
    payload = json.dumps({"emailAddress": email_address, "historyId": history_id})
    return {
        "message": {
            "data": base64.b64encode(payload.encode("utf-8")).decode("ascii"),
            "messageId": "pubsub-1",
        },
        "subscription": "projects/test/subscriptions/gmail",
    }


def job_analysis(kind, company="Acme Corp", role="Backend Engineer", confidence=0.9, job_related=True):
    return schemas.EmailAnalysis(
        is_job_related=job_related,
        type=kind,
        company_name=company,
        role_title=role,
        confidence=confidence,
    )


@pytest.fixture
def gmail_messages():
    """Messages served by the mocked Gmail client, keyed by id."""
    return {}


@pytest.fixture
def mock_gmail_client(gmail_messages):
    client = Mock()
    client.get_profile.return_value = {"emailAddress": TEST_EMAIL, "historyId": "2000"}
    client.list_history.side_effect = lambda start: [
        {"id": str(start + 1), "messagesAdded": [{"message": {"id": message_id}}]}
        for message_id in gmail_messages
    ]
    client.list_messages.return_value = []
    client.get_message.side_effect = lambda message_id, format="full", metadata_headers=None: gmail_messages[message_id]
    return client


@pytest.fixture
def mock_analyzer():
    return Mock(return_value=job_analysis(schemas.EmailAnalysisType.OTHER, job_related=False, confidence=0.0))


@pytest.fixture
def webhook_rate_limiter():
    return WebhookRateLimiter(max_requests=10, window_seconds=60)


@pytest.fixture
def webhook_client(test_client, test_db_session, mock_gmail_client, mock_analyzer, webhook_rate_limiter):
    """Test client whose webhook uses the mocked Gmail client and analyzer."""
    def override_processor():
        return WebhookProcessor(
            test_db_session,
            analyzer=mock_analyzer,
            client_factory=lambda access_token, refresh_token: mock_gmail_client,
            rate_limiter=webhook_rate_limiter,
        )

    app.dependency_overrides[get_webhook_processor] = override_processor
    return test_client
