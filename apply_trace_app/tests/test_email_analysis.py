"""
Test the LLM email classifier: response parsing, retries and the manual test endpoint.
"""
from unittest.mock import Mock, patch

import pytest
from fastapi import status
from google.api_core import exceptions as google_exceptions

from apply_trace_app.backend import schemas
from apply_trace_app.backend.services import gemini_service
from apply_trace_app.backend.services.rate_limiter import BackoffRateLimiter

Kind = schemas.EmailAnalysisType

VALID_REPLY = (
    '{"isJobRelated": true, "type": "INTERVIEW_REQUEST", "companyName": "Acme Corp", '
    '"roleTitle": "Backend Engineer", "confidence": 0.95, "location": "Berlin"}'
)


@pytest.fixture
def limiter():
    """Backoff limiter that records sleeps instead of sleeping."""
    sleeps = []
    clock = Mock(return_value=100.0)
    limiter = BackoffRateLimiter(min_delay=1.0, max_retries=3, max_backoff=10.0, clock=clock, sleep=sleeps.append)
    limiter.sleeps = sleeps
    return limiter


class TestResponseParsing:
    """Turning model replies into EmailAnalysis objects."""

    def test_plain_json(self):
        analysis = gemini_service.parse_analysis_response(VALID_REPLY)

        assert analysis.is_job_related is True
        assert analysis.type == Kind.INTERVIEW_REQUEST
        assert analysis.company_name == "Acme Corp"
        assert analysis.role_title == "Backend Engineer"
        assert analysis.confidence == pytest.approx(0.95)
        assert analysis.location == "Berlin"

    def test_markdown_fenced_json(self):
        analysis = gemini_service.parse_analysis_response(f"```json\n{VALID_REPLY}\n```")

        assert analysis.company_name == "Acme Corp"

    def test_json_surrounded_by_prose(self):
        reply = f"<think>looks like an interview</think>Here is the analysis: {VALID_REPLY} Hope this helps!"

        analysis = gemini_service.parse_analysis_response(reply)

        assert analysis.type == Kind.INTERVIEW_REQUEST

    def test_json_array_uses_first_object(self):
        analysis = gemini_service.parse_analysis_response(f"[{VALID_REPLY}]")

        assert analysis.company_name == "Acme Corp"

    def test_missing_and_unknown_fields_are_normalized(self):
        analysis = gemini_service.parse_analysis_response(
            '{"isJobRelated": true, "type": "offer", "companyName": "", "confidence": 3}'
        )

        assert analysis.type == Kind.OTHER
        assert analysis.company_name == "Unknown"
        assert analysis.role_title == "Unknown"
        assert analysis.confidence == 1.0

    @pytest.mark.parametrize("reply", ["", "no json here", "{broken", '"just a string"'])
    def test_garbage_raises_value_error(self, reply):
        with pytest.raises(ValueError):
            gemini_service.parse_analysis_response(reply)

    def test_prompt_includes_email_and_truncates_body(self):
        prompt = gemini_service.build_analysis_prompt(
            "Interview at Acme", "x" * 10000, sender="hr@acme.com", date="Mon, 14 Oct 2024"
        )

        assert 'Subject: "Interview at Acme"' in prompt
        assert "From: hr@acme.com" in prompt
        assert "x" * gemini_service.MAX_BODY_CHARS in prompt
        assert "x" * (gemini_service.MAX_BODY_CHARS + 1) not in prompt


class TestAnalyzeEmail:
    """Fail-soft analysis used by the webhook."""

    def test_successful_analysis(self, limiter):
        with patch.object(gemini_service, "generate_text", return_value=VALID_REPLY) as generate:
            analysis = gemini_service.analyze_email("Interview", "Let's talk", limiter=limiter)

        assert analysis.type == Kind.INTERVIEW_REQUEST
        generate.assert_called_once()

    def test_rate_limit_is_retried_with_backoff(self, limiter):
        replies = [google_exceptions.ResourceExhausted("quota"), google_exceptions.TooManyRequests("slow down"), VALID_REPLY]

        with patch.object(gemini_service, "generate_text", side_effect=replies) as generate:
            analysis = gemini_service.analyze_email("Interview", "Let's talk", limiter=limiter)

        assert analysis.company_name == "Acme Corp"
        assert generate.call_count == 3
        # clock never advances, so each wait is the full backoff delay
        assert limiter.sleeps == [2.0, 4.0]
        assert limiter.retry_count == 0

    def test_rate_limit_retries_exhausted(self, limiter):
        with patch.object(gemini_service, "generate_text",
                          side_effect=google_exceptions.ResourceExhausted("quota")) as generate:
            analysis = gemini_service.analyze_email("Interview", "Let's talk", limiter=limiter)

        assert generate.call_count == 4
        assert analysis.is_job_related is False
        assert analysis.type == Kind.OTHER

    def test_other_errors_return_default(self, limiter):
        with patch.object(gemini_service, "generate_text", side_effect=RuntimeError("network down")):
            analysis = gemini_service.analyze_email("Interview", "Let's talk", limiter=limiter)

        assert analysis == gemini_service.default_analysis()

    def test_unparseable_reply_returns_default(self, limiter):
        with patch.object(gemini_service, "generate_text", return_value="I cannot help with that."):
            analysis = gemini_service.analyze_email("Hello", "World", limiter=limiter)

        assert analysis.is_job_related is False
        assert analysis.confidence == 0.0

    def test_strict_analysis_raises(self):
        content = schemas.EmailContent(subject="Hi", body="There")

        with patch.object(gemini_service, "generate_text", side_effect=RuntimeError("down")):
            with pytest.raises(gemini_service.EmailAnalysisError):
                gemini_service.analyze_email_strict(content)


class TestEmailAnalysisEndpoint:
    """POST /api/test/email-analysis."""

    def test_analysis_endpoint(self, test_client):
        with patch.object(gemini_service, "generate_text", return_value=VALID_REPLY):
            response = test_client.post("/api/test/email-analysis", json={
                "subject": "Interview invitation",
                "body": "We'd like to schedule a call.",
                "from": "hr@acme.com",
            })

        assert response.status_code == status.HTTP_200_OK
        analysis = response.json()["analysis"]
        assert analysis["companyName"] == "Acme Corp"
        assert analysis["type"] == "INTERVIEW_REQUEST"

    def test_analysis_requires_subject_and_body(self, test_client):
        response = test_client.post("/api/test/email-analysis", json={"subject": "Only a subject"})

        assert response.status_code == status.HTTP_400_BAD_REQUEST

    def test_analysis_failure(self, test_client):
        with patch.object(gemini_service, "generate_text", side_effect=RuntimeError("down")):
            response = test_client.post("/api/test/email-analysis", json={"subject": "S", "body": "B"})

        assert response.status_code == status.HTTP_500_INTERNAL_SERVER_ERROR
        assert response.json()["detail"] == "Failed to analyze email"
