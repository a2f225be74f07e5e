import json
import logging
import re
from functools import lru_cache
from typing import Optional

import google.generativeai as genai
from google.api_core import exceptions as google_exceptions

from .. import schemas
from ..config.settings import get_settings
from .rate_limiter import BackoffRateLimiter

logger = logging.getLogger(__name__)

settings = get_settings()

# Bodies longer than this are truncated before being sent to the model.
MAX_BODY_CHARS = 8000

RATE_LIMIT_ERRORS = (google_exceptions.ResourceExhausted, google_exceptions.TooManyRequests)

llm_rate_limiter = BackoffRateLimiter(
    min_delay=settings.llm_min_delay_seconds,
    max_retries=settings.llm_max_retries,
    max_backoff=settings.llm_max_backoff_seconds,
)


class EmailAnalysisError(RuntimeError):
    """The LLM could not be reached or returned something unusable."""


JOB_EMAIL_ANALYSIS_PROMPT = """
Analyze this email for job application related content.

TASK:
1. Identify if this is a job-related email
2. Determine the exact type of email:
   - INTERVIEW_REQUEST if it contains ANY of:
     * Invitations to interviews/screenings
     * Scheduling interview times
     * Next steps in interview process
     * Technical screening requests
     * References to "next round" or "next step"
   - APPLICATION if it's an application confirmation
   - REJECTION if it's a rejection
   - OTHER if none of the above
3. Extract the exact company name - look for patterns like "at [Company]", "opportunities at [Company]", "careers at [Company]"
4. Extract the exact role/position title - look for patterns like "position of [Role]", "the [Role] position", "for the [Role]"

IMPORTANT PATTERNS TO RECOGNIZE:
- Interview requests often contain:
  * "invite you to", "would like to schedule", "next step", "next round"
  * "technical screen", "technical interview", "phone screen"
  * "schedule", "availability", "times that work"
- Application confirmations often contain:
  * "received your submission", "received your application", "successfully received"
- Rejections often contain:
  * "unfortunately", "regret to inform", "not moving forward", "other candidates"

Return a JSON object with these fields:
- isJobRelated (boolean): is this email related to a job application?
- type: either "INTERVIEW_REQUEST", "APPLICATION", "REJECTION", or "OTHER"
- companyName: the exact company name found (do not abbreviate or modify it)
- roleTitle: the exact role title as mentioned in the email
- confidence: number between 0 and 1 indicating confidence in this analysis
- location: the job location if mentioned, otherwise null
- nextSteps: a short description of any next steps, otherwise null
- interviewDate: interview date in ISO format if one is proposed, otherwise null

IMPORTANT:
1. Return ONLY the raw JSON object, no markdown formatting
2. Never return "Unknown" for company or role if they are explicitly mentioned
3. Preserve exact company names and role titles as they appear
4. For confidence: use 0.9+ for clear matches
5. ANY mention of interviews, screenings, or next steps should be classified as INTERVIEW_REQUEST
6. Prioritize INTERVIEW_REQUEST over APPLICATION if there's any mention of interviews

---
{headers}Subject: "{subject}"
Body: "{body}"
---
"""

_FENCE_RE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)
_THINK_RE = re.compile(r"<think>.*?</think>", re.DOTALL | re.IGNORECASE)


def build_analysis_prompt(subject: str, body: str, sender: Optional[str] = None, date: Optional[str] = None) -> str:
    headers = ""
    if sender:
        headers += f"From: {sender}\n"
    if date:
        headers += f"Date: {date}\n"
    return JOB_EMAIL_ANALYSIS_PROMPT.format(
        headers=headers,
        subject=subject or "",
        body=(body or "")[:MAX_BODY_CHARS],
    )


def default_analysis() -> schemas.EmailAnalysis:
    return schemas.EmailAnalysis()


def parse_analysis_response(response_text: str) -> schemas.EmailAnalysis:
    """
    Parse the model's reply into an EmailAnalysis.

    Markdown code fences and reasoning blocks are stripped; if the reply still is
    not a bare object, the outermost ``{...}`` span is used.

    Raises:
        ValueError: if no JSON object can be recovered or it fails validation.
    """
    if not response_text or not response_text.strip():
        raise ValueError("Empty response from model")

    cleaned = _THINK_RE.sub("", response_text).strip()
    cleaned = _FENCE_RE.sub("", cleaned).strip()

    try:
        data = json.loads(cleaned)
    except json.JSONDecodeError:
        start, end = cleaned.find("{"), cleaned.rfind("}")
        if start == -1 or end <= start:
            raise ValueError(f"No JSON object in model response: {response_text[:200]!r}")
        try:
            data = json.loads(cleaned[start:end + 1])
        except json.JSONDecodeError as e:
            raise ValueError(f"Invalid JSON in model response: {e}") from e

    if isinstance(data, list) and data:
        data = data[0]
    if not isinstance(data, dict):
        raise ValueError("Model response is not a JSON object")

    return schemas.EmailAnalysis.model_validate(data)


@lru_cache()
def get_model():
    if not settings.gemini_api_key:
        raise EmailAnalysisError("GEMINI_API_KEY is not configured")
    genai.configure(api_key=settings.gemini_api_key)
    return genai.GenerativeModel(model_name=settings.gemini_model_name)


def generate_text(prompt: str) -> str:
    response = get_model().generate_content(
        prompt,
        generation_config={"temperature": 0.1, "top_p": 0.95, "max_output_tokens": 1024},
    )
    return response.text


def analyze_email(subject: str, body: str, limiter: Optional[BackoffRateLimiter] = None) -> schemas.EmailAnalysis:
    """
    Classify an email with the LLM.

    Rate-limit replies are retried with exponential backoff. Any other failure,
    including an unparseable reply, yields the default "not job related" analysis
    so a single bad email never aborts webhook processing.
    """
    limiter = limiter or llm_rate_limiter
    prompt = build_analysis_prompt(subject, body)

    while True:
        limiter.wait()
        try:
            response_text = generate_text(prompt)
        except RATE_LIMIT_ERRORS as e:
            if limiter.can_retry():
                limiter.record_retry()
                continue
            logger.error("LLM rate limit retries exhausted: %s", e)
            limiter.reset()
            return default_analysis()
        except Exception as e:
            logger.error("Failed to analyze email with Gemini: %s", e)
            return default_analysis()

        limiter.reset()
        try:
            return parse_analysis_response(response_text)
        except ValueError as e:
            logger.error("Failed to parse Gemini response: %s", e)
            return default_analysis()


def analyze_email_strict(content: schemas.EmailContent) -> schemas.EmailAnalysis:
    """Like analyze_email, but surfaces failures as EmailAnalysisError."""
    prompt = build_analysis_prompt(content.subject, content.body, content.from_address, content.date)
    try:
        response_text = generate_text(prompt)
        return parse_analysis_response(response_text)
    except EmailAnalysisError:
        raise
    except Exception as e:
        logger.error("Error analyzing email with Gemini: %s", e)
        raise EmailAnalysisError("Failed to analyze email with Gemini API.") from e
