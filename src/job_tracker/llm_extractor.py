"""
Primary extractor: Gemini ``generateContent`` over HTTPS.

The model is asked for ``{"company_name", "job_title", "status"}``. Its
answer is validated here, at the boundary, into per-field ``Resolved`` /
``Unresolved`` results so the rest of the pipeline never sees raw JSON.

Transport failures and HTTP 429 are retried (default 2 attempts total) with
a backoff sleep; once attempts are exhausted, or on any content error, an
``ExtractorError`` is raised and the caller falls back to the regex tier.
"""

import json
import logging
import random
import time
from typing import Any, Callable, Dict, Optional

import requests

from .models import UNRESOLVED, FieldResult, Resolved, Status, Unresolved, is_unresolved

log = logging.getLogger(__name__)

API_URL = "https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent"
DEFAULT_MODEL = "gemini-1.5-flash-latest"
BODY_CHAR_LIMIT = 12_000

PROMPT_STATUSES = [s for s in Status if s not in (Status.WITHDRAWN, Status.UNRESOLVED)]

_PROMPT = """\
Analyze the provided email Subject and Body for a job application tracking system.
Extract: "company_name", "job_title", and "status".
Return ONLY a single, valid JSON object: {{"company_name": "...", "job_title": "...", "status": "..."}}. No markdown.

If the email is NOT about a job application submitted by the recipient (newsletters, job alerts,
marketing), set all three fields to "{unresolved}".

1. "company_name": the HIRING company. Not the ATS (Greenhouse, Lever) and not the job board
   (LinkedIn, Indeed) unless they are the direct hirer. If unclear use "{unresolved}".
2. "job_title": the specific job title as stated in THIS email. If not restated, use "{unresolved}".
3. "status": choose EXACTLY one of: {statuses}.
   Use "Update/Other" for general updates. Use "{unresolved}" only as a last resort.

Subject: {subject}
Body:
{body}
Output JSON:
"""

class ExtractorError(Exception):
    """Primary extraction failed; callers degrade to the fallback tier."""

class RateLimitError(ExtractorError):
    pass

class TransportError(ExtractorError):
    pass

class ContentError(ExtractorError):
    pass

def api_key_looks_valid(api_key: Optional[str]) -> bool:
    return bool(api_key) and api_key.startswith("AIza") and len(api_key) > 30

def _strip_fences(text: str) -> str:
    text = text.strip()
    if text.startswith("```json"):
        text = text[7:]
    elif text.startswith("```"):
        text = text[3:]
    if text.endswith("```"):
        text = text[:-3]
    return text.strip()

def _field(value: Any) -> FieldResult:
    if not isinstance(value, str) or is_unresolved(value):
        return Unresolved()
    return Resolved(value.strip())

def parse_response(payload: Dict[str, Any]) -> Dict[str, FieldResult]:
    """Turn a generateContent response body into per-field results."""
    feedback = payload.get("promptFeedback") or {}
    if feedback.get("blockReason"):
        raise ContentError(f"prompt blocked: {feedback['blockReason']}")
    try:
        text = payload["candidates"][0]["content"]["parts"][0]["text"]
    except (KeyError, IndexError, TypeError):
        raise ContentError("response has no candidate text")
    try:
        data = json.loads(_strip_fences(text))
    except json.JSONDecodeError as e:
        raise ContentError(f"candidate text is not JSON: {e}")
    if not isinstance(data, dict) or not all(k in data for k in ("company_name", "job_title", "status")):
        raise ContentError(f"JSON missing expected fields: {str(data)[:200]}")

    status: FieldResult = Unresolved()
    parsed = Status.parse(data["status"]) if isinstance(data["status"], str) else None
    if parsed is not None and parsed is not Status.UNRESOLVED:
        status = Resolved(parsed.value)
    elif isinstance(data["status"], str) and data["status"].strip() and parsed is None:
        log.warning("Extractor returned unknown status %r", data["status"])
    return {
        "company": _field(data["company_name"]),
        "title": _field(data["job_title"]),
        "status": status,
    }

class GeminiExtractor:
    def __init__(self, api_key: str, model: str = DEFAULT_MODEL, timeout: float = 30.0,
                 max_attempts: int = 2, session: Optional[requests.Session] = None,
                 sleep: Callable[[float], None] = time.sleep):
        self.api_key = api_key
        self.model = model
        self.timeout = timeout
        self.max_attempts = max(1, int(max_attempts))
        self.session = session or requests.Session()
        self._sleep = sleep

    def _request_body(self, subject: str, body: str) -> Dict[str, Any]:
        prompt = _PROMPT.format(
            unresolved=UNRESOLVED,
            statuses=", ".join(f'"{s.value}"' for s in PROMPT_STATUSES),
            subject=subject,
            body=(body or "")[:BODY_CHAR_LIMIT],
        )
        return {
            "contents": [{"parts": [{"text": prompt}]}],
            "generationConfig": {"temperature": 0.2, "maxOutputTokens": 512, "topP": 0.95, "topK": 40},
        }

    def _call_once(self, body: Dict[str, Any]) -> Dict[str, Any]:
        try:
            resp = self.session.post(
                API_URL.format(model=self.model),
                params={"key": self.api_key},
                json=body,
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise TransportError(str(e)) from e
        if resp.status_code == 429:
            raise RateLimitError("HTTP 429")
        if resp.status_code >= 500:
            raise TransportError(f"HTTP {resp.status_code}: {resp.text[:200]}")
        if resp.status_code != 200:
            if resp.status_code == 404 and "is not found for API version" in resp.text:
                log.error("Gemini model %r not found; check extractor.model", self.model)
            raise ContentError(f"HTTP {resp.status_code}: {resp.text[:200]}")
        try:
            return resp.json()
        except ValueError as e:
            raise ContentError(f"response body is not JSON: {e}") from e

    def extract(self, subject: str, body: str) -> Dict[str, FieldResult]:
        """Return ``{"company", "title", "status"}`` field results or raise
        ``ExtractorError``."""
        if not (subject or "").strip() and not (body or "").strip():
            return {"company": Unresolved(), "title": Unresolved(), "status": Unresolved()}
        request_body = self._request_body(subject, body)
        for attempt in range(1, self.max_attempts + 1):
            try:
                payload = self._call_once(request_body)
                result = parse_response(payload)
                log.info("Gemini extraction ok (attempt %d): %s", attempt,
                         {k: getattr(v, "value", None) for k, v in result.items()})
                return result
            except RateLimitError:
                if attempt >= self.max_attempts:
                    raise
                log.warning("Gemini rate limited (attempt %d/%d), backing off", attempt, self.max_attempts)
                self._sleep(5.0 + random.uniform(0, 5.0))
            except TransportError as e:
                if attempt >= self.max_attempts:
                    raise
                log.warning("Gemini transport error (attempt %d/%d): %s", attempt, self.max_attempts, e)
                self._sleep(3.0)
        raise TransportError("retry loop exited without a response")

def build_extractor(api_key: Optional[str], block: Optional[Dict[str, Any]] = None) -> Optional[GeminiExtractor]:
    """Return a configured extractor, or None when the key is missing or
    malformed (the run then uses the regex tier only)."""
    block = block or {}
    if not block.get("enabled", True):
        log.info("Primary extractor disabled by config")
        return None
    if not api_key_looks_valid(api_key):
        log.warning("GEMINI_API_KEY missing or malformed; using regex extraction only")
        return None
    return GeminiExtractor(
        api_key=api_key,
        model=block.get("model", DEFAULT_MODEL),
        timeout=float(block.get("timeout_seconds", 30)),
        max_attempts=int(block.get("max_attempts", 2)),
    )
