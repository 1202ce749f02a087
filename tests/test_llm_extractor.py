import json

import pytest
import requests

from job_tracker import llm_extractor as llm
from job_tracker.models import Resolved, Status, Unresolved

API_KEY = "AIza" + "x" * 35

def _payload(data, fenced=False):
    text = json.dumps(data)
    if fenced:
        text = f"```json\n{text}\n```"
    return {"candidates": [{"content": {"parts": [{"text": text}]}}]}

class FakeResponse:
    def __init__(self, status_code, payload=None, text=""):
        self.status_code = status_code
        self._payload = payload
        self.text = text or json.dumps(payload or {})

    def json(self):
        if self._payload is None:
            raise ValueError("no json")
        return self._payload

class FakeSession:
    def __init__(self, *responses):
        self.responses = list(responses)
        self.calls = []

    def post(self, url, params=None, json=None, timeout=None):
        self.calls.append((url, params, json))
        item = self.responses.pop(0)
        if isinstance(item, Exception):
            raise item
        return item

GOOD = {"company_name": "Acme", "job_title": "Data Analyst", "status": "Interview"}

def test_parse_response():
    result = llm.parse_response(_payload(GOOD))
    assert result == {
        "company": Resolved("Acme"),
        "title": Resolved("Data Analyst"),
        "status": Resolved(Status.INTERVIEW.value),
    }

def test_parse_fenced_response():
    assert llm.parse_response(_payload(GOOD, fenced=True))["company"] == Resolved("Acme")

def test_sentinel_and_unknown_values_are_unresolved():
    result = llm.parse_response(_payload({"company_name": "N/A", "job_title": "", "status": "Ghosted"}))
    assert result == {"company": Unresolved(), "title": Unresolved(), "status": Unresolved()}

@pytest.mark.parametrize("payload", [
    {"promptFeedback": {"blockReason": "SAFETY"}},
    {"candidates": []},
    _payload({"company_name": "Acme"}),
    {"candidates": [{"content": {"parts": [{"text": "not json"}]}}]},
])
def test_bad_payloads_raise_content_error(payload):
    with pytest.raises(llm.ContentError):
        llm.parse_response(payload)

def test_rate_limit_is_retried():
    session = FakeSession(FakeResponse(429, text="slow down"), FakeResponse(200, _payload(GOOD)))
    sleeps = []
    extractor = llm.GeminiExtractor(API_KEY, session=session, sleep=sleeps.append)
    result = extractor.extract("Interview invite", "We'd like to talk.")
    assert result["status"] == Resolved("Interview")
    assert len(session.calls) == 2
    assert len(sleeps) == 1 and sleeps[0] >= 5.0
    url, params, body = session.calls[0]
    assert url.endswith("gemini-1.5-flash-latest:generateContent")
    assert params == {"key": API_KEY}
    assert "Interview invite" in body["contents"][0]["parts"][0]["text"]

def test_retries_exhausted():
    session = FakeSession(FakeResponse(429, text="a"), FakeResponse(429, text="b"))
    extractor = llm.GeminiExtractor(API_KEY, session=session, sleep=lambda s: None)
    with pytest.raises(llm.RateLimitError):
        extractor.extract("s", "b")

def test_transport_error_then_success():
    session = FakeSession(requests.ConnectionError("reset"), FakeResponse(200, _payload(GOOD)))
    extractor = llm.GeminiExtractor(API_KEY, session=session, sleep=lambda s: None)
    assert extractor.extract("s", "b")["company"] == Resolved("Acme")

def test_client_error_is_not_retried():
    session = FakeSession(FakeResponse(400, text="bad request"))
    extractor = llm.GeminiExtractor(API_KEY, max_attempts=3, session=session, sleep=lambda s: None)
    with pytest.raises(llm.ContentError):
        extractor.extract("s", "b")
    assert len(session.calls) == 1

def test_empty_email_skips_the_call():
    session = FakeSession()
    result = llm.GeminiExtractor(API_KEY, session=session).extract("", "  ")
    assert result["company"] == Unresolved()
    assert session.calls == []

def test_build_extractor():
    assert llm.build_extractor(None) is None
    assert llm.build_extractor("short") is None
    assert llm.build_extractor(API_KEY, {"enabled": False}) is None
    extractor = llm.build_extractor(API_KEY, {"model": "gemini-pro", "max_attempts": 4})
    assert extractor.model == "gemini-pro"
    assert extractor.max_attempts == 4
