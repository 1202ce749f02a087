import os, base64, re
import logging
from datetime import datetime, timezone
from typing import List, Dict, Any, Mapping, Optional, Tuple
from google.oauth2.credentials import Credentials
from google_auth_oauthlib.flow import InstalledAppFlow
from google.auth.transport.requests import Request
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from .models import InboundMessage, PendingThread, ThreadState
from .settings import ConfigurationError

log = logging.getLogger(__name__)

CREDENTIALS_DIR = os.path.join(os.path.dirname(os.path.dirname(__file__)), "..", "credentials")
CLIENT_SECRET_FILE = os.path.join(CREDENTIALS_DIR, "client_secret.json")
TOKEN_FILE = os.path.join(CREDENTIALS_DIR, "token.json")

# Request ALL scopes once so token.json works for Gmail and Sheets
SCOPES = [
    "https://www.googleapis.com/auth/gmail.modify",
    "https://www.googleapis.com/auth/gmail.labels",
    "https://www.googleapis.com/auth/gmail.settings.basic",
    "https://www.googleapis.com/auth/spreadsheets",
    "https://www.googleapis.com/auth/drive",
]

def _ensure_creds(scopes: List[str]) -> Credentials:
    os.makedirs(CREDENTIALS_DIR, exist_ok=True)
    creds: Optional[Credentials] = None
    if os.path.exists(TOKEN_FILE):
        creds = Credentials.from_authorized_user_file(TOKEN_FILE, scopes)
    if not creds or not creds.valid:
        if creds and creds.expired and creds.refresh_token:
            creds.refresh(Request())
        else:
            if not os.path.exists(CLIENT_SECRET_FILE):
                raise ConfigurationError(f"OAuth client secret missing: {CLIENT_SECRET_FILE}")
            flow = InstalledAppFlow.from_client_secrets_file(CLIENT_SECRET_FILE, scopes)
            creds = flow.run_local_server(port=0)
        with open(TOKEN_FILE, "w", encoding="utf-8") as token:
            token.write(creds.to_json())
    return creds

def get_gmail_service():
    creds = _ensure_creds(SCOPES)
    return build("gmail", "v1", credentials=creds)

def _get_header(headers: List[Dict[str, str]], name: str) -> str:
    for h in headers:
        if h.get("name", "").lower() == name.lower():
            return h.get("value", "")
    return ""

def _decode_payload(data: str) -> str:
    # Gmail returns base64url-encoded data
    missing_padding = len(data) % 4
    if missing_padding:
        data += "=" * (4 - missing_padding)
    return base64.urlsafe_b64decode(data).decode("utf-8", errors="replace")

def _clean_text(s: str) -> str:
    s = re.sub(r"[\u200B-\u200D\uFEFF]", "", s or "")
    s = re.sub(r"[ \t]+", " ", s)
    s = re.sub(r"\s+\n", "\n", s)
    return s.strip()

def extract_plain_text(message: Dict[str, Any]) -> Tuple[str, str, str]:
    """Returns: (subject, from_email, text)"""
    payload = message.get("payload", {})
    headers = payload.get("headers", [])
    subject = _get_header(headers, "Subject")
    from_email = _get_header(headers, "From")

    plain: List[str] = []
    html: List[str] = []
    def traverse(parts):
        for p in parts:
            mime = p.get("mimeType", "")
            if "parts" in p:
                traverse(p["parts"])
            elif mime == "text/plain" and "data" in p.get("body", {}):
                plain.append(_decode_payload(p["body"]["data"]))
            elif mime == "text/html" and "data" in p.get("body", {}):
                markup = _decode_payload(p["body"]["data"])
                html.append(re.sub("<[^<]+?>", " ", markup))

    if "parts" in payload:
        traverse(payload["parts"])
        # multipart/alternative carries the same text twice
        body_text = "\n".join(plain or html)
    else:
        body = payload.get("body", {})
        body_text = _decode_payload(body["data"]) if "data" in body else ""
        if payload.get("mimeType") == "text/html":
            body_text = re.sub("<[^<]+?>", " ", body_text)

    # Clean
    subject = _clean_text(subject)
    from_email = _clean_text(from_email)
    body_text = _clean_text(body_text)
    return subject, from_email, body_text

def to_inbound(message: Dict[str, Any]) -> InboundMessage:
    subject, sender, body = extract_plain_text(message)
    internal_ms = int(message.get("internalDate", "0"))
    return InboundMessage(
        message_id=message["id"],
        thread_id=message.get("threadId", ""),
        subject=subject,
        body=body,
        sender=sender,
        date=datetime.fromtimestamp(internal_ms / 1000, tz=timezone.utc),
    )

class GmailMessageSource:
    """Pending-thread queue backed by three mutually exclusive Gmail labels."""

    def __init__(self, service, label_names: Mapping[str, str]):
        self.service = service
        self.label_names = dict(label_names)
        self._label_ids: Dict[str, str] = {}

    def _existing_labels(self) -> Dict[str, str]:
        resp = self.service.users().labels().list(userId="me").execute()
        return {l["name"]: l["id"] for l in resp.get("labels", [])}

    def resolve_labels(self) -> Dict[str, str]:
        existing = self._existing_labels()
        missing = [name for name in self.label_names.values() if name not in existing]
        if missing:
            raise ConfigurationError(f"Gmail labels not found: {', '.join(missing)}; run `job-tracker setup`")
        self._label_ids = {state: existing[name] for state, name in self.label_names.items()}
        return self._label_ids

    def ensure_labels(self) -> Dict[str, str]:
        existing = self._existing_labels()
        for name in self.label_names.values():
            if name in existing:
                log.debug("Label %r already exists", name)
                continue
            created = self.service.users().labels().create(
                userId="me",
                body={"name": name, "labelListVisibility": "labelShow", "messageListVisibility": "show"},
            ).execute()
            existing[name] = created["id"]
            log.info("Created Gmail label %r", name)
        return self.resolve_labels()

    def ensure_filter(self, query: str) -> bool:
        """Create the Gmail filter that queues matching mail under the pending
        label and skips the inbox. Returns False when it already exists."""
        if not self._label_ids:
            self.resolve_labels()
        pending_id = self._label_ids[ThreadState.PENDING.value]
        filters = self.service.users().settings().filters()
        resp = filters.list(userId="me").execute()
        for f in resp.get("filter", []):
            if f.get("criteria", {}).get("query") == query and \
                    pending_id in f.get("action", {}).get("addLabelIds", []):
                log.debug("Gmail filter already exists (%s)", f.get("id"))
                return False
        filters.create(userId="me", body={
            "criteria": {"query": query},
            "action": {"addLabelIds": [pending_id], "removeLabelIds": ["INBOX"]},
        }).execute()
        log.info("Created Gmail filter for %r", query)
        return True

    def pending_threads(self, max_threads: int) -> List[PendingThread]:
        if not self._label_ids:
            self.resolve_labels()
        review_id = self._label_ids[ThreadState.NEEDS_REVIEW.value]
        resp = self.service.users().threads().list(
            userId="me", labelIds=[self._label_ids[ThreadState.PENDING.value]], maxResults=max_threads
        ).execute()
        threads: List[PendingThread] = []
        for ref in resp.get("threads", []):
            try:
                full = self.service.users().threads().get(userId="me", id=ref["id"], format="full").execute()
            except HttpError as e:
                log.warning("Could not fetch thread %s: %s", ref["id"], e)
                continue
            messages = full.get("messages", [])
            flagged = any(review_id in m.get("labelIds", []) for m in messages)
            threads.append(PendingThread(
                thread_id=ref["id"],
                messages=[to_inbound(m) for m in messages],
                state=ThreadState.NEEDS_REVIEW if flagged else ThreadState.PENDING,
            ))
        return threads

    def apply_state(self, thread_id: str, state: ThreadState) -> bool:
        if state is ThreadState.PENDING:
            return False
        if not self._label_ids:
            self.resolve_labels()
        add = self._label_ids[state.value]
        # needs-review is never taken off by the pipeline
        remove = [self._label_ids[ThreadState.PENDING.value]]
        if state is ThreadState.NEEDS_REVIEW:
            remove.append(self._label_ids[ThreadState.DONE.value])
        try:
            self.service.users().threads().modify(
                userId="me", id=thread_id, body={"addLabelIds": [add], "removeLabelIds": remove}
            ).execute()
        except HttpError as e:
            log.error("Failed to label thread %s as %s: %s", thread_id, state.value, e)
            return False
        log.info("Thread %s -> %s", thread_id, state.value)
        return True
