from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional, Union

class Status(str, Enum):
    APPLIED = "Applied"
    VIEWED = "Viewed"
    ASSESSMENT = "Assessment"
    INTERVIEW = "Interview"
    OFFER = "Offer"
    REJECTED = "Rejected"
    ACCEPTED = "Accepted"
    WITHDRAWN = "Withdrawn"
    OTHER = "Update/Other"
    UNRESOLVED = "N/A - Manual Review"

    @classmethod
    def parse(cls, text: Optional[str]) -> Optional["Status"]:
        if text is None:
            return None
        if isinstance(text, Status):
            return text
        key = str(text).strip().lower()
        if not key:
            return None
        return _STATUS_ALIASES.get(key)

# Long-form labels written by earlier versions of the sheet
_STATUS_ALIASES: Dict[str, Status] = {s.value.lower(): s for s in Status}
_STATUS_ALIASES.update({
    "application viewed": Status.VIEWED,
    "assessment/screening": Status.ASSESSMENT,
    "interview scheduled": Status.INTERVIEW,
    "offer received": Status.OFFER,
    "offer accepted": Status.ACCEPTED,
    "n/a": Status.UNRESOLVED,
    "other": Status.OTHER,
})

UNRESOLVED = Status.UNRESOLVED.value
DEFAULT_PLATFORM = "Other"

def is_unresolved(value: Optional[str]) -> bool:
    if value is None:
        return True
    v = str(value).strip().lower()
    return v in ("", "n/a", UNRESOLVED.lower())

@dataclass(frozen=True)
class Resolved:
    value: str

@dataclass(frozen=True)
class Unresolved:
    pass

@dataclass(frozen=True)
class ExtractionError:
    reason: str

FieldResult = Union[Resolved, Unresolved, ExtractionError]

@dataclass
class ApplicationRecord:
    company: str
    title: str
    current_status: Status
    peak_status: Status
    first_event_time: Optional[datetime]
    last_event_time: Optional[datetime]
    source_message_id: str
    platform: str = DEFAULT_PLATFORM
    subject: str = ""
    permalink: str = ""
    processed_at: Optional[datetime] = None
    id: Optional[int] = None    # sheet row number

    @property
    def needs_manual_review(self) -> bool:
        return is_unresolved(self.company) or is_unresolved(self.title)

@dataclass
class InboundMessage:
    message_id: str
    thread_id: str
    subject: str
    body: str
    sender: str
    date: datetime

@dataclass
class InboundEvent:
    message_id: str
    thread_id: str
    subject: str
    body_text: str
    sender: str
    observed_at: datetime
    company: str = UNRESOLVED
    title: str = UNRESOLVED
    status: Optional[Status] = None
    platform: str = DEFAULT_PLATFORM
    confidence: Dict[str, str] = field(default_factory=dict)

    @property
    def sender_domain(self) -> str:
        at = self.sender.rfind("@")
        if at == -1:
            return ""
        return self.sender[at + 1:].strip(" >").lower()

    @property
    def permalink(self) -> str:
        return f"https://mail.google.com/mail/u/0/#inbox/{self.message_id}"

    @property
    def needs_manual_review(self) -> bool:
        return is_unresolved(self.company) or is_unresolved(self.title)

class ThreadState(str, Enum):
    PENDING = "pending"
    DONE = "done"
    NEEDS_REVIEW = "needs-review"

@dataclass
class PendingThread:
    thread_id: str
    messages: List[InboundMessage]
    # NEEDS_REVIEW when a human re-queued a thread that already failed once
    state: ThreadState = ThreadState.PENDING

def advance(state: ThreadState, succeeded: bool) -> ThreadState:
    """Fold one message outcome into a thread's workflow state.

    Only forward moves are allowed and needs-review is sticky: once any
    message in the thread failed, later successes do not clear it.
    """
    if state is ThreadState.NEEDS_REVIEW:
        return state
    if not succeeded:
        return ThreadState.NEEDS_REVIEW
    return ThreadState.DONE
