import os, re, json, yaml
from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, Mapping, Optional, Tuple
from dotenv import load_dotenv

from .models import Status

CONFIG_PATH = os.environ.get(
    "JT_CONFIG",
    os.path.join(os.path.dirname(os.path.dirname(__file__)), "..", "config.yaml")
)
STATE_PATH = os.environ.get(
    "JT_STATE",
    os.path.join(os.path.dirname(os.path.dirname(__file__)), "..", "data", "state.json")
)

load_dotenv()

class ConfigurationError(RuntimeError):
    """A precondition for the run is missing (labels, sheet, config)."""

_PUNCT = re.compile(r"[.,!?;:()\[\]{}'\"“”‘’\-–—]")

def normalize_phrase(text: str) -> str:
    """Lowercase, punctuation to spaces, collapsed whitespace. Email bodies and
    status keywords both go through this before matching."""
    text = _PUNCT.sub(" ", (text or "").lower())
    return re.sub(r"\s+", " ", text).strip()

def _keyword_sets(items) -> Tuple[Tuple[Status, Tuple[str, ...]], ...]:
    sets = []
    for status, words in items:
        phrases = tuple(p for p in (normalize_phrase(w) for w in words) if p)
        sets.append((status, phrases))
    return tuple(sets)

DEFAULT_HIERARCHY = {
    Status.UNRESOLVED: -1,
    Status.OTHER: 0,
    Status.APPLIED: 1,
    Status.VIEWED: 2,
    Status.ASSESSMENT: 3,
    Status.INTERVIEW: 4,
    Status.OFFER: 5,
    Status.REJECTED: 5,
    Status.WITHDRAWN: 5,
    Status.ACCEPTED: 6,
}

DEFAULT_KEYWORDS = {
    Status.OFFER: ("pleased to offer", "offer of employment", "job offer", "formally offer you the position"),
    Status.INTERVIEW: ("invitation to interview", "schedule an interview", "interview request", "like to speak with you",
                       "next steps involve an interview", "interview availability"),
    Status.ASSESSMENT: ("assessment", "coding challenge", "online test", "technical screen",
                        "next step is a skill assessment", "take a short test"),
    Status.VIEWED: ("application was viewed", "your application was viewed by", "recruiter viewed your application",
                    "company viewed your application", "viewed your profile for the role"),
    Status.REJECTED: ("unfortunately", "regret to inform", "not moving forward", "decided not to proceed",
                      "other candidates", "filled the position", "thank you for your time but"),
}

DEFAULT_IGNORED_DOMAINS = (
    "greenhouse.io", "lever.co", "myworkday.com", "icims.com", "ashbyhq.com", "smartrecruiters.com",
    "bamboohr.com", "taleo.net", "gmail.com", "google.com", "example.com",
)

DEFAULT_PLATFORM_DOMAINS = {
    "linkedin.com": "LinkedIn",
    "indeed.com": "Indeed",
    "wellfound.com": "Wellfound",
    "angel.co": "Wellfound",
}

LABEL_PARENT = "Job Application Tracker"
DEFAULT_LABELS = {
    "pending": f"{LABEL_PARENT}/To Process",
    "done": f"{LABEL_PARENT}/Processed",
    "needs-review": f"{LABEL_PARENT}/Manual Review Needed",
}

@dataclass(frozen=True)
class TrackerConfig:
    hierarchy: Mapping[Status, int] = field(default_factory=lambda: dict(DEFAULT_HIERARCHY))
    excluded_from_peak: FrozenSet[Status] = frozenset({Status.REJECTED, Status.ACCEPTED, Status.UNRESOLVED, Status.OTHER})
    terminal_statuses: FrozenSet[Status] = frozenset({Status.REJECTED, Status.ACCEPTED, Status.WITHDRAWN})
    stale_weeks: int = 7
    max_threads: int = 15
    max_messages: int = 20
    max_runtime_seconds: float = 330.0
    ignored_domains: FrozenSet[str] = frozenset(DEFAULT_IGNORED_DOMAINS)
    platform_domains: Mapping[str, str] = field(default_factory=lambda: dict(DEFAULT_PLATFORM_DOMAINS))
    # ordered: first matching set wins
    status_keywords: Tuple[Tuple[Status, Tuple[str, ...]], ...] = _keyword_sets(DEFAULT_KEYWORDS.items())
    labels: Mapping[str, str] = field(default_factory=lambda: dict(DEFAULT_LABELS))

def _status(name: str) -> Status:
    s = Status.parse(name)
    if s is None:
        raise ConfigurationError(f"Unknown status in config: {name!r}")
    return s

def build_tracker_config(block: Optional[Dict[str, Any]]) -> TrackerConfig:
    block = block or {}
    kw: Dict[str, Any] = {}
    if "status_hierarchy" in block:
        kw["hierarchy"] = {_status(k): int(v) for k, v in block["status_hierarchy"].items()}
    if "excluded_from_peak" in block:
        kw["excluded_from_peak"] = frozenset(_status(s) for s in block["excluded_from_peak"])
    if "terminal_statuses" in block:
        kw["terminal_statuses"] = frozenset(_status(s) for s in block["terminal_statuses"])
    for key in ("stale_weeks", "max_threads", "max_messages"):
        if key in block:
            kw[key] = int(block[key])
    if "max_runtime_seconds" in block:
        kw["max_runtime_seconds"] = float(block["max_runtime_seconds"])
    if "ignored_domains" in block:
        kw["ignored_domains"] = frozenset(d.lower() for d in block["ignored_domains"])
    if "platform_domains" in block:
        kw["platform_domains"] = {k.lower(): v for k, v in block["platform_domains"].items()}
    if "status_keywords" in block:
        kw["status_keywords"] = _keyword_sets(
            (_status(name), words) for name, words in block["status_keywords"].items())
    if "labels" in block:
        labels = dict(DEFAULT_LABELS)
        labels.update(block["labels"])
        kw["labels"] = labels
    return TrackerConfig(**kw)

@dataclass
class Settings:
    app: Dict[str, Any]
    gmail: Dict[str, Any]
    extractor: Dict[str, Any]
    sheets: Dict[str, Any]
    tracker: TrackerConfig
    gemini_api_key: Optional[str] = os.environ.get("GEMINI_API_KEY")

def load_settings(path: Optional[str] = None) -> Settings:
    path = path or CONFIG_PATH
    if not os.path.exists(path):
        raise ConfigurationError(f"Config file not found: {path}")
    with open(path, "r", encoding="utf-8") as f:
        cfg = yaml.safe_load(f) or {}
    if not (cfg.get("sheets") or {}).get("spreadsheet_name"):
        raise ConfigurationError("sheets.spreadsheet_name is required")
    return Settings(
        app=cfg.get("app") or {},
        gmail=cfg.get("gmail") or {},
        extractor=cfg.get("extractor") or {},
        sheets=cfg["sheets"],
        tracker=build_tracker_config(cfg.get("tracker")),
        gemini_api_key=os.environ.get("GEMINI_API_KEY"),
    )

def load_state() -> dict:
    if not os.path.exists(STATE_PATH):
        return {"processed_ids": []}
    with open(STATE_PATH, "r", encoding="utf-8") as f:
        return json.load(f)

def save_state(state: dict) -> None:
    os.makedirs(os.path.dirname(STATE_PATH), exist_ok=True)
    with open(STATE_PATH, "w", encoding="utf-8") as f:
        json.dump(state, f, indent=2)
