import logging
from dataclasses import dataclass, field
from typing import Dict, Optional, Protocol

from .llm_extractor import ExtractorError
from .models import UNRESOLVED, FieldResult, Resolved, Status, Unresolved, is_unresolved
from .nlp_rules import classify_status, clean_entity, detect_platform, extract_company_and_title
from .settings import TrackerConfig

log = logging.getLogger(__name__)

PRIMARY = "primary"
FALLBACK = "fallback"
MISSING = "unresolved"
DEFAULTED = "default"

class Extractor(Protocol):
    def extract(self, subject: str, body: str) -> Dict[str, FieldResult]: ...

@dataclass
class ComposedFields:
    company: str
    title: str
    status: Status
    platform: str
    confidence: Dict[str, str] = field(default_factory=dict)

    @property
    def needs_manual_review(self) -> bool:
        return is_unresolved(self.company) or is_unresolved(self.title)

def _primary_fields(extractor: Optional[Extractor], subject: str, body: str) -> Dict[str, FieldResult]:
    if extractor is None:
        return {}
    try:
        return extractor.extract(subject, body)
    except ExtractorError as e:
        log.warning("Primary extractor failed, falling back for all fields: %s", e)
        return {}

def compose(subject: str, body: str, sender: str, config: TrackerConfig,
            extractor: Optional[Extractor] = None,
            default_status: Status = Status.APPLIED) -> ComposedFields:
    """Combine the primary extractor with the regex tier, field by field.

    A field the primary extractor resolved is kept; every other field is
    taken from the fallback independently.
    """
    primary = _primary_fields(extractor, subject, body)
    platform = detect_platform(sender, config)
    confidence: Dict[str, str] = {}

    company: Optional[str] = None
    title: Optional[str] = None
    c = primary.get("company", Unresolved())
    t = primary.get("title", Unresolved())
    if isinstance(c, Resolved):
        company = clean_entity(c.value)
    if isinstance(t, Resolved):
        title = clean_entity(t.value, is_title=True)

    if company is None or is_unresolved(company) or title is None or is_unresolved(title):
        fb_company, fb_title = extract_company_and_title(subject, sender, body, platform, config)
    else:
        fb_company = fb_title = UNRESOLVED

    for name, value, fb_value in (("company", company, fb_company), ("title", title, fb_title)):
        if value is not None and not is_unresolved(value):
            confidence[name] = PRIMARY
        elif not is_unresolved(fb_value):
            confidence[name] = FALLBACK
        else:
            confidence[name] = MISSING
    if confidence["company"] != PRIMARY:
        company = fb_company
    if confidence["title"] != PRIMARY:
        title = fb_title

    status: Optional[Status] = None
    s = primary.get("status", Unresolved())
    if isinstance(s, Resolved):
        status = Status.parse(s.value)
    if status is not None and status is not Status.OTHER:
        confidence["status"] = PRIMARY
    else:
        keyword_status = classify_status(body, config)
        if keyword_status is not None:
            status = keyword_status
            confidence["status"] = FALLBACK
        elif status is Status.OTHER:
            confidence["status"] = PRIMARY
        else:
            status = default_status
            confidence["status"] = DEFAULTED

    log.debug("Composed company=%r title=%r status=%s sources=%s", company, title, status.value, confidence)
    return ComposedFields(company=company, title=title, status=status, platform=platform, confidence=confidence)
