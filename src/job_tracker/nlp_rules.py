import logging
import re
from email.utils import parseaddr
from typing import Optional, Tuple

from .models import DEFAULT_PLATFORM, UNRESOLVED, Status, is_unresolved
from .settings import TrackerConfig, normalize_phrase

log = logging.getLogger(__name__)

# (pattern, title group, company group, alternate company group)
SUBJECT_PATTERNS = [
    (re.compile(r"Application for(?: the)?\s+(.+?)\s+at\s+([^-:|–—]+)", re.I), 1, 2, 0),
    (re.compile(r"Invite(?:.*?)(?:to|for)(?: an)? interview(?:.*?)\sfor\s+(?:the\s)?(.+?)(?:\s+at\s+([^-:|–—]+))?$", re.I), 1, 2, 0),
    (re.compile(r"Your application for(?: the)?\s+(.+?)\s+at\s+([^-:|–—]+)", re.I), 1, 2, 0),
    (re.compile(r"Regarding your application for\s+(.+?)(?:\s-\s(.*?))?(?:\s@\s(.*?))?$", re.I), 1, 3, 2),   # Greenhouse
    (re.compile(r"^(?:Update on|Your Application to|Thank you for applying to)\s+([^-:|–—]+?)(?:\s*-\s*([^-:|–—]+))?$", re.I), 2, 1, 0),   # Lever
    (re.compile(r"applying to\s+(.+?)\s+at\s+([^-:|–—]+)", re.I), 1, 2, 0),
    (re.compile(r"interest in the\s+(.+?)\s+role(?:\s+at\s+([^-:|–—]+))?", re.I), 1, 2, 0),
    (re.compile(r"update on your\s+(.+?)\s+app(?:lication)?(?:\s+at\s+([^-:|–—]+))?", re.I), 1, 2, 0),
    (re.compile(r"application was sent to\s+([^-:|–—]+)$", re.I), 0, 1, 0),   # LinkedIn
]

WELLFOUND_SUBJECT_PATTERNS = [
    re.compile(r"update from (.*?)(?: \|| at |$)", re.I),
    re.compile(r"application to (.*?)(?: successfully| at |$)", re.I),
    re.compile(r"New introduction from (.*?)(?: for |$)", re.I),
]
WELLFOUND_MARKER = "if there's a match, we will make an email introduction."

ROLE_WORDS = re.compile(
    r"\b(engineer|manager|analyst|developer|specialist|lead|director|coordinator|architect|consultant|"
    r"designer|recruiter|associate|intern)\b", re.I)

# capitalised word run after the lead phrase: "position at Acme Corp."
BODY_COMPANY = re.compile(
    r"(?i:applying to|application with|interview with|position at|role at|opportunity at|"
    r"Thank you for your interest in working at)\s+"
    r"([A-Z][\w&'-]*(?:[ \t]+(?:[A-Z][\w&'-]*|&))*)")
BODY_TITLE = re.compile(
    r"(?:application for the|position of|role of|applying for the|interview for the|title:)\s+"
    r"([A-Za-z][\w /&'-]*?)(?=\s*\(|\s+(?:at|with|position|role)\b|[.,\n(]|$)", re.I)
BODY_SCAN_CHARS = 1500

DOMAIN_PREFIX = re.compile(
    r"^(?:careers|jobs|recruiting|apply|hr|talent|notification|notifications|team|hello|no-reply|noreply)[.-]", re.I)
DOMAIN_SUFFIX = re.compile(
    r"\.(?:com|org|net|io|co|ai|dev|xyz|tech|ca|uk|de|fr|app|eu|us|info|biz|work|agency|careers|group|global|"
    r"inc|llc|ltd|corp|gmbh)$", re.I)

SENDER_ATS_NOISE = re.compile(
    r"\|\s*(?:greenhouse|lever|wellfound|workday|ashby|icims|smartrecruiters|taleo|bamboohr|recruiterbox|jazzhr|"
    r"workable|breezyhr|notion)\b", re.I)
SENDER_VIA = re.compile(r"\s*(?:via Wellfound|via LinkedIn|via Indeed|from Greenhouse|from Lever|Careers at|Hiring at)\b", re.I)
SENDER_GENERIC = re.compile(
    r"\s*\b(?:Careers|Recruiting|Recruitment|Hiring Team|Hiring|Talent Acquisition|Talent|HR|Team|Notifications?|"
    r"Jobs?|Updates?|Apply|Hello|No-?Reply|Support|Info|Admin|Department)\b", re.I)
SENDER_LEGAL = re.compile(
    r"[|,_.\s]+(?:Inc\.?|LLC\.?|Ltd\.?|Corp\.?|GmbH|Solutions|Services|Group|Global|Technologies|Labs|Studio|Ventures)?$", re.I)
SENDER_STOPWORDS = re.compile(r"^(?:noreply|no-reply|jobs|careers|support|info|admin|hr|talent|recruiting|team|hello)$", re.I)

def _sender_address(sender: str) -> str:
    return parseaddr(sender or "")[1].lower()

def detect_platform(sender: str, config: TrackerConfig) -> str:
    addr = _sender_address(sender)
    domain = addr.split("@")[-1] if "@" in addr else ""
    for key, platform in config.platform_domains.items():
        if key in domain:
            return platform
    return DEFAULT_PLATFORM

def company_from_domain(sender: str, config: TrackerConfig) -> Optional[str]:
    addr = _sender_address(sender)
    parts = addr.split("@")
    if len(parts) != 2 or not parts[1]:
        return None
    domain = parts[1]
    if any(domain == d or domain.endswith("." + d) for d in config.ignored_domains):
        return None
    while True:
        stripped = DOMAIN_SUFFIX.sub("", domain)
        if stripped == domain:
            break
        domain = stripped
    while True:
        stripped = DOMAIN_PREFIX.sub("", domain)
        if stripped == domain:
            break
        domain = stripped
    # registrable label only: "eu.acme" -> "acme"
    domain = domain.split(".")[-1]
    words = [w for w in re.split(r"[^a-z0-9]+", domain) if w]
    name = " ".join(w[:1].upper() + w[1:] for w in words)
    return name or None

def company_from_sender_name(sender: str) -> Optional[str]:
    name = parseaddr(sender or "")[0].strip().strip('"')
    if not name or "@" in name or len(name) < 2:
        return None
    name = SENDER_ATS_NOISE.sub("", name)
    name = SENDER_VIA.sub("", name)
    name = SENDER_GENERIC.sub("", name)
    name = SENDER_LEGAL.sub("", name).strip()
    name = re.sub(r"^(?:The|A)\s+", "", name, flags=re.I).strip()
    if len(name) > 1 and not SENDER_STOPWORDS.match(name):
        return name
    return None

def clean_entity(text: Optional[str], is_title: bool = False, strip_legal: bool = True) -> str:
    if not text or is_unresolved(text) or text in (Status.APPLIED.value, DEFAULT_PLATFORM):
        return UNRESOLVED
    cleaned = text
    if is_title:
        cleaned = re.sub(r"JR\d+\s*[-–—]?\s*", "", cleaned, flags=re.I)
        cleaned = re.sub(r"\(Senior\)", "Senior", cleaned, flags=re.I)
        cleaned = re.sub(r"\(.*?(?:remote|hybrid|onsite|contract|part-time|full-time|intern|co-op|stipend|urgent|hiring|"
                         r"opening|various locations).*?\)", "", cleaned, flags=re.I)
        cleaned = re.sub(r"[-–—:]\s*(?:remote|hybrid|onsite|contract|part-time|full-time|intern|co-op|various locations)\s*$",
                         "", cleaned, flags=re.I)
    cleaned = re.split(r"[\n\r#(]| - ", cleaned)[0]
    cleaned = cleaned.strip()
    if strip_legal:
        cleaned = re.sub(r" (?:inc|llc|ltd|corp|gmbh)[.,]?$", "", cleaned, flags=re.I)
    cleaned = re.sub(r"[,\"']+$", "", cleaned)
    cleaned = re.sub(r"^(?:The|A)\s+", "", cleaned, flags=re.I)
    cleaned = re.sub(r"[‘’‚‛′‵]", "'", cleaned)
    cleaned = re.sub(r"[“”„‟″‶]", '"', cleaned)
    cleaned = re.sub(r"&amp;", "&", cleaned, flags=re.I).replace("&nbsp;", " ").replace("\u00a0", " ")
    cleaned = re.sub(r"\s+", " ", cleaned).strip()
    cleaned = re.sub(r"^[-\s#*.,]+|[,\s]+$", "", cleaned)
    return UNRESOLVED if len(cleaned) < 2 else cleaned

def _from_subject(subject: str) -> Tuple[Optional[str], Optional[str]]:
    company: Optional[str] = None
    title: Optional[str] = None
    for pattern, t_idx, c_idx, c_alt in SUBJECT_PATTERNS:
        m = pattern.search(subject)
        if not m:
            continue
        log.debug("Matched subject pattern %s", pattern.pattern)
        m_title = m.group(t_idx).strip() if t_idx and m.group(t_idx) else None
        m_company = m.group(c_idx).strip() if c_idx and m.group(c_idx) else None
        if not m_company and c_alt and m.group(c_alt):
            m_company = m.group(c_alt).strip()
        # Lever subjects are "Company - Title" or "Title - Company"
        if c_idx == 1 and t_idx == 2 and m_company and m_title:
            if ROLE_WORDS.search(m_company) and not ROLE_WORDS.search(m_title):
                m_company, m_title = m_title, m_company
        if m_title and not title:
            title = m_title
        if m_company and not company:
            company = m_company
        if company and title:
            break
    return company, title

def _wellfound(subject: str, sender: str, body: str) -> Tuple[Optional[str], Optional[str]]:
    company = title = None
    for pattern in WELLFOUND_SUBJECT_PATTERNS:
        m = pattern.search(subject)
        if m and m.group(1):
            company = m.group(1).strip()
            break
    if "team@hi.wellfound.com" in (sender or "").lower():
        idx = body.lower().find(WELLFOUND_MARKER)
        if idx != -1:
            rest = body[idx + len(WELLFOUND_MARKER):]
            m = re.search(r"^\s*\*\s*([A-Za-z\s.,:&'/-]+?)(?:\s*\(| at | \n|$)", rest, flags=re.M)
            if m:
                title = m.group(1).strip()
    return company, title

def extract_company_and_title(subject: str, sender: str, body: str, platform: str,
                              config: TrackerConfig) -> Tuple[str, str]:
    """Regex fallback for company/title. Unresolvable fields come back as the
    manual-review sentinel."""
    subject = subject or ""
    body = body or ""
    company: Optional[str] = None
    title: Optional[str] = None

    if platform == "Wellfound" and body:
        company, title = _wellfound(subject, sender, body)

    s_company, s_title = _from_subject(subject)
    company = company or s_company
    title = title or s_title

    if not company:
        company = company_from_sender_name(sender)

    if (not company or not title) and body:
        head = re.sub(r"<[^>]+>", " ", body[:BODY_SCAN_CHARS])
        if not company:
            m = BODY_COMPANY.search(head)
            if m:
                company = m.group(1).strip()
        if not title:
            m = BODY_TITLE.search(head)
            if m:
                title = m.group(1).strip()

    company = clean_entity(company)
    if is_unresolved(company):
        # domain words are the brand as registered: "acme-corp.com" -> "Acme Corp"
        company = clean_entity(company_from_domain(sender, config), strip_legal=False)
    title = clean_entity(title, is_title=True)
    log.debug("Fallback result company=%r title=%r", company, title)
    return company, title

def classify_status(body: str, config: TrackerConfig) -> Optional[Status]:
    if not body or len(body) < 10:
        return None
    text = normalize_phrase(body)
    for status, keywords in config.status_keywords:
        if any(k in text for k in keywords):
            log.debug("Keyword status match: %s", status.value)
            return status
    return None
