from typing import Dict, Iterable, List, Optional, Set

from .models import ApplicationRecord, is_unresolved

def normalize(text: Optional[str]) -> str:
    return (text or "").strip().lower()

class RecordIndex:
    """In-memory view of the store for one run: records keyed by normalized
    company, plus every message id already merged into a record."""

    def __init__(self, records: Iterable[ApplicationRecord] = ()):
        self._by_id: Dict[int, ApplicationRecord] = {}
        self._by_company: Dict[str, List[int]] = {}
        self.message_ids: Set[str] = set()
        for record in records:
            self.put(record)

    def __len__(self) -> int:
        return len(self._by_id)

    def get(self, record_id: int) -> ApplicationRecord:
        return self._by_id[record_id]

    def put(self, record: ApplicationRecord) -> None:
        if record.id is None:
            raise ValueError("record must be stored before it is indexed")
        old = self._by_id.get(record.id)
        if old is not None:
            key = normalize(old.company)
            ids = self._by_company.get(key, [])
            if record.id in ids:
                ids.remove(record.id)
        self._by_id[record.id] = record
        if record.source_message_id:
            self.message_ids.add(record.source_message_id)
        if not is_unresolved(record.company):
            self._by_company.setdefault(normalize(record.company), []).append(record.id)

    def for_company(self, company: str) -> List[ApplicationRecord]:
        return [self._by_id[i] for i in self._by_company.get(normalize(company), [])]

def _recency(record: ApplicationRecord):
    ts = record.last_event_time.timestamp() if record.last_event_time else float("-inf")
    return (ts, record.id or 0)

def resolve(company: str, title: str, index: RecordIndex) -> Optional[int]:
    """Pick the record an event belongs to, or None for a new application.

    Exact (normalized) title match wins. Without one, the most recently
    updated record for the company is used; two concurrent applications
    to one company can be conflated when the title is missing.
    """
    if is_unresolved(company):
        return None
    candidates = index.for_company(company)
    if not candidates:
        return None
    if not is_unresolved(title):
        wanted = normalize(title)
        for record in candidates:
            if normalize(record.title) == wanted:
                return record.id
    return max(candidates, key=_recency).id
