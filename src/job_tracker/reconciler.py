import dataclasses
import logging
from datetime import datetime
from typing import Optional, Tuple

from .models import ApplicationRecord, InboundEvent, Status, is_unresolved
from .resolver import RecordIndex, resolve
from .settings import TrackerConfig
from .status import initial_peak, merge_status, next_peak
from .store import RecordStore

log = logging.getLogger(__name__)

def _ts(dt: Optional[datetime]) -> float:
    return dt.timestamp() if dt else float("-inf")

def reconcile(record: Optional[ApplicationRecord], event: InboundEvent, config: TrackerConfig,
              now: Optional[datetime] = None) -> ApplicationRecord:
    """Merge one event into ``record`` (or start a new record) and return the
    result. The input record is not mutated."""
    status = event.status or Status.APPLIED
    if record is None:
        return ApplicationRecord(
            company=event.company,
            title=event.title,
            current_status=status,
            peak_status=initial_peak(status, config),
            first_event_time=event.observed_at,
            last_event_time=event.observed_at,
            source_message_id=event.message_id,
            platform=event.platform,
            subject=event.subject,
            permalink=event.permalink,
            processed_at=now,
        )

    if record.source_message_id and record.source_message_id == event.message_id:
        log.debug("Message %s already merged into row %s", event.message_id, record.id)
        return record

    updated = dataclasses.replace(record)
    if _ts(event.observed_at) > _ts(updated.last_event_time):
        updated.last_event_time = event.observed_at
    if updated.first_event_time is None or _ts(event.observed_at) < _ts(updated.first_event_time):
        updated.first_event_time = event.observed_at

    # fill gaps only; a resolved value is never replaced by another one
    if is_unresolved(updated.company) and not is_unresolved(event.company):
        updated.company = event.company
    if is_unresolved(updated.title) and not is_unresolved(event.title):
        updated.title = event.title

    updated.current_status = merge_status(record.current_status, status, config)
    updated.peak_status = next_peak(record.peak_status, updated.current_status, config)

    updated.source_message_id = event.message_id
    updated.subject = event.subject
    updated.permalink = event.permalink
    updated.platform = event.platform
    updated.processed_at = now
    return updated

class Reconciler:
    """Resolves, merges and writes one event at a time against the store."""

    def __init__(self, store: RecordStore, index: RecordIndex, config: TrackerConfig):
        self.store = store
        self.index = index
        self.config = config

    def apply(self, event: InboundEvent, now: Optional[datetime] = None) -> Tuple[ApplicationRecord, bool]:
        """Returns ``(record, created)``. Store errors propagate."""
        record_id = resolve(event.company, event.title, self.index)
        existing = self.index.get(record_id) if record_id is not None else None
        merged = reconcile(existing, event, self.config, now=now)
        if existing is None:
            merged.id = self.store.append_row(merged)
            log.info("Appended row %s: %s | %s | %s", merged.id, merged.company, merged.title,
                     merged.current_status.value)
        else:
            if merged is existing:
                return existing, False
            self.store.update_row(merged)
            log.info("Updated row %s: %s | %s | %s -> %s (peak %s)", merged.id, merged.company, merged.title,
                     existing.current_status.value, merged.current_status.value, merged.peak_status.value)
        self.index.put(merged)
        return merged, existing is None
