import dataclasses
import logging
from datetime import datetime, timedelta
from typing import List

from .models import ApplicationRecord, Status
from .settings import TrackerConfig
from .store import RecordStore, StoreWriteError

log = logging.getLogger(__name__)

def is_stale(record: ApplicationRecord, config: TrackerConfig, now: datetime) -> bool:
    if record.current_status in config.terminal_statuses or record.current_status is Status.UNRESOLVED:
        return False
    if record.last_event_time is None:
        return False
    cutoff = now - timedelta(weeks=config.stale_weeks)
    return record.last_event_time.timestamp() < cutoff.timestamp()

def sweep_stale(store: RecordStore, config: TrackerConfig, now: datetime) -> List[ApplicationRecord]:
    """Force-reject applications with no activity for ``stale_weeks``.

    Rows without a usable last-update date are left alone. Re-running at the
    same ``now`` changes nothing because swept rows are terminal.
    """
    log.info("Stale sweep: threshold %d weeks (cutoff %s)", config.stale_weeks,
             (now - timedelta(weeks=config.stale_weeks)).date().isoformat())
    swept = []
    for record in store.read_all():
        if not is_stale(record, config, now):
            continue
        updated = dataclasses.replace(
            record, current_status=Status.REJECTED, last_event_time=now, processed_at=now)
        try:
            store.update_row(updated)
        except StoreWriteError as e:
            log.error("Row %s could not be marked stale, retried next sweep: %s", record.id, e)
            continue
        log.info("Row %s marked stale: %s | %s (%s since %s)", record.id, record.company, record.title,
                 record.current_status.value, record.last_event_time.date().isoformat())
        swept.append(updated)
    if not swept:
        log.info("Stale sweep: nothing to update")
    return swept
