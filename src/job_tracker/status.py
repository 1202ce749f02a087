from typing import Optional

from .models import Status
from .settings import TrackerConfig

def rank(status: Optional[Status], config: TrackerConfig) -> int:
    if status is None:
        return 0
    return config.hierarchy.get(status, 0)

def merge_status(current: Optional[Status], new: Status, config: TrackerConfig) -> Status:
    """Return the status a record should carry after seeing ``new``.

    A lower-ranked event never downgrades a record, except that Rejected and
    Offer always win over an in-flight status. Accepted is absorbing.
    """
    if current is None:
        return new
    if current is Status.ACCEPTED and new is not Status.ACCEPTED:
        return current
    if rank(new, config) >= rank(current, config) or new in (Status.REJECTED, Status.OFFER):
        return new
    return current

def initial_peak(status: Status, config: TrackerConfig) -> Status:
    if status in config.excluded_from_peak:
        return Status.APPLIED
    return status

def next_peak(peak: Optional[Status], current: Status, config: TrackerConfig) -> Status:
    if peak is None or peak in config.excluded_from_peak:
        peak = Status.APPLIED
    if current in config.excluded_from_peak:
        return peak
    if rank(current, config) > rank(peak, config):
        return current
    return peak
