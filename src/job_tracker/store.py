import copy
from typing import Dict, List, Protocol

from .models import ApplicationRecord

class StoreWriteError(RuntimeError):
    """A row could not be written; the triggering thread goes to review."""

class RecordStore(Protocol):
    def read_all(self) -> List[ApplicationRecord]: ...

    def update_row(self, record: ApplicationRecord) -> None: ...

    def append_row(self, record: ApplicationRecord) -> int: ...

class MemoryRecordStore:
    """Row-numbered in-memory store. Used for dry runs and tests; row ids
    start at 2 to line up with a sheet that has a header row."""

    def __init__(self, records: List[ApplicationRecord] = None):
        self._rows: Dict[int, ApplicationRecord] = {}
        for record in records or []:
            if record.id is None:
                self.append_row(record)
            else:
                self._rows[record.id] = copy.deepcopy(record)

    def read_all(self) -> List[ApplicationRecord]:
        return [copy.deepcopy(r) for _, r in sorted(self._rows.items())]

    def update_row(self, record: ApplicationRecord) -> None:
        if record.id not in self._rows:
            raise StoreWriteError(f"row {record.id} does not exist")
        self._rows[record.id] = copy.deepcopy(record)

    def append_row(self, record: ApplicationRecord) -> int:
        row = max(self._rows, default=1) + 1
        record.id = row
        self._rows[row] = copy.deepcopy(record)
        return row
