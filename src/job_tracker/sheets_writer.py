import logging
import os
import re
from datetime import datetime
from typing import Any, Dict, List, Optional

import dateparser
import gspread

from .models import DEFAULT_PLATFORM, UNRESOLVED, ApplicationRecord, Status
from .settings import ConfigurationError
from .store import StoreWriteError

log = logging.getLogger(__name__)

# Column order is a versioned contract with existing sheets; append only.
SCHEMA_VERSION = 2
HEADERS = [
    "Processed Timestamp", "Email Date", "Platform", "Company", "Job Title", "Status",
    "Peak Status", "Last Update Date", "Email Subject", "Email Link", "Email ID",
]
COL = {name: i for i, name in enumerate(HEADERS)}
LAST_COL = chr(ord("A") + len(HEADERS) - 1)
# RAW keeps subjects like "=Offer" and numeric Email IDs as literal text
VALUE_INPUT = "RAW"

def _get_client():
    sa_path = os.getenv("GSPREAD_SERVICE_ACCOUNT_JSON", "").strip()
    if sa_path:
        return gspread.service_account(filename=sa_path)
    return gspread.oauth(
        credentials_filename=os.path.join(os.path.dirname(os.path.dirname(__file__)), "..", "credentials", "client_secret.json"),
        authorized_user_filename=os.path.join(os.path.dirname(os.path.dirname(__file__)), "..", "credentials", "token.json"),
    )

def ensure_sheet(spreadsheet_name: str, worksheet_name: str, create: bool = False):
    """Open the Applications worksheet and make sure the header row matches.

    With ``create=False`` a missing spreadsheet is a configuration error;
    only ``setup`` creates it."""
    gc = _get_client()
    try:
        sh = gc.open(spreadsheet_name)
    except gspread.SpreadsheetNotFound:
        if not create:
            raise ConfigurationError(f"Spreadsheet {spreadsheet_name!r} not found; run `job-tracker setup`")
        sh = gc.create(spreadsheet_name)
    try:
        ws = sh.worksheet(worksheet_name)
    except gspread.WorksheetNotFound:
        if not create:
            raise ConfigurationError(f"Worksheet {worksheet_name!r} not found; run `job-tracker setup`")
        ws = sh.add_worksheet(title=worksheet_name, rows=1000, cols=len(HEADERS))
    first_row = ws.row_values(1)
    if first_row != HEADERS:
        if not first_row:
            ws.insert_row(HEADERS, index=1)
        elif first_row[:len(HEADERS)] != HEADERS:
            ws.delete_rows(1)
            ws.insert_row(HEADERS, index=1)
    return ws

def _fmt(dt: Optional[datetime]) -> str:
    return dt.isoformat(timespec="seconds") if dt else ""

def _parse_date(value: Any, tz_name: str) -> Optional[datetime]:
    text = str(value or "").strip()
    if not text:
        return None
    return dateparser.parse(text, settings={"TIMEZONE": tz_name, "RETURN_AS_TIMEZONE_AWARE": True})

def record_to_row(record: ApplicationRecord) -> List[str]:
    row = [""] * len(HEADERS)
    row[COL["Processed Timestamp"]] = _fmt(record.processed_at)
    row[COL["Email Date"]] = _fmt(record.first_event_time)
    row[COL["Platform"]] = record.platform
    row[COL["Company"]] = record.company
    row[COL["Job Title"]] = record.title
    row[COL["Status"]] = record.current_status.value
    row[COL["Peak Status"]] = record.peak_status.value
    row[COL["Last Update Date"]] = _fmt(record.last_event_time)
    row[COL["Email Subject"]] = record.subject
    row[COL["Email Link"]] = record.permalink
    row[COL["Email ID"]] = record.source_message_id
    return row

def row_to_record(values: List[Any], row_number: int, tz_name: str = "UTC") -> ApplicationRecord:
    values = list(values) + [""] * (len(HEADERS) - len(values))
    cell = lambda name: str(values[COL[name]] or "").strip()
    # blank or hand-typed statuses are treated as unresolved, never swept
    status = Status.parse(cell("Status")) or Status.UNRESOLVED
    peak = Status.parse(cell("Peak Status")) or Status.APPLIED
    return ApplicationRecord(
        company=cell("Company") or UNRESOLVED,
        title=cell("Job Title") or UNRESOLVED,
        current_status=status,
        peak_status=peak,
        first_event_time=_parse_date(values[COL["Email Date"]], tz_name),
        last_event_time=_parse_date(values[COL["Last Update Date"]], tz_name),
        source_message_id=cell("Email ID"),
        platform=cell("Platform") or DEFAULT_PLATFORM,
        subject=cell("Email Subject"),
        permalink=cell("Email Link"),
        processed_at=_parse_date(values[COL["Processed Timestamp"]], tz_name),
        id=row_number,
    )

class SheetRecordStore:
    """Record store over one worksheet. Record ids are sheet row numbers."""

    def __init__(self, ws, tz_name: str = "UTC"):
        self.ws = ws
        self.tz_name = tz_name

    @classmethod
    def open(cls, sheets_cfg: Dict[str, Any], tz_name: str = "UTC", create: bool = False) -> "SheetRecordStore":
        ws = ensure_sheet(sheets_cfg["spreadsheet_name"], sheets_cfg.get("worksheet_name", "Applications"), create=create)
        return cls(ws, tz_name)

    def read_all(self) -> List[ApplicationRecord]:
        rows = self.ws.get_all_values()
        records = []
        for i, values in enumerate(rows[1:], start=2):
            if not any(str(v).strip() for v in values):
                continue
            records.append(row_to_record(values, i, self.tz_name))
        log.info("Loaded %d application rows", len(records))
        return records

    def update_row(self, record: ApplicationRecord) -> None:
        r = record.id
        try:
            self.ws.update(range_name=f"A{r}:{LAST_COL}{r}", values=[record_to_row(record)],
                           value_input_option=VALUE_INPUT)
        except gspread.exceptions.APIError as e:
            raise StoreWriteError(f"update of row {r} failed: {e}") from e

    def append_row(self, record: ApplicationRecord) -> int:
        try:
            resp = self.ws.append_row(record_to_row(record), value_input_option=VALUE_INPUT)
        except gspread.exceptions.APIError as e:
            raise StoreWriteError(f"append failed: {e}") from e
        updated_range = ((resp or {}).get("updates") or {}).get("updatedRange", "")
        m = re.search(r"![A-Z]+(\d+)", updated_range)
        if m:
            return int(m.group(1))
        return len(self.ws.col_values(1))
