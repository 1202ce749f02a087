from datetime import timedelta

import pytest

from job_tracker.models import UNRESOLVED, ApplicationRecord, Status
from job_tracker.sheets_writer import HEADERS, SheetRecordStore, record_to_row, row_to_record

class FakeWorksheet:
    def __init__(self, rows):
        self.rows = rows
        self.updates = []
        self.appended = []

    def get_all_values(self):
        return self.rows

    def update(self, range_name=None, values=None, value_input_option=None):
        self.updates.append((range_name, values, value_input_option))

    def append_row(self, values, value_input_option=None):
        self.appended.append((values, value_input_option))
        row = len(self.rows) + len(self.appended)
        return {"updates": {"updatedRange": f"Applications!A{row}:K{row}"}}

@pytest.fixture
def record(now):
    return ApplicationRecord(company="Acme", title="SRE", current_status=Status.INTERVIEW,
                             peak_status=Status.INTERVIEW, first_event_time=now - timedelta(days=3),
                             last_event_time=now, source_message_id="18f2a", platform="LinkedIn",
                             subject="Interview invite", permalink="https://mail.google.com/mail/u/0/#inbox/18f2a",
                             processed_at=now, id=7)

def test_row_layout(record):
    row = record_to_row(record)
    assert len(row) == len(HEADERS)
    assert row[HEADERS.index("Company")] == "Acme"
    assert row[HEADERS.index("Status")] == "Interview"
    assert row[HEADERS.index("Email ID")] == "18f2a"
    assert row[HEADERS.index("Last Update Date")] == "2024-06-01T12:00:00+00:00"

def test_row_back_to_record(record):
    parsed = row_to_record(record_to_row(record), 7, "UTC")
    assert (parsed.company, parsed.title, parsed.current_status, parsed.peak_status) == \
        ("Acme", "SRE", Status.INTERVIEW, Status.INTERVIEW)
    assert parsed.last_event_time.timestamp() == record.last_event_time.timestamp()
    assert parsed.first_event_time.timestamp() == record.first_event_time.timestamp()
    assert parsed.id == 7

def test_short_hand_edited_row():
    parsed = row_to_record(["", "", "", "Globex", "", "Waiting"], 4)
    assert parsed.company == "Globex"
    assert parsed.title == UNRESOLVED
    assert parsed.current_status == Status.UNRESOLVED
    assert parsed.peak_status == Status.APPLIED
    assert parsed.last_event_time is None
    assert parsed.platform == "Other"

def test_store_reads_rows_and_skips_blanks(record):
    ws = FakeWorksheet([HEADERS, record_to_row(record), [""] * len(HEADERS), ["", "", "", "Globex"]])
    records = SheetRecordStore(ws).read_all()
    assert [(r.id, r.company) for r in records] == [(2, "Acme"), (4, "Globex")]

def test_store_writes(record):
    ws = FakeWorksheet([HEADERS, record_to_row(record)])
    store = SheetRecordStore(ws)
    store.update_row(record)
    assert ws.updates == [("A7:K7", [record_to_row(record)], "RAW")]
    assert store.append_row(record) == 3

def test_text_cells_written_literally(record):
    record.subject = "=Offer for SRE"
    record.source_message_id = "1912345678901234"
    ws = FakeWorksheet([HEADERS])
    SheetRecordStore(ws).append_row(record)
    [(values, option)] = ws.appended
    assert option == "RAW"
    assert values[HEADERS.index("Email Subject")] == "=Offer for SRE"
    assert values[HEADERS.index("Email ID")] == "1912345678901234"
