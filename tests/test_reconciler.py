from datetime import timedelta

from job_tracker.models import UNRESOLVED, ApplicationRecord, InboundEvent, Status
from job_tracker.reconciler import Reconciler, reconcile
from job_tracker.resolver import RecordIndex
from job_tracker.store import MemoryRecordStore

def _event(mid, status, when, company="Acme", title="Software Engineer"):
    return InboundEvent(message_id=mid, thread_id="t-" + mid, subject=f"update {mid}", body_text="",
                        sender="Acme Careers <careers@acme.com>", observed_at=when,
                        company=company, title=title, status=status)

def _reconciler(config, records=()):
    store = MemoryRecordStore(list(records))
    return Reconciler(store, RecordIndex(store.read_all()), config), store

def test_interview_not_downgraded_by_later_applied(config, now):
    rec, store = _reconciler(config)
    rec.apply(_event("m1", Status.INTERVIEW, now - timedelta(days=2)), now)
    record, created = rec.apply(_event("m2", Status.APPLIED, now - timedelta(days=1)), now)
    assert not created
    assert record.current_status == Status.INTERVIEW
    assert record.peak_status == Status.INTERVIEW
    assert len(store.read_all()) == 1

def test_rejection_keeps_applied_peak(config, now):
    rec, store = _reconciler(config)
    rec.apply(_event("m1", Status.APPLIED, now - timedelta(days=10)), now)
    rec.apply(_event("m2", Status.REJECTED, now - timedelta(days=1)), now)
    [row] = store.read_all()
    assert row.current_status == Status.REJECTED
    assert row.peak_status == Status.APPLIED

def test_new_record_fields(config, now):
    rec, store = _reconciler(config)
    record, created = rec.apply(_event("m1", Status.VIEWED, now), now)
    assert created
    assert record.id == 2
    assert record.first_event_time == record.last_event_time == now
    assert record.source_message_id == "m1"
    assert record.permalink.endswith("/m1")
    assert store.read_all()[0].current_status == Status.VIEWED

def test_same_event_twice_is_noop(config, now):
    rec, store = _reconciler(config)
    event = _event("m1", Status.APPLIED, now)
    first, _ = rec.apply(event, now)
    before = store.read_all()
    second, created = rec.apply(event, now)
    assert not created
    assert second == first
    assert store.read_all() == before

def test_reconcile_is_pure(config, now):
    record = reconcile(None, _event("m1", Status.APPLIED, now - timedelta(days=3)), config, now=now)
    record.id = 2
    merged = reconcile(record, _event("m2", Status.INTERVIEW, now), config, now=now)
    assert record.current_status == Status.APPLIED
    assert merged.current_status == Status.INTERVIEW
    assert reconcile(merged, _event("m2", Status.INTERVIEW, now), config, now=now) is merged

def test_out_of_order_events_widen_times(config, now):
    rec, _ = _reconciler(config)
    rec.apply(_event("m2", Status.INTERVIEW, now - timedelta(days=1)), now)
    record, _ = rec.apply(_event("m1", Status.APPLIED, now - timedelta(days=5)), now)
    assert record.first_event_time == now - timedelta(days=5)
    assert record.last_event_time == now - timedelta(days=1)
    assert record.current_status == Status.INTERVIEW

def test_later_event_fills_unresolved_title(config, now):
    rec, store = _reconciler(config)
    rec.apply(_event("m1", Status.APPLIED, now - timedelta(days=3), title=UNRESOLVED), now)
    record, created = rec.apply(_event("m2", Status.ASSESSMENT, now, title="Data Analyst"), now)
    assert not created
    assert record.title == "Data Analyst"
    assert not record.needs_manual_review

def test_resolved_fields_not_overwritten(config, now):
    record = reconcile(None, _event("m1", Status.APPLIED, now, company=UNRESOLVED, title=UNRESOLVED), config)
    record.id = 2
    filled = reconcile(record, _event("m2", Status.APPLIED, now, company="Acme", title="SRE"), config)
    assert (filled.company, filled.title) == ("Acme", "SRE")
    again = reconcile(filled, _event("m3", Status.APPLIED, now, company="Other Co", title="Intern"), config)
    assert (again.company, again.title) == ("Acme", "SRE")

def test_exact_title_match_picks_the_right_record(config, now):
    existing = [
        ApplicationRecord(company="Acme", title="Backend Engineer", current_status=Status.APPLIED,
                          peak_status=Status.APPLIED, first_event_time=now - timedelta(days=4),
                          last_event_time=now - timedelta(days=4), source_message_id="m1", id=2),
        ApplicationRecord(company="Acme", title="Data Engineer", current_status=Status.APPLIED,
                          peak_status=Status.APPLIED, first_event_time=now - timedelta(days=2),
                          last_event_time=now - timedelta(days=2), source_message_id="m2", id=3),
    ]
    rec, store = _reconciler(config, existing)
    record, created = rec.apply(_event("m3", Status.INTERVIEW, now, title="backend engineer"), now)
    assert not created
    assert record.id == 2
    assert record.title == "Backend Engineer"
    statuses = {r.title: r.current_status for r in store.read_all()}
    assert statuses == {"Backend Engineer": Status.INTERVIEW, "Data Engineer": Status.APPLIED}
