from job_tracker.models import Status
from job_tracker.status import initial_peak, merge_status, next_peak, rank

def test_rank_order(config):
    order = [Status.UNRESOLVED, Status.OTHER, Status.APPLIED, Status.VIEWED, Status.ASSESSMENT,
             Status.INTERVIEW, Status.OFFER, Status.ACCEPTED]
    ranks = [rank(s, config) for s in order]
    assert ranks == sorted(ranks)
    assert rank(Status.REJECTED, config) == rank(Status.OFFER, config)

def test_no_downgrade(config):
    assert merge_status(Status.INTERVIEW, Status.APPLIED, config) == Status.INTERVIEW
    assert merge_status(Status.REJECTED, Status.VIEWED, config) == Status.REJECTED

def test_rejected_and_offer_always_win(config):
    assert merge_status(Status.INTERVIEW, Status.REJECTED, config) == Status.REJECTED
    assert merge_status(Status.REJECTED, Status.OFFER, config) == Status.OFFER
    assert merge_status(Status.OFFER, Status.REJECTED, config) == Status.REJECTED

def test_accepted_is_absorbing(config):
    for new in (Status.REJECTED, Status.OFFER, Status.APPLIED, Status.WITHDRAWN):
        assert merge_status(Status.ACCEPTED, new, config) == Status.ACCEPTED
    assert merge_status(Status.OFFER, Status.ACCEPTED, config) == Status.ACCEPTED

def test_first_status_taken_as_is(config):
    assert merge_status(None, Status.VIEWED, config) == Status.VIEWED

def test_peak_excludes_terminal_and_ambiguous(config):
    assert initial_peak(Status.REJECTED, config) == Status.APPLIED
    assert initial_peak(Status.OTHER, config) == Status.APPLIED
    assert initial_peak(Status.ASSESSMENT, config) == Status.ASSESSMENT
    assert next_peak(Status.INTERVIEW, Status.REJECTED, config) == Status.INTERVIEW
    assert next_peak(Status.APPLIED, Status.INTERVIEW, config) == Status.INTERVIEW
    assert next_peak(Status.INTERVIEW, Status.VIEWED, config) == Status.INTERVIEW
    assert next_peak(None, Status.ACCEPTED, config) == Status.APPLIED

def test_status_parse_aliases():
    assert Status.parse("interview scheduled") == Status.INTERVIEW
    assert Status.parse(" OFFER ") == Status.OFFER
    assert Status.parse("N/A") == Status.UNRESOLVED
    assert Status.parse("") is None
    assert Status.parse("ghosted") is None
