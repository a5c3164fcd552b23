from datetime import datetime, timezone

from pubmatch.ledger import mark_dispatched
from pubmatch.matcher import commit_batch, propose_batch
from pubmatch.models import SpecialRequest
from pubmatch.report import EXPORT_COLUMNS, batches_frame, export_csv, render_markdown, request_status, status_summary


def _played(couple, person, state_of):
    alice, bob = couple
    carl = person(3, name="Carl", gender="Male", prefs=("Female",), grade=1)
    dee = person(4, name="Dee", gender="Male", prefs=("Female",), grade=4, checked_in=False)
    state = state_of(alice, bob, carl, dee)
    commit_batch(state, propose_batch(state), now=datetime(2025, 3, 1, 21, 0, tzinfo=timezone.utc))
    return state


def test_batches_frame_flattens_ledger(couple, person, state_of, tmp_path):
    state = _played(couple, person, state_of)
    mark_dispatched(state.batches[0], datetime(2025, 3, 1, 21, 5, tzinfo=timezone.utc))

    df = batches_frame(state)

    assert list(df.columns) == EXPORT_COLUMNS
    assert len(df) == 1
    row = df.iloc[0]
    assert row["names"] == "Alice Smith & Bob Jones"
    assert row["wristbands"] == "#1 & #2"
    assert row["sent_at"].startswith("2025-03-01T21:05")

    assert export_csv(state, tmp_path / "out" / "export.csv") == 1
    assert (tmp_path / "out" / "export.csv").exists()


def test_unsent_batch_shows_not_sent(couple, person, state_of):
    state = _played(couple, person, state_of)
    assert batches_frame(state).iloc[0]["sent_at"] == "Not sent"


def test_status_summary_counts(couple, person, state_of):
    state = _played(couple, person, state_of)
    state.participants[couple[1].key].payment_required = False

    s = status_summary(state, entry_fee=3)

    assert s.total == 4
    assert s.checked_in == 3
    assert s.genders == {"Female": 1, "Male": 2}
    assert (s.owe_count, s.free_count, s.amount_due) == (2, 1, 6)
    assert s.total_matches == 1
    assert s.never_matched == 1
    assert s.distribution == {0: 2, 1: 2}
    assert s.unsent_batches == [1]


def test_request_status_resolves_against_roster(couple, person, state_of):
    state = _played(couple, person, state_of)
    state.special_requests = [
        SpecialRequest(requester_phone=couple[0].phone, requested_name="Dee"),
        SpecialRequest(requester_phone="6170000000", requester_name="Stranger", requested_name="Carl"),
    ]

    first, second = request_status(state)

    assert first.requester_found and first.requested_found
    assert not first.both_present
    assert not second.requester_found
    assert second.requester == "Stranger"


def test_markdown_report_groups_by_kind(couple, person, state_of, tmp_path):
    state = _played(couple, person, state_of)
    out = tmp_path / "reports" / "batch_1.md"

    render_markdown(state.batches[0], out, event_name="Bridge")

    text = out.read_text()
    assert text.startswith("# Bridge Batch #1")
    assert "## Romantic (1)" in text
    assert "Alice Smith (#1) / Bob Jones (#2)" in text
