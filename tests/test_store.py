import json

import pytest

from pubmatch.exceptions import AmbiguousSearch, UnknownParticipant
from pubmatch.models import Lane, LastOperation, OperationKind, RosterEntry, SpecialRequest, SystemState
from pubmatch.store import (
    find_participants,
    load_state,
    merge_roster,
    merge_special_requests,
    participant_key,
    reset,
    resolve_participant,
    save_state,
)
from pubmatch.wristbands import check_in


def _entry(n, name=None, email=None):
    phone = f"617555{n:04d}"
    return RosterEntry(
        key=phone,
        name=name or f"Person {n}",
        phone=phone,
        email=email or f"person{n}@example.edu",
        gender="Female",
        gender_preferences={"Male"},
        grade=2,
    )


def test_key_prefers_phone_then_email():
    assert participant_key("6175550001", "A@X.edu") == "6175550001"
    assert participant_key("", " A@X.edu ") == "a@x.edu"
    with pytest.raises(ValueError):
        participant_key(None, None)


def test_merge_adds_new_people_checked_out():
    state = SystemState()
    summary = merge_roster(state, [_entry(1), _entry(2)])

    assert summary.added == ["6175550001", "6175550002"]
    p = state.participants["6175550001"]
    assert not p.checked_in
    assert p.wristband_number is None
    assert p.payment_required


def test_merge_keeps_event_state_and_refreshes_attributes():
    state = SystemState()
    merge_roster(state, [_entry(1), _entry(2)])
    check_in(state, "6175550001")
    state.participants["6175550001"].match_history.add("6175550002")
    state.participants["6175550002"].match_history.add("6175550001")

    summary = merge_roster(state, [_entry(1, name="Person One"), _entry(2)])

    p = state.participants["6175550001"]
    assert summary.updated == ["6175550001", "6175550002"]
    assert p.name == "Person One"
    assert p.checked_in
    assert p.wristband_number == 1
    assert p.match_history == {"6175550002"}


def test_merge_purges_missing_and_prunes_history():
    state = SystemState()
    merge_roster(state, [_entry(1), _entry(2)])
    state.participants["6175550001"].match_history.add("6175550002")
    state.participants["6175550002"].match_history.add("6175550001")
    state.last_operation = LastOperation(kind=OperationKind.CHECK_IN, key="6175550002", lane=Lane.STANDARD)

    summary = merge_roster(state, [_entry(1)])

    assert summary.removed == ["6175550002"]
    assert "6175550002" not in state.participants
    assert state.participants["6175550001"].match_history == set()
    assert state.last_operation is None


def test_free_entry_list_matches_email_case_insensitively():
    state = SystemState()
    merge_roster(state, [_entry(1, email="VIP@Example.edu"), _entry(2)], exempt=["vip@example.edu"])

    assert not state.participants["6175550001"].payment_required
    assert state.participants["6175550002"].payment_required

    merge_roster(state, [_entry(1, email="VIP@Example.edu"), _entry(2)])
    assert state.participants["6175550001"].payment_required


def test_special_request_merge_keeps_progress():
    state = SystemState()
    merge_special_requests(
        state, [SpecialRequest(requester_phone="6175550001", requested_name="Bob", consecutive_co_presence_count=1)]
    )
    state.special_requests[0].fulfilled = True

    added = merge_special_requests(
        state,
        [
            SpecialRequest(requester_phone="6175550001", requested_name="Bobby"),
            SpecialRequest(requester_phone="6175550003", requested_name="Cat"),
        ],
    )

    assert added == 1
    assert len(state.special_requests) == 2
    first = state.special_requests[0]
    assert first.requested_name == "Bobby"
    assert first.consecutive_co_presence_count == 1
    assert first.fulfilled


def test_special_request_with_new_phone_is_separate():
    state = SystemState()
    merge_special_requests(state, [SpecialRequest(requester_phone="6175550001", requested_name="Bob")])

    added = merge_special_requests(
        state, [SpecialRequest(requester_phone="6175550001", requested_phone="6175550002", requested_name="Bob")]
    )

    assert added == 1
    assert [r.requested_phone for r in state.special_requests] == [None, "6175550002"]


def test_lookup_by_wristband_and_substring():
    state = SystemState()
    merge_roster(state, [_entry(1, name="Dana Fox"), _entry(2, name="Dan Ray"), _entry(3, name="Eve Ng")])
    check_in(state, "6175550003")

    assert [p.name for p in find_participants(state, "1")] == ["Eve Ng"]
    assert resolve_participant(state, "eve").key == "6175550003"
    assert resolve_participant(state, "6175550002").name == "Dan Ray"
    assert find_participants(state, "dan", checked_in_only=True) == []

    with pytest.raises(AmbiguousSearch) as excinfo:
        resolve_participant(state, "dan")
    assert sorted(excinfo.value.candidates) == ["6175550001", "6175550002"]

    with pytest.raises(UnknownParticipant):
        resolve_participant(state, "zed")


def test_reset_keeps_roster_and_requests():
    state = SystemState()
    merge_roster(state, [_entry(1), _entry(2)])
    check_in(state, "6175550001")
    state.participants["6175550001"].match_history.add("6175550002")
    state.special_requests.append(
        SpecialRequest(requester_phone="6175550001", requested_phone="6175550002", consecutive_co_presence_count=2, fulfilled=True)
    )

    reset(state)

    assert len(state.participants) == 2
    p = state.participants["6175550001"]
    assert not p.checked_in and p.wristband_number is None and not p.match_history
    assert state.next_standard == 1 and state.next_walkin == 250
    assert state.special_requests[0].consecutive_co_presence_count == 0
    assert not state.special_requests[0].fulfilled


def test_state_round_trips_through_json(tmp_path):
    path = tmp_path / "state.json"
    state = SystemState()
    merge_roster(state, [_entry(1), _entry(2)])
    check_in(state, "6175550001", lane=Lane.WALKIN)
    state.participants["6175550001"].match_history.add("6175550002")

    save_state(state, path)
    loaded = load_state(path)

    assert loaded.last_updated is not None
    assert loaded.participants["6175550001"].wristband_number == 250
    assert loaded.participants["6175550001"].match_history == {"6175550002"}
    assert loaded.participants["6175550001"].gender_preferences == {"Male"}
    assert loaded.next_walkin == 251
    assert loaded.last_operation.kind == OperationKind.CHECK_IN
    assert list(tmp_path.iterdir()) == [path]


def test_missing_state_file_starts_fresh(tmp_path):
    state = load_state(tmp_path / "nope.json")
    assert state.participants == {}
    assert state.next_walkin == 250


def test_legacy_special_request_fields_load(tmp_path):
    path = tmp_path / "state.json"
    path.write_text(
        json.dumps(
            {
                "special_requests": [
                    {"requester_phone": "6175550001", "requested_name": "Bob", "batches_together": 1, "matched": True}
                ]
            }
        )
    )

    state = load_state(path)

    request = state.special_requests[0]
    assert request.consecutive_co_presence_count == 1
    assert request.fulfilled
