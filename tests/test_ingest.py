import json

import pandas as pd
import pytest

from pubmatch.exceptions import MalformedPhone
from pubmatch.ingest import normalize_phone, parse_phone, read_roster, read_special_requests


MAIN_COLUMNS = [
    "What is your name?",
    "What is your student email?",
    "What is your phone number?",
    "What grade are you in?",
    "What is your gender?",
    "Male",
    "Female",
    "Non-binary",
    "What academic school do you study at?",
    "How important is fitness and nutrition to you?",
]


@pytest.fixture
def main_csv(tmp_path):
    rows = [
        ["Alice Smith", "alice@example.edu", "(617) 555-0001", "Junior", "Female", "Male", "", "", "Arts", "Extremely important"],
        ["Bob Jones", "bob@example.edu", "617.555.0002", "Senior", "Male", "", "Female", "", "Engineering", "Neutral"],
        ["Short Phone", "short@example.edu", "555-0003", "Freshman", "Male", "", "Female", "", "Arts", "Neutral"],
        ["", "ghost@example.edu", "6175550009", "Freshman", "Male", "", "Female", "", "", ""],
        ["Alice Smith", "ALICE@example.edu", "+1 617 555 0011", "Senior", "Female", "Male", "", "Non-binary", "Unknown", ""],
    ]
    path = tmp_path / "main.csv"
    pd.DataFrame(rows, columns=MAIN_COLUMNS).to_csv(path, index=False)
    return path


@pytest.fixture
def walkin_csv(tmp_path):
    df = pd.DataFrame(
        [["Carol King", "carol@example.edu", "6175550004", "Sophomore", "Non-binary", "Female, Male"]],
        columns=[
            "What is your full name?",
            "What is your email address?",
            "What is your phone number?",
            "What year are you in college?",
            "What is your gender?",
            "Which gender(s) are you interested in?",
        ],
    )
    path = tmp_path / "walkins.csv"
    df.to_csv(path, index=False)
    return path


@pytest.mark.parametrize(
    "raw,expected",
    [
        ("(617) 555-0001", "6175550001"),
        ("+1 617-555-0001", "6175550001"),
        (6175550001.0, "6175550001"),
        ("555-0001", "5550001"),
        (None, ""),
    ],
)
def test_normalize_phone(raw, expected):
    assert normalize_phone(raw) == expected


def test_parse_phone_rejects_short_numbers():
    with pytest.raises(MalformedPhone):
        parse_phone("555-0001")


def test_read_roster_cleans_and_dedupes(main_csv):
    load = read_roster(main_csv)

    by_name = {e.name: e for e in load.entries}
    assert sorted(by_name) == ["Alice Smith", "Bob Jones"]
    assert load.duplicates == 1
    assert [name for name, _ in load.rejected] == ["Short Phone"]

    alice = by_name["Alice Smith"]
    # the later row wins
    assert alice.phone == "6175550011"
    assert alice.grade == 4
    assert alice.gender_preferences == {"Male", "Non-binary"}
    assert alice.profile.school is None

    bob = by_name["Bob Jones"]
    assert bob.key == "6175550002"
    assert bob.gender == "Male"
    assert bob.gender_preferences == {"Female"}
    assert bob.profile.fitness_importance == 2
    assert bob.profile.school == "Engineering"


def test_walkin_form_merges_with_main(main_csv, walkin_csv):
    load = read_roster(main_csv, walkin_csv)

    carol = next(e for e in load.entries if e.name == "Carol King")
    assert carol.grade == 2
    assert carol.gender == "Non-binary"
    assert carol.gender_preferences == {"Female", "Male"}
    assert carol.email == "carol@example.edu"
    assert len(load.entries) == 3


def test_special_requests_accept_legacy_fields(tmp_path):
    path = tmp_path / "special_requests.json"
    path.write_text(
        json.dumps(
            [
                {
                    "requester_phone": "+1 (617) 555-0001",
                    "requester_name": "Alice Smith",
                    "requested_name": "Bob Jones",
                    "batches_together": 1,
                    "matched": False,
                },
                {"requester_phone": "617-555-0002", "requested_phone": "617 555 0001"},
            ]
        )
    )

    requests = read_special_requests(path)

    assert requests[0].requester_phone == "6175550001"
    assert requests[0].requested_phone is None
    assert requests[0].consecutive_co_presence_count == 1
    assert requests[1].identity == ("6175550002", "6175550001")
