from datetime import date, datetime

import pytest
import pytz

from app.storage.local_store import LocalEntry
from app.utils.helpers import compute_percent, format_timestamp, level_for_xp, next_streak


@pytest.mark.parametrize("completed,total,expected", [
    (0, 0, 0),
    (3, 5, 60),
    (1, 3, 33),
    (2, 3, 67),
    (1, 8, 13),
    (4, 4, 100),
    (7, 4, 100),
])
def test_compute_percent(completed, total, expected):
    assert compute_percent(completed, total) == expected


def test_next_streak():
    today = date(2024, 3, 10)
    assert next_streak(4, date(2024, 3, 10), today) == (4, False)
    assert next_streak(4, date(2024, 3, 9), today) == (5, True)
    assert next_streak(4, date(2024, 3, 7), today) == (1, True)
    assert next_streak(0, None, today) == (1, True)


def test_level_for_xp():
    assert level_for_xp(0, 100) == 1
    assert level_for_xp(99, 100) == 1
    assert level_for_xp(250, 100) == 3


def test_format_timestamp():
    dt = datetime(2024, 3, 10, 9, 30, tzinfo=pytz.utc)
    assert format_timestamp(dt) == "2024-03-10T09:30:00Z"


def test_set_get_delete(local_store):
    assert local_store.get("missing", "fallback") == "fallback"

    local_store.set("key", {"a": 1})
    local_store.set("key", {"a": 2})
    assert local_store.get("key") == {"a": 2}

    local_store.delete("key")
    assert local_store.get("key") is None


def test_corrupt_entry_is_ignored(local_store):
    with local_store._session_factory() as db:
        db.add(LocalEntry(key="broken", value="{not json"))
        db.commit()
    assert local_store.get("broken", []) == []


def test_completed_set_has_no_duplicates(local_store):
    local_store.add_completed_lesson("u1", 1, 3)
    local_store.add_completed_lesson("u1", 1, 1)
    assert local_store.add_completed_lesson("u1", 1, 3) == [1, 3]
    assert local_store.get_completed_lessons("u1", 2) == []


def test_course_summary(local_store):
    timestamp = datetime(2024, 3, 10, 9, 30, tzinfo=pytz.utc)
    local_store.save_course_summary("u1", 7, 100, timestamp)

    summary = local_store.get_course_summary("u1")
    assert summary == {
        "course_id": 7,
        "percent": 100,
        "timestamp": "2024-03-10T09:30:00+00:00",
        "completed": True,
    }


def test_course_summary_is_kept_per_user(local_store):
    local_store.save_course_summary("alice", 1, 100)
    local_store.save_course_summary("bob", 2, 25)

    assert local_store.get_course_summary("alice")["course_id"] == 1
    assert local_store.get_course_summary("alice")["percent"] == 100
    assert local_store.get_course_summary("alice")["completed"] is True
    assert local_store.get_course_summary("bob")["percent"] == 25
    assert local_store.get_course_summary("carol") == {
        "course_id": None,
        "percent": None,
        "timestamp": None,
        "completed": False,
    }
