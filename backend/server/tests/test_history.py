from datetime import datetime, timedelta, timezone

import pytest

from lockdesk.history import (DETAIL_VIEW_LIMIT, command_history, format_timestamp, recent_commands,
                              to_datetime)
from lockdesk.models import Command

BASE = datetime(2025, 3, 1, 12, 0, 0)


def add_commands(db, n, device_id="D1"):
    # insert out of order so the query has to sort
    for i in reversed(range(n)):
        db.add(Command(device_id=device_id, type="locate", issued_by="U1", status="pending",
                       params={}, created_at=BASE + timedelta(minutes=i)))
    db.commit()


@pytest.mark.parametrize("limit", [10, 20])
def test_history_is_bounded_and_newest_first(db, limit):
    add_commands(db, 25)

    rows = recent_commands(db, "D1", limit)

    assert len(rows) == limit
    stamps = [r.created_at for r in rows]
    assert stamps == sorted(stamps, reverse=True)
    assert stamps[0] == BASE + timedelta(minutes=24)


def test_history_never_exceeds_detail_limit(db):
    add_commands(db, 30)
    assert len(recent_commands(db, "D1", 500)) == DETAIL_VIEW_LIMIT


def test_history_only_for_that_device(db):
    add_commands(db, 3)
    add_commands(db, 2, device_id="D2")

    assert {r.device_id for r in recent_commands(db, "D1")} == {"D1"}


def test_pending_entries_have_no_result(db):
    db.add(Command(id="c1", device_id="D1", type="lock", issued_by="U1", status="pending", created_at=BASE))
    db.add(Command(id="c2", device_id="D1", type="unlock", issued_by="U1", status="executing",
                   created_at=BASE + timedelta(seconds=1)))
    db.add(Command(id="c3", device_id="D1", type="wipe", issued_by="U1", status="failed",
                   created_at=BASE + timedelta(seconds=2), executed_at=BASE + timedelta(minutes=1),
                   result_success=False, result_error="wipe is disabled on this agent"))
    db.commit()

    wipe, unlock, lock = command_history(db, "D1")

    assert (lock.label, lock.status, lock.terminal, lock.result, lock.executed_at) == \
        ("Lock device", "pending", False, None, None)
    assert lock.status_color != unlock.status_color
    assert not unlock.terminal and unlock.result is None
    assert wipe.terminal
    assert wipe.result == "Failed - wipe is disabled on this agent"
    assert wipe.executed_at == "2025-03-01 12:01:00 UTC"
    assert wipe.status_color == "#F44336"


def test_successful_result_text(db):
    db.add(Command(device_id="D1", type="locate", issued_by="U1", status="executed",
                   created_at=BASE, executed_at=BASE, result_success=True))
    db.commit()

    [entry] = command_history(db, "D1")
    assert entry.result == "Succeeded"
    assert entry.label == "Locate device"


class ServerStamp:
    def __init__(self, dt):
        self.dt = dt

    def to_datetime(self):
        return self.dt


@pytest.mark.parametrize("value", [
    1740830400000,
    1740830400000.0,
    datetime(2025, 3, 1, 12, 0, 0),
    datetime(2025, 3, 1, 12, 0, 0, tzinfo=timezone.utc),
    "2025-03-01T12:00:00Z",
    "2025-03-01T12:00:00",
    ServerStamp(datetime(2025, 3, 1, 12, 0, 0)),
])
def test_every_timestamp_shape_formats_the_same(value):
    assert format_timestamp(value) == "2025-03-01 12:00:00 UTC"


def test_missing_timestamp():
    assert format_timestamp(None) == "N/A"
    assert to_datetime(None) is None


def test_garbage_is_not_a_timestamp():
    with pytest.raises(TypeError):
        to_datetime([1, 2, 3])
    with pytest.raises(TypeError):
        to_datetime(True)
