import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
import requests

from lockdesk_agent import agent
from lockdesk_agent.handlers import CommandFailed, Handlers, LockState, WrongSecurityKey


def response(payload=None):
    r = MagicMock()
    r.json.return_value = payload
    r.raise_for_status.return_value = None
    return r


@pytest.fixture()
def fake_handlers():
    h = MagicMock(spec=Handlers)
    h.run.return_value = {}
    return h


def statuses(post):
    return [(c.args[0].rsplit("/", 2)[-2], c.kwargs["json"]["status"])
            for c in post.call_args_list if c.args[0].endswith("/status")]


def test_execute_reports_executing_then_executed(fake_handlers):
    with patch.object(agent.requests, "post", return_value=response({})) as post:
        final = agent.execute("tok", fake_handlers, {"id": "c1", "type": "lock", "params": {}})

    assert final == "executed"
    assert statuses(post) == [("c1", "executing"), ("c1", "executed")]
    assert post.call_args.kwargs["json"]["success"] is True
    assert post.call_args.kwargs["headers"] == {"Authorization": "Bearer tok"}


def test_failed_handler_reports_failure(fake_handlers):
    fake_handlers.run.side_effect = CommandFailed("wipe is disabled on this agent")
    with patch.object(agent.requests, "post", return_value=response({})) as post:
        final = agent.execute("tok", fake_handlers, {"id": "c2", "type": "wipe", "params": None})

    assert final == "failed"
    assert statuses(post) == [("c2", "executing"), ("c2", "failed")]
    assert post.call_args.kwargs["json"] == {"status": "failed", "success": False,
                                             "error": "wipe is disabled on this agent"}


def test_wrong_key_is_also_an_event(fake_handlers):
    fake_handlers.run.side_effect = WrongSecurityKey("security key rejected by device")
    with patch.object(agent.requests, "post", return_value=response({})) as post:
        agent.execute("tok", fake_handlers, {"id": "c3", "type": "unlock", "params": {"securityKey": "x" * 20}})

    event = next(c for c in post.call_args_list if c.args[0].endswith("/agent/events"))
    assert event.kwargs["json"]["type"] == "password_failed"
    assert statuses(post)[-1] == ("c3", "failed")


def test_locate_sends_location_event(fake_handlers):
    fake_handlers.run.return_value = {"hostname": "h", "ip": "10.0.0.7", "platform": "Linux"}
    with patch.object(agent.requests, "post", return_value=response({})) as post:
        agent.execute("tok", fake_handlers, {"id": "c4", "type": "locate"})

    event = next(c for c in post.call_args_list if c.args[0].endswith("/agent/events"))
    assert event.kwargs["json"]["type"] == "device_located"
    assert event.kwargs["json"]["details"]["commandId"] == "c4"


def test_local_io_error_fails_the_command(fake_handlers):
    fake_handlers.run.side_effect = PermissionError("read-only filesystem")
    with patch.object(agent.requests, "post", return_value=response({})) as post:
        final = agent.execute("tok", fake_handlers, {"id": "c5", "type": "wipe"})

    assert final == "failed"
    assert statuses(post) == [("c5", "executing"), ("c5", "failed")]
    assert "read-only filesystem" in post.call_args.kwargs["json"]["error"]


def test_run_once_drains_pending_in_order(fake_handlers):
    pending = [{"id": "a", "type": "lock"}, {"id": "b", "type": "locate"}]
    with patch.object(agent.requests, "get", return_value=response(pending)), \
            patch.object(agent.requests, "post", return_value=response({})):
        assert agent.run_once("tok", fake_handlers) == ["executed", "executed"]

    assert [c.args[0] for c in fake_handlers.run.call_args_list] == ["lock", "locate"]


def test_offline_poll_raises_for_the_loop_to_retry(fake_handlers):
    with patch.object(agent.requests, "get", side_effect=requests.ConnectionError("offline")):
        with pytest.raises(requests.RequestException):
            agent.run_once("tok", fake_handlers)
    fake_handlers.run.assert_not_called()


def test_event_report_failure_is_not_fatal():
    with patch.object(agent.requests, "post", side_effect=requests.ConnectionError("offline")):
        agent.report_event("tok", "suspicious_activity", "SIM removed")


def test_heartbeat_sends_posture_and_local_lock_state(tmp_path):
    state = LockState(str(tmp_path / "state.json"))
    state.write(True)
    with patch.object(agent, "collect_posture", return_value={"uptime_sec": 5.0, "battery_pct": None}), \
            patch.object(agent.requests, "post", return_value=response({"ok": True, "blocked": True})) as post:
        assert agent.send_heartbeat("tok", state) == {"ok": True, "blocked": True}

    assert post.call_args.kwargs["json"] == {"uptime_sec": 5.0, "battery_pct": None, "locked": True}


def test_read_token_registers_once(tmp_path, monkeypatch):
    token_file = tmp_path / "token.txt"
    monkeypatch.setattr(agent, "TOKEN_FILE", str(token_file))
    with patch.object(agent.requests, "post", return_value=response({"device_id": "d", "token": "dev-tok"})) as post:
        assert agent.read_token() == "dev-tok"
        assert agent.read_token() == "dev-tok"

    assert post.call_count == 1
    assert token_file.read_text() == "dev-tok"


class Stop(Exception):
    pass


def test_command_loop_survives_a_crashing_round(fake_handlers):
    with patch.object(agent, "run_once", side_effect=ValueError("corrupt state file")) as run_once, \
            patch.object(agent.asyncio, "sleep", new_callable=AsyncMock, side_effect=[None, Stop()]):
        with pytest.raises(Stop):
            asyncio.run(agent.command_loop("tok", fake_handlers))

    assert run_once.call_count == 2


def test_heartbeat_loop_survives_a_corrupt_state_file(tmp_path):
    path = tmp_path / "state.json"
    path.write_text("{not json")
    with patch.object(agent, "collect_posture", return_value={"uptime_sec": 1.0, "battery_pct": None}), \
            patch.object(agent.requests, "post") as post, \
            patch.object(agent.asyncio, "sleep", new_callable=AsyncMock, side_effect=Stop()):
        with pytest.raises(Stop):
            asyncio.run(agent.heartbeat_loop("tok", LockState(str(path))))

    post.assert_not_called()
