"""Read side of the command store: bounded, newest-first history for display."""
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy.orm import Session

from .commands import is_terminal
from .models import Command

COMMAND_LABELS = {
    "lock": "Lock device",
    "unlock": "Unlock device",
    "locate": "Locate device",
    "wipe": "Wipe data",
}

STATUS_COLORS = {
    "pending": "#FFC107",
    "executing": "#2196F3",
    "executed": "#4CAF50",
    "failed": "#F44336",
}
UNKNOWN_COLOR = "#9E9E9E"

CONTROL_PANEL_LIMIT = 10
DETAIL_VIEW_LIMIT = 20


def to_datetime(value: Any) -> Optional[datetime]:
    """Accept every timestamp shape the stores produce.

    Epoch numbers are milliseconds. Naive datetimes are UTC. Anything else may
    expose ``to_datetime()``, as server-side timestamp objects do.
    """
    if value is None:
        return None
    if hasattr(value, "to_datetime"):
        value = value.to_datetime()
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, bool):
        raise TypeError(f"not a timestamp: {value!r}")
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
    if isinstance(value, str):
        return to_datetime(datetime.fromisoformat(value.replace("Z", "+00:00")))
    raise TypeError(f"not a timestamp: {value!r}")


def format_timestamp(value: Any) -> str:
    dt = to_datetime(value)
    if dt is None:
        return "N/A"
    return dt.strftime("%Y-%m-%d %H:%M:%S UTC")


@dataclass(frozen=True)
class CommandEntry:
    id: str
    type: str
    label: str
    status: str
    status_color: str
    terminal: bool
    created_at: str
    executed_at: Optional[str]
    result: Optional[str]


def result_text(cmd: Command) -> Optional[str]:
    # non-terminal commands have no result yet
    if cmd.result_success is None:
        return None
    text = "Succeeded" if cmd.result_success else "Failed"
    if cmd.result_error:
        text += f" - {cmd.result_error}"
    return text


def entry_of(cmd: Command) -> CommandEntry:
    return CommandEntry(
        id=cmd.id,
        type=cmd.type,
        label=COMMAND_LABELS.get(cmd.type, cmd.type),
        status=cmd.status,
        status_color=STATUS_COLORS.get(cmd.status, UNKNOWN_COLOR),
        terminal=is_terminal(cmd.status),
        created_at=format_timestamp(cmd.created_at),
        executed_at=format_timestamp(cmd.executed_at) if cmd.executed_at else None,
        result=result_text(cmd),
    )


def recent_commands(db: Session, device_id: str, limit: int = CONTROL_PANEL_LIMIT) -> list[Command]:
    limit = max(1, min(limit, DETAIL_VIEW_LIMIT))
    return (db.query(Command)
            .filter(Command.device_id == device_id)
            .order_by(Command.created_at.desc())
            .limit(limit)
            .all())


def command_history(db: Session, device_id: str, limit: int = CONTROL_PANEL_LIMIT) -> list[CommandEntry]:
    return [entry_of(c) for c in recent_commands(db, device_id, limit)]
