"""Command types and the command status state machine.

Only the console creates commands, always as ``pending``. Every later move
belongs to the executor running on the device.
"""
from enum import Enum

from .errors import InvalidTransition, UnknownCommandType


class CommandType(str, Enum):
    LOCK = "lock"
    UNLOCK = "unlock"
    LOCATE = "locate"
    WIPE = "wipe"


class CommandStatus(str, Enum):
    PENDING = "pending"
    EXECUTING = "executing"
    EXECUTED = "executed"
    FAILED = "failed"


TERMINAL = frozenset({CommandStatus.EXECUTED, CommandStatus.FAILED})

# pending -> executed is an executor that skipped its "executing" report
TRANSITIONS = {
    CommandStatus.PENDING: frozenset({CommandStatus.EXECUTING, CommandStatus.EXECUTED, CommandStatus.FAILED}),
    CommandStatus.EXECUTING: frozenset({CommandStatus.EXECUTED, CommandStatus.FAILED}),
    CommandStatus.EXECUTED: frozenset(),
    CommandStatus.FAILED: frozenset(),
}

# commands whose effect the console projects onto the device right away
LOCK_STATE_COMMANDS = frozenset({CommandType.LOCK, CommandType.UNLOCK})
DESTRUCTIVE_COMMANDS = frozenset({CommandType.LOCK, CommandType.WIPE})

SEVERITY = {
    CommandType.LOCK: "high",
    CommandType.UNLOCK: "high",
    CommandType.WIPE: "high",
    CommandType.LOCATE: "medium",
}


def parse_type(value: str) -> CommandType:
    try:
        return CommandType(value)
    except ValueError:
        raise UnknownCommandType(f"unknown command type: {value!r}") from None


def is_terminal(status) -> bool:
    return CommandStatus(status) in TERMINAL


def advance(current, requested) -> CommandStatus:
    """Return ``requested`` if the machine allows it from ``current``."""
    cur, nxt = CommandStatus(current), CommandStatus(requested)
    if nxt not in TRANSITIONS[cur]:
        raise InvalidTransition(cur.value, nxt.value)
    return nxt
