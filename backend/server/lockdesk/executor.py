"""Status reports coming back from the agent that executes commands.

The agent is the only writer of command status after creation, and its result
for a lock or unlock is the authoritative lock state of the device.
"""
import logging
from typing import Optional

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from . import events
from .commands import CommandStatus, CommandType, SEVERITY, TERMINAL, advance
from .errors import StoreWriteError
from .models import Command, Device, utcnow

log = logging.getLogger(__name__)


def pending_commands(db: Session, device: Device) -> list[Command]:
    """Oldest first, so the agent runs them in the order they were issued."""
    return (db.query(Command)
            .filter(Command.device_id == device.id, Command.status == CommandStatus.PENDING.value)
            .order_by(Command.created_at.asc())
            .all())


def find_command(db: Session, device: Device, cmd_id: str) -> Optional[Command]:
    return db.query(Command).filter(Command.id == cmd_id, Command.device_id == device.id).first()


def record_status(db: Session, device: Device, cmd: Command, status: str,
                  success: Optional[bool] = None, error: Optional[str] = None) -> Command:
    nxt = advance(cmd.status, status)
    cmd.status = nxt.value
    if nxt in TERMINAL:
        cmd.executed_at = func.now()
        cmd.result_success = nxt is CommandStatus.EXECUTED if success is None else success
        cmd.result_error = error
    device.last_activity = utcnow()
    try:
        db.commit(); db.refresh(cmd)
    except SQLAlchemyError as e:
        db.rollback()
        raise StoreWriteError("command", e) from e
    log.info("command %s on %s is now %s", cmd.id, device.id, cmd.status)

    if nxt in TERMINAL:
        events.append_event(
            db, events.REMOTE_COMMAND,
            f"Remote command {cmd.type} {cmd.status}" + (f": {error}" if error else ""),
            issued_by=device.owner_id, device_id=device.id,
            severity=SEVERITY.get(CommandType(cmd.type), "low"),
            details={"commandId": cmd.id, "commandType": cmd.type, "status": cmd.status,
                     "success": cmd.result_success, "error": error},
        )
        if cmd.type in (CommandType.LOCK.value, CommandType.UNLOCK.value):
            settle_lock_state(db, device, cmd)
    return cmd


def settle_lock_state(db: Session, device: Device, cmd: Command):
    """Overwrite the console's optimistic projection with what really happened."""
    locked = (cmd.type == CommandType.LOCK.value) == bool(cmd.result_success)
    if bool(device.blocked) == locked:
        return
    now = utcnow()
    if locked:
        device.blocked, device.blocked_at, device.block_reason = True, now, "remote_lock"
    else:
        device.blocked, device.unblocked_at, device.block_reason = False, now, None
    try:
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        raise StoreWriteError("device", e) from e
    log.warning("device %s lock state corrected to %s by command %s", device.id, locked, cmd.id)

    if locked:
        events.append_event(db, events.DEVICE_BLOCKED, f"Device reported blocked after {cmd.type} {cmd.status}",
                            issued_by=device.owner_id, device_id=device.id, severity="high",
                            details={"commandId": cmd.id, "reason": "executor_result"})
    else:
        events.append_event(db, events.DEVICE_UNBLOCKED, f"Device reported unblocked after {cmd.type} {cmd.status}",
                            issued_by=device.owner_id, device_id=device.id, severity="high",
                            details={"commandId": cmd.id, "reason": "executor_result"})
