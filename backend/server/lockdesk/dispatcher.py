"""Command dispatch.

A dispatch validates the request, writes a ``pending`` command, projects the
expected lock state onto the device for lock/unlock, and writes the audit
events. The three stores are written one after another with independent
commits: a failure part-way leaves the earlier writes in place.
"""
import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Callable, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from . import events, unlock_gate
from .auth import Principal
from .commands import CommandStatus, CommandType, LOCK_STATE_COMMANDS, SEVERITY, parse_type
from .errors import DeviceBusy, DeviceNotFound, DispatchRejected, InvalidLockState, StoreWriteError
from .history import COMMAND_LABELS
from .models import Command, utcnow
from .notify import CommandNotifier
from .resolution import RESOLVERS, DeviceView, project, resolve_device

log = logging.getLogger(__name__)

REMOTE_LOCK = "remote_lock"
RETRY_MESSAGE = "Could not send the command. Please try again."


class DispatchGuard:
    """Process-local busy flags, one per device.

    Stops the same console process from running two dispatches for one device
    at once. Other processes are not covered.
    """

    def __init__(self):
        self._busy: set[str] = set()
        self._lock = threading.Lock()

    def is_busy(self, device_id: str) -> bool:
        with self._lock:
            return device_id in self._busy

    @contextmanager
    def hold(self, device_id: str):
        with self._lock:
            if device_id in self._busy:
                raise DeviceBusy(f"a command for device {device_id} is already being sent")
            self._busy.add(device_id)
        try:
            yield
        finally:
            with self._lock:
                self._busy.discard(device_id)


dispatch_guard = DispatchGuard()


@dataclass
class DispatchResult:
    ok: bool
    command_id: Optional[str] = None
    error: Optional[str] = None
    message: str = ""
    # optimistic projection; callers must re-read the device before display
    device: Optional[DeviceView] = None


class Dispatcher:
    def __init__(self, db: Session, notifier: Optional[CommandNotifier] = None,
                 guard: DispatchGuard = dispatch_guard, resolvers=RESOLVERS,
                 clock: Callable = utcnow):
        self.db = db
        self.notifier = notifier
        self.guard = guard
        self.resolvers = resolvers
        self.clock = clock

    def dispatch(self, device_id: str, command_type: str, params: Optional[dict[str, Any]],
                 issued_by: Optional[Principal]) -> DispatchResult:
        if issued_by is None:
            return DispatchResult(False, error="unauthenticated", message="Sign in to send commands.")
        try:
            with self.guard.hold(device_id):
                cmd, view = self._dispatch(device_id, command_type, params, issued_by)
        except DispatchRejected as e:
            log.info("dispatch %s to %s rejected: %s", command_type, device_id, e)
            return DispatchResult(False, error=e.code, message=str(e))
        except StoreWriteError as e:
            log.error("dispatch %s to %s failed: %s", command_type, device_id, e)
            return DispatchResult(False, error=e.code, message=RETRY_MESSAGE)

        if self.notifier is not None:
            self.notifier.publish(view.id, cmd.id)
        label = COMMAND_LABELS.get(cmd.type, cmd.type)
        return DispatchResult(True, command_id=cmd.id, message=f"{label}: command sent.", device=view)

    def _dispatch(self, device_id, command_type, params, principal: Principal):
        ctype = parse_type(command_type)
        params = dict(params or {})
        view, resolver = resolve_device(self.db, device_id, principal, self.resolvers)
        check_lock_state(ctype, view)
        if ctype is CommandType.UNLOCK or "securityKey" in params:
            params["securityKey"] = unlock_gate.validate(params.get("securityKey"))

        cmd = self._create_command(view.id, ctype, params, principal.id)

        if ctype in LOCK_STATE_COMMANDS:
            changes = self._projection(ctype)
            try:
                resolver.apply(self.db, view, changes)
            except SQLAlchemyError as e:
                self.db.rollback()
                raise StoreWriteError("device", e) from e
            except DeviceNotFound as e:
                # the command row is already committed
                raise StoreWriteError("device", e) from e
            view = project(view, **changes)

        self._audit(cmd, ctype, view, principal)
        log.info("dispatched %s %s to %s (%s)", ctype.value, cmd.id, view.id, view.source)
        return cmd, view

    def _create_command(self, device_id: str, ctype: CommandType, params: dict, issued_by: str) -> Command:
        cmd = Command(device_id=device_id, type=ctype.value, issued_by=issued_by,
                      status=CommandStatus.PENDING.value, params=params, created_at=self.clock())
        try:
            self.db.add(cmd); self.db.commit(); self.db.refresh(cmd)
        except SQLAlchemyError as e:
            self.db.rollback()
            raise StoreWriteError("command", e) from e
        return cmd

    def _projection(self, ctype: CommandType) -> dict:
        now = self.clock()
        if ctype is CommandType.LOCK:
            return {"blocked": True, "blocked_at": now, "block_reason": REMOTE_LOCK, "last_activity": now}
        return {"blocked": False, "unblocked_at": now, "block_reason": None, "last_activity": now}

    def _audit(self, cmd: Command, ctype: CommandType, view: DeviceView, principal: Principal):
        events.append_event(
            self.db, events.REMOTE_COMMAND,
            f"Remote command sent: {ctype.value}",
            issued_by=principal.id, device_id=view.id, severity=SEVERITY[ctype],
            details={"commandId": cmd.id, "commandType": ctype.value,
                     "params": redact(cmd.params), "issuedByEmail": principal.email},
        )
        if ctype is CommandType.LOCK:
            events.append_event(
                self.db, events.DEVICE_BLOCKED, "Device blocked remotely from the console",
                issued_by=principal.id, device_id=view.id, severity="high",
                details={"commandId": cmd.id, "reason": REMOTE_LOCK},
            )
        elif ctype is CommandType.UNLOCK:
            events.append_event(
                self.db, events.DEVICE_UNBLOCKED, "Device unblocked remotely from the console",
                issued_by=principal.id, device_id=view.id, severity="high",
                details={"commandId": cmd.id},
            )


def check_lock_state(ctype: CommandType, view: DeviceView):
    if ctype is CommandType.LOCK and view.blocked:
        raise InvalidLockState(f"device {view.id} is already blocked")
    if ctype is CommandType.UNLOCK and not view.blocked:
        raise InvalidLockState(f"device {view.id} is not blocked")


def redact(params: Optional[dict]) -> dict:
    out = dict(params or {})
    if "securityKey" in out:
        out["securityKey"] = unlock_gate.mask(out["securityKey"])
    return out
