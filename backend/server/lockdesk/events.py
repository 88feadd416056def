"""Security event log: append-only writes and newest-first reads."""
import logging
from typing import Any, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .alerts import send_alert
from .errors import StoreWriteError
from .models import SecurityEvent, epoch_ms

log = logging.getLogger(__name__)

REMOTE_COMMAND = "remote_command"
DEVICE_BLOCKED = "device_blocked"
DEVICE_UNBLOCKED = "device_unblocked"
SUSPICIOUS_ACTIVITY = "suspicious_activity"
PASSWORD_FAILED = "password_failed"
ADMIN_ENABLED = "admin_enabled"
ADMIN_DISABLED = "admin_disabled"
DEVICE_LOCATED = "device_located"

# what an agent may report on its own behalf
AGENT_EVENT_TYPES = frozenset({SUSPICIOUS_ACTIVITY, PASSWORD_FAILED, ADMIN_ENABLED, ADMIN_DISABLED, DEVICE_LOCATED})
ALERT_EVENT_TYPES = frozenset({SUSPICIOUS_ACTIVITY, PASSWORD_FAILED})

EVENT_LABELS = {
    SUSPICIOUS_ACTIVITY: "Suspicious activity",
    DEVICE_BLOCKED: "Device blocked",
    DEVICE_UNBLOCKED: "Device unblocked",
    REMOTE_COMMAND: "Remote command",
    ADMIN_ENABLED: "Device admin enabled",
    ADMIN_DISABLED: "Device admin disabled",
    PASSWORD_FAILED: "Failed unlock attempt",
    DEVICE_LOCATED: "Device located",
}


def append_event(db: Session, type: str, description: str, issued_by: str,
                 device_id: Optional[str] = None, severity: str = "low",
                 details: Optional[dict[str, Any]] = None) -> SecurityEvent:
    ev = SecurityEvent(type=type, description=description, timestamp=epoch_ms(),
                       device_id=device_id, issued_by=issued_by, severity=severity,
                       details=details or {})
    try:
        db.add(ev); db.commit(); db.refresh(ev)
    except SQLAlchemyError as e:
        db.rollback()
        raise StoreWriteError("security event", e) from e
    log.info("event %s device=%s severity=%s", type, device_id, severity)
    return ev


def recent_events(db: Session, principal_id: str, limit: int,
                  device_id: Optional[str] = None) -> list[SecurityEvent]:
    q = db.query(SecurityEvent).filter(SecurityEvent.issued_by == principal_id)
    if device_id:
        q = q.filter(SecurityEvent.device_id == device_id)
    return q.order_by(SecurityEvent.timestamp.desc(), SecurityEvent.id.desc()).limit(limit).all()


def maybe_alert(device_name: str, ev: SecurityEvent):
    if ev.type in ALERT_EVENT_TYPES:
        send_alert(f"⚠️ {device_name}: {EVENT_LABELS[ev.type]}", ev.description)
