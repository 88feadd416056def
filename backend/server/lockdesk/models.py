import time
import uuid
from sqlalchemy import Column, Integer, BigInteger, String, Float, Boolean, DateTime, ForeignKey, JSON
from sqlalchemy.orm import relationship
from datetime import datetime, timezone
from .db import Base


def utcnow() -> datetime:
    # naive UTC, the shape every backend hands back on read
    return datetime.now(timezone.utc).replace(tzinfo=None)

def epoch_ms() -> int:
    return int(time.time() * 1000)

def new_id() -> str:
    return uuid.uuid4().hex


class Profile(Base):
    """A console principal. Also carries the lock state of the principal's own
    handset when no Device row has been registered for it."""
    __tablename__ = "profiles"
    id = Column(String, primary_key=True, default=new_id)
    email = Column(String, unique=True, index=True)
    token = Column(String, unique=True, index=True)
    device_info = Column(JSON, nullable=True)  # name/brand/modelName/osName/osVersion
    device_blocked = Column(Boolean, default=False)
    blocked_at = Column(DateTime, nullable=True)
    block_reason = Column(String, nullable=True)
    unblocked_at = Column(DateTime, nullable=True)
    last_activity = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow)

    devices = relationship("Device", back_populates="owner")

class Device(Base):
    __tablename__ = "devices"
    id = Column(String, primary_key=True, default=new_id)
    owner_id = Column(String, ForeignKey("profiles.id"), index=True)
    name = Column(String, index=True)
    brand = Column(String)
    model_name = Column(String)
    os_name = Column(String)
    os_version = Column(String)
    agent_version = Column(String)
    token = Column(String, unique=True, index=True)

    blocked = Column(Boolean, default=False)
    blocked_at = Column(DateTime, nullable=True)
    block_reason = Column(String, nullable=True)
    unblocked_at = Column(DateTime, nullable=True)

    # posture, as last reported by the agent
    last_activity = Column(DateTime, default=utcnow, index=True)
    uptime_sec = Column(Float, nullable=True)
    battery_pct = Column(Float, nullable=True)
    registered_at = Column(DateTime, default=utcnow)

    owner = relationship("Profile", back_populates="devices")

class Command(Base):
    __tablename__ = "commands"
    id = Column(String, primary_key=True, default=new_id)
    device_id = Column(String, index=True)  # may name a profile-derived device
    type = Column(String)       # lock | unlock | locate | wipe
    issued_by = Column(String, index=True)
    status = Column(String, default="pending")  # pending|executing|executed|failed
    params = Column(JSON, nullable=True)
    created_at = Column(DateTime, default=utcnow, index=True)
    # stamped by the database clock; timestamptz keeps it UTC whatever the session zone
    executed_at = Column(DateTime(timezone=True), nullable=True)
    result_success = Column(Boolean, nullable=True)
    result_error = Column(String, nullable=True)

class SecurityEvent(Base):
    __tablename__ = "security_events"
    id = Column(Integer, primary_key=True)
    type = Column(String, index=True)
    description = Column(String)
    timestamp = Column(BigInteger, default=epoch_ms, index=True)  # epoch millis
    device_id = Column(String, index=True, nullable=True)
    issued_by = Column(String, index=True)
    severity = Column(String, default="low")
    details = Column(JSON, nullable=True)
