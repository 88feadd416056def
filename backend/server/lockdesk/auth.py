import secrets
from dataclasses import dataclass
from fastapi import HTTPException
from sqlalchemy.orm import Session
from .models import Device, Profile
from .settings import settings


@dataclass(frozen=True)
class Principal:
    id: str
    email: str | None = None


def gen_token() -> str:
    return secrets.token_urlsafe(32)

def _bearer(authorization: str | None) -> str | None:
    if not authorization or not authorization.startswith("Bearer "):
        return None
    return authorization.removeprefix("Bearer ").strip() or None

def require_agent(db: Session, authorization: str | None) -> Device:
    tok = _bearer(authorization)
    if not tok:
        raise HTTPException(401, "Unauthorized")
    dev = db.query(Device).filter(Device.token == tok).first()
    if not dev:
        raise HTTPException(401, "Invalid token")
    return dev

def require_principal(db: Session, authorization: str | None) -> Principal:
    tok = _bearer(authorization)
    if not tok:
        raise HTTPException(401, "Unauthorized")
    profile = db.query(Profile).filter(Profile.token == tok).first()
    if not profile:
        raise HTTPException(401, "Invalid token")
    return Principal(id=profile.id, email=profile.email)

def require_admin(authorization: str | None):
    if not settings.admin_token:
        raise HTTPException(503, "ADMIN_TOKEN not configured")
    if not secrets.compare_digest(authorization or "", f"Bearer {settings.admin_token}"):
        raise HTTPException(401, "Admin token invalid")

def get_device_by_name(db: Session, owner_id: str, name: str) -> Device | None:
    return db.query(Device).filter(Device.owner_id == owner_id, Device.name == name).first()
