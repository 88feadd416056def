"""Resolve a device id to a view of its state.

A device id names either a registered ``Device`` row or, for a principal who
never registered an agent, the handset described on their ``Profile``
(``device-<principal id>``). Each strategy knows how to read its store and how
to write a lock-state projection back to that same store, so whichever store
holds the truth is the one that changes.
"""
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Any, Optional, Tuple

from sqlalchemy.orm import Session

from .auth import Principal
from .errors import DeviceNotFound
from .models import Device, Profile


@dataclass(frozen=True)
class DeviceView:
    id: str
    owner_id: str
    source: str
    name: str
    brand: str
    model_name: str
    os_name: str
    os_version: str
    blocked: bool = False
    blocked_at: Optional[datetime] = None
    block_reason: Optional[str] = None
    unblocked_at: Optional[datetime] = None
    last_activity: Optional[datetime] = None
    registered_at: Optional[datetime] = None


def reconcile(local: Optional[DeviceView], remote: DeviceView) -> DeviceView:
    """The stored record always wins over a locally held projection."""
    return remote


def project(view: DeviceView, **changes: Any) -> DeviceView:
    return replace(view, **changes)


class DirectDeviceLookup:
    source = "device"

    def resolve(self, db: Session, device_id: str, principal: Principal) -> Optional[DeviceView]:
        dev = db.get(Device, device_id)
        if dev is None or dev.owner_id != principal.id:
            return None
        return view_of_device(dev)

    def apply(self, db: Session, view: DeviceView, changes: dict):
        dev = db.get(Device, view.id)
        if dev is None:
            raise DeviceNotFound(f"device {view.id} disappeared")
        for field, value in changes.items():
            setattr(dev, field, value)
        db.commit()


class ProfileDerivedDevice:
    source = "profile"
    prefix = "device-"

    # DeviceView field -> Profile column
    columns = {
        "blocked": "device_blocked",
        "blocked_at": "blocked_at",
        "block_reason": "block_reason",
        "unblocked_at": "unblocked_at",
        "last_activity": "last_activity",
    }

    def device_id_for(self, principal_id: str) -> str:
        return f"{self.prefix}{principal_id}"

    def resolve(self, db: Session, device_id: str, principal: Principal) -> Optional[DeviceView]:
        if device_id != self.device_id_for(principal.id):
            return None
        profile = db.get(Profile, principal.id)
        if profile is None:
            return None
        return view_of_profile(profile, device_id)

    def apply(self, db: Session, view: DeviceView, changes: dict):
        profile = db.get(Profile, view.owner_id)
        if profile is None:
            raise DeviceNotFound(f"profile {view.owner_id} disappeared")
        for field, value in changes.items():
            setattr(profile, self.columns[field], value)
        db.commit()


RESOLVERS = (DirectDeviceLookup(), ProfileDerivedDevice())


def resolve_device(db: Session, device_id: str, principal: Principal,
                   resolvers=RESOLVERS) -> Tuple[DeviceView, Any]:
    """Try each strategy in order; the first that knows the id wins."""
    for resolver in resolvers:
        view = resolver.resolve(db, device_id, principal)
        if view is not None:
            return view, resolver
    raise DeviceNotFound(f"device {device_id} not found")


def view_of_device(dev: Device) -> DeviceView:
    return DeviceView(
        id=dev.id,
        owner_id=dev.owner_id,
        source=DirectDeviceLookup.source,
        name=dev.name or "My device",
        brand=dev.brand or "Unknown",
        model_name=dev.model_name or "Unknown",
        os_name=dev.os_name or "Unknown",
        os_version=dev.os_version or "Unknown",
        blocked=bool(dev.blocked),
        blocked_at=dev.blocked_at,
        block_reason=dev.block_reason,
        unblocked_at=dev.unblocked_at,
        last_activity=dev.last_activity,
        registered_at=dev.registered_at,
    )


def view_of_profile(profile: Profile, device_id: str) -> DeviceView:
    info = profile.device_info or {}
    return DeviceView(
        id=device_id,
        owner_id=profile.id,
        source=ProfileDerivedDevice.source,
        name=info.get("name") or "My device",
        brand=info.get("brand") or "Unknown",
        model_name=info.get("modelName") or "Unknown",
        os_name=info.get("osName") or "Android",
        os_version=info.get("osVersion") or "Unknown",
        blocked=bool(profile.device_blocked),
        blocked_at=profile.blocked_at,
        block_reason=profile.block_reason,
        unblocked_at=profile.unblocked_at,
        last_activity=profile.last_activity,
        registered_at=profile.created_at,
    )
