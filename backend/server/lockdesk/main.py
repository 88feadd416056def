import uvicorn
import logging
from typing import List
from fastapi import FastAPI, Depends, Header, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.orm import Session

from .db import init_db, get_db
from .models import Device, Profile, utcnow
from .schemas import (PrincipalCreate, PrincipalResp, RegisterReq, RegisterResp, HeartbeatIn, DeviceOut,
                      CommandCreate, DispatchOut, CommandEntryOut, PendingCommandOut, CommandUpdate,
                      CommandStatusOut, AgentEventIn, SecurityEventOut)
from .auth import gen_token, require_agent, require_admin, require_principal, get_device_by_name
from .commands import DESTRUCTIVE_COMMANDS
from .dispatcher import Dispatcher
from .errors import DeviceNotFound, InvalidTransition, StoreWriteError
from .events import AGENT_EVENT_TYPES, EVENT_LABELS, append_event, maybe_alert, recent_events
from .executor import find_command, pending_commands, record_status
from .history import CONTROL_PANEL_LIMIT, DETAIL_VIEW_LIMIT, command_history, format_timestamp
from .notify import CommandNotifier, get_notifier
from .resolution import ProfileDerivedDevice, reconcile, resolve_device, view_of_device, view_of_profile
from .settings import settings

log = logging.getLogger("lockdesk")

app = FastAPI(title="LockDesk")
app.add_middleware(CORSMiddleware, allow_origins=settings.cors_origins, allow_headers=["*"], allow_methods=["*"])

ERROR_STATUS = {
    "unauthenticated": 401,
    "device_not_found": 404,
    "invalid_lock_state": 409,
    "device_busy": 409,
    "invalid_security_key": 422,
    "unknown_command": 422,
    "write_failed": 503,
}
CONFIRM_REQUIRED = {c.value for c in DESTRUCTIVE_COMMANDS}


def event_out(e) -> SecurityEventOut:
    return SecurityEventOut(id=e.id, type=e.type, label=EVENT_LABELS.get(e.type, e.type),
                            description=e.description, timestamp=e.timestamp, time=format_timestamp(e.timestamp),
                            device_id=e.device_id, severity=e.severity, details=e.details)

@app.on_event("startup")
def on_startup():
    logging.basicConfig(level=settings.log_level)
    init_db()

# --- admin ---

@app.get("/admin/login")
def admin_login(authorization: str | None = Header(None)):
    # will raise 401 automatically if invalid
    require_admin(authorization)
    return {"status": "ok", "message": "Admin token valid"}

@app.post("/admin/principals", response_model=PrincipalResp)
def create_principal(body: PrincipalCreate, authorization: str | None = Header(None), db: Session = Depends(get_db)):
    require_admin(authorization)
    if db.query(Profile).filter(Profile.email == body.email).first():
        raise HTTPException(409, "Principal already exists")
    profile = Profile(email=body.email, token=gen_token(), device_info=body.device_info, last_activity=utcnow())
    db.add(profile); db.commit(); db.refresh(profile)
    return PrincipalResp.model_validate(profile)

# --- console ---

@app.get("/devices", response_model=List[DeviceOut])
def list_devices(status: str = Query("all", pattern="^(all|active|blocked)$"), q: str | None = None,
                 authorization: str | None = Header(None), db: Session = Depends(get_db)):
    principal = require_principal(db, authorization)
    views = [view_of_device(d) for d in db.query(Device).filter(Device.owner_id == principal.id)]
    profile = db.get(Profile, principal.id)
    if profile is not None and profile.device_info:
        views.append(view_of_profile(profile, ProfileDerivedDevice().device_id_for(principal.id)))
    if status != "all":
        views = [v for v in views if v.blocked == (status == "blocked")]
    if q:
        needle = q.lower()
        views = [v for v in views if any(needle in (s or "").lower() for s in (v.name, v.brand, v.model_name))]
    views.sort(key=lambda v: v.last_activity or v.registered_at or utcnow(), reverse=True)
    return [DeviceOut.model_validate(v) for v in views]

@app.get("/devices/{device_id}", response_model=DeviceOut)
def get_device(device_id: str, authorization: str | None = Header(None), db: Session = Depends(get_db)):
    principal = require_principal(db, authorization)
    try:
        view, _ = resolve_device(db, device_id, principal)
    except DeviceNotFound:
        raise HTTPException(404, "Device not found")
    return DeviceOut.model_validate(view)

@app.post("/devices/{device_id}/commands", response_model=DispatchOut)
def create_command(device_id: str, body: CommandCreate, authorization: str | None = Header(None),
                   db: Session = Depends(get_db), notifier: CommandNotifier = Depends(get_notifier)):
    principal = require_principal(db, authorization)
    if body.type in CONFIRM_REQUIRED and not body.confirm:
        raise HTTPException(422, f"'{body.type}' must be confirmed")
    result = Dispatcher(db, notifier).dispatch(device_id, body.type, body.params, principal)
    if not result.ok:
        raise HTTPException(ERROR_STATUS.get(result.error, 400), result.message)
    # display what the store holds now, not the projection
    db.expire_all()
    try:
        fresh, _ = resolve_device(db, device_id, principal)
    except DeviceNotFound:
        raise HTTPException(404, "Device not found")
    return DispatchOut(command_id=result.command_id, message=result.message,
                       device=DeviceOut.model_validate(reconcile(result.device, fresh)))

@app.get("/devices/{device_id}/commands", response_model=List[CommandEntryOut])
def list_commands(device_id: str, limit: int = Query(CONTROL_PANEL_LIMIT, ge=1, le=DETAIL_VIEW_LIMIT),
                  authorization: str | None = Header(None), db: Session = Depends(get_db)):
    principal = require_principal(db, authorization)
    try:
        view, _ = resolve_device(db, device_id, principal)
    except DeviceNotFound:
        raise HTTPException(404, "Device not found")
    return [CommandEntryOut.model_validate(e) for e in command_history(db, view.id, limit)]

@app.get("/events", response_model=List[SecurityEventOut])
def list_events(limit: int = Query(settings.events_limit, ge=1, le=settings.events_limit), device_id: str | None = None,
                authorization: str | None = Header(None), db: Session = Depends(get_db)):
    principal = require_principal(db, authorization)
    return [event_out(e) for e in recent_events(db, principal.id, limit, device_id)]

# --- agent ---

@app.post("/register", response_model=RegisterResp)
def register(req: RegisterReq, authorization: str | None = Header(None), db: Session = Depends(get_db)):
    principal = require_principal(db, authorization)
    existing_device = get_device_by_name(db, principal.id, req.name)
    if existing_device:
        log.info("device %s re-registered", existing_device.id)
        return RegisterResp(device_id=existing_device.id, token=existing_device.token)
    new_device = Device(owner_id=principal.id, name=req.name, brand=req.brand, model_name=req.model_name,
                        os_name=req.os_name, os_version=req.os_version, agent_version=req.agent_version,
                        token=gen_token(), last_activity=utcnow(), blocked=False)
    db.add(new_device); db.commit(); db.refresh(new_device)
    log.info("device %s registered for %s", new_device.id, principal.id)
    return RegisterResp(device_id=new_device.id, token=new_device.token)

@app.post("/heartbeat")
def heartbeat(body: HeartbeatIn, authorization: str | None = Header(None), db: Session = Depends(get_db)):
    dev = require_agent(db, authorization)
    dev.last_activity = utcnow()
    dev.uptime_sec = body.uptime_sec; dev.battery_pct = body.battery_pct
    db.commit()
    if body.locked is not None and body.locked != bool(dev.blocked):
        log.warning("device %s reports locked=%s but record says blocked=%s", dev.id, body.locked, dev.blocked)
    return {"ok": True, "blocked": bool(dev.blocked)}

@app.get("/agent/commands", response_model=List[PendingCommandOut])
def agent_commands(authorization: str | None = Header(None), db: Session = Depends(get_db)):
    dev = require_agent(db, authorization)
    return [PendingCommandOut.model_validate(c) for c in pending_commands(db, dev)]

@app.post("/commands/{cmd_id}/status", response_model=CommandStatusOut)
def command_status(cmd_id: str, body: CommandUpdate, authorization: str | None = Header(None), db: Session = Depends(get_db)):
    dev = require_agent(db, authorization)
    cmd = find_command(db, dev, cmd_id)
    if not cmd: raise HTTPException(404, "Command not found")
    try:
        cmd = record_status(db, dev, cmd, body.status, body.success, body.error)
    except InvalidTransition as e:
        raise HTTPException(409, str(e))
    except StoreWriteError as e:
        log.error("status report for %s failed: %s", cmd_id, e)
        raise HTTPException(503, "Could not record status, retry later")
    return CommandStatusOut.model_validate(cmd)

@app.post("/agent/events", response_model=SecurityEventOut)
def agent_event(body: AgentEventIn, authorization: str | None = Header(None), db: Session = Depends(get_db)):
    dev = require_agent(db, authorization)
    if body.type not in AGENT_EVENT_TYPES:
        raise HTTPException(422, f"Agents may not report '{body.type}' events")
    try:
        ev = append_event(db, body.type, body.description, issued_by=dev.owner_id, device_id=dev.id,
                          severity=body.severity, details=body.details)
    except StoreWriteError as e:
        log.error("agent event from %s failed: %s", dev.id, e)
        raise HTTPException(503, "Could not record event, retry later")
    maybe_alert(dev.name, ev)
    return event_out(ev)


def run():
    uvicorn.run("lockdesk.main:app", host="0.0.0.0", port=8000)

if __name__ == "__main__":
    run()
