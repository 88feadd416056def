from datetime import datetime
from pydantic import BaseModel, Field
from typing import Optional, Any, Dict, Literal

class PrincipalCreate(BaseModel):
    email: str
    device_info: Optional[Dict[str, Any]] = None

class PrincipalResp(BaseModel):
    id: str
    email: str
    token: str

    class Config:
        from_attributes = True

class RegisterReq(BaseModel):
    name: str
    brand: Optional[str] = None
    model_name: Optional[str] = None
    os_name: Optional[str] = None
    os_version: Optional[str] = None
    agent_version: Optional[str] = None

class RegisterResp(BaseModel):
    device_id: str
    token: str

class HeartbeatIn(BaseModel):
    uptime_sec: Optional[float] = None
    battery_pct: Optional[float] = None
    locked: Optional[bool] = None  # lock state as the agent sees it

class DeviceOut(BaseModel):
    id: str
    source: str
    name: str
    brand: str
    model_name: str
    os_name: str
    os_version: str
    blocked: bool
    blocked_at: Optional[datetime] = None
    block_reason: Optional[str] = None
    unblocked_at: Optional[datetime] = None
    last_activity: Optional[datetime] = None
    registered_at: Optional[datetime] = None

    class Config:
        from_attributes = True

class CommandCreate(BaseModel):
    type: str
    params: Dict[str, Any] = Field(default_factory=dict)
    # lock and wipe must be confirmed explicitly
    confirm: bool = False

class DispatchOut(BaseModel):
    command_id: str
    message: str
    device: DeviceOut

class CommandEntryOut(BaseModel):
    id: str
    type: str
    label: str
    status: str
    status_color: str
    terminal: bool
    created_at: str
    executed_at: Optional[str] = None
    result: Optional[str] = None

    class Config:
        from_attributes = True

class PendingCommandOut(BaseModel):
    id: str
    type: str
    params: Optional[Dict[str, Any]] = None
    created_at: datetime

    class Config:
        from_attributes = True

class CommandUpdate(BaseModel):
    status: Literal["executing", "executed", "failed"]
    success: Optional[bool] = None
    error: Optional[str] = None

class CommandStatusOut(BaseModel):
    id: str
    status: str
    executed_at: Optional[datetime] = None
    result_success: Optional[bool] = None
    result_error: Optional[str] = None

    class Config:
        from_attributes = True

class AgentEventIn(BaseModel):
    type: str
    description: str
    severity: Literal["low", "medium", "high"] = "medium"
    details: Optional[Dict[str, Any]] = None

class SecurityEventOut(BaseModel):
    id: int
    type: str
    label: str
    description: str
    timestamp: int
    time: str
    device_id: Optional[str] = None
    severity: str
    details: Optional[Dict[str, Any]] = None
