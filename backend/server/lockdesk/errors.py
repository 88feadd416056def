class LockDeskError(Exception):
    code = "error"


class DispatchRejected(LockDeskError):
    """Raised before any write when a dispatch must not go ahead."""
    code = "rejected"


class DeviceNotFound(DispatchRejected):
    code = "device_not_found"


class SecurityKeyRejected(DispatchRejected):
    code = "invalid_security_key"


class InvalidLockState(DispatchRejected):
    code = "invalid_lock_state"


class DeviceBusy(DispatchRejected):
    code = "device_busy"


class UnknownCommandType(DispatchRejected):
    code = "unknown_command"


class StoreWriteError(LockDeskError):
    code = "write_failed"

    def __init__(self, store: str, cause: Exception):
        super().__init__(f"{store} write failed: {cause}")
        self.store = store
        self.cause = cause


class InvalidTransition(LockDeskError):
    code = "invalid_transition"

    def __init__(self, current: str, requested: str):
        super().__init__(f"cannot move command from {current} to {requested}")
        self.current = current
        self.requested = requested
