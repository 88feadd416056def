"""What the agent actually does for each command type.

The unlock key is checked here, on the device. The console only checks that a
key of the right length was typed.
"""
import hmac
import json
import logging
import os
import platform
import re
import shutil
import socket
import subprocess

log = logging.getLogger(__name__)


class CommandFailed(Exception):
    pass


class WrongSecurityKey(CommandFailed):
    pass


def run_shell(cmd: str):
    try:
        out = subprocess.run(cmd, shell=True, capture_output=True, text=True, timeout=60)
        return out.returncode, (out.stdout + "\n" + out.stderr).strip()
    except (OSError, subprocess.SubprocessError) as e:
        return 1, f"error: {e}"

def lock_screen_command() -> str:
    system = platform.system()
    if system == "Windows":
        return "rundll32.exe user32.dll,LockWorkStation"
    if system == "Darwin":
        return "pmset displaysleepnow"
    return "loginctl lock-sessions"

def local_ip() -> str | None:
    try:
        with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as s:
            s.connect(("8.8.8.8", 80))  # no packet is sent for UDP connect
            return s.getsockname()[0]
    except OSError:
        return None


class LockState:
    """Whether this agent considers the device blocked, kept across restarts."""

    def __init__(self, path: str):
        self.path = path

    def read(self) -> bool:
        if not os.path.exists(self.path):
            return False
        with open(self.path) as f:
            return bool(json.load(f).get("locked", False))

    def write(self, locked: bool):
        with open(self.path, "w") as f:
            json.dump({"locked": locked}, f)


class Handlers:
    def __init__(self, state: LockState, unlock_key: str | None = None,
                 wipe_enabled: bool = False, wipe_paths: list[str] | None = None):
        self.state = state
        self.unlock_key = re.sub(r"\s+", "", unlock_key or "")
        self.wipe_enabled = wipe_enabled
        self.wipe_paths = wipe_paths or []

    def lock(self, params: dict) -> dict:
        rc, out = run_shell(lock_screen_command())
        if rc != 0:
            raise CommandFailed(f"lock failed (rc={rc}): {out}")
        self.state.write(True)
        return {}

    def unlock(self, params: dict) -> dict:
        if not self.unlock_key:
            raise CommandFailed("no unlock key configured on this device")
        given = re.sub(r"\s+", "", params.get("securityKey") or "")
        if not hmac.compare_digest(given.encode(), self.unlock_key.encode()):
            raise WrongSecurityKey("security key rejected by device")
        self.state.write(False)
        return {}

    def locate(self, params: dict) -> dict:
        return {"hostname": socket.gethostname(), "ip": local_ip(), "platform": platform.platform()}

    def wipe(self, params: dict) -> dict:
        if not self.wipe_enabled:
            raise CommandFailed("wipe is disabled on this agent")
        removed = []
        for path in self.wipe_paths:
            if not os.path.exists(path):
                continue
            for entry in os.listdir(path):
                full = os.path.join(path, entry)
                if os.path.isdir(full) and not os.path.islink(full):
                    shutil.rmtree(full)
                else:
                    os.remove(full)
            removed.append(path)
        log.warning("wiped %s", removed)
        return {"wiped": removed}

    def run(self, kind: str, params: dict) -> dict:
        handler = getattr(self, kind, None) if kind in ("lock", "unlock", "locate", "wipe") else None
        if handler is None:
            raise CommandFailed(f"unknown kind: {kind}")
        return handler(params or {})
