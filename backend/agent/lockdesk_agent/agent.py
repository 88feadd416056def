import asyncio
import logging
import os
import platform
import socket
import time

import psutil
import requests

from .handlers import CommandFailed, Handlers, LockState, WrongSecurityKey

# ---------------- CONFIG ----------------
API_URL = os.getenv("API_URL", "http://localhost:8000")
TOKEN_FILE = os.getenv("TOKEN_FILE", "./agent_token.txt")
STATE_FILE = os.getenv("STATE_FILE", "./agent_state.json")
OWNER_TOKEN = os.getenv("OWNER_TOKEN", "")  # console token of the owning principal, used once to register
DEVICE_NAME = os.getenv("DEVICE_NAME", socket.gethostname())
UNLOCK_KEY = os.getenv("UNLOCK_KEY", "")
WIPE_ENABLED = os.getenv("WIPE_ENABLED", "0") == "1"
WIPE_PATHS = [p for p in os.getenv("WIPE_PATHS", "").split(os.pathsep) if p]
POLL_INTERVAL = float(os.getenv("POLL_INTERVAL", "10"))
HEARTBEAT_INTERVAL = float(os.getenv("HEARTBEAT_INTERVAL", "30"))
AGENT_VERSION = "0.2.0"
# ----------------------------------------

log = logging.getLogger("lockdesk.agent")


def auth(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}

# ---------------- TOKEN -----------------
def register() -> str:
    payload = {
        "name": DEVICE_NAME,
        "brand": platform.node(),
        "model_name": platform.machine(),
        "os_name": platform.system(),
        "os_version": platform.release(),
        "agent_version": AGENT_VERSION,
    }
    r = requests.post(f"{API_URL}/register", headers=auth(OWNER_TOKEN), json=payload, timeout=10)
    r.raise_for_status()
    return r.json()["token"]

def read_token() -> str:
    """Read the stored device token, registering first if there is none."""
    if os.path.exists(TOKEN_FILE):
        with open(TOKEN_FILE) as f:
            tok = f.read().strip()
        if tok:
            return tok
    tok = register()
    with open(TOKEN_FILE, "w") as f:
        f.write(tok)
    return tok

# -------------- POSTURE ----------------
def collect_posture() -> dict:
    battery_pct = None
    try:
        battery = psutil.sensors_battery()
        if battery:
            battery_pct = battery.percent
    except (AttributeError, NotImplementedError, RuntimeError):
        pass
    return dict(uptime_sec=time.time() - psutil.boot_time(), battery_pct=battery_pct)

def send_heartbeat(token: str, state: LockState) -> dict:
    posture = dict(collect_posture(), locked=state.read())
    r = requests.post(f"{API_URL}/heartbeat", headers=auth(token), json=posture, timeout=10)
    r.raise_for_status()
    return r.json()

# -------------- COMMANDS ----------------
def fetch_pending(token: str) -> list[dict]:
    r = requests.get(f"{API_URL}/agent/commands", headers=auth(token), timeout=10)
    r.raise_for_status()
    return r.json()

def report_status(token: str, cmd_id: str, status: str, success: bool | None = None, error: str | None = None):
    r = requests.post(f"{API_URL}/commands/{cmd_id}/status", headers=auth(token),
                      json={"status": status, "success": success, "error": error}, timeout=10)
    r.raise_for_status()

def report_event(token: str, kind: str, description: str, severity: str = "medium", details: dict | None = None):
    try:
        requests.post(f"{API_URL}/agent/events", headers=auth(token),
                      json={"type": kind, "description": description, "severity": severity,
                            "details": details or {}}, timeout=10)
    except requests.RequestException as e:
        log.warning("event %s not reported: %s", kind, e)

def execute(token: str, handlers: Handlers, cmd: dict) -> str:
    """Run one pending command and report how it went. Returns the final status."""
    cmd_id, kind = cmd["id"], cmd["type"]
    report_status(token, cmd_id, "executing")
    try:
        info = handlers.run(kind, cmd.get("params") or {})
    except WrongSecurityKey as e:
        report_event(token, "password_failed", "Remote unlock with a wrong security key", "high",
                     {"commandId": cmd_id})
        report_status(token, cmd_id, "failed", success=False, error=str(e))
        return "failed"
    except CommandFailed as e:
        log.warning("command %s (%s) failed: %s", cmd_id, kind, e)
        report_status(token, cmd_id, "failed", success=False, error=str(e))
        return "failed"
    except Exception as e:
        log.exception("command %s (%s) crashed", cmd_id, kind)
        report_status(token, cmd_id, "failed", success=False, error=f"exception: {e}")
        return "failed"
    if kind == "locate":
        report_event(token, "device_located", f"Device located: {info.get('ip') or 'unknown address'}",
                     "medium", dict(info, commandId=cmd_id))
    report_status(token, cmd_id, "executed", success=True)
    log.info("command %s (%s) executed", cmd_id, kind)
    return "executed"

def run_once(token: str, handlers: Handlers) -> list[str]:
    return [execute(token, handlers, cmd) for cmd in fetch_pending(token)]

# ---------------- LOOPS ----------------
async def heartbeat_loop(token: str, state: LockState):
    while True:
        try:
            send_heartbeat(token, state)
        except requests.RequestException as e:
            log.warning("heartbeat failed: %s", e)
        except Exception:
            log.exception("heartbeat crashed")
        await asyncio.sleep(HEARTBEAT_INTERVAL)

async def command_loop(token: str, handlers: Handlers):
    while True:
        try:
            await asyncio.to_thread(run_once, token, handlers)
        except requests.RequestException as e:
            # offline: commands stay pending on the server until the next poll
            log.warning("command poll failed: %s", e)
        except Exception:
            log.exception("command loop crashed")
        await asyncio.sleep(POLL_INTERVAL)

# ---------------- MAIN ----------------
async def async_main():
    token = read_token()
    state = LockState(STATE_FILE)
    handlers = Handlers(state, unlock_key=UNLOCK_KEY,
                        wipe_enabled=WIPE_ENABLED, wipe_paths=WIPE_PATHS)

    tasks = [asyncio.create_task(heartbeat_loop(token, state)),
             asyncio.create_task(command_loop(token, handlers))]
    try:
        await asyncio.gather(*tasks)
    except asyncio.CancelledError:
        log.info("Shutting down...")
    finally:
        for t in tasks:
            t.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        log.info("Agent stopped cleanly.")

def main():
    logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO"))
    try:
        asyncio.run(async_main())
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
