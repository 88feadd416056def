import json, logging, requests
from .settings import settings

log = logging.getLogger(__name__)

def send_alert(title: str, text: str):
    if not settings.slack_webhook:
        return
    payload = {"text": f"*{title}*\n{text}"}
    try:
        requests.post(settings.slack_webhook, data=json.dumps(payload), headers={"Content-Type":"application/json"}, timeout=5)
    except requests.RequestException as e:
        log.warning("slack alert failed: %s", e)
