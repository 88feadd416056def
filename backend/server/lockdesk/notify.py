import json, logging
from redis import Redis, RedisError
from .settings import settings

log = logging.getLogger(__name__)


class CommandNotifier:
    """Tells subscribed agents and dashboards that a device has new work.

    Delivery is best effort; an agent that misses the message still picks the
    command up on its next poll.
    """

    def __init__(self, client: Redis, channel: str):
        self.client = client
        self.channel = channel

    def publish(self, device_id: str, cmd_id: str) -> bool:
        try:
            self.client.publish(self.channel, json.dumps({"device_id": device_id, "cmd_id": cmd_id}))
            return True
        except RedisError as e:
            log.warning("could not publish command %s for %s: %s", cmd_id, device_id, e)
            return False


redis = Redis(host=settings.redis_host, port=settings.redis_port, decode_responses=True,
              socket_connect_timeout=2)
notifier = CommandNotifier(redis, settings.commands_channel)

def get_notifier() -> CommandNotifier:
    return notifier
