"""Pub/sub broadcast clients.

A broadcaster is constructed once at process start (see ``main.py``), stored on
``app.state.broadcaster`` and handed to route handlers through the
``get_broadcaster`` dependency. Publishing is fire-and-forget: failures are
logged and reported as ``False``, never raised.
"""

import asyncio
import hashlib
import hmac
import logging
import re
from collections import defaultdict
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, Dict, List, Optional, Tuple

import pusher

from config import (
    PUSHER_APP_ID,
    PUSHER_CLUSTER,
    PUSHER_ENABLED,
    PUSHER_KEY,
    PUSHER_PUBLISH_WORKERS,
    PUSHER_SECRET,
)
from utils.logging_helpers import log_error, log_warning

logger = logging.getLogger(__name__)

Handler = Callable[[Dict[str, Any]], None]

# Characters the Pusher HTTP API accepts in a channel name
PUSHER_CHANNEL_NAME_RE = re.compile(r"^[-a-zA-Z0-9_=@,.;]{1,200}$")


class Broadcaster:
    """Interface shared by the Pusher-backed and in-process broadcasters."""

    name = "base"

    def supports_channel(self, channel: str) -> bool:
        return True

    def publish_sync(self, channel: str, event: str, data: Dict[str, Any]) -> bool:
        try:
            self._trigger(channel, event, data)
            return True
        except Exception as e:
            logger.error(f"Failed to publish {event} to channel {channel}: {e}")
            return False

    async def publish(self, channel: str, event: str, data: Dict[str, Any]) -> bool:
        return self.publish_sync(channel, event, data)

    def subscribe(self, channel: str, event: str, handler: Handler) -> None:
        raise NotImplementedError

    def authenticate(
        self, channel: str, socket_id: str, custom_data: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        raise NotImplementedError

    def close(self) -> None:
        pass

    def _trigger(self, channel: str, event: str, data: Dict[str, Any]) -> None:
        raise NotImplementedError


class PusherBroadcaster(Broadcaster):
    """Publishes through the Pusher Channels HTTP API."""

    name = "pusher"

    def __init__(
        self,
        *,
        app_id: str,
        key: str,
        secret: str,
        cluster: str,
        max_workers: int = 5,
    ):
        self.client = pusher.Pusher(
            app_id=app_id,
            key=key,
            secret=secret,
            cluster=cluster,
            ssl=True,
        )
        self._executor = ThreadPoolExecutor(max_workers=max_workers)
        self._unsupported_families = set()
        logger.info("Pusher client initialized")

    def supports_channel(self, channel: str) -> bool:
        if PUSHER_CHANNEL_NAME_RE.match(channel):
            return True
        family = channel.rstrip("0123456789")
        if family not in self._unsupported_families:
            self._unsupported_families.add(family)
            log_warning(logger, "Channel family not accepted by Pusher, skipping", channel_family=family)
        return False

    def _trigger(self, channel: str, event: str, data: Dict[str, Any]) -> None:
        self.client.trigger(channel, event, data)

    async def publish(self, channel: str, event: str, data: Dict[str, Any]) -> bool:
        """
        Publish to a Pusher channel without blocking the event loop.
        The SDK call runs on the broadcaster's thread pool.
        """
        try:
            loop = asyncio.get_running_loop()
            return await loop.run_in_executor(
                self._executor, self.publish_sync, channel, event, data
            )
        except Exception as e:
            logger.error(f"Error in async Pusher publish: {e}")
            return False

    def subscribe(self, channel: str, event: str, handler: Handler) -> None:
        raise NotImplementedError("Pusher subscriptions are made by clients, not the server")

    def authenticate(
        self, channel: str, socket_id: str, custom_data: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        if custom_data is not None:
            return self.client.authenticate(
                channel=channel, socket_id=socket_id, custom_data=custom_data
            )
        return self.client.authenticate(channel=channel, socket_id=socket_id)

    def close(self) -> None:
        self._executor.shutdown(wait=False)


class LocalBroadcaster(Broadcaster):
    """
    In-process fan-out used when Pusher is disabled and in tests.

    Delivery is at-most-once with no persistence: an event published to a
    channel without subscribers is dropped. Every publish is recorded in
    ``published`` for inspection.
    """

    name = "local"

    def __init__(self, *, key: str = "local", secret: str = "local-secret"):
        self._key = key
        self._secret = secret
        self._handlers: Dict[Tuple[str, str], List[Handler]] = defaultdict(list)
        self.published: List[Tuple[str, str, Dict[str, Any]]] = []

    def subscribe(self, channel: str, event: str, handler: Handler) -> None:
        self._handlers[(channel, event)].append(handler)

    def unsubscribe(self, channel: str, event: str, handler: Handler) -> None:
        handlers = self._handlers.get((channel, event))
        if handlers and handler in handlers:
            handlers.remove(handler)

    def _trigger(self, channel: str, event: str, data: Dict[str, Any]) -> None:
        self.published.append((channel, event, data))
        for handler in list(self._handlers.get((channel, event), ())):
            try:
                handler(data)
            except Exception as e:
                logger.warning(f"Local subscriber failed on {channel}/{event}: {e}")

    def events(self, channel: Optional[str] = None, event: Optional[str] = None):
        return [
            (c, e, d)
            for c, e, d in self.published
            if (channel is None or c == channel) and (event is None or e == event)
        ]

    def authenticate(
        self, channel: str, socket_id: str, custom_data: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        # Same signature shape as Pusher: "<key>:<hmac(socket_id:channel)>"
        to_sign = f"{socket_id}:{channel}"
        signature = hmac.new(
            self._secret.encode(), to_sign.encode(), hashlib.sha256
        ).hexdigest()
        return {"auth": f"{self._key}:{signature}"}


def create_broadcaster() -> Broadcaster:
    """Build the process-wide broadcaster from configuration."""
    if PUSHER_ENABLED:
        if all([PUSHER_APP_ID, PUSHER_KEY, PUSHER_SECRET]):
            return PusherBroadcaster(
                app_id=PUSHER_APP_ID,
                key=PUSHER_KEY,
                secret=PUSHER_SECRET,
                cluster=PUSHER_CLUSTER,
                max_workers=PUSHER_PUBLISH_WORKERS,
            )
        logger.warning("Pusher credentials not fully configured, using local broadcaster")
    else:
        logger.info("Pusher disabled, using local broadcaster")
    return LocalBroadcaster()


async def publish_event(broadcaster: Broadcaster, channel: str, event: str, data: Dict[str, Any]) -> bool:
    """Publish through any broadcaster; a failure is logged and returned as False."""
    if not broadcaster.supports_channel(channel):
        return False
    try:
        ok = await broadcaster.publish(channel, event, data)
    except Exception as e:
        log_error(logger, "Broadcast failed", channel=channel, event_name=event, error=e)
        return False
    if not ok:
        log_warning(logger, "Broadcast not delivered", channel=channel, event_name=event)
    return bool(ok)
