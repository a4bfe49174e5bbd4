"""Subscriber-side typing indicator state.

Typing events are best-effort and may be lost, so a ``typing`` entry clears
itself ``timeout_seconds`` after the last ``isTyping=true`` event even if no
stop event ever arrives. Each new ``isTyping=true`` restarts the timer.
"""

import time
from threading import Lock
from typing import Any, Callable, Dict, List, Optional

from config import TYPING_TIMEOUT_SECONDS


class TypingIndicatorTracker:
    def __init__(
        self,
        *,
        timeout_seconds: float = TYPING_TIMEOUT_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.timeout_seconds = timeout_seconds
        self._clock = clock
        self._lock = Lock()
        # user_id -> (expires_at, user_name)
        self._entries: Dict[int, tuple] = {}

    def _now(self, now: Optional[float]) -> float:
        return self._clock() if now is None else now

    def handle_event(self, payload: Dict[str, Any], now: Optional[float] = None) -> None:
        """Apply a ``typing`` event payload ``{userId, userName, isTyping}``."""
        user_id = payload.get("userId")
        if user_id is None:
            return
        with self._lock:
            if payload.get("isTyping"):
                expires_at = self._now(now) + self.timeout_seconds
                self._entries[user_id] = (expires_at, payload.get("userName"))
            else:
                self._entries.pop(user_id, None)

    # Signature matches LocalBroadcaster.subscribe handlers
    __call__ = handle_event

    def is_typing(self, user_id: int, now: Optional[float] = None) -> bool:
        current = self._now(now)
        with self._lock:
            entry = self._entries.get(user_id)
            if entry is None:
                return False
            if entry[0] <= current:
                del self._entries[user_id]
                return False
            return True

    def active_typers(self, now: Optional[float] = None) -> List[Dict[str, Any]]:
        current = self._now(now)
        with self._lock:
            expired = [uid for uid, (exp, _) in self._entries.items() if exp <= current]
            for uid in expired:
                del self._entries[uid]
            return [
                {"userId": uid, "userName": name}
                for uid, (_, name) in sorted(self._entries.items(), key=lambda kv: kv[1][0])
            ]
