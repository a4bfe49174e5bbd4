"""Pub/sub channel names.

Every publisher and subscriber must derive channel names through these helpers.
Pair channels sort the two user ids numerically, so both participants (and the
server) arrive at the same name regardless of argument order.

``user-{id}`` and ``user-notifications:{id}`` are two separate channel families
with different event classes. They are not aliases.
"""

from typing import Tuple, Union

PRIVATE_CHAT_PREFIX = "private-chat"
PRIVATE_CALL_PREFIX = "private-call"
GROUP_PREFIX = "group"
USER_PREFIX = "user"
USER_NOTIFICATIONS_PREFIX = "user-notifications:"

Identifier = Union[int, str]


class InvalidChannelIdentifier(ValueError):
    """Raised when a channel cannot be derived from the given identifier(s)."""


def normalize_id(value: Identifier) -> int:
    """Coerce a user/group id into a positive int or raise."""
    if isinstance(value, bool) or value is None:
        raise InvalidChannelIdentifier(f"Invalid identifier: {value!r}")
    if isinstance(value, int):
        number = value
    elif isinstance(value, str):
        if not (value.isascii() and value.isdigit()):
            raise InvalidChannelIdentifier(f"Invalid identifier: {value!r}")
        number = int(value)
    else:
        raise InvalidChannelIdentifier(f"Invalid identifier: {value!r}")
    if number <= 0:
        raise InvalidChannelIdentifier(f"Identifier must be positive: {value!r}")
    return number


def sorted_pair(user_a: Identifier, user_b: Identifier) -> Tuple[int, int]:
    low, high = sorted((normalize_id(user_a), normalize_id(user_b)))
    if low == high:
        raise InvalidChannelIdentifier("A pair channel needs two distinct users")
    return low, high


def private_chat_channel(user_a: Identifier, user_b: Identifier) -> str:
    low, high = sorted_pair(user_a, user_b)
    return f"{PRIVATE_CHAT_PREFIX}-{low}-{high}"


def call_channel(user_a: Identifier, user_b: Identifier) -> str:
    low, high = sorted_pair(user_a, user_b)
    return f"{PRIVATE_CALL_PREFIX}-{low}-{high}"


def group_channel(group_id: Identifier) -> str:
    return f"{GROUP_PREFIX}-{normalize_id(group_id)}"


def user_channel(user_id: Identifier) -> str:
    return f"{USER_PREFIX}-{normalize_id(user_id)}"


def user_notifications_channel(user_id: Identifier) -> str:
    return f"{USER_NOTIFICATIONS_PREFIX}{normalize_id(user_id)}"


def parse_pair_channel(channel_name: str) -> Tuple[str, int, int]:
    """Split ``private-chat-{low}-{high}`` / ``private-call-{low}-{high}``.

    Returns ``(prefix, low, high)``. Names whose ids are not in canonical
    order are rejected, since no publisher ever produces them.
    """
    for prefix in (PRIVATE_CHAT_PREFIX, PRIVATE_CALL_PREFIX):
        head = f"{prefix}-"
        if not channel_name.startswith(head):
            continue
        parts = channel_name[len(head):].split("-")
        if len(parts) != 2:
            raise InvalidChannelIdentifier(f"Malformed channel name: {channel_name}")
        low, high = sorted_pair(parts[0], parts[1])
        if f"{head}{low}-{high}" != channel_name:
            raise InvalidChannelIdentifier(f"Non-canonical channel name: {channel_name}")
        return prefix, low, high
    raise InvalidChannelIdentifier(f"Not a pair channel: {channel_name}")


def parse_user_channel(channel_name: str) -> int:
    """Return the owner id of a ``user-{id}`` or ``user-notifications:{id}`` channel."""
    if channel_name.startswith(USER_NOTIFICATIONS_PREFIX):
        return normalize_id(channel_name[len(USER_NOTIFICATIONS_PREFIX):])
    head = f"{USER_PREFIX}-"
    if channel_name.startswith(head):
        return normalize_id(channel_name[len(head):])
    raise InvalidChannelIdentifier(f"Not a user channel: {channel_name}")
