"""
Change notification for messages.

Every saved, deleted or bulk-read message is published twice:

* in-process, as a `MessageChange` on the typed `message_changed` signal, so
  live `ConversationFeed` instances can refresh;
* across processes, by bumping two cache counters (`receiver=<id>` and
  `sender=<id>`). A member's change token is built from their two counters,
  so a page can poll `/messages/changes/` and re-fetch only when the token moves.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Final, Literal

from django.conf import settings
from django.core.cache import cache
from django.dispatch import Signal

logger = logging.getLogger(__name__)

ChangeAction = Literal["created", "updated", "deleted", "read"]
ChangeChannel = Literal["receiver", "sender"]

CACHE_KEY_PREFIX: Final[str] = "campusnest:messages:changes"

# Sent with keyword argument `change` holding a `MessageChange`.
message_changed = Signal()


@dataclass(frozen=True)
class MessageChange:
    message_id: int
    sender_id: int
    receiver_id: int
    property_id: int | None
    action: ChangeAction

    def involves(self, member_id: int) -> bool:
        return int(member_id) in (int(self.sender_id), int(self.receiver_id))


def change_token_ttl_seconds() -> int:
    return max(60, int(getattr(settings, "CAMPUSNEST_CHANGE_TOKEN_TTL_SECONDS", 86_400) or 86_400))


def build_channel_cache_key(channel: ChangeChannel, member_id: int) -> str:
    return f"{CACHE_KEY_PREFIX}:{channel}={int(member_id)}"


def bump_channel(channel: ChangeChannel, member_id: int) -> int:
    cache_key = build_channel_cache_key(channel, member_id)
    ttl_seconds = change_token_ttl_seconds()
    try:
        if cache.add(cache_key, 1, timeout=ttl_seconds):
            return 1
        try:
            return int(cache.incr(cache_key))
        except ValueError:
            # The key expired between add() and incr().
            cache.set(cache_key, 1, timeout=ttl_seconds)
            return 1
    except Exception:
        logger.warning("Could not bump message change counter %s.", cache_key, exc_info=True)
        return 0


def read_channel(channel: ChangeChannel, member_id: int) -> int:
    cache_key = build_channel_cache_key(channel, member_id)
    try:
        value = cache.get(cache_key)
    except Exception:
        logger.warning("Could not read message change counter %s.", cache_key, exc_info=True)
        return 0
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.isdigit():
        return int(value)
    return 0


def change_token_for_member(member_id: int) -> str:
    return f"{read_channel('receiver', member_id)}-{read_channel('sender', member_id)}"


def has_changed_since(member_id: int, since: object) -> bool:
    return change_token_for_member(member_id) != str(since or "").strip()


def publish_message_change(change: MessageChange) -> None:
    bump_channel("receiver", change.receiver_id)
    bump_channel("sender", change.sender_id)

    for receiver, response in message_changed.send_robust(sender=MessageChange, change=change):
        if isinstance(response, Exception):
            logger.error(
                "Message change listener %r failed for message %s.",
                receiver,
                change.message_id,
                exc_info=(type(response), response, response.__traceback__),
            )


SEND_TOKEN_CACHE_PREFIX: Final[str] = "campusnest:messages:send-token"
SEND_TOKEN_TTL_SECONDS: Final[int] = 600


def reserve_send_token(member_id: int, token: object) -> bool:
    """
    Claim a one-time compose token. Returns False when the same member
    already submitted it, so a repeated form POST stores nothing.
    """

    normalized_token = str(token or "").strip()[:64]
    if not normalized_token:
        return True
    cache_key = f"{SEND_TOKEN_CACHE_PREFIX}:{int(member_id)}:{normalized_token}"
    try:
        return bool(cache.add(cache_key, 1, timeout=SEND_TOKEN_TTL_SECONDS))
    except Exception:
        logger.warning("Could not reserve message send token %s.", cache_key, exc_info=True)
        return True
