"""
Conversation grouping for the inbox page and the floating overlay.

Both presentations feed the same flat message list through
`aggregate_conversations`, so they always agree on grouping and order. The
module is pure: no ORM access, no clock, no I/O.

A conversation is keyed by `<property id or "no-property">_<counterpart id>`,
where the counterpart is the other participant relative to the viewer.
"""
from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime
from typing import TYPE_CHECKING, Final, TypedDict, cast

if TYPE_CHECKING:
    from accounts.models import ParticipantSummary
    from properties.models import PropertySummary

NO_PROPERTY_KEY: Final[str] = "no-property"
KEY_SEPARATOR: Final[str] = "_"
PREVIEW_MAX_LENGTH: Final[int] = 120


class MessageData(TypedDict):
    id: int
    content: str
    created_at: datetime
    updated_at: datetime
    sender_id: int
    receiver_id: int
    property_id: int | None
    phone_number: str
    is_read: bool
    sender: ParticipantSummary | None
    receiver: ParticipantSummary | None
    property: PropertySummary | None


class Conversation(TypedDict):
    key: str
    property: PropertySummary | None
    counterpart: ParticipantSummary
    messages: list[MessageData]
    last_message_at: datetime
    last_message_preview: str
    message_count: int
    unread_count: int


def build_conversation_key(property_id: int | None, counterpart_id: int) -> str:
    property_part = str(property_id) if property_id else NO_PROPERTY_KEY
    return f"{property_part}{KEY_SEPARATOR}{int(counterpart_id)}"


def parse_conversation_key(raw_key: object) -> tuple[int | None, int] | None:
    """
    Split a conversation key into `(property_id, counterpart_id)`.

    Returns `None` for anything `build_conversation_key` could not have produced.
    """

    key = str(raw_key or "").strip()
    property_part, separator, counterpart_part = key.rpartition(KEY_SEPARATOR)
    if not separator or not counterpart_part.isdigit() or int(counterpart_part) <= 0:
        return None

    if property_part == NO_PROPERTY_KEY:
        return None, int(counterpart_part)
    if property_part.isdigit() and int(property_part) > 0:
        return int(property_part), int(counterpart_part)
    return None


def is_outgoing(message: MessageData, viewer_id: int) -> bool:
    return int(message["sender_id"]) == int(viewer_id)


def resolve_counterpart(message: MessageData, viewer_id: int) -> ParticipantSummary | None:
    if is_outgoing(message, viewer_id):
        return message["receiver"]
    return message["sender"]


def _message_sort_key(message: MessageData) -> tuple[datetime, int]:
    return message["created_at"], int(message["id"])


def _preview(content: str) -> str:
    text = " ".join(str(content or "").split())
    if len(text) > PREVIEW_MAX_LENGTH:
        return f"{text[: PREVIEW_MAX_LENGTH - 3].rstrip()}..."
    return text


def _is_unread_for(message: MessageData, viewer_id: int) -> bool:
    return int(message["receiver_id"]) == int(viewer_id) and not bool(message["is_read"])


def aggregate_conversations(messages: Iterable[MessageData], *, viewer_id: int) -> list[Conversation]:
    """
    Group messages by (property, counterpart) and order everything for display.

    Messages whose counterpart summary is missing are dropped. Messages inside a
    conversation run oldest to newest; conversations run most recent first.
    Ties fall back to message id and conversation key, so any permutation of
    the same input gives the same result.
    """

    grouped: dict[str, list[MessageData]] = {}
    seen_ids: set[int] = set()
    for message in messages:
        message_id = int(message["id"])
        if message_id in seen_ids:
            continue
        counterpart = resolve_counterpart(message, viewer_id)
        if counterpart is None:
            continue

        key = build_conversation_key(message["property_id"], int(counterpart["id"]))
        seen_ids.add(message_id)
        grouped.setdefault(key, []).append(message)

    conversations: list[Conversation] = []
    for key, bucket in grouped.items():
        ordered = sorted(bucket, key=_message_sort_key)
        latest = ordered[-1]
        # Summaries come from the newest message so the choice never depends on input order.
        counterpart = cast("ParticipantSummary", resolve_counterpart(latest, viewer_id))
        property_summary = next(
            (item["property"] for item in reversed(ordered) if item["property"] is not None),
            None,
        )
        conversations.append(
            {
                "key": key,
                "property": property_summary,
                "counterpart": counterpart,
                "messages": ordered,
                "last_message_at": latest["created_at"],
                "last_message_preview": _preview(latest["content"]),
                "message_count": len(ordered),
                "unread_count": sum(1 for item in ordered if _is_unread_for(item, viewer_id)),
            }
        )

    conversations.sort(key=lambda conversation: conversation["key"])
    conversations.sort(key=lambda conversation: conversation["last_message_at"], reverse=True)
    return conversations


def find_conversation(conversations: Iterable[Conversation], key: object) -> Conversation | None:
    wanted = str(key or "").strip()
    if not wanted:
        return None
    return next((conversation for conversation in conversations if conversation["key"] == wanted), None)


def count_unread(messages: Iterable[MessageData], viewer_id: int) -> int:
    return sum(
        1
        for message in messages
        if _is_unread_for(message, viewer_id) and resolve_counterpart(message, viewer_id) is not None
    )
