"""
Stateful conversation feed shared by the inbox page, the overlay and tests.

A `ConversationFeed` owns one viewer's message list and the conversations
derived from it. Every refresh replaces the list wholesale and re-runs
`aggregate_conversations`; nothing is merged. Refreshes carry a sequence
number, and a response older than the last applied one is discarded.
"""
from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from typing import Any, Final, Literal, TypedDict

from .conversations import (
    Conversation,
    MessageData,
    aggregate_conversations,
    count_unread,
    find_conversation,
    parse_conversation_key,
)
from .models import fetch_messages_for_member, send_message
from .realtime import MessageChange, message_changed

logger = logging.getLogger(__name__)

FeedSendOutcome = Literal["busy", "no-active-conversation", "empty-message", "error", "sent"]

SEND_FAILED_NOTICE: Final[str] = "Your message could not be sent. Please try again."
SEND_OUTCOME_NOTICES: Final[dict[str, str]] = {
    "empty-message": "Write a message before sending.",
    "too-long": "That message is too long.",
    "invalid-phone": "That phone number is too long.",
    "receiver-not-found": "This member is no longer available.",
    "property-not-found": "This listing no longer exists.",
    "self-message-blocked": "You cannot message yourself.",
    "member-required": "Please log in to send messages.",
}

MessageFetcher = Callable[[], list[MessageData]]
MessageSender = Callable[..., tuple[Any, str]]


class FeedSnapshot(TypedDict):
    conversations: list[Conversation]
    active_key: str | None
    active_conversation: Conversation | None
    unread_count: int
    draft: str
    notice: str
    is_sending: bool


class ConversationFeed:
    def __init__(
        self,
        viewer: object,
        *,
        fetcher: MessageFetcher | None = None,
        sender: MessageSender | None = None,
        property_id: int | None = None,
    ) -> None:
        self.viewer = viewer
        self.viewer_id = int(getattr(viewer, "pk", 0) or 0)
        self.property_id = property_id
        self._fetcher: MessageFetcher = fetcher or (
            lambda: fetch_messages_for_member(self.viewer, property_id=self.property_id)
        )
        self._sender: MessageSender = sender or send_message

        self.messages: list[MessageData] = []
        self.conversations: list[Conversation] = []
        self.active_key: str | None = None
        self.draft = ""
        self.notice = ""
        self.is_sending = False
        self.is_subscribed = False

        self._lock = threading.Lock()
        self._issued_sequence = 0
        self._applied_sequence = 0

    # Refresh

    def begin_refresh(self) -> int:
        with self._lock:
            self._issued_sequence += 1
            return self._issued_sequence

    def apply_refresh(self, sequence: int, messages: list[MessageData]) -> bool:
        """
        Replace local state with a fetched message list.

        Returns False when a newer refresh has already been applied.
        """

        with self._lock:
            if sequence <= self._applied_sequence:
                logger.debug(
                    "Discarding stale message refresh %s (applied=%s) for member %s.",
                    sequence,
                    self._applied_sequence,
                    self.viewer_id,
                )
                return False
            self._applied_sequence = sequence
            self.messages = list(messages)
            self._reaggregate()
            return True

    def refresh(self) -> bool:
        sequence = self.begin_refresh()
        try:
            messages = self._fetcher()
        except Exception:
            logger.exception("Message refresh failed for member %s; keeping the last good state.", self.viewer_id)
            return False
        return self.apply_refresh(sequence, messages)

    def _reaggregate(self) -> None:
        self.conversations = aggregate_conversations(self.messages, viewer_id=self.viewer_id)
        if find_conversation(self.conversations, self.active_key) is None:
            self.active_key = self.conversations[0]["key"] if self.conversations else None

    # Selection

    def select(self, key: object) -> Conversation | None:
        conversation = find_conversation(self.conversations, key)
        if conversation is None and self.conversations:
            conversation = self.conversations[0]
        self.active_key = conversation["key"] if conversation is not None else None
        return conversation

    def active_conversation(self) -> Conversation | None:
        return find_conversation(self.conversations, self.active_key)

    def unread_count(self) -> int:
        return count_unread(self.messages, self.viewer_id)

    # Compose

    def send(self, content: object, phone_number: object = "") -> str:
        """
        Send `content` into the active conversation.

        A send while another is in flight is ignored. Failures keep the text in
        `draft` and set `notice`; success clears the draft and shows the new
        message right away, ahead of the next refresh.
        """

        if self.is_sending:
            return "busy"

        text = str(content or "")
        conversation = self.active_conversation()
        if conversation is None:
            self.draft = text
            return "no-active-conversation"

        if not text.strip():
            self.draft = text
            self.notice = SEND_OUTCOME_NOTICES["empty-message"]
            return "empty-message"

        parsed_key = parse_conversation_key(conversation["key"])
        property_id = parsed_key[0] if parsed_key is not None else None

        self.is_sending = True
        try:
            message, outcome = self._sender(
                sender=self.viewer,
                receiver_id=conversation["counterpart"]["id"],
                property_id=property_id,
                content=text,
                phone_number=phone_number,
            )
        except Exception:
            logger.exception("Message send failed for member %s in %s.", self.viewer_id, conversation["key"])
            self.draft = text
            self.notice = SEND_FAILED_NOTICE
            return "error"
        finally:
            self.is_sending = False

        if outcome != "sent" or message is None:
            self.draft = text
            self.notice = SEND_OUTCOME_NOTICES.get(outcome, SEND_FAILED_NOTICE)
            return outcome

        message_data: MessageData = message.to_message_data()
        with self._lock:
            if all(int(item["id"]) != int(message_data["id"]) for item in self.messages):
                self.messages = [message_data, *self.messages]
            self._reaggregate()
        self.active_key = conversation["key"]
        self.draft = ""
        self.notice = ""
        return "sent"

    def dismiss_notice(self) -> None:
        self.notice = ""

    # Realtime

    def subscribe(self) -> None:
        if self.is_subscribed:
            return
        message_changed.connect(self.handle_change, weak=True)
        self.is_subscribed = True

    def close(self) -> None:
        # In-flight refreshes finish on their own; only future changes are ignored.
        if not self.is_subscribed:
            return
        message_changed.disconnect(self.handle_change)
        self.is_subscribed = False

    def handle_change(self, sender: object = None, change: MessageChange | None = None, **kwargs: Any) -> bool:
        if change is None or not change.involves(self.viewer_id):
            return False
        return self.refresh()

    def snapshot(self) -> FeedSnapshot:
        return {
            "conversations": self.conversations,
            "active_key": self.active_key,
            "active_conversation": self.active_conversation(),
            "unread_count": self.unread_count(),
            "draft": self.draft,
            "notice": self.notice,
            "is_sending": self.is_sending,
        }
