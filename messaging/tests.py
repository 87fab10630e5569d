from __future__ import annotations

import itertools
from datetime import datetime, timedelta, timezone as dt_timezone
from io import StringIO
from typing import Any
from unittest.mock import patch

from django.contrib.auth import get_user_model
from django.core.cache import cache
from django.core.management import call_command
from django.db import IntegrityError, transaction
from django.test import SimpleTestCase, TestCase
from django.urls import reverse

from accounts.models import set_member_role
from properties.models import Property

from .conversations import (
    MessageData,
    aggregate_conversations,
    build_conversation_key,
    count_unread,
    find_conversation,
    parse_conversation_key,
)
from .feed import SEND_FAILED_NOTICE, ConversationFeed
from .models import (
    Message,
    fetch_messages_for_member,
    mark_conversation_read,
    send_message,
    start_property_inquiry,
)
from .realtime import MessageChange, change_token_for_member, message_changed

UserModel = get_user_model()
BASE_TIME = datetime(2025, 1, 6, 9, 0, tzinfo=dt_timezone.utc)


def _participant(member_id: int) -> dict[str, object]:
    return {
        "id": member_id,
        "username": f"member{member_id}",
        "display_name": f"Member {member_id}",
        "email": f"member{member_id}@example.com",
        "profile_image_url": "",
        "role": "student",
    }


def _property_summary(property_id: int) -> dict[str, object]:
    return {
        "id": property_id,
        "title": f"Listing {property_id}",
        "address": "Katipunan Avenue",
        "price_per_month": 8_500,
        "status": "available",
        "landlord_id": 99,
        "thumbnail_url": "",
        "url": f"/properties/{property_id}/",
    }


def _message(
    message_id: int,
    *,
    sender_id: int,
    receiver_id: int,
    at: int,
    property_id: int | None = None,
    content: str = "",
    is_read: bool = True,
    sender_missing: bool = False,
    receiver_missing: bool = False,
) -> MessageData:
    created_at = BASE_TIME + timedelta(seconds=at)
    return {
        "id": message_id,
        "content": content or f"message {message_id}",
        "created_at": created_at,
        "updated_at": created_at,
        "sender_id": sender_id,
        "receiver_id": receiver_id,
        "property_id": property_id,
        "phone_number": "",
        "is_read": is_read,
        "sender": None if sender_missing else _participant(sender_id),  # type: ignore[typeddict-item]
        "receiver": None if receiver_missing else _participant(receiver_id),  # type: ignore[typeddict-item]
        "property": _property_summary(property_id) if property_id else None,  # type: ignore[typeddict-item]
    }


def _shape(conversations: list[Any]) -> list[tuple[str, list[int]]]:
    return [(item["key"], [message["id"] for message in item["messages"]]) for item in conversations]


class ConversationAggregatorTests(SimpleTestCase):
    viewer_id = 1
    landlord_id = 2
    other_landlord_id = 3

    def test_inquiry_and_general_message_form_two_conversations(self) -> None:
        messages = [
            _message(1, sender_id=1, receiver_id=2, at=10, property_id=10),
            _message(2, sender_id=2, receiver_id=1, at=20, property_id=10),
            _message(3, sender_id=1, receiver_id=3, at=15),
        ]

        conversations = aggregate_conversations(messages, viewer_id=self.viewer_id)

        self.assertEqual(_shape(conversations), [("10_2", [1, 2]), ("no-property_3", [3])])
        self.assertEqual(conversations[0]["counterpart"]["id"], self.landlord_id)
        self.assertEqual(conversations[0]["property"]["id"], 10)
        self.assertIsNone(conversations[1]["property"])
        self.assertEqual(conversations[0]["last_message_at"], BASE_TIME + timedelta(seconds=20))

    def test_message_without_counterpart_summary_is_dropped(self) -> None:
        messages = [_message(1, sender_id=2, receiver_id=1, at=5, sender_missing=True)]

        self.assertEqual(aggregate_conversations(messages, viewer_id=self.viewer_id), [])
        unread_orphan = _message(2, sender_id=2, receiver_id=1, at=5, is_read=False, sender_missing=True)
        self.assertEqual(count_unread([unread_orphan], self.viewer_id), 0)

    def test_missing_own_summary_does_not_drop_message(self) -> None:
        messages = [_message(1, sender_id=1, receiver_id=2, at=5, sender_missing=True)]

        conversations = aggregate_conversations(messages, viewer_id=self.viewer_id)

        self.assertEqual(_shape(conversations), [("no-property_2", [1])])

    def test_same_counterpart_different_property_are_separate(self) -> None:
        messages = [
            _message(1, sender_id=1, receiver_id=2, at=1, property_id=10),
            _message(2, sender_id=1, receiver_id=2, at=2, property_id=11),
            _message(3, sender_id=2, receiver_id=1, at=3),
        ]

        keys = [item["key"] for item in aggregate_conversations(messages, viewer_id=self.viewer_id)]

        self.assertEqual(keys, ["no-property_2", "11_2", "10_2"])

    def test_every_permutation_gives_the_same_result(self) -> None:
        messages = [
            _message(1, sender_id=1, receiver_id=2, at=10, property_id=10),
            _message(2, sender_id=2, receiver_id=1, at=20, property_id=10),
            _message(3, sender_id=1, receiver_id=3, at=20),
            _message(4, sender_id=3, receiver_id=1, at=20),
            _message(5, sender_id=4, receiver_id=1, at=7, sender_missing=True),
        ]
        expected = _shape(aggregate_conversations(messages, viewer_id=self.viewer_id))

        for permutation in itertools.permutations(messages):
            self.assertEqual(_shape(aggregate_conversations(list(permutation), viewer_id=self.viewer_id)), expected)

        # Equal timestamps fall back to message id inside a conversation and key across conversations.
        self.assertEqual(expected, [("10_2", [1, 2]), ("no-property_3", [3, 4])])

    def test_ordering_properties_hold(self) -> None:
        messages: list[MessageData] = []
        for index in range(1, 25):
            counterpart_id = 5 + index % 3
            outgoing = bool(index % 2)
            messages.append(
                _message(
                    index,
                    sender_id=1 if outgoing else counterpart_id,
                    receiver_id=counterpart_id if outgoing else 1,
                    at=(index * 37) % 11,
                    property_id=10 if outgoing else None,
                )
            )

        conversations = aggregate_conversations(messages, viewer_id=self.viewer_id)

        last_activity = [item["last_message_at"] for item in conversations]
        self.assertEqual(last_activity, sorted(last_activity, reverse=True))
        for conversation in conversations:
            created = [message["created_at"] for message in conversation["messages"]]
            self.assertEqual(created, sorted(created))
            self.assertEqual(conversation["message_count"], len(conversation["messages"]))
        self.assertEqual(sum(item["message_count"] for item in conversations), len(messages))

    def test_duplicate_rows_are_counted_once(self) -> None:
        message = _message(1, sender_id=2, receiver_id=1, at=1, is_read=False)

        conversations = aggregate_conversations([message, dict(message)], viewer_id=self.viewer_id)  # type: ignore[list-item]

        self.assertEqual(conversations[0]["message_count"], 1)
        self.assertEqual(conversations[0]["unread_count"], 1)

    def test_unread_counts_only_incoming_messages(self) -> None:
        messages = [
            _message(1, sender_id=2, receiver_id=1, at=1, is_read=False),
            _message(2, sender_id=1, receiver_id=2, at=2, is_read=False),
            _message(3, sender_id=2, receiver_id=1, at=3, is_read=True),
        ]

        conversations = aggregate_conversations(messages, viewer_id=self.viewer_id)

        self.assertEqual(conversations[0]["unread_count"], 1)
        self.assertEqual(count_unread(messages, self.viewer_id), 1)

    def test_preview_is_collapsed_and_truncated(self) -> None:
        long_text = "word " * 60
        conversations = aggregate_conversations(
            [_message(1, sender_id=2, receiver_id=1, at=1, content=f"  first\n\n{long_text}")],
            viewer_id=self.viewer_id,
        )

        preview = conversations[0]["last_message_preview"]
        self.assertTrue(preview.startswith("first word"))
        self.assertTrue(preview.endswith("..."))
        self.assertLessEqual(len(preview), 120)

    def test_conversation_keys_round_trip(self) -> None:
        self.assertEqual(build_conversation_key(None, 3), "no-property_3")
        self.assertEqual(build_conversation_key(10, 2), "10_2")
        self.assertEqual(parse_conversation_key("no-property_3"), (None, 3))
        self.assertEqual(parse_conversation_key(" 10_2 "), (10, 2))
        for invalid_key in ("", "abc", "10_", "_2", "0_2", "10_0", "10-2", "no-property_x", None):
            self.assertIsNone(parse_conversation_key(invalid_key), invalid_key)

    def test_find_conversation_matches_exact_key(self) -> None:
        conversations = aggregate_conversations(
            [_message(1, sender_id=2, receiver_id=1, at=1, property_id=10)],
            viewer_id=self.viewer_id,
        )

        self.assertIsNotNone(find_conversation(conversations, "10_2"))
        self.assertIsNone(find_conversation(conversations, "10_3"))
        self.assertIsNone(find_conversation(conversations, ""))


class _Viewer:
    pk = 1
    is_authenticated = True


class _SentMessage:
    def __init__(self, data: MessageData) -> None:
        self._data = data

    def to_message_data(self) -> MessageData:
        return self._data


class ConversationFeedTests(SimpleTestCase):
    def setUp(self) -> None:
        self.rows: list[MessageData] = [
            _message(1, sender_id=2, receiver_id=1, at=10, property_id=10, is_read=False),
            _message(2, sender_id=3, receiver_id=1, at=5),
        ]
        self.fetch_calls = 0
        self.sent: list[dict[str, object]] = []

    def _fetch(self) -> list[MessageData]:
        self.fetch_calls += 1
        return list(self.rows)

    def _feed(self, **kwargs: Any) -> ConversationFeed:
        kwargs.setdefault("fetcher", self._fetch)
        feed = ConversationFeed(_Viewer(), **kwargs)
        feed.refresh()
        return feed

    def test_refresh_selects_most_recent_conversation(self) -> None:
        feed = self._feed()

        self.assertEqual(feed.active_key, "10_2")
        self.assertEqual(feed.unread_count(), 1)

    def test_stale_refresh_is_discarded(self) -> None:
        feed = ConversationFeed(_Viewer(), fetcher=self._fetch)
        older = feed.begin_refresh()
        newer = feed.begin_refresh()

        self.assertTrue(feed.apply_refresh(newer, self.rows))
        self.assertFalse(feed.apply_refresh(older, []))
        self.assertEqual([item["key"] for item in feed.conversations], ["10_2", "no-property_3"])

    def test_failed_refresh_keeps_last_good_state(self) -> None:
        feed = self._feed()

        def broken_fetch() -> list[MessageData]:
            raise ConnectionError("database unavailable")

        feed._fetcher = broken_fetch
        with self.assertLogs("messaging.feed", level="ERROR"):
            self.assertFalse(feed.refresh())
        self.assertEqual(len(feed.conversations), 2)
        self.assertEqual(feed.active_key, "10_2")

    def test_active_key_survives_refresh(self) -> None:
        feed = self._feed()
        feed.select("no-property_3")
        self.rows.append(_message(3, sender_id=2, receiver_id=1, at=50, property_id=10))

        feed.refresh()

        self.assertEqual(feed.active_key, "no-property_3")
        self.assertEqual(feed.conversations[0]["message_count"], 2)

    def test_unknown_selection_falls_back_to_most_recent(self) -> None:
        feed = self._feed()

        conversation = feed.select("99_99")

        self.assertIsNotNone(conversation)
        self.assertEqual(feed.active_key, "10_2")

    def test_empty_message_is_rejected_without_sending(self) -> None:
        def sender(**kwargs: Any) -> tuple[Any, str]:
            raise AssertionError("sender must not be called")

        feed = self._feed(sender=sender)

        self.assertEqual(feed.send("   \n "), "empty-message")
        self.assertTrue(feed.notice)

    def test_send_requires_active_conversation(self) -> None:
        self.rows = []
        feed = self._feed()

        self.assertEqual(feed.send("Hello"), "no-active-conversation")
        self.assertEqual(feed.draft, "Hello")

    def test_second_send_while_in_flight_is_ignored(self) -> None:
        inner_outcomes: list[str] = []

        def sender(**kwargs: Any) -> tuple[Any, str]:
            # A second click lands while the first request is still out.
            inner_outcomes.append(feed.send("Hello again"))
            self.sent.append(kwargs)
            return _SentMessage(_message(9, sender_id=1, receiver_id=2, at=60, property_id=10)), "sent"

        feed = self._feed(sender=sender)

        self.assertEqual(feed.send("Hello"), "sent")
        self.assertEqual(inner_outcomes, ["busy"])
        self.assertEqual([item["content"] for item in self.sent], ["Hello"])
        self.assertFalse(feed.is_sending)

    def test_failed_send_keeps_draft_and_sets_notice(self) -> None:
        def sender(**kwargs: Any) -> tuple[Any, str]:
            raise ConnectionError("network down")

        feed = self._feed(sender=sender)
        with self.assertLogs("messaging.feed", level="ERROR"):
            outcome = feed.send("Is parking included?")

        self.assertEqual(outcome, "error")
        self.assertEqual(feed.draft, "Is parking included?")
        self.assertEqual(feed.notice, SEND_FAILED_NOTICE)
        self.assertFalse(feed.is_sending)
        feed.dismiss_notice()
        self.assertEqual(feed.notice, "")

    def test_rejected_send_keeps_draft(self) -> None:
        feed = self._feed(sender=lambda **kwargs: (None, "too-long"))

        self.assertEqual(feed.send("x" * 10), "too-long")
        self.assertEqual(feed.draft, "x" * 10)
        self.assertTrue(feed.notice)

    def test_successful_send_appends_and_clears_draft(self) -> None:
        def sender(**kwargs: Any) -> tuple[Any, str]:
            self.sent.append(kwargs)
            return _SentMessage(_message(9, sender_id=1, receiver_id=2, at=60, property_id=10)), "sent"

        feed = self._feed(sender=sender)
        feed.draft = "See you Thursday"

        self.assertEqual(feed.send("See you Thursday"), "sent")

        self.assertEqual(self.sent[0]["receiver_id"], 2)
        self.assertEqual(self.sent[0]["property_id"], 10)
        self.assertEqual(feed.draft, "")
        active = feed.active_conversation()
        assert active is not None
        self.assertEqual([item["id"] for item in active["messages"]], [1, 9])

    def test_change_for_other_members_does_not_refresh(self) -> None:
        feed = self._feed()
        calls_before = self.fetch_calls

        refreshed = feed.handle_change(
            change=MessageChange(message_id=5, sender_id=7, receiver_id=8, property_id=None, action="created")
        )

        self.assertFalse(refreshed)
        self.assertEqual(self.fetch_calls, calls_before)

    def test_subscription_refreshes_until_closed(self) -> None:
        feed = self._feed()
        feed.subscribe()
        change = MessageChange(message_id=3, sender_id=2, receiver_id=1, property_id=10, action="created")
        self.rows.append(_message(3, sender_id=2, receiver_id=1, at=70, property_id=10))

        message_changed.send(sender=MessageChange, change=change)
        self.assertEqual(feed.conversations[0]["message_count"], 2)

        feed.close()
        calls_after_close = self.fetch_calls
        message_changed.send(sender=MessageChange, change=change)
        self.assertEqual(self.fetch_calls, calls_after_close)


class MessagingTestMixin:
    password = "MessagingPass!123456"

    def _member(self, username: str, role: str = "student", **extra: Any) -> Any:
        user = UserModel.objects.create_user(
            username=username,
            email=f"{username}@example.com",
            password=self.password,
            **extra,
        )
        set_member_role(user, role)
        return user

    def _property(self, landlord: Any, **overrides: Any) -> Property:
        values: dict[str, Any] = {
            "landlord": landlord,
            "title": "Katipunan studio",
            "address": "Katipunan Avenue, Quezon City",
            "latitude": 14.6395,
            "longitude": 121.0770,
            "price_per_month": 9_500,
        }
        values.update(overrides)
        return Property.objects.create(**values)


class MessageServiceTests(MessagingTestMixin, TestCase):
    def setUp(self) -> None:
        cache.clear()
        self.student = self._member("student-msg")
        self.landlord = self._member("landlord-msg", "landlord")
        self.other_landlord = self._member("other-landlord-msg", "landlord")
        self.listing = self._property(self.landlord)

    def test_send_message_outcomes(self) -> None:
        inactive = self._member("inactive-msg", is_active=False)

        self.assertEqual(send_message(sender=self.student, receiver_id=self.landlord.pk, content="  \n ")[1], "empty-message")
        self.assertEqual(send_message(sender=self.student, receiver_id=self.student.pk, content="Hi")[1], "self-message-blocked")
        self.assertEqual(send_message(sender=self.student, receiver_id="", content="Hi")[1], "receiver-required")
        self.assertEqual(send_message(sender=self.student, receiver_id=inactive.pk, content="Hi")[1], "receiver-not-found")
        self.assertEqual(
            send_message(sender=self.student, receiver_id=self.landlord.pk, property_id=999_999, content="Hi")[1],
            "property-not-found",
        )
        self.assertEqual(send_message(sender=self.student, receiver_id=self.landlord.pk, content="x" * 5_000)[1], "too-long")
        self.assertFalse(Message.objects.exists())

        message, outcome = send_message(
            sender=self.student,
            receiver_id=self.landlord.pk,
            property_id=self.listing.pk,
            content="  Is the studio still available?  ",
            phone_number=" +63 917  555 0101 ",
        )
        self.assertEqual(outcome, "sent")
        assert message is not None
        self.assertEqual(message.content, "Is the studio still available?")
        self.assertEqual(message.phone_number, "+63 917 555 0101")
        self.assertFalse(message.is_read)

    def test_database_rejects_message_to_self(self) -> None:
        with self.assertRaises(IntegrityError):
            with transaction.atomic():
                Message.objects.create(sender=self.student, receiver=self.student, content="Note to self")

    def test_fetch_returns_only_members_messages_newest_first(self) -> None:
        first, _ = send_message(sender=self.student, receiver_id=self.landlord.pk, property_id=self.listing.pk, content="One")
        second, _ = send_message(sender=self.landlord, receiver_id=self.student.pk, property_id=self.listing.pk, content="Two")
        send_message(sender=self.other_landlord, receiver_id=self.landlord.pk, content="Not for the student")
        assert first is not None and second is not None
        Message.objects.filter(pk=first.pk).update(created_at=BASE_TIME)
        Message.objects.filter(pk=second.pk).update(created_at=BASE_TIME + timedelta(minutes=1))

        rows = fetch_messages_for_member(self.student)

        self.assertEqual([row["id"] for row in rows], [second.pk, first.pk])
        self.assertEqual(rows[0]["property"]["id"], self.listing.pk)  # type: ignore[index]
        self.assertEqual(rows[0]["sender"]["username"], self.landlord.username)  # type: ignore[index]

    def test_deactivated_counterpart_drops_out_of_conversations(self) -> None:
        send_message(sender=self.other_landlord, receiver_id=self.student.pk, content="Hello")
        self.other_landlord.is_active = False
        self.other_landlord.save(update_fields=["is_active"])

        rows = fetch_messages_for_member(self.student)

        self.assertEqual(len(rows), 1)
        self.assertIsNone(rows[0]["sender"])
        self.assertEqual(aggregate_conversations(rows, viewer_id=self.student.pk), [])

    def test_mark_conversation_read_is_scoped_to_one_conversation(self) -> None:
        other_listing = self._property(self.landlord, title="Second listing")
        in_scope, _ = send_message(sender=self.landlord, receiver_id=self.student.pk, property_id=self.listing.pk, content="A")
        other_scope, _ = send_message(sender=self.landlord, receiver_id=self.student.pk, property_id=other_listing.pk, content="B")
        outgoing, _ = send_message(sender=self.student, receiver_id=self.landlord.pk, property_id=self.listing.pk, content="C")
        assert in_scope is not None and other_scope is not None and outgoing is not None
        token_before = change_token_for_member(self.student.pk)

        updated, outcome = mark_conversation_read(
            self.student,
            build_conversation_key(self.listing.pk, self.landlord.pk),
        )

        self.assertEqual((updated, outcome), (1, "marked"))
        in_scope.refresh_from_db()
        other_scope.refresh_from_db()
        outgoing.refresh_from_db()
        self.assertTrue(in_scope.is_read)
        self.assertFalse(other_scope.is_read)
        self.assertFalse(outgoing.is_read)
        self.assertNotEqual(change_token_for_member(self.student.pk), token_before)
        self.assertEqual(mark_conversation_read(self.student, "garbage")[1], "invalid-conversation")

    def test_change_tokens_move_for_both_participants_only(self) -> None:
        tokens_before = {
            member.pk: change_token_for_member(member.pk)
            for member in (self.student, self.landlord, self.other_landlord)
        }

        send_message(sender=self.student, receiver_id=self.landlord.pk, content="Hello")

        self.assertNotEqual(change_token_for_member(self.student.pk), tokens_before[self.student.pk])
        self.assertNotEqual(change_token_for_member(self.landlord.pk), tokens_before[self.landlord.pk])
        self.assertEqual(change_token_for_member(self.other_landlord.pk), tokens_before[self.other_landlord.pk])

    def test_property_inquiry_rules(self) -> None:
        reserved = self._property(self.landlord, title="Reserved", status=Property.STATUS_RESERVED)

        self.assertEqual(
            start_property_inquiry(sender=self.student, property_id=reserved.pk, content="Hi")[1],
            "property-unavailable",
        )
        self.assertEqual(
            start_property_inquiry(sender=self.landlord, property_id=self.listing.pk, content="Hi")[1],
            "owner-blocked",
        )
        self.assertEqual(
            start_property_inquiry(sender=self.other_landlord, property_id=self.listing.pk, content="Hi")[1],
            "student-required",
        )
        self.assertEqual(
            start_property_inquiry(sender=self.student, property_id="nope", content="Hi")[1],
            "property-not-found",
        )

        message, outcome, property_row = start_property_inquiry(
            sender=self.student,
            property_id=self.listing.pk,
            content="Is it still available?",
            phone_number="09175550101",
        )
        self.assertEqual(outcome, "sent")
        assert message is not None and property_row is not None
        self.assertEqual(message.receiver_id, self.landlord.pk)
        self.assertEqual(message.property_id, self.listing.pk)

    def test_subscribed_feed_refreshes_on_new_message(self) -> None:
        feed = ConversationFeed(self.student)
        feed.refresh()
        feed.subscribe()

        send_message(sender=self.landlord, receiver_id=self.student.pk, property_id=self.listing.pk, content="Hi there")
        self.assertEqual([item["key"] for item in feed.conversations], [f"{self.listing.pk}_{self.landlord.pk}"])

        feed.close()
        send_message(sender=self.other_landlord, receiver_id=self.student.pk, content="Ignored after close")
        self.assertEqual(len(feed.conversations), 1)

    def test_feed_send_writes_into_active_conversation(self) -> None:
        send_message(sender=self.landlord, receiver_id=self.student.pk, property_id=self.listing.pk, content="Hello")
        feed = ConversationFeed(self.student)
        feed.refresh()

        self.assertEqual(feed.send("Can I visit on Thursday?"), "sent")

        reply = Message.objects.get(sender=self.student)
        self.assertEqual(reply.receiver_id, self.landlord.pk)
        self.assertEqual(reply.property_id, self.listing.pk)
        self.assertEqual(feed.conversations[0]["message_count"], 2)


class MessagingViewsTests(MessagingTestMixin, TestCase):
    def setUp(self) -> None:
        cache.clear()
        self.student = self._member("student-views")
        self.landlord = self._member("landlord-views", "landlord")
        self.other_landlord = self._member("other-landlord-views", "landlord")
        self.listing = self._property(self.landlord)
        self.key = build_conversation_key(self.listing.pk, self.landlord.pk)

        first, _ = send_message(sender=self.student, receiver_id=self.landlord.pk, property_id=self.listing.pk, content="Hi")
        reply, _ = send_message(sender=self.landlord, receiver_id=self.student.pk, property_id=self.listing.pk, content="Hello!")
        general, _ = send_message(sender=self.other_landlord, receiver_id=self.student.pk, content="Any questions?")
        assert first is not None and reply is not None and general is not None
        Message.objects.filter(pk=first.pk).update(created_at=BASE_TIME)
        Message.objects.filter(pk=reply.pk).update(created_at=BASE_TIME + timedelta(minutes=5))
        Message.objects.filter(pk=general.pk).update(created_at=BASE_TIME + timedelta(minutes=2))
        self.reply = reply
        self.general = general

    def _login(self, member: Any) -> None:
        self.client.login(username=member.username, password=self.password)

    def test_inbox_requires_login(self) -> None:
        response = self.client.get(reverse("messaging:inbox"))
        expected_redirect = f"{reverse('accounts:login')}?next={reverse('messaging:inbox')}"
        self.assertRedirects(response, expected_redirect, fetch_redirect_response=False)

    def test_inbox_defaults_to_most_recent_conversation_without_marking_it_read(self) -> None:
        self._login(self.student)

        response = self.client.get(reverse("messaging:inbox"))

        self.assertEqual(response.status_code, 200)
        self.assertEqual(
            [item["key"] for item in response.context["conversations"]],
            [self.key, f"no-property_{self.other_landlord.pk}"],
        )
        self.assertEqual(response.context["active_key"], self.key)
        self.reply.refresh_from_db()
        self.general.refresh_from_db()
        self.assertFalse(self.reply.is_read)
        self.assertFalse(self.general.is_read)
        self.assertEqual(response.context["unread_count"], 2)
        self.assertContains(response, "data-inbox-read")

    def test_inbox_compose_form_carries_send_guard_hooks(self) -> None:
        self._login(self.student)

        response = self.client.get(reverse("messaging:inbox"))

        self.assertContains(response, "data-inbox-compose")
        self.assertContains(response, f'name="send_token" value="{response.context["send_token"]}"')
        self.assertContains(response, "js/messaging-inbox.js")

    def test_repeated_form_post_with_same_send_token_stores_one_message(self) -> None:
        self._login(self.student)
        send_token = self.client.get(reverse("messaging:inbox")).context["send_token"]
        form = {"conversation": self.key, "content": "Double click", "send_token": send_token}

        first = self.client.post(reverse("messaging:send"), form)
        second = self.client.post(reverse("messaging:send"), form, headers={"X-Requested-With": "XMLHttpRequest"})

        self.assertEqual(first.status_code, 302)
        self.assertEqual(second.status_code, 409)
        self.assertEqual(second.json()["outcome"], "duplicate")
        self.assertEqual(Message.objects.filter(sender=self.student, content="Double click").count(), 1)

    def test_inbox_selects_requested_conversation(self) -> None:
        self._login(self.student)
        general_key = f"no-property_{self.other_landlord.pk}"

        response = self.client.get(reverse("messaging:inbox"), {"c": general_key})

        self.assertEqual(response.context["active_key"], general_key)
        self.assertContains(response, "Any questions?")

    def test_overlay_and_inbox_agree_on_grouping(self) -> None:
        self._login(self.student)

        inbox_response = self.client.get(reverse("messaging:inbox"))
        overlay_response = self.client.get(reverse("messaging:overlay"))

        payload = overlay_response.json()
        self.assertEqual(
            [item["key"] for item in payload["conversations"]],
            [item["key"] for item in inbox_response.context["conversations"]],
        )
        self.assertEqual(payload["active_key"], self.key)
        self.assertEqual(
            [item["content"] for item in payload["active_conversation"]["messages"]],
            ["Hi", "Hello!"],
        )
        self.assertTrue(payload["change_token"])

    def test_send_view_json_outcomes(self) -> None:
        self._login(self.student)
        headers = {"X-Requested-With": "XMLHttpRequest"}

        sent = self.client.post(reverse("messaging:send"), {"conversation": self.key, "content": "Thursday?"}, headers=headers)
        empty = self.client.post(reverse("messaging:send"), {"conversation": self.key, "content": "   "}, headers=headers)
        unknown = self.client.post(reverse("messaging:send"), {"conversation": "999_999", "content": "Hi"}, headers=headers)

        self.assertEqual(sent.status_code, 201)
        self.assertEqual(sent.json()["outcome"], "sent")
        self.assertEqual(sent.json()["conversation"]["messages"][-1]["content"], "Thursday?")
        self.assertEqual(empty.status_code, 400)
        self.assertEqual(empty.json()["outcome"], "empty-message")
        self.assertEqual(unknown.status_code, 404)
        self.assertEqual(Message.objects.filter(sender=self.student, content="Thursday?").count(), 1)

    def test_send_view_redirects_back_to_conversation(self) -> None:
        self._login(self.student)

        response = self.client.post(reverse("messaging:send"), {"conversation": self.key, "content": "On my way"})

        self.assertRedirects(response, f"{reverse('messaging:inbox')}?c={self.key}", fetch_redirect_response=False)

    def test_inquire_view_opens_conversation(self) -> None:
        second_listing = self._property(self.landlord, title="Loft")
        self._login(self.student)

        response = self.client.post(
            reverse("messaging:inquire", kwargs={"property_id": second_listing.pk}),
            {"content": "Is the loft furnished?", "phone_number": "09175550101"},
        )

        expected_key = build_conversation_key(second_listing.pk, self.landlord.pk)
        self.assertRedirects(response, f"{reverse('messaging:inbox')}?c={expected_key}", fetch_redirect_response=False)
        self.assertTrue(Message.objects.filter(property=second_listing, phone_number="09175550101").exists())

    def test_inquire_view_blocks_unavailable_listing(self) -> None:
        taken = self._property(self.landlord, title="Taken", status=Property.STATUS_TAKEN)
        self._login(self.student)

        response = self.client.post(
            reverse("messaging:inquire", kwargs={"property_id": taken.pk}),
            {"content": "Still free?", "response_format": "json"},
        )

        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.json()["outcome"], "property-unavailable")
        self.assertFalse(Message.objects.filter(property=taken).exists())

    def test_read_view_marks_conversation(self) -> None:
        self._login(self.student)
        general_key = f"no-property_{self.other_landlord.pk}"

        response = self.client.post(
            reverse("messaging:read"),
            {"conversation": general_key},
            headers={"Accept": "application/json"},
        )

        self.assertEqual(response.json()["updated"], 1)
        self.general.refresh_from_db()
        self.assertTrue(self.general.is_read)

    def test_overlay_fetch_leaves_messages_unread_until_read_is_posted(self) -> None:
        self._login(self.student)

        payload = self.client.get(reverse("messaging:overlay"), {"conversation": self.key}).json()

        self.assertEqual(payload["active_key"], self.key)
        self.assertEqual(payload["active_conversation"]["unread_count"], 1)
        self.reply.refresh_from_db()
        self.assertFalse(self.reply.is_read)

        self.client.post(reverse("messaging:read"), {"conversation": self.key}, headers={"X-Requested-With": "XMLHttpRequest"})
        payload = self.client.get(reverse("messaging:overlay"), {"conversation": self.key}).json()

        self.assertEqual(payload["active_conversation"]["unread_count"], 0)
        self.assertEqual(payload["unread_count"], 1)
        self.reply.refresh_from_db()
        self.assertTrue(self.reply.is_read)

    def test_changes_view_reports_token_movement(self) -> None:
        self._login(self.student)
        token = self.client.get(reverse("messaging:changes")).json()["token"]

        unchanged = self.client.get(reverse("messaging:changes"), {"since": token}).json()
        send_message(sender=self.landlord, receiver_id=self.student.pk, property_id=self.listing.pk, content="New")
        changed = self.client.get(reverse("messaging:changes"), {"since": token}).json()

        self.assertFalse(unchanged["changed"])
        self.assertTrue(changed["changed"])
        self.assertNotEqual(changed["token"], token)

    def test_property_inquiries_are_owner_only(self) -> None:
        url = reverse("messaging:property-inquiries", kwargs={"property_id": self.listing.pk})

        self._login(self.other_landlord)
        self.assertEqual(self.client.get(url).status_code, 404)

        self._login(self.landlord)
        response = self.client.get(url)
        self.assertEqual(response.status_code, 200)
        self.assertEqual(
            [item["key"] for item in response.context["conversations"]],
            [build_conversation_key(self.listing.pk, self.student.pk)],
        )

    def test_overlay_state_is_shared_with_every_page(self) -> None:
        self._login(self.student)

        response = self.client.get(reverse("home"), {"messages": "open", "conversation": self.key})

        state = response.context["messaging_overlay"]
        self.assertTrue(state.is_open)
        self.assertEqual(state.active_key, self.key)
        self.assertEqual(state.unread_count, 2)
        self.assertContains(response, 'id="messaging-overlay"')

    def test_verbose_inbox_prints_trace(self) -> None:
        self._login(self.student)

        with patch("builtins.print") as mock_print:
            self.client.get(reverse("messaging:inbox"), {"verbose": "1"})

        printed = " ".join(str(call.args[0]) for call in mock_print.call_args_list if call.args)
        self.assertIn("[messaging][verbose]", printed)


class BootstrapMessagingCommandTests(TestCase):
    def test_seed_commands_build_demo_conversations(self) -> None:
        cache.clear()
        output = StringIO()
        call_command("bootstrap_accounts", stdout=output)
        call_command("bootstrap_properties", stdout=output)
        call_command("bootstrap_messaging", "--verbose", stdout=output)

        self.assertIn("Messaging bootstrap complete. created_members=0, created=6, updated=0, skipped=0", output.getvalue())

        maria = UserModel.objects.get(username="maria")
        ana = UserModel.objects.get(username="ana")
        conversations = aggregate_conversations(fetch_messages_for_member(maria), viewer_id=maria.pk)
        self.assertEqual([item["key"] for item in conversations], [f"201_{ana.pk}"])
        self.assertEqual(conversations[0]["unread_count"], 1)

        rerun = StringIO()
        call_command("bootstrap_messaging", stdout=rerun)
        self.assertIn("created=0, updated=6", rerun.getvalue())
        self.assertEqual(Message.objects.count(), 6)

    def test_missing_members_are_skipped_without_flag(self) -> None:
        output = StringIO()
        call_command("bootstrap_messaging", stdout=output)

        self.assertIn("created=0, updated=0, skipped=6", output.getvalue())
        self.assertFalse(Message.objects.exists())
