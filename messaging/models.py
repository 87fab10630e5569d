from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Final, Literal, cast

from django.conf import settings
from django.contrib.auth import get_user_model
from django.core.exceptions import ValidationError
from django.db import models
from django.db.models import F, Q
from django.db.models.constraints import BaseConstraint

from accounts.models import build_participant_summary, member_role
from properties.models import Property

from .conversations import MessageData, parse_conversation_key
from .realtime import MessageChange, publish_message_change

logger = logging.getLogger(__name__)

SendOutcome = Literal[
    "member-required",
    "invalid-member",
    "receiver-required",
    "receiver-not-found",
    "self-message-blocked",
    "property-not-found",
    "empty-message",
    "too-long",
    "invalid-phone",
    "sent",
]
InquiryOutcome = Literal[
    "member-required",
    "student-required",
    "property-not-found",
    "property-unavailable",
    "owner-blocked",
    "receiver-not-found",
    "empty-message",
    "too-long",
    "invalid-phone",
    "sent",
]
MarkReadOutcome = Literal["member-required", "invalid-conversation", "marked"]

PHONE_NUMBER_MAX_LENGTH: Final[int] = 32


def _clean_text(value: object) -> str:
    # Keep paragraph breaks but drop trailing whitespace noise around the message.
    return "\n".join(line.rstrip() for line in str(value or "").strip().splitlines()).strip()


def _clean_phone(value: object) -> str:
    return " ".join(str(value or "").strip().split())


def _parse_positive_id(raw_value: object) -> int | None:
    raw_text = str(raw_value or "").strip()
    if not raw_text.isdigit():
        return None
    parsed = int(raw_text)
    return parsed if parsed > 0 else None


def message_max_length() -> int:
    return max(1, int(getattr(settings, "CAMPUSNEST_MESSAGE_MAX_LENGTH", 4_000) or 4_000))


class Message(models.Model):
    """
    One message between two members, optionally about a listing.

    Rows are written once by `send_message`; afterwards only `is_read` changes.
    """

    sender = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="sent_messages",
    )
    receiver = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="received_messages",
    )
    property = models.ForeignKey(
        Property,
        on_delete=models.SET_NULL,
        related_name="messages",
        null=True,
        blank=True,
    )
    content = models.TextField(max_length=settings.CAMPUSNEST_MESSAGE_MAX_LENGTH)
    phone_number = models.CharField(max_length=PHONE_NUMBER_MAX_LENGTH, blank=True)
    is_read = models.BooleanField(default=False)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    if TYPE_CHECKING:
        sender_id: int
        receiver_id: int
        property_id: int | None

    class Meta:
        ordering = ("-created_at", "-id")
        constraints: list[BaseConstraint] = [
            cast(
                BaseConstraint,
                models.CheckConstraint(
                    condition=~Q(sender=F("receiver")),
                    name="messaging_sender_not_receiver",
                ),
            ),
        ]
        indexes = [
            models.Index(fields=("sender", "created_at"), name="messaging_sender_idx"),
            models.Index(fields=("receiver", "created_at"), name="messaging_receiver_idx"),
            models.Index(fields=("property", "created_at"), name="messaging_property_idx"),
        ]

    def __str__(self) -> str:
        return f"Message #{self.pk or 'new'} from #{self.sender_id} to #{self.receiver_id}"

    def clean(self) -> None:
        super().clean()

        cleaned_content = _clean_text(self.content)
        if not cleaned_content:
            raise ValidationError({"content": "Message text cannot be empty."})
        if len(cleaned_content) > message_max_length():
            raise ValidationError(
                {"content": f"Message text must be {message_max_length()} characters or fewer."}
            )
        if self.sender_id and self.receiver_id and int(self.sender_id) == int(self.receiver_id):
            raise ValidationError({"receiver": "You cannot send a message to yourself."})

        self.content = cleaned_content
        self.phone_number = _clean_phone(self.phone_number)

    def to_message_data(self) -> MessageData:
        property_row = self.property if self.property_id else None
        return {
            "id": int(self.pk or 0),
            "content": str(self.content or ""),
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "sender_id": int(self.sender_id),
            "receiver_id": int(self.receiver_id),
            "property_id": int(self.property_id) if self.property_id else None,
            "phone_number": str(self.phone_number or ""),
            "is_read": bool(self.is_read),
            "sender": build_participant_summary(self.sender),
            "receiver": build_participant_summary(self.receiver),
            "property": property_row.to_summary() if property_row is not None else None,
        }


def message_queryset_for_member(member: object) -> models.QuerySet[Message]:
    member_id = int(getattr(member, "pk", 0) or 0)
    return (
        Message.objects.select_related(
            "sender",
            "sender__account_profile",
            "receiver",
            "receiver__account_profile",
            "property",
        )
        .filter(Q(sender_id=member_id) | Q(receiver_id=member_id))
        .order_by("-created_at", "-id")
    )


def fetch_messages_for_member(member: object, *, property_id: int | None = None) -> list[MessageData]:
    """
    Full message list for one member, newest first, with summaries attached.

    Anonymous members get an empty list rather than an error.
    """

    if not bool(getattr(member, "is_authenticated", False)):
        return []

    queryset = message_queryset_for_member(member)
    if property_id is not None:
        queryset = queryset.filter(property_id=property_id)
    return [row.to_message_data() for row in queryset]


def send_message(
    *,
    sender: object,
    receiver_id: object,
    property_id: object = None,
    content: object,
    phone_number: object = "",
) -> tuple[Message | None, SendOutcome]:
    if not bool(getattr(sender, "is_authenticated", False)):
        return None, "member-required"

    sender_id = int(getattr(sender, "pk", 0) or 0)
    if sender_id <= 0:
        return None, "invalid-member"

    parsed_receiver_id = _parse_positive_id(receiver_id)
    if parsed_receiver_id is None:
        return None, "receiver-required"
    if parsed_receiver_id == sender_id:
        return None, "self-message-blocked"

    # Whitespace-only text is rejected before anything touches the database.
    cleaned_content = _clean_text(content)
    if not cleaned_content:
        return None, "empty-message"
    if len(cleaned_content) > message_max_length():
        return None, "too-long"

    cleaned_phone = _clean_phone(phone_number)
    if len(cleaned_phone) > PHONE_NUMBER_MAX_LENGTH:
        return None, "invalid-phone"

    receiver = get_user_model().objects.filter(pk=parsed_receiver_id, is_active=True).first()
    if receiver is None:
        return None, "receiver-not-found"

    property_row: Property | None = None
    if property_id not in (None, ""):
        parsed_property_id = _parse_positive_id(property_id)
        property_row = Property.objects.filter(pk=parsed_property_id).first() if parsed_property_id else None
        if property_row is None:
            return None, "property-not-found"

    message = Message.objects.create(
        sender=cast(Any, sender),
        receiver=receiver,
        property=property_row,
        content=cleaned_content,
        phone_number=cleaned_phone,
    )
    logger.info(
        "Message %s sent from member %s to member %s (property=%s).",
        message.pk,
        sender_id,
        parsed_receiver_id,
        message.property_id,
    )
    return message, "sent"


def start_property_inquiry(
    *,
    sender: object,
    property_id: object,
    content: object,
    phone_number: object = "",
) -> tuple[Message | None, InquiryOutcome, Property | None]:
    """
    Open (or continue) a conversation with a listing's landlord.

    Only students inquire, and only about listings that are still available.
    """

    if not bool(getattr(sender, "is_authenticated", False)):
        return None, "member-required", None

    parsed_property_id = _parse_positive_id(property_id)
    property_row = (
        Property.objects.select_related("landlord").filter(pk=parsed_property_id).first()
        if parsed_property_id is not None
        else None
    )
    if property_row is None:
        return None, "property-not-found", None

    if int(property_row.landlord_id) == int(getattr(sender, "pk", 0) or 0):
        return None, "owner-blocked", property_row
    if member_role(sender) != "student":
        return None, "student-required", property_row
    if not property_row.is_available:
        return None, "property-unavailable", property_row

    message, outcome = send_message(
        sender=sender,
        receiver_id=property_row.landlord_id,
        property_id=property_row.pk,
        content=content,
        phone_number=phone_number,
    )
    if outcome in {"empty-message", "too-long", "invalid-phone", "receiver-not-found", "sent"}:
        return message, cast(InquiryOutcome, outcome), property_row

    # Remaining send outcomes cannot happen for a resolved listing and an authenticated student.
    logger.warning("Unexpected inquiry send outcome %r for property %s.", outcome, property_row.pk)
    return None, "receiver-not-found", property_row


def mark_conversation_read(member: object, conversation_key: object) -> tuple[int, MarkReadOutcome]:
    """
    Flag every unread message the member received in one conversation as read.

    Returns the number of rows changed. A bulk update skips model signals, so
    the change is published here once for the whole conversation.
    """

    if not bool(getattr(member, "is_authenticated", False)):
        return 0, "member-required"

    parsed_key = parse_conversation_key(conversation_key)
    if parsed_key is None:
        return 0, "invalid-conversation"

    property_id, counterpart_id = parsed_key
    member_id = int(getattr(member, "pk", 0) or 0)
    queryset = Message.objects.filter(receiver_id=member_id, sender_id=counterpart_id, is_read=False)
    if property_id is None:
        queryset = queryset.filter(property__isnull=True)
    else:
        queryset = queryset.filter(property_id=property_id)

    latest_id = queryset.order_by("-created_at", "-id").values_list("id", flat=True).first()
    updated_count = int(queryset.update(is_read=True))
    if updated_count and latest_id is not None:
        publish_message_change(
            MessageChange(
                message_id=int(latest_id),
                sender_id=counterpart_id,
                receiver_id=member_id,
                property_id=property_id,
                action="read",
            )
        )
    return updated_count, "marked"


def unread_count_for_member(member: object) -> int:
    if not bool(getattr(member, "is_authenticated", False)):
        return 0
    return int(
        Message.objects.filter(
            receiver_id=int(getattr(member, "pk", 0) or 0),
            is_read=False,
            sender__is_active=True,
        ).count()
    )
