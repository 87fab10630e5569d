from __future__ import annotations

from typing import Any

from django.db.models.signals import post_delete, post_save
from django.dispatch import receiver

from .models import Message
from .realtime import ChangeAction, MessageChange, publish_message_change


def _change_for(instance: Message, action: ChangeAction) -> MessageChange:
    return MessageChange(
        message_id=int(instance.pk or 0),
        sender_id=int(instance.sender_id),
        receiver_id=int(instance.receiver_id),
        property_id=int(instance.property_id) if instance.property_id else None,
        action=action,
    )


@receiver(post_save, sender=Message)
def publish_saved_message(sender: type[Message], instance: Message, created: bool, **kwargs: Any) -> None:
    # Fixture loading stays silent.
    if kwargs.get("raw"):
        return
    publish_message_change(_change_for(instance, "created" if created else "updated"))


@receiver(post_delete, sender=Message)
def publish_deleted_message(sender: type[Message], instance: Message, **kwargs: Any) -> None:
    publish_message_change(_change_for(instance, "deleted"))
