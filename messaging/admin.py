from django.contrib import admin
from typing import TYPE_CHECKING

from .models import Message

if TYPE_CHECKING:
    MessageAdminBase = admin.ModelAdmin[Message]
else:
    MessageAdminBase = admin.ModelAdmin


@admin.register(Message)
class MessageAdmin(MessageAdminBase):
    list_display = ("id", "sender", "receiver", "property", "is_read", "created_at")
    list_filter = ("is_read", "created_at")
    search_fields = ("sender__username", "receiver__username", "property__title", "content")
    list_select_related = ("sender", "receiver", "property")
    readonly_fields = ("created_at", "updated_at")
