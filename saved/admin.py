from typing import TYPE_CHECKING

from django.contrib import admin

from .models import SavedProperty

if TYPE_CHECKING:
    _BaseSavedPropertyAdmin = admin.ModelAdmin[SavedProperty]
else:
    _BaseSavedPropertyAdmin = admin.ModelAdmin


@admin.register(SavedProperty)
class SavedPropertyAdmin(_BaseSavedPropertyAdmin):
    list_display = ("id", "member", "property", "created_at")
    search_fields = ("member__username", "property__title")
    list_select_related = ("member", "property")
    readonly_fields = ("created_at",)
    ordering = ("-created_at", "-id")
