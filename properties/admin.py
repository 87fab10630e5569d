from typing import TYPE_CHECKING

from django.contrib import admin

from .models import Property

if TYPE_CHECKING:
    _BasePropertyAdmin = admin.ModelAdmin[Property]
else:
    _BasePropertyAdmin = admin.ModelAdmin


@admin.register(Property)
class PropertyAdmin(_BasePropertyAdmin):
    list_display = (
        "id",
        "title",
        "landlord",
        "price_per_month",
        "bedrooms",
        "status",
        "updated_at",
    )
    list_filter = ("status", "furnished")
    search_fields = ("title", "address", "description", "landlord__username")
    autocomplete_fields = ("landlord",)
    readonly_fields = ("created_at", "updated_at")
    ordering = ("-created_at", "-id")
