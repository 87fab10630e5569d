from typing import TYPE_CHECKING

from django.contrib import admin

from .models import PropertyReview

if TYPE_CHECKING:
    _BaseReviewAdmin = admin.ModelAdmin[PropertyReview]
else:
    _BaseReviewAdmin = admin.ModelAdmin


@admin.register(PropertyReview)
class PropertyReviewAdmin(_BaseReviewAdmin):
    list_display = (
        "id",
        "author",
        "property",
        "rating",
        "created_at",
    )
    list_filter = ("rating", "created_at")
    search_fields = ("author__username", "property__title", "comment")
    autocomplete_fields = ("author",)
    list_select_related = ("author", "property")
    readonly_fields = ("created_at", "updated_at")
    ordering = ("-created_at", "-id")
