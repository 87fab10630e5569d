from __future__ import annotations

from typing import Any, Literal, TypedDict, cast

from django.conf import settings
from django.db import models

from accounts.models import member_role
from properties.models import Property, PropertyData, attach_ratings

SaveOutcome = Literal[
    "member-required",
    "student-required",
    "property-not-found",
    "saved",
    "already-saved",
]
UnsaveOutcome = Literal[
    "member-required",
    "property-not-found",
    "unsaved",
    "already-not-saved",
]


class SavedPropertiesPayload(TypedDict):
    properties: list[PropertyData]
    mode: str
    reason: str


class SavedProperty(models.Model):
    """
    A student's shortlist entry for one listing.
    """

    member = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="saved_properties",
    )
    property = models.ForeignKey(
        Property,
        on_delete=models.CASCADE,
        related_name="saved_by",
    )
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ("-created_at", "-id")
        constraints = [
            models.UniqueConstraint(
                fields=("member", "property"),
                name="saved_unique_member_property",
            )
        ]
        indexes = [
            models.Index(fields=("member", "created_at"), name="saved_member_created_idx"),
        ]

    def __str__(self) -> str:
        member_username = str(getattr(self.member, "username", "") or "").strip()
        return f"Saved(property:{self.property_id}) by @{member_username}"


def _property_from_id(raw_property_id: object) -> Property | None:
    raw_key = str(raw_property_id or "").strip()
    if not raw_key.isdigit() or int(raw_key) <= 0:
        return None
    return Property.objects.filter(pk=int(raw_key)).first()


def save_property(*, member: object, property_id: object) -> tuple[SavedProperty | None, SaveOutcome]:
    if not bool(getattr(member, "is_authenticated", False)):
        return None, "member-required"

    if member_role(member) != "student":
        return None, "student-required"

    property_row = _property_from_id(property_id)
    if property_row is None:
        return None, "property-not-found"

    saved_row, created = SavedProperty.objects.get_or_create(
        member=cast(Any, member),
        property=property_row,
    )
    return saved_row, "saved" if created else "already-saved"


def unsave_property(*, member: object, property_id: object) -> UnsaveOutcome:
    if not bool(getattr(member, "is_authenticated", False)):
        return "member-required"

    property_row = _property_from_id(property_id)
    if property_row is None:
        return "property-not-found"

    deleted_count, _ = SavedProperty.objects.filter(
        member=cast(Any, member),
        property=property_row,
    ).delete()
    return "unsaved" if deleted_count else "already-not-saved"


def saved_property_ids_for_member(member: object) -> set[int]:
    if not bool(getattr(member, "is_authenticated", False)):
        return set()
    return {
        int(property_id)
        for property_id in SavedProperty.objects.filter(member=cast(Any, member)).values_list(
            "property_id", flat=True
        )
    }


def is_property_saved(*, member: object, property_id: int) -> bool:
    if not bool(getattr(member, "is_authenticated", False)):
        return False
    return SavedProperty.objects.filter(member=cast(Any, member), property_id=property_id).exists()


def build_saved_properties_payload(member: object, *, limit: int = 60) -> SavedPropertiesPayload:
    if not bool(getattr(member, "is_authenticated", False)):
        return {
            "properties": [],
            "mode": "guest-not-allowed",
            "reason": "Saved listings are available to signed-in students.",
        }

    effective_limit = max(1, int(limit or 60))
    saved_rows = list(
        SavedProperty.objects.select_related("property", "property__landlord")
        .filter(member=cast(Any, member))
        .order_by("-created_at", "-pk")[:effective_limit]
    )
    items = [row.property.to_property_data() for row in saved_rows]
    attach_ratings(items)

    reason = "Saved listings are ordered by when you saved them."
    if not items:
        reason = "No saved listings yet. Use the heart on a listing to shortlist it."
    return {
        "properties": items,
        "mode": "member-saved",
        "reason": reason,
    }
