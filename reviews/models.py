from __future__ import annotations

from datetime import datetime
from typing import Any, Final, Literal, TypedDict, cast

from django.conf import settings
from django.core.exceptions import ObjectDoesNotExist, ValidationError
from django.db import models
from django.db.models import Avg, Count, Q
from django.db.models.constraints import BaseConstraint

from accounts.models import member_role
from properties.models import Property

ReviewSubmitOutcome = Literal[
    "member-required",
    "invalid-member",
    "student-required",
    "property-not-found",
    "owner-blocked",
    "invalid-rating",
    "too-long",
    "created",
    "updated",
]


class ReviewData(TypedDict):
    id: int
    author_username: str
    author_display_name: str
    rating: int
    comment: str
    created_at: datetime
    updated_at: datetime
    is_mine: bool


class RatingBucketData(TypedDict):
    rating: int
    count: int


class PropertyReviewPayload(TypedDict):
    reviews: list[ReviewData]
    rating_buckets: list[RatingBucketData]
    mode: str
    reason: str
    property_id: int
    review_count: int
    average_rating: float
    can_review: bool
    viewer_review: ReviewData | None


def _clean_text(value: object) -> str:
    # Keep user text normalized so equality checks and idempotent seeds are stable.
    return " ".join(str(value or "").strip().split())


def parse_review_rating(raw_rating: object) -> int | None:
    raw_text = str(raw_rating or "").strip()
    if not raw_text:
        return None

    if raw_text.startswith("+"):
        raw_text = raw_text[1:]
    if not raw_text.isdigit():
        return None

    rating = int(raw_text)
    if rating < PropertyReview.RATING_MIN or rating > PropertyReview.RATING_MAX:
        return None
    return rating


def _parse_property_id(raw_property_id: object) -> int | None:
    raw_key = str(raw_property_id or "").strip()
    if not raw_key.isdigit():
        return None
    property_id = int(raw_key)
    return property_id if property_id > 0 else None


class PropertyReview(models.Model):
    """
    Student review of a listing.

    One review per `(property, author)`; resubmitting updates the existing row.
    """

    RATING_MIN: Final[int] = 1
    RATING_MAX: Final[int] = 5
    COMMENT_MAX_LENGTH: Final[int] = 2_000

    property = models.ForeignKey(
        Property,
        on_delete=models.CASCADE,
        related_name="reviews",
    )
    author = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="property_reviews",
    )
    rating = models.PositiveSmallIntegerField(default=5)
    comment = models.TextField(blank=True, max_length=COMMENT_MAX_LENGTH)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ("-created_at", "-id")
        constraints: list[BaseConstraint] = [
            cast(
                BaseConstraint,
                models.UniqueConstraint(
                    fields=("property", "author"),
                    name="reviews_unique_property_author",
                ),
            ),
            cast(
                BaseConstraint,
                models.CheckConstraint(
                    condition=Q(rating__gte=1) & Q(rating__lte=5),
                    name="reviews_rating_between_1_5",
                ),
            ),
        ]
        indexes = [
            models.Index(fields=("property", "created_at"), name="reviews_property_created_idx"),
            models.Index(fields=("author", "created_at"), name="reviews_author_created_idx"),
        ]

    def __str__(self) -> str:
        author_username = str(getattr(self.author, "username", "") or "").strip()
        return f"Review #{self.pk or 'new'} by @{author_username} for property #{self.property_id} ({self.rating}/5)"

    def clean(self) -> None:
        super().clean()

        rating_value = int(self.rating or 0)
        if rating_value < self.RATING_MIN or rating_value > self.RATING_MAX:
            raise ValidationError(
                {"rating": f"Rating must be between {self.RATING_MIN} and {self.RATING_MAX}."}
            )

        cleaned_comment = _clean_text(self.comment)
        if len(cleaned_comment) > self.COMMENT_MAX_LENGTH:
            raise ValidationError(
                {"comment": f"Review text must be {self.COMMENT_MAX_LENGTH} characters or fewer."}
            )

        landlord_id = Property.objects.filter(pk=self.property_id).values_list("landlord_id", flat=True).first()
        if landlord_id is not None and int(getattr(self, "author_id", 0) or 0) == int(landlord_id):
            raise ValidationError({"author": "Landlords cannot review their own listings."})

        self.rating = rating_value
        self.comment = cleaned_comment

    def to_review_data(self, *, viewer_id: int) -> ReviewData:
        author = self.author
        author_username = str(getattr(author, "username", "") or "").strip()
        try:
            display_name = author.account_profile.effective_display_name  # type: ignore[attr-defined]
        except (ObjectDoesNotExist, AttributeError):
            display_name = author_username
        return {
            "id": int(self.pk or 0),
            "author_username": author_username,
            "author_display_name": str(display_name or author_username),
            "rating": int(self.rating or 0),
            "comment": str(self.comment or "").strip(),
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "is_mine": int(getattr(self, "author_id", 0) or 0) == int(viewer_id),
        }


def submit_review(
    *,
    member: object,
    property_id: object,
    rating: object,
    comment: object = "",
) -> tuple[PropertyReview | None, ReviewSubmitOutcome, Property | None]:
    if not bool(getattr(member, "is_authenticated", False)):
        return None, "member-required", None

    member_id = int(getattr(member, "pk", 0) or 0)
    if member_id <= 0:
        return None, "invalid-member", None

    parsed_property_id = _parse_property_id(property_id)
    property_row = (
        Property.objects.filter(pk=parsed_property_id).first() if parsed_property_id is not None else None
    )
    if property_row is None:
        return None, "property-not-found", None

    if int(property_row.landlord_id) == member_id:
        return None, "owner-blocked", property_row

    if member_role(member) != "student":
        return None, "student-required", property_row

    parsed_rating = parse_review_rating(rating)
    if parsed_rating is None:
        return None, "invalid-rating", property_row

    cleaned_comment = _clean_text(comment)
    if len(cleaned_comment) > PropertyReview.COMMENT_MAX_LENGTH:
        return None, "too-long", property_row

    review_row, created = PropertyReview.objects.get_or_create(
        property=property_row,
        author=cast(Any, member),
        defaults={
            "rating": parsed_rating,
            "comment": cleaned_comment,
        },
    )
    if created:
        return review_row, "created", property_row

    changed_fields: list[str] = []
    if int(review_row.rating or 0) != parsed_rating:
        review_row.rating = parsed_rating
        changed_fields.append("rating")
    if review_row.comment != cleaned_comment:
        review_row.comment = cleaned_comment
        changed_fields.append("comment")

    if changed_fields:
        changed_fields.append("updated_at")
        review_row.save(update_fields=changed_fields)

    return review_row, "updated", property_row


def build_reviews_payload_for_property(
    *,
    property_id: object,
    viewer: object,
    limit: int = 120,
) -> PropertyReviewPayload:
    parsed_property_id = _parse_property_id(property_id) or 0
    effective_limit = max(1, int(limit or 120))
    base_queryset = PropertyReview.objects.select_related("author", "author__account_profile").filter(
        property_id=parsed_property_id,
    )
    review_rows = list(base_queryset.order_by("-created_at", "-pk")[:effective_limit])
    review_count = int(base_queryset.count())

    aggregate_result = base_queryset.aggregate(average=Avg("rating"))
    average_rating = round(float(aggregate_result.get("average") or 0.0), 2)

    rating_counts = {
        int(item["rating"]): int(item["count"])
        for item in base_queryset.values("rating").annotate(count=Count("id"))
    }
    rating_buckets: list[RatingBucketData] = [
        {"rating": rating_value, "count": rating_counts.get(rating_value, 0)}
        for rating_value in range(5, 0, -1)
    ]

    viewer_is_member = bool(getattr(viewer, "is_authenticated", False))
    viewer_id = int(getattr(viewer, "pk", 0) or 0) if viewer_is_member else 0
    reviews_data = [row.to_review_data(viewer_id=viewer_id) for row in review_rows]
    viewer_review = next((row for row in reviews_data if bool(row.get("is_mine"))), None)

    landlord_id = int(
        Property.objects.filter(pk=parsed_property_id).values_list("landlord_id", flat=True).first() or 0
    )
    can_review = viewer_is_member and member_role(viewer) == "student" and viewer_id != landlord_id

    reason = "Reviews are ordered from newest to oldest."
    if review_count == 0:
        reason = "No reviews yet. Students can add the first review."

    return {
        "reviews": reviews_data,
        "rating_buckets": rating_buckets,
        "mode": "member-property-reviews" if viewer_is_member else "guest-property-reviews",
        "reason": reason,
        "property_id": parsed_property_id,
        "review_count": review_count,
        "average_rating": average_rating,
        "can_review": can_review,
        "viewer_review": viewer_review,
    }
