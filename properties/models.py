from __future__ import annotations

import math
from typing import Any, Final, Literal, TypedDict, cast

from django.apps import apps
from django.conf import settings
from django.core.exceptions import ValidationError
from django.db import models
from django.db.models import Avg, Count, Q

PropertyStatus = Literal["available", "reserved", "taken"]

EARTH_RADIUS_KM: Final[float] = 6371.0


class PropertySummary(TypedDict):
    id: int
    title: str
    address: str
    price_per_month: int
    status: str
    landlord_id: int
    thumbnail_url: str
    url: str


class PropertyData(TypedDict, total=False):
    id: int
    title: str
    description: str
    address: str
    latitude: float
    longitude: float
    price_per_month: int
    bedrooms: int
    bathrooms: int
    furnished: bool
    amenities: list[str]
    rules: str
    images: list[str]
    thumbnail_url: str
    status: str
    status_label: str
    landlord_id: int
    landlord_username: str
    url: str
    distance_km: float | None
    average_rating: float | None
    review_count: int


class PropertySearchFilters(TypedDict):
    query: str
    min_price: int
    max_price: int
    center_lat: float | None
    center_lng: float | None
    radius_km: float
    bounds: tuple[float, float, float, float] | None


class PropertySearchPayload(TypedDict):
    properties: list[PropertyData]
    filters: PropertySearchFilters
    total_count: int
    filtered_count: int
    mode: str


class LandlordDashboardPayload(TypedDict):
    properties: list[PropertyData]
    total_count: int
    available_count: int
    inquiry_counts: dict[int, int]
    mode: str


class Property(models.Model):
    """
    Rental listing owned by a landlord.

    Images are stored as URLs; object storage for listing photos lives outside
    this app.
    """

    STATUS_AVAILABLE: Final[str] = "available"
    STATUS_RESERVED: Final[str] = "reserved"
    STATUS_TAKEN: Final[str] = "taken"
    STATUS_CHOICES: Final[tuple[tuple[str, str], ...]] = (
        (STATUS_AVAILABLE, "Available"),
        (STATUS_RESERVED, "Reserved"),
        (STATUS_TAKEN, "Taken"),
    )

    landlord = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="properties",
    )
    title = models.CharField(max_length=180)
    description = models.TextField(blank=True)
    address = models.CharField(max_length=255)
    latitude = models.FloatField()
    longitude = models.FloatField()
    price_per_month = models.PositiveIntegerField()
    bedrooms = models.PositiveSmallIntegerField(default=1)
    bathrooms = models.PositiveSmallIntegerField(default=1)
    furnished = models.BooleanField(default=False)
    amenities = models.JSONField(default=list, blank=True)
    rules = models.TextField(blank=True)
    images = models.JSONField(default=list, blank=True)
    status = models.CharField(
        max_length=12,
        choices=STATUS_CHOICES,
        default=STATUS_AVAILABLE,
        db_index=True,
    )
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ("-created_at", "-id")
        indexes = [
            models.Index(fields=("landlord", "created_at"), name="property_landlord_idx"),
            models.Index(fields=("status", "price_per_month"), name="property_status_price_idx"),
        ]
        constraints = [
            models.CheckConstraint(
                condition=Q(latitude__gte=-90) & Q(latitude__lte=90),
                name="property_latitude_range",
            ),
            models.CheckConstraint(
                condition=Q(longitude__gte=-180) & Q(longitude__lte=180),
                name="property_longitude_range",
            ),
        ]

    def __str__(self) -> str:
        return f"Property #{self.pk or 'new'}: {self.title}"

    def clean(self) -> None:
        super().clean()
        errors: dict[str, str] = {}
        if self.latitude is not None and not -90 <= float(self.latitude) <= 90:
            errors["latitude"] = "Latitude must be between -90 and 90."
        if self.longitude is not None and not -180 <= float(self.longitude) <= 180:
            errors["longitude"] = "Longitude must be between -180 and 180."
        if not isinstance(self.amenities, list):
            errors["amenities"] = "Amenities must be a list of labels."
        if not isinstance(self.images, list):
            errors["images"] = "Images must be a list of URLs."
        if errors:
            raise ValidationError(errors)

    def get_absolute_url(self) -> str:
        return f"/properties/{self.pk}/"

    @property
    def is_available(self) -> bool:
        return self.status == self.STATUS_AVAILABLE

    @property
    def thumbnail_url(self) -> str:
        for image_url in _clean_string_list(self.images):
            return image_url
        return ""

    def to_summary(self) -> PropertySummary:
        return {
            "id": int(self.pk or 0),
            "title": self.title,
            "address": self.address,
            "price_per_month": int(self.price_per_month or 0),
            "status": self.status,
            "landlord_id": int(getattr(self, "landlord_id", 0) or 0),
            "thumbnail_url": self.thumbnail_url,
            "url": self.get_absolute_url(),
        }

    def to_property_data(self) -> PropertyData:
        return {
            "id": int(self.pk or 0),
            "title": self.title,
            "description": self.description,
            "address": self.address,
            "latitude": float(self.latitude),
            "longitude": float(self.longitude),
            "price_per_month": int(self.price_per_month or 0),
            "bedrooms": int(self.bedrooms or 0),
            "bathrooms": int(self.bathrooms or 0),
            "furnished": bool(self.furnished),
            "amenities": _clean_string_list(self.amenities),
            "rules": self.rules,
            "images": _clean_string_list(self.images),
            "thumbnail_url": self.thumbnail_url,
            "status": self.status,
            "status_label": self.get_status_display(),
            "landlord_id": int(getattr(self, "landlord_id", 0) or 0),
            "landlord_username": str(getattr(self.landlord, "username", "") or "").strip(),
            "url": self.get_absolute_url(),
            "distance_km": None,
            "average_rating": None,
            "review_count": 0,
        }


def _clean_string_list(raw_values: object) -> list[str]:
    if not isinstance(raw_values, list):
        return []
    cleaned: list[str] = []
    for value in cast(list[object], raw_values):
        text = str(value or "").strip()
        if text:
            cleaned.append(text)
    return cleaned


def _coerce_int(raw_value: object, default: int) -> int:
    try:
        return int(str(raw_value).strip())
    except (TypeError, ValueError):
        return default


def _coerce_float(raw_value: object) -> float | None:
    text = str(raw_value or "").strip()
    if not text:
        return None
    try:
        parsed = float(text)
    except (TypeError, ValueError):
        return None
    if math.isnan(parsed) or math.isinf(parsed):
        return None
    return parsed


def haversine_km(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """
    Great-circle distance between two coordinates in kilometres.
    """

    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    delta_phi = math.radians(lat2 - lat1)
    delta_lambda = math.radians(lng2 - lng1)

    a = math.sin(delta_phi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(delta_lambda / 2) ** 2
    return 2 * EARTH_RADIUS_KM * math.asin(min(1.0, math.sqrt(a)))


def normalize_search_filters(raw_filters: dict[str, object]) -> PropertySearchFilters:
    max_price_cap = int(getattr(settings, "CAMPUSNEST_SEARCH_MAX_PRICE", 20_000))
    default_radius = float(getattr(settings, "CAMPUSNEST_SEARCH_DEFAULT_RADIUS_KM", 5))

    min_price = max(0, _coerce_int(raw_filters.get("min_price", 0), 0))
    max_price = max(0, _coerce_int(raw_filters.get("max_price", max_price_cap), max_price_cap))
    if max_price < min_price:
        min_price, max_price = max_price, min_price

    center_lat = _coerce_float(raw_filters.get("lat"))
    center_lng = _coerce_float(raw_filters.get("lng"))
    if center_lat is None or center_lng is None or not -90 <= center_lat <= 90 or not -180 <= center_lng <= 180:
        center_lat = None
        center_lng = None

    radius_km = _coerce_float(raw_filters.get("radius_km"))
    if radius_km is None or radius_km <= 0:
        radius_km = default_radius

    bounds: tuple[float, float, float, float] | None = None
    south = _coerce_float(raw_filters.get("south"))
    west = _coerce_float(raw_filters.get("west"))
    north = _coerce_float(raw_filters.get("north"))
    east = _coerce_float(raw_filters.get("east"))
    if None not in (south, west, north, east):
        south_value, west_value = cast(float, south), cast(float, west)
        north_value, east_value = cast(float, north), cast(float, east)
        if south_value <= north_value and west_value <= east_value:
            bounds = (south_value, west_value, north_value, east_value)

    return {
        "query": " ".join(str(raw_filters.get("q", "") or "").split())[:120],
        "min_price": min_price,
        "max_price": max_price,
        "center_lat": center_lat,
        "center_lng": center_lng,
        "radius_km": float(radius_km),
        "bounds": bounds,
    }


def _resolve_model(app_label: str, model_name: str) -> Any | None:
    try:
        return apps.get_model(app_label, model_name)
    except LookupError:
        return None


def build_rating_map(property_ids: list[int]) -> dict[int, tuple[float | None, int]]:
    """
    Average rating and review count per listing, read from the reviews app.
    """

    review_model = _resolve_model("reviews", "PropertyReview")
    if review_model is None or not property_ids:
        return {}

    rows = (
        review_model.objects.filter(property_id__in=property_ids)
        .values("property_id")
        .annotate(average=Avg("rating"), total=Count("id"))
    )
    rating_map: dict[int, tuple[float | None, int]] = {}
    for row in rows:
        average = row.get("average")
        rating_map[int(row["property_id"])] = (
            round(float(average), 2) if average is not None else None,
            int(row.get("total") or 0),
        )
    return rating_map


def attach_ratings(items: list[PropertyData]) -> None:
    rating_map = build_rating_map([int(item.get("id", 0) or 0) for item in items])
    for item in items:
        average, total = rating_map.get(int(item.get("id", 0) or 0), (None, 0))
        item["average_rating"] = average
        item["review_count"] = total


def search_properties(filters: PropertySearchFilters, *, limit: int = 60) -> PropertySearchPayload:
    """
    Filter available listings by price, text, radius or bounding box.

    With a centre point the result is sorted by distance, otherwise newest first.
    """

    effective_limit = max(1, int(limit or 60))
    base_qs = Property.objects.select_related("landlord").filter(status=Property.STATUS_AVAILABLE)
    total_count = base_qs.count()

    queryset = base_qs.filter(
        price_per_month__gte=filters["min_price"],
        price_per_month__lte=filters["max_price"],
    )
    query = filters["query"]
    if query:
        queryset = queryset.filter(
            Q(title__icontains=query) | Q(address__icontains=query) | Q(description__icontains=query)
        )

    bounds = filters["bounds"]
    if bounds is not None:
        south, west, north, east = bounds
        queryset = queryset.filter(
            latitude__gte=south,
            latitude__lte=north,
            longitude__gte=west,
            longitude__lte=east,
        )

    center_lat = filters["center_lat"]
    center_lng = filters["center_lng"]
    items: list[PropertyData] = []
    if center_lat is not None and center_lng is not None:
        for row in queryset:
            distance = haversine_km(center_lat, center_lng, float(row.latitude), float(row.longitude))
            if bounds is None and distance > filters["radius_km"]:
                continue
            item = row.to_property_data()
            item["distance_km"] = round(distance, 2)
            items.append(item)
        items.sort(key=lambda item: (float(item.get("distance_km") or 0.0), int(item.get("id", 0) or 0)))
        mode = "radius" if bounds is None else "bounds-nearest"
    else:
        items = [row.to_property_data() for row in queryset.order_by("-created_at", "-pk")]
        mode = "bounds" if bounds is not None else "all-available"

    filtered_count = len(items)
    items = items[:effective_limit]
    attach_ratings(items)
    return {
        "properties": items,
        "filters": filters,
        "total_count": total_count,
        "filtered_count": filtered_count,
        "mode": mode,
    }


def build_landlord_dashboard_payload(user: object) -> LandlordDashboardPayload:
    if not bool(getattr(user, "is_authenticated", False)):
        return {
            "properties": [],
            "total_count": 0,
            "available_count": 0,
            "inquiry_counts": {},
            "mode": "guest-not-allowed",
        }

    rows = list(Property.objects.select_related("landlord").filter(landlord=cast(Any, user)).order_by("-created_at", "-pk"))
    items = [row.to_property_data() for row in rows]
    attach_ratings(items)

    inquiry_counts: dict[int, int] = {}
    message_model = _resolve_model("messaging", "Message")
    if message_model is not None and rows:
        count_rows = (
            message_model.objects.filter(property_id__in=[row.pk for row in rows])
            .values("property_id")
            .annotate(total=Count("id"))
        )
        inquiry_counts = {int(row["property_id"]): int(row["total"] or 0) for row in count_rows}

    return {
        "properties": items,
        "total_count": len(rows),
        "available_count": sum(1 for row in rows if row.is_available),
        "inquiry_counts": inquiry_counts,
        "mode": "landlord-listings",
    }
