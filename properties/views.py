from __future__ import annotations

from typing import Final

from django.contrib import messages
from django.contrib.auth.decorators import login_required
from django.http import Http404, HttpRequest, HttpResponse, JsonResponse
from django.shortcuts import redirect, render
from django.urls import reverse
from django.views.decorators.http import require_http_methods

from accounts.models import build_participant_summary, member_role
from reviews.models import build_reviews_payload_for_property
from saved.models import is_property_saved, saved_property_ids_for_member
from verification.models import is_landlord_verified, latest_verification_for

from .models import (
    Property,
    PropertySearchFilters,
    attach_ratings,
    build_landlord_dashboard_payload,
    normalize_search_filters,
    search_properties,
)

VERBOSE_FLAGS: Final[set[str]] = {"1", "true", "yes", "on"}
SEARCH_PARAM_NAMES: Final[tuple[str, ...]] = (
    "q",
    "min_price",
    "max_price",
    "lat",
    "lng",
    "radius_km",
    "south",
    "west",
    "north",
    "east",
)


def _is_verbose_request(request: HttpRequest) -> bool:
    candidate = (
        request.GET.get("verbose")
        or request.POST.get("verbose")
        or request.headers.get("X-Campusnest-Verbose")
        or ""
    )
    return candidate.strip().lower() in VERBOSE_FLAGS


def _vprint(request: HttpRequest, message: str) -> None:
    if _is_verbose_request(request):
        print(f"[properties][verbose] {message}", flush=True)


def _filters_from_request(request: HttpRequest) -> PropertySearchFilters:
    raw_filters: dict[str, object] = {name: request.GET.get(name, "") for name in SEARCH_PARAM_NAMES}
    return normalize_search_filters({key: value for key, value in raw_filters.items() if value != ""})


@require_http_methods(["GET"])
def property_list_view(request: HttpRequest) -> HttpResponse:
    filters = _filters_from_request(request)
    payload = search_properties(filters)
    _vprint(
        request,
        "Property search mode={mode}; count={count}/{total}; filters={filters}".format(
            mode=payload["mode"],
            count=payload["filtered_count"],
            total=payload["total_count"],
            filters=payload["filters"],
        ),
    )

    context: dict[str, object] = {
        "properties": payload["properties"],
        "search_filters": payload["filters"],
        "search_mode": payload["mode"],
        "search_total_count": payload["total_count"],
        "search_filtered_count": payload["filtered_count"],
        "saved_property_ids": saved_property_ids_for_member(request.user),
    }
    return render(request, "pages/properties/list.html", context)


@require_http_methods(["GET"])
def property_map_data_view(request: HttpRequest) -> JsonResponse:
    payload = search_properties(_filters_from_request(request), limit=200)
    markers = [
        {
            "id": item.get("id"),
            "title": item.get("title"),
            "address": item.get("address"),
            "latitude": item.get("latitude"),
            "longitude": item.get("longitude"),
            "price_per_month": item.get("price_per_month"),
            "thumbnail_url": item.get("thumbnail_url"),
            "distance_km": item.get("distance_km"),
            "average_rating": item.get("average_rating"),
            "url": item.get("url"),
        }
        for item in payload["properties"]
    ]
    _vprint(request, f"Map markers mode={payload['mode']}; count={len(markers)}")
    return JsonResponse(
        {
            "ok": True,
            "mode": payload["mode"],
            "markers": markers,
            "filtered_count": payload["filtered_count"],
        }
    )


@require_http_methods(["GET"])
def property_detail_view(request: HttpRequest, property_id: int) -> HttpResponse:
    property_row = Property.objects.select_related("landlord", "landlord__account_profile").filter(pk=property_id).first()
    if property_row is None:
        raise Http404("Listing not found.")

    viewer_id = int(getattr(request.user, "pk", 0) or 0)
    is_owner = viewer_id > 0 and viewer_id == int(property_row.landlord_id)

    # Reserved and taken listings stay reachable from old links but cannot be inquired about.
    property_data = property_row.to_property_data()
    attach_ratings([property_data])
    reviews_payload = build_reviews_payload_for_property(property_id=property_row.pk, viewer=request.user)
    role = member_role(request.user)

    context: dict[str, object] = {
        "property": property_data,
        "landlord": build_participant_summary(property_row.landlord),
        "landlord_is_verified": is_landlord_verified(property_row.landlord),
        "is_owner": is_owner,
        "is_saved": is_property_saved(member=request.user, property_id=property_row.pk),
        "can_save": role == "student",
        "can_inquire": property_row.is_available and role == "student" and not is_owner,
        "reviews": reviews_payload["reviews"],
        "review_buckets": reviews_payload["rating_buckets"],
        "review_count": reviews_payload["review_count"],
        "average_rating": reviews_payload["average_rating"],
        "can_review": reviews_payload["can_review"],
        "viewer_review": reviews_payload["viewer_review"],
        "reviews_reason": reviews_payload["reason"],
    }
    _vprint(
        request,
        f"Listing #{property_row.pk} rendered; owner={is_owner}; reviews={reviews_payload['review_count']}",
    )
    return render(request, "pages/properties/detail.html", context)


@login_required(login_url="accounts:login")
@require_http_methods(["GET"])
def landlord_dashboard_view(request: HttpRequest) -> HttpResponse:
    if member_role(request.user) != "landlord":
        messages.info(request, "The dashboard is available to landlord accounts.")
        return redirect(reverse("properties:list"))

    payload = build_landlord_dashboard_payload(request.user)
    inquiry_counts = payload["inquiry_counts"]
    listings = [
        {**item, "inquiry_count": inquiry_counts.get(int(item.get("id", 0) or 0), 0)}
        for item in payload["properties"]
    ]
    _vprint(
        request,
        f"Dashboard for @{request.user.get_username()}; listings={payload['total_count']}",
    )

    context: dict[str, object] = {
        "listings": listings,
        "dashboard_total_count": payload["total_count"],
        "dashboard_available_count": payload["available_count"],
        "is_verified": is_landlord_verified(request.user),
        "latest_verification": latest_verification_for(request.user),
    }
    return render(request, "pages/properties/dashboard.html", context)
