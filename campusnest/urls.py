from __future__ import annotations

from django.conf import settings
from django.contrib import admin
from django.http import HttpRequest, HttpResponse, JsonResponse
from django.shortcuts import render
from django.urls import URLPattern, URLResolver, include, path

from properties.models import normalize_search_filters, search_properties

HOME_LISTING_LIMIT = 6


def health(_request: HttpRequest) -> JsonResponse:
    return JsonResponse({"status": "ok", "service": "campusnest"})


def home(request: HttpRequest) -> HttpResponse:
    payload = search_properties(normalize_search_filters({}), limit=HOME_LISTING_LIMIT)
    return render(
        request,
        "pages/home.html",
        {
            "properties": payload["properties"],
            "available_count": payload["total_count"],
            "currency_symbol": settings.CAMPUSNEST_CURRENCY_SYMBOL,
        },
    )


urlpatterns: list[URLPattern | URLResolver] = [
    path("", home, name="home"),
    path("health/", health, name="health"),
    path("accounts/", include("accounts.urls")),
    path("properties/", include("properties.urls")),
    path("messages/", include("messaging.urls")),
    path("saved/", include("saved.urls")),
    path("reviews/", include("reviews.urls")),
    path("verification/", include("verification.urls")),
    path("admin/", admin.site.urls),
]
