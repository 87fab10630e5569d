from __future__ import annotations

from typing import Final
from urllib.parse import urlsplit

from django.contrib import messages
from django.contrib.auth.decorators import login_required
from django.http import HttpRequest, HttpResponse
from django.shortcuts import redirect
from django.urls import reverse
from django.utils.http import url_has_allowed_host_and_scheme
from django.views.decorators.http import require_POST

from .models import PropertyReview, submit_review

VERBOSE_FLAGS: Final[set[str]] = {"1", "true", "yes", "on"}


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
        print(f"[reviews][verbose] {message}", flush=True)


def _safe_next_url(request: HttpRequest, fallback: str) -> str:
    """
    Resolve post-action redirect target while preventing open redirects.
    """

    allowed_hosts = {request.get_host()}
    require_https = request.is_secure()

    requested_next = str(request.POST.get("next") or request.GET.get("next") or "").strip()
    if requested_next and url_has_allowed_host_and_scheme(
        requested_next,
        allowed_hosts=allowed_hosts,
        require_https=require_https,
    ):
        return requested_next

    referer = str(request.headers.get("Referer", "") or "").strip()
    if referer and url_has_allowed_host_and_scheme(
        referer,
        allowed_hosts=allowed_hosts,
        require_https=require_https,
    ):
        split = urlsplit(referer)
        query = f"?{split.query}" if split.query else ""
        fragment = f"#{split.fragment}" if split.fragment else ""
        return f"{split.path or '/'}{query}{fragment}"

    return fallback


@login_required(login_url="accounts:login")
@require_POST
def review_create_view(request: HttpRequest) -> HttpResponse:
    review_row, outcome, property_row = submit_review(
        member=request.user,
        property_id=request.POST.get("property_id"),
        rating=request.POST.get("rating"),
        comment=request.POST.get("comment", ""),
    )

    fallback_next = reverse("properties:list")
    if property_row is not None:
        fallback_next = f"{property_row.get_absolute_url()}#reviews"
    next_url = _safe_next_url(request, fallback=fallback_next)

    if outcome == "created":
        messages.success(request, "Review posted.")
    elif outcome == "updated":
        messages.success(request, "Review updated.")
    elif outcome == "property-not-found":
        messages.error(request, "Could not save review because that listing was not found.")
    elif outcome == "owner-blocked":
        messages.error(request, "You cannot review your own listing.")
    elif outcome == "student-required":
        messages.error(request, "Only student accounts can review listings.")
    elif outcome == "invalid-rating":
        messages.error(
            request,
            f"Rating must be between {PropertyReview.RATING_MIN} and {PropertyReview.RATING_MAX}.",
        )
    elif outcome == "too-long":
        messages.error(request, f"Review is too long. Max length is {PropertyReview.COMMENT_MAX_LENGTH} characters.")
    else:
        messages.error(request, "Could not save review. Please try again.")

    _vprint(
        request,
        (
            "Review outcome={outcome}; member=@{member}; property={property_id}; review_id={review_id}".format(
                outcome=outcome,
                member=request.user.get_username(),
                property_id=(property_row.pk if property_row is not None else "n/a"),
                review_id=(review_row.pk if review_row is not None else "n/a"),
            )
        ),
    )
    return redirect(next_url)
