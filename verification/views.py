from __future__ import annotations

from typing import Final

from django.contrib import messages
from django.contrib.auth.decorators import login_required
from django.http import HttpRequest, HttpResponse
from django.shortcuts import redirect
from django.urls import reverse
from django.views.decorators.http import require_POST

from .models import submit_verification_request

VERBOSE_FLAGS: Final[set[str]] = {"1", "true", "yes", "on"}
OUTCOME_MESSAGES: Final[dict[str, str]] = {
    "landlord-required": "Only landlord accounts can request verification.",
    "missing-file": "Attach both an ID document and a proof of ownership.",
    "empty-file": "One of the uploaded files is empty.",
    "invalid-file-type": "Upload PDF, JPG, PNG or WEBP files only.",
    "file-too-large": "One of the uploaded files is too large.",
    "invalid-image": "One of the uploaded images could not be read.",
    "invalid-document": "One of the uploaded PDFs could not be read.",
    "already-pending": "You already have a verification request awaiting review.",
}


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
        print(f"[verification][verbose] {message}", flush=True)


@login_required(login_url="accounts:login")
@require_POST
def verification_submit_view(request: HttpRequest) -> HttpResponse:
    verification_row, outcome = submit_verification_request(
        member=request.user,
        id_document=request.FILES.get("id_document"),
        property_proof=request.FILES.get("property_proof"),
    )
    _vprint(
        request,
        "Verification outcome={outcome}; member=@{member}; request_id={request_id}".format(
            outcome=outcome,
            member=request.user.get_username(),
            request_id=(verification_row.pk if verification_row is not None else "n/a"),
        ),
    )

    if outcome == "created":
        messages.success(request, "Verification request submitted. An admin will review it shortly.")
    else:
        messages.error(request, OUTCOME_MESSAGES.get(outcome, "Could not submit verification. Please try again."))
    return redirect(reverse("properties:dashboard"))
