from __future__ import annotations

from typing import Final, Literal
from urllib.parse import urlsplit

from django.contrib import messages
from django.contrib.auth.decorators import login_required
from django.http import HttpRequest, HttpResponse, JsonResponse
from django.shortcuts import redirect, render
from django.urls import reverse
from django.utils.http import url_has_allowed_host_and_scheme
from django.views.decorators.http import require_http_methods, require_POST

from accounts.models import member_role

from .models import build_saved_properties_payload, save_property, unsave_property

VERBOSE_FLAGS: Final[set[str]] = {"1", "true", "yes", "on"}
FeedbackLevel = Literal["success", "info", "warning", "error"]


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
        print(f"[saved][verbose] {message}", flush=True)


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


def _wants_json_response(request: HttpRequest) -> bool:
    requested_with = str(request.headers.get("X-Requested-With", "") or "").strip().lower()
    accept = str(request.headers.get("Accept", "") or "").strip().lower()
    response_format = str(
        request.POST.get("response_format") or request.GET.get("response_format") or ""
    ).strip().lower()
    return (
        requested_with == "xmlhttprequest"
        or "application/json" in accept
        or response_format == "json"
    )


def _build_action_response(
    request: HttpRequest,
    *,
    next_url: str,
    level: FeedbackLevel,
    message_text: str,
    status_code: int = 200,
    payload: dict[str, object] | None = None,
) -> HttpResponse:
    if _wants_json_response(request):
        response_payload: dict[str, object] = {
            "ok": level != "error",
            "level": level,
            "message": message_text,
            "next_url": next_url,
        }
        if payload:
            response_payload.update(payload)
        return JsonResponse(response_payload, status=status_code)

    if level == "success":
        messages.success(request, message_text)
    elif level == "warning":
        messages.warning(request, message_text)
    elif level == "error":
        messages.error(request, message_text)
    else:
        messages.info(request, message_text)
    return redirect(next_url)


@login_required(login_url="accounts:login")
@require_POST
def save_property_view(request: HttpRequest) -> HttpResponse:
    raw_property_id = str(request.POST.get("property_id", "") or "").strip()
    next_url = _safe_next_url(request, fallback=reverse("saved:list"))
    saved_row, outcome = save_property(member=request.user, property_id=raw_property_id)
    _vprint(
        request,
        f"Save outcome={outcome}; member=@{request.user.get_username()}; property={raw_property_id or 'n/a'}",
    )

    payload: dict[str, object] = {
        "action": "save",
        "outcome": outcome,
        "property_id": raw_property_id,
        "is_saved": saved_row is not None,
    }
    if outcome == "saved":
        return _build_action_response(
            request, next_url=next_url, level="success", message_text="Listing saved.", payload=payload
        )
    if outcome == "already-saved":
        return _build_action_response(
            request, next_url=next_url, level="info", message_text="Listing is already saved.", payload=payload
        )
    if outcome == "student-required":
        return _build_action_response(
            request,
            next_url=next_url,
            level="error",
            message_text="Only student accounts can save listings.",
            status_code=403,
            payload=payload,
        )
    return _build_action_response(
        request,
        next_url=next_url,
        level="error",
        message_text="Could not save that listing because it was not found.",
        status_code=404,
        payload=payload,
    )


@login_required(login_url="accounts:login")
@require_POST
def unsave_property_view(request: HttpRequest) -> HttpResponse:
    raw_property_id = str(request.POST.get("property_id", "") or "").strip()
    next_url = _safe_next_url(request, fallback=reverse("saved:list"))
    outcome = unsave_property(member=request.user, property_id=raw_property_id)
    _vprint(
        request,
        f"Unsave outcome={outcome}; member=@{request.user.get_username()}; property={raw_property_id or 'n/a'}",
    )

    payload: dict[str, object] = {
        "action": "unsave",
        "outcome": outcome,
        "property_id": raw_property_id,
        "is_saved": False,
    }
    if outcome == "unsaved":
        return _build_action_response(
            request, next_url=next_url, level="success", message_text="Listing removed from saved.", payload=payload
        )
    if outcome == "already-not-saved":
        return _build_action_response(
            request, next_url=next_url, level="info", message_text="Listing was not saved.", payload=payload
        )
    return _build_action_response(
        request,
        next_url=next_url,
        level="error",
        message_text="Could not update that listing because it was not found.",
        status_code=404,
        payload=payload,
    )


@login_required(login_url="accounts:login")
@require_http_methods(["GET"])
def saved_list_view(request: HttpRequest) -> HttpResponse:
    if member_role(request.user) != "student":
        messages.info(request, "Saved listings are available to student accounts.")
        return redirect(reverse("properties:list"))

    payload = build_saved_properties_payload(request.user)
    _vprint(
        request,
        f"Saved list mode={payload['mode']}; count={len(payload['properties'])}",
    )
    context: dict[str, object] = {
        "properties": payload["properties"],
        "saved_mode": payload["mode"],
        "saved_reason": payload["reason"],
        "saved_property_ids": {int(item.get("id", 0) or 0) for item in payload["properties"]},
    }
    return render(request, "pages/saved/list.html", context)
