from __future__ import annotations

from typing import Final, Literal
from urllib.parse import urlencode, urlsplit
from uuid import uuid4

from django.contrib import messages
from django.contrib.auth.decorators import login_required
from django.http import Http404, HttpRequest, HttpResponse, JsonResponse
from django.shortcuts import redirect, render
from django.urls import reverse
from django.utils.http import url_has_allowed_host_and_scheme
from django.views.decorators.http import require_http_methods, require_POST

from properties.models import Property

from .conversations import Conversation, MessageData, build_conversation_key, find_conversation
from .feed import SEND_OUTCOME_NOTICES, ConversationFeed
from .models import mark_conversation_read, message_max_length, start_property_inquiry
from .realtime import change_token_for_member, has_changed_since, reserve_send_token

VERBOSE_FLAGS: Final[set[str]] = {"1", "true", "yes", "on"}
FeedbackLevel = Literal["success", "info", "warning", "error"]

SEND_OUTCOME_STATUS: Final[dict[str, int]] = {
    "sent": 201,
    "busy": 409,
    "duplicate": 409,
    "no-active-conversation": 404,
    "receiver-not-found": 404,
    "property-not-found": 404,
    "error": 503,
}
INQUIRY_MESSAGES: Final[dict[str, tuple[FeedbackLevel, str, int]]] = {
    "sent": ("success", "Inquiry sent to the landlord.", 201),
    "student-required": ("error", "Only student accounts can send inquiries.", 403),
    "owner-blocked": ("info", "This is your own listing.", 400),
    "property-unavailable": ("warning", "This listing is no longer available for inquiries.", 409),
    "property-not-found": ("error", "That listing was not found.", 404),
    "receiver-not-found": ("error", "The landlord for this listing is no longer available.", 404),
    "empty-message": ("info", "Write a message before sending.", 400),
    "too-long": ("error", "That message is too long.", 400),
    "invalid-phone": ("error", "That phone number is too long.", 400),
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
        print(f"[messaging][verbose] {message}", flush=True)


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


def _inbox_url(conversation_key: str | None = None) -> str:
    base_url = reverse("messaging:inbox")
    if not conversation_key:
        return base_url
    return f"{base_url}?{urlencode({'c': conversation_key})}"


def _message_json(message: MessageData, *, viewer_id: int) -> dict[str, object]:
    return {
        "id": message["id"],
        "content": message["content"],
        "created_at": message["created_at"],
        "phone_number": message["phone_number"],
        "is_read": message["is_read"],
        "is_mine": int(message["sender_id"]) == int(viewer_id),
        "sender": message["sender"],
    }


def _conversation_json(
    conversation: Conversation,
    *,
    viewer_id: int,
    include_messages: bool = False,
) -> dict[str, object]:
    data: dict[str, object] = {
        "key": conversation["key"],
        "property": conversation["property"],
        "counterpart": conversation["counterpart"],
        "last_message_at": conversation["last_message_at"],
        "last_message_preview": conversation["last_message_preview"],
        "message_count": conversation["message_count"],
        "unread_count": conversation["unread_count"],
    }
    if include_messages:
        data["messages"] = [_message_json(item, viewer_id=viewer_id) for item in conversation["messages"]]
    return data


def _open_feed(request: HttpRequest, *, selected_key: object, property_id: int | None = None) -> ConversationFeed:
    """
    Load the viewer's feed and select a conversation.

    GET stays read-only: pages POST to `messaging:read` once the member has
    the thread in front of them.
    """

    feed = ConversationFeed(request.user, property_id=property_id)
    feed.refresh()
    feed.select(selected_key)
    return feed


@login_required(login_url="accounts:login")
@require_http_methods(["GET"])
def inbox_view(request: HttpRequest) -> HttpResponse:
    feed = _open_feed(request, selected_key=request.GET.get("c"))
    snapshot = feed.snapshot()
    _vprint(
        request,
        "Inbox rendered for @{member}; conversations={count}; active={active}; unread={unread}".format(
            member=request.user.get_username(),
            count=len(snapshot["conversations"]),
            active=snapshot["active_key"] or "n/a",
            unread=snapshot["unread_count"],
        ),
    )

    context: dict[str, object] = {
        "conversations": snapshot["conversations"],
        "active_conversation": snapshot["active_conversation"],
        "active_key": snapshot["active_key"] or "",
        "unread_count": snapshot["unread_count"],
        "message_max_length": message_max_length(),
        "change_token": change_token_for_member(feed.viewer_id),
        "send_token": uuid4().hex,
    }
    return render(request, "pages/messaging/inbox.html", context)


@login_required(login_url="accounts:login")
@require_http_methods(["GET"])
def overlay_view(request: HttpRequest) -> JsonResponse:
    feed = _open_feed(request, selected_key=request.GET.get("conversation"))
    snapshot = feed.snapshot()
    active_conversation = snapshot["active_conversation"]
    _vprint(
        request,
        f"Overlay feed for @{request.user.get_username()}; conversations={len(snapshot['conversations'])}",
    )
    return JsonResponse(
        {
            "ok": True,
            "conversations": [
                _conversation_json(item, viewer_id=feed.viewer_id) for item in snapshot["conversations"]
            ],
            "active_key": snapshot["active_key"],
            "active_conversation": (
                _conversation_json(active_conversation, viewer_id=feed.viewer_id, include_messages=True)
                if active_conversation is not None
                else None
            ),
            "unread_count": snapshot["unread_count"],
            "change_token": change_token_for_member(feed.viewer_id),
        }
    )


@login_required(login_url="accounts:login")
@require_POST
def send_view(request: HttpRequest) -> HttpResponse:
    conversation_key = str(request.POST.get("conversation", "") or "").strip()
    feed = ConversationFeed(request.user)
    feed.refresh()

    # Replies only go to an existing conversation; no fallback to the newest one.
    if find_conversation(feed.conversations, conversation_key) is None:
        outcome = "no-active-conversation"
    elif not reserve_send_token(feed.viewer_id, request.POST.get("send_token")):
        outcome = "duplicate"
    else:
        feed.select(conversation_key)
        outcome = feed.send(
            request.POST.get("content", ""),
            phone_number=request.POST.get("phone_number", ""),
        )

    _vprint(
        request,
        f"Send outcome={outcome}; member=@{request.user.get_username()}; conversation={conversation_key or 'n/a'}",
    )

    next_url = _safe_next_url(request, fallback=_inbox_url(conversation_key))
    status_code = SEND_OUTCOME_STATUS.get(outcome, 400)
    if outcome == "sent":
        active_conversation = feed.active_conversation()
        return _build_action_response(
            request,
            next_url=next_url,
            level="success",
            message_text="Message sent.",
            status_code=status_code,
            payload={
                "outcome": outcome,
                "conversation": (
                    _conversation_json(active_conversation, viewer_id=feed.viewer_id, include_messages=True)
                    if active_conversation is not None
                    else None
                ),
            },
        )

    if outcome == "no-active-conversation":
        message_text = "Pick a conversation before sending a message."
    elif outcome == "duplicate":
        message_text = "That message was already sent."
    else:
        message_text = feed.notice or SEND_OUTCOME_NOTICES.get(outcome, "Could not send message.")
    level: FeedbackLevel = "info" if outcome in {"empty-message", "duplicate"} else "error"
    return _build_action_response(
        request,
        next_url=next_url,
        level=level,
        message_text=message_text,
        status_code=status_code,
        payload={"outcome": outcome, "draft": feed.draft},
    )


@login_required(login_url="accounts:login")
@require_POST
def inquire_view(request: HttpRequest, property_id: int) -> HttpResponse:
    message_row, outcome, property_row = start_property_inquiry(
        sender=request.user,
        property_id=property_id,
        content=request.POST.get("content", ""),
        phone_number=request.POST.get("phone_number", ""),
    )
    _vprint(
        request,
        "Inquiry outcome={outcome}; member=@{member}; property={property_id}; message_id={message_id}".format(
            outcome=outcome,
            member=request.user.get_username(),
            property_id=property_id,
            message_id=(message_row.pk if message_row is not None else "n/a"),
        ),
    )

    level, message_text, status_code = INQUIRY_MESSAGES.get(
        outcome,
        ("error", "Could not send inquiry. Please try again.", 400),
    )
    if outcome == "sent" and message_row is not None:
        conversation_key = build_conversation_key(message_row.property_id, message_row.receiver_id)
        next_url = _inbox_url(conversation_key)
        payload: dict[str, object] = {"outcome": outcome, "conversation_key": conversation_key}
    else:
        fallback = property_row.get_absolute_url() if property_row is not None else reverse("properties:list")
        next_url = _safe_next_url(request, fallback=fallback)
        payload = {"outcome": outcome}

    return _build_action_response(
        request,
        next_url=next_url,
        level=level,
        message_text=message_text,
        status_code=status_code,
        payload=payload,
    )


@login_required(login_url="accounts:login")
@require_POST
def read_view(request: HttpRequest) -> HttpResponse:
    conversation_key = str(request.POST.get("conversation", "") or "").strip()
    updated_count, outcome = mark_conversation_read(request.user, conversation_key)
    _vprint(
        request,
        f"Mark-read outcome={outcome}; member=@{request.user.get_username()}; updated={updated_count}",
    )

    next_url = _safe_next_url(request, fallback=_inbox_url(conversation_key))
    if outcome != "marked":
        return _build_action_response(
            request,
            next_url=next_url,
            level="error",
            message_text="That conversation was not found.",
            status_code=400,
            payload={"outcome": outcome, "updated": 0},
        )
    return _build_action_response(
        request,
        next_url=next_url,
        level="info",
        message_text="Conversation marked as read.",
        payload={"outcome": outcome, "updated": updated_count},
    )


@login_required(login_url="accounts:login")
@require_http_methods(["GET"])
def changes_view(request: HttpRequest) -> JsonResponse:
    member_id = int(getattr(request.user, "pk", 0) or 0)
    since = str(request.GET.get("since", "") or "").strip()
    return JsonResponse(
        {
            "ok": True,
            "token": change_token_for_member(member_id),
            "changed": has_changed_since(member_id, since),
        }
    )


@login_required(login_url="accounts:login")
@require_http_methods(["GET"])
def property_inquiries_view(request: HttpRequest, property_id: int) -> HttpResponse:
    property_row = Property.objects.filter(pk=property_id).first()
    if property_row is None or int(property_row.landlord_id) != int(getattr(request.user, "pk", 0) or 0):
        raise Http404("Listing not found.")

    feed = _open_feed(request, selected_key=request.GET.get("c"), property_id=property_row.pk)
    snapshot = feed.snapshot()
    _vprint(
        request,
        f"Property inquiries for #{property_row.pk}; conversations={len(snapshot['conversations'])}",
    )

    context: dict[str, object] = {
        "property": property_row.to_property_data(),
        "conversations": snapshot["conversations"],
        "active_conversation": snapshot["active_conversation"],
        "active_key": snapshot["active_key"] or "",
        "unread_count": snapshot["unread_count"],
        "message_max_length": message_max_length(),
        "change_token": change_token_for_member(feed.viewer_id),
        "send_token": uuid4().hex,
    }
    return render(request, "pages/messaging/property_inquiries.html", context)
