from __future__ import annotations

from dataclasses import dataclass

from django.http import HttpRequest
from django.urls import reverse

from .models import unread_count_for_member
from .realtime import change_token_for_member

OVERLAY_OPEN_VALUE = "open"


@dataclass(frozen=True)
class MessagingOverlayState:
    """
    Single source for the header toggle and the floating overlay.

    Both read this object; opening the overlay from anywhere is a link that
    sets `?messages=open` (optionally with `&conversation=<key>`).
    """

    is_enabled: bool
    is_open: bool
    active_key: str
    unread_count: int
    feed_url: str
    poll_url: str
    change_token: str


def build_overlay_state(request: HttpRequest) -> MessagingOverlayState:
    user = request.user
    if not bool(getattr(user, "is_authenticated", False)):
        return MessagingOverlayState(
            is_enabled=False,
            is_open=False,
            active_key="",
            unread_count=0,
            feed_url="",
            poll_url="",
            change_token="",
        )

    return MessagingOverlayState(
        is_enabled=True,
        is_open=str(request.GET.get("messages", "") or "").strip().lower() == OVERLAY_OPEN_VALUE,
        active_key=str(request.GET.get("conversation", "") or "").strip(),
        unread_count=unread_count_for_member(user),
        feed_url=reverse("messaging:overlay"),
        poll_url=reverse("messaging:changes"),
        change_token=change_token_for_member(int(getattr(user, "pk", 0) or 0)),
    )


def messaging_overlay(request: HttpRequest) -> dict[str, object]:
    return {"messaging_overlay": build_overlay_state(request)}
