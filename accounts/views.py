from __future__ import annotations

from typing import Any, Final, Protocol, cast

from django.contrib import messages
from django.contrib.auth import login, logout
from django.http import HttpRequest, HttpResponse
from django.shortcuts import redirect, render
from django.urls import reverse
from django.utils.http import url_has_allowed_host_and_scheme
from django.views.decorators.http import require_http_methods, require_POST

from .forms import LoginForm, SignUpForm
from .models import member_role

VERBOSE_FLAGS: Final[set[str]] = {"1", "true", "yes", "on"}


class MemberUserLike(Protocol):
    def get_username(self) -> str: ...


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
        print(f"[accounts][verbose] {message}", flush=True)


def _safe_next_url(request: HttpRequest, fallback: str) -> str:
    """
    Accept user-provided next URL only if it targets the same host.
    """

    requested_next = (request.POST.get("next") or request.GET.get("next") or "").strip()
    if not requested_next:
        return fallback

    allowed_hosts = {request.get_host()}
    if url_has_allowed_host_and_scheme(
        url=requested_next,
        allowed_hosts=allowed_hosts,
        require_https=request.is_secure(),
    ):
        return requested_next
    return fallback


def _landing_url_for(user: object) -> str:
    if member_role(user) == "landlord":
        return reverse("properties:dashboard")
    return reverse("properties:list")


@require_http_methods(["GET", "POST"])
def signup_view(request: HttpRequest) -> HttpResponse:
    if request.user.is_authenticated:
        messages.info(request, "You are already signed in.")
        return redirect(_landing_url_for(request.user))

    if request.method == "POST":
        form = SignUpForm(request.POST)
        if form.is_valid():
            user = form.save()
            login(request, cast(Any, user))
            member_user = cast(MemberUserLike, user)
            _vprint(
                request,
                f"Signup succeeded for @{member_user.get_username()} role={member_role(user)}",
            )
            messages.success(request, "Welcome to CampusNest. Your account is ready.")
            return redirect(_safe_next_url(request, _landing_url_for(user)))

        _vprint(request, f"Signup failed with {len(form.errors)} validation error block(s)")
        messages.error(request, "Could not sign up. Check details and try again.")
        status = 400
    else:
        form = SignUpForm()
        status = 200

    context: dict[str, object] = {
        "form": form,
        "next_url": _safe_next_url(request, ""),
    }
    return render(request, "pages/accounts/signup.html", context, status=status)


@require_http_methods(["GET", "POST"])
def login_view(request: HttpRequest) -> HttpResponse:
    if request.user.is_authenticated:
        messages.info(request, "You are already logged in.")
        return redirect(_landing_url_for(request.user))

    if request.method == "POST":
        form = LoginForm(request=request, data=request.POST)
        if form.is_valid():
            user = form.get_user()
            login(request, user)
            _vprint(request, f"Login succeeded for @{cast(MemberUserLike, user).get_username()}")
            messages.success(request, "Welcome back.")
            return redirect(_safe_next_url(request, _landing_url_for(user)))

        _vprint(request, "Login failed due to invalid credentials or validation error")
        messages.error(request, "Invalid credentials. Please try again.")
        status = 400
    else:
        form = LoginForm(request=request)
        status = 200

    context: dict[str, object] = {
        "form": form,
        "next_url": _safe_next_url(request, ""),
    }
    return render(request, "pages/accounts/login.html", context, status=status)


@require_POST
def logout_view(request: HttpRequest) -> HttpResponse:
    next_url = _safe_next_url(request, reverse("home"))
    if request.user.is_authenticated:
        username = cast(MemberUserLike, request.user).get_username()
        logout(request)
        _vprint(request, f"Logged out @{username}")
        messages.success(request, "You have been logged out.")
    else:
        _vprint(request, "Logout POST received from anonymous user")
        messages.info(request, "You are already logged out.")
    return redirect(next_url)
