from __future__ import annotations

from django.http import HttpRequest

from .models import member_role as resolve_member_role


def member_role(request: HttpRequest) -> dict[str, object]:
    """
    Expose the signed-in member's marketplace role to every template.
    """

    role = resolve_member_role(request.user)
    return {
        "member_role": role or "",
        "member_is_landlord": role == "landlord",
        "member_is_student": role == "student",
    }
