from __future__ import annotations

from typing import Any, Final, Literal, TypedDict, cast

from django.conf import settings
from django.contrib.auth import get_user_model
from django.db import models
from django.db.models.signals import post_save
from django.dispatch import receiver

MemberRole = Literal["student", "landlord", "admin"]


class ParticipantSummary(TypedDict):
    id: int
    username: str
    display_name: str
    email: str
    profile_image_url: str
    role: str


class AccountProfile(models.Model):
    """
    Marketplace profile attached to the built-in Django user.

    Authentication stays on django.contrib.auth.User; the role decides which
    side of the marketplace (student or landlord) a member acts on.
    """

    ROLE_STUDENT: Final[str] = "student"
    ROLE_LANDLORD: Final[str] = "landlord"
    ROLE_ADMIN: Final[str] = "admin"
    ROLE_CHOICES: Final[tuple[tuple[str, str], ...]] = (
        (ROLE_STUDENT, "Student"),
        (ROLE_LANDLORD, "Landlord"),
        (ROLE_ADMIN, "Admin"),
    )

    user = models.OneToOneField(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="account_profile",
    )
    role = models.CharField(max_length=12, choices=ROLE_CHOICES, default=ROLE_STUDENT, db_index=True)
    full_name = models.CharField(max_length=120, blank=True)
    phone_number = models.CharField(max_length=32, blank=True)
    profile_image_url = models.URLField(blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ("user__username",)

    def __str__(self) -> str:
        return f"@{self.user.get_username()} ({self.role})"

    @property
    def effective_display_name(self) -> str:
        if self.full_name:
            return self.full_name

        full_name = self.user.get_full_name().strip()
        if full_name:
            return full_name

        # Mirrors the inbox fallback: the local part of the email, then the username.
        email = str(self.user.email or "").strip()
        if email and "@" in email:
            return email.split("@", 1)[0]
        return self.user.get_username()


def ensure_profile(user: Any) -> AccountProfile:
    profile, _ = AccountProfile.objects.get_or_create(user=user)
    return profile


def set_member_role(user: Any, role: object) -> AccountProfile | None:
    normalized_role = normalize_member_role(role)
    if normalized_role is None:
        return None

    profile = ensure_profile(user)
    if profile.role != normalized_role:
        profile.role = normalized_role
        profile.save(update_fields=["role", "updated_at"])
    # Refresh the reverse accessor so callers holding `user` see the new role.
    user.account_profile = profile
    return profile


def normalize_member_role(raw_role: object) -> MemberRole | None:
    normalized = str(raw_role or "").strip().lower()
    if normalized in {AccountProfile.ROLE_STUDENT, AccountProfile.ROLE_LANDLORD, AccountProfile.ROLE_ADMIN}:
        return cast(MemberRole, normalized)
    return None


def member_role(user: object) -> MemberRole | None:
    if not bool(getattr(user, "is_authenticated", False)):
        return None

    if bool(getattr(user, "is_superuser", False)):
        return "admin"

    try:
        profile = cast(AccountProfile, getattr(user, "account_profile"))
    except AccountProfile.DoesNotExist:
        return "student"
    except AttributeError:
        return None
    return normalize_member_role(profile.role) or "student"


def is_landlord(user: object) -> bool:
    return member_role(user) == "landlord"


def is_student(user: object) -> bool:
    return member_role(user) == "student"


def build_participant_summary(user: object | None) -> ParticipantSummary | None:
    """
    Denormalized participant projection attached to messages at read time.

    Deactivated accounts resolve to `None`, which keeps their messages out of
    conversation grouping.
    """

    if user is None:
        return None

    user_id = int(getattr(user, "pk", 0) or 0)
    if user_id <= 0 or not bool(getattr(user, "is_active", True)):
        return None

    username = str(getattr(user, "username", "") or "").strip()
    try:
        profile: AccountProfile | None = cast(AccountProfile, getattr(user, "account_profile"))
    except (AccountProfile.DoesNotExist, AttributeError):
        profile = None

    if profile is not None:
        display_name = profile.effective_display_name
        profile_image_url = str(profile.profile_image_url or "").strip()
        role = normalize_member_role(profile.role) or "student"
    else:
        display_name = username or "Unknown User"
        profile_image_url = ""
        role = "student"

    return {
        "id": user_id,
        "username": username,
        "display_name": display_name or "Unknown User",
        "email": str(getattr(user, "email", "") or "").strip(),
        "profile_image_url": profile_image_url,
        "role": role,
    }


UserModel = get_user_model()


@receiver(post_save, sender=UserModel)
def create_profile_for_new_user(sender, instance, created, **kwargs) -> None:  # type: ignore[no-untyped-def]
    # Every signup path (form, admin, seed command) gets a profile row.
    if created:
        ensure_profile(instance)
