from django.contrib import admin, messages
from django.db.models import QuerySet
from django.http import HttpRequest
from typing import TYPE_CHECKING

from .models import AccountProfile, set_member_role

if TYPE_CHECKING:
    AccountProfileAdminBase = admin.ModelAdmin[AccountProfile]
else:
    AccountProfileAdminBase = admin.ModelAdmin


@admin.register(AccountProfile)
class AccountProfileAdmin(AccountProfileAdminBase):
    list_display = ("user", "role", "full_name", "phone_number", "updated_at")
    list_filter = ("role",)
    search_fields = ("user__username", "user__email", "full_name", "phone_number")
    list_select_related = ("user",)
    readonly_fields = ("created_at", "updated_at")
    actions = ("mark_as_landlord", "mark_as_student")

    def _switch_role(self, request: HttpRequest, queryset: QuerySet[AccountProfile], role: str) -> None:
        switched_count = 0
        for profile in queryset.select_related("user"):
            if profile.role != role:
                set_member_role(profile.user, role)
                switched_count += 1
        self.message_user(request, f"Switched {switched_count} member(s) to {role}.", messages.SUCCESS)

    @admin.action(description="Switch selected members to landlord")
    def mark_as_landlord(self, request: HttpRequest, queryset: QuerySet[AccountProfile]) -> None:
        self._switch_role(request, queryset, AccountProfile.ROLE_LANDLORD)

    @admin.action(description="Switch selected members to student")
    def mark_as_student(self, request: HttpRequest, queryset: QuerySet[AccountProfile]) -> None:
        self._switch_role(request, queryset, AccountProfile.ROLE_STUDENT)
