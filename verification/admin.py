from typing import TYPE_CHECKING

from django.contrib import admin, messages
from django.db.models import QuerySet
from django.http import HttpRequest

from .models import VerificationRequest, approve_verification_request, reject_verification_request

if TYPE_CHECKING:
    _BaseVerificationAdmin = admin.ModelAdmin[VerificationRequest]
else:
    _BaseVerificationAdmin = admin.ModelAdmin


@admin.register(VerificationRequest)
class VerificationRequestAdmin(_BaseVerificationAdmin):
    list_display = ("id", "landlord", "status", "reviewed_by", "reviewed_at", "created_at")
    list_filter = ("status", "created_at")
    search_fields = ("landlord__username", "landlord__email", "rejection_reason")
    list_select_related = ("landlord", "reviewed_by")
    readonly_fields = ("status", "reviewed_by", "reviewed_at", "created_at", "updated_at")
    ordering = ("-created_at", "-id")
    actions = ("approve_selected", "reject_selected")

    @admin.action(description="Approve selected pending requests")
    def approve_selected(self, request: HttpRequest, queryset: QuerySet[VerificationRequest]) -> None:
        approved_count = 0
        for verification_row in queryset:
            _row, outcome = approve_verification_request(reviewer=request.user, request_id=verification_row.pk)
            if outcome == "approved":
                approved_count += 1
        self.message_user(request, f"Approved {approved_count} request(s).", messages.SUCCESS)

    @admin.action(description="Reject selected pending requests (uses each row's rejection reason)")
    def reject_selected(self, request: HttpRequest, queryset: QuerySet[VerificationRequest]) -> None:
        rejected_count = 0
        missing_reason_count = 0
        for verification_row in queryset:
            _row, outcome = reject_verification_request(
                reviewer=request.user,
                request_id=verification_row.pk,
                reason=verification_row.rejection_reason,
            )
            if outcome == "rejected":
                rejected_count += 1
            elif outcome == "reason-required":
                missing_reason_count += 1

        self.message_user(request, f"Rejected {rejected_count} request(s).", messages.SUCCESS)
        if missing_reason_count:
            self.message_user(
                request,
                f"Skipped {missing_reason_count} request(s) without a rejection reason.",
                messages.WARNING,
            )
