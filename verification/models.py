from __future__ import annotations

import hashlib
import logging
from pathlib import Path
from typing import Any, Final, Literal, cast

from PIL import Image, UnidentifiedImageError
from django.conf import settings
from django.core.exceptions import ValidationError
from django.core.files.uploadedfile import UploadedFile
from django.db import IntegrityError, models, transaction
from django.db.models import Q
from django.utils import timezone

from accounts.models import member_role

logger = logging.getLogger(__name__)

VerificationSubmitOutcome = Literal[
    "member-required",
    "landlord-required",
    "missing-file",
    "empty-file",
    "invalid-file-type",
    "file-too-large",
    "invalid-image",
    "invalid-document",
    "already-pending",
    "created",
]
VerificationDecisionOutcome = Literal[
    "reviewer-required",
    "not-found",
    "not-pending",
    "reason-required",
    "approved",
    "rejected",
]

DEFAULT_ALLOWED_EXTENSIONS: Final[tuple[str, ...]] = (".pdf", ".jpg", ".jpeg", ".png", ".webp")
DEFAULT_MAX_MB: Final[int] = 10
IMAGE_EXTENSIONS: Final[set[str]] = {".jpg", ".jpeg", ".png", ".webp", ".gif"}
PDF_MAGIC: Final[bytes] = b"%PDF-"
REJECTION_REASON_MAX_LENGTH: Final[int] = 500


def _clean_text(value: object) -> str:
    return " ".join(str(value or "").strip().split())


def _allowed_extensions() -> set[str]:
    raw_value: object = getattr(settings, "CAMPUSNEST_VERIFICATION_ALLOWED_EXTENSIONS", DEFAULT_ALLOWED_EXTENSIONS)
    if isinstance(raw_value, str):
        candidates = raw_value.split(",")
    elif isinstance(raw_value, (list, tuple, set)):
        candidates = [str(item) for item in cast(list[object], list(raw_value))]
    else:
        candidates = list(DEFAULT_ALLOWED_EXTENSIONS)

    normalized = {item.strip().lower() for item in candidates if item.strip()}
    return normalized or set(DEFAULT_ALLOWED_EXTENSIONS)


def _max_upload_bytes() -> int:
    raw_value = getattr(settings, "CAMPUSNEST_VERIFICATION_MAX_MB", DEFAULT_MAX_MB)
    try:
        parsed = int(raw_value)
    except (TypeError, ValueError):
        parsed = DEFAULT_MAX_MB
    return max(1, parsed) * 1024 * 1024


def _upload_extension(uploaded_file: UploadedFile) -> str:
    return Path(str(getattr(uploaded_file, "name", "") or "")).suffix.lower()


def _image_is_readable(uploaded_file: UploadedFile) -> bool:
    try:
        uploaded_file.seek(0)
        with Image.open(uploaded_file) as image:
            image.verify()
        return True
    except (UnidentifiedImageError, OSError, ValueError, SyntaxError):
        return False
    finally:
        uploaded_file.seek(0)


def _pdf_is_readable(uploaded_file: UploadedFile) -> bool:
    try:
        uploaded_file.seek(0)
        return uploaded_file.read(len(PDF_MAGIC)) == PDF_MAGIC
    finally:
        uploaded_file.seek(0)


def validate_verification_upload(uploaded_file: UploadedFile | None) -> VerificationSubmitOutcome | None:
    """
    Return the failure outcome for an uploaded document, or `None` when it is acceptable.
    """

    if uploaded_file is None:
        return "missing-file"

    size_bytes = int(getattr(uploaded_file, "size", 0) or 0)
    if size_bytes <= 0:
        return "empty-file"

    extension = _upload_extension(uploaded_file)
    if extension not in _allowed_extensions():
        return "invalid-file-type"

    if size_bytes > _max_upload_bytes():
        return "file-too-large"

    if extension in IMAGE_EXTENSIONS and not _image_is_readable(uploaded_file):
        return "invalid-image"
    if extension == ".pdf" and not _pdf_is_readable(uploaded_file):
        return "invalid-document"
    return None


def verification_upload_to(instance: VerificationRequest, filename: str) -> str:
    safe_name = Path(filename or "document.bin").name
    extension = Path(safe_name).suffix.lower()
    now = timezone.localtime(timezone.now())
    entropy = hashlib.sha1(f"{now.timestamp()}:{safe_name}".encode("utf-8")).hexdigest()[:20]
    landlord_id = int(getattr(instance, "landlord_id", 0) or 0)
    return f"verification/{landlord_id}/{now:%Y/%m}/{entropy}{extension}"


class VerificationRequest(models.Model):
    """
    Landlord identity and ownership proof awaiting an admin decision.

    Files go through the default storage backend, which is private S3/MinIO
    in deployed configurations.
    """

    STATUS_PENDING: Final[str] = "pending"
    STATUS_APPROVED: Final[str] = "approved"
    STATUS_REJECTED: Final[str] = "rejected"
    STATUS_CHOICES: Final[tuple[tuple[str, str], ...]] = (
        (STATUS_PENDING, "Pending"),
        (STATUS_APPROVED, "Approved"),
        (STATUS_REJECTED, "Rejected"),
    )

    landlord = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="verification_requests",
    )
    id_document = models.FileField(upload_to=verification_upload_to)
    property_proof = models.FileField(upload_to=verification_upload_to)
    status = models.CharField(max_length=12, choices=STATUS_CHOICES, default=STATUS_PENDING, db_index=True)
    rejection_reason = models.CharField(max_length=REJECTION_REASON_MAX_LENGTH, blank=True)
    reviewed_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        related_name="reviewed_verification_requests",
        blank=True,
        null=True,
    )
    reviewed_at = models.DateTimeField(blank=True, null=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ("-created_at", "-id")
        constraints = [
            models.UniqueConstraint(
                fields=("landlord",),
                condition=Q(status="pending"),
                name="verification_one_pending_per_landlord",
            ),
        ]
        indexes = [
            models.Index(fields=("status", "created_at"), name="verification_status_idx"),
        ]

    def __str__(self) -> str:
        landlord_username = str(getattr(self.landlord, "username", "") or "").strip()
        return f"Verification #{self.pk or 'new'} for @{landlord_username} ({self.status})"

    def clean(self) -> None:
        super().clean()
        self.rejection_reason = _clean_text(self.rejection_reason)
        if self.status == self.STATUS_REJECTED and not self.rejection_reason:
            raise ValidationError({"rejection_reason": "A rejection reason is required."})


def is_landlord_verified(user: object) -> bool:
    user_id = int(getattr(user, "pk", 0) or 0)
    if user_id <= 0:
        return False
    return VerificationRequest.objects.filter(
        landlord_id=user_id,
        status=VerificationRequest.STATUS_APPROVED,
    ).exists()


def latest_verification_for(user: object) -> VerificationRequest | None:
    user_id = int(getattr(user, "pk", 0) or 0)
    if user_id <= 0:
        return None
    return VerificationRequest.objects.filter(landlord_id=user_id).order_by("-created_at", "-pk").first()


def submit_verification_request(
    *,
    member: object,
    id_document: UploadedFile | None,
    property_proof: UploadedFile | None,
) -> tuple[VerificationRequest | None, VerificationSubmitOutcome]:
    if not bool(getattr(member, "is_authenticated", False)):
        return None, "member-required"

    if member_role(member) != "landlord":
        return None, "landlord-required"

    for uploaded_file in (id_document, property_proof):
        failure = validate_verification_upload(uploaded_file)
        if failure is not None:
            return None, failure

    member_id = int(getattr(member, "pk", 0) or 0)
    if VerificationRequest.objects.filter(
        landlord_id=member_id,
        status=VerificationRequest.STATUS_PENDING,
    ).exists():
        return None, "already-pending"

    # The partial unique constraint settles two submissions racing past the check above.
    try:
        with transaction.atomic():
            verification_row = VerificationRequest.objects.create(
                landlord=cast(Any, member),
                id_document=id_document,
                property_proof=property_proof,
            )
    except IntegrityError:
        return None, "already-pending"
    logger.info("Verification request %s submitted by landlord %s", verification_row.pk, member_id)
    return verification_row, "created"


def _reviewer_allowed(reviewer: object) -> bool:
    if not bool(getattr(reviewer, "is_authenticated", False)):
        return False
    return bool(getattr(reviewer, "is_staff", False)) or member_role(reviewer) == "admin"


def _decide(
    *,
    reviewer: object,
    request_id: object,
    status: str,
    rejection_reason: str = "",
) -> tuple[VerificationRequest | None, VerificationDecisionOutcome]:
    if not _reviewer_allowed(reviewer):
        return None, "reviewer-required"

    raw_key = str(request_id or "").strip()
    if not raw_key.isdigit():
        return None, "not-found"

    with transaction.atomic():
        verification_row = VerificationRequest.objects.select_for_update().filter(pk=int(raw_key)).first()
        if verification_row is None:
            return None, "not-found"
        if verification_row.status != VerificationRequest.STATUS_PENDING:
            return verification_row, "not-pending"

        verification_row.status = status
        verification_row.rejection_reason = rejection_reason
        verification_row.reviewed_by = cast(Any, reviewer)
        verification_row.reviewed_at = timezone.now()
        verification_row.save(
            update_fields=["status", "rejection_reason", "reviewed_by", "reviewed_at", "updated_at"]
        )

    logger.info(
        "Verification request %s marked %s by reviewer %s",
        verification_row.pk,
        status,
        int(getattr(reviewer, "pk", 0) or 0),
    )
    if status == VerificationRequest.STATUS_APPROVED:
        return verification_row, "approved"
    return verification_row, "rejected"


def approve_verification_request(
    *,
    reviewer: object,
    request_id: object,
) -> tuple[VerificationRequest | None, VerificationDecisionOutcome]:
    return _decide(reviewer=reviewer, request_id=request_id, status=VerificationRequest.STATUS_APPROVED)


def reject_verification_request(
    *,
    reviewer: object,
    request_id: object,
    reason: object,
) -> tuple[VerificationRequest | None, VerificationDecisionOutcome]:
    cleaned_reason = _clean_text(reason)[:REJECTION_REASON_MAX_LENGTH]
    if not cleaned_reason:
        if not _reviewer_allowed(reviewer):
            return None, "reviewer-required"
        return None, "reason-required"
    return _decide(
        reviewer=reviewer,
        request_id=request_id,
        status=VerificationRequest.STATUS_REJECTED,
        rejection_reason=cleaned_reason,
    )
