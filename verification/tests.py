from __future__ import annotations

import shutil
import tempfile
from io import BytesIO
from pathlib import Path
from typing import Any
from unittest.mock import patch

from PIL import Image
from django.contrib.auth import get_user_model
from django.core.exceptions import ValidationError
from django.core.files.uploadedfile import SimpleUploadedFile
from django.db import IntegrityError, transaction
from django.test import TestCase, override_settings
from django.urls import reverse

from accounts.models import set_member_role

from .models import (
    VerificationRequest,
    approve_verification_request,
    is_landlord_verified,
    latest_verification_for,
    reject_verification_request,
    submit_verification_request,
    validate_verification_upload,
)

UserModel = get_user_model()


def _build_sample_png_bytes() -> bytes:
    buffer = BytesIO()
    Image.new("RGB", (2, 2), color=(40, 90, 160)).save(buffer, format="PNG")
    return buffer.getvalue()


SAMPLE_PNG_BYTES = _build_sample_png_bytes()
SAMPLE_PDF_BYTES = b"%PDF-1.4\n1 0 obj\n<<>>\nendobj\ntrailer\n<<>>\n%%EOF\n"


class VerificationTestMixin:
    password = "VerificationPass!123456"

    def _use_temp_media_root(self) -> None:
        media_root = Path(tempfile.mkdtemp(prefix="campusnest-verification-tests-"))
        override = override_settings(
            MEDIA_ROOT=media_root,
            STORAGES={
                "default": {"BACKEND": "django.core.files.storage.FileSystemStorage"},
                "staticfiles": {"BACKEND": "django.contrib.staticfiles.storage.StaticFilesStorage"},
            },
        )
        override.enable()
        self.addCleanup(override.disable)  # type: ignore[attr-defined]
        self.addCleanup(lambda: shutil.rmtree(media_root, ignore_errors=True))  # type: ignore[attr-defined]

    def _member(self, username: str, role: str = "landlord") -> Any:
        user = UserModel.objects.create_user(
            username=username,
            email=f"{username}@example.com",
            password=self.password,
        )
        set_member_role(user, role)
        return user

    def _image_file(self, name: str = "id.png") -> SimpleUploadedFile:
        return SimpleUploadedFile(name=name, content=SAMPLE_PNG_BYTES, content_type="image/png")

    def _pdf_file(self, name: str = "title.pdf") -> SimpleUploadedFile:
        return SimpleUploadedFile(name=name, content=SAMPLE_PDF_BYTES, content_type="application/pdf")


class VerificationUploadValidationTests(VerificationTestMixin, TestCase):
    def test_accepts_readable_image_and_pdf(self) -> None:
        self.assertIsNone(validate_verification_upload(self._image_file()))
        self.assertIsNone(validate_verification_upload(self._pdf_file()))

    def test_rejects_missing_empty_and_wrong_type(self) -> None:
        self.assertEqual(validate_verification_upload(None), "missing-file")
        self.assertEqual(
            validate_verification_upload(SimpleUploadedFile("empty.png", b"", content_type="image/png")),
            "empty-file",
        )
        self.assertEqual(
            validate_verification_upload(SimpleUploadedFile("notes.txt", b"hello", content_type="text/plain")),
            "invalid-file-type",
        )

    def test_rejects_unreadable_content(self) -> None:
        self.assertEqual(
            validate_verification_upload(SimpleUploadedFile("fake.png", b"not an image", content_type="image/png")),
            "invalid-image",
        )
        self.assertEqual(
            validate_verification_upload(SimpleUploadedFile("fake.pdf", b"plain text", content_type="application/pdf")),
            "invalid-document",
        )

    @override_settings(CAMPUSNEST_VERIFICATION_MAX_MB=1)
    def test_rejects_oversized_upload(self) -> None:
        oversized = SimpleUploadedFile(
            "big.pdf",
            SAMPLE_PDF_BYTES + b"0" * (1024 * 1024),
            content_type="application/pdf",
        )
        self.assertEqual(validate_verification_upload(oversized), "file-too-large")


class VerificationServiceTests(VerificationTestMixin, TestCase):
    def setUp(self) -> None:
        self._use_temp_media_root()
        self.landlord = self._member("landlord-verify")
        self.student = self._member("student-verify", "student")
        self.reviewer = UserModel.objects.create_superuser(
            username="reviewer-verify",
            email="reviewer-verify@example.com",
            password=self.password,
        )

    def _submit(self) -> VerificationRequest:
        verification_row, outcome = submit_verification_request(
            member=self.landlord,
            id_document=self._image_file(),
            property_proof=self._pdf_file(),
        )
        self.assertEqual(outcome, "created")
        assert verification_row is not None
        return verification_row

    def test_submit_stores_files_under_landlord_prefix(self) -> None:
        verification_row = self._submit()

        self.assertEqual(verification_row.status, VerificationRequest.STATUS_PENDING)
        self.assertTrue(verification_row.id_document.name.startswith(f"verification/{self.landlord.pk}/"))
        self.assertTrue(verification_row.property_proof.name.endswith(".pdf"))
        self.assertEqual(latest_verification_for(self.landlord), verification_row)
        self.assertFalse(is_landlord_verified(self.landlord))

    def test_submit_rejections(self) -> None:
        _, student_outcome = submit_verification_request(
            member=self.student,
            id_document=self._image_file(),
            property_proof=self._pdf_file(),
        )
        self.assertEqual(student_outcome, "landlord-required")

        _, missing_outcome = submit_verification_request(
            member=self.landlord,
            id_document=self._image_file(),
            property_proof=None,
        )
        self.assertEqual(missing_outcome, "missing-file")
        self.assertFalse(VerificationRequest.objects.exists())

    def test_only_one_pending_request_per_landlord(self) -> None:
        self._submit()

        _, outcome = submit_verification_request(
            member=self.landlord,
            id_document=self._image_file(),
            property_proof=self._pdf_file(),
        )
        self.assertEqual(outcome, "already-pending")

        with self.assertRaises(IntegrityError):
            with transaction.atomic():
                VerificationRequest.objects.create(
                    landlord=self.landlord,
                    id_document="verification/manual-id.png",
                    property_proof="verification/manual-proof.pdf",
                )

    def test_racing_submission_reports_already_pending(self) -> None:
        first_row = self._submit()

        # The second submission slips past the pending check, as a concurrent one would.
        with patch("django.db.models.query.QuerySet.exists", return_value=False):
            verification_row, outcome = submit_verification_request(
                member=self.landlord,
                id_document=self._image_file(),
                property_proof=self._pdf_file(),
            )

        self.assertIsNone(verification_row)
        self.assertEqual(outcome, "already-pending")
        self.assertEqual(list(VerificationRequest.objects.filter(landlord=self.landlord)), [first_row])

    def test_approve_marks_landlord_verified(self) -> None:
        verification_row = self._submit()

        with self.assertLogs("verification.models", level="INFO"):
            approved_row, outcome = approve_verification_request(
                reviewer=self.reviewer,
                request_id=verification_row.pk,
            )

        self.assertEqual(outcome, "approved")
        assert approved_row is not None
        self.assertEqual(approved_row.reviewed_by, self.reviewer)
        self.assertIsNotNone(approved_row.reviewed_at)
        self.assertTrue(is_landlord_verified(self.landlord))

        _, repeat_outcome = approve_verification_request(reviewer=self.reviewer, request_id=verification_row.pk)
        self.assertEqual(repeat_outcome, "not-pending")

    def test_reject_requires_reason_and_reviewer(self) -> None:
        verification_row = self._submit()

        _, no_reason_outcome = reject_verification_request(
            reviewer=self.reviewer,
            request_id=verification_row.pk,
            reason="   ",
        )
        self.assertEqual(no_reason_outcome, "reason-required")

        _, landlord_outcome = reject_verification_request(
            reviewer=self.landlord,
            request_id=verification_row.pk,
            reason="Blurry photo",
        )
        self.assertEqual(landlord_outcome, "reviewer-required")

        rejected_row, outcome = reject_verification_request(
            reviewer=self.reviewer,
            request_id=verification_row.pk,
            reason="  Blurry   photo ",
        )
        self.assertEqual(outcome, "rejected")
        assert rejected_row is not None
        self.assertEqual(rejected_row.rejection_reason, "Blurry photo")
        self.assertFalse(is_landlord_verified(self.landlord))

        # A rejected request frees the landlord to resubmit.
        self._submit()

    def test_unknown_request_is_not_found(self) -> None:
        _, outcome = approve_verification_request(reviewer=self.reviewer, request_id="999999")
        self.assertEqual(outcome, "not-found")

    def test_model_clean_requires_reason_for_rejected_rows(self) -> None:
        verification_row = self._submit()
        verification_row.status = VerificationRequest.STATUS_REJECTED
        verification_row.rejection_reason = ""
        with self.assertRaises(ValidationError):
            verification_row.clean()


class VerificationViewsTests(VerificationTestMixin, TestCase):
    def setUp(self) -> None:
        self._use_temp_media_root()
        self.landlord = self._member("landlord-verify-views")
        self.student = self._member("student-verify-views", "student")
        self.reviewer = UserModel.objects.create_superuser(
            username="reviewer-verify-views",
            email="reviewer-verify-views@example.com",
            password=self.password,
        )

    def test_submit_requires_login(self) -> None:
        response = self.client.post(reverse("verification:submit"))
        self.assertEqual(response.status_code, 302)
        self.assertIn(reverse("accounts:login"), response.url)

    def test_submit_creates_request_and_redirects_to_dashboard(self) -> None:
        self.client.login(username="landlord-verify-views", password=self.password)
        response = self.client.post(
            reverse("verification:submit"),
            {"id_document": self._image_file(), "property_proof": self._pdf_file()},
        )

        self.assertRedirects(response, reverse("properties:dashboard"), fetch_redirect_response=False)
        self.assertEqual(
            VerificationRequest.objects.filter(landlord=self.landlord, status=VerificationRequest.STATUS_PENDING).count(),
            1,
        )

        dashboard = self.client.get(reverse("properties:dashboard"))
        self.assertContains(dashboard, "Your verification request is being reviewed.")

    def test_student_submit_is_rejected(self) -> None:
        self.client.login(username="student-verify-views", password=self.password)
        response = self.client.post(
            reverse("verification:submit"),
            {"id_document": self._image_file(), "property_proof": self._pdf_file()},
        )

        self.assertEqual(response.status_code, 302)
        self.assertFalse(VerificationRequest.objects.exists())

    def test_admin_actions_approve_and_reject(self) -> None:
        approve_row, _ = submit_verification_request(
            member=self.landlord,
            id_document=self._image_file(),
            property_proof=self._pdf_file(),
        )
        other_landlord = self._member("other-landlord-verify-views")
        reject_row, _ = submit_verification_request(
            member=other_landlord,
            id_document=self._image_file(),
            property_proof=self._pdf_file(),
        )
        assert approve_row is not None and reject_row is not None
        VerificationRequest.objects.filter(pk=reject_row.pk).update(rejection_reason="Documents do not match")

        self.client.login(username="reviewer-verify-views", password=self.password)
        changelist_url = reverse("admin:verification_verificationrequest_changelist")
        self.client.post(changelist_url, {"action": "approve_selected", "_selected_action": [approve_row.pk]})
        self.client.post(changelist_url, {"action": "reject_selected", "_selected_action": [reject_row.pk]})

        approve_row.refresh_from_db()
        reject_row.refresh_from_db()
        self.assertEqual(approve_row.status, VerificationRequest.STATUS_APPROVED)
        self.assertEqual(reject_row.status, VerificationRequest.STATUS_REJECTED)
        self.assertEqual(reject_row.reviewed_by, self.reviewer)

    def test_verbose_submit_prints_outcome(self) -> None:
        self.client.login(username="landlord-verify-views", password=self.password)
        with patch("builtins.print") as mock_print:
            self.client.post(
                f"{reverse('verification:submit')}?verbose=1",
                {"id_document": self._image_file(), "property_proof": self._pdf_file()},
            )

        printed = " ".join(str(call.args[0]) for call in mock_print.call_args_list if call.args)
        self.assertIn("[verification][verbose] Verification outcome=created", printed)
