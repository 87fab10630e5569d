from __future__ import annotations

from typing import Any
from unittest.mock import patch

from django.contrib.auth import get_user_model
from django.test import TestCase
from django.urls import reverse

from accounts.models import set_member_role
from properties.models import Property

from .models import (
    SavedProperty,
    build_saved_properties_payload,
    is_property_saved,
    save_property,
    saved_property_ids_for_member,
    unsave_property,
)

UserModel = get_user_model()


class SavedTestMixin:
    password = "SavedPass!123456"

    def _member(self, username: str, role: str = "student") -> Any:
        user = UserModel.objects.create_user(
            username=username,
            email=f"{username}@example.com",
            password=self.password,
        )
        set_member_role(user, role)
        return user

    def _property(self, landlord: Any, title: str) -> Property:
        return Property.objects.create(
            landlord=landlord,
            title=title,
            address="Katipunan Avenue, Quezon City",
            latitude=14.6395,
            longitude=121.0770,
            price_per_month=8_000,
        )


class SavedServiceTests(SavedTestMixin, TestCase):
    def setUp(self) -> None:
        self.landlord = self._member("landlord-saved", "landlord")
        self.student = self._member("student-saved")
        self.first = self._property(self.landlord, "First listing")
        self.second = self._property(self.landlord, "Second listing")

    def test_save_is_idempotent(self) -> None:
        saved_row, outcome = save_property(member=self.student, property_id=self.first.pk)
        self.assertEqual(outcome, "saved")
        self.assertIsNotNone(saved_row)

        _, second_outcome = save_property(member=self.student, property_id=str(self.first.pk))
        self.assertEqual(second_outcome, "already-saved")
        self.assertEqual(SavedProperty.objects.filter(member=self.student).count(), 1)
        self.assertTrue(is_property_saved(member=self.student, property_id=self.first.pk))

    def test_save_rejections(self) -> None:
        _, landlord_outcome = save_property(member=self.landlord, property_id=self.first.pk)
        self.assertEqual(landlord_outcome, "student-required")

        _, missing_outcome = save_property(member=self.student, property_id="999999")
        self.assertEqual(missing_outcome, "property-not-found")

        _, bad_id_outcome = save_property(member=self.student, property_id="abc")
        self.assertEqual(bad_id_outcome, "property-not-found")
        self.assertFalse(SavedProperty.objects.exists())

    def test_unsave_outcomes(self) -> None:
        save_property(member=self.student, property_id=self.first.pk)

        self.assertEqual(unsave_property(member=self.student, property_id=self.first.pk), "unsaved")
        self.assertEqual(unsave_property(member=self.student, property_id=self.first.pk), "already-not-saved")
        self.assertEqual(unsave_property(member=self.student, property_id="999999"), "property-not-found")

    def test_payload_orders_by_save_time(self) -> None:
        save_property(member=self.student, property_id=self.second.pk)
        save_property(member=self.student, property_id=self.first.pk)

        payload = build_saved_properties_payload(self.student)

        self.assertEqual(payload["mode"], "member-saved")
        self.assertEqual([item["id"] for item in payload["properties"]], [self.first.pk, self.second.pk])
        self.assertEqual(saved_property_ids_for_member(self.student), {self.first.pk, self.second.pk})

    def test_deleting_listing_removes_saved_rows(self) -> None:
        save_property(member=self.student, property_id=self.first.pk)
        self.first.delete()
        self.assertFalse(SavedProperty.objects.exists())


class SavedViewsTests(SavedTestMixin, TestCase):
    def setUp(self) -> None:
        self.landlord = self._member("landlord-saved-views", "landlord")
        self.student = self._member("student-saved-views")
        self.listing = self._property(self.landlord, "Saved views listing")

    def test_list_requires_login(self) -> None:
        response = self.client.get(reverse("saved:list"))
        self.assertEqual(response.status_code, 302)
        self.assertIn(reverse("accounts:login"), response.url)

    def test_save_redirects_to_next(self) -> None:
        self.client.login(username="student-saved-views", password=self.password)
        response = self.client.post(
            reverse("saved:save"),
            {"property_id": str(self.listing.pk), "next": self.listing.get_absolute_url()},
        )

        self.assertRedirects(response, self.listing.get_absolute_url(), fetch_redirect_response=False)
        self.assertTrue(is_property_saved(member=self.student, property_id=self.listing.pk))

    def test_save_json_response(self) -> None:
        self.client.login(username="student-saved-views", password=self.password)
        response = self.client.post(
            reverse("saved:save"),
            {"property_id": str(self.listing.pk)},
            HTTP_X_REQUESTED_WITH="XMLHttpRequest",
        )

        self.assertEqual(response.status_code, 200)
        payload = response.json()
        self.assertEqual(payload["outcome"], "saved")
        self.assertTrue(payload["is_saved"])

    def test_landlord_save_json_is_forbidden(self) -> None:
        self.client.login(username="landlord-saved-views", password=self.password)
        response = self.client.post(
            reverse("saved:save"),
            {"property_id": str(self.listing.pk), "response_format": "json"},
        )

        self.assertEqual(response.status_code, 403)
        self.assertEqual(response.json()["outcome"], "student-required")

    def test_unsave_json_response(self) -> None:
        save_property(member=self.student, property_id=self.listing.pk)
        self.client.login(username="student-saved-views", password=self.password)
        response = self.client.post(
            reverse("saved:unsave"),
            {"property_id": str(self.listing.pk)},
            HTTP_ACCEPT="application/json",
        )

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["outcome"], "unsaved")
        self.assertFalse(is_property_saved(member=self.student, property_id=self.listing.pk))

    def test_list_view_shows_saved_listing(self) -> None:
        save_property(member=self.student, property_id=self.listing.pk)
        self.client.login(username="student-saved-views", password=self.password)

        response = self.client.get(reverse("saved:list"))

        self.assertEqual(response.status_code, 200)
        self.assertContains(response, "Saved views listing")

    def test_list_view_redirects_landlords(self) -> None:
        self.client.login(username="landlord-saved-views", password=self.password)
        response = self.client.get(reverse("saved:list"))
        self.assertRedirects(response, reverse("properties:list"), fetch_redirect_response=False)

    def test_verbose_save_prints_outcome(self) -> None:
        self.client.login(username="student-saved-views", password=self.password)
        with patch("builtins.print") as mock_print:
            self.client.post(
                f"{reverse('saved:save')}?verbose=1",
                {"property_id": str(self.listing.pk)},
            )

        printed = " ".join(str(call.args[0]) for call in mock_print.call_args_list if call.args)
        self.assertIn("[saved][verbose] Save outcome=saved", printed)
