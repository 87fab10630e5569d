from __future__ import annotations

from io import StringIO
from typing import Any
from unittest.mock import patch

from django.contrib.auth import get_user_model
from django.core.exceptions import ValidationError
from django.core.management import call_command
from django.test import SimpleTestCase, TestCase, override_settings
from django.urls import reverse

from accounts.models import is_landlord, set_member_role
from messaging.models import Message

from .models import Property, build_landlord_dashboard_payload, haversine_km, normalize_search_filters, search_properties
from .templatetags.property_format import distance_label, format_price

UserModel = get_user_model()


class SearchFilterTests(SimpleTestCase):
    def test_haversine_one_degree_of_longitude_on_equator(self) -> None:
        self.assertAlmostEqual(haversine_km(0.0, 0.0, 0.0, 1.0), 111.19, places=1)
        self.assertEqual(haversine_km(14.6395, 121.0770, 14.6395, 121.0770), 0.0)

    @override_settings(CAMPUSNEST_SEARCH_MAX_PRICE=20_000, CAMPUSNEST_SEARCH_DEFAULT_RADIUS_KM=5)
    def test_normalize_defaults(self) -> None:
        filters = normalize_search_filters({})
        self.assertEqual(filters["query"], "")
        self.assertEqual(filters["min_price"], 0)
        self.assertEqual(filters["max_price"], 20_000)
        self.assertIsNone(filters["center_lat"])
        self.assertEqual(filters["radius_km"], 5.0)
        self.assertIsNone(filters["bounds"])

    def test_normalize_swaps_prices_and_drops_bad_coordinates(self) -> None:
        filters = normalize_search_filters(
            {
                "q": "  studio   near  gate ",
                "min_price": "9000",
                "max_price": "4000",
                "lat": "95",
                "lng": "121.07",
                "radius_km": "-3",
            }
        )
        self.assertEqual(filters["query"], "studio near gate")
        self.assertEqual((filters["min_price"], filters["max_price"]), (4000, 9000))
        self.assertIsNone(filters["center_lat"])
        self.assertIsNone(filters["center_lng"])
        self.assertGreater(filters["radius_km"], 0)

    def test_normalize_rejects_inverted_bounds(self) -> None:
        filters = normalize_search_filters({"south": "14.7", "west": "121.0", "north": "14.6", "east": "121.1"})
        self.assertIsNone(filters["bounds"])

        valid = normalize_search_filters({"south": "14.6", "west": "121.0", "north": "14.7", "east": "121.1"})
        self.assertEqual(valid["bounds"], (14.6, 121.0, 14.7, 121.1))


class PropertyFormatFilterTests(SimpleTestCase):
    @override_settings(CAMPUSNEST_CURRENCY_SYMBOL="₱")
    def test_format_price(self) -> None:
        self.assertEqual(format_price(8500), "₱8,500")
        self.assertEqual(format_price("12500.4"), "₱12,500")
        self.assertEqual(format_price("n/a"), "₱0")

    def test_distance_label(self) -> None:
        self.assertEqual(distance_label(0.45), "450 m away")
        self.assertEqual(distance_label(2.345), "2.3 km away")
        self.assertEqual(distance_label(None), "")


class PropertiesTestMixin:
    password = "PropertiesPass!123456"

    def _member(self, username: str, role: str = "student") -> Any:
        user = UserModel.objects.create_user(
            username=username,
            email=f"{username}@example.com",
            password=self.password,
        )
        set_member_role(user, role)
        return user

    def _property(self, landlord: Any, **overrides: Any) -> Property:
        values: dict[str, Any] = {
            "landlord": landlord,
            "title": "Katipunan studio",
            "address": "Katipunan Avenue, Quezon City",
            "latitude": 14.6395,
            "longitude": 121.0770,
            "price_per_month": 9_500,
        }
        values.update(overrides)
        return Property.objects.create(**values)


class PropertySearchTests(PropertiesTestMixin, TestCase):
    def setUp(self) -> None:
        self.landlord = self._member("landlord-search", "landlord")
        self.near = self._property(self.landlord)
        self.farther = self._property(
            self.landlord,
            title="Maginhawa shared room",
            address="Maginhawa Street, Quezon City",
            latitude=14.6441,
            longitude=121.0570,
            price_per_month=4_500,
        )
        self.reserved = self._property(self.landlord, title="Reserved flat", status=Property.STATUS_RESERVED)

    def test_default_search_lists_available_newest_first(self) -> None:
        payload = search_properties(normalize_search_filters({}))

        self.assertEqual(payload["mode"], "all-available")
        self.assertEqual(payload["total_count"], 2)
        self.assertEqual([item["id"] for item in payload["properties"]], [self.farther.pk, self.near.pk])

    def test_price_and_text_filters(self) -> None:
        payload = search_properties(normalize_search_filters({"max_price": "5000"}))
        self.assertEqual([item["id"] for item in payload["properties"]], [self.farther.pk])

        text_payload = search_properties(normalize_search_filters({"q": "katipunan"}))
        self.assertEqual([item["id"] for item in text_payload["properties"]], [self.near.pk])

    def test_radius_search_sorts_by_distance_and_drops_outside(self) -> None:
        wide = search_properties(normalize_search_filters({"lat": "14.6395", "lng": "121.0770", "radius_km": "5"}))
        self.assertEqual(wide["mode"], "radius")
        self.assertEqual([item["id"] for item in wide["properties"]], [self.near.pk, self.farther.pk])
        self.assertEqual(wide["properties"][0]["distance_km"], 0.0)

        narrow = search_properties(normalize_search_filters({"lat": "14.6395", "lng": "121.0770", "radius_km": "1"}))
        self.assertEqual([item["id"] for item in narrow["properties"]], [self.near.pk])
        self.assertEqual(narrow["filtered_count"], 1)

    def test_bounds_search(self) -> None:
        payload = search_properties(
            normalize_search_filters({"south": "14.63", "west": "121.06", "north": "14.645", "east": "121.08"})
        )
        self.assertEqual(payload["mode"], "bounds")
        self.assertEqual([item["id"] for item in payload["properties"]], [self.near.pk])

    def test_clean_rejects_out_of_range_coordinates(self) -> None:
        listing = Property(landlord=self.landlord, title="Bad pin", address="Nowhere", latitude=120, longitude=0, price_per_month=1)
        with self.assertRaises(ValidationError):
            listing.full_clean()

    def test_summary_uses_first_image_as_thumbnail(self) -> None:
        listing = self._property(self.landlord, images=["", " https://img.example.com/a.jpg ", "https://img.example.com/b.jpg"])
        summary = listing.to_summary()
        self.assertEqual(summary["thumbnail_url"], "https://img.example.com/a.jpg")
        self.assertEqual(summary["url"], f"/properties/{listing.pk}/")


class PropertyViewsTests(PropertiesTestMixin, TestCase):
    def setUp(self) -> None:
        self.landlord = self._member("landlord-views", "landlord")
        self.student = self._member("student-views")
        self.listing = self._property(self.landlord)

    def test_list_view_renders_search_results(self) -> None:
        response = self.client.get(reverse("properties:list"), {"q": "Katipunan"})

        self.assertEqual(response.status_code, 200)
        self.assertContains(response, "Katipunan studio")
        self.assertEqual(response.context["search_filtered_count"], 1)
        self.assertEqual(response.context["search_mode"], "all-available")

    def test_map_data_returns_markers(self) -> None:
        response = self.client.get(reverse("properties:map-data"), {"lat": "14.6395", "lng": "121.0770"})

        self.assertEqual(response.status_code, 200)
        payload = response.json()
        self.assertTrue(payload["ok"])
        self.assertEqual(payload["mode"], "radius")
        self.assertEqual(payload["markers"][0]["id"], self.listing.pk)

    def test_detail_view_flags_for_student_and_owner(self) -> None:
        self.client.login(username="student-views", password=self.password)
        response = self.client.get(reverse("properties:detail", args=[self.listing.pk]))
        self.assertEqual(response.status_code, 200)
        self.assertTrue(response.context["can_inquire"])
        self.assertTrue(response.context["can_save"])
        self.assertFalse(response.context["is_owner"])

        self.client.logout()
        self.client.login(username="landlord-views", password=self.password)
        owner_response = self.client.get(reverse("properties:detail", args=[self.listing.pk]))
        self.assertTrue(owner_response.context["is_owner"])
        self.assertFalse(owner_response.context["can_inquire"])

    def test_taken_listing_detail_blocks_inquiries(self) -> None:
        self.listing.status = Property.STATUS_TAKEN
        self.listing.save(update_fields=["status"])
        self.client.login(username="student-views", password=self.password)

        response = self.client.get(reverse("properties:detail", args=[self.listing.pk]))

        self.assertEqual(response.status_code, 200)
        self.assertFalse(response.context["can_inquire"])

    def test_missing_listing_returns_404(self) -> None:
        response = self.client.get(reverse("properties:detail", args=[999999]))
        self.assertEqual(response.status_code, 404)

    def test_dashboard_redirects_students(self) -> None:
        self.client.login(username="student-views", password=self.password)
        response = self.client.get(reverse("properties:dashboard"))
        self.assertRedirects(response, reverse("properties:list"), fetch_redirect_response=False)

    def test_dashboard_counts_inquiries_per_listing(self) -> None:
        Message.objects.create(sender=self.student, receiver=self.landlord, property=self.listing, content="Is it free?")
        Message.objects.create(sender=self.landlord, receiver=self.student, property=self.listing, content="Yes.")
        self._property(self.landlord, title="Reserved flat", status=Property.STATUS_RESERVED)

        payload = build_landlord_dashboard_payload(self.landlord)
        self.assertEqual(payload["total_count"], 2)
        self.assertEqual(payload["available_count"], 1)
        self.assertEqual(payload["inquiry_counts"], {self.listing.pk: 2})

        self.client.login(username="landlord-views", password=self.password)
        response = self.client.get(reverse("properties:dashboard"))
        self.assertEqual(response.status_code, 200)
        listing_row = next(item for item in response.context["listings"] if item["id"] == self.listing.pk)
        self.assertEqual(listing_row["inquiry_count"], 2)
        self.assertFalse(response.context["is_verified"])

    def test_verbose_list_prints_search_mode(self) -> None:
        with patch("builtins.print") as mock_print:
            self.client.get(f"{reverse('properties:list')}?verbose=1")

        printed = " ".join(str(call.args[0]) for call in mock_print.call_args_list if call.args)
        self.assertIn("[properties][verbose] Property search mode=all-available", printed)


class BootstrapPropertiesCommandTests(TestCase):
    def test_command_skips_without_landlords(self) -> None:
        output = StringIO()
        call_command("bootstrap_properties", stdout=output)

        self.assertIn("created_landlords=0, created=0, updated=0, skipped=6", output.getvalue())
        self.assertFalse(Property.objects.exists())

    def test_command_creates_landlords_and_is_idempotent(self) -> None:
        output = StringIO()
        call_command("bootstrap_properties", "--create-missing-members", "--verbose", stdout=output)
        rendered = output.getvalue()

        self.assertIn("created_landlords=2, created=6, updated=0, skipped=0", rendered)
        self.assertIn("[properties][verbose]", rendered)
        self.assertTrue(is_landlord(UserModel.objects.get(username="maria")))
        self.assertEqual(Property.objects.get(pk=203).status, Property.STATUS_RESERVED)
        self.assertEqual(Property.objects.get(pk=206).status, Property.STATUS_TAKEN)

        rerun = StringIO()
        call_command("bootstrap_properties", stdout=rerun)
        self.assertIn("created_landlords=0, created=0, updated=6, skipped=0", rerun.getvalue())
        self.assertEqual(Property.objects.count(), 6)
