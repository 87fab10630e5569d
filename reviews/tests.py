from __future__ import annotations

from typing import Any
from unittest.mock import patch

from django.contrib.auth import get_user_model
from django.test import TestCase
from django.urls import reverse

from accounts.models import set_member_role
from properties.models import Property, search_properties, normalize_search_filters

from .models import PropertyReview, build_reviews_payload_for_property, parse_review_rating, submit_review

UserModel = get_user_model()


class ReviewsTestMixin:
    password = "ReviewsPass!123456"

    def _member(self, username: str, role: str = "student") -> Any:
        user = UserModel.objects.create_user(
            username=username,
            email=f"{username}@example.com",
            password=self.password,
        )
        set_member_role(user, role)
        return user


class ReviewServiceTests(ReviewsTestMixin, TestCase):
    def setUp(self) -> None:
        self.landlord = self._member("landlord-reviews", "landlord")
        self.student = self._member("student-reviews")
        self.other_student = self._member("other-student-reviews")
        self.listing = Property.objects.create(
            landlord=self.landlord,
            title="Reviews target listing",
            address="Maginhawa Street, Quezon City",
            latitude=14.6441,
            longitude=121.0570,
            price_per_month=7_800,
        )

    def test_parse_review_rating_bounds(self) -> None:
        self.assertEqual(parse_review_rating("4"), 4)
        self.assertEqual(parse_review_rating("+5"), 5)
        self.assertIsNone(parse_review_rating("0"))
        self.assertIsNone(parse_review_rating("6"))
        self.assertIsNone(parse_review_rating("four"))
        self.assertIsNone(parse_review_rating(None))

    def test_submit_review_creates_then_updates_single_row(self) -> None:
        review_row, outcome, _ = submit_review(
            member=self.student,
            property_id=self.listing.pk,
            rating="4",
            comment="  Quiet   street,  near campus ",
        )
        self.assertEqual(outcome, "created")
        assert review_row is not None
        self.assertEqual(review_row.comment, "Quiet street, near campus")

        _, second_outcome, _ = submit_review(
            member=self.student,
            property_id=self.listing.pk,
            rating="2",
            comment="Water pressure is weak.",
        )
        self.assertEqual(second_outcome, "updated")
        self.assertEqual(PropertyReview.objects.filter(property=self.listing).count(), 1)
        self.assertEqual(PropertyReview.objects.get(property=self.listing).rating, 2)

    def test_submit_review_rejections(self) -> None:
        _, owner_outcome, _ = submit_review(member=self.landlord, property_id=self.listing.pk, rating="5")
        self.assertEqual(owner_outcome, "owner-blocked")

        other_landlord = self._member("other-landlord-reviews", "landlord")
        _, role_outcome, _ = submit_review(member=other_landlord, property_id=self.listing.pk, rating="5")
        self.assertEqual(role_outcome, "student-required")

        _, missing_outcome, property_row = submit_review(member=self.student, property_id="999999", rating="5")
        self.assertEqual(missing_outcome, "property-not-found")
        self.assertIsNone(property_row)

        _, rating_outcome, _ = submit_review(member=self.student, property_id=self.listing.pk, rating="9")
        self.assertEqual(rating_outcome, "invalid-rating")

        _, length_outcome, _ = submit_review(
            member=self.student,
            property_id=self.listing.pk,
            rating="3",
            comment="x" * (PropertyReview.COMMENT_MAX_LENGTH + 1),
        )
        self.assertEqual(length_outcome, "too-long")
        self.assertFalse(PropertyReview.objects.exists())

    def test_payload_aggregates_ratings_and_viewer_review(self) -> None:
        submit_review(member=self.student, property_id=self.listing.pk, rating="5", comment="Great")
        submit_review(member=self.other_student, property_id=self.listing.pk, rating="3", comment="Okay")

        payload = build_reviews_payload_for_property(property_id=self.listing.pk, viewer=self.student)

        self.assertEqual(payload["review_count"], 2)
        self.assertEqual(payload["average_rating"], 4.0)
        self.assertEqual(
            [bucket["count"] for bucket in payload["rating_buckets"]],
            [1, 0, 1, 0, 0],
        )
        assert payload["viewer_review"] is not None
        self.assertEqual(payload["viewer_review"]["rating"], 5)
        self.assertTrue(payload["can_review"])

        landlord_payload = build_reviews_payload_for_property(property_id=self.listing.pk, viewer=self.landlord)
        self.assertFalse(landlord_payload["can_review"])
        self.assertIsNone(landlord_payload["viewer_review"])

    def test_search_results_carry_average_rating(self) -> None:
        submit_review(member=self.student, property_id=self.listing.pk, rating="5")
        submit_review(member=self.other_student, property_id=self.listing.pk, rating="4")

        payload = search_properties(normalize_search_filters({}))

        row = next(item for item in payload["properties"] if item["id"] == self.listing.pk)
        self.assertEqual(row["average_rating"], 4.5)
        self.assertEqual(row["review_count"], 2)


class ReviewsViewsTests(ReviewsTestMixin, TestCase):
    def setUp(self) -> None:
        self.landlord = self._member("landlord-review-views", "landlord")
        self.student = self._member("student-review-views")
        self.listing = Property.objects.create(
            landlord=self.landlord,
            title="Review views listing",
            address="Esteban Abada Street, Quezon City",
            latitude=14.6380,
            longitude=121.0740,
            price_per_month=11_000,
        )

    def test_create_requires_login(self) -> None:
        response = self.client.post(
            reverse("reviews:create"),
            {"property_id": str(self.listing.pk), "rating": "5"},
        )
        self.assertEqual(response.status_code, 302)
        self.assertIn(reverse("accounts:login"), response.url)

    def test_create_requires_post(self) -> None:
        self.client.login(username="student-review-views", password=self.password)
        response = self.client.get(reverse("reviews:create"))
        self.assertEqual(response.status_code, 405)

    def test_create_redirects_to_property_reviews_anchor(self) -> None:
        self.client.login(username="student-review-views", password=self.password)
        response = self.client.post(
            reverse("reviews:create"),
            {"property_id": str(self.listing.pk), "rating": "4", "comment": "Clean and safe."},
        )

        self.assertRedirects(
            response,
            f"{self.listing.get_absolute_url()}#reviews",
            fetch_redirect_response=False,
        )
        self.assertTrue(PropertyReview.objects.filter(property=self.listing, author=self.student).exists())

    def test_detail_page_lists_reviews(self) -> None:
        submit_review(member=self.student, property_id=self.listing.pk, rating="4", comment="Clean and safe.")

        response = self.client.get(self.listing.get_absolute_url())

        self.assertEqual(response.status_code, 200)
        self.assertContains(response, "Clean and safe.")
        self.assertEqual(response.context["review_count"], 1)

    def test_owner_review_is_blocked(self) -> None:
        self.client.login(username="landlord-review-views", password=self.password)
        response = self.client.post(
            reverse("reviews:create"),
            {"property_id": str(self.listing.pk), "rating": "5"},
        )

        self.assertEqual(response.status_code, 302)
        self.assertFalse(PropertyReview.objects.exists())

    def test_verbose_create_prints_outcome(self) -> None:
        self.client.login(username="student-review-views", password=self.password)
        with patch("builtins.print") as mock_print:
            self.client.post(
                f"{reverse('reviews:create')}?verbose=1",
                {"property_id": str(self.listing.pk), "rating": "5"},
            )

        printed = " ".join(str(call.args[0]) for call in mock_print.call_args_list if call.args)
        self.assertIn("[reviews][verbose] Review outcome=created", printed)
