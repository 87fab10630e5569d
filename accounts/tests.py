from __future__ import annotations

from io import StringIO
from unittest.mock import patch

from django.contrib.auth import get_user_model
from django.core.management import call_command
from django.test import RequestFactory, TestCase
from django.urls import reverse

from .context_processors import member_role as member_role_context
from .models import (
    AccountProfile,
    build_participant_summary,
    ensure_profile,
    is_landlord,
    is_student,
    member_role,
    set_member_role,
)

UserModel = get_user_model()


class AccountsViewsTests(TestCase):
    def setUp(self) -> None:
        self.password = "TestPassword!123"
        self.user = UserModel.objects.create_user(
            username="owner",
            email="owner@example.com",
            password=self.password,
        )
        ensure_profile(self.user)

    def test_signup_get_renders_form(self) -> None:
        response = self.client.get(reverse("accounts:signup"))
        self.assertEqual(response.status_code, 200)
        self.assertContains(response, 'name="role"')

    def test_signup_post_creates_student_and_profile(self) -> None:
        response = self.client.post(
            reverse("accounts:signup"),
            {
                "username": "newmember",
                "email": "NewMember@Example.com",
                "full_name": "  Ana   Cruz ",
                "role": "student",
                "password1": "AnotherStrongPass!123",
                "password2": "AnotherStrongPass!123",
            },
        )
        self.assertRedirects(response, reverse("properties:list"), fetch_redirect_response=False)
        created_user = UserModel.objects.get(username="newmember")
        profile = AccountProfile.objects.get(user=created_user)
        self.assertEqual(created_user.email, "newmember@example.com")
        self.assertEqual(profile.full_name, "Ana Cruz")
        self.assertEqual(profile.role, "student")

    def test_signup_as_landlord_lands_on_dashboard(self) -> None:
        response = self.client.post(
            reverse("accounts:signup"),
            {
                "username": "landlady",
                "email": "landlady@example.com",
                "role": "landlord",
                "password1": "AnotherStrongPass!123",
                "password2": "AnotherStrongPass!123",
            },
        )
        self.assertRedirects(response, reverse("properties:dashboard"), fetch_redirect_response=False)
        self.assertTrue(is_landlord(UserModel.objects.get(username="landlady")))

    def test_signup_rejects_admin_role_choice(self) -> None:
        response = self.client.post(
            reverse("accounts:signup"),
            {
                "username": "sneaky",
                "email": "sneaky@example.com",
                "role": "admin",
                "password1": "AnotherStrongPass!123",
                "password2": "AnotherStrongPass!123",
            },
        )
        self.assertEqual(response.status_code, 400)
        self.assertFalse(UserModel.objects.filter(username="sneaky").exists())

    def test_signup_rejects_case_insensitive_duplicate_username(self) -> None:
        response = self.client.post(
            reverse("accounts:signup"),
            {
                "username": "OWNER",
                "email": "another@example.com",
                "role": "student",
                "password1": "AnotherStrongPass!123",
                "password2": "AnotherStrongPass!123",
            },
        )
        self.assertEqual(response.status_code, 400)
        self.assertContains(response, "An account with this username already exists.", status_code=400)

    def test_signup_rejects_duplicate_email(self) -> None:
        response = self.client.post(
            reverse("accounts:signup"),
            {
                "username": "other",
                "email": "OWNER@example.com",
                "role": "student",
                "password1": "AnotherStrongPass!123",
                "password2": "AnotherStrongPass!123",
            },
        )
        self.assertContains(response, "An account with this email already exists.", status_code=400)

    def test_signup_rejects_weak_password(self) -> None:
        response = self.client.post(
            reverse("accounts:signup"),
            {
                "username": "weakmember",
                "email": "weak@example.com",
                "role": "student",
                "password1": "short",
                "password2": "short",
            },
        )
        self.assertEqual(response.status_code, 400)
        self.assertFalse(UserModel.objects.filter(username="weakmember").exists())

    def test_login_invalid_credentials_return_400(self) -> None:
        response = self.client.post(
            reverse("accounts:login"),
            {"username": "owner", "password": "wrong-password"},
        )
        self.assertEqual(response.status_code, 400)

    def test_login_post_redirects_to_next_url(self) -> None:
        response = self.client.post(
            reverse("accounts:login"),
            {
                "username": "owner",
                "password": self.password,
                "next": reverse("messaging:inbox"),
            },
        )
        self.assertRedirects(response, reverse("messaging:inbox"), fetch_redirect_response=False)

    def test_login_ignores_offsite_next_url(self) -> None:
        response = self.client.post(
            reverse("accounts:login"),
            {
                "username": "owner",
                "password": self.password,
                "next": "https://evil.example.com/",
            },
        )
        self.assertRedirects(response, reverse("properties:list"), fetch_redirect_response=False)

    def test_logout_requires_post(self) -> None:
        response = self.client.get(reverse("accounts:logout"))
        self.assertEqual(response.status_code, 405)

    def test_logout_post_logs_member_out(self) -> None:
        self.client.login(username="owner", password=self.password)
        response = self.client.post(reverse("accounts:logout"))
        self.assertRedirects(response, reverse("home"), fetch_redirect_response=False)
        self.assertNotIn("_auth_user_id", self.client.session)

    def test_verbose_login_prints_trace(self) -> None:
        with patch("builtins.print") as mock_print:
            self.client.post(
                f"{reverse('accounts:login')}?verbose=1",
                {"username": "owner", "password": self.password},
            )

        printed = " ".join(str(call.args[0]) for call in mock_print.call_args_list if call.args)
        self.assertIn("[accounts][verbose] Login succeeded for @owner", printed)


class AccountRoleTests(TestCase):
    def setUp(self) -> None:
        self.user = UserModel.objects.create_user(
            username="role-member",
            email="role-member@example.com",
            password="RolePassword!123",
            first_name="Rosa",
            last_name="Dela Cruz",
        )

    def test_new_users_get_student_profile(self) -> None:
        profile = AccountProfile.objects.get(user=self.user)
        self.assertEqual(profile.role, "student")
        self.assertTrue(is_student(self.user))

    def test_set_member_role_updates_cached_profile(self) -> None:
        set_member_role(self.user, " Landlord ")
        self.assertEqual(member_role(self.user), "landlord")
        self.assertIsNone(set_member_role(self.user, "owner"))
        self.assertEqual(member_role(self.user), "landlord")

    def test_superuser_resolves_to_admin(self) -> None:
        admin_user = UserModel.objects.create_superuser(
            username="root",
            email="root@example.com",
            password="RootPassword!123",
        )
        self.assertEqual(member_role(admin_user), "admin")

    def test_participant_summary_uses_display_name_fallbacks(self) -> None:
        summary = build_participant_summary(self.user)
        assert summary is not None
        self.assertEqual(summary["id"], self.user.pk)
        self.assertEqual(summary["display_name"], "Rosa Dela Cruz")

        profile = ensure_profile(self.user)
        profile.full_name = "Rosa D."
        profile.save(update_fields=["full_name"])
        reloaded = UserModel.objects.get(pk=self.user.pk)
        self.assertEqual(build_participant_summary(reloaded)["display_name"], "Rosa D.")  # type: ignore[index]

    def test_inactive_member_has_no_summary(self) -> None:
        self.user.is_active = False
        self.user.save(update_fields=["is_active"])
        self.assertIsNone(build_participant_summary(self.user))
        self.assertIsNone(build_participant_summary(None))

    def test_admin_action_switches_role(self) -> None:
        UserModel.objects.create_superuser(
            username="root-admin",
            email="root-admin@example.com",
            password="RootPassword!123",
        )
        self.client.login(username="root-admin", password="RootPassword!123")
        profile = AccountProfile.objects.get(user=self.user)

        self.client.post(
            reverse("admin:accounts_accountprofile_changelist"),
            {"action": "mark_as_landlord", "_selected_action": [profile.pk]},
        )

        profile.refresh_from_db()
        self.assertEqual(profile.role, "landlord")

    def test_context_processor_exposes_role_flags(self) -> None:
        set_member_role(self.user, "landlord")
        request = RequestFactory().get("/")
        request.user = self.user

        context = member_role_context(request)

        self.assertEqual(context["member_role"], "landlord")
        self.assertTrue(context["member_is_landlord"])
        self.assertFalse(context["member_is_student"])


class BootstrapAccountsCommandTests(TestCase):
    def test_command_creates_demo_members_and_verbose_output(self) -> None:
        output = StringIO()
        call_command("bootstrap_accounts", "--verbose", stdout=output)
        rendered = output.getvalue()

        self.assertIn("Accounts bootstrap complete. created=4, updated=0, total=4", rendered)
        self.assertIn("[accounts][verbose]", rendered)
        self.assertTrue(is_landlord(UserModel.objects.get(username="maria")))
        self.assertTrue(is_student(UserModel.objects.get(username="ana")))
        self.assertEqual(AccountProfile.objects.get(user__username="jose").phone_number, "+63 917 555 0102")

    def test_command_normalizes_existing_demo_username_case(self) -> None:
        UserModel.objects.create_user(username="MARIA", email="old@example.com", password="OldPassword!123")

        output = StringIO()
        call_command("bootstrap_accounts", stdout=output)

        self.assertTrue(UserModel.objects.filter(username="maria").exists())
        self.assertFalse(UserModel.objects.filter(username="MARIA").exists())
        self.assertIn("created=3, updated=1", output.getvalue())
