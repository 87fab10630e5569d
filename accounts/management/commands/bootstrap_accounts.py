from __future__ import annotations

from dataclasses import dataclass

from django.contrib.auth import get_user_model
from django.core.management.base import BaseCommand, CommandParser

from accounts.models import ensure_profile, set_member_role

UserModel = get_user_model()


@dataclass(frozen=True)
class DemoMemberSeed:
    username: str
    email: str
    first_name: str
    last_name: str
    role: str
    phone_number: str = ""


DEMO_MEMBERS: tuple[DemoMemberSeed, ...] = (
    DemoMemberSeed(
        username="maria",
        email="maria@campusnest.local",
        first_name="Maria",
        last_name="Santos",
        role="landlord",
        phone_number="+63 917 555 0101",
    ),
    DemoMemberSeed(
        username="jose",
        email="jose@campusnest.local",
        first_name="Jose",
        last_name="Reyes",
        role="landlord",
        phone_number="+63 917 555 0102",
    ),
    DemoMemberSeed(
        username="ana",
        email="ana@campusnest.local",
        first_name="Ana",
        last_name="Cruz",
        role="student",
    ),
    DemoMemberSeed(
        username="paolo",
        email="paolo@campusnest.local",
        first_name="Paolo",
        last_name="Lim",
        role="student",
    ),
)


class Command(BaseCommand):
    help = "Create or refresh the demo students and landlords used by the seed commands."

    def add_arguments(self, parser: CommandParser) -> None:
        parser.add_argument(
            "--demo-password",
            default="CampusNestDemo!123",
            help="Password assigned to demo accounts when they are created/reset.",
        )
        parser.add_argument(
            "--reset-passwords",
            action="store_true",
            help="Reset passwords for existing demo users too.",
        )
        parser.add_argument(
            "--verbose",
            action="store_true",
            help="Print detailed progress lines for each seed step.",
        )

    def _vprint(self, verbose_enabled: bool, message: str) -> None:
        if verbose_enabled:
            self.stdout.write(f"[accounts][verbose] {message}")

    def handle(self, *args, **options):  # type: ignore[no-untyped-def]
        verbose_enabled = bool(options.get("verbose"))
        demo_password = str(options["demo_password"])
        reset_passwords = bool(options.get("reset_passwords"))

        self.stdout.write("Bootstrapping demo members...")
        self._vprint(verbose_enabled, f"Reset passwords flag: {reset_passwords}")

        created_count = 0
        updated_count = 0
        for seed in DEMO_MEMBERS:
            user = UserModel.objects.filter(username__iexact=seed.username).first()
            if user is None:
                user = UserModel.objects.create_user(
                    username=seed.username,
                    email=seed.email,
                    first_name=seed.first_name,
                    last_name=seed.last_name,
                    password=demo_password,
                )
                created_count += 1
                self._vprint(verbose_enabled, f"Created {seed.role} @{seed.username}")
            else:
                changed = False
                for field_name in ("email", "first_name", "last_name", "username"):
                    seed_value = getattr(seed, field_name)
                    if getattr(user, field_name) != seed_value:
                        # Keep seeded usernames canonical even if existing rows differ by case.
                        setattr(user, field_name, seed_value)
                        changed = True
                if reset_passwords:
                    user.set_password(demo_password)
                    changed = True
                    self._vprint(verbose_enabled, f"Password reset for existing user @{seed.username}")
                if changed:
                    user.save()
                    updated_count += 1

            profile = ensure_profile(user)
            profile.full_name = f"{seed.first_name} {seed.last_name}"
            profile.phone_number = seed.phone_number
            profile.save(update_fields=["full_name", "phone_number", "updated_at"])
            set_member_role(user, seed.role)
            self._vprint(verbose_enabled, f"Profile synced for @{seed.username} role={seed.role}")

        self.stdout.write(
            self.style.SUCCESS(
                "Accounts bootstrap complete. "
                f"created={created_count}, updated={updated_count}, total={len(DEMO_MEMBERS)}"
            )
        )
