from __future__ import annotations

from dataclasses import dataclass
from typing import Any, cast

from django.contrib.auth import get_user_model
from django.core.management.base import BaseCommand, CommandParser

from accounts.models import member_role, set_member_role
from properties.models import Property

UserModel = get_user_model()


@dataclass(frozen=True)
class PropertySeed:
    property_id: int
    landlord_username: str
    title: str
    description: str
    address: str
    latitude: float
    longitude: float
    price_per_month: int
    bedrooms: int = 1
    bathrooms: int = 1
    furnished: bool = False
    amenities: tuple[str, ...] = ()
    rules: str = ""
    images: tuple[str, ...] = ()
    status: str = Property.STATUS_AVAILABLE


DEMO_PROPERTY_SEEDS: tuple[PropertySeed, ...] = (
    PropertySeed(
        property_id=201,
        landlord_username="maria",
        title="Katipunan studio near the campus gate",
        description="Quiet studio unit a short walk from the main gate, with a study nook and fast fiber.",
        address="Katipunan Avenue, Loyola Heights, Quezon City",
        latitude=14.6395,
        longitude=121.0770,
        price_per_month=9_500,
        furnished=True,
        amenities=("wifi", "aircon", "study desk"),
        rules="No smoking. Quiet hours from 10 PM.",
        images=("https://images.campusnest.local/demo/201-1.jpg",),
    ),
    PropertySeed(
        property_id=202,
        landlord_username="maria",
        title="Shared room in Teachers Village",
        description="Bed space in a two-person room inside a family-run boarding house.",
        address="Maginhawa Street, Teachers Village, Quezon City",
        latitude=14.6445,
        longitude=121.0595,
        price_per_month=4_500,
        amenities=("wifi", "laundry area"),
        rules="Visitors until 8 PM.",
        images=("https://images.campusnest.local/demo/202-1.jpg",),
    ),
    PropertySeed(
        property_id=203,
        landlord_username="maria",
        title="Two-bedroom apartment for groups",
        description="Two bedrooms and a shared kitchen, good for three to four students splitting rent.",
        address="C.P. Garcia Avenue, Diliman, Quezon City",
        latitude=14.6505,
        longitude=121.0690,
        price_per_month=16_000,
        bedrooms=2,
        bathrooms=1,
        amenities=("kitchen", "wifi", "parking"),
        status=Property.STATUS_RESERVED,
    ),
    PropertySeed(
        property_id=204,
        landlord_username="jose",
        title="Dorm-style room on Anonas",
        description="Single room with shared bathroom, walking distance to the LRT station.",
        address="Anonas Street, Project 3, Quezon City",
        latitude=14.6282,
        longitude=121.0646,
        price_per_month=5_800,
        amenities=("wifi", "water heater"),
        rules="No pets.",
        images=("https://images.campusnest.local/demo/204-1.jpg",),
    ),
    PropertySeed(
        property_id=205,
        landlord_username="jose",
        title="Furnished loft by the science complex",
        description="Loft unit with a mezzanine bed, kitchenette and a balcony facing the hills.",
        address="Commonwealth Avenue, Diliman, Quezon City",
        latitude=14.6580,
        longitude=121.0720,
        price_per_month=12_500,
        bathrooms=1,
        furnished=True,
        amenities=("aircon", "kitchenette", "balcony"),
        images=(
            "https://images.campusnest.local/demo/205-1.jpg",
            "https://images.campusnest.local/demo/205-2.jpg",
        ),
    ),
    PropertySeed(
        property_id=206,
        landlord_username="jose",
        title="Bedspace near the jeepney terminal",
        description="Budget bedspace for students who commute early.",
        address="Philcoa, Quezon City",
        latitude=14.6533,
        longitude=121.0503,
        price_per_month=3_200,
        amenities=("fan", "shared kitchen"),
        status=Property.STATUS_TAKEN,
    ),
)


class Command(BaseCommand):
    help = "Create or refresh demo listings used by search, map and detail flows."

    def add_arguments(self, parser: CommandParser) -> None:
        parser.add_argument(
            "--create-missing-members",
            action="store_true",
            help="Create missing landlords before seeding listing rows.",
        )
        parser.add_argument(
            "--demo-password",
            default="CampusNestDemo!123",
            help="Password used when --create-missing-members creates user rows.",
        )
        parser.add_argument(
            "--verbose",
            action="store_true",
            help="Print detailed progress lines for each seeded listing.",
        )

    def _vprint(self, verbose_enabled: bool, message: str) -> None:
        if verbose_enabled:
            self.stdout.write(f"[properties][verbose] {message}")

    def _resolve_landlord(
        self,
        *,
        username: str,
        create_missing_members: bool,
        demo_password: str,
        verbose_enabled: bool,
    ) -> tuple[Any | None, bool]:
        landlord = cast(Any | None, UserModel.objects.filter(username__iexact=username).first())
        if landlord:
            if member_role(landlord) != "landlord":
                set_member_role(landlord, "landlord")
                self._vprint(verbose_enabled, f"Switched @{landlord.username} to the landlord role")
            return landlord, False

        if not create_missing_members:
            self._vprint(
                verbose_enabled,
                (
                    f"Skipping landlord @{username}; user does not exist and "
                    "--create-missing-members is disabled."
                ),
            )
            return None, False

        landlord = UserModel.objects.create_user(
            username=username,
            email=f"{username}@campusnest.local",
            password=demo_password,
        )
        set_member_role(landlord, "landlord")
        self._vprint(verbose_enabled, f"Created missing landlord @{username}")
        return landlord, True

    def handle(self, *args, **options):  # type: ignore[no-untyped-def]
        verbose_enabled = bool(options.get("verbose"))
        create_missing_members = bool(options.get("create_missing_members"))
        demo_password = str(options.get("demo_password") or "CampusNestDemo!123")

        self.stdout.write("Bootstrapping demo listings...")
        self._vprint(verbose_enabled, f"create_missing_members={create_missing_members}")

        created_landlords_count = 0
        created_count = 0
        updated_count = 0
        skipped_count = 0

        for seed in DEMO_PROPERTY_SEEDS:
            landlord, landlord_created = self._resolve_landlord(
                username=seed.landlord_username,
                create_missing_members=create_missing_members,
                demo_password=demo_password,
                verbose_enabled=verbose_enabled,
            )
            if landlord_created:
                created_landlords_count += 1

            if landlord is None:
                skipped_count += 1
                continue

            property_row, created = Property.objects.update_or_create(
                pk=seed.property_id,
                defaults={
                    "landlord": landlord,
                    "title": seed.title,
                    "description": seed.description,
                    "address": seed.address,
                    "latitude": seed.latitude,
                    "longitude": seed.longitude,
                    "price_per_month": seed.price_per_month,
                    "bedrooms": seed.bedrooms,
                    "bathrooms": seed.bathrooms,
                    "furnished": seed.furnished,
                    "amenities": list(seed.amenities),
                    "rules": seed.rules,
                    "images": list(seed.images),
                    "status": seed.status,
                },
            )

            if created:
                created_count += 1
                self._vprint(verbose_enabled, f"Created listing id={property_row.pk} for @{seed.landlord_username}")
            else:
                updated_count += 1
                self._vprint(verbose_enabled, f"Updated listing id={property_row.pk} for @{seed.landlord_username}")

        self.stdout.write(
            self.style.SUCCESS(
                "Properties bootstrap complete. "
                f"created_landlords={created_landlords_count}, "
                f"created={created_count}, "
                f"updated={updated_count}, "
                f"skipped={skipped_count}"
            )
        )
