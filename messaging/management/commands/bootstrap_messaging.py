from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from typing import Any, cast

from django.contrib.auth import get_user_model
from django.core.management.base import BaseCommand, CommandParser
from django.utils import timezone

from accounts.management.commands.bootstrap_accounts import DEMO_MEMBERS
from accounts.models import member_role, set_member_role
from messaging.models import Message
from properties.models import Property

UserModel = get_user_model()


@dataclass(frozen=True)
class MessageSeed:
    message_id: int
    sender_username: str
    receiver_username: str
    property_id: int | None
    content: str
    minutes_ago: int
    is_read: bool = True
    phone_number: str = ""


DEMO_MESSAGE_SEEDS: tuple[MessageSeed, ...] = (
    MessageSeed(
        message_id=501,
        sender_username="ana",
        receiver_username="maria",
        property_id=201,
        content="Hi! Is the Katipunan studio still available for next semester?",
        minutes_ago=240,
        phone_number="+63 917 555 0201",
    ),
    MessageSeed(
        message_id=502,
        sender_username="maria",
        receiver_username="ana",
        property_id=201,
        content="Yes it is. Viewings are open on weekday afternoons.",
        minutes_ago=200,
    ),
    MessageSeed(
        message_id=503,
        sender_username="ana",
        receiver_username="maria",
        property_id=201,
        content="Great, could I drop by on Thursday around 3 PM?",
        minutes_ago=45,
        is_read=False,
    ),
    MessageSeed(
        message_id=504,
        sender_username="paolo",
        receiver_username="jose",
        property_id=204,
        content="Good day! Does the Anonas room include water and electricity?",
        minutes_ago=180,
    ),
    MessageSeed(
        message_id=505,
        sender_username="jose",
        receiver_username="paolo",
        property_id=204,
        content="Water is included. Electricity is sub-metered per room.",
        minutes_ago=90,
        is_read=False,
    ),
    MessageSeed(
        message_id=506,
        sender_username="ana",
        receiver_username="jose",
        property_id=None,
        content="Hello, do you have any listings opening up in June?",
        minutes_ago=120,
        is_read=False,
    ),
)


class Command(BaseCommand):
    help = "Create or refresh demo conversations between students and landlords."

    def add_arguments(self, parser: CommandParser) -> None:
        parser.add_argument(
            "--create-missing-members",
            action="store_true",
            help="Create missing demo members before seeding message rows.",
        )
        parser.add_argument(
            "--demo-password",
            default="CampusNestDemo!123",
            help="Password used when --create-missing-members creates user rows.",
        )
        parser.add_argument(
            "--verbose",
            action="store_true",
            help="Print detailed progress lines for each seeded message.",
        )

    def _vprint(self, verbose_enabled: bool, message: str) -> None:
        if verbose_enabled:
            self.stdout.write(f"[messaging][verbose] {message}")

    def _resolve_member(
        self,
        *,
        username: str,
        create_missing_members: bool,
        demo_password: str,
        verbose_enabled: bool,
    ) -> tuple[Any | None, bool]:
        seed_roles = {seed.username: seed.role for seed in DEMO_MEMBERS}
        expected_role = seed_roles.get(username, "student")

        member = cast(Any | None, UserModel.objects.filter(username__iexact=username).first())
        if member:
            if member_role(member) not in {expected_role, "admin"}:
                set_member_role(member, expected_role)
                self._vprint(verbose_enabled, f"Switched @{member.username} to the {expected_role} role")
            return member, False

        if not create_missing_members:
            self._vprint(
                verbose_enabled,
                (
                    f"Skipping member @{username}; user does not exist and "
                    "--create-missing-members is disabled."
                ),
            )
            return None, False

        member = UserModel.objects.create_user(
            username=username,
            email=f"{username}@campusnest.local",
            password=demo_password,
        )
        set_member_role(member, expected_role)
        self._vprint(verbose_enabled, f"Created missing {expected_role} @{username}")
        return member, True

    def handle(self, *args, **options):  # type: ignore[no-untyped-def]
        verbose_enabled = bool(options.get("verbose"))
        create_missing_members = bool(options.get("create_missing_members"))
        demo_password = str(options.get("demo_password") or "CampusNestDemo!123")

        self.stdout.write("Bootstrapping demo conversations...")
        self._vprint(verbose_enabled, f"create_missing_members={create_missing_members}")

        resolved_members: dict[str, Any | None] = {}
        created_members_count = 0
        created_count = 0
        updated_count = 0
        skipped_count = 0

        now = timezone.now().replace(second=0, microsecond=0)

        for seed in DEMO_MESSAGE_SEEDS:
            for username in (seed.sender_username, seed.receiver_username):
                if username in resolved_members:
                    continue
                member, member_created = self._resolve_member(
                    username=username,
                    create_missing_members=create_missing_members,
                    demo_password=demo_password,
                    verbose_enabled=verbose_enabled,
                )
                resolved_members[username] = member
                if member_created:
                    created_members_count += 1

            sender = resolved_members.get(seed.sender_username)
            receiver = resolved_members.get(seed.receiver_username)
            if sender is None or receiver is None:
                skipped_count += 1
                continue

            property_row: Property | None = None
            if seed.property_id is not None:
                property_row = Property.objects.filter(pk=seed.property_id).first()
                if property_row is None:
                    self._vprint(
                        verbose_enabled,
                        f"Skipping message id={seed.message_id}; listing #{seed.property_id} does not exist. "
                        "Run bootstrap_properties first.",
                    )
                    skipped_count += 1
                    continue

            message, created = Message.objects.update_or_create(
                pk=seed.message_id,
                defaults={
                    "sender": sender,
                    "receiver": receiver,
                    "property": property_row,
                    "content": seed.content,
                    "phone_number": seed.phone_number,
                    "is_read": seed.is_read,
                },
            )
            # Pin timestamps so the demo inbox always shows the same order.
            Message.objects.filter(pk=message.pk).update(created_at=now - timedelta(minutes=seed.minutes_ago))

            if created:
                created_count += 1
                self._vprint(verbose_enabled, f"Created message id={message.pk} @{seed.sender_username} -> @{seed.receiver_username}")
            else:
                updated_count += 1
                self._vprint(verbose_enabled, f"Updated message id={message.pk} @{seed.sender_username} -> @{seed.receiver_username}")

        self.stdout.write(
            self.style.SUCCESS(
                "Messaging bootstrap complete. "
                f"created_members={created_members_count}, "
                f"created={created_count}, "
                f"updated={updated_count}, "
                f"skipped={skipped_count}"
            )
        )
