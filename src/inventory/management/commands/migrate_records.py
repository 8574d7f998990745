"""Rewrite stored record payloads at the current schema version.

Reads already upgrade payloads in memory; this command makes the upgrade
permanent so the stored JSON matches what the services write.
"""

from django.core.exceptions import ValidationError
from django.core.management.base import BaseCommand

from inventory.models import Record
from inventory.schemas import parse_payload
from inventory.services.records import SCHEMAS
from inventory.upgrades import (
    CURRENT_SCHEMA_VERSION,
    record_version,
    upgrade_record,
)


class Command(BaseCommand):
    help = (
        "Upgrade stored asset, group, kit and booking payloads to schema "
        f"version {CURRENT_SCHEMA_VERSION}."
    )

    def add_arguments(self, parser):
        parser.add_argument(
            "--dry-run",
            action="store_true",
            help="Report what would be upgraded without saving.",
        )
        parser.add_argument(
            "--category",
            choices=[c for c, _ in Record.CATEGORY_CHOICES],
            help="Only upgrade records of this category.",
        )

    def handle(self, *args, **options):
        dry_run = options.get("dry_run", False)
        records = Record.objects.all()
        if options.get("category"):
            records = records.filter(category=options["category"])

        upgraded = failed = 0
        for record in records.iterator():
            version = record_version(record.data)
            if version == CURRENT_SCHEMA_VERSION:
                continue
            try:
                data = upgrade_record(record.category, record.data)
                entity = parse_payload(
                    SCHEMAS[record.category], {**data, "id": str(record.pk)}
                )
            except (ValueError, ValidationError) as exc:
                failed += 1
                self.stderr.write(
                    f"  {record}: cannot upgrade from version {version}: "
                    f"{exc}"
                )
                continue

            upgraded += 1
            self.stdout.write(
                f"  {record}: version {version} -> {CURRENT_SCHEMA_VERSION}"
            )
            if not dry_run:
                record.data = entity.model_dump(
                    mode="json", exclude={"id"}, exclude_none=True
                )
                record.save(update_fields=["data", "modified_at"])

        if dry_run:
            self.stdout.write(
                self.style.NOTICE(
                    f"Dry run: {upgraded} record(s) would be upgraded, "
                    f"{failed} failed."
                )
            )
        else:
            self.stdout.write(
                self.style.SUCCESS(
                    f"Upgraded {upgraded} record(s); {failed} failed."
                )
            )
