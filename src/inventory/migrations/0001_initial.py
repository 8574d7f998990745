import django.utils.timezone
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name="Record",
            fields=[
                (
                    "id",
                    models.BigAutoField(
                        auto_created=True,
                        primary_key=True,
                        serialize=False,
                        verbose_name="ID",
                    ),
                ),
                (
                    "category",
                    models.CharField(
                        choices=[
                            ("asset", "Asset"),
                            ("asset_group", "Asset Group"),
                            ("kit", "Kit"),
                            ("booking", "Booking"),
                        ],
                        max_length=20,
                    ),
                ),
                (
                    "key",
                    models.CharField(
                        blank=True,
                        help_text="Caller-supplied key; repeated creates "
                        "with it return the existing record",
                        max_length=100,
                        null=True,
                    ),
                ),
                ("data", models.JSONField(blank=True, default=dict)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("modified_at", models.DateTimeField(auto_now=True)),
            ],
            options={
                "ordering": ["id"],
                "indexes": [
                    models.Index(
                        fields=["category"], name="idx_record_category"
                    )
                ],
                "constraints": [
                    models.UniqueConstraint(
                        fields=("category", "key"), name="unique_record_key"
                    )
                ],
            },
        ),
        migrations.CreateModel(
            name="ChangeEntry",
            fields=[
                (
                    "id",
                    models.BigAutoField(
                        auto_created=True,
                        primary_key=True,
                        serialize=False,
                        verbose_name="ID",
                    ),
                ),
                (
                    "entity_type",
                    models.CharField(
                        choices=[
                            ("asset", "Asset"),
                            ("asset_group", "Asset Group"),
                            ("kit", "Kit"),
                            ("booking", "Booking"),
                        ],
                        max_length=20,
                    ),
                ),
                ("entity_id", models.CharField(max_length=64)),
                (
                    "entity_name",
                    models.CharField(blank=True, max_length=255),
                ),
                (
                    "action",
                    models.CharField(
                        choices=[
                            ("created", "Created"),
                            ("updated", "Updated"),
                            ("deleted", "Deleted"),
                        ],
                        max_length=20,
                    ),
                ),
                (
                    "changes",
                    models.JSONField(
                        blank=True,
                        default=list,
                        help_text="List of {field, old_value, new_value} "
                        "entries",
                    ),
                ),
                ("changed_by", models.CharField(blank=True, max_length=64)),
                (
                    "changed_by_name",
                    models.CharField(blank=True, max_length=255),
                ),
                (
                    "changed_at",
                    models.DateTimeField(default=django.utils.timezone.now),
                ),
            ],
            options={
                "ordering": ["-changed_at", "-id"],
                "verbose_name_plural": "change entries",
                "indexes": [
                    models.Index(
                        fields=["entity_type", "entity_id"],
                        name="idx_change_entity",
                    )
                ],
            },
        ),
    ]
