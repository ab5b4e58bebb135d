"""Create the Order table."""

import uuid

from django.db import migrations, models


class Migration(migrations.Migration):
    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name="Order",
            fields=[
                (
                    "created_at",
                    models.DateTimeField(
                        auto_now_add=True,
                        db_index=True,
                        help_text="Timestamp when this record was created",
                    ),
                ),
                (
                    "updated_at",
                    models.DateTimeField(
                        auto_now=True,
                        help_text="Timestamp when this record was last modified",
                    ),
                ),
                (
                    "tenant_id",
                    models.CharField(
                        db_index=True,
                        default="default",
                        help_text="Tenant that owns this record",
                        max_length=64,
                    ),
                ),
                (
                    "id",
                    models.UUIDField(
                        default=uuid.uuid4,
                        editable=False,
                        help_text="Unique identifier for this record",
                        primary_key=True,
                        serialize=False,
                    ),
                ),
                (
                    "currency",
                    models.CharField(
                        default="INR",
                        help_text="ISO 4217 currency code (upper case)",
                        max_length=3,
                    ),
                ),
                (
                    "amount_minor",
                    models.PositiveBigIntegerField(
                        help_text="Amount due in smallest currency unit",
                    ),
                ),
                ("subtotal_minor", models.PositiveBigIntegerField(default=0)),
                ("discount_minor", models.PositiveBigIntegerField(default=0)),
                ("shipping_minor", models.PositiveBigIntegerField(default=0)),
                (
                    "tax_minor",
                    models.PositiveBigIntegerField(
                        blank=True,
                        help_text="Stored tax; derived from the breakdown when empty",
                        null=True,
                    ),
                ),
                ("total_minor", models.PositiveBigIntegerField(default=0)),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("pending", "Pending"),
                            ("confirmed", "Confirmed"),
                            ("partially_refunded", "Partially Refunded"),
                            ("refunded", "Refunded"),
                            ("cancelled", "Cancelled"),
                        ],
                        db_index=True,
                        default="pending",
                        max_length=32,
                    ),
                ),
                (
                    "payment_status",
                    models.CharField(
                        choices=[
                            ("pending", "Pending"),
                            ("processing", "Processing"),
                            ("paid", "Paid"),
                            ("failed", "Failed"),
                        ],
                        db_index=True,
                        default="pending",
                        max_length=32,
                    ),
                ),
                ("payment_failed_at", models.DateTimeField(blank=True, null=True)),
                (
                    "payment_method",
                    models.CharField(
                        choices=[
                            ("upi", "UPI"),
                            ("phonepe", "PhonePe"),
                            ("card", "Card"),
                            ("netbanking", "Net Banking"),
                            ("wallet", "Wallet"),
                            ("cod", "Cash on Delivery"),
                        ],
                        default="upi",
                        max_length=32,
                    ),
                ),
                ("customer_name", models.CharField(blank=True, default="", max_length=255)),
                ("customer_email", models.EmailField(blank=True, default="", max_length=254)),
                ("customer_phone", models.CharField(blank=True, default="", max_length=32)),
            ],
            options={
                "verbose_name": "Order",
                "verbose_name_plural": "Orders",
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(fields=["tenant_id", "status"], name="order_tenant_status_idx"),
                    models.Index(
                        fields=["tenant_id", "payment_status"], name="order_tenant_pay_status_idx"
                    ),
                ],
                "constraints": [
                    models.CheckConstraint(
                        condition=models.Q(amount_minor__gt=0),
                        name="order_amount_positive",
                    ),
                ],
            },
        ),
    ]
