"""Create the payments tables: attempts, refunds, audit trail, inbox, ledger, polling."""

import uuid

import django.core.serializers.json
import django.core.validators
import django.db.models.deletion
import django.utils.timezone
import django_fsm
from django.db import migrations, models


def base_fields():
    return [
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
    ]


ENVIRONMENT_CHOICES = [("test", "Test"), ("live", "Live")]


class Migration(migrations.Migration):
    initial = True

    dependencies = [
        ("orders", "0001_initial"),
    ]

    operations = [
        migrations.CreateModel(
            name="ProviderConfig",
            fields=[
                *base_fields(),
                ("provider", models.CharField(max_length=32)),
                (
                    "environment",
                    models.CharField(choices=ENVIRONMENT_CHOICES, default="test", max_length=8),
                ),
                ("is_enabled", models.BooleanField(default=True)),
                ("merchant_id", models.CharField(blank=True, default="", max_length=128)),
                ("key_id", models.CharField(blank=True, default="", max_length=128)),
                (
                    "salt_index",
                    models.PositiveSmallIntegerField(
                        default=1,
                        validators=[
                            django.core.validators.MinValueValidator(1),
                            django.core.validators.MaxValueValidator(10),
                        ],
                    ),
                ),
                ("success_url", models.URLField(blank=True, default="", max_length=1024)),
                ("failure_url", models.URLField(blank=True, default="", max_length=1024)),
                ("webhook_url", models.URLField(blank=True, default="", max_length=1024)),
                ("capabilities", models.JSONField(blank=True, default=dict)),
                ("metadata", models.JSONField(blank=True, default=dict)),
            ],
            options={
                "verbose_name": "Provider Config",
                "verbose_name_plural": "Provider Configs",
                "ordering": ["provider"],
                "constraints": [
                    models.UniqueConstraint(
                        fields=["tenant_id", "provider", "environment"],
                        name="provider_config_unique",
                    ),
                    models.CheckConstraint(
                        condition=models.Q(salt_index__gte=1, salt_index__lte=10),
                        name="provider_config_salt_index_range",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="IdempotencyKey",
            fields=[
                *base_fields(),
                ("scope", models.CharField(max_length=64)),
                ("key", models.CharField(max_length=255)),
                ("request_hash", models.CharField(max_length=64)),
                (
                    "state",
                    models.CharField(
                        choices=[("in_progress", "In Progress"), ("completed", "Completed")],
                        default="in_progress",
                        max_length=16,
                    ),
                ),
                ("response", models.JSONField(blank=True, null=True)),
                ("completed_at", models.DateTimeField(blank=True, null=True)),
            ],
            options={
                "verbose_name": "Idempotency Key",
                "verbose_name_plural": "Idempotency Keys",
                "ordering": ["-created_at"],
                "constraints": [
                    models.UniqueConstraint(
                        fields=["tenant_id", "scope", "key"],
                        name="idempotency_key_unique",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="Payment",
            fields=[
                *base_fields(),
                (
                    "provider",
                    models.CharField(
                        db_index=True,
                        help_text="Provider tag (phonepe, stripe)",
                        max_length=32,
                    ),
                ),
                (
                    "environment",
                    models.CharField(choices=ENVIRONMENT_CHOICES, default="test", max_length=8),
                ),
                (
                    "provider_payment_id",
                    models.CharField(
                        blank=True,
                        help_text="Gateway payment id (pi_xxx, PhonePe transactionId)",
                        max_length=255,
                        null=True,
                    ),
                ),
                ("provider_order_id", models.CharField(blank=True, max_length=255, null=True)),
                (
                    "provider_transaction_id",
                    models.CharField(
                        blank=True,
                        db_index=True,
                        help_text="Merchant transaction id sent to the gateway",
                        max_length=255,
                        null=True,
                    ),
                ),
                ("provider_reference_id", models.CharField(blank=True, max_length=255, null=True)),
                (
                    "status",
                    django_fsm.FSMField(
                        choices=[
                            ("created", "Created"),
                            ("processing", "Processing"),
                            ("requires_action", "Requires Action"),
                            ("authorized", "Authorized"),
                            ("captured", "Captured"),
                            ("failed", "Failed"),
                            ("cancelled", "Cancelled"),
                        ],
                        db_index=True,
                        default="created",
                        help_text="Current state of the attempt (managed by FSM)",
                        max_length=50,
                        protected=True,
                    ),
                ),
                (
                    "amount_authorized_minor",
                    models.PositiveBigIntegerField(
                        help_text="Amount requested from the buyer in minor units",
                    ),
                ),
                ("amount_captured_minor", models.PositiveBigIntegerField(default=0)),
                (
                    "amount_refunded_minor",
                    models.PositiveBigIntegerField(
                        default=0,
                        help_text="Sum of succeeded refunds, always recomputed from the refund set",
                    ),
                ),
                ("currency", models.CharField(default="INR", max_length=3)),
                (
                    "method_kind",
                    models.CharField(
                        choices=[
                            ("card", "Card"),
                            ("upi", "UPI"),
                            ("netbanking", "Net Banking"),
                            ("wallet", "Wallet"),
                        ],
                        default="upi",
                        max_length=16,
                    ),
                ),
                ("upi_payer_handle", models.CharField(blank=True, default="", max_length=255)),
                ("upi_utr", models.CharField(blank=True, default="", max_length=64)),
                ("upi_instrument_variant", models.CharField(blank=True, default="", max_length=32)),
                ("receipt_url", models.URLField(blank=True, default="", max_length=1024)),
                ("failure_code", models.CharField(blank=True, default="", max_length=64)),
                ("failure_message", models.TextField(blank=True, default="")),
                ("expires_at", models.DateTimeField(blank=True, null=True)),
                ("captured_at", models.DateTimeField(blank=True, null=True)),
                ("failed_at", models.DateTimeField(blank=True, null=True)),
                ("cancelled_at", models.DateTimeField(blank=True, null=True)),
                (
                    "metadata",
                    models.JSONField(
                        blank=True,
                        default=dict,
                        encoder=django.core.serializers.json.DjangoJSONEncoder,
                    ),
                ),
                (
                    "version",
                    models.PositiveIntegerField(default=1, help_text="Incremented on each save"),
                ),
                (
                    "order",
                    models.ForeignKey(
                        help_text="Order this payment attempt belongs to",
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="payments",
                        to="orders.order",
                    ),
                ),
            ],
            options={
                "verbose_name": "Payment",
                "verbose_name_plural": "Payments",
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(fields=["tenant_id", "order"], name="payment_tenant_order_idx"),
                    models.Index(fields=["tenant_id", "status"], name="payment_tenant_status_idx"),
                ],
                "constraints": [
                    models.UniqueConstraint(
                        condition=models.Q(provider_payment_id__isnull=False),
                        fields=["provider", "provider_payment_id"],
                        name="payment_provider_payment_id_unique",
                    ),
                    models.UniqueConstraint(
                        condition=models.Q(method_kind="upi", status="captured"),
                        fields=["order"],
                        name="payment_single_captured_upi_per_order",
                    ),
                    models.CheckConstraint(
                        condition=models.Q(amount_authorized_minor__gt=0),
                        name="payment_amount_authorized_positive",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="Refund",
            fields=[
                *base_fields(),
                ("provider", models.CharField(max_length=32)),
                (
                    "provider_refund_id",
                    models.CharField(
                        blank=True,
                        help_text="Gateway refund id",
                        max_length=255,
                        null=True,
                    ),
                ),
                (
                    "merchant_refund_id",
                    models.CharField(
                        help_text="Refund reference generated by us and sent to the gateway",
                        max_length=255,
                    ),
                ),
                (
                    "amount_minor",
                    models.PositiveBigIntegerField(
                        help_text="Refund amount in smallest currency unit",
                    ),
                ),
                ("currency", models.CharField(default="INR", max_length=3)),
                (
                    "status",
                    django_fsm.FSMField(
                        choices=[
                            ("pending", "Pending"),
                            ("processing", "Processing"),
                            ("succeeded", "Succeeded"),
                            ("failed", "Failed"),
                            ("cancelled", "Cancelled"),
                        ],
                        db_index=True,
                        default="pending",
                        help_text="Current state of the refund (managed by FSM)",
                        max_length=50,
                        protected=True,
                    ),
                ),
                ("upi_utr", models.CharField(blank=True, default="", max_length=64)),
                ("reason", models.TextField(blank=True, default="")),
                ("failure_message", models.TextField(blank=True, default="")),
                ("completed_at", models.DateTimeField(blank=True, null=True)),
                ("failed_at", models.DateTimeField(blank=True, null=True)),
                (
                    "metadata",
                    models.JSONField(
                        blank=True,
                        default=dict,
                        encoder=django.core.serializers.json.DjangoJSONEncoder,
                    ),
                ),
                ("version", models.PositiveIntegerField(default=1)),
                (
                    "payment",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="refunds",
                        to="payments.payment",
                    ),
                ),
            ],
            options={
                "verbose_name": "Refund",
                "verbose_name_plural": "Refunds",
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(fields=["payment", "status"], name="refund_payment_status_idx"),
                ],
                "constraints": [
                    models.UniqueConstraint(
                        condition=models.Q(provider_refund_id__isnull=False),
                        fields=["provider", "provider_refund_id"],
                        name="refund_provider_refund_id_unique",
                    ),
                    models.UniqueConstraint(
                        fields=["payment", "merchant_refund_id"],
                        name="refund_merchant_refund_id_unique",
                    ),
                    models.CheckConstraint(
                        condition=models.Q(amount_minor__gt=0),
                        name="refund_amount_positive",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="PaymentEvent",
            fields=[
                *base_fields(),
                ("order_id", models.UUIDField(blank=True, db_index=True, null=True)),
                ("provider", models.CharField(blank=True, default="", max_length=32)),
                (
                    "channel",
                    models.CharField(
                        choices=[
                            ("audit", "Audit"),
                            ("security", "Security"),
                            ("lifecycle", "Lifecycle"),
                        ],
                        db_index=True,
                        default="audit",
                        max_length=16,
                    ),
                ),
                ("event_type", models.CharField(db_index=True, max_length=100)),
                (
                    "source",
                    models.CharField(
                        choices=[
                            ("api", "API"),
                            ("webhook", "Webhook"),
                            ("poll", "Poll"),
                            ("return", "Browser Return"),
                            ("system", "System"),
                        ],
                        default="system",
                        max_length=16,
                    ),
                ),
                ("status", models.CharField(blank=True, default="", max_length=32)),
                (
                    "payload",
                    models.JSONField(
                        blank=True,
                        default=dict,
                        encoder=django.core.serializers.json.DjangoJSONEncoder,
                    ),
                ),
                ("occurred_at", models.DateTimeField(default=django.utils.timezone.now)),
                (
                    "payment",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="events",
                        to="payments.payment",
                    ),
                ),
            ],
            options={
                "verbose_name": "Payment Event",
                "verbose_name_plural": "Payment Events",
                "ordering": ["-occurred_at"],
                "indexes": [
                    models.Index(
                        fields=["tenant_id", "event_type"], name="payment_event_tenant_type_idx"
                    ),
                    models.Index(fields=["payment", "occurred_at"], name="payment_event_payment_idx"),
                ],
            },
        ),
        migrations.CreateModel(
            name="WebhookInbox",
            fields=[
                *base_fields(),
                ("provider", models.CharField(max_length=32)),
                ("dedupe_key", models.CharField(max_length=64)),
                ("verified", models.BooleanField(db_index=True, default=False)),
                ("attempts", models.PositiveIntegerField(default=1)),
                ("headers", models.JSONField(blank=True, default=dict)),
                ("body", models.TextField(blank=True, default="")),
                ("identifiers", models.JSONField(blank=True, default=dict)),
                ("error", models.TextField(blank=True, default="")),
                ("processed_at", models.DateTimeField(blank=True, db_index=True, null=True)),
            ],
            options={
                "verbose_name": "Webhook Inbox Entry",
                "verbose_name_plural": "Webhook Inbox",
                "ordering": ["-created_at"],
                "constraints": [
                    models.UniqueConstraint(
                        fields=["provider", "dedupe_key"],
                        name="webhook_inbox_dedupe_unique",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="PollingJob",
            fields=[
                *base_fields(),
                ("merchant_transaction_id", models.CharField(blank=True, default="", max_length=255)),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("pending", "Pending"),
                            ("completed", "Completed"),
                            ("failed", "Failed"),
                            ("expired", "Expired"),
                        ],
                        db_index=True,
                        default="pending",
                        max_length=16,
                    ),
                ),
                ("attempt", models.PositiveIntegerField(default=0)),
                ("next_poll_at", models.DateTimeField(db_index=True)),
                ("expire_at", models.DateTimeField()),
                ("last_polled_at", models.DateTimeField(blank=True, null=True)),
                ("last_status", models.CharField(blank=True, default="", max_length=32)),
                ("last_response_code", models.CharField(blank=True, default="", max_length=64)),
                ("last_error", models.TextField(blank=True, default="")),
                ("completed_at", models.DateTimeField(blank=True, null=True)),
                (
                    "order",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="polling_jobs",
                        to="orders.order",
                    ),
                ),
                (
                    "payment",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="polling_jobs",
                        to="payments.payment",
                    ),
                ),
            ],
            options={
                "verbose_name": "Polling Job",
                "verbose_name_plural": "Polling Jobs",
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(fields=["status", "next_poll_at"], name="polling_job_due_idx"),
                ],
                "constraints": [
                    models.UniqueConstraint(
                        fields=["tenant_id", "payment"],
                        name="polling_job_payment_unique",
                    ),
                ],
            },
        ),
    ]
