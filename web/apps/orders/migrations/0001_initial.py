import uuid

from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name="OrderModel",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("internal_id", models.BigIntegerField(editable=False, null=True, unique=True)),
                ("user_id", models.CharField(db_index=True, max_length=64)),
                ("items", models.JSONField(default=list)),
                ("total_amount", models.DecimalField(decimal_places=2, max_digits=12)),
                ("address", models.JSONField(default=dict)),
                (
                    "payment_method",
                    models.CharField(
                        choices=[("cash_on_delivery", "Cash On Delivery"), ("card", "Card")],
                        max_length=32,
                    ),
                ),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("pending", "Pending"),
                            ("preparing", "Preparing"),
                            ("on-the-way", "On The Way"),
                            ("delivered", "Delivered"),
                        ],
                        default="pending",
                        max_length=32,
                    ),
                ),
                ("coupon_id", models.CharField(blank=True, max_length=64, null=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
            ],
            options={
                "db_table": "orders",
                "ordering": ["-created_at", "-internal_id"],
            },
        ),
        migrations.CreateModel(
            name="CouponModel",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("code", models.CharField(max_length=64, unique=True)),
                ("assigned_to", models.CharField(max_length=64)),
                (
                    "discount_type",
                    models.CharField(
                        choices=[("flat", "Flat"), ("percentage", "Percentage"), ("free_item", "Free Item")],
                        max_length=16,
                    ),
                ),
                ("value", models.DecimalField(decimal_places=4, max_digits=12)),
                ("expiry_date", models.DateTimeField()),
                ("is_used", models.BooleanField(default=False)),
                ("consumed_by", models.CharField(blank=True, max_length=64, null=True)),
                ("prize_name", models.CharField(blank=True, default="", max_length=128)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
            ],
            options={
                "db_table": "coupons",
            },
        ),
        migrations.CreateModel(
            name="IdempotencyKey",
            fields=[
                ("key", models.CharField(max_length=200, primary_key=True, serialize=False)),
                ("request_hash", models.CharField(max_length=64)),
                ("response_status", models.PositiveSmallIntegerField(default=0)),
                ("response_body", models.JSONField(default=dict)),
                ("order_id", models.UUIDField(blank=True, null=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
            ],
            options={
                "db_table": "idempotency_keys",
            },
        ),
    ]
