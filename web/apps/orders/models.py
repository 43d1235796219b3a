import uuid
from django.db import models, transaction


class OrderModel(models.Model):
    # UUID PK expuesto en API
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    # Contador incremental interno
    internal_id = models.BigIntegerField(unique=True, editable=False, null=True)

    class Status(models.TextChoices):
        PENDING = "pending"
        PREPARING = "preparing"
        ON_THE_WAY = "on-the-way"
        DELIVERED = "delivered"

    class PaymentMethod(models.TextChoices):
        CASH_ON_DELIVERY = "cash_on_delivery"
        CARD = "card"

    user_id = models.CharField(max_length=64, db_index=True)
    items = models.JSONField(default=list)
    total_amount = models.DecimalField(max_digits=12, decimal_places=2)
    address = models.JSONField(default=dict)
    payment_method = models.CharField(max_length=32, choices=PaymentMethod.choices)
    status = models.CharField(max_length=32, choices=Status.choices, default=Status.PENDING)
    coupon_id = models.CharField(max_length=64, null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = "orders"
        ordering = ["-created_at", "-internal_id"]

    def save(self, *args, **kwargs):
        # Assign incremental `internal_id` only on creation
        if self.internal_id is None:
            with transaction.atomic():
                last = (
                    OrderModel.objects.select_for_update()
                    .order_by("-internal_id")
                    .first()
                )
                self.internal_id = 1 if not last or last.internal_id is None else last.internal_id + 1

        super().save(*args, **kwargs)


class CouponModel(models.Model):
    """Coupon records when the storefront hosts the coupon store itself."""

    class DiscountType(models.TextChoices):
        FLAT = "flat"
        PERCENTAGE = "percentage"
        FREE_ITEM = "free_item"

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    code = models.CharField(max_length=64, unique=True)
    assigned_to = models.CharField(max_length=64)
    discount_type = models.CharField(max_length=16, choices=DiscountType.choices)
    value = models.DecimalField(max_digits=12, decimal_places=4)
    expiry_date = models.DateTimeField()
    is_used = models.BooleanField(default=False)
    # Order that consumed the coupon; lets that order repeat its consume
    consumed_by = models.CharField(max_length=64, null=True, blank=True)
    prize_name = models.CharField(max_length=128, blank=True, default="")
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = "coupons"


class IdempotencyKey(models.Model):
    key = models.CharField(max_length=200, primary_key=True)
    request_hash = models.CharField(max_length=64)
    response_status = models.PositiveSmallIntegerField(default=0)
    response_body = models.JSONField(default=dict)
    order_id = models.UUIDField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = "idempotency_keys"
