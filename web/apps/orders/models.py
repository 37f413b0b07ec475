import uuid
from decimal import Decimal

from django.core.validators import MinValueValidator
from django.db import models


class BranchModel(models.Model):
    name = models.CharField(max_length=255)

    class Meta:
        db_table = "branches"

    def __str__(self) -> str:
        return self.name


class ProductModel(models.Model):
    """Catalog product and its stock ledger row.

    ``available`` is only decremented through ``InventoryManager``.
    """

    name = models.CharField(max_length=255)
    price = models.DecimalField(
        max_digits=10, decimal_places=2, default=Decimal("0.00"), validators=[MinValueValidator(0)]
    )
    available = models.IntegerField(default=0, validators=[MinValueValidator(0)])

    class Meta:
        db_table = "products"
        constraints = [
            models.CheckConstraint(condition=models.Q(available__gte=0), name="products_available_gte_0"),
        ]

    def __str__(self) -> str:
        return f"{self.name} ({self.available})"


class OrderModel(models.Model):
    # UUID PK exposed by the API
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    branch = models.ForeignKey(BranchModel, on_delete=models.PROTECT, related_name="orders")
    name = models.CharField(max_length=255)
    total_amount = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal("0.00"))
    currency = models.CharField(max_length=3, default="EUR")
    transaction_id = models.UUIDField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "orders"
        ordering = ["-created_at"]


class OrderItemModel(models.Model):
    order = models.ForeignKey(OrderModel, on_delete=models.CASCADE, related_name="items")
    product = models.ForeignKey(ProductModel, on_delete=models.PROTECT, related_name="order_items")
    quantity = models.PositiveIntegerField(validators=[MinValueValidator(1)])
    price = models.DecimalField(max_digits=10, decimal_places=2, default=Decimal("0.00"))

    class Meta:
        db_table = "order_items"
        ordering = ["id"]


class IdempotencyKey(models.Model):
    """Stored response for a request made with an ``Idempotency-Key``."""

    key = models.CharField(max_length=200, primary_key=True)
    request_hash = models.CharField(max_length=64)
    response_status = models.IntegerField(default=0)
    response_body = models.JSONField(default=dict)
    order = models.ForeignKey(OrderModel, on_delete=models.SET_NULL, null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = "idempotency_keys"
