"""Repository layer for persisting orders.

This module contains the persistence and transaction adapters used by the
order service. It keeps a thin interface so the domain layer is not coupled
to Django ORM details: orders go in and come out as fully materialized
``DraftOrder`` aggregates, never as lazily loaded model instances.
"""

from contextlib import AbstractContextManager
from decimal import Decimal
from typing import Iterable, Optional

from django.db import transaction
from django.utils import timezone

from .domain import DraftOrder, LineItem, OrderStorePort, UnitOfWorkPort
from .models import OrderItemModel, OrderModel, ProductModel


class DjangoUnitOfWork(UnitOfWorkPort):
    """Unit of work mapped onto ``django.db.transaction.atomic``."""

    def __init__(self, using: Optional[str] = None):
        self.using = using

    def atomic(self) -> AbstractContextManager:
        return transaction.atomic(using=self.using)

    def set_rollback(self) -> None:
        transaction.set_rollback(True, using=self.using)


def to_domain(obj: OrderModel) -> DraftOrder:
    """Map an ``OrderModel`` and all of its items to a ``DraftOrder``."""
    items = [
        LineItem(product_id=it.product_id, quantity=it.quantity, unit_price=it.price)
        for it in obj.items.all()
    ]
    return DraftOrder(
        id=obj.id,
        branch_id=obj.branch_id,
        name=obj.name,
        items=items,
        total=obj.total_amount,
        currency=obj.currency,
        transaction_id=str(obj.transaction_id) if obj.transaction_id else None,
    )


class OrderRepository(OrderStorePort):
    """Repository that persists Order aggregates using Django ORM.

    The repository exposes a minimal API that returns primitive values
    (for example the persisted object's id) or domain objects, keeping
    domain code decoupled from ORM types.
    """

    def get(self, order_id) -> Optional[DraftOrder]:
        obj = OrderModel.objects.prefetch_related("items").filter(pk=order_id).first()
        return to_domain(obj) if obj else None

    def get_for_update(self, order_id) -> Optional[DraftOrder]:
        """Load an order with its items, locking the order row.

        Must be called inside a transaction; the lock is held until it ends.
        """
        obj = OrderModel.objects.select_for_update().filter(pk=order_id).first()
        return to_domain(obj) if obj else None

    def create(self, order: DraftOrder):
        """Persist a new order and its line items.

        Args:
            order: Domain ``DraftOrder`` with its recomputed total.

        Returns:
            The persisted ``OrderModel`` primary key (UUID).
        """
        obj = OrderModel.objects.create(
            branch_id=order.branch_id,
            name=order.name,
            total_amount=order.total,
            currency=order.currency,
            transaction_id=order.transaction_id,
        )
        self._create_items(obj.id, order.items)
        return obj.id  # <-- UUID

    def replace(self, order: DraftOrder) -> None:
        """Update order fields and replace the full line-item set."""
        OrderModel.objects.filter(pk=order.id).update(
            name=order.name,
            total_amount=order.total,
            currency=order.currency,
            transaction_id=order.transaction_id,
            updated_at=timezone.now(),
        )
        OrderItemModel.objects.filter(order_id=order.id).delete()
        self._create_items(order.id, order.items)

    def delete(self, order_id) -> bool:
        deleted, _ = OrderModel.objects.filter(pk=order_id).delete()
        return deleted > 0

    @staticmethod
    def _create_items(order_id, items: Iterable[LineItem]) -> None:
        OrderItemModel.objects.bulk_create(
            [
                OrderItemModel(order_id=order_id, product_id=it.product_id, quantity=it.quantity, price=it.unit_price)
                for it in items
            ]
        )


class ProductRepository:
    """Read access to catalog prices used to price new line items."""

    def prices(self, product_ids: Iterable[int]) -> dict[int, Decimal]:
        ids = set(product_ids)
        return dict(ProductModel.objects.filter(pk__in=ids).values_list("pk", "price"))
