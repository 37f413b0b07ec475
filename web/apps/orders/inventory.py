"""Stock ledger manager backed by the Django ORM.

Decrements product stock for a whole order in one shot. The rows named by
the demand are locked with ``SELECT ... FOR UPDATE`` (in ascending id order)
and validated, then decremented by a single multi-row ``UPDATE`` while the
same transaction still holds the locks. Two placements competing for the
same product are serialized, so neither can decrement stale quantities.
"""

import logging
from collections.abc import Mapping
from typing import Iterable, Tuple, Union

from django.db import DatabaseError, transaction
from django.db.models import Case, F, IntegerField, Value, When
from django.db.models.functions import Greatest

from .domain import InventoryPort, InventoryResult, InventoryStatus, StockDemand, StockViolation
from .models import ProductModel

logger = logging.getLogger("orders.inventory")


def normalize_demand(demand: Union[StockDemand, Iterable[Tuple[object, int]]]) -> dict[int, int]:
    """Drop malformed entries and sum duplicates.

    Entries whose product id is not a positive integer, or whose quantity is
    not a positive integer, are logged and skipped; they never fail the batch.
    """
    pairs = demand.items() if isinstance(demand, Mapping) else demand
    qty_by_product: dict[int, int] = {}
    for product_id, quantity in pairs:
        try:
            qty = int(quantity)
        except (TypeError, ValueError):
            qty = 0
        valid_id = isinstance(product_id, int) and not isinstance(product_id, bool) and product_id > 0
        if not valid_id or qty <= 0:
            logger.warning(
                "skipping invalid inventory entry",
                extra={"product_id": product_id, "quantity": quantity},
            )
            continue
        qty_by_product[product_id] = qty_by_product.get(product_id, 0) + qty
    return qty_by_product


class InventoryManager(InventoryPort):
    """Validates and atomically decrements stock for a batch of demands."""

    def __init__(self, using: str | None = None):
        self.using = using

    def update_inventory_batch(
        self, demand: Union[StockDemand, Iterable[Tuple[object, int]]]
    ) -> InventoryResult:
        """Decrement stock for every product in ``demand``, or for none.

        Runs inside a savepoint of the caller's transaction (or its own
        transaction when called standalone), so row locks are held until
        the enclosing unit of work commits or rolls back.

        Args:
            demand: Mapping of product id to quantity, or an iterable of
                ``(product_id, quantity)`` pairs.

        Returns:
            InventoryResult: ``OK`` when all rows were decremented (or the
            demand was empty), ``INSUFFICIENT_STOCK`` with every violation
            found, or ``FAILED`` on a storage or unexpected error.
        """
        qty_by_product = normalize_demand(demand)
        if not qty_by_product:
            return InventoryResult(InventoryStatus.OK)

        try:
            ids = sorted(qty_by_product)
            with transaction.atomic(using=self.using):
                rows = (
                    ProductModel.objects.using(self.using)
                    .select_for_update()
                    .filter(pk__in=ids)
                    .order_by("pk")
                    .values_list("pk", "available")
                )
                available_by_id = dict(rows)

                violations = self._violations(qty_by_product, available_by_id)
                if violations:
                    logger.warning(
                        "insufficient stock for some items",
                        extra={"problems": [v.as_dict() for v in violations]},
                    )
                    transaction.set_rollback(True, using=self.using)
                    return InventoryResult(InventoryStatus.INSUFFICIENT_STOCK, violations=tuple(violations))

                affected = (
                    ProductModel.objects.using(self.using)
                    .filter(pk__in=ids)
                    .update(available=self._decrement_expression(qty_by_product))
                )
        except DatabaseError as exc:
            logger.error("bulk inventory update failed", exc_info=True)
            return InventoryResult(InventoryStatus.FAILED, message=str(exc))
        except Exception as exc:
            logger.error("unexpected inventory error", exc_info=True)
            return InventoryResult(InventoryStatus.FAILED, message=str(exc))

        logger.info(
            "bulk inventory update executed",
            extra={"updated_rows": affected, "items_count": len(qty_by_product)},
        )
        return InventoryResult(InventoryStatus.OK)

    @staticmethod
    def _violations(qty_by_product: dict[int, int], available_by_id: dict[int, int]) -> list[StockViolation]:
        violations = []
        for pid in sorted(qty_by_product):
            requested = qty_by_product[pid]
            if pid not in available_by_id:
                violations.append(StockViolation(product_id=pid, reason="not_found", requested=requested))
                continue
            available = int(available_by_id[pid])
            if available < requested:
                violations.append(
                    StockViolation(product_id=pid, reason="insufficient", available=available, requested=requested)
                )
        return violations

    @staticmethod
    def _decrement_expression(qty_by_product: dict[int, int]) -> Case:
        # available = CASE WHEN id = ? THEN GREATEST(available - ?, 0) ... ELSE available END
        whens = [
            When(pk=pid, then=Greatest(F("available") - Value(qty), Value(0)))
            for pid, qty in sorted(qty_by_product.items())
        ]
        return Case(*whens, default=F("available"), output_field=IntegerField())
