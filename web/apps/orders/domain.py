"""Domain models, ports and service for orders.

This module contains the value objects used to place an order, the typed
placement outcomes returned to callers, protocol definitions (ports) for
the external dependencies (payments, inventory, persistence, unit of
work), and the domain service that orchestrates placing an order as one
atomic unit of work.
"""

import logging
from collections import Counter
from contextlib import AbstractContextManager
from dataclasses import dataclass, field, replace
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
from typing import Iterable, List, Mapping, Optional, Protocol, Tuple, Union

logger = logging.getLogger("orders.service")

CENT = Decimal("0.01")


def round_money(value: Decimal) -> Decimal:
    """Quantize a monetary value to 2 decimals using ROUND_HALF_UP."""
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def to_cents(amount: Decimal) -> int:
    """Convert a monetary amount to integer minor units (cents)."""
    return int((Decimal(amount) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


# ---- Enums ----
class PaymentCode(str, Enum):
    """Reason attached to a failed ``PaymentResult``."""

    DECLINED = "DECLINED"
    INVALID_AMOUNT = "INVALID_AMOUNT"
    UNAVAILABLE = "UNAVAILABLE"


class InventoryStatus(str, Enum):
    OK = "OK"
    INSUFFICIENT_STOCK = "INSUFFICIENT_STOCK"
    FAILED = "FAILED"


# ---- Entities / value objects ----
@dataclass(frozen=True)
class LineItem:
    """A single line item in an order.

    Attributes:
        product_id: Identifier of the referenced product.
        quantity: Number of units requested (must be > 0).
        unit_price: Price per unit snapshotted when the order is placed.
    """

    product_id: int
    quantity: int
    unit_price: Decimal = Decimal("0.00")

    @property
    def subtotal(self) -> Decimal:
        return Decimal(self.unit_price) * int(self.quantity)


@dataclass
class DraftOrder:
    """Order aggregate handed to the orchestrator.

    Attributes:
        id: Persistent identifier, or None for a new order.
        branch_id: Branch (store) the order belongs to.
        name: Free-form order label.
        items: Complete, fully materialized list of line items.
        total: Order total. Any client-supplied value is overwritten by
            the recomputed total before payment.
        currency: ISO currency code.
        transaction_id: Payment correlation id once authorized.
    """

    id: Optional[object]
    branch_id: Optional[int]
    name: str
    items: List[LineItem] = field(default_factory=list)
    total: Decimal = Decimal("0.00")
    currency: str = "EUR"
    transaction_id: Optional[str] = None


@dataclass(frozen=True)
class PaymentResult:
    """Immutable outcome of a payment gateway call.

    Callers branch on ``success`` and, for failures, on ``code`` to tell a
    business decline from an unavailable gateway.
    """

    success: bool
    message: Optional[str] = None
    transaction_id: Optional[str] = None
    code: Optional[PaymentCode] = None

    @classmethod
    def succeeded(cls, transaction_id: str, message: Optional[str] = None) -> "PaymentResult":
        return cls(True, message=message, transaction_id=transaction_id)

    @classmethod
    def failed(
        cls,
        message: Optional[str] = None,
        code: PaymentCode = PaymentCode.DECLINED,
        transaction_id: Optional[str] = None,
    ) -> "PaymentResult":
        return cls(False, message=message, transaction_id=transaction_id, code=code)


@dataclass(frozen=True)
class StockViolation:
    """One reason a stock demand cannot be satisfied.

    ``reason`` is ``"not_found"`` (``available``/``requested`` may be None)
    or ``"insufficient"``.
    """

    product_id: int
    reason: str
    available: Optional[int] = None
    requested: Optional[int] = None

    def as_dict(self) -> dict:
        data = {"product_id": self.product_id, "reason": self.reason}
        if self.available is not None:
            data["available"] = self.available
        if self.requested is not None:
            data["requested"] = self.requested
        return data


@dataclass(frozen=True)
class InventoryResult:
    status: InventoryStatus
    violations: Tuple[StockViolation, ...] = ()
    message: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status is InventoryStatus.OK


# ---- Placement outcomes ----
class PlacementOutcome:
    """Base class for the result of ``OrderService.place_order``."""

    committed = False


@dataclass(frozen=True)
class Committed(PlacementOutcome):
    order: DraftOrder
    committed = True


@dataclass(frozen=True)
class Declined(PlacementOutcome):
    reason: Optional[str]
    code: PaymentCode = PaymentCode.DECLINED


@dataclass(frozen=True)
class InsufficientStock(PlacementOutcome):
    violations: Tuple[StockViolation, ...]
    payment_reversed: bool = False


@dataclass(frozen=True)
class Failed(PlacementOutcome):
    error: BaseException
    payment_reversed: bool = False


class OrderNotFound(LookupError):
    """Raised when an update targets an order that does not exist."""


class PaymentUnavailable(RuntimeError):
    """Payment gateway could not be reached or answered with an error."""


class InventoryUnavailable(RuntimeError):
    """Stock ledger update failed for infrastructure reasons."""


# ---- Helpers ----
StockDemand = Mapping[object, int]


def calculate_total(items: Iterable[LineItem]) -> Decimal:
    """Recompute an order total from its line items (ROUND_HALF_UP, 2dp)."""
    return round_money(sum((it.subtotal for it in items), Decimal("0")))


def build_stock_demand(items: Iterable[LineItem]) -> dict:
    """Aggregate line items into a per-product quantity demand.

    Duplicate product references are summed, so a product appearing on
    several lines is decremented once with the combined quantity.
    """
    demand: Counter = Counter()
    for it in items:
        demand[it.product_id] += int(it.quantity)
    return dict(demand)


def _item_signature(items: Iterable[LineItem]) -> Counter:
    return Counter((it.product_id, int(it.quantity), round_money(it.unit_price)) for it in items)


# ---- Ports (DIP) ----
class InventoryPort(Protocol):
    """Port describing the stock ledger operations used by the domain."""

    def update_inventory_batch(
        self, demand: Union[StockDemand, Iterable[Tuple[object, int]]]
    ) -> InventoryResult:
        """Validate and decrement stock for the whole demand, or nothing."""
        raise NotImplementedError()


class PaymentsPort(Protocol):
    """Port describing payment operations used by the domain.

    Implementations never raise: every failure is reported as a failed
    ``PaymentResult``.
    """

    def process_payment(self, amount: Decimal) -> PaymentResult:
        raise NotImplementedError()

    def refund(self, transaction_id: str, amount: Decimal) -> PaymentResult:
        """Reverse a previously authorized payment (compensating action)."""
        raise NotImplementedError()


class OrderStorePort(Protocol):
    """Persistence port for fully materialized order aggregates."""

    def get_for_update(self, order_id) -> Optional[DraftOrder]:
        raise NotImplementedError()

    def create(self, order: DraftOrder):
        raise NotImplementedError()

    def replace(self, order: DraftOrder) -> None:
        raise NotImplementedError()


class UnitOfWorkPort(Protocol):
    """Transaction boundary used by the orchestrator."""

    def atomic(self) -> AbstractContextManager:
        raise NotImplementedError()

    def set_rollback(self) -> None:
        """Mark the current unit of work to roll back on exit."""
        raise NotImplementedError()


@dataclass
class _Attempt:
    """Per-call scratch state, used to decide on compensation."""

    payment: Optional[PaymentResult] = None
    total: Decimal = Decimal("0.00")

    @property
    def charged(self) -> bool:
        return bool(self.payment and self.payment.success)


# ---- Domain service ----
class OrderService:
    """Domain service responsible for placing orders.

    Pricing, payment authorization, the stock decrement and persistence
    run inside one unit of work. Business failures come back as typed
    outcomes; unexpected errors are rolled back, logged and returned as
    ``Failed``. A payment authorized during an attempt that does not
    commit is refunded after the rollback.
    """

    def __init__(
        self,
        inventory: InventoryPort,
        payments: PaymentsPort,
        orders: OrderStorePort,
        unit_of_work: UnitOfWorkPort,
        log: Optional[logging.Logger] = None,
    ):
        """Initialize the service with required dependencies.

        Args:
            inventory: InventoryPort used to decrement stock.
            payments: PaymentsPort used to authorize and refund payments.
            orders: OrderStorePort used to load and persist orders.
            unit_of_work: Transaction boundary wrapping one placement.
            log: Logger for placement events (module logger by default).
        """
        self.inventory = inventory
        self.payments = payments
        self.orders = orders
        self.unit_of_work = unit_of_work
        self.log = log or logger

    def place_order(
        self,
        order: DraftOrder,
        is_update: bool = False,
        items_changed: Optional[bool] = None,
    ) -> PlacementOutcome:
        """Place (or update) an order atomically.

        Steps: recompute the total, authorize payment, decrement stock,
        persist, commit. Orders with no items or a zero total skip payment
        and stock. On update, payment and stock only run again when the
        item set changed (``items_changed``, or a diff against the
        persisted items when it is None).

        Args:
            order: Complete draft order. Its ``total`` is recomputed.
            is_update: Whether ``order.id`` refers to an existing order.
            items_changed: Explicit change flag for updates.

        Returns:
            PlacementOutcome: ``Committed``, ``Declined``,
            ``InsufficientStock`` or ``Failed``.
        """
        attempt = _Attempt()
        try:
            with self.unit_of_work.atomic():
                outcome = self._run(order, is_update, items_changed, attempt)
                if not outcome.committed:
                    self.unit_of_work.set_rollback()
        except Exception as exc:
            self.log.error(
                "order placement failed",
                exc_info=True,
                extra={"order_id": str(order.id) if order.id else None, "total": str(attempt.total)},
            )
            outcome = Failed(error=exc)

        if not outcome.committed and attempt.charged:
            outcome = self._compensate(attempt, outcome)
        return outcome

    def _run(
        self,
        order: DraftOrder,
        is_update: bool,
        items_changed: Optional[bool],
        attempt: _Attempt,
    ) -> PlacementOutcome:
        move_stock = True
        if is_update:
            current = self.orders.get_for_update(order.id)
            if current is None:
                raise OrderNotFound(str(order.id))
            if items_changed is None:
                items_changed = _item_signature(current.items) != _item_signature(order.items)
            order.transaction_id = current.transaction_id
            if not items_changed:
                move_stock = False

        # 1) Price server-side; a client total is never trusted
        order.total = calculate_total(order.items)
        attempt.total = order.total

        if not order.items or order.total == 0:
            self.log.info(
                "order has no items or zero total; skipping payment and inventory",
                extra={"order_id": str(order.id) if order.id else None},
            )
        elif move_stock:
            # 2) Authorize payment
            payment = self.payments.process_payment(order.total)
            attempt.payment = payment
            if not payment.success:
                if payment.code is PaymentCode.UNAVAILABLE:
                    self.log.error(
                        "payment gateway unavailable",
                        extra={"total": str(order.total), "payment_message": payment.message},
                    )
                    return Failed(error=PaymentUnavailable(payment.message or "PAYMENT_UNAVAILABLE"))
                self.log.warning(
                    "payment declined during order placement",
                    extra={"total": str(order.total), "payment_message": payment.message},
                )
                return Declined(reason=payment.message, code=payment.code or PaymentCode.DECLINED)
            order.transaction_id = payment.transaction_id

            # 3) Decrement stock for the aggregated demand
            result = self.inventory.update_inventory_batch(build_stock_demand(order.items))
            if result.status is InventoryStatus.INSUFFICIENT_STOCK:
                self.log.warning(
                    "insufficient stock after payment",
                    extra={"violations": [v.as_dict() for v in result.violations]},
                )
                return InsufficientStock(violations=tuple(result.violations))
            if not result.ok:
                return Failed(error=InventoryUnavailable(result.message or "INVENTORY_FAILED"))

        # 4) Persist
        if is_update:
            self.orders.replace(order)
        else:
            order.id = self.orders.create(order)

        self.log.info(
            "order processed successfully",
            extra={"order_id": str(order.id), "total": str(order.total), "is_update": is_update},
        )
        return Committed(order=order)

    def _compensate(self, attempt: _Attempt, outcome: PlacementOutcome) -> PlacementOutcome:
        tx_id = attempt.payment.transaction_id
        try:
            refund = self.payments.refund(tx_id, attempt.total)
        except Exception:
            self.log.error("payment refund raised", exc_info=True, extra={"transaction_id": tx_id})
            refund = PaymentResult.failed("REFUND_ERROR", code=PaymentCode.UNAVAILABLE)

        if refund.success:
            self.log.info("payment reversed after rollback", extra={"transaction_id": tx_id})
        else:
            self.log.error(
                "payment reversal failed; manual reconciliation required",
                extra={"transaction_id": tx_id, "total": str(attempt.total), "refund_message": refund.message},
            )
        if isinstance(outcome, (InsufficientStock, Failed)):
            return replace(outcome, payment_reversed=refund.success)
        return outcome
