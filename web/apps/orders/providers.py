"""Service provider helpers for wiring OrderService with ports.

This module exposes a small factory function `get_order_service` that
returns a configured `OrderService` instance. The stock ledger, order
repository and unit of work are always the Django-backed implementations,
since they must share the request's database transaction. The payments
port is the HTTP client when ``settings.USE_HTTP_ADAPTERS`` is truthy and
the in-process stub otherwise (tests and local development).
"""

from typing import Optional

from django.conf import settings

from .adapters import PaymentsStub
from .domain import OrderService
from .http_adapters import HttpPaymentsClient
from .inventory import InventoryManager
from .repository import DjangoUnitOfWork, OrderRepository


def get_payments(idempotency_key: Optional[str] = None):
    if getattr(settings, "USE_HTTP_ADAPTERS", True):
        return HttpPaymentsClient(idempotency_key=idempotency_key)
    return PaymentsStub()


def get_order_service(idempotency_key: Optional[str] = None) -> OrderService:
    """Return a configured OrderService instance.

    Args:
        idempotency_key: Inbound ``Idempotency-Key``, forwarded to the
            payments service when HTTP adapters are enabled.

    Returns:
        OrderService: A service instance with appropriate ports.
    """
    return OrderService(
        inventory=InventoryManager(),
        payments=get_payments(idempotency_key),
        orders=OrderRepository(),
        unit_of_work=DjangoUnitOfWork(),
    )
