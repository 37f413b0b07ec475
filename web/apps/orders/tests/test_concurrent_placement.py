"""Concurrent placements competing for the same stock.

Runs on every backend: PostgreSQL serializes the placements on the product
row lock, SQLite on the database write lock taken by ``BEGIN IMMEDIATE``.
"""
import threading
from decimal import Decimal

import pytest
from django.db import connections

from apps.orders import providers
from apps.orders.domain import Committed, DraftOrder, InsufficientStock, LineItem
from apps.orders.models import BranchModel, OrderModel, ProductModel


def _place_concurrently(drafts):
    outcomes = [None] * len(drafts)
    barrier = threading.Barrier(len(drafts))

    def worker(i):
        try:
            barrier.wait()
            outcomes[i] = providers.get_order_service().place_order(drafts[i])
        finally:
            connections.close_all()

    threads = [threading.Thread(target=worker, args=(i,)) for i in range(len(drafts))]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    return outcomes


@pytest.mark.django_db(transaction=True)
def test_two_placements_cannot_oversell():
    branch = BranchModel.objects.create(name="Main street")
    product = ProductModel.objects.create(name="Scarce", price=Decimal("4.00"), available=5)
    drafts = [
        DraftOrder(id=None, branch_id=branch.pk, name=f"order {q}", items=[LineItem(product.pk, q, Decimal("4.00"))])
        for q in (3, 4)
    ]

    outcomes = _place_concurrently(drafts)

    assert sum(isinstance(o, Committed) for o in outcomes) == 1
    assert sum(isinstance(o, InsufficientStock) for o in outcomes) == 1
    rejected = next(o for o in outcomes if isinstance(o, InsufficientStock))
    assert rejected.payment_reversed is True

    committed = next(o for o in outcomes if isinstance(o, Committed))
    product.refresh_from_db()
    assert product.available == 5 - committed.order.items[0].quantity
    assert OrderModel.objects.count() == 1
