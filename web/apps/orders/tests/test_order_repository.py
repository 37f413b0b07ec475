"""Tests for the Django order repository."""
from datetime import timedelta
from decimal import Decimal

import pytest
from django.db import connection
from django.test.utils import CaptureQueriesContext

from apps.orders.domain import DraftOrder, LineItem
from apps.orders.models import OrderItemModel, OrderModel
from apps.orders.repository import OrderRepository

pytestmark = pytest.mark.django_db


def test_create_only_inserts(branch, products):
    order = DraftOrder(
        id=None,
        branch_id=branch.pk,
        name="Table 1",
        items=[LineItem(products["widget"].pk, 2, Decimal("10.00"))],
        total=Decimal("20.00"),
    )
    with CaptureQueriesContext(connection) as ctx:
        oid = OrderRepository().create(order)

    statements = [q["sql"].lstrip().split()[0].upper() for q in ctx.captured_queries]
    assert statements == ["INSERT", "INSERT"]
    assert OrderModel.objects.get(pk=oid).total_amount == Decimal("20.00")
    assert OrderItemModel.objects.filter(order_id=oid).count() == 1


def test_orders_are_listed_newest_first(branch):
    first = OrderModel.objects.create(branch=branch, name="first")
    second = OrderModel.objects.create(branch=branch, name="second")
    OrderModel.objects.filter(pk=first.pk).update(created_at=second.created_at - timedelta(minutes=1))
    assert list(OrderModel.objects.values_list("pk", flat=True)) == [second.pk, first.pk]


def test_get_returns_full_aggregate(branch, products):
    order = DraftOrder(
        id=None,
        branch_id=branch.pk,
        name="Table 2",
        items=[LineItem(products["gadget"].pk, 3, Decimal("2.50"))],
        total=Decimal("7.50"),
    )
    oid = OrderRepository().create(order)
    loaded = OrderRepository().get(oid)
    assert loaded.items == [LineItem(products["gadget"].pk, 3, Decimal("2.50"))]
    assert loaded.total == Decimal("7.50")
