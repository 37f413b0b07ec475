"""Tests for RevenueManager aggregation, date windows and caching."""
from datetime import date, datetime, timezone as dt_timezone
from decimal import Decimal

import pytest

from apps.orders.models import OrderItemModel, OrderModel
from apps.reports.revenue import DjangoCache, RevenueManager

pytestmark = pytest.mark.django_db


class FixedClock:
    def __init__(self, day):
        self.day = day

    def today(self):
        return self.day


class RecordingCache:
    def __init__(self):
        self.data = {}
        self.computed = []

    def get_or_set(self, key, compute, ttl):
        if key not in self.data:
            self.computed.append(key)
            self.data[key] = compute()
        return self.data[key]


@pytest.fixture()
def order_on(branch, products):
    def make(day, *lines):
        order = OrderModel.objects.create(branch=branch, name=str(day), total_amount=Decimal("0"))
        for product, qty, price in lines:
            OrderItemModel.objects.create(order=order, product=product, quantity=qty, price=Decimal(price))
        stamp = datetime(day.year, day.month, day.day, 12, 0, tzinfo=dt_timezone.utc)
        OrderModel.objects.filter(pk=order.pk).update(created_at=stamp)
        return order

    return make


def test_total_revenue_sums_quantity_times_price(order_on, products):
    w, g = products["widget"], products["gadget"]
    order_on(date(2025, 3, 3), (w, 2, "10.00"), (g, 1, "2.50"))
    order_on(date(2025, 4, 1), (g, 4, "2.25"))
    assert RevenueManager(cache=RecordingCache()).total_revenue() == Decimal("31.50")


def test_revenue_between_is_inclusive(order_on, products):
    w = products["widget"]
    order_on(date(2025, 3, 1), (w, 1, "1.00"))
    order_on(date(2025, 3, 5), (w, 1, "2.00"))
    order_on(date(2025, 3, 6), (w, 1, "4.00"))
    manager = RevenueManager(cache=RecordingCache())
    assert manager.revenue_between(date(2025, 3, 1), date(2025, 3, 5)) == Decimal("3.00")
    assert manager.revenue_between("2025-03-06", "2025-03-06") == Decimal("4.00")


def test_empty_range_is_zero():
    assert RevenueManager(cache=RecordingCache()).revenue_between("2020-01-01", "2020-01-31") == Decimal("0.00")


def test_end_before_start_is_rejected():
    with pytest.raises(ValueError):
        RevenueManager(cache=RecordingCache()).revenue_between("2025-03-02", "2025-03-01")


def test_daily_weekly_monthly_windows(order_on, products):
    w = products["widget"]
    order_on(date(2025, 3, 9), (w, 1, "1.00"))   # Sunday of the previous week
    order_on(date(2025, 3, 10), (w, 1, "2.00"))  # Monday
    order_on(date(2025, 3, 12), (w, 1, "4.00"))  # Wednesday, "today"
    order_on(date(2025, 3, 16), (w, 1, "8.00"))  # Sunday
    order_on(date(2025, 4, 1), (w, 1, "16.00"))

    cache = RecordingCache()
    manager = RevenueManager(cache=cache, clock=FixedClock(date(2025, 3, 12)))
    assert manager.daily_revenue() == Decimal("4.00")
    assert manager.weekly_revenue() == Decimal("14.00")
    assert manager.monthly_revenue() == Decimal("15.00")
    assert manager.monthly_revenue("2025-04") == Decimal("16.00")
    assert "revenue:2025-03-10:2025-03-16" in cache.computed
    assert "revenue:2025-03-01:2025-03-31" in cache.computed


def test_results_are_cached(order_on, products):
    w = products["widget"]
    order_on(date(2025, 3, 1), (w, 1, "5.00"))
    manager = RevenueManager(cache=RecordingCache())
    assert manager.total_revenue() == Decimal("5.00")

    order_on(date(2025, 3, 2), (w, 1, "5.00"))
    assert manager.total_revenue() == Decimal("5.00")


def test_django_cache_adapter(order_on, products):
    order_on(date(2025, 3, 1), (products["widget"], 3, "1.10"))
    manager = RevenueManager(cache=DjangoCache(), ttl=60)
    assert manager.total_revenue() == Decimal("3.30")

    from django.core.cache import cache

    assert cache.get("revenue:total") == Decimal("3.30")
