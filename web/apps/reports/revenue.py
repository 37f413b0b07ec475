"""Revenue aggregation over committed order items.

``RevenueManager`` sums ``quantity * price`` across order items, either for
every order or for orders created within an inclusive date range. Results
are cached for ``ttl`` seconds under ``revenue:total`` and
``revenue:<from>:<to>``. The manager only reads committed rows and never
touches the stock ledger.

Cache and clock are injected so tests can pin "today" and observe caching.
"""

import calendar
import logging
from datetime import date, timedelta
from decimal import Decimal
from typing import Callable, Optional, Protocol, Union

from django.core.cache import cache as django_cache
from django.db.models import DecimalField, F, Sum
from django.utils import timezone

from apps.orders.models import OrderItemModel

logger = logging.getLogger("reports.revenue")

DateLike = Union[date, str]

ZERO = Decimal("0.00")


class CachePort(Protocol):
    def get_or_set(self, key: str, compute: Callable[[], Decimal], ttl: int) -> Decimal: ...


class ClockPort(Protocol):
    def today(self) -> date: ...


class DjangoCache:
    """``CachePort`` over Django's cache framework."""

    def __init__(self, backend=None):
        self.backend = backend or django_cache

    def get_or_set(self, key: str, compute: Callable[[], Decimal], ttl: int) -> Decimal:
        return self.backend.get_or_set(key, compute, timeout=ttl)


class SystemClock:
    def today(self) -> date:
        return timezone.localdate()


def _as_date(value: DateLike) -> date:
    if isinstance(value, date):
        return value
    return date.fromisoformat(value)


class RevenueManager:
    """Computes and caches revenue figures.

    Args:
        cache: Cache used for computed figures (``DjangoCache`` by default).
        clock: Source of "today" (``SystemClock`` by default).
        ttl: Seconds a computed figure stays cached.
    """

    def __init__(self, cache: Optional[CachePort] = None, clock: Optional[ClockPort] = None, ttl: int = 3600):
        self.cache = cache or DjangoCache()
        self.clock = clock or SystemClock()
        self.ttl = ttl

    def total_revenue(self) -> Decimal:
        return self.cache.get_or_set("revenue:total", lambda: self._sum(OrderItemModel.objects.all()), self.ttl)

    def revenue_between(self, start: DateLike, end: DateLike) -> Decimal:
        """Revenue of orders created from ``start`` to ``end``, both inclusive.

        Raises:
            ValueError: If a date string is not ISO formatted or ``end`` is
                before ``start``.
        """
        d_from, d_to = _as_date(start), _as_date(end)
        if d_to < d_from:
            raise ValueError(f"end date {d_to} is before start date {d_from}")
        key = f"revenue:{d_from.isoformat()}:{d_to.isoformat()}"
        qs = OrderItemModel.objects.filter(order__created_at__date__range=(d_from, d_to))
        return self.cache.get_or_set(key, lambda: self._sum(qs), self.ttl)

    def daily_revenue(self, day: Optional[DateLike] = None) -> Decimal:
        d = _as_date(day) if day else self.clock.today()
        return self.revenue_between(d, d)

    def weekly_revenue(self, start_of_week: Optional[DateLike] = None) -> Decimal:
        """Revenue for the Monday-to-Sunday week containing ``start_of_week``."""
        anchor = _as_date(start_of_week) if start_of_week else self.clock.today()
        monday = anchor - timedelta(days=anchor.weekday())
        return self.revenue_between(monday, monday + timedelta(days=6))

    def monthly_revenue(self, month: Optional[str] = None) -> Decimal:
        """Revenue for a calendar month given as ``"YYYY-MM"`` (current month by default)."""
        if month:
            year, mon = (int(part) for part in month.split("-", 1))
        else:
            today = self.clock.today()
            year, mon = today.year, today.month
        last = calendar.monthrange(year, mon)[1]
        return self.revenue_between(date(year, mon, 1), date(year, mon, last))

    def _sum(self, qs) -> Decimal:
        agg = qs.aggregate(
            revenue=Sum(F("quantity") * F("price"), output_field=DecimalField(max_digits=14, decimal_places=2))
        )
        value = agg["revenue"] or ZERO
        logger.info("revenue aggregated", extra={"revenue": str(value)})
        return Decimal(value).quantize(Decimal("0.01"))
