from decimal import Decimal

import pytest
from django.core.cache import cache


@pytest.fixture(autouse=True)
def use_stubs_for_tests(settings):
    settings.USE_HTTP_ADAPTERS = False


@pytest.fixture(autouse=True)
def clear_cache():
    # throttle counters and revenue figures live in the default cache
    cache.clear()
    yield
    cache.clear()


@pytest.fixture()
def branch(db):
    from apps.orders.models import BranchModel

    return BranchModel.objects.create(name="Main street")


@pytest.fixture()
def products(db):
    """Three catalog products: widget (10 in stock), gadget (5), gizmo (1)."""
    from apps.orders.models import ProductModel

    return {
        "widget": ProductModel.objects.create(name="Widget", price=Decimal("10.00"), available=10),
        "gadget": ProductModel.objects.create(name="Gadget", price=Decimal("2.50"), available=5),
        "gizmo": ProductModel.objects.create(name="Gizmo", price=Decimal("99.99"), available=1),
    }
