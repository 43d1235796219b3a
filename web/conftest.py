import pytest


@pytest.fixture(autouse=True)
def use_local_coupon_store(settings):
    settings.USE_HTTP_ADAPTERS = False


@pytest.fixture(autouse=True)
def clean_registry():
    from apps.orders.notifications import REGISTRY

    REGISTRY.clear()
    yield
    REGISTRY.clear()
