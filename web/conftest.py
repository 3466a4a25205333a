import pytest
from rest_framework.test import APIClient

SHIPPING = {
    "street": "12 MG Road",
    "city": "Bengaluru",
    "state": "KA",
    "zip_code": "560001",
    "country": "IN",
}


@pytest.fixture(autouse=True)
def use_stubs_for_tests(settings):
    settings.USE_HTTP_ADAPTERS = False
    settings.GATEWAY_KEY_ID = "rzp_test_key"
    settings.GATEWAY_KEY_SECRET = "test-secret"
    settings.GATEWAY_WEBHOOK_SECRET = "webhook-secret"


@pytest.fixture(autouse=True)
def clean_cache():
    # Also resets DRF throttle history, which lives in the default cache.
    from django.core.cache import cache

    cache.clear()
    yield
    cache.clear()


@pytest.fixture
def catalog():
    from apps.orders import providers

    providers._stub_catalog.reset()
    yield providers._stub_catalog
    providers._stub_catalog.reset()


@pytest.fixture
def shipping():
    return dict(SHIPPING)


@pytest.fixture
def alice(django_user_model):
    return django_user_model.objects.create_user(username="alice", password="pw")


@pytest.fixture
def bob(django_user_model):
    return django_user_model.objects.create_user(username="bob", password="pw")


@pytest.fixture
def staff(django_user_model):
    return django_user_model.objects.create_user(username="staff", password="pw", is_staff=True)


@pytest.fixture
def api_for():
    def make(user=None):
        c = APIClient()
        if user is not None:
            c.force_authenticate(user=user)
        return c
    return make
