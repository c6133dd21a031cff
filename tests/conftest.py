"""Pytest fixtures for storefront tests."""

from datetime import datetime, timedelta

import pytest
from fastapi.testclient import TestClient
from jose import jwt

from storefront.container import ServiceContainer
from storefront.main import create_app
from storefront.shared.utils import Settings
from tests.fakes import ADMIN, BUYER, OTHER_BUYER, SELLER, WEBHOOK_SECRET, World


@pytest.fixture
def config():
    """Settings isolated from any local .env file."""
    return Settings(
        _env_file=None,
        SECRET_KEY="test-secret",
        PAYMENT_WEBHOOK_SECRET=WEBHOOK_SECRET,
        PAYMENT_PUBLISHABLE_KEY="pk_test",
        RATE_LIMIT_ENABLED=False,
    )


@pytest.fixture
def world():
    return World()


@pytest.fixture
def container(config, world):
    return ServiceContainer(
        config,
        products=world.products,
        addresses=world.addresses,
        carts=world.carts,
        orders=world.orders,
        payments=world.payments,
        gateway=world.gateway,
    )


@pytest.fixture
def client(config, container):
    app = create_app(config, container=container)
    with TestClient(app, raise_server_exceptions=False) as test_client:
        yield test_client


@pytest.fixture
def auth(config):
    """Build Authorization headers for a user dict such as ``BUYER``.

    Tokens are minted here the way the auth service would issue them.
    """
    def headers(user: dict) -> dict:
        claims = {**user, "exp": datetime.utcnow() + timedelta(minutes=15)}
        token = jwt.encode(claims, config.SECRET_KEY, algorithm=config.ALGORITHM)
        return {"Authorization": f"Bearer {token}"}
    return headers


@pytest.fixture
def buyer_headers(auth):
    return auth(BUYER)


@pytest.fixture
def other_buyer_headers(auth):
    return auth(OTHER_BUYER)


@pytest.fixture
def seller_headers(auth):
    return auth(SELLER)


@pytest.fixture
def admin_headers(auth):
    return auth(ADMIN)
