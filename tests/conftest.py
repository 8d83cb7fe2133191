"""Fixtures for credservice testing."""
from collections.abc import Generator
from typing import Any

import flask
import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from flask.ctx import AppContext
from flask.testing import FlaskClient

from credservice.app import init_app

MOCK_CONFIG = {
    "TESTING": True,
    "ENVIRONMENT": "development",
    "AUTH_METHOD": "mock",
    "TEST_VALID_USERS": ["alice"],
    "MOCK_AUTH_DELAY": 0,
    "MOCK_USER_GROUPS": ["teamA"],
    "MOCK_REPOSITORY_TEAMS": ["teamA:push"],
}


@pytest.fixture
def app_config(request: pytest.FixtureRequest) -> dict[str, Any]:
    """App configuration, overridable with indirect parametrization."""
    return {**MOCK_CONFIG, **getattr(request, "param", {})}


@pytest.fixture
def app(app_config: dict[str, Any]) -> flask.Flask:
    """Fixture to configure the Flask app."""
    return init_app(additional_config=app_config)


@pytest.fixture
def app_context(app: flask.Flask) -> Generator:
    ctx = app.app_context()
    try:
        ctx.push()
        yield ctx
    finally:
        ctx.pop()


@pytest.fixture
def test_client(app_context: AppContext) -> FlaskClient:
    test_client: FlaskClient = app_context.app.test_client()
    return test_client


@pytest.fixture(scope="session")
def github_private_key() -> str:
    """PEM encoded RSA key usable as a GitHub App private key."""
    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    return key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode()
