"""Tests for identity provider selection and the authenticator contract."""
import pytest

from credservice.auth import (
    AuthResult,
    Authenticator,
    create_identity_provider,
)
from credservice.auth.entra import (
    GraphGroupResolver,
    LookupAuthenticator,
    PasswordGrantAuthenticator,
)
from credservice.settings import Settings


class ExplodingAuthenticator(Authenticator):
    name = "exploding"

    def _authenticate(self, username: str, password: str) -> AuthResult:
        raise RuntimeError("boom")


def test_authenticator_never_raises(caplog: pytest.LogCaptureFixture) -> None:
    result = ExplodingAuthenticator().authenticate("alice", "x")
    assert not result.success
    assert result.error == "Authentication failed"
    assert "Unexpected error in 'exploding' authentication" in caplog.text


@pytest.mark.parametrize(
    ("method", "authenticator_class"),
    [
        ("lookup", LookupAuthenticator),
        ("ropc", PasswordGrantAuthenticator),
        ("RoPc", PasswordGrantAuthenticator),
    ],
)
def test_create_identity_provider(
    method: str, authenticator_class: type[Authenticator]
) -> None:
    provider = create_identity_provider(
        Settings.from_config({"AUTH_METHOD": method})
    )
    assert isinstance(provider.authenticator, authenticator_class)
    assert isinstance(provider.group_resolver, GraphGroupResolver)


def test_create_identity_provider_unknown_method(
    caplog: pytest.LogCaptureFixture,
) -> None:
    provider = create_identity_provider(
        Settings.from_config({"AUTH_METHOD": "kerberos"})
    )
    assert provider.method == "lookup"
    assert "Unknown auth method: kerberos" in caplog.text
