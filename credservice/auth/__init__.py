"""Pluggable identity provider layer.

An identity provider is a pair of an `Authenticator`, verifying a caller's
username and password, and a `GroupResolver`, listing the caller's directory
groups. The strategy is picked once at startup from the `AUTH_METHOD`
setting.
"""
import abc
import dataclasses
import logging
from typing import TYPE_CHECKING

from typing_extensions import Protocol

from credservice.matching import DirectoryGroup, Resolution
from credservice.util import get_callable

if TYPE_CHECKING:
    from credservice.settings import Settings

_logger = logging.getLogger(__name__)

DEFAULT_AUTH_METHOD = "lookup"

AUTH_METHODS = {
    "mock": "credservice.auth.mock:factory",
    "lookup": "credservice.auth.entra:lookup_factory",
    "ropc": "credservice.auth.entra:password_grant_factory",
}


@dataclasses.dataclass(frozen=True, kw_only=True)
class AuthResult:
    """Outcome of an authentication attempt.

    `bearer_token` can be used against the identity directory. When it is an
    app-only token, `principal` names the authenticated directory user.
    """

    success: bool
    bearer_token: str | None = dataclasses.field(default=None, repr=False)
    principal: str | None = None
    error: str | None = None

    @classmethod
    def failed(cls, error: str = "Authentication failed") -> "AuthResult":
        return cls(success=False, error=error)


class Authenticator(abc.ABC):
    """Base class for authentication strategies.

    Subclasses implement `_authenticate()`; whatever goes wrong in there is
    reported as a failed `AuthResult`, callers never have to handle
    exceptions.
    """

    name: str = "abstract"

    def authenticate(self, username: str, password: str) -> AuthResult:
        try:
            return self._authenticate(username, password)
        except Exception:
            _logger.exception(
                f"Unexpected error in '{self.name}' authentication "
                f"for {username}"
            )
            return AuthResult.failed()

    @abc.abstractmethod
    def _authenticate(self, username: str, password: str) -> AuthResult:
        """Verify the credentials."""


class GroupResolver(Protocol):
    """Group resolvers list the directory groups of an authenticated caller."""

    def resolve_groups(
        self, bearer_token: str | None, principal: str | None = None
    ) -> Resolution[DirectoryGroup]:
        raise NotImplementedError(
            "This is a protocol definition;"
            " it should not be called directly."
        )


@dataclasses.dataclass(frozen=True)
class IdentityProvider:
    authenticator: Authenticator
    group_resolver: GroupResolver

    @property
    def method(self) -> str:
        return self.authenticator.name


def create_identity_provider(settings: "Settings") -> IdentityProvider:
    """Instantiate the identity provider selected by the settings."""
    method = settings.auth_method
    if method not in AUTH_METHODS:
        _logger.warning(
            f"Unknown auth method: {method}, falling back to "
            f"{DEFAULT_AUTH_METHOD}"
        )
        method = DEFAULT_AUTH_METHOD

    _logger.debug(f"Creating identity provider using: {AUTH_METHODS[method]}")
    factory = get_callable(AUTH_METHODS[method], __name__)
    provider: IdentityProvider = factory(settings)
    return provider
