"""Mock identity provider for development and testing.

Users listed in the `TEST_VALID_USERS` setting (or everyone, with a `*`
entry) are accepted with any password; each of them belongs to the groups
listed in `MOCK_USER_GROUPS`.

Never use this in production: passwords are not checked at all.
"""
import logging
import time
import uuid
from collections.abc import Iterable
from typing import TYPE_CHECKING

from credservice.auth import AuthResult, Authenticator, IdentityProvider
from credservice.matching import DirectoryGroup, Resolution
from credservice.util import in_allow_list

if TYPE_CHECKING:
    from credservice.settings import Settings

_logger = logging.getLogger(__name__)


class MockAuthenticator(Authenticator):
    """Accepts allow-listed users after a short, network-like delay."""

    name = "mock"

    def __init__(self, valid_users: Iterable[str], delay: float = 0.1) -> None:
        self.valid_users = tuple(valid_users)
        self.delay = delay

    def _authenticate(self, username: str, password: str) -> AuthResult:
        is_valid = in_allow_list(username, self.valid_users)
        _logger.info(
            f"Mock authentication for {username}: "
            f"{'SUCCESS' if is_valid else 'FAILED'}"
        )
        if self.delay:
            time.sleep(self.delay)
        if not is_valid:
            return AuthResult.failed()
        return AuthResult(
            success=True,
            bearer_token=f"mock-{uuid.uuid4().hex}",
            principal=username,
        )


class StaticGroupResolver:
    """Resolves every caller to the same, configured set of groups."""

    def __init__(self, group_names: Iterable[str]) -> None:
        self.groups = tuple(
            DirectoryGroup(id=f"mock-{name}", name=name) for name in group_names
        )

    def resolve_groups(
        self, bearer_token: str | None, principal: str | None = None
    ) -> Resolution[DirectoryGroup]:
        _logger.debug(f"Mock groups for {principal}: {self.groups}")
        return Resolution.ok(self.groups)


def factory(settings: "Settings") -> IdentityProvider:
    """Build the mock identity provider from the settings."""
    mock = settings.mock
    if not mock.valid_users:
        _logger.warning(
            "Mock authentication enabled without TEST_VALID_USERS, "
            "nobody will be able to authenticate"
        )
    return IdentityProvider(
        MockAuthenticator(mock.valid_users, mock.auth_delay),
        StaticGroupResolver(mock.user_groups),
    )
