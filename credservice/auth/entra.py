"""Microsoft Entra ID identity provider.

Two authentication strategies are available:

`lookup`
    Acquires an app-only Microsoft Graph token (client credential grant) and
    only checks the user exists in the directory. The password is NOT
    verified; use this strategy only if authentication happened upstream.

`ropc`
    Resource owner password credential grant with the submitted username and
    password, followed by a check that the token actually belongs to the
    submitted user. The app registration must allow public client flows.

Both strategies resolve the caller's groups through Microsoft Graph.
"""
import dataclasses
import logging
from collections.abc import Generator, Mapping
from operator import attrgetter
from threading import RLock
from typing import TYPE_CHECKING, Any
from urllib.parse import quote, urlparse

import cachetools
import requests

from credservice.api import ApiSession, Timeout
from credservice.auth import AuthResult, Authenticator, IdentityProvider
from credservice.matching import DirectoryGroup, Resolution

if TYPE_CHECKING:
    from credservice.settings import EntraConfig, Settings

_logger = logging.getLogger(__name__)

GROUP_ODATA_TYPE = "#microsoft.graph.group"

# delegated permissions needed to verify the user and read their groups
USER_SCOPES = ("User.Read", "GroupMember.Read.All")

GRANT_ERROR_HINTS = {
    "invalid_grant": (
        "Invalid username/password or user account may be disabled/locked"
    ),
    "unauthorized_client": (
        "Application not authorized for ROPC flow. Check the app "
        "registration settings."
    ),
    "unsupported_grant_type": (
        "ROPC flow not enabled in tenant. Contact the tenant administrator."
    ),
    "invalid_request": (
        "Invalid request. Check that the application is configured as a "
        "public client."
    ),
}

# refresh app-only tokens this many seconds before they expire
TOKEN_EXPIRY_MARGIN = 60.0


class TokenRequestError(Exception):
    """The identity platform refused to issue a token."""

    def __init__(
        self,
        error_code: str | None,
        description: str | None = None,
        correlation_id: str | None = None,
    ) -> None:
        super().__init__(f"{error_code}: {description}")
        self.error_code = error_code
        self.description = description
        self.correlation_id = correlation_id


@dataclasses.dataclass(frozen=True)
class AccessToken:
    token: str = dataclasses.field(repr=False)
    expires_in: float


def _token_ttu(_key: Any, value: AccessToken, now: float) -> float:
    return now + value.expires_in - TOKEN_EXPIRY_MARGIN


class GraphSession(ApiSession):
    """Microsoft Graph session authenticated with a bearer token."""

    def __init__(
        self, api_url: str, bearer_token: str, timeout: Timeout
    ) -> None:
        super().__init__(
            api_url,
            {
                "Authorization": f"Bearer {bearer_token}",
                "Accept": "application/json",
            },
            timeout,
        )

    def api_get_paginated(
        self, uri: str
    ) -> Generator[dict[str, Any], None, None]:
        """Iterate over a Graph collection, following '@odata.nextLink'."""
        next_url: str | None = self.url(uri)
        while next_url:
            response_json = self.request("GET", next_url).json()
            yield from response_json.get("value", [])
            next_url = response_json.get("@odata.nextLink")


class EntraClient:
    """Access to the Microsoft identity platform and Microsoft Graph."""

    def __init__(self, cfg: "EntraConfig") -> None:
        self._cfg = cfg
        self._token_cache: cachetools.TLRUCache = cachetools.TLRUCache(
            maxsize=1, ttu=_token_ttu
        )
        self._cache_lock = RLock()

    @property
    def is_configured(self) -> bool:
        return bool(self._cfg.client_id)

    @property
    def is_confidential(self) -> bool:
        return bool(self._cfg.client_id and self._cfg.client_secret)

    @property
    def _graph_resource(self) -> str:
        url = urlparse(self._cfg.graph_url)
        return f"{url.scheme}://{url.netloc}"

    def graph(self, bearer_token: str) -> GraphSession:
        return GraphSession(
            self._cfg.graph_url, bearer_token, self._cfg.api_timeout
        )

    def _token_request(self, data: Mapping[str, str]) -> AccessToken:
        response = requests.post(
            self._cfg.token_url,
            data=dict(data, client_id=self._cfg.client_id or ""),
            timeout=self._cfg.api_timeout,
        )
        try:
            payload = response.json()
        except ValueError:
            payload = {}
        if not response.ok or "access_token" not in payload:
            raise TokenRequestError(
                payload.get("error", f"http_{response.status_code}"),
                payload.get("error_description"),
                payload.get("correlation_id"),
            )
        return AccessToken(
            payload["access_token"], float(payload.get("expires_in", 3600))
        )

    @cachetools.cachedmethod(
        attrgetter("_token_cache"), lock=attrgetter("_cache_lock")
    )
    def app_token(self) -> AccessToken:
        """Get an app-only Graph token using the client credential grant."""
        _logger.debug("Acquiring app-only Graph token")
        return self._token_request(
            {
                "grant_type": "client_credentials",
                "client_secret": self._cfg.client_secret or "",
                "scope": f"{self._graph_resource}/.default",
            }
        )

    def user_token(self, username: str, password: str) -> AccessToken:
        """Get a delegated Graph token using the password grant."""
        data = {
            "grant_type": "password",
            "username": username,
            "password": password,
            "scope": " ".join(
                f"{self._graph_resource}/{s}" for s in USER_SCOPES
            ),
        }
        if self._cfg.client_secret:
            data["client_secret"] = self._cfg.client_secret
        return self._token_request(data)


class LookupAuthenticator(Authenticator):
    """Checks the user exists in the directory, without verifying the
    password.
    """

    name = "lookup"

    def __init__(
        self, client: EntraClient, allow_unconfigured: bool = False
    ) -> None:
        self._client = client
        self._allow_unconfigured = allow_unconfigured

    def _authenticate(self, username: str, password: str) -> AuthResult:
        if not self._client.is_confidential:
            _logger.warning(
                "Entra ID client credentials not configured, user lookup "
                "is not possible"
            )
            if self._allow_unconfigured:
                _logger.warning(
                    f"Development mode: accepting {username} without lookup"
                )
                return AuthResult(success=True, principal=username)
            return AuthResult.failed()

        try:
            token = self._client.app_token()
        except TokenRequestError as e:
            _logger.error(
                f"Failed to acquire an app-only token: {e.error_code} "
                f"({e.description})"
            )
            return AuthResult.failed()
        except requests.exceptions.RequestException as e:
            _logger.error(f"Failed to acquire an app-only token: {e}")
            return AuthResult.failed()

        try:
            with self._client.graph(token.token) as graph:
                user = graph.api_get(f"/users/{quote(username)}")
        except requests.exceptions.HTTPError as e:
            if e.response is not None and e.response.status_code == 404:
                _logger.info(f"User lookup for {username}: NOT_FOUND")
            else:
                _logger.error(f"Graph API error looking up {username}: {e}")
            return AuthResult.failed()
        except requests.exceptions.RequestException as e:
            _logger.error(f"Graph API lookup error for {username}: {e}")
            return AuthResult.failed()

        _logger.info(
            f"User lookup for {username}: FOUND "
            f"{user.get('displayName')} ({user.get('userPrincipalName')})"
        )
        return AuthResult(
            success=True,
            bearer_token=token.token,
            principal=user.get("id") or username,
        )


class PasswordGrantAuthenticator(Authenticator):
    """Verifies the username and password with the identity provider."""

    name = "ropc"

    def __init__(self, client: EntraClient) -> None:
        self._client = client

    def _authenticate(self, username: str, password: str) -> AuthResult:
        if not self._client.is_configured:
            _logger.warning("Entra ID client not configured for ROPC")
            return AuthResult.failed()

        _logger.info(f"Attempting ROPC authentication for user: {username}")
        try:
            token = self._client.user_token(username, password)
        except TokenRequestError as e:
            self._log_grant_error(username, e)
            return AuthResult.failed()
        except requests.exceptions.RequestException as e:
            _logger.error(f"ROPC authentication error for {username}: {e}")
            return AuthResult.failed()

        if not self._verify_token(token.token, username):
            return AuthResult.failed()

        _logger.info(f"ROPC authentication successful for user: {username}")
        return AuthResult(success=True, bearer_token=token.token)

    def _verify_token(self, bearer_token: str, expected_username: str) -> bool:
        """Make sure the token was issued to the submitted user."""
        try:
            with self._client.graph(bearer_token) as graph:
                profile = graph.api_get("/me")
        except requests.exceptions.RequestException as e:
            _logger.error(f"Graph API verification error: {e}")
            return False

        principal_name = (profile.get("userPrincipalName") or "").lower()
        if principal_name != expected_username.lower():
            _logger.warning(
                f"Username mismatch: expected {expected_username}, "
                f"got {principal_name}"
            )
            return False
        return True

    @staticmethod
    def _log_grant_error(username: str, error: TokenRequestError) -> None:
        _logger.error(
            f"ROPC authentication error for user {username}: "
            f"{error.error_code} ({error.description}), "
            f"correlation id: {error.correlation_id}"
        )
        hint = GRANT_ERROR_HINTS.get(error.error_code or "")
        if hint:
            _logger.error(f"ROPC Error: {hint}")


class GraphGroupResolver:
    """Resolves the directory groups of a user through Microsoft Graph.

    Directory roles and other non-group objects are left out.
    """

    def __init__(self, client: EntraClient) -> None:
        self._client = client

    def resolve_groups(
        self, bearer_token: str | None, principal: str | None = None
    ) -> Resolution[DirectoryGroup]:
        if not bearer_token:
            return Resolution.failure("No bearer token to query groups with")

        if principal:
            uri = f"/users/{quote(principal)}/memberOf"
        else:
            uri = "/me/memberOf"
        try:
            with self._client.graph(bearer_token) as graph:
                groups = [
                    DirectoryGroup(
                        id=str(obj.get("id")),
                        name=obj["displayName"],
                        description=obj.get("description"),
                    )
                    for obj in graph.api_get_paginated(uri)
                    if obj.get("@odata.type") == GROUP_ODATA_TYPE
                    and obj.get("displayName")
                ]
        except requests.exceptions.RequestException as e:
            msg = f"Failed to get group memberships: {e}"
            _logger.warning(msg)
            return Resolution.failure(msg)

        _logger.debug(f"Found {len(groups)} groups: {[g.name for g in groups]}")
        return Resolution.ok(groups)


def lookup_factory(settings: "Settings") -> IdentityProvider:
    """Build the user lookup identity provider."""
    client = EntraClient(settings.entra)
    return IdentityProvider(
        LookupAuthenticator(
            client, allow_unconfigured=settings.is_development
        ),
        GraphGroupResolver(client),
    )


def password_grant_factory(settings: "Settings") -> IdentityProvider:
    """Build the password grant identity provider."""
    client = EntraClient(settings.entra)
    return IdentityProvider(
        PasswordGrantAuthenticator(client), GraphGroupResolver(client)
    )
