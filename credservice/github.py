"""GitHub App access: repository teams and scoped installation tokens."""
import dataclasses
import logging
import secrets
import time
from collections.abc import Generator, Iterable
from datetime import datetime, timedelta, timezone
from operator import attrgetter
from threading import RLock
from typing import Any, cast
from urllib.parse import parse_qs, quote, urlparse

import cachetools
import jwt
import requests
from typing_extensions import Protocol

from credservice import exc
from credservice.api import ApiSession
from credservice.matching import PermissionLevel, RepositoryTeam, Resolution
from credservice.settings import GithubAppConfig

_logger = logging.getLogger(__name__)

# GitHub accepts app JWTs valid for at most 10 minutes
APP_JWT_LIFETIME = 540
# issue app JWTs slightly in the past to allow for clock drift
APP_JWT_BACKDATE = 60

MOCK_TOKEN_PREFIX = "ghs_mock_token_for_development_"
MOCK_TOKEN_LIFETIME = timedelta(hours=1)


class InstallationNotFound(LookupError):
    """No GitHub App installation covers the requested repository."""


@dataclasses.dataclass(frozen=True)
class IssuedToken:
    token: str = dataclasses.field(repr=False)
    expires_at: datetime | None = None


class TeamResolver(Protocol):
    def resolve_teams(self, org: str, repo: str) -> Resolution[RepositoryTeam]:
        raise NotImplementedError(
            "This is a protocol definition;"
            " it should not be called directly."
        )


class TokenIssuer(Protocol):
    def issue(
        self, org: str, repo: str, permissions: dict[str, str]
    ) -> IssuedToken:
        """Mint a token for one repository, raising IssuanceError on failure."""
        raise NotImplementedError(
            "This is a protocol definition;"
            " it should not be called directly."
        )


class GithubSession(ApiSession):
    """GitHub REST API session."""

    def __init__(self, cfg: GithubAppConfig, token: str) -> None:
        headers = {
            "Accept": "application/vnd.github+json",
            "Authorization": f"Bearer {token}",
        }
        if cfg.api_version:
            headers["X-GitHub-Api-Version"] = cfg.api_version
        super().__init__(cfg.api_url, headers, cfg.api_timeout)

    def api_get_paginated(
        self, uri: str, *, per_page: int = 30
    ) -> Generator[dict[str, Any], None, None]:
        """Iterate over a GitHub list endpoint, following the 'link' header."""
        per_page = min(max(per_page, 1), 100)
        next_page = 1
        while next_page > 0:
            response = self.request(
                "GET",
                self.url(uri),
                params={"per_page": per_page, "page": next_page},
            )
            yield from cast(list[dict[str, Any]], response.json())

            # the 'next' URL looks like https://api.github.com/...?page=4
            if next_url := response.links.get("next", {}).get("url"):
                next_page = int(
                    parse_qs(urlparse(next_url).query).get("page", ["0"])[0]
                )
            else:
                next_page = 0


class GithubApp:
    """A GitHub App acting on its own behalf or on behalf of its
    installations.
    """

    def __init__(self, cfg: GithubAppConfig) -> None:
        self._cfg = cfg
        self._jwt_cache: cachetools.TTLCache = cachetools.TTLCache(
            maxsize=1, ttl=APP_JWT_LIFETIME - APP_JWT_BACKDATE
        )
        self._installation_cache: cachetools.TTLCache = cachetools.TTLCache(
            maxsize=128, ttl=3600
        )
        self._cache_lock = RLock()

    @cachetools.cachedmethod(
        attrgetter("_jwt_cache"), lock=attrgetter("_cache_lock")
    )
    def app_jwt(self) -> str:
        """Generate the JWT authenticating as the app itself."""
        now = int(time.time())
        payload = {
            "iat": now - APP_JWT_BACKDATE,
            "exp": now + APP_JWT_LIFETIME,
            "iss": self._cfg.app_id,
        }
        return jwt.encode(payload, self._cfg.private_key, algorithm="RS256")

    def session(self, token: str | None = None) -> GithubSession:
        return GithubSession(self._cfg, token or self.app_jwt())

    @cachetools.cachedmethod(
        attrgetter("_installation_cache"), lock=attrgetter("_cache_lock")
    )
    def installation_id(self, org: str, repo: str) -> int:
        """Find the app installation for an org, or a user owned repo."""
        if not org:
            raise InstallationNotFound(
                f"No owner given for repository {repo}"
            )
        with self.session() as gh:
            try:
                data = gh.api_get(f"/orgs/{quote(org)}/installation")
            except requests.exceptions.HTTPError as e:
                if e.response is None or e.response.status_code != 404:
                    raise
                _logger.debug(
                    f"No installation for organization {org}, "
                    f"trying {org}/{repo}"
                )
                data = gh.api_get(
                    f"/repos/{quote(org)}/{quote(repo)}/installation"
                )
        return int(data["id"])

    def installation_token(
        self,
        org: str,
        repo: str,
        permissions: dict[str, str] | None = None,
    ) -> IssuedToken:
        """Create an installation access token restricted to one repository
        and, optionally, a set of permissions.
        """
        installation_id = self.installation_id(org, repo)
        body: dict[str, Any] = {"repositories": [repo]}
        if permissions:
            body["permissions"] = permissions
        with self.session() as gh:
            data = gh.api_post(
                f"/app/installations/{installation_id}/access_tokens",
                json=body,
            )
        expires_at = data.get("expires_at")
        return IssuedToken(
            data["token"],
            _parse_timestamp(expires_at) if expires_at else None,
        )


def _parse_timestamp(value: str) -> datetime:
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


def _revoke_token(gh: GithubSession, org_repo: str) -> None:
    """Revoke the installation token the session authenticates with."""
    try:
        gh.request("DELETE", gh.url("/installation/token"))
    except requests.exceptions.RequestException as e:
        _logger.warning(
            f"Failed to revoke team listing token for {org_repo}: {e}"
        )


class GithubTeamResolver:
    """Lists the teams having access to a repository.

    The listing uses a short-lived read-only installation token which is
    revoked once the teams are fetched.
    """

    def __init__(self, app: GithubApp) -> None:
        self._app = app

    def resolve_teams(self, org: str, repo: str) -> Resolution[RepositoryTeam]:
        org_repo = f"{org}/{repo}"
        try:
            token = self._app.installation_token(
                org, repo, {"metadata": "read", "administration": "read"}
            )
            with self._app.session(token.token) as gh:
                try:
                    teams = [
                        RepositoryTeam(
                            name=t.get("name") or t["slug"],
                            slug=t.get("slug") or t["name"],
                            permission=PermissionLevel.parse(
                                t.get("permission")
                            ),
                        )
                        for t in gh.api_get_paginated(
                            f"/repos/{quote(org)}/{quote(repo)}/teams",
                            per_page=100,
                        )
                    ]
                finally:
                    _revoke_token(gh, org_repo)
        except (
            requests.exceptions.RequestException,
            InstallationNotFound,
            jwt.PyJWTError,
            KeyError,
        ) as e:
            msg = f"Failed to get teams for repository {org_repo}: {e}"
            _logger.warning(msg)
            return Resolution.failure(msg)

        _logger.info(f"Found {len(teams)} teams for repository {org_repo}")
        return Resolution.ok(teams)


class GithubTokenIssuer:
    """Mints installation tokens through the GitHub App."""

    def __init__(self, app: GithubApp) -> None:
        self._app = app

    def issue(
        self, org: str, repo: str, permissions: dict[str, str]
    ) -> IssuedToken:
        try:
            token = self._app.installation_token(org, repo, permissions)
        except (
            requests.exceptions.RequestException,
            InstallationNotFound,
            jwt.PyJWTError,
            KeyError,
        ) as e:
            _logger.error(
                f"Error generating installation token for {org}/{repo}: {e}"
            )
            raise exc.IssuanceError() from None
        _logger.info(
            f"Generated installation token for {org}/{repo} with "
            f"permissions {permissions}"
        )
        return token


class StaticTeamResolver:
    """Gives every repository the same, configured set of teams."""

    def __init__(self, teams: Iterable[RepositoryTeam]) -> None:
        self.teams = tuple(teams)

    def resolve_teams(self, org: str, repo: str) -> Resolution[RepositoryTeam]:
        _logger.debug(f"Mock teams for {org}/{repo}: {self.teams}")
        return Resolution.ok(self.teams)


class MockTokenIssuer:
    """Hands out placeholder tokens when no GitHub App is configured."""

    def issue(
        self, org: str, repo: str, permissions: dict[str, str]
    ) -> IssuedToken:
        _logger.warning(
            "GitHub App not available in standalone mode, returning mock token"
        )
        return IssuedToken(
            MOCK_TOKEN_PREFIX + secrets.token_hex(8),
            datetime.now(tz=timezone.utc) + MOCK_TOKEN_LIFETIME,
        )
