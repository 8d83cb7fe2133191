"""Tests for the credential validation pipeline."""
import threading
from collections.abc import Iterable
from datetime import datetime, timezone
from typing import Any

import pytest

from credservice import exc
from credservice.auth import AuthResult, Authenticator, IdentityProvider
from credservice.auth.mock import MockAuthenticator, StaticGroupResolver
from credservice.github import (
    GithubApp,
    GithubTeamResolver,
    GithubTokenIssuer,
    IssuedToken,
    StaticTeamResolver,
)
from credservice.matching import (
    DirectoryGroup,
    PermissionLevel,
    RepositoryTeam,
    Resolution,
)
from credservice.service import (
    CredentialService,
    ValidationRequest,
    ValidationResult,
)
from credservice.settings import GithubAppConfig, Settings

PAT = "ghp_" + "x1Y2/" * 7 + "z"
EXPIRES_AT = datetime(2030, 1, 1, 12, tzinfo=timezone.utc)


class RecordingIssuer:
    def __init__(self, error: Exception | None = None) -> None:
        self.calls: list[tuple[str, str, dict[str, str]]] = []
        self.error = error

    def issue(
        self, org: str, repo: str, permissions: dict[str, str]
    ) -> IssuedToken:
        self.calls.append((org, repo, permissions))
        if self.error is not None:
            raise self.error
        return IssuedToken("ghs_issued", EXPIRES_AT)


class RecordingTeamResolver(StaticTeamResolver):
    def __init__(self, teams: Iterable[RepositoryTeam]) -> None:
        super().__init__(teams)
        self.calls: list[tuple[str, str]] = []

    def resolve_teams(self, org: str, repo: str) -> Resolution[RepositoryTeam]:
        self.calls.append((org, repo))
        return super().resolve_teams(org, repo)


class FailingGroupResolver:
    def resolve_groups(
        self, bearer_token: str | None, principal: str | None = None
    ) -> Resolution[DirectoryGroup]:
        return Resolution.failure("Graph API unavailable")


class PrincipalAuthenticator(Authenticator):
    name = "principal"

    def _authenticate(self, username: str, password: str) -> AuthResult:
        return AuthResult(
            success=True, bearer_token="app-token", principal="user-id"
        )


def team(name: str, permission: str) -> RepositoryTeam:
    return RepositoryTeam(name, name, PermissionLevel.parse(permission))


def make_service(
    groups: Iterable[str] = ("teamA",),
    teams: Iterable[RepositoryTeam] = (team("teamA", "push"),),
    issuer: RecordingIssuer | None = None,
    **config: Any,
) -> CredentialService:
    settings = Settings.from_config(
        {"AUTH_METHOD": "mock", "TEST_VALID_USERS": "alice", **config}
    )
    provider = IdentityProvider(
        MockAuthenticator(settings.mock.valid_users, delay=0),
        StaticGroupResolver(groups),
    )
    return CredentialService(
        provider,
        RecordingTeamResolver(teams),
        issuer or RecordingIssuer(),
        settings,
    )


def request(
    username: str = "alice",
    password: str = "x",
    repository: str = "r",
    organization: str | None = "o",
) -> ValidationRequest:
    return ValidationRequest(
        username=username,
        password=password,
        repository=repository,
        organization=organization,
    )


def test_validate_success() -> None:
    issuer = RecordingIssuer()
    service = make_service(issuer=issuer)
    result = service.validate(request())
    assert result.success
    assert result.status_code == 200
    assert result.token == "ghs_issued"
    assert result.permission == "push"
    assert result.scopes == ("repo",)
    assert result.user_groups == ("teamA",)
    assert result.matching_teams == ("teamA",)
    assert result.expires_at == EXPIRES_AT
    assert issuer.calls == [
        (
            "o",
            "r",
            {
                "contents": "write",
                "pull_requests": "write",
                "statuses": "write",
                "deployments": "write",
                "metadata": "read",
            },
        )
    ]


def test_validate_passthrough_token() -> None:
    issuer = RecordingIssuer()
    service = make_service(issuer=issuer)
    result = service.validate(request(username="mallory", password=PAT))
    assert result.success
    assert result.token == PAT
    assert result.scopes == ("pat-passthrough",)
    assert result.permission == "pat"
    assert issuer.calls == []
    assert service.team_resolver.calls == []  # type: ignore[attr-defined]


def test_validate_authentication_failure() -> None:
    service = make_service()
    result = service.validate(request(username="bob"))
    assert not result.success
    assert result.status_code == 401
    assert result.error == "Authentication failed"
    assert result.user_groups is None
    assert service.team_resolver.calls == []  # type: ignore[attr-defined]


def test_validate_no_match_diagnostics() -> None:
    service = make_service(
        groups=["marketing", "sales"], teams=[team("engineering", "admin")]
    )
    result = service.validate(request())
    assert not result.success
    assert result.status_code == 401
    assert result.error == "User not authorized for this repository"
    assert result.user_groups == ("marketing", "sales")
    assert result.matching_teams == ("engineering",)


def test_validate_no_groups() -> None:
    service = make_service(groups=[])
    result = service.validate(request())
    assert not result.success
    assert result.status_code == 401
    assert result.user_groups is None


def test_validate_group_resolution_failure_denies() -> None:
    service = make_service()
    service.identity_provider = IdentityProvider(
        MockAuthenticator(["alice"], delay=0), FailingGroupResolver()
    )
    result = service.validate(request())
    assert not result.success
    assert result.status_code == 401


def test_validate_highest_permission() -> None:
    service = make_service(
        groups=["teamX"],
        teams=[team("teamX", "push"), team("teamX", "admin")],
    )
    result = service.validate(request())
    assert result.permission == "admin"
    assert result.scopes == ("repo", "admin:repo_hook", "delete_repo")


def test_validate_patterns_filter_before_matching() -> None:
    service = make_service(
        groups=["proj7-developers", "everyone"],
        teams=[team("proj7-developers", "push"), team("everyone", "admin")],
        GROUP_PATTERN=r"^proj(\d+)-",
        TEAM_PATTERN=r"^proj(\d+)-",
    )
    result = service.validate(request())
    assert result.success
    assert result.permission == "push"
    assert result.user_groups == ("proj7-developers",)


def test_validate_filtered_out_diagnostics() -> None:
    service = make_service(
        groups=["proj7-developers", "everyone"],
        teams=[team("proj8-developers", "push"), team("everyone", "admin")],
        GROUP_PATTERN=r"^proj(\d+)-",
        TEAM_PATTERN=r"^proj(\d+)-",
        SUBSTRING_MATCH=False,
    )
    result = service.validate(request())
    assert not result.success
    assert result.user_groups == ("proj7-developers",)
    assert result.matching_teams == ("proj8-developers",)


def test_validate_owner_from_repository() -> None:
    issuer = RecordingIssuer()
    service = make_service(issuer=issuer)
    result = service.validate(
        request(repository="acme/widgets", organization=None)
    )
    assert result.success
    assert service.team_resolver.calls == [  # type: ignore[attr-defined]
        ("acme", "widgets")
    ]
    assert issuer.calls[0][:2] == ("acme", "widgets")


def test_validate_issuance_failure() -> None:
    service = make_service(issuer=RecordingIssuer(exc.IssuanceError()))
    result = service.validate(request())
    assert not result.success
    assert result.status_code == 500
    assert result.error == "Failed to generate GitHub token"
    assert result.token is None


def test_validate_unexpected_error(caplog: pytest.LogCaptureFixture) -> None:
    service = make_service(issuer=RecordingIssuer(KeyError("token")))
    result = service.validate(request())
    assert not result.success
    assert result.status_code == 500
    assert result.error == "Internal server error"
    assert "Unexpected error validating credentials" in caplog.text


def test_validate_authorized_users() -> None:
    service = make_service(
        TEST_VALID_USERS="alice,bob", AUTHORIZED_USERS="alice"
    )
    assert service.validate(request()).success
    result = service.validate(request(username="bob"))
    assert not result.success
    assert result.status_code == 401
    assert result.error == "User not authorized to use this service"


@pytest.mark.parametrize(
    ("authorized_repos", "allowed"),
    [
        ("r", True),
        ("o/r", True),
        ("*", True),
        ("other", False),
        ("o/other,x/r", False),
    ],
)
def test_validate_authorized_repos(
    authorized_repos: str, allowed: bool
) -> None:
    service = make_service(AUTHORIZED_REPOS=authorized_repos)
    result = service.validate(request())
    assert result.success is allowed
    if not allowed:
        assert result.error == "Repository not authorized"
        assert service.team_resolver.calls == []  # type: ignore[attr-defined]


def test_validate_passes_principal_to_group_resolver() -> None:
    seen: list[tuple[str | None, str | None]] = []

    class Resolver:
        def resolve_groups(
            self, bearer_token: str | None, principal: str | None = None
        ) -> Resolution[DirectoryGroup]:
            seen.append((bearer_token, principal))
            return Resolution.ok([DirectoryGroup("g1", "teamA")])

    service = make_service()
    service.identity_provider = IdentityProvider(
        PrincipalAuthenticator(), Resolver()
    )
    assert service.validate(request()).success
    assert seen == [("app-token", "user-id")]


def test_validate_resolves_concurrently() -> None:
    # each resolver waits for the other one to start
    barrier = threading.Barrier(2, timeout=5)

    class GroupResolver:
        def resolve_groups(
            self, bearer_token: str | None, principal: str | None = None
        ) -> Resolution[DirectoryGroup]:
            barrier.wait()
            return Resolution.ok([DirectoryGroup("g1", "teamA")])

    class TeamResolver:
        def resolve_teams(
            self, org: str, repo: str
        ) -> Resolution[RepositoryTeam]:
            barrier.wait()
            return Resolution.ok([team("teamA", "maintain")])

    service = make_service()
    service.identity_provider = IdentityProvider(
        MockAuthenticator(["alice"], delay=0), GroupResolver()
    )
    service.team_resolver = TeamResolver()
    result = service.validate(request())
    assert result.success
    assert result.permission == "maintain"


def test_validation_request_org_repo() -> None:
    assert request(repository="r", organization="o").org_repo == ("o", "r")
    assert request(repository="a/b", organization=None).org_repo == ("a", "b")
    assert request(repository="a/b", organization="o").org_repo == ("o", "b")
    assert request(repository="r", organization=None).org_repo == ("", "r")


def test_validation_result_to_dict() -> None:
    result = ValidationResult(
        success=True,
        token="ghs_issued",
        scopes=("repo",),
        permission="push",
        user_groups=("teamA",),
        matching_teams=("teamA",),
        expires_at=EXPIRES_AT,
    )
    assert result.to_dict() == {
        "success": True,
        "token": "ghs_issued",
        "scopes": ["repo"],
        "permissions": "push",
        "userGroups": ["teamA"],
        "matchingTeams": ["teamA"],
        "expiresAt": "2030-01-01T12:00:00+00:00",
    }
    assert "ghs_issued" not in repr(result)


def test_validation_result_from_error() -> None:
    result = ValidationResult.from_error(
        exc.AuthorizationError(user_groups=["a"], matching_teams=[])
    )
    assert result.to_dict() == {
        "success": False,
        "error": "User not authorized for this repository",
        "userGroups": ["a"],
        "matchingTeams": [],
    }


def test_validate_unusable_github_key_denies() -> None:
    app = GithubApp(
        GithubAppConfig(
            app_id="1",
            private_key="not a key",
            api_url="https://api.github.com",
            api_version=None,
            api_timeout=5.0,
        )
    )
    service = make_service()
    service.team_resolver = GithubTeamResolver(app)
    service.token_issuer = GithubTokenIssuer(app)
    result = service.validate(request())
    assert not result.success
    assert result.status_code == 401
    assert result.error == "User not authorized for this repository"
