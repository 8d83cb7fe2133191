"""Credential validation: from a submitted secret to a scoped GitHub token.

`CredentialService.validate()` runs the whole pipeline for one request:

1. Classify the secret; GitHub tokens are handed back untouched.
2. Authenticate the caller with the configured identity provider.
3. Check the optional user / repository allow-lists.
4. Resolve the caller's groups and the repository's teams, concurrently.
5. Filter both by their naming patterns and correlate them.
6. Map the granted permission onto scopes and mint the token.

Every failure ends up as an unsuccessful `ValidationResult`; nothing raises
to the caller.
"""
import dataclasses
import logging
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime
from typing import Any

from credservice import exc
from credservice.auth import AuthResult, IdentityProvider
from credservice.credentials import PassthroughToken, classify
from credservice.github import IssuedToken, TeamResolver, TokenIssuer
from credservice.matching import (
    AuthorizationVerdict,
    Denial,
    DirectoryGroup,
    PermissionLevel,
    RepositoryTeam,
    Resolution,
    filter_entities,
    match,
)
from credservice.scopes import installation_permissions, scopes_for
from credservice.settings import Settings
from credservice.util import in_allow_list, mask_secret

_logger = logging.getLogger(__name__)


@dataclasses.dataclass(frozen=True, kw_only=True)
class ValidationRequest:
    username: str
    password: str = dataclasses.field(repr=False)
    repository: str
    organization: str | None = None

    @property
    def org_repo(self) -> tuple[str, str]:
        """Split the target into organization and repository name.

        A repository given as `owner/name` names its own organization when
        none was sent along.
        """
        org = self.organization
        repo = self.repository
        if "/" in repo:
            owner, _, name = repo.partition("/")
            org = org or owner
            repo = name
        return org or "", repo


@dataclasses.dataclass(frozen=True, kw_only=True)
class ValidationResult:
    success: bool
    status_code: int = 200
    token: str | None = dataclasses.field(default=None, repr=False)
    scopes: tuple[str, ...] = ()
    permission: str | None = None
    user_groups: tuple[str, ...] | None = None
    matching_teams: tuple[str, ...] | None = None
    expires_at: datetime | None = None
    error: str | None = None

    @classmethod
    def from_error(cls, error: exc.HTTPException) -> "ValidationResult":
        user_groups = getattr(error, "user_groups", None)
        matching_teams = getattr(error, "matching_teams", None)
        return cls(
            success=False,
            status_code=error.code or 500,
            error=error.description,
            user_groups=tuple(user_groups) if user_groups is not None else None,
            matching_teams=(
                tuple(matching_teams) if matching_teams is not None else None
            ),
        )

    def to_dict(self) -> dict[str, Any]:
        """Get the JSON response body."""
        body: dict[str, Any] = {"success": self.success}
        if self.success:
            body["token"] = self.token
            body["scopes"] = list(self.scopes)
            if self.permission:
                body["permissions"] = self.permission
        else:
            body["error"] = self.error
        if self.user_groups is not None:
            body["userGroups"] = list(self.user_groups)
        if self.matching_teams is not None:
            body["matchingTeams"] = list(self.matching_teams)
        if self.expires_at is not None:
            body["expiresAt"] = self.expires_at.isoformat()
        return body


class CredentialService:
    """Turns submitted credentials into scoped repository tokens."""

    def __init__(
        self,
        identity_provider: IdentityProvider,
        team_resolver: TeamResolver,
        token_issuer: TokenIssuer,
        settings: Settings,
    ) -> None:
        self.identity_provider = identity_provider
        self.team_resolver = team_resolver
        self.token_issuer = token_issuer
        self.settings = settings

    def validate(self, request: ValidationRequest) -> ValidationResult:
        try:
            return self._validate(request)
        except exc.HTTPException as e:
            return ValidationResult.from_error(e)
        except Exception:
            _logger.exception(
                f"Unexpected error validating credentials of "
                f"{request.username} for {request.repository}"
            )
            return ValidationResult.from_error(exc.InternalError())

    def _validate(self, request: ValidationRequest) -> ValidationResult:
        credential = classify(request.password)
        if isinstance(credential, PassthroughToken):
            _logger.info(
                f"Personal access token {mask_secret(credential.token)} "
                f"detected for {request.username}, passing through"
            )
            return ValidationResult(
                success=True,
                token=credential.token,
                scopes=credential.scopes,
                permission=credential.permission,
            )

        org, repo = request.org_repo
        _logger.info(
            f"Validating credentials of {request.username} for {org}/{repo} "
            f"using '{self.identity_provider.method}' authentication"
        )
        auth = self.identity_provider.authenticator.authenticate(
            request.username, credential.password
        )
        if not auth.success:
            _logger.info(f"Authentication failed for {request.username}")
            raise exc.AuthenticationError()

        self._check_allow_lists(request.username, org, repo)

        groups, teams = self._resolve(auth, org, repo)
        groups = filter_entities(groups, self.settings.match.group_pattern)
        teams = filter_entities(teams, self.settings.match.team_pattern)

        verdict = match(groups, teams, self.settings.match)
        if not verdict.authorized:
            raise self._denial_error(verdict, groups, teams)

        permission = PermissionLevel.parse(verdict.permission)
        scopes = scopes_for(permission)
        issued = self._issue(org, repo, scopes)
        _logger.info(
            f"Issued token for {request.username} on {org}/{repo} with "
            f"'{permission.value}' permission"
        )
        return ValidationResult(
            success=True,
            token=issued.token,
            scopes=tuple(scopes),
            permission=permission.value,
            user_groups=verdict.matched_groups,
            matching_teams=verdict.matched_teams,
            expires_at=issued.expires_at,
        )

    def _check_allow_lists(self, username: str, org: str, repo: str) -> None:
        settings = self.settings
        if settings.authorized_users and not in_allow_list(
            username, settings.authorized_users
        ):
            _logger.warning(f"User {username} is not in the authorized users")
            raise exc.AuthorizationError(
                "User not authorized to use this service"
            )
        if settings.authorized_repos and not (
            in_allow_list(repo, settings.authorized_repos)
            or in_allow_list(f"{org}/{repo}", settings.authorized_repos)
        ):
            _logger.warning(f"Repository {org}/{repo} is not authorized")
            raise exc.AuthorizationError("Repository not authorized")

    def _resolve(
        self, auth: AuthResult, org: str, repo: str
    ) -> tuple[list[DirectoryGroup], list[RepositoryTeam]]:
        """Fetch group and team memberships side by side."""
        with ThreadPoolExecutor(
            max_workers=2, thread_name_prefix="resolve"
        ) as pool:
            groups_future = pool.submit(
                self.identity_provider.group_resolver.resolve_groups,
                auth.bearer_token,
                auth.principal,
            )
            teams_future = pool.submit(
                self.team_resolver.resolve_teams, org, repo
            )
            groups = _resolved(groups_future.result(), "groups")
            teams = _resolved(teams_future.result(), f"teams of {org}/{repo}")
        return list(groups), list(teams)

    def _denial_error(
        self,
        verdict: AuthorizationVerdict,
        groups: list[DirectoryGroup],
        teams: list[RepositoryTeam],
    ) -> exc.AuthorizationError:
        if verdict.denial is Denial.NO_MATCH:
            return exc.AuthorizationError(
                user_groups=[g.name for g in groups],
                matching_teams=[t.name for t in teams],
            )
        return exc.AuthorizationError()

    def _issue(self, org: str, repo: str, scopes: list[str]) -> IssuedToken:
        permissions = installation_permissions(scopes)
        return self.token_issuer.issue(org, repo, permissions)


def _resolved(resolution: Resolution, what: str) -> tuple:
    if resolution.failed:
        _logger.warning(
            f"Could not resolve {what}, continuing without them: "
            f"{resolution.error}"
        )
    return resolution.items
