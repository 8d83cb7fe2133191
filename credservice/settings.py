"""Typed, immutable service settings.

The Flask app configuration (see `credservice.config`) is loaded once into a
`Settings` object which is then handed over to every component constructor.
Values coming from the environment are plain strings, so the schema here
coerces them into their proper types.
"""
import dataclasses
from collections.abc import Mapping
from pathlib import Path
from typing import Any, cast

import jwt
import marshmallow as ma
import marshmallow.validate

from credservice.matching import MatchConfig, PermissionLevel, RepositoryTeam
from credservice.util import to_list

DEVELOPMENT = "development"


class StringList(ma.fields.Field):
    """Marshmallow Field accepting a list of strings or a comma separated
    string.
    """

    def _deserialize(
        self,
        value: Any,
        attr: str | None,
        data: Mapping[str, Any] | None,
        **kwargs: Any,
    ) -> list[str]:
        if not isinstance(value, str | list | tuple | set):
            raise ma.ValidationError("Not a list or a comma separated string.")
        return to_list(value)


class RequestsTimeout(ma.fields.Field):
    """Marshmallow Field validating a requests library timeout."""

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        pos_float = ma.fields.Float(validate=ma.validate.Range(min=0))
        self.possible_fields = (
            ma.fields.Tuple((pos_float, pos_float)),
            pos_float,
        )

    def _deserialize(
        self,
        value: Any,
        attr: str | None,
        data: Mapping[str, Any] | None,
        **kwargs: Any,
    ) -> Any:  # float | tuple[float, float]
        if isinstance(value, str) and "," in value:
            value = value.split(",")
        errors = {}
        for field in self.possible_fields:
            try:
                return field.deserialize(value, **kwargs)
            except ma.ValidationError as error:  # noqa: PERF203
                if error.valid_data is not None:
                    raise
                errors.update({field.__class__.__name__: error.messages})
        raise ma.ValidationError(errors)


def parse_team(spec: str | Mapping[str, Any]) -> RepositoryTeam:
    """Build a team from a `name:permission` string or a mapping.

    >>> parse_team('devs:push')
    RepositoryTeam(name='devs', slug='devs', permission=<PermissionLevel.PUSH: 'push'>)
    """
    if isinstance(spec, str):
        name, _, permission = spec.partition(":")
        return RepositoryTeam(
            name.strip(), name.strip(), PermissionLevel.parse(permission)
        )
    return RepositoryTeam(
        spec["name"],
        spec.get("slug") or spec["name"],
        PermissionLevel.parse(spec.get("permission")),
    )


@dataclasses.dataclass(frozen=True, kw_only=True)
class EntraConfig:
    """Microsoft Entra ID (identity provider) connection settings."""

    tenant_id: str
    client_id: str | None
    client_secret: str | None = dataclasses.field(repr=False)
    authority_url: str
    graph_url: str
    api_timeout: float | tuple[float, float]

    @property
    def token_url(self) -> str:
        return f"{self.authority_url}/{self.tenant_id}/oauth2/v2.0/token"


@dataclasses.dataclass(frozen=True, kw_only=True)
class GithubAppConfig:
    """GitHub App used to look up teams and mint installation tokens."""

    app_id: str
    private_key: str = dataclasses.field(repr=False)
    api_url: str
    api_version: str | None
    api_timeout: float | tuple[float, float]


@dataclasses.dataclass(frozen=True, kw_only=True)
class MockConfig:
    """Development stand-ins for the identity provider and GitHub."""

    valid_users: tuple[str, ...] = ()
    auth_delay: float = 0.1
    user_groups: tuple[str, ...] = ()
    repository_teams: tuple[RepositoryTeam, ...] = ()


@dataclasses.dataclass(frozen=True, kw_only=True)
class Settings:
    """Service settings.

    Create this class using from_config() method that applies schema
    validation and proper default values.
    """

    environment: str
    auth_method: str
    match: MatchConfig
    entra: EntraConfig
    # None when running without a GitHub App (standalone mode)
    github: GithubAppConfig | None
    mock: MockConfig
    authorized_users: tuple[str, ...] = ()
    authorized_repos: tuple[str, ...] = ()
    allowed_origins: tuple[str, ...] = ()
    port: int = 3000

    @property
    def is_development(self) -> bool:
        return self.environment == DEVELOPMENT

    class Schema(ma.Schema):
        environment = ma.fields.String(
            data_key="ENVIRONMENT", load_default="production"
        )
        auth_method = ma.fields.String(
            data_key="AUTH_METHOD", load_default="lookup"
        )
        group_pattern = ma.fields.String(
            data_key="GROUP_PATTERN", load_default=None, allow_none=True
        )
        team_pattern = ma.fields.String(
            data_key="TEAM_PATTERN", load_default=None, allow_none=True
        )
        substring_match = ma.fields.Boolean(
            data_key="SUBSTRING_MATCH", load_default=True
        )
        tenant_id = ma.fields.String(
            data_key="AZURE_TENANT_ID", load_default="common", allow_none=True
        )
        client_id = ma.fields.String(
            data_key="AZURE_CLIENT_ID", load_default=None, allow_none=True
        )
        client_secret = ma.fields.String(
            data_key="AZURE_CLIENT_SECRET", load_default=None, allow_none=True
        )
        authority_url = ma.fields.Url(
            data_key="AZURE_AUTHORITY_URL",
            load_default="https://login.microsoftonline.com",
        )
        graph_url = ma.fields.Url(
            data_key="GRAPH_API_URL",
            load_default="https://graph.microsoft.com/v1.0",
        )
        github_app_id = ma.fields.String(
            data_key="GITHUB_APP_ID", load_default=None, allow_none=True
        )
        github_private_key = ma.fields.String(
            data_key="GITHUB_PRIVATE_KEY", load_default=None, allow_none=True
        )
        github_private_key_path = ma.fields.String(
            data_key="GITHUB_PRIVATE_KEY_PATH",
            load_default=None,
            allow_none=True,
        )
        github_api_url = ma.fields.Url(
            data_key="GITHUB_API_URL", load_default="https://api.github.com"
        )
        github_api_version = ma.fields.String(
            data_key="GITHUB_API_VERSION",
            load_default="2022-11-28",
            allow_none=True,
        )
        api_timeout = RequestsTimeout(
            data_key="API_TIMEOUT", load_default=(5.0, 10.0)
        )
        valid_users = StringList(data_key="TEST_VALID_USERS", load_default=())
        auth_delay = ma.fields.Float(
            data_key="MOCK_AUTH_DELAY",
            load_default=0.1,
            validate=ma.validate.Range(min=0),
        )
        user_groups = StringList(data_key="MOCK_USER_GROUPS", load_default=())
        repository_teams = ma.fields.Raw(
            data_key="MOCK_REPOSITORY_TEAMS", load_default=()
        )
        authorized_users = StringList(
            data_key="AUTHORIZED_USERS", load_default=()
        )
        authorized_repos = StringList(
            data_key="AUTHORIZED_REPOS", load_default=()
        )
        allowed_origins = StringList(
            data_key="ALLOWED_ORIGINS", load_default=["http://localhost:3000"]
        )
        port = ma.fields.Int(
            data_key="PORT",
            load_default=3000,
            validate=ma.validate.Range(min=1, max=65535),
        )

        @ma.validates("repository_teams")
        def validate_teams(self, value: Any, **_kwargs: Any) -> None:
            try:
                _parse_teams(value)
            except (KeyError, TypeError, AttributeError) as e:
                raise ma.ValidationError(
                    f"Teams must be 'name:permission' strings or mappings: {e}"
                ) from None

        @ma.post_load
        def make_object(
            self, data: dict[str, Any], **_kwargs: Mapping
        ) -> "Settings":
            return Settings(
                environment=data["environment"].lower(),
                auth_method=data["auth_method"].lower(),
                match=MatchConfig(
                    group_pattern=data["group_pattern"] or None,
                    team_pattern=data["team_pattern"] or None,
                    substring_match=data["substring_match"],
                ),
                entra=EntraConfig(
                    tenant_id=data["tenant_id"] or "common",
                    client_id=data["client_id"] or None,
                    client_secret=data["client_secret"] or None,
                    authority_url=data["authority_url"].rstrip("/"),
                    graph_url=data["graph_url"].rstrip("/"),
                    api_timeout=data["api_timeout"],
                ),
                github=_github_config(data),
                mock=MockConfig(
                    valid_users=tuple(data["valid_users"]),
                    auth_delay=data["auth_delay"],
                    user_groups=tuple(data["user_groups"]),
                    repository_teams=tuple(
                        _parse_teams(data["repository_teams"])
                    ),
                ),
                authorized_users=tuple(data["authorized_users"]),
                authorized_repos=tuple(data["authorized_repos"]),
                allowed_origins=tuple(data["allowed_origins"]),
                port=data["port"],
            )

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> "Settings":
        return cast(
            Settings, cls.Schema().load(dict(config), unknown=ma.EXCLUDE)
        )


def _parse_teams(value: Any) -> list[RepositoryTeam]:
    if isinstance(value, str):
        value = to_list(value)
    return [parse_team(t) for t in value]


def _github_config(data: Mapping[str, Any]) -> GithubAppConfig | None:
    if not data["github_app_id"]:
        return None
    private_key = data["github_private_key"]
    if not private_key and data["github_private_key_path"]:
        key_path = Path(data["github_private_key_path"])
        try:
            private_key = key_path.read_text()
        except OSError as e:
            raise ma.ValidationError(
                f"Can't read the GitHub App private key {key_path}: {e}",
                field_name="GITHUB_PRIVATE_KEY_PATH",
            ) from None
    if not private_key:
        raise ma.ValidationError(
            "GitHub App private key required",
            field_name="GITHUB_PRIVATE_KEY_PATH",
        )
    _check_signing_key(private_key)
    return GithubAppConfig(
        app_id=str(data["github_app_id"]),
        private_key=private_key,
        api_url=data["github_api_url"].rstrip("/"),
        api_version=data["github_api_version"] or None,
        api_timeout=data["api_timeout"],
    )


def _check_signing_key(private_key: str) -> None:
    """Make sure the key can sign app JWTs."""
    try:
        jwt.encode({}, private_key, algorithm="RS256")
    except (jwt.PyJWTError, ValueError, TypeError, AttributeError) as e:
        raise ma.ValidationError(
            f"GitHub App private key is not a usable RSA private key: {e}",
            field_name="GITHUB_PRIVATE_KEY",
        ) from None
