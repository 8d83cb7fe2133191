"""Authorization decision engine.

Correlates the caller's directory groups with the teams that have access to
the target repository. A group and a team correlate when one name contains
the other, or when both names match the configured naming conventions and
yield the same correlation key (the first capture group of each pattern).
The verdict carries the most privileged permission among all correlated
teams.
"""
import dataclasses
import functools
import logging
import re
from collections.abc import Iterable, Sequence
from enum import Enum
from typing import Generic, Protocol, TypeVar

_logger = logging.getLogger(__name__)


@functools.total_ordering
class PermissionLevel(Enum):
    """Repository permission levels, ordered from least to most privileged."""

    PULL = "pull"
    TRIAGE = "triage"
    PUSH = "push"
    MAINTAIN = "maintain"
    ADMIN = "admin"

    @property
    def rank(self) -> int:
        return _PERMISSION_RANKS[self]

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, PermissionLevel):
            return NotImplemented
        return self.rank < other.rank

    @classmethod
    def parse(cls, value: "str | PermissionLevel | None") -> "PermissionLevel":
        """Parse a permission name; anything unrecognized is the `pull` floor.

        GitHub reports collaborator permissions as read / write in some
        endpoints, these are aliases of pull / push.
        """
        if isinstance(value, PermissionLevel):
            return value
        if not value:
            return cls.PULL
        normalized = value.strip().lower()
        normalized = _PERMISSION_ALIASES.get(normalized, normalized)
        try:
            return cls(normalized)
        except ValueError:
            _logger.debug(f"Unknown permission '{value}', using 'pull'")
            return cls.PULL


_PERMISSION_RANKS = {p: i for i, p in enumerate(PermissionLevel)}
_PERMISSION_ALIASES = {"read": "pull", "write": "push"}


@dataclasses.dataclass(frozen=True)
class DirectoryGroup:
    """Identity provider group the caller belongs to."""

    id: str
    name: str
    description: str | None = None


@dataclasses.dataclass(frozen=True)
class RepositoryTeam:
    """Team having access to a repository, with its permission level."""

    name: str
    slug: str
    permission: PermissionLevel = PermissionLevel.PULL


class Named(Protocol):
    name: str


_NamedT = TypeVar("_NamedT", bound=Named)
_T = TypeVar("_T")


@dataclasses.dataclass(frozen=True)
class Resolution(Generic[_T]):
    """Result of fetching memberships from an upstream directory.

    A failed resolution is empty, just like a resolution of an account without
    any memberships; `failed` keeps the two apart for logging.
    """

    items: tuple[_T, ...] = ()
    failed: bool = False
    error: str | None = None

    @classmethod
    def ok(cls, items: Iterable[_T]) -> "Resolution[_T]":
        return cls(tuple(items))

    @classmethod
    def failure(cls, error: str) -> "Resolution[_T]":
        return cls((), failed=True, error=error)

    def __len__(self) -> int:
        return len(self.items)


@dataclasses.dataclass(frozen=True, kw_only=True)
class MatchConfig:
    """Naming conventions used to correlate groups and teams."""

    group_pattern: str | None = None
    team_pattern: str | None = None
    # bidirectional name containment, see _names_contain()
    substring_match: bool = True


class Denial(Enum):
    NO_GROUPS = "no-groups"
    NO_TEAMS = "no-teams"
    NO_MATCH = "no-match"


@dataclasses.dataclass(frozen=True, kw_only=True)
class AuthorizationVerdict:
    authorized: bool
    permission: PermissionLevel | None = None
    matched_groups: tuple[str, ...] = ()
    matched_teams: tuple[str, ...] = ()
    denial: Denial | None = None

    @classmethod
    def denied(cls, denial: Denial) -> "AuthorizationVerdict":
        return cls(authorized=False, denial=denial)


@functools.lru_cache(maxsize=64)
def _compile(pattern: str) -> re.Pattern[str]:
    return re.compile(pattern, re.IGNORECASE)


def compile_pattern(pattern: str | None) -> re.Pattern[str] | None:
    """Compile a configured naming pattern, or None if unset or invalid."""
    if not pattern:
        return None
    try:
        return _compile(pattern)
    except re.error as e:
        _logger.error(f"Invalid naming pattern '{pattern}': {e}")
        return None


def filter_entities(
    entities: Iterable[_NamedT], pattern: str | None = None
) -> list[_NamedT]:
    """Keep the entities whose name follows the naming pattern.

    Without a usable pattern everything is kept; denying access is up to the
    matcher.
    """
    entities = list(entities)
    if not pattern:
        return entities
    compiled = compile_pattern(pattern)
    if compiled is None:
        _logger.warning(
            f"Not filtering {len(entities)} entities, pattern "
            f"'{pattern}' can't be used"
        )
        return entities
    return [e for e in entities if compiled.search(e.name)]


def _names_contain(group_name: str, team_name: str) -> bool:
    group_name, team_name = group_name.lower(), team_name.lower()
    return group_name in team_name or team_name in group_name


def _correlation_key(pattern: re.Pattern[str] | None, name: str) -> str | None:
    if pattern is None or pattern.groups < 1:
        return None
    m = pattern.search(name)
    if m is None or not m.group(1):
        return None
    return m.group(1).lower()


def _key_patterns(
    config: MatchConfig,
) -> tuple[re.Pattern[str] | None, re.Pattern[str] | None]:
    # the capture-key rule needs both patterns
    if not (config.group_pattern and config.team_pattern):
        return None, None
    return (
        compile_pattern(config.group_pattern),
        compile_pattern(config.team_pattern),
    )


def _correlates(
    group_name: str,
    team_name: str,
    substring_match: bool,
    group_re: re.Pattern[str] | None,
    team_re: re.Pattern[str] | None,
) -> bool:
    if substring_match and _names_contain(group_name, team_name):
        return True
    if group_re is None or team_re is None:
        return False
    group_key = _correlation_key(group_re, group_name)
    return group_key is not None and group_key == _correlation_key(
        team_re, team_name
    )


def is_match(group_name: str, team_name: str, config: MatchConfig) -> bool:
    """Check whether a group and a team correlate."""
    return _correlates(
        group_name, team_name, config.substring_match, *_key_patterns(config)
    )


def match(
    groups: Sequence[DirectoryGroup],
    teams: Sequence[RepositoryTeam],
    config: MatchConfig,
) -> AuthorizationVerdict:
    """Correlate filtered groups with filtered teams.

    Every correlated pair contributes its team's permission; the highest one
    wins. `matched_groups` and `matched_teams` list all pair participants,
    not just the winning team.
    """
    if not groups:
        _logger.info("No directory groups to match, denying")
        return AuthorizationVerdict.denied(Denial.NO_GROUPS)
    if not teams:
        _logger.info("No repository teams to match, denying")
        return AuthorizationVerdict.denied(Denial.NO_TEAMS)

    group_re, team_re = _key_patterns(config)
    matched_groups: dict[str, None] = {}
    matched_teams: dict[str, None] = {}
    candidates: list[PermissionLevel] = []
    for group in groups:
        for team in teams:
            if not _correlates(
                group.name,
                team.name,
                config.substring_match,
                group_re,
                team_re,
            ):
                continue
            _logger.debug(
                f"Group '{group.name}' matches team '{team.name}' "
                f"({team.permission.value})"
            )
            matched_groups[group.name] = None
            matched_teams[team.name] = None
            candidates.append(team.permission)

    if not candidates:
        _logger.warning(
            f"None of {len(groups)} groups matches any of {len(teams)} "
            f"teams, denying. Groups: {[g.name for g in groups]}, "
            f"teams: {[t.name for t in teams]}"
        )
        return AuthorizationVerdict.denied(Denial.NO_MATCH)

    permission = max(candidates)
    _logger.info(
        f"Authorized with '{permission.value}' permission through groups "
        f"{list(matched_groups)} and teams {list(matched_teams)}"
    )
    return AuthorizationVerdict(
        authorized=True,
        permission=permission,
        matched_groups=tuple(matched_groups),
        matched_teams=tuple(matched_teams),
    )
