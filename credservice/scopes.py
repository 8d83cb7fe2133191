"""Map an authorization verdict's permission level onto token scopes."""
from collections.abc import Iterable

from credservice.matching import PermissionLevel

PASSTHROUGH_SCOPE = "pat-passthrough"
PASSTHROUGH_PERMISSION = "pat"

SCOPES: dict[PermissionLevel, tuple[str, ...]] = {
    PermissionLevel.ADMIN: ("repo", "admin:repo_hook", "delete_repo"),
    PermissionLevel.MAINTAIN: ("repo", "admin:repo_hook"),
    PermissionLevel.PUSH: ("repo",),
    PermissionLevel.TRIAGE: ("repo:status", "repo_deployment"),
    PermissionLevel.PULL: ("repo:status", "public_repo"),
}

# GitHub App installation permissions granted for each scope
SCOPE_PERMISSIONS: dict[str, dict[str, str]] = {
    "repo": {
        "contents": "write",
        "pull_requests": "write",
        "statuses": "write",
        "deployments": "write",
        "metadata": "read",
    },
    "admin:repo_hook": {"repository_hooks": "write", "metadata": "read"},
    "delete_repo": {"administration": "write", "metadata": "read"},
    "repo:status": {"statuses": "write", "metadata": "read"},
    "repo_deployment": {"deployments": "write", "metadata": "read"},
    "public_repo": {"contents": "read", "metadata": "read"},
}

_ACCESS_RANKS = {"read": 0, "write": 1}


def scopes_for(permission: PermissionLevel | str | None) -> list[str]:
    """Get the token scopes for a permission level.

    Unknown permission names get the scopes of the `pull` level.
    """
    return list(SCOPES[PermissionLevel.parse(permission)])


def installation_permissions(scopes: Iterable[str]) -> dict[str, str]:
    """Translate token scopes into a GitHub App installation permission map.

    When multiple scopes grant the same permission, `write` wins over `read`.
    Scopes without a known translation are ignored.
    """
    permissions: dict[str, str] = {}
    for scope in scopes:
        for name, access in SCOPE_PERMISSIONS.get(scope, {}).items():
            current = permissions.get(name)
            if current is None or _ACCESS_RANKS[access] > _ACCESS_RANKS[current]:
                permissions[name] = access
    return permissions
