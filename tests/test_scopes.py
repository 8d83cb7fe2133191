"""Tests for mapping permission levels onto token scopes."""
import pytest

from credservice.matching import PermissionLevel
from credservice.scopes import installation_permissions, scopes_for


@pytest.mark.parametrize(
    ("permission", "expected"),
    [
        ("admin", ["repo", "admin:repo_hook", "delete_repo"]),
        ("maintain", ["repo", "admin:repo_hook"]),
        ("push", ["repo"]),
        ("triage", ["repo:status", "repo_deployment"]),
        ("pull", ["repo:status", "public_repo"]),
        (PermissionLevel.ADMIN, ["repo", "admin:repo_hook", "delete_repo"]),
    ],
)
def test_scopes_for(permission: str, expected: list[str]) -> None:
    assert scopes_for(permission) == expected


@pytest.mark.parametrize("permission", ["unknown-value", "", None])
def test_scopes_for_unknown_is_pull(permission: str | None) -> None:
    assert scopes_for(permission) == ["repo:status", "public_repo"]


def test_scopes_for_returns_a_copy() -> None:
    scopes = scopes_for("push")
    scopes.append("delete_repo")
    assert scopes_for("push") == ["repo"]


def test_installation_permissions_push() -> None:
    assert installation_permissions(["repo"]) == {
        "contents": "write",
        "pull_requests": "write",
        "statuses": "write",
        "deployments": "write",
        "metadata": "read",
    }


def test_installation_permissions_pull() -> None:
    assert installation_permissions(scopes_for("pull")) == {
        "statuses": "write",
        "contents": "read",
        "metadata": "read",
    }


def test_installation_permissions_admin() -> None:
    permissions = installation_permissions(scopes_for("admin"))
    assert permissions["administration"] == "write"
    assert permissions["repository_hooks"] == "write"
    assert permissions["contents"] == "write"


def test_installation_permissions_write_wins() -> None:
    # public_repo grants read, repo grants write
    assert installation_permissions(["public_repo", "repo"])["contents"] == (
        "write"
    )
    assert installation_permissions(["repo", "public_repo"])["contents"] == (
        "write"
    )


def test_installation_permissions_unknown_scope() -> None:
    assert installation_permissions(["pat-passthrough"]) == {}
