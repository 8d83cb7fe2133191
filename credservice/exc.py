"""Map Werkzeug exceptions to domain specific exceptions.

These exceptions should be used in all domain (non-Flask specific) code
to avoid tying in to Flask / Werkzeug where it is not needed.
"""
from collections.abc import Sequence

from werkzeug.exceptions import (
    BadRequest,
    HTTPException,
    InternalServerError,
    Unauthorized,
)

ClientInputError = BadRequest


class AuthenticationError(Unauthorized):
    """Bad credentials, unreachable provider or misconfigured strategy.

    Never carries provider details, those only go to the log.
    """

    description = "Authentication failed"


class AuthorizationError(Unauthorized):
    """Authenticated, but no correlated group / team was found."""

    description = "User not authorized for this repository"

    def __init__(
        self,
        description: str | None = None,
        user_groups: Sequence[str] | None = None,
        matching_teams: Sequence[str] | None = None,
    ) -> None:
        super().__init__(description)
        self.user_groups = list(user_groups) if user_groups is not None else None
        self.matching_teams = (
            list(matching_teams) if matching_teams is not None else None
        )


class IssuanceError(InternalServerError):
    """Token minting failed after authorization succeeded."""

    description = "Failed to generate GitHub token"


class InternalError(InternalServerError):
    description = "Internal server error"


__all__ = [
    "HTTPException",
    "ClientInputError",
    "AuthenticationError",
    "AuthorizationError",
    "IssuanceError",
    "InternalError",
]
