"""Tell GitHub personal access tokens apart from passwords."""
import dataclasses
import re

from credservice.scopes import PASSTHROUGH_PERMISSION, PASSTHROUGH_SCOPE

# classic personal, OAuth, user-to-server, server-to-server and refresh tokens
PAT_PREFIXES = ("ghp", "gho", "ghu", "ghs", "ghr")
PAT_PATTERN = re.compile(
    rf"(?:{'|'.join(PAT_PREFIXES)})_[A-Za-z0-9/]{{36}}"
)


@dataclasses.dataclass(frozen=True)
class PassthroughToken:
    """A GitHub token that is its own proof of authorization."""

    token: str = dataclasses.field(repr=False)
    scopes: tuple[str, ...] = (PASSTHROUGH_SCOPE,)
    permission: str = PASSTHROUGH_PERMISSION


@dataclasses.dataclass(frozen=True)
class PasswordCredential:
    """A password to be verified by the identity provider."""

    password: str = dataclasses.field(repr=False)


def is_personal_access_token(secret: str) -> bool:
    return PAT_PATTERN.fullmatch(secret) is not None


def classify(secret: str) -> PassthroughToken | PasswordCredential:
    if is_personal_access_token(secret):
        return PassthroughToken(secret)
    return PasswordCredential(secret)
