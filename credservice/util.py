"""Miscellanea."""
import importlib
from collections.abc import Callable, Iterable
from typing import Any


def get_callable(
    callable_str: str, base_package: str | None = None
) -> Callable:
    """Get a callable function / class constructor from a string of the form
    `package.subpackage.module:callable`.

    >>> type(get_callable('os.path:basename')).__name__
    'function'

    >>> type(get_callable('basename', 'os.path')).__name__
    'function'
    """
    if ":" in callable_str:
        module_name, callable_name = callable_str.split(":", 1)
        module = importlib.import_module(module_name, base_package)
    elif base_package:
        module = importlib.import_module(base_package)
        callable_name = callable_str
    else:
        raise ValueError(
            "Expecting base_package to be set if only class name is provided"
        )

    return getattr(module, callable_name)  # type: ignore[no-any-return]


def to_list(val: Any) -> list[str]:
    """Get a list of non-empty strings from a configuration value that can be
    a comma separated string (e.g. from the environment) or an iterable.

    >>> to_list('alice, bob,,carol')
    ['alice', 'bob', 'carol']

    >>> to_list(['alice', ' bob '])
    ['alice', 'bob']

    >>> to_list(None)
    []

    >>> to_list('')
    []
    """
    if val is None:
        return []
    if isinstance(val, str):
        items: Iterable[Any] = val.split(",")
    elif isinstance(val, Iterable):
        items = val
    else:
        items = (val,)
    return [s for s in (str(i).strip() for i in items) if s]


def in_allow_list(value: str, allowed: Iterable[str]) -> bool:
    """Check a value against an allow-list supporting the '*' wildcard.

    >>> in_allow_list('alice', ['bob', 'alice'])
    True

    >>> in_allow_list('alice', ['*'])
    True

    >>> in_allow_list('alice', [])
    False
    """
    allowed = set(allowed)
    return value in allowed or "*" in allowed


def mask_secret(secret: str | None, visible: int = 4) -> str:
    """Mask a secret for logging, keeping only a short prefix.

    >>> mask_secret('ghp_abcdefgh')
    'ghp_********'

    >>> mask_secret(None)
    '<none>'
    """
    if not secret:
        return "<none>"
    return secret[:visible] + "*" * (len(secret) - visible)
