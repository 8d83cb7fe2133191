"""Jenkins credential service: scoped GitHub tokens for directory users."""
from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("credservice")
except PackageNotFoundError:
    __version__ = "unknown"
