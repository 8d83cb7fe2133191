"""Configuration handling helper functions and default configuration."""
import os
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv
from figcan import Configuration  # type:ignore[attr-defined]
from flask import Flask

ENV_PREFIX = "CREDSERVICE_"
ENV_FILE = ".env"

# Every key must be listed here to be settable from the environment
default_config = {
    "TESTING": False,
    "DEBUG": False,
    "ENVIRONMENT": "production",
    "AUTH_METHOD": "lookup",
    # Microsoft Entra ID
    "AZURE_TENANT_ID": "common",
    "AZURE_CLIENT_ID": None,
    "AZURE_CLIENT_SECRET": None,
    "AZURE_AUTHORITY_URL": "https://login.microsoftonline.com",
    "GRAPH_API_URL": "https://graph.microsoft.com/v1.0",
    # GitHub App; standalone mode without GITHUB_APP_ID
    "GITHUB_APP_ID": None,
    "GITHUB_PRIVATE_KEY": None,
    "GITHUB_PRIVATE_KEY_PATH": None,
    "GITHUB_API_URL": "https://api.github.com",
    "GITHUB_API_VERSION": "2022-11-28",
    "API_TIMEOUT": [5.0, 10.0],
    # group / team correlation
    "GROUP_PATTERN": None,
    "TEAM_PATTERN": None,
    "SUBSTRING_MATCH": True,
    # development stand-ins
    "TEST_VALID_USERS": [],
    "MOCK_AUTH_DELAY": 0.1,
    "MOCK_USER_GROUPS": [],
    "MOCK_REPOSITORY_TEAMS": [],
    # access restrictions, empty means unrestricted
    "AUTHORIZED_USERS": [],
    "AUTHORIZED_REPOS": [],
    "ALLOWED_ORIGINS": ["http://localhost:3000"],
    "PORT": 3000,
    "MIDDLEWARE": [],
}

load_dotenv(ENV_FILE)


def configure(app: Flask, additional_config: dict | None = None) -> Flask:
    """Configure a Flask app using Figcan managed configuration object."""
    config = _compose_config(additional_config)
    app.config.update(config)
    return app


def _compose_config(
    additional_config: dict[str, Any] | None = None,
) -> Configuration:
    """Compose configuration object from all available sources."""
    config = Configuration(default_config)
    environ = dict(
        os.environ
    )  # Copy the environment as we're going to change it

    if environ.get(f"{ENV_PREFIX}CONFIG_FILE"):
        with Path(environ[f"{ENV_PREFIX}CONFIG_FILE"]).open() as f:
            config_from_file = yaml.safe_load(f)
        config.apply(config_from_file)
        environ.pop(f"{ENV_PREFIX}CONFIG_FILE")

    if environ.get(f"{ENV_PREFIX}CONFIG_STR"):
        config_from_file = yaml.safe_load(environ[f"{ENV_PREFIX}CONFIG_STR"])
        config.apply(config_from_file)
        environ.pop(f"{ENV_PREFIX}CONFIG_STR")

    config.apply_flat(environ, prefix=ENV_PREFIX)

    if additional_config:
        config.apply(additional_config)

    return config
