"""Main Flask application initialization code."""
import logging
import os
from typing import Any

from flask import Flask
from flask_cors import CORS

from credservice import config, view
from credservice.auth import create_identity_provider
from credservice.error_handling import ApiErrorHandler
from credservice.github import (
    GithubApp,
    GithubTeamResolver,
    GithubTokenIssuer,
    MockTokenIssuer,
    StaticTeamResolver,
    TeamResolver,
    TokenIssuer,
)
from credservice.schema import ma
from credservice.service import CredentialService
from credservice.settings import Settings
from credservice.util import get_callable


def init_app(
    app: Flask | None = None, additional_config: dict[str, Any] | None = None
) -> Flask:
    """Flask app initialization."""
    if app is None:
        app = Flask(__name__)

    config.configure(app, additional_config=additional_config)

    # Configure logging
    if os.environ.get("CREDSERVICE_DEBUG"):
        level = logging.DEBUG
    else:
        level = logging.WARNING
    logging.basicConfig(
        format="%(asctime)-15s %(name)-15s %(levelname)s %(message)s",
        level=level,
    )

    settings = Settings.from_config(app.config)

    # Load middleware
    _load_middleware(app)

    # Load all other Flask plugins
    ApiErrorHandler(app)
    ma.init_app(app)
    CORS(
        app,
        resources={r"/api/*": {"origins": list(settings.allowed_origins)}},
        supports_credentials=True,
    )

    app.extensions[view.EXTENSION_NAME] = create_credential_service(settings)

    view.CredentialsView.register(app)
    view.StatusView.register(app)
    view.HealthView.register(app)

    return app


def create_credential_service(settings: Settings) -> CredentialService:
    """Wire up the credential service components for the given settings."""
    log = logging.getLogger(__name__)
    identity_provider = create_identity_provider(settings)

    if settings.github is None:
        log.warning(
            "GitHub App not configured, running in standalone mode with "
            "mock repository teams and tokens"
        )
        team_resolver: TeamResolver = StaticTeamResolver(
            settings.mock.repository_teams
        )
        token_issuer: TokenIssuer = MockTokenIssuer()
    else:
        github_app = GithubApp(settings.github)
        team_resolver = GithubTeamResolver(github_app)
        token_issuer = GithubTokenIssuer(github_app)

    return CredentialService(
        identity_provider, team_resolver, token_issuer, settings
    )


def _load_middleware(flask_app: Flask) -> None:
    """Load WSGI middleware classes from configuration."""
    log = logging.getLogger(__name__)
    wsgi_app = flask_app.wsgi_app
    middleware_config = flask_app.config["MIDDLEWARE"]

    for spec in middleware_config:
        klass = get_callable(spec["class"])
        args = spec.get("args", [])
        kwargs = spec.get("kwargs", {})
        wsgi_app = klass(wsgi_app, *args, **kwargs)
        log.debug(f"Loaded middleware: {klass}(*{args}, **{kwargs})")

    flask_app.wsgi_app = wsgi_app  # type: ignore[method-assign]
