"""Flask-Classful View Classes."""
import logging
from datetime import datetime, timezone
from typing import Any, ClassVar

from flask import Flask, current_app
from flask_classful import FlaskView

from credservice import __version__, representation, schema
from credservice.service import CredentialService

_logger = logging.getLogger(__name__)

SERVICE_NAME = "jenkins-credential-service"
EXTENSION_NAME = "credservice"


def get_service() -> CredentialService:
    service: CredentialService = current_app.extensions[EXTENSION_NAME]
    return service


def _now() -> str:
    return datetime.now(tz=timezone.utc).isoformat()


class BaseView(FlaskView):
    """Extends Flask-Classful's base view class to add some common
    custom functionality.
    """

    representations: ClassVar = {
        "application/json": representation.output_json,
        "flask-classful/default": representation.output_json,
    }

    trailing_slash = False

    @classmethod
    def register(cls, app: Flask, *args: Any, **kwargs: Any) -> Any:
        if kwargs.get("base_class") is None:
            kwargs["base_class"] = BaseView
        return super().register(app, *args, **kwargs)


class CredentialsView(BaseView):
    """Credential validation for Jenkins pipelines."""

    route_base = "api/validate-credentials"

    def post(self) -> tuple[dict[str, Any], int]:
        """Exchange credentials for a repository scoped GitHub token."""
        request = schema.parser.parse(
            schema.validation_request_schema, location="json"
        )
        result = get_service().validate(request)
        if result.success:
            _logger.info(
                f"Credential validation successful for "
                f"{request.username}@{request.repository}"
            )
        else:
            _logger.warning(
                f"Credential validation failed for "
                f"{request.username}@{request.repository}: {result.error}"
            )
        return result.to_dict(), result.status_code


class HealthView(BaseView):
    """Liveness probe."""

    route_base = "health"

    def index(self) -> dict[str, Any]:
        settings = get_service().settings
        return {
            "status": "healthy",
            "service": f"{SERVICE_NAME}-api",
            "timestamp": _now(),
            "port": settings.port,
        }


class StatusView(BaseView):
    """Service status and configuration presence."""

    route_base = "api"

    def status(self) -> dict[str, Any]:
        service = get_service()
        settings = service.settings
        entra = settings.entra
        has_entra = bool(entra.client_id and entra.client_secret)
        has_github = settings.github is not None
        return {
            "service": SERVICE_NAME,
            "version": __version__,
            "environment": settings.environment,
            "auth_method": service.identity_provider.method,
            "configuration": {
                "azure": "configured" if has_entra else "missing",
                "github": "configured" if has_github else "missing",
            },
            "github_app": {
                "initialized": has_github,
                "token_type": (
                    "real_github_tokens" if has_github else "mock_tokens"
                ),
                "app_id": (
                    settings.github.app_id
                    if settings.github
                    else "not_configured"
                ),
            },
            "timestamp": _now(),
        }

    def ping(self) -> dict[str, Any]:
        return {"pong": True, "timestamp": _now()}
