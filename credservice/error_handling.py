"""Render HTTP errors as credential service JSON responses.

Every error body has the shape of an unsuccessful validation result:
`{"success": false, "error": "<description>"}`, plus the group / team
diagnostics of authorization errors.
"""
from typing import Any

from flask import Flask, Response
from werkzeug.exceptions import HTTPException, default_exceptions

from .representation import output_json


class ApiErrorHandler:
    """Handler to send JSON response for errors."""

    def __init__(self, app: Flask | None = None) -> None:
        if app:
            self.init_app(app)

    def init_app(self, app: Flask) -> None:
        for code in default_exceptions:
            app.errorhandler(code)(self.error_as_json)

    @classmethod
    def error_as_json(cls, ex: Exception) -> Response:
        """Handle errors by returning a JSON response."""
        code = getattr(ex, "code", None) or 500
        if isinstance(ex, HTTPException):
            message = ex.description
        else:
            message = str(ex)
        data: dict[str, Any] = {"success": False, "error": message}

        for attr, key in (
            ("user_groups", "userGroups"),
            ("matching_teams", "matchingTeams"),
        ):
            value = getattr(ex, attr, None)
            if value is not None:
                data[key] = value

        return output_json(data=data, code=code)
