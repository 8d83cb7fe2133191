"""Schema for the credential validation API."""
from typing import Any, NoReturn

import marshmallow
from flask import Request
from flask_marshmallow import Marshmallow
from marshmallow import fields, post_load, validate
from webargs.flaskparser import FlaskParser

from credservice import exc
from credservice.service import ValidationRequest

ma = Marshmallow()

REQUIRED_FIELDS = ("username", "password", "repository")
MISSING_FIELDS_MESSAGE = f"Missing required fields: {', '.join(REQUIRED_FIELDS)}"


def _required_string() -> fields.String:
    return fields.String(required=True, validate=validate.Length(min=1))


class ValidationRequestSchema(ma.Schema):  # type:ignore[name-defined]
    """validate-credentials request schema."""

    username = _required_string()
    password = _required_string()
    repository = _required_string()
    organization = fields.String(load_default=None, allow_none=True)

    @post_load
    def make_request(
        self, data: dict[str, Any], **_: Any
    ) -> ValidationRequest:
        return ValidationRequest(
            username=data["username"],
            password=data["password"],
            repository=data["repository"],
            organization=data["organization"] or None,
        )


validation_request_schema = ValidationRequestSchema(unknown=marshmallow.EXCLUDE)

parser = FlaskParser()


@parser.error_handler
def handle_request_error(
    error: marshmallow.ValidationError,
    req: Request,
    schema: marshmallow.Schema,
    *,
    error_status_code: int | None,
    error_headers: dict[str, str] | None,
) -> NoReturn:
    """Report invalid payloads as a client error naming the required fields."""
    raise exc.ClientInputError(MISSING_FIELDS_MESSAGE)
