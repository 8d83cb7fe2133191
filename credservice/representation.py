"""Representations define how to render a response for a given content-type

Most commonly this will convert data returned by views into JSON or a similar
format.

See http://flask-classful.teracy.org/#adding-resource-representations-get-real-classy-and-put-on-a-top-hat
"""
import json
from datetime import datetime
from enum import Enum
from typing import Any

from flask import Response, make_response


class CustomJsonEncoder(json.JSONEncoder):
    """JSON encoder for timestamps, enums (permission levels) and sets"""

    def default(self, o: Any) -> Any:
        if isinstance(o, datetime):
            return o.isoformat()
        if isinstance(o, Enum):
            return o.value
        if isinstance(o, set | frozenset):
            return sorted(o)
        return super().default(o)


def output_json(
    data: Any,
    code: int | None,
    headers: dict[str, str] | None = None,
    content_type: str = "application/json",
) -> Response:
    dumped = json.dumps(data, cls=CustomJsonEncoder)
    if headers:
        headers.update({"Content-Type": content_type})
    else:
        headers = {"Content-Type": content_type}
    response = make_response(dumped, code, headers)
    return response
