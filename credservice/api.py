"""Session helper for the upstream REST APIs (Microsoft Graph, GitHub)."""
from contextlib import AbstractContextManager, ExitStack
from types import TracebackType
from typing import Any, cast

import requests

Timeout = float | tuple[float, float]


class ApiSession(AbstractContextManager):
    """Context manager holding an open requests session to an API, reused for
    all the calls made while serving one request.
    """

    def __init__(
        self,
        api_url: str,
        headers: dict[str, str],
        timeout: Timeout,
    ) -> None:
        self._api_url = api_url
        self._api_headers = headers
        self._timeout = timeout
        self._session: requests.Session | None = None
        self._exit_stack = ExitStack()

    def __enter__(self) -> "ApiSession":
        self._session = self._exit_stack.enter_context(requests.Session())
        self._session.headers.update(self._api_headers)
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> Any:
        self._session = None
        self._exit_stack.close()

    def url(self, uri: str) -> str:
        return f"{self._api_url}{uri}"

    def request(self, method: str, url: str, **kwargs: Any) -> requests.Response:
        if self._session is None:
            raise RuntimeError(
                f"{self.__class__.__name__} is a context manager maintaining "
                "a requests session. Call its methods only within its "
                "entered context."
            )
        response = self._session.request(
            method, url, timeout=self._timeout, **kwargs
        )
        response.raise_for_status()
        return response

    def api_get(self, uri: str, **kwargs: Any) -> dict[str, Any]:
        response = self.request("GET", self.url(uri), **kwargs)
        return cast(dict[str, Any], response.json())

    def api_post(self, uri: str, json: Any = None) -> dict[str, Any]:
        response = self.request("POST", self.url(uri), json=json)
        return cast(dict[str, Any], response.json())
