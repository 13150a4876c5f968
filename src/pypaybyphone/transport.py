"""Authenticated HTTP transport for the PayByPhone APIs."""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

import aiohttp

from .const import (
    API_KEY_HEADER,
    API_VERSION_HEADER,
    AUTHORIZATION_HEADER,
    CLIENT_TYPE_HEADER,
    CONSUMER_BASE_URL,
    DEFAULT_API_VERSION,
    DEFAULT_CLIENT_TYPE,
    DEFAULT_HEADERS,
)
from .exceptions import ParseError, TransportError, ValidationError
from .models import AuthToken

_LOGGER = logging.getLogger(__name__)
_DEFAULT_TIMEOUT = aiohttp.ClientTimeout(total=30)


@dataclass(frozen=True, slots=True)
class RawResponse:
    status: int
    text: str

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    def parse_json(self) -> Any:
        try:
            return json.loads(self.text)
        except ValueError as exc:
            raise ParseError("Response did not contain valid JSON.") from exc


class Transport:
    """Send requests with the browser identity headers and the bearer token.

    Responses are returned as-is; interpreting the status code is the caller's
    job.
    """

    def __init__(
        self,
        session: aiohttp.ClientSession,
        *,
        base_url: str | None = None,
        timeout: aiohttp.ClientTimeout | None = None,
    ) -> None:
        if session is None:
            raise ValidationError("Session is required.")
        self._session = session
        self._base_url = self._normalize_base_url(base_url or CONSUMER_BASE_URL)
        self._timeout = timeout or _DEFAULT_TIMEOUT
        self.api_key: str | None = None
        self.token: AuthToken | None = None

    def build_url(self, path: str) -> str:
        if not isinstance(path, str) or not path:
            raise ValidationError("Path must be a non-empty string.")
        if path.startswith("http://") or path.startswith("https://"):
            raise ValidationError("Use relative paths when building API requests.")
        normalized_path = path if path.startswith("/") else f"/{path}"
        return f"{self._base_url}{normalized_path}"

    def build_headers(self) -> dict[str, str]:
        if self.api_key is None or self.token is None:
            raise RuntimeError("Transport used before bootstrap; API key or token is missing.")
        headers = dict(DEFAULT_HEADERS)
        headers[API_VERSION_HEADER] = DEFAULT_API_VERSION
        headers[API_KEY_HEADER] = self.api_key
        headers[AUTHORIZATION_HEADER] = self.token.header_value
        return headers

    async def request(
        self,
        method: str,
        path: str,
        params: Mapping[str, Any] | None = None,
    ) -> RawResponse:
        url = self.build_url(path)
        request_kwargs: dict[str, Any] = {"headers": self.build_headers()}
        if params is not None:
            if method.upper() == "GET":
                request_kwargs["params"] = dict(params)
            else:
                request_kwargs["json"] = dict(params)
        return await self._send(method, url, **request_kwargs)

    async def fetch_text(self, url: str) -> RawResponse:
        return await self._send("GET", url, headers=dict(DEFAULT_HEADERS))

    async def post_form(self, url: str, data: Mapping[str, str]) -> RawResponse:
        headers = dict(DEFAULT_HEADERS)
        headers[CLIENT_TYPE_HEADER] = DEFAULT_CLIENT_TYPE
        return await self._send("POST", url, headers=headers, data=dict(data))

    async def _send(self, method: str, url: str, **kwargs: Any) -> RawResponse:
        _LOGGER.debug("Request %s %s", method, url)
        try:
            async with self._session.request(
                method,
                url,
                timeout=self._timeout,
                ssl=True,
                **kwargs,
            ) as response:
                text = await response.text()
                _LOGGER.debug("Response %s %s status=%s", method, url, response.status)
                return RawResponse(status=response.status, text=text)
        except (aiohttp.ClientError, TimeoutError) as exc:
            raise TransportError("Network request failed.") from exc

    def _normalize_base_url(self, base_url: str) -> str:
        if not isinstance(base_url, str) or not base_url.strip():
            raise ValidationError("base_url must be a non-empty string.")
        return base_url.strip().rstrip("/")
