"""HTTP plumbing shared by provider adapters."""

from __future__ import annotations

import base64
import logging
from http.cookiejar import DefaultCookiePolicy
from typing import Any

import requests
from requests import Response, Session

from ..errors import ProviderError, ProviderTimeout, ProviderUnavailable
from ..models.base import PreparedImage

logger = logging.getLogger(__name__)

# Upstream bodies are truncated to this many characters in error messages.
_BODY_PREVIEW = 500


def _stateless_session() -> Session:
    session = requests.Session()
    session.cookies.set_policy(DefaultCookiePolicy(allowed_domains=[]))
    return session


def encode_image(image: PreparedImage) -> str:
    """Encode a prepared image as base64 text suitable for JSON payloads."""
    return base64.b64encode(image.data).decode("ascii")


def data_uri(image: PreparedImage) -> str:
    return f"data:{image.content_type};base64,{encode_image(image)}"


class HttpTransport:
    """Issues JSON requests to one backend and maps failures onto the error taxonomy.

    One session is shared by every request thread. Headers and timeouts travel with
    each call and the default session refuses cookies, so the only state it mutates
    is urllib3's connection pool, which does its own locking.
    """

    def __init__(
        self,
        *,
        backend: str,
        base_url: str,
        api_key: str | None = None,
        timeout: float = 30.0,
        session: Session | None = None,
    ) -> None:
        self.backend = backend
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._api_key = api_key
        self._session = session or _stateless_session()

    def url(self, path: str) -> str:
        return f"{self.base_url}/{path.lstrip('/')}"

    def headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        return headers

    def post(
        self,
        path: str,
        payload: dict[str, Any],
        *,
        timeout: float | None = None,
    ) -> Response:
        return self._send("POST", path, payload=payload, timeout=timeout)

    def get(self, path: str, *, timeout: float | None = None) -> Response:
        return self._send("GET", path, timeout=timeout)

    def _send(
        self,
        method: str,
        path: str,
        *,
        payload: dict[str, Any] | None = None,
        timeout: float | None = None,
    ) -> Response:
        effective_timeout = self.timeout if timeout is None else timeout
        if effective_timeout <= 0:
            raise ProviderTimeout(f"No time left to call the {self.backend} backend.")
        url = self.url(path)
        try:
            response = self._session.request(
                method,
                url,
                json=payload,
                headers=self.headers(),
                timeout=effective_timeout,
            )
        except requests.exceptions.Timeout as exc:
            raise ProviderTimeout(
                f"{self.backend} request timed out after {effective_timeout:g}s."
            ) from exc
        except requests.exceptions.RequestException as exc:
            raise ProviderUnavailable(f"Failed to contact {self.backend} backend: {exc}") from exc
        if response.status_code >= 400:
            body = response.text or ""
            raise ProviderError(
                f"{self.backend} backend returned HTTP {response.status_code}: "
                f"{body[:_BODY_PREVIEW]}",
                status=response.status_code,
                body=body,
            )
        return response

    @staticmethod
    def json_body(response: Response, *, backend: str) -> Any:
        try:
            return response.json()
        except ValueError as exc:
            raise ProviderError(
                f"{backend} backend returned a non-JSON body: {response.text[:_BODY_PREVIEW]!r}",
                status=response.status_code,
                body=response.text,
            ) from exc

    def close(self) -> None:
        self._session.close()
