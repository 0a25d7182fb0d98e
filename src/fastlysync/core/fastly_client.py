"""
Fastly API HTTP client.

- requests.Session with Fastly-Key auth.
- Methods: get_json, post_json, delete_json.
- No retries: every failure goes straight back to the caller.
- Mutating requests are serialized by a client-wide lock unless the caller
  marks them `parallel=True` (purges are safe to run side by side).
- Errors: TransportError (network), APIError (non-2xx), DecodeError (bad JSON).

Usage:
    client = FastlyClient(api_key="...")
    data = client.get_json("/service/SU1Z0isxPaozGVKXdv0eY/version/3/logging/https")
"""

from __future__ import annotations

import json
import logging
import threading
import time
from typing import Any, Dict, List, Optional, Union

import requests

DEFAULT_BASE_URL = "https://api.fastly.com"

JSON = Union[Dict[str, Any], List[Any]]


class FastlyError(Exception):
    """Base class for every error raised by this package's API layer."""


class MissingRequiredField(FastlyError, ValueError):
    """A required input was empty; raised before any network call."""

    def __init__(self, field: str) -> None:
        super().__init__(f"missing required field '{field}'")
        self.field = field


class TransportError(FastlyError):
    """Network/connectivity failure (DNS, refused, timeout, TLS)."""

    def __init__(self, url: str, message: str) -> None:
        super().__init__(f"TransportError(url={url}): {message}")
        self.url = url
        self.message = message


class APIError(FastlyError):
    """Non-2xx response from the API."""

    def __init__(self, status: int, url: str, body: str = "") -> None:
        msg = f"APIError(status={status}, url={url})"
        if body:
            msg += f" body={body[:200]}"
        super().__init__(msg)
        self.status = status
        self.url = url
        self.body = body

    @property
    def is_not_found(self) -> bool:
        return self.status == 404


class DecodeError(FastlyError):
    """2xx response whose body is not valid JSON."""

    def __init__(self, url: str, body: str, message: str) -> None:
        super().__init__(f"DecodeError(url={url}): {message}")
        self.url = url
        self.body = body


class FastlyClient:
    """Minimal JSON HTTP client for the Fastly control-plane API."""

    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        api_key: str = "",
        *,
        verify_tls: bool = True,
        timeout_sec: float = 30,
        logger: Optional[logging.LoggerAdapter] = None,
    ) -> None:
        if not base_url:
            raise ValueError("base_url is required")
        self.base_url = base_url.rstrip("/")
        self.verify_tls = verify_tls
        self.timeout = float(timeout_sec)
        self.log = logger or logging.getLogger("fsync.http")

        self.session = requests.Session()
        self.session.headers.update({
            "Fastly-Key": api_key,
            "Accept": "application/json",
            "User-Agent": "fastlysync/HTTPClient",
        })
        # Held by non-parallel mutating requests only.
        self._mutex = threading.Lock()

    # ------------- Public API -------------

    def get_json(self, path: str) -> JSON:
        return self._request_json("GET", path)

    def post_json(
        self,
        path: str,
        payload: Optional[Dict[str, Any]] = None,
        *,
        headers: Optional[Dict[str, str]] = None,
        parallel: bool = False,
    ) -> JSON:
        return self._request_json("POST", path, payload, headers=headers, parallel=parallel)

    def delete_json(self, path: str, *, parallel: bool = False) -> JSON:
        return self._request_json("DELETE", path, parallel=parallel)

    # ------------- Internal -------------

    def _full_url(self, path: str) -> str:
        return f"{self.base_url}/{path.lstrip('/')}"

    def _request_json(
        self,
        method: str,
        path: str,
        payload: Optional[Dict[str, Any]] = None,
        *,
        headers: Optional[Dict[str, str]] = None,
        parallel: bool = False,
    ) -> JSON:
        if method == "GET" or parallel:
            return self._send(method, path, payload, headers)
        with self._mutex:
            return self._send(method, path, payload, headers)

    def _send(
        self,
        method: str,
        path: str,
        payload: Optional[Dict[str, Any]],
        headers: Optional[Dict[str, str]],
    ) -> JSON:
        url = self._full_url(path)
        start = time.time()
        try:
            resp = self.session.request(
                method=method,
                url=url,
                json=payload,
                headers=headers,
                timeout=self.timeout,
                verify=self.verify_tls,
            )
        except requests.RequestException as exc:
            err = TransportError(url, str(exc))
            self.log.warning("%s %s failed (status=0): %s", method, path, err)
            raise err from exc

        elapsed = (time.time() - start) * 1000
        if not 200 <= resp.status_code < 300:
            err = APIError(resp.status_code, url, resp.text or "")
            self.log.warning("%s %s failed (status=%s): %s", method, path, resp.status_code, err)
            raise err

        self.log.debug("%s %s -> %s in %.1fms", method, path, resp.status_code, elapsed)
        if resp.status_code == 204 or not resp.content:
            return {}
        try:
            return json.loads(resp.content.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise DecodeError(url, resp.text, str(exc)) from exc
