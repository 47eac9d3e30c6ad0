"""Async client for the Hetzner Robot webservice.

Only the calls needed to read and reconcile servers, firewalls, failover IPs
and vSwitches are exposed. Responses are unwrapped from Robot's envelopes
(``{"server": {...}}``) and every failure is raised as a RobotAPIError
subclass carrying Robot's machine-readable error code.
"""

from __future__ import annotations

import logging
import time
from typing import Any
from urllib.parse import quote, urlencode

import httpx

from .config import DEFAULT_BASE_URL, DEFAULT_REQUEST_TIMEOUT_SECONDS

logger = logging.getLogger(__name__)


# =============================================================================
# Errors
# =============================================================================


class RobotAPIError(Exception):
    """Base class for every error raised by RobotClient."""

    def __init__(
        self,
        message: str,
        *,
        status: int | None = None,
        code: str | None = None,
    ) -> None:
        super().__init__(message)
        self.status = status
        self.code = code


class RobotTransportError(RobotAPIError):
    """Network failure or timeout before a response was received."""


class RobotAuthError(RobotAPIError):
    """Credentials were rejected (HTTP 401)."""


class RobotNotFoundError(RobotAPIError):
    """Unknown resource or method (HTTP 404)."""


class RobotValidationError(RobotAPIError):
    """Request parameters were rejected (HTTP 400)."""

    def __init__(
        self,
        message: str,
        *,
        status: int | None = None,
        code: str | None = None,
        missing: list[str] | None = None,
        invalid: list[str] | None = None,
    ) -> None:
        super().__init__(message, status=status, code=code)
        self.missing = missing or []
        self.invalid = invalid or []


class RobotRateLimitError(RobotAPIError):
    """Request limit exceeded (HTTP 403)."""

    def __init__(
        self,
        message: str,
        *,
        status: int | None = None,
        code: str | None = None,
        max_request: int | None = None,
        interval: int | None = None,
    ) -> None:
        super().__init__(message, status=status, code=code)
        self.max_request = max_request
        self.interval = interval


# =============================================================================
# Form encoding
# =============================================================================


def _form_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def flatten_form(data: dict[str, Any], prefix: str = "") -> list[tuple[str, str]]:
    """Flatten nested data into Robot's bracketed form fields.

    ``{"rules": {"input": [{"name": "x"}]}}`` becomes
    ``[("rules[input][0][name]", "x")]``. ``None`` values are skipped.
    """
    pairs: list[tuple[str, str]] = []
    for key, value in data.items():
        name = f"{prefix}[{key}]" if prefix else str(key)
        if value is None:
            continue
        if isinstance(value, dict):
            pairs.extend(flatten_form(value, name))
        elif isinstance(value, (list, tuple)):
            pairs.extend(flatten_form(dict(enumerate(value)), name))
        else:
            pairs.append((name, _form_value(value)))
    return pairs


# =============================================================================
# Client
# =============================================================================


class RobotClient:
    """Thin async wrapper around the Robot webservice endpoints.

    Usage:
        async with RobotClient(auth=("user", "secret")) as client:
            servers = await client.list_servers()
    """

    def __init__(
        self,
        auth: httpx.Auth | tuple[str, str],
        *,
        base_url: str = DEFAULT_BASE_URL,
        timeout_seconds: float = DEFAULT_REQUEST_TIMEOUT_SECONDS,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._client = httpx.AsyncClient(
            base_url=base_url,
            auth=auth,
            timeout=timeout_seconds,
            transport=transport,
            headers={"Accept": "application/json"},
        )

    async def __aenter__(self) -> RobotClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(
        self,
        method: str,
        path: str,
        *,
        expected_status: int,
        data: dict[str, Any] | None = None,
        expect_body: bool = True,
    ) -> Any:
        """Send a request and return the decoded JSON body.

        Raises:
            RobotAPIError: Mapped from the response status or transport failure.
        """
        content = None
        headers = {}
        if data is not None:
            content = urlencode(flatten_form(data))
            headers["Content-Type"] = "application/x-www-form-urlencoded"

        start_time = time.monotonic()
        try:
            response = await self._client.request(method, path, content=content, headers=headers)
        except httpx.TimeoutException as e:
            raise RobotTransportError(f"Timeout: {method} {path}") from e
        except httpx.RequestError as e:
            raise RobotTransportError(f"Request failed: {method} {path}: {e}") from e

        latency_ms = int((time.monotonic() - start_time) * 1000)
        logger.debug("HTTP %s %s -> %s in %dms", method, path, response.status_code, latency_ms)

        body: Any = None
        if response.content:
            try:
                body = response.json()
            except ValueError as e:
                raise RobotAPIError(
                    f"Invalid JSON in response: {method} {path}",
                    status=response.status_code,
                ) from e

        if response.status_code >= 400:
            raise self._error_from_response(method, path, response.status_code, body)

        if body is None and expect_body:
            raise RobotAPIError(f"Empty response: {method} {path}", status=response.status_code)

        if response.status_code != expected_status:
            raise RobotAPIError(
                f"Unexpected status code {response.status_code} for {method} {path}: {body}",
                status=response.status_code,
            )

        return body

    @staticmethod
    def _error_from_response(method: str, path: str, status: int, body: Any) -> RobotAPIError:
        error = body.get("error") if isinstance(body, dict) else None

        if not isinstance(error, dict):
            if status == 401:
                return RobotAuthError("Unauthorized", status=status)
            if status == 404:
                return RobotNotFoundError(f"Unknown method: {path} ({method})", status=status)
            return RobotAPIError(f"HTTP {status}: {method} {path}", status=status)

        code = error.get("code")
        message = f"{code} (code {error.get('status', status)}): {error.get('message')}"

        match status:
            case 400:
                missing = error.get("missing") or []
                invalid = error.get("invalid") or []
                return RobotValidationError(
                    f"{message} (missing: {missing}, invalid: {invalid})",
                    status=status,
                    code=code,
                    missing=missing,
                    invalid=invalid,
                )
            case 401:
                return RobotAuthError(message, status=status, code=code)
            case 403:
                return RobotRateLimitError(
                    f"{message} (request limit: {error.get('max_request')}, "
                    f"time interval: {error.get('interval')})",
                    status=status,
                    code=code,
                    max_request=error.get("max_request"),
                    interval=error.get("interval"),
                )
            case 404:
                return RobotNotFoundError(message, status=status, code=code)
            case _:
                return RobotAPIError(message, status=status, code=code)

    @staticmethod
    def _unwrap(body: Any, key: str | None, path: str) -> dict[str, Any]:
        """Return the object inside a ``{key: {...}}`` envelope (or ``body`` itself).

        Raises:
            RobotAPIError: If the body does not have the expected shape.
        """
        item = body.get(key) if key is not None and isinstance(body, dict) else body
        if not isinstance(item, dict):
            expected = f"{key!r} envelope" if key is not None else "an object"
            raise RobotAPIError(f"Unexpected response body for {path}: expected {expected}")
        return item

    @classmethod
    def _unwrap_list(cls, body: Any, key: str | None, path: str) -> list[dict[str, Any]]:
        if not isinstance(body, list):
            raise RobotAPIError(f"Unexpected response body for {path}: expected a list")
        return [cls._unwrap(item, key, path) for item in body]

    # -- servers -------------------------------------------------------------

    async def list_servers(self) -> list[dict[str, Any]]:
        body = await self._request("GET", "/server", expected_status=200)
        return self._unwrap_list(body, "server", "/server")

    async def set_server_name(self, ip: str, name: str) -> dict[str, Any]:
        path = f"/server/{quote(ip)}"
        body = await self._request("POST", path, expected_status=200, data={"server_name": name})
        return self._unwrap(body, "server", path)

    # -- firewall ------------------------------------------------------------

    async def get_firewall(self, ip: str) -> dict[str, Any]:
        path = f"/firewall/{quote(ip)}"
        body = await self._request("GET", path, expected_status=200)
        return self._unwrap(body, "firewall", path)

    async def apply_firewall(self, ip: str, firewall: dict[str, Any]) -> dict[str, Any]:
        """Replace the whole firewall configuration (Robot has no partial update)."""
        path = f"/firewall/{quote(ip)}"
        body = await self._request("POST", path, expected_status=202, data=firewall)
        return self._unwrap(body, "firewall", path)

    # -- failover ------------------------------------------------------------

    async def list_failovers(self) -> list[dict[str, Any]]:
        body = await self._request("GET", "/failover", expected_status=200)
        return self._unwrap_list(body, "failover", "/failover")

    async def switch_failover(self, ip: str, active_server_ip: str) -> dict[str, Any]:
        path = f"/failover/{quote(ip)}"
        body = await self._request(
            "POST", path, expected_status=200, data={"active_server_ip": active_server_ip}
        )
        return self._unwrap(body, "failover", path)

    async def clear_failover(self, ip: str) -> dict[str, Any]:
        """Remove the routing of a failover IP."""
        path = f"/failover/{quote(ip)}"
        body = await self._request("DELETE", path, expected_status=200)
        return self._unwrap(body, "failover", path)

    # -- vSwitch -------------------------------------------------------------

    async def list_vswitches(self) -> list[dict[str, Any]]:
        body = await self._request("GET", "/vswitch", expected_status=200)
        return self._unwrap_list(body, None, "/vswitch")

    async def get_vswitch(self, vswitch_id: int) -> dict[str, Any]:
        path = f"/vswitch/{vswitch_id}"
        body = await self._request("GET", path, expected_status=200)
        return self._unwrap(body, None, path)

    async def edit_vswitch(self, vswitch_id: int, name: str, vlan: int) -> None:
        await self._request(
            "POST",
            f"/vswitch/{vswitch_id}",
            expected_status=201,
            data={"name": name, "vlan": vlan},
            expect_body=False,
        )

    async def add_vswitch_servers(self, vswitch_id: int, server_ips: list[str]) -> None:
        await self._request(
            "POST",
            f"/vswitch/{vswitch_id}/server",
            expected_status=201,
            data={"server": server_ips},
            expect_body=False,
        )

    async def remove_vswitch_servers(self, vswitch_id: int, server_ips: list[str]) -> None:
        await self._request(
            "DELETE",
            f"/vswitch/{vswitch_id}/server",
            expected_status=200,
            data={"server": server_ips},
            expect_body=False,
        )
