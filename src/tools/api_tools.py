"""Generic HTTP API call tool."""

from __future__ import annotations

import ipaddress
import json
import logging
from typing import Any, Literal
from urllib.parse import urlparse

import httpx
from pydantic import Field

from src.config import settings
from src.tools.base import ToolParams, ToolResult
from src.tools.registry import registry

logger = logging.getLogger(__name__)

DEFAULT_USER_AGENT = "TaurusBot/1.0"
_BODY_METHODS = ("POST", "PUT", "PATCH")
_BLOCKED_HOSTNAMES = ("localhost", "localhost.localdomain", "ip6-localhost")


class ApiCallParams(ToolParams):
    url: str = Field(description="The full URL to make the request to")
    method: Literal["GET", "POST", "PUT", "PATCH", "DELETE"] = Field(
        default="GET",
        description="The HTTP method to use (default: GET)",
    )
    headers: dict[str, str] | None = Field(
        default=None,
        description="Optional headers to include in the request",
    )
    body: dict[str, Any] | list[Any] | str | None = Field(
        default=None,
        description="Optional request body for POST/PUT/PATCH requests",
    )


def _is_loopback_host(hostname: str) -> bool:
    """True for localhost names and loopback/unspecified IP literals."""
    host = hostname.strip("[]").rstrip(".").lower()
    if host in _BLOCKED_HOSTNAMES or host.endswith(".localhost"):
        return True
    try:
        addr = ipaddress.ip_address(host)
    except ValueError:
        return False
    if isinstance(addr, ipaddress.IPv6Address) and addr.ipv4_mapped:
        addr = addr.ipv4_mapped
    return addr.is_loopback or addr.is_unspecified


def _has_header(headers: dict[str, str], name: str) -> bool:
    return any(k.lower() == name.lower() for k in headers)


def _build_request(
    method: str, headers: dict[str, str] | None, body: Any
) -> tuple[dict[str, str], str | None]:
    """Merge default headers and encode the body for methods that carry one."""
    merged = {
        "User-Agent": DEFAULT_USER_AGENT,
        "Accept": "application/json, text/plain, */*",
        **(headers or {}),
    }
    if body is None or method not in _BODY_METHODS:
        return merged, None

    content = body if isinstance(body, str) else json.dumps(body)
    if not _has_header(headers or {}, "Content-Type"):
        merged["Content-Type"] = "application/json"
    return merged, content


@registry.tool(
    name="api_call",
    description=(
        "Make an HTTP request to an external API. Supports GET, POST, PUT, "
        "PATCH, DELETE methods."
    ),
    params_model=ApiCallParams,
)
async def api_call(
    url: str,
    method: str = "GET",
    headers: dict[str, str] | None = None,
    body: Any = None,
) -> ToolResult:
    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https") or not parsed.hostname:
        return ToolResult(error=f"Invalid URL: {url}")
    if _is_loopback_host(parsed.hostname):
        return ToolResult(error="Calls to localhost are not allowed for security reasons")

    method = method.upper()
    request_headers, content = _build_request(method, headers, body)

    try:
        async with httpx.AsyncClient(timeout=20, follow_redirects=False) as client:
            resp = await client.request(method, url, headers=request_headers, content=content)
    except httpx.TimeoutException:
        return ToolResult(error=f"Timeout calling {url}")
    except httpx.HTTPError as exc:
        logger.warning("API call to %s failed: %s", url, exc)
        return ToolResult(error=f"Request failed: {exc}")

    content_type = resp.headers.get("content-type", "")
    if "application/json" in content_type:
        try:
            data: Any = resp.json()
        except json.JSONDecodeError as exc:
            return ToolResult(
                data={"status": resp.status_code},
                error=f"Invalid JSON response: {exc}",
            )
    else:
        data = resp.text
        limit = settings.api_response_max_chars
        if len(data) > limit:
            data = data[:limit] + "\n... (truncated)"

    payload = {
        "status": resp.status_code,
        "headers": dict(resp.headers),
        "data": data,
    }
    if not resp.is_success:
        return ToolResult(data=payload, error=f"HTTP {resp.status_code}")
    return ToolResult(data=payload)
