"""Web browsing tool: fetch a URL and extract readable text."""

import json
import logging
import re
from urllib.parse import urlparse

import httpx
from bs4 import BeautifulSoup
from pydantic import Field

from src.config import settings
from src.tools.base import ToolParams, ToolResult
from src.tools.registry import registry

logger = logging.getLogger(__name__)

MAX_DOWNLOAD_BYTES = 5 * 1024 * 1024  # 5 MB
DEFAULT_USER_AGENT = "Mozilla/5.0 (compatible; TaurusBot/1.0)"

_STRIP_SELECTORS = "script, style, nav, footer, header, aside, .nav, .footer, .header, .sidebar"
_MAIN_SELECTORS = (
    "main",
    "article",
    ".content",
    ".main",
    "#content",
    "#main",
    ".post",
    ".article",
)
_WHITESPACE = re.compile(r"\s+")


class BrowseWebParams(ToolParams):
    url: str = Field(description="The URL of the web page to fetch")


def _is_http_url(url: str) -> bool:
    """Only absolute http(s) URLs with a host are fetched."""
    try:
        parsed = urlparse(url)
    except ValueError:
        return False
    return parsed.scheme in ("http", "https") and bool(parsed.netloc) and bool(parsed.hostname)


def _media_type(content_type: str) -> str:
    return content_type.lower().split(";")[0].strip()


def _extract_page(html: str, max_chars: int) -> tuple[str, str]:
    """Return (title, main text) from an HTML document."""
    soup = BeautifulSoup(html, "html.parser")

    for tag in soup.select(_STRIP_SELECTORS):
        tag.decompose()

    title = ""
    if soup.title and soup.title.string:
        title = soup.title.string.strip()
    if not title and (h1 := soup.find("h1")):
        title = h1.get_text(strip=True)

    container = None
    for selector in _MAIN_SELECTORS:
        container = soup.select_one(selector)
        if container is not None:
            break
    if container is None:
        container = soup.body or soup

    text = _WHITESPACE.sub(" ", container.get_text(" ")).strip()
    return title or "Untitled", text[:max_chars]


@registry.tool(
    name="browse_web",
    description=(
        "Fetch and read the content of a web page. Use this to gather "
        "information from websites."
    ),
    params_model=BrowseWebParams,
)
async def browse_web(url: str) -> ToolResult:
    if not _is_http_url(url):
        return ToolResult(data={"url": url}, error="Only http and https URLs can be fetched")

    try:
        async with httpx.AsyncClient(
            timeout=20,
            follow_redirects=True,
            headers={
                "User-Agent": DEFAULT_USER_AGENT,
                "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
            },
            max_redirects=5,
        ) as client:
            resp = await client.get(url)
    except httpx.TimeoutException:
        return ToolResult(data={"url": url}, error=f"Timeout fetching {url}")
    except httpx.HTTPError as exc:
        logger.exception("Failed to fetch webpage")
        return ToolResult(data={"url": url}, error=f"Failed to fetch webpage: {exc}")

    if not resp.is_success:
        return ToolResult(
            data={"url": url},
            error=f"HTTP {resp.status_code}: {resp.reason_phrase}",
        )

    # Guard against huge pages
    if len(resp.content) > MAX_DOWNLOAD_BYTES:
        return ToolResult(
            data={"url": url},
            error=f"Page too large ({len(resp.content)} bytes, max {MAX_DOWNLOAD_BYTES})",
        )

    content_type = resp.headers.get("content-type", "")
    media_type = _media_type(content_type)

    if media_type == "application/json" or media_type.endswith("+json"):
        try:
            payload = resp.json()
        except json.JSONDecodeError as exc:
            return ToolResult(data={"url": url}, error=f"Invalid JSON response: {exc}")
        return ToolResult(data={
            "url": url,
            "title": "JSON Response",
            "content": json.dumps(payload, indent=2),
        })

    if media_type not in ("text/html", "application/xhtml+xml"):
        return ToolResult(data={
            "url": url,
            "title": "Non-HTML Content",
            "content": f"Content-Type: {content_type}\n\nContent cannot be parsed as HTML.",
        })

    title, content = _extract_page(resp.text, settings.web_content_max_chars)
    return ToolResult(data={"url": url, "title": title, "content": content})
