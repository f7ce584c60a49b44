"""HTTP fetch tool for retrieving web page content."""

import re
from typing import Any
from urllib.parse import urljoin

from bs4 import BeautifulSoup
import httpx

from meow import __version__
from meow.exceptions import ToolLimitError
from meow.logging import get_logger
from meow.tools.registry import Tool, ToolOutcome
from meow.tools.sandbox import Sandbox

log = get_logger(__name__)


def extract_readable_text(html: str, base_url: str | None = None) -> str:
    """Extract human-readable text from raw HTML."""
    soup = BeautifulSoup(html, "html.parser")

    for tag in soup(["script", "style", "noscript", "template", "svg", "canvas"]):
        tag.decompose()

    # Keep link targets so later turns can follow them.
    for anchor in soup.find_all("a"):
        href = (anchor.get("href") or "").strip()
        label = anchor.get_text(" ", strip=True)
        if not href:
            continue
        absolute = urljoin(base_url, href) if base_url else href
        anchor.replace_with(f"{label} ({absolute})" if label else absolute)

    title = ""
    if soup.title and soup.title.string:
        title = soup.title.string.strip()

    lines: list[str] = []
    for line in soup.get_text(separator="\n").splitlines():
        cleaned = re.sub(r"\s+", " ", line).strip()
        if cleaned:
            lines.append(cleaned)

    text = "\n".join(lines)
    if title and not text.startswith(title):
        return f"{title}\n\n{text}" if text else title
    return text


class HttpFetchTool(Tool):
    """Fetch a URL and return its readable text."""

    name = "HttpFetch"
    description = "Fetch a URL (http or https). HTML pages are reduced to readable text."
    parameters = {"url": "string"}
    required = ("url",)

    def __init__(self, timeout: float = 30.0, transport: httpx.AsyncBaseTransport | None = None):
        self.timeout_seconds = timeout
        self._transport = transport

    async def execute(self, args: dict[str, Any], sandbox: Sandbox, max_bytes: int) -> ToolOutcome:
        url = str(args["url"]).strip()
        if not url.startswith(("http://", "https://")):
            return ToolOutcome(success=False, error=f"Unsupported URL scheme: {url}")

        log.info("Fetching URL", url=url)
        raw = bytearray()
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout_seconds,
                follow_redirects=True,
                headers={"User-Agent": f"meow/{__version__} (HttpFetch)"},
                transport=self._transport,
            ) as client:
                async with client.stream("GET", url) as response:
                    async for chunk in response.aiter_bytes():
                        raw.extend(chunk)
                        if len(raw) > max_bytes:
                            log.warning("HTTP fetch aborted", url=url, received=len(raw))
                            raise ToolLimitError(
                                self.name,
                                "size",
                                f"Response exceeded the {max_bytes} byte limit; download aborted",
                            )
        except httpx.HTTPError as e:
            log.error("HTTP fetch failed", url=url, error=str(e))
            return ToolOutcome(success=False, error=f"HTTP error: {e}")

        body = bytes(raw).decode(response.encoding or "utf-8", errors="replace")
        content_type = response.headers.get("content-type", "")
        if "html" in content_type.lower():
            body = extract_readable_text(body, base_url=str(response.url))

        output = f"[URL: {response.url}]\n[Status: {response.status_code}]\n\n{body}"
        if response.status_code >= 400:
            return ToolOutcome(success=False, content=output, error=f"HTTP {response.status_code}")
        return ToolOutcome(success=True, content=output)
