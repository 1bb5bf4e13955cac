"""
Gotenberg (v7+) conversion client.

HTML bodies go through the Chromium route, plain text bodies through the
LibreOffice route. Both receive a single in-memory file and answer with the
PDF as the response body.
"""

import logging
from typing import Optional

import httpx

from mailhook.errors import RenderServiceError

logger = logging.getLogger(__name__)

# Upper bound on how long one conversion may take, in seconds
RENDER_TIMEOUT = 30.0

HTML_ROUTE = "/forms/chromium/convert/html"
OFFICE_ROUTE = "/forms/libreoffice/convert"


class GotenbergClient:
    def __init__(self, endpoint: str, client: Optional[httpx.Client] = None):
        self.endpoint = endpoint.rstrip("/")
        self.client = client or httpx.Client()

    def _convert(self, route: str, filename: str, content: bytes, content_type: str) -> bytes:
        logger.debug(f"Converting {filename} ({len(content)} bytes) via {route}")

        response = self.client.post(
            f"{self.endpoint}{route}",
            files={"files": (filename, content, content_type)},
            timeout=RENDER_TIMEOUT,
        )
        if response.status_code != httpx.codes.OK:
            raise RenderServiceError(response.status_code, response.content)

        return response.content

    def convert_html(self, html: bytes) -> bytes:
        """Render an HTML document to PDF."""
        return self._convert(HTML_ROUTE, "index.html", html, "text/html")

    def convert_text(self, text: bytes) -> bytes:
        """Render a plain text document to PDF."""
        return self._convert(OFFICE_ROUTE, "index.txt", text, "text/plain")

    def close(self) -> None:
        self.client.close()
