"""
Paperless-ng API client.

Only the two calls mailhook needs are implemented:

  POST /api/documents/post_document/   upload one document with tag IDs
  GET  /api/tags/?name__iexact=<name>  look up a tag ID by name

Every request goes through an httpx.Client whose auth flow adds the
``Authorization: Token <api key>`` header, so tests can hand in a client
backed by httpx.MockTransport and still see the real header.
"""

import logging
from typing import BinaryIO, Iterable, Optional, Sequence

import httpx

from mailhook.errors import BadTagError, PaperlessError

logger = logging.getLogger(__name__)

# Seconds to wait on any single Paperless request
UPLOAD_TIMEOUT = 60.0


class TokenAuth(httpx.Auth):
    """Add a Paperless API token to every request."""

    def __init__(self, api_key: str):
        self.api_key = api_key

    def auth_flow(self, request: httpx.Request):
        request.headers["Authorization"] = f"Token {self.api_key}"
        yield request


class PaperlessClient:
    """Connection to one Paperless-ng instance."""

    def __init__(
        self,
        endpoint: str,
        api_key: str,
        client: Optional[httpx.Client] = None,
        timeout: float = UPLOAD_TIMEOUT,
    ):
        self.endpoint = endpoint.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self.client = client or httpx.Client()
        self.client.auth = TokenAuth(api_key)

    def upload_document(self, stream: BinaryIO, filename: str, tags: Sequence[int] = ()) -> None:
        """
        Upload a document with the given filename and tag IDs.

        The stream is read while the request body is sent. Raises
        PaperlessError for any non-200 answer and httpx.HTTPError for
        transport failures.
        """
        logger.debug(f"Uploading {filename!r} to paperless with tags {list(tags)}")

        response = self.client.post(
            f"{self.endpoint}/api/documents/post_document/",
            files={"document": (filename, stream)},
            data={"tags": [str(tag) for tag in tags]},
            timeout=self.timeout,
        )

        if response.status_code != httpx.codes.OK:
            raise PaperlessError(
                f"got bad paperless status code: {response.status_code}",
                status_code=response.status_code,
                body=response.content,
            )

        logger.debug(f"Paperless accepted {filename!r}: {response.text}")

    def resolve_tag(self, name: str) -> int:
        """
        Resolve a tag name into its Paperless ID.

        The lookup is case-insensitive. Raises BadTagError unless exactly
        one tag matches.
        """
        logger.debug(f"Looking up paperless tag {name!r}")

        response = self.client.get(
            f"{self.endpoint}/api/tags/",
            params={"name__iexact": name},
            timeout=self.timeout,
        )
        if response.status_code != httpx.codes.OK:
            raise PaperlessError(
                f"got bad paperless status code looking up tag {name!r}: "
                f"{response.status_code}",
                status_code=response.status_code,
                body=response.content,
            )

        results = response.json().get("results") or []
        if len(results) != 1:
            raise BadTagError(
                f"got incorrect number of tags for {name!r}: {len(results)}"
            )

        tag_id = int(results[0]["id"])
        logger.debug(f"Resolved tag {name!r} to ID {tag_id}")
        return tag_id

    def resolve_tags(self, names: Iterable[str]) -> tuple[int, ...]:
        """Resolve every tag name, keeping the configured order."""
        return tuple(self.resolve_tag(name) for name in names)

    def close(self) -> None:
        self.client.close()
