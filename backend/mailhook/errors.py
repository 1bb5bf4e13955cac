"""
Exception hierarchy for the mailhook service.

Only ConfigError and tag resolution failures are fatal, and only at
startup. Everything raised while handling a webhook is logged by the
dispatcher or the router and never changes the 200 sent to the provider.
"""

from typing import Optional


class MailhookError(Exception):
    """Base class for every error raised by mailhook."""


class ConfigError(MailhookError):
    """Required configuration is missing or invalid."""


class EmailParseError(MailhookError):
    """The raw RFC 5322 message could not be parsed at all."""


class PaperlessError(MailhookError):
    """
    Paperless rejected a request.

    Carries the HTTP status and the raw response body so store-side
    rejections (quota, validation) can be told apart from network errors.
    """

    def __init__(self, message: str, status_code: int, body: bytes = b""):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class BadTagError(MailhookError):
    """A tag name did not resolve to exactly one Paperless tag."""


class RenderError(MailhookError):
    """Base class for failures on the render-and-upload path."""


class RenderUnavailable(RenderError):
    """No Gotenberg endpoint was configured."""


class EmptyBody(RenderError):
    """The email has neither an HTML nor a plain text body."""


class RenderServiceError(RenderError):
    """Gotenberg answered with a non-200 status."""

    def __init__(self, status_code: int, body: Optional[bytes] = None):
        super().__init__(f"got wrong gotenberg status code: {status_code}")
        self.status_code = status_code
        self.body = body


class NestingTooDeep(MailhookError):
    """A chain of attached emails went past the configured depth cap."""
