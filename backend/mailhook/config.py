"""
Process configuration.

All settings come from MAILHOOK_* environment variables. A .env file in the
working directory is loaded first (existing variables win), the same way the
backend has always picked up local settings.

Environment variables
---------------------
MAILHOOK_PAPERLESSENDPOINT   Paperless base URL (required).
MAILHOOK_PAPERLESSAPIKEY     Paperless API token (required).
MAILHOOK_PAPERLESSTAGS       Comma-separated tag names added to every upload.
MAILHOOK_GOTENBERGENDPOINT   Gotenberg base URL. Rendering is off when unset.
MAILHOOK_ALLOWEDEMAILS       Comma-separated sender addresses (required).
MAILHOOK_TOADDRESS           Recipient every email must be addressed to.
MAILHOOK_HTTPHOST            host:port to listen on (default 127.0.0.1:5000).
MAILHOOK_DEBUG               Enable debug logging.
MAILHOOK_UPLOADTIMEOUT       Seconds to wait on a Paperless request (default 60).
MAILHOOK_MAXDEPTH            How many attached emails deep to follow (default 10).
"""

import logging
import os
from typing import Mapping, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, ValidationError, field_validator

from mailhook.errors import ConfigError

ENV_PREFIX = "MAILHOOK_"

_LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

# Settings field -> environment variable suffix
_ENV_FIELDS = {
    "paperless_endpoint": "PAPERLESSENDPOINT",
    "paperless_api_key": "PAPERLESSAPIKEY",
    "paperless_tags": "PAPERLESSTAGS",
    "gotenberg_endpoint": "GOTENBERGENDPOINT",
    "allowed_emails": "ALLOWEDEMAILS",
    "to_address": "TOADDRESS",
    "http_host": "HTTPHOST",
    "debug": "DEBUG",
    "upload_timeout": "UPLOADTIMEOUT",
    "max_depth": "MAXDEPTH",
}

_LIST_FIELDS = {"paperless_tags", "allowed_emails"}


class Settings(BaseModel):
    """Validated, read-only process settings."""

    model_config = {"frozen": True}

    paperless_endpoint: str
    paperless_api_key: str
    paperless_tags: list[str] = []
    gotenberg_endpoint: Optional[str] = None

    allowed_emails: list[str]
    to_address: Optional[str] = None

    http_host: str = "127.0.0.1:5000"
    debug: bool = False
    upload_timeout: float = 60.0
    max_depth: int = 10

    @field_validator("paperless_endpoint", "paperless_api_key")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("must not be empty")
        return value.strip()

    @field_validator("allowed_emails")
    @classmethod
    def _at_least_one_sender(cls, value: list[str]) -> list[str]:
        if not value:
            raise ValueError("at least one allowed sender is required")
        return value

    @field_validator("gotenberg_endpoint", "to_address")
    @classmethod
    def _blank_is_unset(cls, value: Optional[str]) -> Optional[str]:
        if value is None or not value.strip():
            return None
        return value.strip()

    @field_validator("upload_timeout")
    @classmethod
    def _positive_timeout(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("must be positive")
        return value

    @field_validator("max_depth")
    @classmethod
    def _non_negative_depth(cls, value: int) -> int:
        if value < 0:
            raise ValueError("must not be negative")
        return value

    @property
    def listen_address(self) -> tuple[str, int]:
        """Split http_host into the (host, port) pair uvicorn expects."""
        host, _, port = self.http_host.rpartition(":")
        if not host or not port.isdigit():
            raise ConfigError(f"invalid {ENV_PREFIX}HTTPHOST {self.http_host!r}")
        return host, int(port)


def _split_list(value: str) -> list[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


def load_settings(environ: Optional[Mapping[str, str]] = None) -> Settings:
    """
    Build Settings from the environment.

    When environ is None the process environment is used after loading .env.
    Passing a mapping (tests) skips .env entirely.

    Raises ConfigError naming every missing or invalid variable.
    """
    if environ is None:
        load_dotenv()
        environ = os.environ

    raw: dict = {}
    for field, suffix in _ENV_FIELDS.items():
        value = environ.get(ENV_PREFIX + suffix)
        if value is None:
            continue
        raw[field] = _split_list(value) if field in _LIST_FIELDS else value

    try:
        return Settings(**raw)
    except ValidationError as exc:
        problems = ", ".join(
            f"{ENV_PREFIX}{_ENV_FIELDS[str(err['loc'][0])]}: {err['msg']}"
            for err in exc.errors()
            if err["loc"]
        )
        raise ConfigError(f"invalid configuration: {problems}") from exc


def configure_logging(debug: bool = False) -> None:
    """Send log output to the console at INFO, or DEBUG when debug is set."""
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.INFO,
        format=_LOG_FORMAT,
        force=True,
    )
    # httpx logs every request at INFO; keep that for debug runs only
    logging.getLogger("httpx").setLevel(logging.DEBUG if debug else logging.WARNING)
