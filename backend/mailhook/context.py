"""
Per-process application context.

Everything a request needs is built once at startup and handed to the
routers through ``app.state.mailhook``; nothing here is mutated afterwards.
"""

import logging
from dataclasses import dataclass, field
from typing import Optional

import httpx

from mailhook.config import Settings
from mailhook.observability import HookMetrics
from mailhook.services.allow_list import AllowList
from mailhook.services.dispatcher import EmailDispatcher
from mailhook.services.gotenberg import GotenbergClient
from mailhook.services.paperless import PaperlessClient

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Mailhook:
    allow_list: AllowList
    dispatcher: EmailDispatcher
    metrics: HookMetrics = field(default_factory=HookMetrics)


def build_mailhook(
    settings: Settings,
    paperless_http: Optional[httpx.Client] = None,
    gotenberg_http: Optional[httpx.Client] = None,
) -> Mailhook:
    """
    Create the clients, resolve tag names and assemble the context.

    Tag resolution talks to Paperless; BadTagError, PaperlessError and
    httpx.HTTPError propagate so startup can abort.
    """
    paperless = PaperlessClient(
        settings.paperless_endpoint,
        settings.paperless_api_key,
        client=paperless_http,
        timeout=settings.upload_timeout,
    )

    tags = paperless.resolve_tags(settings.paperless_tags)
    if tags:
        logger.info(f"Resolved paperless tags {settings.paperless_tags} to {list(tags)}")

    gotenberg = None
    if settings.gotenberg_endpoint:
        logger.info("Found gotenberg endpoint, enabling email rendering")
        gotenberg = GotenbergClient(settings.gotenberg_endpoint, client=gotenberg_http)

    return Mailhook(
        allow_list=AllowList(settings.allowed_emails, settings.to_address),
        dispatcher=EmailDispatcher(
            paperless,
            gotenberg=gotenberg,
            tags=tags,
            max_depth=settings.max_depth,
        ),
    )
