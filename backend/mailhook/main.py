"""
Mailhook API
FastAPI application that turns inbound SendGrid emails into Paperless documents.

Run with the ``mailhook`` console script; configuration is described in
mailhook.config.
"""

import logging
import sys

import httpx
import uvicorn
from fastapi import FastAPI
from fastapi.responses import PlainTextResponse, Response

from mailhook.config import configure_logging, load_settings
from mailhook.context import Mailhook, build_mailhook
from mailhook.errors import MailhookError
from mailhook.observability import CONTENT_TYPE_LATEST
from mailhook.routers import sendgrid

logger = logging.getLogger(__name__)

VERSION = "0.1.0"


def create_app(mailhook: Mailhook) -> FastAPI:
    """Build the FastAPI application around an already assembled context."""
    app = FastAPI(
        title="Mailhook",
        description="Inbound email to Paperless-ng document bridge",
        version=VERSION,
    )
    app.state.mailhook = mailhook

    app.include_router(sendgrid.router, tags=["webhook"])

    @app.get("/health", response_class=PlainTextResponse)
    async def health():
        return "OK"

    @app.get("/metrics", include_in_schema=False)
    async def metrics():
        """Expose the Prometheus metrics of this application."""
        return Response(
            content=mailhook.metrics.generate_latest(),
            media_type=CONTENT_TYPE_LATEST,
        )

    return app


def main() -> None:
    """
    Load configuration, resolve startup dependencies and serve HTTP.

    Configuration errors and tag resolution failures are fatal: they are
    logged and the process exits with status 1.
    """
    configure_logging()
    try:
        settings = load_settings()
        configure_logging(settings.debug)
        host, port = settings.listen_address
        mailhook = build_mailhook(settings)
    except (MailhookError, httpx.HTTPError) as exc:
        logger.critical(f"Unable to start mailhook: {exc}")
        sys.exit(1)

    logger.info(f"Starting http server on {host}:{port}")
    uvicorn.run(create_app(mailhook), host=host, port=port, log_config=None)


if __name__ == "__main__":
    main()
