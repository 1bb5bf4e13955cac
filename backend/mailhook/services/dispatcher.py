"""
Email dispatcher: turns a ParsedEmail into Paperless documents.

Steps for one email:
1. Attachments present -> handle each attachment in order:
   - message/rfc822: parse the attached email and dispatch it the same way
     (up to max_depth levels deep);
   - anything else: upload the decoded attachment with its own filename.
2. No attachments -> render the body (HTML, else plain text) to PDF with
   Gotenberg and upload that, when Gotenberg is configured.

Processing is best-effort. A failing attachment is logged and recorded, and
the remaining attachments are still handled. Parts the parser could not
extract count as failed attachments. Nothing raised here reaches the
webhook response.
"""

import io
import logging
from dataclasses import dataclass
from typing import Optional, Sequence

from mailhook.errors import (
    EmailParseError,
    EmptyBody,
    NestingTooDeep,
    PaperlessError,
    RenderError,
    RenderUnavailable,
)
from mailhook.models.inbound_email import Attachment, ParsedEmail
from mailhook.services.email_parser import parse_email
from mailhook.services.encoding import open_attachment
from mailhook.services.gotenberg import GotenbergClient
from mailhook.services.paperless import PaperlessClient

logger = logging.getLogger(__name__)

DEFAULT_MAX_DEPTH = 10
FALLBACK_PDF_NAME = "Email.pdf"


@dataclass(frozen=True)
class DispatchFailure:
    """One document that could not be stored, and why."""

    filename: str
    error: Exception


def pdf_filename(subject: str) -> str:
    """Name a rendered email after its subject."""
    subject = subject.strip()
    return f"{subject}.pdf" if subject else FALLBACK_PDF_NAME


class EmailDispatcher:
    """Uploads the documents contained in an email."""

    def __init__(
        self,
        paperless: PaperlessClient,
        gotenberg: Optional[GotenbergClient] = None,
        tags: Sequence[int] = (),
        max_depth: int = DEFAULT_MAX_DEPTH,
    ):
        self.paperless = paperless
        self.gotenberg = gotenberg
        self.tags = tuple(tags)
        self.max_depth = max_depth

    def process(self, email: ParsedEmail, depth: int = 0) -> list[DispatchFailure]:
        """
        Dispatch an email and every email attached to it.

        Args:
            email: The parsed message.
            depth: How many attached-email levels down this message is.

        Returns:
            The failures, in the order they happened. An empty list means
            every document was stored (or there was nothing to store).
        """
        if email.attachments or email.unreadable:
            logger.info(
                f"Processing {len(email.attachments)} attachment(s) "
                f"from {email.sender!r} (depth {depth})"
            )
            failures: list[DispatchFailure] = []
            for attachment in email.attachments:
                failures.extend(self._process_attachment(attachment, depth))
            for part in email.unreadable:
                logger.error(f"Attachment {part.filename!r} could not be read: {part.reason}")
                failures.append(DispatchFailure(part.filename, EmailParseError(part.reason)))
            return failures

        if self.gotenberg is None:
            logger.debug(
                f"Email {email.subject!r} has no attachments and rendering "
                f"is not configured, nothing to do"
            )
            return []

        filename = pdf_filename(email.subject)
        try:
            self.render_and_upload(email)
        except RenderError as e:
            logger.error(f"Could not render email {email.subject!r}: {e}")
            return [DispatchFailure(filename, e)]
        except Exception as e:
            logger.error(f"Gotenberg request for email {email.subject!r} failed: {e}")
            return [DispatchFailure(filename, e)]
        return []

    def _process_attachment(self, attachment: Attachment, depth: int) -> list[DispatchFailure]:
        filename = attachment.filename
        logger.debug(f"Processing attachment {filename!r} ({attachment.content_type})")

        try:
            stream = open_attachment(attachment)

            if attachment.is_email:
                if depth >= self.max_depth:
                    raise NestingTooDeep(
                        f"attached email is more than {self.max_depth} levels deep"
                    )
                logger.info(f"Found attached email {filename!r}, processing")
                nested = parse_email(stream.read())
                return self.process(nested, depth + 1)

            self.paperless.upload_document(stream, filename, self.tags)
        except PaperlessError as e:
            logger.error(
                f"Paperless rejected {filename!r} with status {e.status_code}: "
                f"{e.body[:500]!r}"
            )
            return [DispatchFailure(filename, e)]
        except Exception as e:
            logger.error(f"Unable to process attachment {filename!r}: {e}")
            return [DispatchFailure(filename, e)]

        logger.info(f"Uploaded attachment {filename!r}")
        return []

    def render_and_upload(self, email: ParsedEmail) -> None:
        """
        Render the email body to PDF and upload it.

        Raises RenderUnavailable without a Gotenberg client, EmptyBody when
        the email has no body, and RenderServiceError when Gotenberg does
        not answer 200. A failed upload of the rendered PDF is only logged.
        """
        if self.gotenberg is None:
            raise RenderUnavailable("no gotenberg endpoint configured")

        if email.html is not None:
            pdf = self.gotenberg.convert_html(email.html)
        elif email.text is not None:
            pdf = self.gotenberg.convert_text(email.text)
        else:
            raise EmptyBody("email was empty")

        filename = pdf_filename(email.subject)
        try:
            self.paperless.upload_document(io.BytesIO(pdf), filename, self.tags)
        except PaperlessError as e:
            logger.error(
                f"Paperless rejected rendered email {filename!r} with status "
                f"{e.status_code}: {e.body[:500]!r}"
            )
            return
        except Exception as e:
            logger.error(f"Could not upload rendered email {filename!r}: {e}")
            return

        logger.info(f"Uploaded rendered email {filename!r}")
