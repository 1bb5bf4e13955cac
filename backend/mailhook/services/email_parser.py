"""
RFC 5322 / MIME parsing into ParsedEmail.

Uses the standard library email package with the modern policy so headers
come back RFC 2047-decoded. Attachments keep their payload exactly as it
appeared in the message (still transfer-encoded); the dispatcher decides how
to decode them.

Attached messages (message/rfc822) are not descended into here. Each one
becomes a single attachment holding the serialised nested message, and the
dispatcher parses it again when it gets to it.
"""

import logging
import mimetypes
from email import policy
from email.message import EmailMessage
from email.parser import BytesParser
from email.utils import getaddresses, parseaddr
from typing import Optional, Union

from mailhook.errors import EmailParseError
from mailhook.models.inbound_email import RFC822, Attachment, ParsedEmail, UnreadablePart

logger = logging.getLogger(__name__)

_PARSER = BytesParser(policy=policy.default)

# Encodings whose payload the parser keeps as text; everything else is raw bytes
_TEXT_ENCODINGS = {"base64", "quoted-printable"}


def _header(message: EmailMessage, name: str) -> str:
    """Return a decoded header value, or "" when it is absent or unreadable."""
    try:
        value = message.get(name)
    except Exception as e:  # malformed header values raise on access
        logger.warning(f"Could not read {name} header: {e}")
        return ""
    return str(value) if value is not None else ""


def _addresses(message: EmailMessage, *names: str) -> list[str]:
    values = [_header(message, name) for name in names]
    return [addr for _, addr in getaddresses([v for v in values if v]) if addr]


def _raw_payload(part: EmailMessage) -> bytes:
    """Return a leaf part's body bytes without undoing the transfer encoding."""
    encoding = str(part.get("Content-Transfer-Encoding", "")).strip().lower()
    if encoding not in _TEXT_ENCODINGS:
        # 7bit, 8bit and binary bodies come back byte for byte
        return part.get_payload(decode=True) or b""

    payload = part.get_payload(decode=False)
    if isinstance(payload, bytes):
        return payload
    return payload.encode("utf-8", "surrogateescape")


def _default_filename(content_type: str, index: int) -> str:
    if content_type == RFC822:
        return "attached.eml"
    extension = mimetypes.guess_extension(content_type) or ".bin"
    return f"attachment-{index}{extension}"


def _part_filename(part: EmailMessage, index: int) -> str:
    try:
        return part.get_filename() or _default_filename(part.get_content_type(), index)
    except Exception:  # unreadable Content-Disposition or Content-Type
        return f"attachment-{index}.bin"


def _is_attachment(part: EmailMessage) -> bool:
    return part.get_content_disposition() == "attachment" or bool(part.get_filename())


class _Collector:
    """Accumulates body parts and attachments while walking a message tree."""

    def __init__(self):
        self.html: Optional[bytes] = None
        self.text: Optional[bytes] = None
        self.attachments: list[Attachment] = []
        self.unreadable: list[UnreadablePart] = []

    def _add_attachment(self, part: EmailMessage, content: bytes) -> None:
        content_type = part.get_content_type()
        filename = _part_filename(part, len(self.attachments) + 1)
        encoding = part.get("Content-Transfer-Encoding")
        self.attachments.append(
            Attachment(
                filename=filename,
                content_type=content_type,
                transfer_encoding=str(encoding) if encoding is not None else None,
                content=content,
            )
        )

    def _add_unreadable(self, part: EmailMessage, error: Exception) -> None:
        filename = _part_filename(part, len(self.attachments) + 1)
        logger.error(f"Could not extract MIME part {filename!r}: {error}")
        self.unreadable.append(UnreadablePart(filename=filename, reason=str(error)))

    def _add_body(self, part: EmailMessage) -> None:
        content_type = part.get_content_type()
        if content_type == "text/html" and self.html is None:
            self.html = part.get_payload(decode=True) or b""
        elif content_type == "text/plain" and self.text is None:
            self.text = part.get_payload(decode=True) or b""

    def walk(self, part: EmailMessage) -> None:
        content_type = part.get_content_type()

        if content_type == RFC822:
            nested = part.get_payload()
            if isinstance(nested, list):
                content = nested[0].as_bytes() if nested else b""
            else:
                content = _raw_payload(part)
            self._add_attachment(part, content)
            return

        if part.is_multipart():
            for sub in part.iter_parts():
                try:
                    self.walk(sub)
                except Exception as e:
                    self._add_unreadable(sub, e)
            return

        if _is_attachment(part):
            self._add_attachment(part, _raw_payload(part))
        else:
            self._add_body(part)


def parse_email(raw: Union[bytes, str]) -> ParsedEmail:
    """
    Parse a raw message.

    Parsing is lenient: structural defects are logged and whatever could be
    read is returned. Raises EmailParseError only when the message cannot
    be read at all.
    """
    if isinstance(raw, str):
        raw = raw.encode("utf-8", "surrogateescape")

    try:
        message = _PARSER.parsebytes(raw)
    except Exception as e:
        raise EmailParseError(f"email could not be parsed: {e}") from e

    if message.defects:
        logger.warning(
            f"Email has MIME defects: {[type(d).__name__ for d in message.defects]}"
        )

    collector = _Collector()
    try:
        collector.walk(message)
    except Exception as e:
        raise EmailParseError(f"email body could not be parsed: {e}") from e

    _, sender = parseaddr(_header(message, "From"))
    return ParsedEmail(
        sender=sender,
        to=_addresses(message, "To", "Cc"),
        subject=_header(message, "Subject").strip(),
        html=collector.html,
        text=collector.text,
        attachments=collector.attachments,
        unreadable=collector.unreadable,
    )
