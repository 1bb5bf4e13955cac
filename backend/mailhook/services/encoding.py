"""
Content-Transfer-Encoding sniffing and lazy attachment decoding.

Senders regularly label attachments with the wrong Content-Transfer-Encoding
(most often a binary PDF declared as base64). Decoding such a body blindly
corrupts it, so each declared encoding is checked against the bytes first
and the attachment falls back to identity when the check fails.

The base64 check only looks at the first SNIFF_WINDOW bytes. A body that is
valid at the start and broken further in is still decoded as base64: stray
characters past the window are dropped, and a truncated final group makes
the stream raise binascii.Error while the upload reads it.
"""

import binascii
import io
import logging
import re
from typing import Iterator, Optional

from mailhook.models.inbound_email import Attachment

logger = logging.getLogger(__name__)

SNIFF_WINDOW = 1024

# Decoded output is produced in pieces of roughly this many input bytes
_CHUNK_SIZE = 64 * 1024

# An "=" that is neither a hex escape nor a soft line break
_BAD_QP_ESCAPE = re.compile(rb"=(?![0-9A-Fa-f]{2}|[ \t]*\r?\n)")

_NEWLINES = re.compile(rb"[\r\n]")
_NOT_BASE64 = re.compile(rb"[^A-Za-z0-9+/=]")


# ---------------------------------------------------------------------------
# Sniffers
# ---------------------------------------------------------------------------

def is_quoted_printable(content: bytes) -> bool:
    """
    Return True when content decodes cleanly as quoted-printable.

    Plain ASCII text with no "=" is valid quoted-printable. A stray "="
    (including one at the very end of the input) or an escape with non-hex
    digits makes the whole body invalid.
    """
    return _BAD_QP_ESCAPE.search(content) is None


def is_base64(content: bytes) -> bool:
    """
    Return True when the first SNIFF_WINDOW bytes are strict base64.

    Line breaks are ignored. When the window cuts a longer body short it is
    trimmed to whole 4-character groups; a body that fits in the window must
    be correctly padded.
    """
    window = _NEWLINES.sub(b"", content[:SNIFF_WINDOW])
    if len(content) > SNIFF_WINDOW:
        window = window[: len(window) - len(window) % 4]

    try:
        binascii.a2b_base64(window, strict_mode=True)
    except binascii.Error:
        return False
    return True


# ---------------------------------------------------------------------------
# Decoders
# ---------------------------------------------------------------------------

def _identity_chunks(content: bytes) -> Iterator[bytes]:
    view = memoryview(content)
    for start in range(0, len(view), _CHUNK_SIZE):
        yield bytes(view[start:start + _CHUNK_SIZE])


def _quoted_printable_chunks(content: bytes) -> Iterator[bytes]:
    # Escapes never span lines, so each line decodes on its own
    for line in io.BytesIO(content):
        body = line.rstrip(b"\r\n")
        ending = line[len(body):]
        # Trailing whitespace on an encoded line is transport padding (RFC 2045 6.7)
        yield binascii.a2b_qp(body.rstrip(b" \t") + ending)


def _base64_chunks(content: bytes) -> Iterator[bytes]:
    pending = b""
    for chunk in _identity_chunks(content):
        pending += _NOT_BASE64.sub(b"", chunk)
        usable = len(pending) - len(pending) % 4
        if usable:
            yield binascii.a2b_base64(pending[:usable])
            pending = pending[usable:]

    if pending:
        # Raises binascii.Error for a truncated final group
        yield binascii.a2b_base64(pending)


class _ChunkReader(io.RawIOBase):
    """Readable, non-seekable raw stream over an iterator of byte chunks."""

    def __init__(self, chunks: Iterator[bytes]):
        super().__init__()
        self._chunks = chunks
        self._buffer = b""

    def readable(self) -> bool:
        return True

    def readinto(self, b) -> int:
        while not self._buffer:
            try:
                self._buffer = next(self._chunks)
            except StopIteration:
                return 0

        size = min(len(b), len(self._buffer))
        b[:size] = self._buffer[:size]
        self._buffer = self._buffer[size:]
        return size


def _normalize_encoding(value: Optional[str]) -> str:
    return (value or "").strip().lower()


def open_attachment(attachment: Attachment) -> io.BufferedReader:
    """
    Return a forward-only binary stream of the attachment's decoded bytes.

    Nothing is decoded until the stream is read, and the stream can only be
    read once.
    """
    content = attachment.content
    encoding = _normalize_encoding(attachment.transfer_encoding)

    if encoding == "quoted-printable":
        if is_quoted_printable(content):
            logger.debug(f"{attachment.filename}: decoding as quoted-printable")
            chunks = _quoted_printable_chunks(content)
        else:
            logger.warning(
                f"{attachment.filename}: declared quoted-printable but content "
                f"is not, passing through unchanged"
            )
            chunks = _identity_chunks(content)
    elif encoding == "base64":
        if is_base64(content):
            logger.debug(f"{attachment.filename}: decoding as base64")
            chunks = _base64_chunks(content)
        else:
            logger.warning(
                f"{attachment.filename}: declared base64 but content is not, "
                f"passing through unchanged"
            )
            chunks = _identity_chunks(content)
    else:
        logger.debug(f"{attachment.filename}: no transfer encoding to undo")
        chunks = _identity_chunks(content)

    return io.BufferedReader(_ChunkReader(chunks))
