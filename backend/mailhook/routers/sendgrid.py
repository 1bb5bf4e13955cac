"""
SendGrid Inbound Parse webhook.

SendGrid POSTs every received email as multipart/form-data. Two fields are
used:

  envelope   JSON string: {"to": [...], "from": "..."}
  email      the full raw RFC 5322 message ("Send Raw" must be enabled)

The form is parsed with python-multipart directly so every field, the raw
email included, reaches the parser as the exact bytes SendGrid sent.

Response policy
---------------
SendGrid retries anything that is not a 2xx, so once the request itself is
well formed the answer is always 200 "OK", including for emails dropped by
the allow-list and emails that fail to process. Only malformed requests get
a 400.

Endpoints:
  POST /sendgrid
"""

import io
import logging

import python_multipart
from fastapi import APIRouter, Depends, Request
from fastapi.responses import PlainTextResponse
from pydantic import ValidationError
from starlette.concurrency import run_in_threadpool

from mailhook.context import Mailhook
from mailhook.errors import EmailParseError
from mailhook.models.inbound_email import Envelope, ParsedEmail
from mailhook.services.email_parser import parse_email

logger = logging.getLogger(__name__)

router = APIRouter()

# Largest webhook body accepted, in bytes
MAX_FORM_SIZE = 10 * 1024 * 1024


def get_mailhook(request: Request) -> Mailhook:
    """Return the Mailhook context built at startup."""
    return request.app.state.mailhook


def _bad_request(message: str) -> PlainTextResponse:
    return PlainTextResponse(message, status_code=400)


def _ok() -> PlainTextResponse:
    return PlainTextResponse("OK", status_code=200)


class _FormTooLarge(Exception):
    pass


async def _read_body(request: Request, limit: int) -> bytes:
    """Read the request body, giving up once it grows past limit bytes."""
    chunks = []
    size = 0
    async for chunk in request.stream():
        size += len(chunk)
        if size > limit:
            raise _FormTooLarge(f"body larger than {limit} bytes")
        chunks.append(chunk)
    return b"".join(chunks)


def _parse_form(content_type: str, body: bytes) -> dict[str, bytes]:
    """
    Parse a multipart (or urlencoded) body into field name -> raw bytes.

    Plain fields and file parts are treated alike. When a name repeats, the
    first value wins. Raises ValueError for a malformed form.
    """
    fields: dict[str, bytes] = {}

    def on_field(field) -> None:
        if field.field_name is not None:
            fields.setdefault(field.field_name.decode("utf-8", "replace"), field.value or b"")

    def on_file(file) -> None:
        try:
            if file.field_name is not None:
                file.file_object.seek(0)
                fields.setdefault(file.field_name.decode("utf-8", "replace"), file.file_object.read())
        finally:
            file.close()

    headers = {"Content-Type": content_type, "Content-Length": str(len(body))}
    python_multipart.parse_form(headers, io.BytesIO(body), on_field, on_file)
    return fields


def _handle_email(mailhook: Mailhook, envelope: Envelope, raw_email: bytes) -> None:
    """Parse and dispatch one allowed email. Runs in a worker thread."""
    with mailhook.metrics.time_processing():
        try:
            email = parse_email(raw_email)
        except EmailParseError as e:
            logger.error(f"Email from {envelope.from_!r} could not be parsed: {e}")
            email = ParsedEmail.empty()

        logger.info(
            f"Got email from {envelope.from_!r} with subject {email.subject!r} "
            f"and {len(email.attachments)} attachment(s)"
        )

        failures = mailhook.dispatcher.process(email)

    for failure in failures:
        logger.warning(f"Could not store {failure.filename!r}: {failure.error}")
    logger.info(f"Finished handling email from {envelope.from_!r}")


@router.post("/sendgrid")
async def receive_sendgrid(
    request: Request,
    mailhook: Mailhook = Depends(get_mailhook),
) -> PlainTextResponse:
    """
    Receive one email from SendGrid Inbound Parse.

    Returns 400 for a malformed form or envelope, otherwise always 200.
    """
    content_length = request.headers.get("content-length")
    if content_length and content_length.isdigit() and int(content_length) > MAX_FORM_SIZE:
        logger.error(f"Incoming email is too large: {content_length} bytes")
        return _bad_request(f"bad request: body larger than {MAX_FORM_SIZE} bytes")

    try:
        body = await _read_body(request, MAX_FORM_SIZE)
        form = _parse_form(request.headers.get("content-type", ""), body)
    except (_FormTooLarge, ValueError) as e:
        logger.error(f"Unable to parse incoming email: {e}")
        return _bad_request(f"bad request: {e}")

    envelope_value = form.get("envelope")
    if envelope_value is None:
        logger.error("Email was missing envelope")
        return _bad_request("missing envelope")

    try:
        envelope = Envelope.model_validate_json(envelope_value)
    except ValidationError as e:
        logger.error(f"Email envelope was not the expected JSON: {e}")
        return _bad_request(f"bad envelope: {e}")

    logger.debug(f"Got email from {envelope.from_!r} to {envelope.to}")

    reason = mailhook.allow_list.rejection_reason(envelope.from_, envelope.to)
    if reason is not None:
        mailhook.metrics.inc_filtered(reason)
        if reason == "sender":
            logger.warning(f"Email from unknown sender {envelope.from_!r}, ignoring")
        else:
            logger.warning(
                f"Email from {envelope.from_!r} was not addressed to "
                f"{mailhook.allow_list.required_recipient!r}, ignoring"
            )
        return _ok()

    raw_email = form.get("email")
    if raw_email is None:
        logger.error(f"Email from {envelope.from_!r} was missing the raw message")
        return _bad_request("missing email")

    mailhook.metrics.inc_received()
    try:
        await run_in_threadpool(_handle_email, mailhook, envelope, raw_email)
    except Exception:
        logger.exception(f"Unexpected error handling email from {envelope.from_!r}")

    return _ok()
