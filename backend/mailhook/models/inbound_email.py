"""
Inbound email models.

Envelope is what the relay provider tells us about delivery (SMTP MAIL FROM /
RCPT TO); ParsedEmail is what we read out of the RFC 5322 message itself.
Both live for a single webhook call.
"""

from typing import Optional

from pydantic import BaseModel, Field

RFC822 = "message/rfc822"


class Envelope(BaseModel):
    """
    SendGrid envelope, sent as a JSON string in the ``envelope`` form field:

        {"to": ["inbox@example.com"], "from": "sender@example.com"}
    """

    model_config = {"frozen": True, "populate_by_name": True}

    from_: str = Field("", alias="from")
    to: list[str] = []


class Attachment(BaseModel):
    """A single attachment, still in its transfer encoding."""

    model_config = {"frozen": True}

    filename: str
    content_type: str
    transfer_encoding: Optional[str] = None
    content: bytes          # encoded bytes as received; see services.encoding

    @property
    def is_email(self) -> bool:
        """True for attached messages, whatever their filename says."""
        return self.content_type.strip().lower() == RFC822


class UnreadablePart(BaseModel):
    """A part that looked like an attachment but could not be extracted."""

    model_config = {"frozen": True}

    filename: str
    reason: str


class ParsedEmail(BaseModel):
    """
    The parts of a message the dispatcher cares about.

    html and text hold transfer-decoded body bytes when the message has such
    a body part; attachments are kept in message order. Parts that could not
    be extracted are listed in unreadable so they can be reported.
    """

    sender: str = ""
    to: list[str] = []
    subject: str = ""
    html: Optional[bytes] = None
    text: Optional[bytes] = None
    attachments: list[Attachment] = []
    unreadable: list[UnreadablePart] = []

    @classmethod
    def empty(cls) -> "ParsedEmail":
        """Stand-in for a message that could not be parsed at all."""
        return cls()
