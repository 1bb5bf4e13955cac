"""
Unit tests for RFC 5322 / MIME parsing.

Messages are built with the standard library EmailMessage API so each test
states exactly which MIME structure it exercises.
"""

import base64
from email.message import EmailMessage

import pytest

from mailhook.errors import EmailParseError
from mailhook.services.email_parser import parse_email


# ---------------------------------------------------------------------------
# Message builders
# ---------------------------------------------------------------------------

def _make_message(
    subject: str | None = "Invoice 42",
    text: str | None = "See attached.",
    html: str | None = None,
) -> EmailMessage:
    msg = EmailMessage()
    msg["From"] = "Alice Sender <alice@example.com>"
    msg["To"] = "inbox@example.com, Other <other@example.com>"
    if subject is not None:
        msg["Subject"] = subject
    if text is not None:
        msg.set_content(text)
    if html is not None:
        if text is None:
            msg.set_content(html, subtype="html")
        else:
            msg.add_alternative(html, subtype="html")
    return msg


# ===========================================================================
# Headers and bodies
# ===========================================================================

class TestHeaders:

    def test_addresses_and_subject(self):
        parsed = parse_email(_make_message().as_bytes())

        assert parsed.sender == "alice@example.com"
        assert parsed.to == ["inbox@example.com", "other@example.com"]
        assert parsed.subject == "Invoice 42"

    def test_encoded_subject_is_decoded(self):
        raw = (
            b"From: alice@example.com\r\n"
            b"To: inbox@example.com\r\n"
            b"Subject: =?utf-8?q?Rechnung_f=C3=BCr_M=C3=A4rz?=\r\n"
            b"\r\n"
            b"body\r\n"
        )
        assert parse_email(raw).subject == "Rechnung für März"

    def test_missing_subject_is_empty(self):
        assert parse_email(_make_message(subject=None).as_bytes()).subject == ""

    def test_str_input_is_accepted(self):
        parsed = parse_email(_make_message().as_string())
        assert parsed.subject == "Invoice 42"


class TestBodies:

    def test_plain_text_body(self):
        parsed = parse_email(_make_message(text="hello there").as_bytes())

        assert parsed.text.strip() == b"hello there"
        assert parsed.html is None
        assert parsed.attachments == []

    def test_html_and_text_alternatives(self):
        msg = _make_message(text="plain version", html="<p>html version</p>")
        parsed = parse_email(msg.as_bytes())

        assert parsed.text.strip() == b"plain version"
        assert parsed.html.strip() == b"<p>html version</p>"

    def test_html_body_is_transfer_decoded(self):
        msg = _make_message(text=None, html="<p>Grüße " + "x" * 200 + "</p>")
        parsed = parse_email(msg.as_bytes())

        assert "Grüße".encode("utf-8") in parsed.html

    def test_message_without_body(self):
        raw = b"From: alice@example.com\r\nTo: inbox@example.com\r\nSubject: hi\r\n\r\n"
        parsed = parse_email(raw)

        assert parsed.html is None
        assert parsed.text in (None, b"")
        assert parsed.attachments == []


# ===========================================================================
# Attachments
# ===========================================================================

class TestAttachments:

    def test_attachment_keeps_encoded_content(self):
        msg = _make_message()
        msg.add_attachment(b"%PDF-1.4 binary", maintype="application",
                           subtype="pdf", filename="scan.pdf")

        parsed = parse_email(msg.as_bytes())

        assert len(parsed.attachments) == 1
        attachment = parsed.attachments[0]
        assert attachment.filename == "scan.pdf"
        assert attachment.content_type == "application/pdf"
        assert attachment.transfer_encoding.lower() == "base64"
        assert base64.b64decode(attachment.content) == b"%PDF-1.4 binary"

    def test_attachments_keep_message_order(self):
        msg = _make_message()
        for name in ("one.pdf", "two.pdf", "three.pdf"):
            msg.add_attachment(name.encode(), maintype="application",
                               subtype="pdf", filename=name)

        parsed = parse_email(msg.as_bytes())

        assert [a.filename for a in parsed.attachments] == ["one.pdf", "two.pdf", "three.pdf"]

    def test_body_is_still_read_next_to_attachments(self):
        msg = _make_message(text="cover note")
        msg.add_attachment(b"data", maintype="application", subtype="pdf", filename="a.pdf")

        parsed = parse_email(msg.as_bytes())

        assert parsed.text.strip() == b"cover note"

    def test_attachment_without_filename_gets_generated_name(self):
        msg = _make_message()
        msg.add_attachment(b"data", maintype="application", subtype="pdf")

        parsed = parse_email(msg.as_bytes())

        assert parsed.attachments[0].filename == "attachment-1.pdf"

    def test_inline_part_with_filename_is_an_attachment(self):
        msg = _make_message(text=None, html="<p><img src='cid:logo'></p>")
        msg.add_attachment(b"\x89PNG", maintype="image", subtype="png",
                           filename="logo.png", disposition="inline")

        parsed = parse_email(msg.as_bytes())

        assert [a.filename for a in parsed.attachments] == ["logo.png"]

    def test_attached_email_is_one_attachment(self):
        inner = _make_message(subject="Forwarded")
        inner.add_attachment(b"inner data", maintype="application",
                             subtype="pdf", filename="inner.pdf")

        outer = _make_message(subject="Fwd: Forwarded")
        outer.add_attachment(inner, filename="forwarded.eml")

        parsed = parse_email(outer.as_bytes())

        assert len(parsed.attachments) == 1
        attachment = parsed.attachments[0]
        assert attachment.filename == "forwarded.eml"
        assert attachment.is_email is True

        nested = parse_email(attachment.content)
        assert nested.subject == "Forwarded"
        assert [a.filename for a in nested.attachments] == ["inner.pdf"]

    def test_attached_email_without_filename(self):
        outer = _make_message()
        outer.add_attachment(_make_message(subject="Inner"))

        parsed = parse_email(outer.as_bytes())

        assert parsed.attachments[0].filename == "attached.eml"

    def test_eml_filename_alone_does_not_make_an_email(self):
        msg = _make_message()
        msg.add_attachment(b"not really", maintype="application",
                           subtype="octet-stream", filename="note.eml")

        parsed = parse_email(msg.as_bytes())

        assert parsed.attachments[0].is_email is False


def _eight_bit_message(content_type: str, filename: str, payload: bytes,
                       encoding: str = "8bit") -> bytes:
    return (
        b"From: alice@example.com\r\n"
        b"To: inbox@example.com\r\n"
        b"Subject: data\r\n"
        b"MIME-Version: 1.0\r\n"
        b'Content-Type: multipart/mixed; boundary="BOUNDARY"\r\n'
        b"\r\n"
        b"--BOUNDARY\r\n"
        b"Content-Type: text/plain; charset=utf-8\r\n"
        b"\r\n"
        b"see attached\r\n"
        b"--BOUNDARY\r\n"
        + f"Content-Type: {content_type}\r\n".encode()
        + f'Content-Disposition: attachment; filename="{filename}"\r\n'.encode()
        + f"Content-Transfer-Encoding: {encoding}\r\n".encode()
        + b"\r\n"
        + payload
        + b"\r\n--BOUNDARY--\r\n"
    )


class TestUnencodedAttachments:

    def test_8bit_utf8_attachment_keeps_its_bytes(self):
        payload = "naïve,ünïcode\n1,2".encode("utf-8")
        raw = _eight_bit_message("text/csv; charset=utf-8", "data.csv", payload)

        parsed = parse_email(raw)

        assert parsed.unreadable == []
        assert len(parsed.attachments) == 1
        attachment = parsed.attachments[0]
        assert attachment.filename == "data.csv"
        assert attachment.transfer_encoding == "8bit"
        assert attachment.content.rstrip(b"\r\n") == payload

    def test_8bit_binary_attachment_keeps_its_bytes(self):
        payload = b"caf\xe9 \xff\xfe\x80\x00\x01"
        raw = _eight_bit_message("application/octet-stream", "a.bin", payload)

        parsed = parse_email(raw)

        assert [a.filename for a in parsed.attachments] == ["a.bin"]
        assert parsed.attachments[0].content.rstrip(b"\r\n") == payload

    def test_binary_encoding_keeps_its_bytes(self):
        payload = b"\xde\xad\xbe\xef latin-1 caf\xe9"
        raw = _eight_bit_message("application/octet-stream", "b.bin", payload, "binary")

        parsed = parse_email(raw)

        assert parsed.attachments[0].content.rstrip(b"\r\n") == payload

    def test_7bit_attachment_keeps_its_bytes(self):
        raw = _eight_bit_message("text/plain", "notes.txt", b"plain ascii", "7bit")

        parsed = parse_email(raw)

        assert parsed.attachments[0].content.rstrip(b"\r\n") == b"plain ascii"


class TestUnreadableParts:

    def test_attached_email_that_cannot_be_serialised_is_recorded(self, monkeypatch):
        outer = _make_message()
        outer.add_attachment(b"kept", maintype="application", subtype="pdf",
                             filename="kept.pdf")
        outer.add_attachment(_make_message(subject="Inner"), filename="forwarded.eml")
        raw = outer.as_bytes()

        def explode(self, *args, **kwargs):
            raise ValueError("cannot serialise")

        monkeypatch.setattr(EmailMessage, "as_bytes", explode)
        parsed = parse_email(raw)

        assert [a.filename for a in parsed.attachments] == ["kept.pdf"]
        assert len(parsed.unreadable) == 1
        assert parsed.unreadable[0].filename == "forwarded.eml"
        assert "cannot serialise" in parsed.unreadable[0].reason

    def test_unreadable_part_is_logged(self, monkeypatch, caplog):
        outer = _make_message()
        outer.add_attachment(_make_message(subject="Inner"), filename="forwarded.eml")
        raw = outer.as_bytes()

        def explode(self, *args, **kwargs):
            raise ValueError("cannot serialise")

        monkeypatch.setattr(EmailMessage, "as_bytes", explode)
        parse_email(raw)

        assert "forwarded.eml" in caplog.text


# ===========================================================================
# Malformed input
# ===========================================================================

class TestMalformed:

    def test_garbage_is_recovered_not_raised(self):
        parsed = parse_email(b"\x00\x01 this is not an email at all")

        assert parsed.attachments == []
        assert parsed.subject == ""

    def test_broken_multipart_keeps_what_it_can(self):
        raw = (
            b"From: alice@example.com\r\n"
            b"Subject: broken\r\n"
            b"MIME-Version: 1.0\r\n"
            b'Content-Type: multipart/mixed; boundary="XYZ"\r\n'
            b"\r\n"
            b"--XYZ\r\n"
            b"Content-Type: text/plain\r\n"
            b"\r\n"
            b"still readable\r\n"
        )
        parsed = parse_email(raw)

        assert parsed.subject == "broken"
        assert parsed.text.strip() == b"still readable"

    def test_parser_failure_raises_email_parse_error(self, monkeypatch):
        from mailhook.services import email_parser

        def explode(raw):
            raise ValueError("boom")

        monkeypatch.setattr(email_parser._PARSER, "parsebytes", explode)

        with pytest.raises(EmailParseError):
            parse_email(b"anything")
