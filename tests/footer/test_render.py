# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Tests for body reconstruction and footer insertion."""

import base64
import logging

import pytest

from footermilter.footer.codec import TransferEncoding, decode
from footermilter.footer.entity import EntityKind, MimeEntity, parse_message
from footermilter.footer.render import (
    FooterGuard,
    is_protected,
    render_leaf,
    render_message,
)
from footermilter.footer.resolver import FooterMappings, resolve_sender


def _text(
    body: bytes,
    content_type: str = "text/plain",
    *,
    encoding: str | None = None,
    charset: str | None = None,
    disposition: str | None = None,
) -> MimeEntity:
    return MimeEntity(
        kind=EntityKind.TEXT_LEAF,
        content_type=content_type,
        charset=charset,
        transfer_encoding_name=encoding,
        disposition_type=disposition,
        raw_body=body,
    )


ALICE = FooterMappings(
    text={"alice@example.com": "Regards, Alice"},
    html={"alice@example.com": "<p>Alice</p>"},
)

MIXED = (
    b'Content-Type: multipart/mixed; boundary="XYZ"\n'
    b"\n"
    b"preamble\n"
    b"--XYZ\n"
    b"Content-Type: text/plain\n"
    b"\n"
    b"Hello\n"
    b"--XYZ\n"
    b"Content-Type: application/pdf\n"
    b"Content-Transfer-Encoding: base64\n"
    b'Content-Disposition: attachment; filename="a.pdf"\n'
    b"\n"
    b"JVBERi0=\n"
    b"--XYZ--\n"
)


class TestRenderLeafPlain:
    """Tests for text/plain footer insertion."""

    def test_identity(self) -> None:
        assert render_leaf(_text(b"Hello"), "Regards") == b"Hello\nRegards\n"

    def test_empty_footer(self) -> None:
        """An empty footer reproduces the body plus one line break."""
        assert render_leaf(_text(b"Hello"), "") == b"Hello\n"

    def test_base64(self) -> None:
        raw = base64.b64encode(b"Hello")
        out = render_leaf(_text(raw, encoding="base64"), "Regards")
        assert out.endswith(b"\n")
        assert decode(out, TransferEncoding.BASE64) == b"Hello\nRegards\n"

    def test_quoted_printable_charset(self) -> None:
        """The footer is encoded in the part's charset before QP."""
        entity = _text(
            b"Caf=E9", encoding="quoted-printable", charset="iso-8859-1"
        )
        out = render_leaf(entity, "Grüße")
        assert out.endswith(b"\n")
        assert (
            decode(out[:-1], TransferEncoding.QUOTED_PRINTABLE)
            == b"Caf\xe9\nGr\xfc\xdfe\n"
        )


class TestRenderLeafHtml:
    """Tests for text/html footer insertion."""

    def test_before_closing_body(self) -> None:
        entity = _text(b"<html><body>Hi</body></html>", "text/html")
        assert (
            render_leaf(entity, "Bye") == b"<html><body>Hi\nBye\n</body></html>"
        )

    def test_first_closing_body_only(self) -> None:
        entity = _text(b"a</body>b</body>", "text/html")
        assert render_leaf(entity, "F") == b"a\nF\n</body>b</body>"

    def test_closing_tag_case_sensitive(self) -> None:
        entity = _text(b"<BODY>Hi</BODY>", "text/html")
        assert render_leaf(entity, "F") == b"<BODY>Hi</BODY>\nF"

    def test_no_closing_body(self) -> None:
        entity = _text(b"<p>Hi</p>", "text/html")
        assert render_leaf(entity, "<p>Bye</p>") == b"<p>Hi</p>\n<p>Bye</p>"

    def test_base64_encoded_as_a_whole(self) -> None:
        raw = base64.b64encode(b"<body>Hi</body>")
        out = render_leaf(_text(raw, "text/html", encoding="base64"), "Bye")
        assert decode(out, TransferEncoding.BASE64) == (
            b"<body>Hi\nBye\n</body>"
        )


class TestPassThrough:
    """Parts that must not receive a footer."""

    def test_no_footer(self) -> None:
        assert render_leaf(_text(b"Hello"), None) == b"Hello"

    def test_attachment(self) -> None:
        entity = _text(b"notes", disposition="attachment")
        assert render_leaf(entity, "F") == b"notes"

    def test_other_text_type(self) -> None:
        entity = _text(b"BEGIN:VCALENDAR", "text/calendar")
        assert render_leaf(entity, "F") == b"BEGIN:VCALENDAR"

    def test_binary_reencoded(self) -> None:
        entity = MimeEntity(
            kind=EntityKind.BINARY_LEAF,
            content_type="application/pdf",
            transfer_encoding_name="base64",
            raw_body=b"JVBERi0=",
        )
        out = render_leaf(entity, "F")
        assert out == b"JVBERi0=\n"
        assert decode(out, TransferEncoding.BASE64) == b"%PDF-"

    def test_unknown_charset(self, caplog: pytest.LogCaptureFixture) -> None:
        entity = _text(b"Hello", charset="x-no-such-charset")
        with caplog.at_level(logging.WARNING):
            assert render_leaf(entity, "F") == b"Hello"
        assert "Footer not inserted" in caplog.text

    def test_non_text_charset(self) -> None:
        """A bytes codec named as charset only costs this part its footer."""
        assert render_leaf(_text(b"Hi", charset="base64"), "F") == b"Hi"

    def test_unrepresentable_footer(self) -> None:
        assert render_leaf(_text(b"Hello"), "Café") == b"Hello"

    def test_unsupported_encoding_verbatim(self) -> None:
        entity = _text(b"begin 644 x\n`\nend\n", encoding="x-uuencode")
        assert render_leaf(entity, "F") == b"begin 644 x\n`\nend\n"

    def test_corrupt_base64_verbatim(self) -> None:
        entity = _text(b"@@@@ not base64", encoding="base64")
        assert render_leaf(entity, "F") == b"@@@@ not base64"


class TestFooterGuard:
    def test_starts_available(self) -> None:
        assert FooterGuard().available

    def test_monotone(self) -> None:
        """Once tripped the guard stays tripped; the first reason wins."""
        guard = FooterGuard()
        guard.trip("multipart/signed part")
        guard.trip("something else")
        assert not guard.available
        assert guard.reason == "multipart/signed part"

    @pytest.mark.parametrize(
        "content_type",
        [
            "multipart/signed",
            "multipart/encrypted",
            "application/x-pkcs7-signed",
            "Multipart/Signed",
        ],
    )
    def test_protected_types(self, content_type: str) -> None:
        assert is_protected(content_type)

    def test_plain_types_not_protected(self) -> None:
        assert not is_protected("multipart/mixed")
        assert not is_protected("application/pgp-signature")


class TestRenderMessage:
    """Tests for whole-message reconstruction."""

    def test_single_part(self) -> None:
        root = parse_message(b"Subject: Hi\n\nHello")
        sender = resolve_sender("alice@example.com", ALICE)
        body, context = render_message(root, sender, ALICE)
        assert body == b"Hello\nRegards, Alice\n"
        assert context.guard.available
        assert context.footers_inserted == 1

    def test_mixed_text_and_pdf(self) -> None:
        """Only the text part gains a footer; the PDF is untouched."""
        root = parse_message(MIXED)
        sender = resolve_sender("alice@example.com", ALICE)
        body, context = render_message(root, sender, ALICE)

        assert context.guard.available
        assert body == (
            b"--XYZ\n"
            b"Content-Type: text/plain\n"
            b"\n"
            b"Hello\nRegards, Alice\n"
            b"\n"
            b"--XYZ\n"
            b"Content-Type: application/pdf\n"
            b"Content-Transfer-Encoding: base64\n"
            b'Content-Disposition: attachment; filename="a.pdf"\n'
            b"\n"
            b"JVBERi0=\n"
            b"\n"
            b"\n--XYZ--\n\n"
        )

        reparsed = parse_message(root.header_block + b"\n" + body)
        text, pdf = reparsed.children
        assert text.decoded_body() == b"Hello\nRegards, Alice\n"
        assert pdf.decoded_body() == b"%PDF-"

    def test_nested_preamble_kept(self) -> None:
        root = parse_message(
            b'Content-Type: multipart/mixed; boundary="outer"\n'
            b"\n"
            b"--outer\n"
            b'Content-Type: multipart/alternative; boundary="inner"\n'
            b"\n"
            b"inner preamble\n"
            b"--inner\n"
            b"Content-Type: text/plain\n"
            b"\n"
            b"Hi\n"
            b"--inner\n"
            b"Content-Type: text/html\n"
            b"\n"
            b"<body>Hi</body>\n"
            b"--inner--\n"
            b"--outer--\n"
        )
        sender = resolve_sender("alice@example.com", ALICE)
        body, context = render_message(root, sender, ALICE)
        assert body.startswith(b"--outer\n")
        assert b"inner preamble\n--inner\n" in body
        assert b"Hi\nRegards, Alice\n" in body
        assert b"<body>Hi\n<p>Alice</p>\n</body>" in body
        assert context.footers_inserted == 2

    def test_signed_root_suppressed(self) -> None:
        root = parse_message(
            b'Content-Type: multipart/signed; protocol="application/'
            b'pgp-signature"; boundary="S"\n'
            b"\n"
            b"--S\n"
            b"Content-Type: text/plain\n"
            b"\n"
            b"Signed text\n"
            b"--S\n"
            b"Content-Type: application/pgp-signature\n"
            b"\n"
            b"sig\n"
            b"--S--\n"
        )
        sender = resolve_sender("alice@example.com", ALICE)
        body, context = render_message(root, sender, ALICE)
        assert not context.guard.available
        assert b"Regards" not in body

    def test_late_signed_part_invalidates_result(self) -> None:
        """A signed part after a spliced sibling still trips the guard."""
        root = parse_message(
            b'Content-Type: multipart/mixed; boundary="M"\n'
            b"\n"
            b"--M\n"
            b"Content-Type: text/plain\n"
            b"\n"
            b"Hello\n"
            b"--M\n"
            b'Content-Type: multipart/signed; boundary="S"\n'
            b"\n"
            b"--S\n"
            b"Content-Type: text/plain\n"
            b"\n"
            b"Signed\n"
            b"--S--\n"
            b"--M--\n"
        )
        sender = resolve_sender("alice@example.com", ALICE)
        body, context = render_message(root, sender, ALICE)
        assert context.footers_inserted == 1
        assert not context.guard.available
        assert b"Signed\n" in body
        assert b"Signed\nRegards" not in body

    def test_unresolved_sender(self) -> None:
        root = parse_message(b"Subject: Hi\n\nHello")
        sender = resolve_sender("bob@other.net", ALICE)
        body, context = render_message(root, sender, ALICE)
        assert body == b"Hello"
        assert not context.guard.available
        assert context.footers_inserted == 0

    def test_missing_html_footer(self) -> None:
        """A key found only in the text map leaves HTML parts alone."""
        mappings = FooterMappings(text={"@example.com": "Corp"})
        root = parse_message(
            b"Content-Type: text/html\n\n<body>Hi</body>"
        )
        sender = resolve_sender("bob@example.com", mappings)
        body, context = render_message(root, sender, mappings)
        assert body == b"<body>Hi</body>"
        assert context.guard.available

    def test_part_after_signed_sibling_gets_no_footer(self) -> None:
        root = parse_message(
            b'Content-Type: multipart/mixed; boundary="M"\n'
            b"\n"
            b"--M\n"
            b'Content-Type: multipart/signed; boundary="S"\n'
            b"\n"
            b"--S\n"
            b"Content-Type: text/plain\n"
            b"\n"
            b"Signed\n"
            b"--S--\n"
            b"--M\n"
            b"Content-Type: text/plain\n"
            b"\n"
            b"Later\n"
            b"--M--\n"
        )
        sender = resolve_sender("alice@example.com", ALICE)
        body, context = render_message(root, sender, ALICE)
        assert not context.guard.available
        assert context.guard.reason == "multipart/signed part"
        assert context.footers_inserted == 0
        assert b"Later\n" in body
        assert b"Regards" not in body

    def test_failed_part_not_counted(self) -> None:
        """Only parts that actually received a footer are counted."""
        root = parse_message(
            b'Content-Type: multipart/mixed; boundary="M"\n'
            b"\n"
            b"--M\n"
            b"Content-Type: text/plain; charset=base64\n"
            b"\n"
            b"Odd\n"
            b"--M\n"
            b"Content-Type: text/plain\n"
            b"\n"
            b"Fine\n"
            b"--M--\n"
        )
        sender = resolve_sender("alice@example.com", ALICE)
        body, context = render_message(root, sender, ALICE)
        assert context.guard.available
        assert context.footers_inserted == 1
        assert b"Odd\n--M\n" in body
        assert b"Fine\nRegards, Alice\n" in body

    def test_eight_bit_part_header_kept(self) -> None:
        header = b'Content-Disposition: attachment; filename="\xc3\xbc.pdf"\n'
        root = parse_message(
            b'Content-Type: multipart/mixed; boundary="M"\n'
            b"\n"
            b"--M\n"
            b"Content-Type: text/plain\n"
            b"\n"
            b"Hello\n"
            b"--M\n"
            b"Content-Type: application/pdf\n" + header + b"\n"
            b"%PDF-\n"
            b"--M--\n"
        )
        sender = resolve_sender("alice@example.com", ALICE)
        body, _context = render_message(root, sender, ALICE)
        assert b"Content-Type: application/pdf\n" + header + b"\n" in body
