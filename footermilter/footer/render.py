# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Message body reconstruction with footer insertion.

The reconstruction re-serializes the parsed entity tree part by part and
splices the configured footer into ``text/plain`` and ``text/html``
leaves.  Everything else (attachments, binary parts, other text types,
encapsulated messages) is passed through under its own transfer
encoding.

Signed and encrypted structures must never be altered.  When one is
found the shared ``FooterGuard`` trips: no later leaf receives a footer
and the caller discards the rendered body, even if earlier siblings
were already spliced.
"""

import logging
from dataclasses import dataclass, field

from footermilter.footer.codec import (
    EncodingError,
    TransferEncoding,
    encode,
    encode_text,
)
from footermilter.footer.entity import LINE_BREAK, EntityKind, MimeEntity
from footermilter.footer.resolver import FooterMappings, ResolvedSender


logger = logging.getLogger(__name__)

_CLOSING_BODY_TAG = b"</body>"
_PROTECTED_MARKERS = ("signed", "encrypted")


@dataclass
class FooterGuard:
    """Monotone footer-available flag shared by one reconstruction pass.

    Starts available (the resolver found a footer) and can only ever be
    tripped, never restored.

    Attributes:
        available: Whether footers may still be inserted.
        reason: Why the guard tripped, for logging.
    """

    available: bool = True
    reason: str | None = None

    def trip(self, reason: str) -> None:
        """Suppress footers for the rest of the message."""
        if self.available:
            logger.info("Footer suppressed: %s", reason)
            self.available = False
            self.reason = reason


@dataclass
class RenderContext:
    """State threaded through a reconstruction pass.

    Attributes:
        sender: Resolution result for the envelope sender.
        mappings: Footer mappings snapshot used for this message.
        guard: Shared signed/encrypted guard.
        footers_inserted: Number of leaves that received a footer.
    """

    sender: ResolvedSender
    mappings: FooterMappings
    guard: FooterGuard = field(default_factory=FooterGuard)
    footers_inserted: int = 0

    def footer_for(self, entity: MimeEntity) -> str | None:
        """Return the footer to splice into ``entity``, if any."""
        if not self.guard.available:
            return None
        if entity.content_type == "text/plain":
            return self.mappings.text_footer(self.sender.text_key)
        if entity.content_type == "text/html":
            return self.mappings.html_footer(self.sender.html_key)
        return None


def is_protected(content_type: str) -> bool:
    """True if a MIME type denotes a signed or encrypted structure."""
    lowered = content_type.lower()
    return any(marker in lowered for marker in _PROTECTED_MARKERS)


def _finish(encoded: bytes, encoding: TransferEncoding) -> bytes:
    # Encoded output does not end with a line break of its own
    if encoding is TransferEncoding.IDENTITY:
        return encoded
    return encoded + LINE_BREAK


def pass_through(entity: MimeEntity) -> bytes:
    """Re-emit a leaf unchanged under its own transfer encoding.

    The body is decoded and re-encoded; a body that cannot be decoded
    is emitted verbatim.
    """
    try:
        encoding = entity.transfer_encoding
        body = entity.decoded_body()
    except EncodingError as e:
        logger.debug("Emitting %s verbatim: %s", entity.content_type, e)
        return entity.raw_body
    return _finish(encode(body, encoding), encoding)


def _splice_plain(body: bytes, footer: bytes) -> bytes:
    if not footer:
        return body + LINE_BREAK
    return body + LINE_BREAK + footer + LINE_BREAK


def _splice_html(body: bytes, footer: bytes) -> bytes:
    before, tag, after = body.partition(_CLOSING_BODY_TAG)
    if not tag:
        return body + LINE_BREAK + footer
    return before + LINE_BREAK + footer + LINE_BREAK + tag + after


def render_leaf(entity: MimeEntity, footer: str | None) -> bytes:
    """Render a non-multipart entity, inserting ``footer`` when it applies.

    Footers go into ``text/plain`` and ``text/html`` parts only, never
    into attachments.  The splice happens on the decoded body and the
    result is encoded as a whole, because base64 and quoted-printable
    are not safe to concatenate at arbitrary byte boundaries.

    Args:
        entity: Leaf entity to render.
        footer: Footer text, or None to pass the part through.

    Returns:
        Rendered body bytes (without the inter-part separator).
    """
    rendered, _spliced = _render_leaf(entity, footer)
    return rendered


def _render_leaf(
    entity: MimeEntity, footer: str | None
) -> tuple[bytes, bool]:
    if (
        footer is None
        or entity.kind is not EntityKind.TEXT_LEAF
        or entity.is_attachment
        or entity.content_type not in ("text/plain", "text/html")
    ):
        return pass_through(entity), False

    try:
        encoding = entity.transfer_encoding
        body = entity.decoded_body()
        footer_bytes = encode_text(footer, entity.effective_charset)
    except EncodingError as e:
        logger.warning(
            "Footer not inserted into %s part: %s", entity.content_type, e
        )
        return pass_through(entity), False

    if entity.content_type == "text/html":
        payload = _splice_html(body, footer_bytes)
    else:
        payload = _splice_plain(body, footer_bytes)
    return _finish(encode(payload, encoding), encoding), True


def render_entity(entity: MimeEntity, context: RenderContext) -> bytes:
    """Render any entity, dispatching on its kind."""
    match entity.kind:
        case EntityKind.MULTIPART:
            return render_multipart(entity, context)
        case EntityKind.TEXT_LEAF | EntityKind.BINARY_LEAF:
            rendered, spliced = _render_leaf(entity, context.footer_for(entity))
            if spliced:
                context.footers_inserted += 1
            return rendered


def render_multipart(entity: MimeEntity, context: RenderContext) -> bytes:
    """Re-serialize a multipart entity and its children.

    Preamble and epilogue are re-emitted except on the root entity,
    whose body replaces the whole message body.  Every child is written
    as delimiter line, its original header block, a blank line and the
    rendered body, followed by a separating line break.

    Args:
        entity: Multipart entity.
        context: Reconstruction state (the guard may trip here).

    Returns:
        Rendered multipart body bytes.
    """
    if is_protected(entity.content_type):
        context.guard.trip(f"{entity.content_type} container")

    assert entity.boundary is not None  # enforced by parse_message
    delimiter = b"--" + entity.boundary.encode("ascii", "surrogateescape")
    out = bytearray()

    if entity.preamble is not None and not entity.is_root:
        out += entity.preamble + LINE_BREAK

    for child in entity.children:
        if is_protected(child.content_type):
            context.guard.trip(f"{child.content_type} part")
        out += delimiter + LINE_BREAK
        out += child.header_block + LINE_BREAK
        out += render_entity(child, context)
        out += LINE_BREAK

    out += LINE_BREAK + delimiter + b"--" + LINE_BREAK + LINE_BREAK

    if entity.epilogue is not None and not entity.is_root:
        out += entity.epilogue + LINE_BREAK
    return bytes(out)


def render_message(
    root: MimeEntity, sender: ResolvedSender, mappings: FooterMappings
) -> tuple[bytes, RenderContext]:
    """Render the body of a parsed message with footers inserted.

    The caller must check ``context.guard.available`` afterwards: a
    signed or encrypted part found during the pass invalidates the
    whole result.

    Args:
        root: Root entity of the parsed message.
        sender: Resolution result for the envelope sender.
        mappings: Footer mappings snapshot.

    Returns:
        Tuple of (rendered body, final render context).
    """
    context = RenderContext(sender=sender, mappings=mappings)
    if not sender.footer_available:
        context.guard.trip(f"no footer configured for {sender.sender}")
    body = render_entity(root, context)
    return body, context
