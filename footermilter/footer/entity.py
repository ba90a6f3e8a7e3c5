# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""MIME entity tree used by the footer reconstruction pass.

The standard library ``email`` package does the actual parsing.  This
module converts its ``Message`` tree into ``MimeEntity`` nodes that keep
exactly what reconstruction needs: the verbatim header block of every
part, the still-encoded body of every leaf, and the boundary, preamble
and epilogue of every multipart.

Parsing uses the ``compat32`` policy so header values keep their
original folding and bodies keep their original bytes (non-ASCII bytes
survive as surrogate escapes and are restored on the way out).
"""

import io
import logging
import weakref
from dataclasses import dataclass, field
from email import errors, policy
from email.generator import BytesGenerator
from email.message import Message
from email.parser import BytesParser
from enum import Enum

from footermilter.footer.codec import TransferEncoding, decode


logger = logging.getLogger(__name__)

#: Line break used when re-serializing headers and structure.
LINE_BREAK = b"\n"

#: Charset assumed for text parts that do not declare one (RFC 2045).
DEFAULT_CHARSET = "us-ascii"

# Defects that leave a multipart without a usable part structure.
_FATAL_DEFECTS = (
    errors.NoBoundaryInMultipartDefect,
    errors.StartBoundaryNotFoundDefect,
    errors.MultipartInvariantViolationDefect,
)


class ParseError(Exception):
    """Raised when message bytes are not structurally valid MIME."""


class EntityKind(Enum):
    """Variants of a MIME entity."""

    MULTIPART = "multipart"
    TEXT_LEAF = "text"
    BINARY_LEAF = "binary"


@dataclass(eq=False)
class MimeEntity:
    """A node of the parsed MIME tree.

    Attributes:
        kind: Entity variant.
        content_type: Lower-case ``type/subtype``.
        charset: Declared charset (lower-case), or None.
        transfer_encoding_name: Raw ``Content-Transfer-Encoding`` value.
        disposition_type: Lower-case disposition type, or None.
        header_block: The part's header lines, each ending with a line
            break, exactly as they appeared (folding included).
        raw_body: Still-encoded body bytes of a leaf.
        boundary: Multipart boundary token.
        preamble: Text before the first boundary, or None.
        epilogue: Text after the closing boundary, or None.
        children: Sub-parts of a multipart, in order.
    """

    kind: EntityKind
    content_type: str
    charset: str | None = None
    transfer_encoding_name: str | None = None
    disposition_type: str | None = None
    header_block: bytes = b""
    raw_body: bytes = b""
    boundary: str | None = None
    preamble: bytes | None = None
    epilogue: bytes | None = None
    children: list["MimeEntity"] = field(default_factory=list)
    _parent: weakref.ReferenceType["MimeEntity"] | None = field(
        default=None, repr=False
    )

    @property
    def parent(self) -> "MimeEntity | None":
        """Enclosing multipart, or None for the root entity."""
        return self._parent() if self._parent is not None else None

    @property
    def is_root(self) -> bool:
        """True for the top-level entity of the message."""
        return self._parent is None

    @property
    def is_attachment(self) -> bool:
        """True if the part is marked ``Content-Disposition: attachment``."""
        return self.disposition_type == "attachment"

    @property
    def transfer_encoding(self) -> TransferEncoding:
        """Parsed transfer encoding.

        Raises:
            EncodingError: If the encoding is not supported.
        """
        return TransferEncoding.from_header(self.transfer_encoding_name)

    @property
    def effective_charset(self) -> str:
        """Declared charset, defaulting to ``us-ascii``."""
        return self.charset or DEFAULT_CHARSET

    def add_child(self, child: "MimeEntity") -> None:
        """Append a sub-part and point its parent reference here."""
        child._parent = weakref.ref(self)
        self.children.append(child)

    def decoded_body(self) -> bytes:
        """Return the leaf body with its transfer encoding removed.

        Raises:
            EncodingError: If the encoding is unsupported or the body
                is corrupt.
        """
        return decode(self.raw_body, self.transfer_encoding)


def _to_bytes(value: str) -> bytes:
    # BytesParser decodes with surrogateescape; this restores the bytes
    return value.encode("utf-8", "surrogateescape")


def _header_block(message: Message) -> bytes:
    lines = [
        _to_bytes(f"{name}: {value}") + LINE_BREAK
        for name, value in message.raw_items()
    ]
    return b"".join(lines)


def _optional_text(value: str | None) -> bytes | None:
    if not value:
        return None
    return _to_bytes(value)


def _flatten(message: Message) -> bytes:
    buffer = io.BytesIO()
    BytesGenerator(buffer, mangle_from_=False, policy=policy.compat32).flatten(
        message
    )
    return buffer.getvalue()


def _check_defects(message: Message) -> None:
    for defect in message.defects:
        if isinstance(defect, _FATAL_DEFECTS):
            raise ParseError(
                f"Malformed {message.get_content_type()}: "
                f"{type(defect).__name__}"
            )


def _build(message: Message) -> MimeEntity:
    content_type = message.get_content_type()
    maintype = message.get_content_maintype()
    common = {
        "content_type": content_type,
        "charset": message.get_content_charset(),
        "transfer_encoding_name": message.get("Content-Transfer-Encoding"),
        "disposition_type": message.get_content_disposition(),
        "header_block": _header_block(message),
    }

    if maintype == "message" and message.is_multipart():
        # Encapsulated messages are carried through untouched
        inner = message.get_payload()
        body = b"".join(_flatten(part) for part in inner)
        return MimeEntity(kind=EntityKind.BINARY_LEAF, raw_body=body, **common)

    if maintype == "multipart":
        _check_defects(message)
        boundary = message.get_boundary()
        payload = message.get_payload()
        if boundary is None or not isinstance(payload, list):
            raise ParseError(f"Malformed {content_type}: no part structure")
        entity = MimeEntity(
            kind=EntityKind.MULTIPART,
            boundary=boundary,
            preamble=_optional_text(message.preamble),
            epilogue=_optional_text(message.epilogue),
            **common,
        )
        for part in payload:
            entity.add_child(_build(part))
        return entity

    payload = message.get_payload()
    if not isinstance(payload, str):
        raise ParseError(f"Unexpected payload for {content_type}")
    if maintype == "text":
        kind = EntityKind.TEXT_LEAF
    else:
        kind = EntityKind.BINARY_LEAF
    return MimeEntity(kind=kind, raw_body=_to_bytes(payload), **common)


def parse_message(data: bytes) -> MimeEntity:
    """Parse a complete message (headers and body) into an entity tree.

    Args:
        data: Raw message bytes.

    Returns:
        The root entity.

    Raises:
        ParseError: If the message structure is unusable.
    """
    try:
        message = BytesParser(policy=policy.compat32).parsebytes(data)
    except (errors.MessageError, ValueError) as e:
        raise ParseError(f"Cannot parse message: {e}") from e
    root = _build(message)
    logger.debug(
        "Parsed %s message (%d top-level parts)",
        root.content_type,
        len(root.children),
    )
    return root

