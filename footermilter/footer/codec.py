# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Content-Transfer-Encoding helpers.

Only the three encodings a footer can safely be spliced into are
supported: identity (``7bit``, ``8bit``, ``binary``), ``base64`` and
``quoted-printable``.  Everything else raises ``EncodingError`` so the
caller can pass the part through untouched.
"""

import base64
import binascii
import codecs
from enum import Enum


#: Maximum length of an encoded base64 line (RFC 2045).
BASE64_LINE_LENGTH = 76

_IDENTITY_NAMES = frozenset({"", "7bit", "8bit", "binary"})


class EncodingError(Exception):
    """Raised when a body or footer cannot be encoded or decoded."""


class TransferEncoding(Enum):
    """Transfer encodings understood by the footer engine."""

    IDENTITY = "identity"
    BASE64 = "base64"
    QUOTED_PRINTABLE = "quoted-printable"

    @classmethod
    def from_header(cls, value: str | None) -> "TransferEncoding":
        """Map a ``Content-Transfer-Encoding`` header value to an encoding.

        Args:
            value: Raw header value, or None when the header is absent.

        Returns:
            The matching TransferEncoding.

        Raises:
            EncodingError: If the encoding is not supported.
        """
        name = (value or "").strip().lower()
        if name in _IDENTITY_NAMES:
            return cls.IDENTITY
        if name == "base64":
            return cls.BASE64
        if name == "quoted-printable":
            return cls.QUOTED_PRINTABLE
        raise EncodingError(f"Unsupported transfer encoding: {value!r}")


def encode(data: bytes, encoding: TransferEncoding) -> bytes:
    """Encode raw bytes for transport.

    Base64 output is wrapped at 76 characters with CRLF and carries no
    trailing line break.  Quoted-printable output is strict: CR, LF,
    ``=`` and every byte outside printable ASCII are escaped, so any
    byte sequence survives a round trip unchanged.

    Args:
        data: Bytes to encode.
        encoding: Target transfer encoding.

    Returns:
        Encoded bytes.
    """
    match encoding:
        case TransferEncoding.IDENTITY:
            return data
        case TransferEncoding.BASE64:
            encoded = base64.b64encode(data)
            return b"\r\n".join(
                encoded[i : i + BASE64_LINE_LENGTH]
                for i in range(0, len(encoded), BASE64_LINE_LENGTH)
            )
        case TransferEncoding.QUOTED_PRINTABLE:
            # istext=False escapes line breaks instead of keeping them
            return binascii.b2a_qp(data, quotetabs=False, istext=False)


def decode(data: bytes, encoding: TransferEncoding) -> bytes:
    """Decode transport bytes back to raw content.

    Args:
        data: Encoded bytes as found in the message.
        encoding: Transfer encoding of ``data``.

    Returns:
        Decoded bytes.

    Raises:
        EncodingError: If base64 data is corrupt.
    """
    match encoding:
        case TransferEncoding.IDENTITY:
            return data
        case TransferEncoding.BASE64:
            try:
                return base64.b64decode(b"".join(data.split()), validate=True)
            except binascii.Error as e:
                raise EncodingError(f"Corrupt base64 body: {e}") from e
        case TransferEncoding.QUOTED_PRINTABLE:
            return binascii.a2b_qp(data)


def encode_text(text: str, charset: str) -> bytes:
    """Encode footer text in a part's declared charset.

    Args:
        text: Footer text.
        charset: Charset name from the part's ``Content-Type``.

    Returns:
        The encoded text.

    Raises:
        EncodingError: If the charset is unknown or cannot represent
            the text.
    """
    try:
        codec = codecs.lookup(charset)
    except LookupError as e:
        raise EncodingError(f"Unknown charset: {charset!r}") from e
    try:
        return text.encode(codec.name)
    except UnicodeEncodeError as e:
        raise EncodingError(
            f"Footer cannot be represented in {charset}: {e}"
        ) from e
    except LookupError as e:
        # Bytes-to-bytes codecs such as base64 or zlib
        raise EncodingError(f"Not a text charset: {charset!r}") from e
