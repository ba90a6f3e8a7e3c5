# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Footer injection engine.

- Sender resolution against footer mappings (resolve_sender)
- Transfer encoding helpers (TransferEncoding, encode, decode)
- MIME entity tree (MimeEntity, parse_message)
- Body reconstruction with footer insertion (render_message)

The session and store live in their own modules because they depend on
the configuration layer.
"""

from footermilter.footer.codec import (
    EncodingError,
    TransferEncoding,
    decode,
    encode,
)
from footermilter.footer.entity import (
    EntityKind,
    MimeEntity,
    ParseError,
    parse_message,
)
from footermilter.footer.render import (
    FooterGuard,
    render_leaf,
    render_message,
)
from footermilter.footer.resolver import (
    FooterMappings,
    ResolvedSender,
    resolve_sender,
)


__all__ = [
    "EncodingError",
    "EntityKind",
    "FooterGuard",
    "FooterMappings",
    "MimeEntity",
    "ParseError",
    "ResolvedSender",
    "TransferEncoding",
    "decode",
    "encode",
    "parse_message",
    "render_leaf",
    "render_message",
    "resolve_sender",
]
