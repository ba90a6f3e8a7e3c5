# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Per-connection footer session.

A ``FooterSession`` receives the milter callbacks of one MTA connection
as plain method calls, accumulates the header and body bytes of the
current message and, at end of message, hands the reconstructed body to
a ``MessageModifier``.  The session is transport independent: the
pymilter adapter and the offline ``apply`` command both drive it.
"""

import logging
from enum import Enum
from typing import Protocol

from footermilter.config import DEFAULT_MAX_MESSAGE_BYTES
from footermilter.footer.entity import LINE_BREAK, ParseError, parse_message
from footermilter.footer.render import render_message
from footermilter.footer.resolver import (
    FooterMappings,
    ResolvedSender,
    resolve_sender,
)
from footermilter.footer.store import FooterStore


logger = logging.getLogger(__name__)

#: Diagnostic header added to every modified message.
MODIFIED_HEADER = "X-FooterMilter-Modified"

_MODIFIED_TAG = (
    "Mail body modified (using footer)\nby {daemon}\nfor <{sender}>"
)

#: Daemon name used when neither the MTA nor the config provides one.
DEFAULT_DAEMON_NAME = "footermilter"


class BufferLimitError(Exception):
    """Raised when a message cannot be buffered for reconstruction."""


class SessionState(Enum):
    """Lifecycle of a session within one connection."""

    IDLE = "idle"
    CONNECTED = "connected"
    SENDER_KNOWN = "sender_known"
    ACCUMULATING = "accumulating"
    FINALIZING = "finalizing"


class MessageModifier(Protocol):
    """Outbound operations the transport offers at end of message."""

    def replace_body(self, body: bytes) -> None:
        """Replace the whole message body."""
        ...

    def add_header(self, name: str, value: str) -> None:
        """Append a header to the message."""
        ...


def modified_tag(daemon_name: str, sender: str) -> str:
    """Build the value of the diagnostic header."""
    # Names the envelope sender, not the adopted mapping key
    return _MODIFIED_TAG.format(daemon=daemon_name, sender=sender)


def fold_header_value(value: str) -> str:
    """Indent continuation lines so the value forms a folded header."""
    return "\n\t".join(value.split("\n"))


class FooterSession:
    """State machine for the messages of one MTA connection.

    Messages on a persistent connection are processed one after the
    other; every ``on_sender`` starts from a clean slate so nothing from
    an aborted message leaks into the next one.
    """

    def __init__(
        self,
        store: FooterStore,
        *,
        daemon_name: str | None = None,
        max_message_bytes: int = DEFAULT_MAX_MESSAGE_BYTES,
    ) -> None:
        """Initialize session.

        Args:
            store: Shared footer store.
            daemon_name: Fallback daemon name for the diagnostic header.
            max_message_bytes: Accumulation cap; larger messages pass
                through unmodified.
        """
        self._store = store
        self._default_daemon_name = daemon_name or DEFAULT_DAEMON_NAME
        self._max_message_bytes = max_message_bytes

        self.daemon_name = self._default_daemon_name
        self.queue_id: str | None = None
        self.state = SessionState.IDLE
        self.sender: ResolvedSender | None = None
        self.footer_available = False
        self._mappings = FooterMappings()
        self._headers = bytearray()
        self._body = bytearray()
        self._body_started = False

    @property
    def header_bytes(self) -> bytes:
        """Header block accumulated for the current message."""
        return bytes(self._headers)

    @property
    def body_bytes(self) -> bytes:
        """Body accumulated for the current message."""
        return bytes(self._body)

    def _log_context(self) -> str:
        sender = self.sender.sender if self.sender is not None else "-"
        return f"[{self.queue_id or '-'}] <{sender}>"

    def reset(self) -> None:
        """Drop all per-message state."""
        self.state = SessionState.IDLE
        self.sender = None
        self.footer_available = False
        self.queue_id = None
        self._mappings = FooterMappings()
        self._headers = bytearray()
        self._body = bytearray()
        self._body_started = False

    def _abandon(self, reason: str) -> None:
        logger.warning("%s footer abandoned: %s", self._log_context(), reason)
        self.footer_available = False
        self._headers = bytearray()
        self._body = bytearray()

    def _append(self, buffer: bytearray, data: bytes) -> None:
        if len(self._headers) + len(self._body) + len(data) > (
            self._max_message_bytes
        ):
            raise BufferLimitError(
                f"message exceeds {self._max_message_bytes} bytes"
            )
        try:
            buffer += data
        except MemoryError as e:
            raise BufferLimitError("out of memory while buffering") from e

    def on_connect(self, daemon_name: str | None = None) -> None:
        """Record the MTA daemon name for a new connection."""
        self.reset()
        self.daemon_name = daemon_name or self._default_daemon_name
        self.state = SessionState.CONNECTED

    def on_sender(self, address: str, queue_id: str | None = None) -> None:
        """Start a message from envelope sender ``address``.

        Snapshots the current footer mappings so a concurrent reload
        cannot change them mid-message.
        """
        self.reset()
        self.queue_id = queue_id
        self._mappings = self._store.current()
        self.sender = resolve_sender(address, self._mappings)
        self.footer_available = self.sender.footer_available
        self.state = SessionState.SENDER_KNOWN

    def on_header(self, name: str, value: str) -> None:
        """Accumulate one header line."""
        if not self.footer_available:
            return
        line = f"{name}: {value}".encode("utf-8", "surrogateescape")
        try:
            self._append(self._headers, line + LINE_BREAK)
        except BufferLimitError as e:
            self._abandon(str(e))

    def on_end_of_headers(self) -> None:
        """Switch to body accumulation."""
        self.state = SessionState.ACCUMULATING

    def on_body_chunk(self, chunk: bytes) -> None:
        """Accumulate one body chunk."""
        self.state = SessionState.ACCUMULATING
        if not self.footer_available:
            return
        try:
            if not self._body_started:
                self._append(self._body, LINE_BREAK)
                self._body_started = True
            self._append(self._body, chunk)
        except BufferLimitError as e:
            self._abandon(str(e))

    def on_end_of_message(self, modifier: MessageModifier) -> bool:
        """Reconstruct the message and apply the footer.

        Args:
            modifier: Transport operations for the current message.

        Returns:
            True if the body was replaced and the header added.
        """
        self.state = SessionState.FINALIZING
        try:
            return self._finalize(modifier)
        finally:
            self.reset()
            self._store.refresh()

    def _finalize(self, modifier: MessageModifier) -> bool:
        if not self.footer_available or self.sender is None:
            return False

        context = self._log_context()
        if not self._body_started:
            # Header-only message; the parser still needs the separator
            self._body += LINE_BREAK
        try:
            root = parse_message(bytes(self._headers) + bytes(self._body))
        except ParseError as e:
            logger.warning("%s message left unmodified: %s", context, e)
            return False

        body, render = render_message(root, self.sender, self._mappings)
        if not render.guard.available:
            logger.info(
                "%s message left unmodified: %s", context, render.guard.reason
            )
            return False
        if render.footers_inserted == 0:
            logger.info("%s no part accepts a footer", context)

        modifier.replace_body(body)
        modifier.add_header(
            MODIFIED_HEADER, modified_tag(self.daemon_name, self.sender.sender)
        )
        logger.info(
            "%s footer applied (key %s, %d part(s))",
            context,
            self.sender.matched_key,
            render.footers_inserted,
        )
        return True

    def on_abort(self) -> None:
        """Message aborted by the MTA; state is cleared on the next event."""
        logger.debug("%s message aborted", self._log_context())

    def on_close(self) -> None:
        """Connection closed."""
        self.reset()
