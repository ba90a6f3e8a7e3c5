# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""pymilter adapter.

``FooterMilter`` is instantiated by libmilter once per MTA connection
and forwards every callback to its own ``FooterSession``.  Nothing that
happens inside the footer engine is allowed to turn into a protocol
failure: every callback continues the message, modified or not.
"""

import functools
import logging
from collections.abc import Callable
from typing import ParamSpec

import Milter

from footermilter.config import MilterSettings
from footermilter.footer.session import FooterSession, fold_header_value
from footermilter.footer.store import FooterStore


logger = logging.getLogger(__name__)


def _strip_brackets(address: str) -> str:
    address = address.strip()
    if address.startswith("<") and address.endswith(">"):
        return address[1:-1]
    return address


P = ParamSpec("P")


def _continue_on_error(
    callback: Callable[P, int],
) -> Callable[P, int]:
    """Log unexpected errors and let the message through."""

    @functools.wraps(callback)
    def wrapper(*args: P.args, **kwargs: P.kwargs) -> int:
        try:
            return callback(*args, **kwargs)
        except Exception:
            logger.exception("Unexpected error in %s", callback.__name__)
            return Milter.CONTINUE

    return wrapper


class _MilterModifier:
    """MessageModifier backed by the libmilter end-of-message calls."""

    def __init__(self, milter: "FooterMilter") -> None:
        self._milter = milter

    def replace_body(self, body: bytes) -> None:
        self._milter.replacebody(body)

    def add_header(self, name: str, value: str) -> None:
        self._milter.addheader(name, fold_header_value(value))


class FooterMilter(Milter.Base):
    """One instance per MTA connection; runs in its own thread."""

    def __init__(self, store: FooterStore, settings: MilterSettings) -> None:
        super().__init__()
        self.session = FooterSession(
            store,
            daemon_name=settings.daemon_name,
            max_message_bytes=settings.max_message_bytes,
        )

    @Milter.noreply
    @_continue_on_error
    def connect(self, hostname, family, hostaddr):
        self.session.on_connect(self.getsymval("{daemon_name}"))
        logger.debug("Connection from %s %s", hostname, hostaddr)
        return Milter.CONTINUE

    @_continue_on_error
    def envfrom(self, mailfrom, *params):
        address = self.getsymval("{mail_addr}") or _strip_brackets(mailfrom)
        self.session.on_sender(address, queue_id=self.getsymval("i"))
        return Milter.CONTINUE

    @Milter.noreply
    @_continue_on_error
    def header(self, name, value):
        self.session.on_header(name, value)
        return Milter.CONTINUE

    @Milter.noreply
    @_continue_on_error
    def eoh(self):
        if self.session.queue_id is None:
            # Some MTAs only assign the queue id after DATA
            self.session.queue_id = self.getsymval("i")
        self.session.on_end_of_headers()
        return Milter.CONTINUE

    @Milter.noreply
    @_continue_on_error
    def body(self, chunk):
        self.session.on_body_chunk(chunk)
        return Milter.CONTINUE

    @_continue_on_error
    def eom(self):
        self.session.on_end_of_message(_MilterModifier(self))
        return Milter.CONTINUE

    @_continue_on_error
    def abort(self):
        self.session.on_abort()
        return Milter.CONTINUE

    @_continue_on_error
    def close(self):
        self.session.on_close()
        return Milter.CONTINUE


def run_milter(settings: MilterSettings, store: FooterStore) -> None:
    """Register the milter with libmilter and serve until stopped.

    Args:
        settings: Transport settings.
        store: Footer store shared by all connections.
    """
    Milter.factory = functools.partial(FooterMilter, store, settings)
    Milter.set_flags(Milter.CHGBODY + Milter.ADDHDRS)
    logger.info(
        "Starting milter %s on %s (timeout %ds)",
        settings.name,
        settings.socket,
        settings.timeout,
    )
    Milter.runmilter(settings.name, settings.socket, settings.timeout)
    logger.info("Milter %s stopped", settings.name)
