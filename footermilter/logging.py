# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Centralized logging configuration.

Usage:
    # In entry points
    from footermilter.logging import configure_logging
    configure_logging(level=logging.INFO, syslog_address="/dev/log")

    # In library modules
    import logging
    logger = logging.getLogger(__name__)
    logger.info("Footer applied for %s", sender)
"""

import logging
import logging.handlers


DEFAULT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

#: Syslog lines carry their own timestamp and host.
SYSLOG_FORMAT = "footermilter[%(process)d]: %(levelname)s %(message)s"


def configure_logging(
    level: int = logging.INFO,
    format_string: str | None = None,
    syslog_address: str | None = None,
) -> None:
    """Configure logging for the application.

    Sets up the root logger with a stream handler and, when
    ``syslog_address`` is given, a syslog handler using the mail
    facility (where MTA operators expect milter logs).

    Args:
        level: The logging level (e.g., logging.INFO, logging.DEBUG).
        format_string: Custom format string. If None, uses default format.
        syslog_address: Syslog socket path or ``host:port``.  None
            disables syslog.
    """
    if format_string is None:
        format_string = DEFAULT_FORMAT

    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(format_string))

    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    # Remove existing handlers to avoid duplicates
    for existing_handler in root_logger.handlers[:]:
        root_logger.removeHandler(existing_handler)

    root_logger.addHandler(handler)

    if syslog_address:
        syslog_handler = logging.handlers.SysLogHandler(
            address=_syslog_target(syslog_address),
            facility=logging.handlers.SysLogHandler.LOG_MAIL,
        )
        syslog_handler.setFormatter(logging.Formatter(SYSLOG_FORMAT))
        root_logger.addHandler(syslog_handler)


def _syslog_target(address: str) -> str | tuple[str, int]:
    """Turn ``host:port`` into a UDP address; anything else is a socket."""
    host, sep, port = address.rpartition(":")
    if sep and host and port.isdigit():
        return (host, int(port))
    return address
