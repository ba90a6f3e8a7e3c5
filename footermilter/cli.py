# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""footermilter CLI, a multi-command entry point.

Subcommands:

* ``run``   - start the milter
* ``init``  - create a stub config file
* ``check`` - load and validate the config, print a summary
* ``apply`` - run the footer engine over a message file offline
"""

import argparse
import dataclasses
import logging
import sys
from email import policy
from email.parser import BytesParser
from pathlib import Path

from footermilter.config import (
    ConfigError,
    FooterMilterConfig,
    describe,
    resolve_config_path,
)
from footermilter.footer.session import FooterSession, fold_header_value
from footermilter.footer.store import FooterStore
from footermilter.logging import configure_logging


logger = logging.getLogger(__name__)

_SUBCOMMANDS = frozenset({"run", "init", "check", "apply"})

_USAGE = """\
usage: footermilter <command> [args]

commands:
  run     Start the milter
  init    Create a stub config file
  check   Load and validate the config
  apply   Add the footer to a message file and print the result

Run 'footermilter <command> --help' for command-specific help.\
"""


def _config_argument(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        metavar="PATH",
        help=(
            "Path to footermilter.yaml (default: $FOOTERMILTER_CONFIG or "
            "~/.config/footermilter/footermilter.yaml)"
        ),
    )


# ── run subcommand ──────────────────────────────────────────────────


def cmd_run(argv: list[str]) -> int:
    """Start the milter and serve until libmilter stops.

    Args:
        argv: Command arguments.

    Returns:
        Exit code (0=success, 1=config error, 2=startup, 3=runtime error).
    """
    parser = argparse.ArgumentParser(
        prog="footermilter run",
        description="Add per-sender footers to outgoing mail.",
    )
    _config_argument(parser)
    parser.add_argument(
        "--socket",
        default=None,
        metavar="SPEC",
        help="Override milter.socket (e.g. inet:10099@127.0.0.1)",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug logging",
    )
    args = parser.parse_args(argv)

    configure_logging(level=logging.DEBUG if args.debug else logging.INFO)
    config_path = resolve_config_path(args.config)

    try:
        config = FooterMilterConfig.from_yaml(config_path)
        store = FooterStore.from_file(config_path)
    except ConfigError as e:
        logger.critical("Configuration error: %s", e)
        return 1

    configure_logging(
        level=logging.DEBUG if args.debug else config.logging.level_number,
        syslog_address=(
            config.logging.syslog_address if config.logging.syslog else None
        ),
    )

    settings = config.milter
    if args.socket:
        settings = dataclasses.replace(settings, socket=args.socket)

    try:
        from footermilter.milter import run_milter
    except ImportError as e:
        logger.critical(
            "pymilter is required to run the milter "
            "(pip install 'footermilter[milter]'): %s",
            e,
        )
        return 2

    try:
        run_milter(settings, store)
        return 0
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        return 0
    except Exception as e:
        logger.exception("Fatal runtime error: %s", e)
        return 3


# ── init subcommand ─────────────────────────────────────────────────


def cmd_init(argv: list[str]) -> int:
    """Create a stub configuration file if none exists.

    Args:
        argv: Command arguments.

    Returns:
        Exit code (always 0).
    """
    parser = argparse.ArgumentParser(prog="footermilter init")
    _config_argument(parser)
    args = parser.parse_args(argv)

    config_path = resolve_config_path(args.config)
    if config_path.exists():
        print(f"Config already exists: {config_path}")
        return 0

    config_path.parent.mkdir(parents=True, exist_ok=True)
    config_path.write_text(_STUB_CONFIG)
    print(f"Created stub config: {config_path}")
    return 0


# ── check subcommand ────────────────────────────────────────────────


def cmd_check(argv: list[str]) -> int:
    """Load the configuration and print a summary.

    Args:
        argv: Command arguments.

    Returns:
        0 if the configuration is valid, 1 otherwise.
    """
    parser = argparse.ArgumentParser(prog="footermilter check")
    _config_argument(parser)
    args = parser.parse_args(argv)

    configure_logging(level=logging.WARNING)
    config_path = resolve_config_path(args.config)
    try:
        config = FooterMilterConfig.from_yaml(config_path)
    except ConfigError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 1

    for key, value in describe(config).items():
        print(f"{key}: {value}")
    if not config.footers:
        print("warning: no footers configured, mail passes unmodified")
    return 0


# ── apply subcommand ────────────────────────────────────────────────


class _CapturingModifier:
    """Records the changes the session would ask the MTA to make."""

    def __init__(self) -> None:
        self.body: bytes | None = None
        self.headers: list[tuple[str, str]] = []

    def replace_body(self, body: bytes) -> None:
        self.body = body

    def add_header(self, name: str, value: str) -> None:
        self.headers.append((name, value))


def apply_footer(
    data: bytes,
    sender: str,
    store: FooterStore,
    daemon_name: str | None = None,
) -> bytes:
    """Run a complete session over a raw message.

    Args:
        data: RFC 5322 message bytes.
        sender: Envelope sender address.
        store: Footer store to resolve against.
        daemon_name: Daemon name for the diagnostic header.

    Returns:
        The message as the MTA would deliver it.
    """
    message = BytesParser(policy=policy.compat32).parsebytes(
        data, headersonly=True
    )
    headers = list(message.raw_items())
    payload = message.get_payload()
    body = payload.encode("utf-8", "surrogateescape") if payload else b""

    session = FooterSession(store, daemon_name=daemon_name)
    modifier = _CapturingModifier()
    session.on_connect(daemon_name)
    session.on_sender(sender)
    for name, value in headers:
        session.on_header(name, value)
    session.on_end_of_headers()
    if body:
        session.on_body_chunk(body)
    session.on_end_of_message(modifier)

    out = bytearray()
    added = [
        (name, fold_header_value(value)) for name, value in modifier.headers
    ]
    for name, value in headers + added:
        out += f"{name}: {value}\n".encode("utf-8", "surrogateescape")
    out += b"\n"
    out += modifier.body if modifier.body is not None else body
    return bytes(out)


def cmd_apply(argv: list[str]) -> int:
    """Add the footer to a message file and write the result to stdout.

    Args:
        argv: Command arguments.

    Returns:
        0 on success, 1 on configuration or I/O errors.
    """
    parser = argparse.ArgumentParser(prog="footermilter apply")
    _config_argument(parser)
    parser.add_argument(
        "--sender",
        required=True,
        metavar="ADDR",
        help="Envelope sender address",
    )
    parser.add_argument(
        "--daemon-name",
        default=None,
        metavar="NAME",
        help="Daemon name for the diagnostic header",
    )
    parser.add_argument("file", type=Path, help="Message file (RFC 5322)")
    args = parser.parse_args(argv)

    configure_logging(level=logging.WARNING)
    try:
        config = FooterMilterConfig.from_yaml(resolve_config_path(args.config))
    except ConfigError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 1

    try:
        data = args.file.read_bytes()
    except OSError as e:
        print(f"Cannot read {args.file}: {e}", file=sys.stderr)
        return 1

    result = apply_footer(
        data,
        args.sender,
        FooterStore.static(config.footers),
        daemon_name=args.daemon_name or config.milter.daemon_name,
    )
    sys.stdout.buffer.write(result)
    sys.stdout.buffer.flush()
    return 0


# ── CLI plumbing ────────────────────────────────────────────────────


_DISPATCH: dict[str, str] = {
    "run": "cmd_run",
    "init": "cmd_init",
    "check": "cmd_check",
    "apply": "cmd_apply",
}


def cli() -> None:
    """Entry point for ``footermilter``.

    When no arguments are given, prints usage information.
    """
    argv = sys.argv[1:]

    if not argv or argv[0] == "--help":
        print(_USAGE)
        sys.exit(0)

    if argv[0] not in _SUBCOMMANDS:
        print(f"footermilter: unknown command '{argv[0]}'", file=sys.stderr)
        print(_USAGE, file=sys.stderr)
        sys.exit(2)

    command = argv[0]
    rest = argv[1:]

    # Look up handler by name so tests can mock individual commands.
    import footermilter.cli as _self

    handler = getattr(_self, _DISPATCH[command])
    sys.exit(handler(rest))


#: Stub configuration template written by ``footermilter init``.
_STUB_CONFIG = """\
# footermilter configuration

milter:
  name: footermilter
  socket: inet:10099@127.0.0.1
  # timeout: 600
  # daemon_name: mail.example.com
  # max_message_bytes: 26214400

logging:
  level: INFO
  # syslog: true

# Keys are full addresses, @domain patterns or bare domains.
# Footer values may be literal strings, !env VAR or !file PATH.
footers:
  text:
    "@example.com": |
      --
      Example Corp, 1 Example Street
  html:
    "@example.com": |
      <p>Example Corp, 1 Example Street</p>
"""
