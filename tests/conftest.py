# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Shared pytest fixtures used across multiple test packages."""

import logging
from pathlib import Path
from unittest.mock import patch

import pytest

from footermilter.footer.resolver import FooterMappings
from footermilter.footer.store import FooterStore


class RecordingModifier:
    """MessageModifier that records what the session asked for."""

    def __init__(self) -> None:
        self.bodies: list[bytes] = []
        self.headers: list[tuple[str, str]] = []

    def replace_body(self, body: bytes) -> None:
        self.bodies.append(body)

    def add_header(self, name: str, value: str) -> None:
        self.headers.append((name, value))


@pytest.fixture(autouse=True)
def _restore_root_logger():
    """Undo configure_logging() calls made by a test."""
    root = logging.getLogger()
    handlers = root.handlers[:]
    level = root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)


@pytest.fixture(autouse=True)
def _no_dotenv():
    """Keep developer ``.env`` files out of config tests."""
    with patch("footermilter.config.load_dotenv_once"):
        yield


@pytest.fixture
def mappings() -> FooterMappings:
    """Footers for alice and the example.com domain."""
    return FooterMappings(
        text={
            "alice@example.com": "Regards, Alice",
            "@example.com": "Example Corp",
        },
        html={"@example.com": "<p>Example Corp</p>"},
    )


@pytest.fixture
def store(mappings: FooterMappings) -> FooterStore:
    return FooterStore.static(mappings)


@pytest.fixture
def modifier() -> RecordingModifier:
    return RecordingModifier()


@pytest.fixture
def config_file(tmp_path: Path) -> Path:
    """Minimal valid config with a footer for alice."""
    path = tmp_path / "footermilter.yaml"
    path.write_text(
        "milter:\n"
        "  daemon_name: mail.example.com\n"
        "footers:\n"
        "  text:\n"
        "    alice@example.com: Regards, Alice\n"
        "  html:\n"
        '    "@example.com": "<p>Example Corp</p>"\n'
    )
    return path
