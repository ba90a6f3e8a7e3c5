# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Shared holder of the active footer mappings.

Every completed message triggers ``refresh()``, which reloads the
footers from the config file when its modification time changed.  A
broken file never takes effect: the previous mappings stay active and
the error is logged.
"""

import logging
import threading
from pathlib import Path

from footermilter.config import ConfigError, load_footer_mappings
from footermilter.footer.resolver import FooterMappings


logger = logging.getLogger(__name__)


class FooterStore:
    """Thread-safe, atomically swapped footer mappings."""

    def __init__(
        self, mappings: FooterMappings, config_path: Path | None = None
    ) -> None:
        self._lock = threading.Lock()
        self._mappings = mappings
        self._config_path = config_path
        self._mtime_ns = self._stat_mtime()

    @classmethod
    def from_file(cls, config_path: Path) -> "FooterStore":
        """Load mappings from a config file and watch it for changes.

        Raises:
            ConfigError: If the file cannot be loaded.
        """
        mappings = load_footer_mappings(config_path)
        logger.info(
            "Loaded %d text and %d HTML footers from %s",
            len(mappings.text),
            len(mappings.html),
            config_path,
        )
        return cls(mappings, config_path)

    @classmethod
    def static(cls, mappings: FooterMappings) -> "FooterStore":
        """Serve fixed mappings; ``refresh()`` is a no-op."""
        return cls(mappings)

    @property
    def config_path(self) -> Path | None:
        return self._config_path

    def _stat_mtime(self) -> int | None:
        if self._config_path is None:
            return None
        try:
            return self._config_path.stat().st_mtime_ns
        except OSError:
            return None

    def current(self) -> FooterMappings:
        """Return the active mappings snapshot."""
        with self._lock:
            return self._mappings

    def refresh(self) -> bool:
        """Reload the mappings if the config file changed.

        Returns:
            True if new mappings were installed.
        """
        if self._config_path is None:
            return False

        mtime = self._stat_mtime()
        with self._lock:
            if mtime is None or mtime == self._mtime_ns:
                return False
            self._mtime_ns = mtime

        try:
            mappings = load_footer_mappings(self._config_path)
        except ConfigError as e:
            logger.error(
                "Footer reload from %s failed, keeping previous footers: %s",
                self._config_path,
                e,
            )
            return False

        with self._lock:
            self._mappings = mappings
        logger.info("Reloaded footers from %s", self._config_path)
        return True
