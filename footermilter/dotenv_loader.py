# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Idempotent ``.env`` loading for ``!env`` config values.

Environment variables are read from two locations (in order):

1. ``.env`` next to the config file (by default the XDG config
   directory, ``~/.config/footermilter/.env``);
2. ``.env`` in the current working directory.

Variables set by the first file are **not** overwritten by the second
(``python-dotenv`` respects existing env vars by default).
"""

import logging
from pathlib import Path

from dotenv import load_dotenv


logger = logging.getLogger(__name__)

_dotenv_loaded = False


def load_dotenv_once(config_env: Path | None = None) -> None:
    """Load .env files once, if not already loaded.

    Args:
        config_env: ``.env`` file next to the config file.  Defaults to
            the one in the XDG config directory.
    """
    global _dotenv_loaded
    if _dotenv_loaded:
        return

    if config_env is None:
        from footermilter.config import get_dotenv_path

        config_env = get_dotenv_path()

    for env_file in (config_env, Path.cwd() / ".env"):
        if env_file.exists():
            load_dotenv(env_file)
            logger.debug("Loaded .env from %s", env_file)

    _dotenv_loaded = True


def reset_dotenv_state() -> None:
    """Reset the dotenv loaded state. For testing only."""
    global _dotenv_loaded
    _dotenv_loaded = False
