# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Configuration for the footer milter.

Configuration is loaded from a YAML file.  The default location follows
the XDG Base Directory Specification:

    ``$XDG_CONFIG_HOME/footermilter/footermilter.yaml``
    (typically ``~/.config/footermilter/footermilter.yaml``)

``FOOTERMILTER_CONFIG`` or the ``--config`` option point elsewhere.

Two custom tags are understood:

- ``!env VAR_NAME`` resolves a value from the environment;
- ``!file PATH`` reads a footer text from a UTF-8 file.  Relative paths
  are resolved against the directory of the config file.
"""

import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, TypeVar, overload

import yaml
from platformdirs import user_config_path

from footermilter.dotenv_loader import load_dotenv_once
from footermilter.footer.resolver import FooterMappings


logger = logging.getLogger(__name__)

#: Application name for XDG path resolution.
_APP_NAME = "footermilter"

#: Environment variable overriding the default config path.
CONFIG_ENV_VAR = "FOOTERMILTER_CONFIG"

DEFAULT_SOCKET = "inet:10099@127.0.0.1"
DEFAULT_TIMEOUT = 600
DEFAULT_MAX_MESSAGE_BYTES = 25 * 1024 * 1024
MIN_MAX_MESSAGE_BYTES = 1024

_BOOL_TRUTHY = frozenset({"true", "1", "yes", "on"})
_BOOL_FALSY = frozenset({"false", "0", "no", "off"})


def get_config_path() -> Path:
    """Return the default config file path.

    Returns:
        Path to ``footermilter.yaml`` in the XDG config directory.
    """
    return user_config_path(_APP_NAME) / "footermilter.yaml"


def get_dotenv_path() -> Path:
    """Return the default ``.env`` file path inside the XDG config directory."""
    return user_config_path(_APP_NAME) / ".env"


def resolve_config_path(explicit: Path | str | None = None) -> Path:
    """Pick the config file: explicit path, environment, then XDG default."""
    if explicit:
        return Path(explicit).expanduser()
    from_env = os.environ.get(CONFIG_ENV_VAR)
    if from_env:
        return Path(from_env).expanduser()
    return get_config_path()


class ConfigError(Exception):
    """Base exception for configuration errors."""


# ---------------------------------------------------------------------------
# YAML tag placeholders
# ---------------------------------------------------------------------------


class _EnvVar:
    """Placeholder for an unresolved ``!env VAR_NAME`` tag."""

    def __init__(self, var_name: str) -> None:
        self.var_name = var_name


class _FileRef:
    """Placeholder for an unresolved ``!file PATH`` tag."""

    def __init__(self, path: str) -> None:
        self.path = path


def _env_constructor(loader: yaml.SafeLoader, node: yaml.Node) -> _EnvVar:
    """Handle ``!env VAR_NAME`` in YAML."""
    value = loader.construct_scalar(node)
    return _EnvVar(str(value))


def _file_constructor(loader: yaml.SafeLoader, node: yaml.Node) -> _FileRef:
    """Handle ``!file PATH`` in YAML."""
    value = loader.construct_scalar(node)
    return _FileRef(str(value))


def _make_loader() -> type[yaml.SafeLoader]:
    """Create a YAML loader that understands ``!env`` and ``!file``."""

    class FooterLoader(yaml.SafeLoader):
        pass

    FooterLoader.add_constructor("!env", _env_constructor)
    FooterLoader.add_constructor("!file", _file_constructor)
    return FooterLoader


# ---------------------------------------------------------------------------
# Value resolution
# ---------------------------------------------------------------------------


def _coerce_bool(value: object) -> bool:
    """Coerce a value to bool, handling string representations."""
    if isinstance(value, bool):
        return value
    s = str(value).lower().strip()
    if s in _BOOL_TRUTHY:
        return True
    if s in _BOOL_FALSY:
        return False
    raise ConfigError(f"Cannot convert {value!r} to bool")


def _raw_resolve(value: object) -> str | None:
    """Resolve an ``_EnvVar`` to its string value, or stringify literals.

    Returns None if the value is None or the env var is not set.
    """
    if isinstance(value, _EnvVar):
        return os.environ.get(value.var_name)
    if isinstance(value, _FileRef):
        raise ConfigError(
            f"!file {value.path}: file references are only allowed "
            f"for footer texts"
        )
    if value is None:
        return None
    return str(value)


_MISSING = object()

T = TypeVar("T")


@overload
def _resolve(value: object, coerce: type[T], *, default: T) -> T: ...


@overload
def _resolve(value: object, coerce: type[T]) -> T | None: ...


def _resolve(
    value: object,
    coerce: type[Any],
    *,
    default: object = _MISSING,
) -> Any:
    """Resolve a YAML value, handling ``!env`` tags and type coercion.

    Args:
        value: Raw value from YAML (may be ``_EnvVar``, None, or a
            literal already parsed by PyYAML).
        coerce: Target type (``str``, ``int``, ``bool``).
        default: Default when value is absent.

    Returns:
        The resolved, coerced value, or None when optional and absent.

    Raises:
        ConfigError: If the value cannot be coerced.
    """
    if not isinstance(value, (_EnvVar, _FileRef)) and value is not None:
        if coerce is bool:
            return _coerce_bool(value)
        if isinstance(value, coerce) and not isinstance(value, bool):
            return value

    resolved = _raw_resolve(value)
    if resolved is None:
        if default is not _MISSING:
            return default
        return None

    if coerce is bool:
        return _coerce_bool(resolved)
    try:
        return coerce(resolved)
    except ValueError as e:
        raise ConfigError(
            f"Cannot convert {resolved!r} to {coerce.__name__}"
        ) from e


def _section(raw: dict, name: str) -> dict:
    section = raw.get(name)
    if section is None:
        return {}
    if not isinstance(section, dict):
        raise ConfigError(f"'{name}' must be a YAML mapping")
    return section


def _trim_footer(text: str) -> str:
    """Strip trailing line breaks; the renderer adds its own."""
    return text.rstrip("\r\n")


def _resolve_footer(value: object, where: str, base_dir: Path) -> str:
    """Resolve one footer text (literal, ``!env`` or ``!file``)."""
    if isinstance(value, _FileRef):
        path = Path(value.path).expanduser()
        if not path.is_absolute():
            path = base_dir / path
        try:
            text = path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            raise ConfigError(f"{where}: cannot read {path}: {e}") from e
        return _trim_footer(text)

    if isinstance(value, _EnvVar):
        resolved = os.environ.get(value.var_name)
        if resolved is None:
            raise ConfigError(
                f"{where}: environment variable '{value.var_name}' "
                f"is not set"
            )
        return _trim_footer(resolved)

    if not isinstance(value, str):
        raise ConfigError(f"{where}: footer must be a string")
    return _trim_footer(value)


def _parse_footer_map(
    raw: object, where: str, base_dir: Path
) -> dict[str, str]:
    if raw is None:
        return {}
    if not isinstance(raw, dict):
        raise ConfigError(f"'{where}' must be a YAML mapping")
    footers: dict[str, str] = {}
    for key, value in raw.items():
        if not isinstance(key, str) or not key:
            raise ConfigError(
                f"'{where}' keys must be non-empty strings: {key!r}"
            )
        footers[key] = _resolve_footer(value, f"{where}.{key}", base_dir)
    return footers


def _parse_footers(raw: dict, base_dir: Path) -> FooterMappings:
    """Build FooterMappings from the raw top-level config mapping."""
    footers = _section(raw, "footers")
    return FooterMappings(
        text=_parse_footer_map(footers.get("text"), "footers.text", base_dir),
        html=_parse_footer_map(footers.get("html"), "footers.html", base_dir),
    )


def _load_raw(config_path: Path) -> dict:
    """Read and parse a config file without resolving tags."""
    if not config_path.exists():
        raise ConfigError(f"Config file not found: {config_path}")
    try:
        with open(config_path, encoding="utf-8") as f:
            raw = yaml.load(f, Loader=_make_loader())
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {config_path}: {e}") from e
    except OSError as e:
        raise ConfigError(f"Cannot read {config_path}: {e}") from e

    if raw is None:
        return {}
    if not isinstance(raw, dict):
        raise ConfigError(f"Config file must be a YAML mapping: {config_path}")
    return raw


def load_footer_mappings(config_path: Path) -> FooterMappings:
    """Load only the ``footers`` section of a config file.

    Used by the footer store to reload footers without touching the
    rest of the running configuration.

    Raises:
        ConfigError: If the file is missing or invalid.
    """
    raw = _load_raw(config_path)
    return _parse_footers(raw, config_path.parent)


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class MilterSettings:
    """Milter registration and transport settings.

    Attributes:
        name: Name the milter registers under.
        socket: libmilter connection spec (``inet:port@host``,
            ``unix:/path``).
        timeout: MTA I/O timeout in seconds.
        daemon_name: Daemon name used when the MTA does not send
            ``{daemon_name}``.
        max_message_bytes: Largest message buffered for reconstruction.
    """

    name: str = "footermilter"
    socket: str = DEFAULT_SOCKET
    timeout: int = DEFAULT_TIMEOUT
    daemon_name: str | None = None
    max_message_bytes: int = DEFAULT_MAX_MESSAGE_BYTES

    def __post_init__(self) -> None:
        """Validate settings.

        Raises:
            ValueError: If a setting is out of range.
        """
        if not self.name:
            raise ValueError("Milter name must not be empty")
        if not self.socket:
            raise ValueError("Milter socket must not be empty")
        if self.timeout < 1:
            raise ValueError(f"Milter timeout must be >= 1s: {self.timeout}")
        if self.max_message_bytes < MIN_MAX_MESSAGE_BYTES:
            raise ValueError(
                f"max_message_bytes must be >= {MIN_MAX_MESSAGE_BYTES}: "
                f"{self.max_message_bytes}"
            )


@dataclass(frozen=True)
class LoggingSettings:
    """Logging settings.

    Attributes:
        level: Level name (``DEBUG``, ``INFO``, ...).
        syslog: Also log to syslog with the mail facility.
        syslog_address: Syslog socket path.
    """

    level: str = "INFO"
    syslog: bool = False
    syslog_address: str = "/dev/log"

    def __post_init__(self) -> None:
        """Normalize and validate the level name.

        Raises:
            ValueError: If the level is unknown.
        """
        level = self.level.upper()
        if level not in logging.getLevelNamesMapping():
            raise ValueError(f"Unknown log level: {self.level}")
        object.__setattr__(self, "level", level)

    @property
    def level_number(self) -> int:
        return logging.getLevelNamesMapping()[self.level]


@dataclass(frozen=True)
class FooterMilterConfig:
    """Complete configuration.

    Attributes:
        milter: Transport settings.
        logging: Logging settings.
        footers: Footer mappings as loaded at startup.
        path: File the configuration was loaded from, if any.
    """

    milter: MilterSettings = field(default_factory=MilterSettings)
    logging: LoggingSettings = field(default_factory=LoggingSettings)
    footers: FooterMappings = field(default_factory=FooterMappings)
    path: Path | None = None

    @classmethod
    def from_yaml(cls, config_path: Path | None = None) -> "FooterMilterConfig":
        """Load configuration from a YAML file.

        A ``.env`` file is loaded first if present, so ``!env`` tags can
        refer to variables defined there.

        Args:
            config_path: Path to the YAML file.  Defaults to
                ``resolve_config_path()``.

        Returns:
            FooterMilterConfig instance.

        Raises:
            ConfigError: If the file is missing or invalid.
        """
        if config_path is None:
            config_path = resolve_config_path()
        load_dotenv_once(config_path.parent / ".env")

        raw = _load_raw(config_path)
        config = cls._from_raw(raw, config_path)
        logger.info(
            "Config loaded from %s: socket=%s, %d text and %d HTML footers",
            config_path,
            config.milter.socket,
            len(config.footers.text),
            len(config.footers.html),
        )
        return config

    @classmethod
    def _from_raw(cls, raw: dict, config_path: Path) -> "FooterMilterConfig":
        """Build config from parsed (but unresolved) YAML dict."""
        milter = _section(raw, "milter")
        log = _section(raw, "logging")

        try:
            milter_settings = MilterSettings(
                name=_resolve(milter.get("name"), str, default="footermilter"),
                socket=_resolve(
                    milter.get("socket"), str, default=DEFAULT_SOCKET
                ),
                timeout=_resolve(
                    milter.get("timeout"), int, default=DEFAULT_TIMEOUT
                ),
                daemon_name=_resolve(milter.get("daemon_name"), str),
                max_message_bytes=_resolve(
                    milter.get("max_message_bytes"),
                    int,
                    default=DEFAULT_MAX_MESSAGE_BYTES,
                ),
            )
            logging_settings = LoggingSettings(
                level=_resolve(log.get("level"), str, default="INFO"),
                syslog=_resolve(log.get("syslog"), bool, default=False),
                syslog_address=_resolve(
                    log.get("syslog_address"), str, default="/dev/log"
                ),
            )
        except ValueError as e:
            raise ConfigError(str(e)) from e

        return cls(
            milter=milter_settings,
            logging=logging_settings,
            footers=_parse_footers(raw, config_path.parent),
            path=config_path,
        )


def describe(config: FooterMilterConfig) -> Mapping[str, object]:
    """Summarize a configuration for display."""
    return {
        "config": str(config.path) if config.path else "-",
        "milter.name": config.milter.name,
        "milter.socket": config.milter.socket,
        "milter.timeout": config.milter.timeout,
        "milter.daemon_name": config.milter.daemon_name or "-",
        "milter.max_message_bytes": config.milter.max_message_bytes,
        "logging.level": config.logging.level,
        "logging.syslog": config.logging.syslog,
        "footers.text": len(config.footers.text),
        "footers.html": len(config.footers.html),
    }
