"""
reef-pi - Configuration Resolver
=================================
Resolves the effective server configuration from two sources:

1. An optional YAML configuration file (-config <path>)
2. Command-line overrides (-port, -no-auth)

Precedence is: command-line flag > configuration file > DEFAULTS.
The file is optional; without one the defaults are a complete configuration.

Usage:
    config = resolve_config("/etc/reef-pi/config.yaml")
    config = apply_overrides(config, port=9090, no_auth=True)

    manager = ConfigManager(path)
    manager.update({"camera": {...}})   # Persist a section back to the file
"""

import yaml
from typing import Any


# Default configuration values used when no file is given or a key is missing.
DEFAULTS = {
    "web": {
        "host": "0.0.0.0",
        "port": 8080,
        "assets": "",
    },
    "auth": {
        "enabled": True,
        "data_dir": "data",
        "token_hours": 24,
    },
    "camera": {
        "enable": False,
        "tick_interval": 120,
        "capture_flags": "",
        "image_directory": "images",
        "upload": False,
    },
    "dev_mode": False,
}

# Top-level keys that must hold a mapping when present in the file.
SECTIONS = ("web", "auth", "camera")

# Keys read at startup and the type their value must have.
TYPED_KEYS = {
    ("web", "host"): str,
    ("web", "port"): int,
    ("web", "assets"): (str, type(None)),
    ("auth", "enabled"): bool,
    ("auth", "data_dir"): str,
    ("auth", "token_hours"): int,
}


class ConfigError(Exception):
    """Base class for configuration failures."""


class ConfigReadError(ConfigError):
    """The configuration file could not be opened or read."""


class ConfigParseError(ConfigError):
    """The configuration file content is not a valid document."""


class ConfigManager:
    """
    Reads and writes the reef-pi configuration file.

    Attributes:
        config_path: Path to the YAML file, or "" when running on defaults.
    """

    def __init__(self, config_path: str | None = None):
        self.config_path = config_path or ""

    def load(self) -> dict:
        """
        Load the configuration file and merge it over DEFAULTS.

        Returns:
            A fresh dictionary containing the full configuration.

        Raises:
            ConfigReadError:  The file is missing or unreadable.
            ConfigParseError: The file is not valid YAML, has the wrong shape,
                              or a known key holds a value of the wrong type.
        """
        config = _deep_copy(DEFAULTS)
        if not self.config_path:
            return config

        _deep_merge(config, self.read_document())
        _check_types(config, self.config_path)
        return config

    def read_document(self) -> dict:
        """
        Read the file as written, without defaults.

        Raises:
            ConfigReadError:  The file is missing or unreadable.
            ConfigParseError: The file is not valid YAML or has the wrong shape.
        """
        try:
            with open(self.config_path, "r", encoding="utf-8") as f:
                content = f.read()
        except (OSError, UnicodeDecodeError) as e:
            raise ConfigReadError(
                f"Failed to read config file {self.config_path}: {e}"
            ) from e

        try:
            document = yaml.safe_load(content)
        except yaml.YAMLError as e:
            raise ConfigParseError(
                f"Failed to parse config file {self.config_path}: {e}"
            ) from e

        if document is None:
            return {}
        if not isinstance(document, dict):
            raise ConfigParseError(
                f"Config file {self.config_path} must contain a mapping, "
                f"got {type(document).__name__}"
            )
        for section in SECTIONS:
            if section in document and not isinstance(document[section], dict):
                raise ConfigParseError(
                    f"Section '{section}' in {self.config_path} must be a mapping"
                )
        return document

    def save(self, document: dict) -> None:
        """
        Write a document to the file.

        Raises:
            ConfigReadError: No file path was configured.
        """
        if not self.config_path:
            raise ConfigReadError("No config file path configured")

        with open(self.config_path, "w", encoding="utf-8") as f:
            yaml.dump(
                document,
                f,
                default_flow_style=False,
                allow_unicode=True,
                sort_keys=False,
            )

    def update(self, updates: dict) -> dict:
        """
        Merge updates into the file as written and save it.

        Keys the file does not set stay unset, so defaults are not pinned.

        Returns:
            The full updated configuration, defaults included.
        """
        document = self.read_document()
        _deep_merge(document, updates)
        self.save(document)
        return self.load()


def resolve_config(path: str | None) -> dict:
    """Resolve the effective configuration for an optional file path."""
    return ConfigManager(path).load()


def apply_overrides(config: dict, port: int | None = None, no_auth: bool = False) -> dict:
    """
    Apply command-line overrides on top of a resolved configuration.

    Args:
        config:  Configuration returned by resolve_config().
        port:    Listening port given on the command line, or None.
        no_auth: True when -no-auth was passed.

    Returns:
        A new configuration dict; the input is left untouched.

    Raises:
        ConfigParseError: The port is not a valid TCP port, or auth.enabled
                          is not a boolean.
    """
    result = _deep_copy(config)
    if port is not None:
        result["web"]["port"] = port
    if no_auth:
        result["auth"]["enabled"] = False

    effective_port = result["web"]["port"]
    if isinstance(effective_port, bool) or not isinstance(effective_port, int):
        raise ConfigParseError(f"Invalid port: {effective_port!r}")
    if not 1 <= effective_port <= 65535:
        raise ConfigParseError(f"Port out of range: {effective_port}")
    if not isinstance(result["auth"]["enabled"], bool):
        raise ConfigParseError(f"auth.enabled must be true or false: {result['auth']['enabled']!r}")
    return result


def validate_camera(section: dict) -> dict:
    """
    Validate a camera settings section and normalize its values.

    Raises:
        ValueError: tick_interval is not a positive integer.
    """
    camera = _deep_copy(DEFAULTS["camera"])
    camera.update(section)
    try:
        tick_interval = int(camera["tick_interval"])
    except (TypeError, ValueError):
        raise ValueError("Tick interval has to be a positive integer")
    if isinstance(camera["tick_interval"], bool) or tick_interval <= 0:
        raise ValueError("Tick interval has to be a positive integer")
    camera["tick_interval"] = tick_interval
    camera["enable"] = bool(camera["enable"])
    camera["upload"] = bool(camera["upload"])
    camera["capture_flags"] = str(camera["capture_flags"] or "")
    camera["image_directory"] = str(camera["image_directory"] or "")
    return camera


def is_truthy(value: Any) -> bool:
    """Interpret a config or environment value as a boolean."""
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "on")
    return bool(value)


# -- Helper Functions ---------------------------------------------------------

def _deep_copy(d: dict) -> dict:
    """Create a deep copy of a nested dictionary."""
    result = {}
    for key, value in d.items():
        if isinstance(value, dict):
            result[key] = _deep_copy(value)
        elif isinstance(value, list):
            result[key] = list(value)
        else:
            result[key] = value
    return result


def _deep_merge(base: dict, override: dict) -> None:
    """
    Recursively merge 'override' into 'base' (in-place).

    For nested dicts, values are merged recursively.
    For all other types, override replaces base.
    """
    for key, value in override.items():
        if key in base and isinstance(base[key], dict) and isinstance(value, dict):
            _deep_merge(base[key], value)
        else:
            base[key] = value


def _check_types(config: dict, path: str) -> None:
    """Reject known keys whose values have the wrong type."""
    for (section, key), expected in TYPED_KEYS.items():
        value = config[section][key]
        # bool is an int subclass; "port: true" is still wrong
        wrong_bool = isinstance(value, bool) and expected is int
        if wrong_bool or not isinstance(value, expected):
            raise ConfigParseError(
                f"{section}.{key} in {path} has the wrong type "
                f"({type(value).__name__}): {value!r}"
            )
