"""Configuration management for domain-watch."""

import os
import re
from pathlib import Path
from typing import Any, cast

import yaml
from dotenv import load_dotenv

CONFIG_DIR_ENV = "DOMAIN_WATCH_CONFIG_DIR"
ENVIRONMENT_ENV = "DOMAIN_WATCH_ENV"

# ${NAME} or ${NAME:default}; the default may be empty
_ENV_REFERENCE = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)(?::([^}]*))?\}")


class ConfigError(Exception):
    """Raise when configuration loading or validation fails."""


class ConfigLoader:
    """Load and manage configuration from YAML files with environment variable substitution."""

    def __init__(self, config_dir: Path | None = None) -> None:
        """Initialize the config loader.

        Load environment variables from a ``.env`` file (if present) and
        then read YAML configuration from the given directory.

        Args:
            config_dir: Directory containing config files. Defaults to
                ``$DOMAIN_WATCH_CONFIG_DIR`` when set, otherwise the packaged
                ``domain_watch/config`` directory.

        """
        load_dotenv()
        if config_dir is None:
            override = os.getenv(CONFIG_DIR_ENV)
            config_dir = Path(override) if override else Path(__file__).parent.parent / "config"
        self.config_dir = Path(config_dir)
        self._config: dict[str, Any] = {}
        self._load_config()

    def _load_config(self) -> None:
        """Layer the settings files and substitute environment variables.

        ``settings.yaml`` is read first, then ``settings.<environment>.yaml``
        when ``$DOMAIN_WATCH_ENV`` names an environment, then the
        uncommitted ``settings.local.yaml``. Later layers win key by key.
        """
        layers = ["settings.yaml"]
        environment = os.getenv(ENVIRONMENT_ENV)
        if environment:
            layers.append(f"settings.{environment}.yaml")
        layers.append("settings.local.yaml")

        for name in layers:
            self._deep_merge(self._config, self._read_layer(self.config_dir / name))

        self._config = self._substitute_env_vars(self._config)

    @staticmethod
    def _read_layer(path: Path) -> dict[str, Any]:
        """Read one settings file; a missing or empty file is an empty layer.

        Raises:
            ConfigError: If the file is not valid YAML or not a mapping.

        """
        if not path.exists():
            return {}
        try:
            with path.open() as f:
                data: Any = yaml.safe_load(f)
        except yaml.YAMLError as exc:
            msg = f"Invalid YAML in {path}: {exc}"
            raise ConfigError(msg) from exc
        if data is None:
            return {}
        if not isinstance(data, dict):
            msg = f"{path.name} must contain a mapping, got {type(data).__name__}"
            raise ConfigError(msg)
        return cast("dict[str, Any]", data)

    def _deep_merge(self, base: dict[str, Any], override: dict[str, Any]) -> None:
        """Deep merge override dict into base dict.

        Args:
            base: Base dictionary to merge into (modified in place).
            override: Dictionary with values to override.

        """
        for key, value in override.items():
            if key in base and isinstance(base[key], dict) and isinstance(value, dict):
                self._deep_merge(base[key], cast("dict[str, Any]", value))
            else:
                base[key] = value

    def _substitute_env_vars(self, config: Any) -> Any:
        """Recursively substitute environment variables in config.

        Supports ``${VAR_NAME:default_value}`` and ``${VAR_NAME}``, either as
        the whole value or embedded in a longer string such as a database URL.

        Args:
            config: Configuration value (dict, list, or str).

        Returns:
            Configuration with environment variables substituted.

        Raises:
            ConfigError: If a referenced variable is unset and has no default,
                or a ``${...}`` reference is malformed.

        """
        if isinstance(config, dict):
            return {
                k: self._substitute_env_vars(v)
                for k, v in config.items()  # pyright: ignore[reportUnknownVariableType]
            }
        if isinstance(config, list):
            return [
                self._substitute_env_vars(item)
                for item in config  # pyright: ignore[reportUnknownVariableType]
            ]
        if not isinstance(config, str):
            return config

        substituted = _ENV_REFERENCE.sub(_resolve_env_reference, config)
        if "${" in substituted:
            msg = f"Unresolved environment variable reference in: {config}"
            raise ConfigError(msg)
        return substituted

    def get(self, key: str, default: Any = None) -> Any:
        """Get configuration value by dot-notation key.

        Args:
            key: Configuration key in dot notation (e.g., 'doma.api_key').
            default: Default value if key not found.

        Returns:
            Configuration value.

        """
        keys = key.split(".")
        current: Any = self._config
        for k in keys:
            if isinstance(current, dict):
                current = cast("dict[str, Any]", current).get(k)
                if current is None:
                    return default
            else:
                return default
        return current  # pyright: ignore[reportReturnType]

    def get_section(self, name: str) -> dict[str, Any]:
        """Get a top-level configuration section as a dictionary.

        Args:
            name: Section name (e.g. ``doma`` or ``monitor``).

        Returns:
            Dictionary with the section's settings, empty when absent.

        Raises:
            ConfigError: If the section is present but is not a dictionary.

        """
        result: Any = self.get(name, {})
        if isinstance(result, dict):
            return cast("dict[str, Any]", result)
        msg = f"{name} config must be a dict, got {type(result).__name__}"
        raise ConfigError(msg)


def _resolve_env_reference(match: re.Match[str]) -> str:
    var_name, default = match.group(1), match.group(2)
    value = os.getenv(var_name, default)
    if value is None:
        msg = f"Required environment variable ${{{var_name}}} is not set and has no default"
        raise ConfigError(msg)
    return value


_config: ConfigLoader | None = None


def get_config() -> ConfigLoader:
    """Return the global ``ConfigLoader`` singleton, creating it on first use.

    Lazy initialisation avoids side effects (file I/O, ``load_dotenv``)
    at import time and makes testing easier.

    Returns:
        The shared ``ConfigLoader`` instance.

    """
    global _config  # noqa: PLW0603
    if _config is None:
        _config = ConfigLoader()
    return _config
