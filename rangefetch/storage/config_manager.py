"""
Manages loading and validation of the INI configuration file.
"""

import configparser
import logging
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from rangefetch.exceptions import ConfigurationError
from rangefetch.models.config import FetchConfig

log = logging.getLogger(__name__)

_INT_KEYS = {"max_attempts", "attempt_budget", "max_request_size"}
_FLOAT_KEYS = {"base_delay", "max_delay", "request_timeout", "deadline"}


class ConfigManager:
    """Handles all operations related to the application's INI config file."""

    def __init__(self, config_file_path: Path):
        self.config_file_path = config_file_path
        self._parser = configparser.ConfigParser(interpolation=None)

    def load_config(self, cli_options: dict[str, Any] | None = None) -> FetchConfig:
        """
        Loads configuration from the INI file, applies CLI overrides, and validates it.

        A missing file is not an error; the model defaults apply.

        Args:
            cli_options: A dictionary of options provided via the command line.

        Returns:
            A validated FetchConfig object.

        Raises:
            ConfigurationError: If the config file is invalid or validation fails.
        """
        config_from_file: dict[str, Any] = {}
        if self.config_file_path.is_file():
            try:
                self._parser.read(self.config_file_path, encoding="utf-8")
            except configparser.Error as e:
                raise ConfigurationError(f"Error parsing configuration file: {e}") from e
            config_from_file = self._get_config_as_dict()
        else:
            log.debug(f"No config file at '{self.config_file_path}', using defaults.")

        if cli_options:
            config_from_file.update(cli_options)

        try:
            return FetchConfig(
                **config_from_file, config_path=str(self.config_file_path.parent)
            )
        except ValidationError as e:
            raise ConfigurationError(f"Configuration validation failed:\n{e}") from e

    def save_new_config(self, settings: dict[str, Any]) -> None:
        """
        Creates and saves a new configuration file.

        Args:
            settings: A dictionary of settings to save; unspecified keys get
                the model defaults.
        """
        try:
            validated = FetchConfig(**settings)
        except ValidationError as e:
            raise ConfigurationError(f"Configuration validation failed:\n{e}") from e

        config = configparser.ConfigParser(interpolation=None)
        config["DEFAULT"] = {}
        for key in sorted(FetchConfig.get_ini_keys()):
            value = getattr(validated, key)
            # An empty value means "unset" for optional keys
            config["DEFAULT"][key] = "" if value is None else str(value)

        try:
            self.config_file_path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.config_file_path, "w", encoding="utf-8") as configfile:
                config.write(configfile)
        except OSError as e:
            raise ConfigurationError(f"Failed to save configuration file: {e}") from e

    def _get_config_as_dict(self) -> dict[str, Any]:
        """Reads the 'DEFAULT' section of the INI file into a dictionary."""
        section = self._parser["DEFAULT"]
        known = FetchConfig.get_ini_keys()
        values: dict[str, Any] = {}
        for key, raw in section.items():
            if key not in known:
                log.warning(f"[yellow]Ignoring unknown config key '{key}'.[/yellow]")
                continue
            raw = raw.strip()
            if raw == "":
                continue
            try:
                if key in _INT_KEYS:
                    values[key] = int(raw)
                elif key in _FLOAT_KEYS:
                    values[key] = float(raw)
                else:
                    values[key] = raw
            except ValueError as e:
                raise ConfigurationError(
                    f"Invalid value for '{key}' in configuration file: {raw!r}"
                ) from e
        return values
