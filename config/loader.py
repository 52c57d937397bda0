"""
Configuration loading for indexsync.

Merges a JSON config file over the defaults, applies environment variable
overrides, and validates the result once at startup.
"""

import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional, Union

from indexsync.errors import ConfigurationError
from indexsync.models.config import GlobalSettings, SyncConfig
from .defaults import ENV_VAR_MAPPING, STRING_PATHS, get_default_config

logger = logging.getLogger(__name__)


class ConfigurationLoader:
    """Load and validate the synchronization configuration"""

    def __init__(self, global_settings: Optional[GlobalSettings] = None):
        self.global_settings = global_settings or GlobalSettings()

    def load(self, config_file: Optional[Union[str, Path]] = None) -> SyncConfig:
        """
        Load the configuration.

        Args:
            config_file: JSON file to read; falls back to INDEXSYNC_CONFIG_FILE,
                then to defaults only

        Returns:
            Validated SyncConfig

        Raises:
            ConfigurationError: If the file is unreadable or a setting is invalid
        """
        data = get_default_config()

        config_file = config_file or self.global_settings.config_file
        if config_file:
            file_data = self._read_config_file(Path(config_file))
            data = self._merge(data, file_data)
            logger.info(f"Loaded configuration from {config_file}")

        data = self._apply_env_overrides(data)
        return SyncConfig.from_dict(data)

    def _read_config_file(self, config_file: Path) -> Dict[str, Any]:
        try:
            with open(config_file, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except FileNotFoundError as e:
            raise ConfigurationError(f"config file not found: {config_file}") from e
        except (OSError, json.JSONDecodeError) as e:
            raise ConfigurationError(f"cannot read config file {config_file}: {e}") from e

        if not isinstance(data, dict):
            raise ConfigurationError(f"config file {config_file} must contain a JSON object")
        return data

    def _merge(self, base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
        """Recursively merge override into base"""
        for key, value in override.items():
            if isinstance(value, dict) and isinstance(base.get(key), dict):
                base[key] = self._merge(base[key], value)
            else:
                base[key] = value
        return base

    def _apply_env_overrides(self, config_data: Dict[str, Any]) -> Dict[str, Any]:
        """Apply environment variable overrides to configuration"""
        for env_var, config_path in ENV_VAR_MAPPING.items():
            env_value = os.getenv(env_var)
            if env_value is not None:
                logger.debug(f"Overriding {config_path} from {env_var}")
                self._set_nested_value(config_data, config_path, env_value)

        return config_data

    def _set_nested_value(self, data: Dict[str, Any], path: str, value: str) -> None:
        """Set nested dictionary value using dot notation path"""
        keys = path.split('.')
        current = data

        for key in keys[:-1]:
            if not isinstance(current.get(key), dict):
                current[key] = {}
            current = current[key]

        current[keys[-1]] = value if path in STRING_PATHS else self._convert_env_value(value)

    def _convert_env_value(self, value: str) -> Any:
        """Convert environment variable string to appropriate type"""
        # Boolean conversion
        if value.lower() in ('true', 'yes', 'on'):
            return True
        elif value.lower() in ('false', 'no', 'off'):
            return False

        # Numeric conversion
        try:
            if '.' in value:
                return float(value)
            else:
                return int(value)
        except ValueError:
            pass

        # Return as string
        return value

    def save(self, config: SyncConfig, config_file: Union[str, Path]) -> bool:
        """Save configuration to disk"""
        config_file = Path(config_file)
        try:
            config_file.parent.mkdir(parents=True, exist_ok=True)
            with open(config_file, 'w', encoding='utf-8') as f:
                json.dump(config.to_dict(), f, indent=2, ensure_ascii=False)
            logger.info(f"Saved configuration to {config_file}")
            return True
        except OSError as e:
            logger.error(f"Failed to save config to {config_file}: {e}")
            return False
