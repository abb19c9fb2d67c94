"""Target configuration loader with YAML parsing and environment variable substitution."""

import yaml
import os
import re
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from ..utils.errors import ConfigError
from .models import TargetConfig


class ConfigLoader:
    """Load and validate per-target configuration files."""

    @staticmethod
    def load_target(config_path: str) -> TargetConfig:
        """
        Load one target configuration from YAML with environment variable substitution.

        Args:
            config_path: Path to YAML configuration file

        Returns:
            TargetConfig: Validated target configuration

        Raises:
            ConfigError: If the file is unreadable, not YAML, or fails validation
        """
        config_file = Path(config_path)

        try:
            with open(config_file, 'r') as f:
                raw_config = yaml.safe_load(f)
        except OSError as e:
            raise ConfigError(config_path, f"cannot read file: {e}") from e
        except yaml.YAMLError as e:
            raise ConfigError(config_path, f"invalid YAML: {e}") from e

        if not isinstance(raw_config, dict):
            raise ConfigError(config_path, "expected a mapping at the top level")

        # Substitute environment variables
        raw_config = ConfigLoader._substitute_env_vars(raw_config)
        raw_config["source"] = str(config_file)

        # Validate with Pydantic
        try:
            return TargetConfig(**raw_config)
        except ValidationError as e:
            raise ConfigError(config_path, f"validation failed: {e}") from e

    @staticmethod
    def _substitute_env_vars(obj: Any) -> Any:
        """
        Recursively substitute ${ENV_VAR} placeholders with environment values.

        Args:
            obj: Object to process (str, dict, list, or primitive)

        Returns:
            Object with environment variables substituted
        """
        if isinstance(obj, str):
            # Replace ${VAR_NAME} with os.getenv('VAR_NAME')
            pattern = r'\$\{(\w+)\}'
            return re.sub(pattern, lambda m: os.getenv(m.group(1), ''), obj)

        elif isinstance(obj, dict):
            return {k: ConfigLoader._substitute_env_vars(v) for k, v in obj.items()}

        elif isinstance(obj, list):
            return [ConfigLoader._substitute_env_vars(item) for item in obj]

        return obj
