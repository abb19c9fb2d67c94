"""Environment settings used as CLI defaults."""

import os
from typing import Optional


class Settings:
    """Application settings from environment variables."""

    @staticmethod
    def get(key: str, default: Optional[str] = None, required: bool = False) -> str:
        """
        Get environment variable value.

        Args:
            key: Environment variable name
            default: Default value if not set
            required: Whether the variable is required

        Returns:
            str: Environment variable value

        Raises:
            ValueError: If required variable is not set
        """
        value = os.getenv(key, default)
        if required and not value:
            raise ValueError(f"Required environment variable not set: {key}")
        return value or ""

    @staticmethod
    def get_int(key: str, default: int) -> int:
        """Integer variant of get(); falls back to default on garbage."""
        raw = Settings.get(key)
        try:
            return int(raw) if raw else default
        except ValueError:
            return default

    # Convenience accessors
    AGENT_URL = property(lambda self: Settings.get("MYMON_AGENT_URL", "http://127.0.0.1:1988/v1/push"))
    LOG_LEVEL = property(lambda self: Settings.get("MYMON_LOG_LEVEL", "INFO"))
    LOG_FILE = property(lambda self: Settings.get("MYMON_LOG_FILE", ""))
    INTERVAL = property(lambda self: Settings.get_int("MYMON_INTERVAL", 60))
    DEADLINE = property(lambda self: Settings.get_int("MYMON_DEADLINE", 30))
