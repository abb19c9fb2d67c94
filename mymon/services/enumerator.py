"""Resolve the set of targets to poll on a tick."""

import logging
from pathlib import Path
from typing import List, Optional

from ..config.loader import ConfigLoader
from ..config.models import TargetConfig
from ..utils.errors import ConfigError, ConfigSourceError


class TargetEnumerator:
    """
    Loads target configurations from one file or one directory.

    Nothing is cached: every call re-reads the files, so edits and new
    files take effect on the next tick.
    """

    SUFFIXES = (".yaml", ".yml")

    def __init__(
        self,
        logger: logging.Logger,
        config_file: Optional[str] = None,
        config_dir: Optional[str] = None
    ):
        """
        Initialize enumerator.

        Args:
            logger: Logger instance
            config_file: Single target file (takes precedence)
            config_dir: Directory of target files, subdirectories skipped
        """
        if not config_file and not config_dir:
            raise ConfigSourceError("Either a configuration file or directory is required")

        self.config_file = config_file
        self.config_dir = config_dir
        self.logger = logger.getChild(self.__class__.__name__)

    @property
    def source(self) -> str:
        return self.config_file or self.config_dir

    def check_source(self) -> None:
        """
        Verify the configuration source exists.

        Raises:
            ConfigSourceError: If the file or directory is missing
        """
        if self.config_file:
            if not Path(self.config_file).is_file():
                raise ConfigSourceError(f"Configuration file not found: {self.config_file}")
        elif not Path(self.config_dir).is_dir():
            raise ConfigSourceError(f"Configuration directory not found: {self.config_dir}")

    def config_paths(self) -> List[Path]:
        """
        List candidate configuration files.

        Raises:
            ConfigSourceError: If the source is missing or unreadable
        """
        self.check_source()
        if self.config_file:
            return [Path(self.config_file)]

        try:
            entries = sorted(Path(self.config_dir).iterdir())
        except OSError as e:
            raise ConfigSourceError(f"Cannot list {self.config_dir}: {e}") from e

        return [
            path for path in entries
            if path.is_file() and path.suffix.lower() in self.SUFFIXES
        ]

    def enumerate(self) -> List[TargetConfig]:
        """
        Load every target for this tick.

        Malformed files are logged and skipped; the others still load.

        Returns:
            List[TargetConfig]: Freshly loaded targets

        Raises:
            ConfigSourceError: If the source itself is missing
        """
        targets = []
        for path in self.config_paths():
            try:
                targets.append(ConfigLoader.load_target(str(path)))
            except ConfigError as e:
                self.logger.error(
                    f"Skipping target config {e.path}: {e.reason}",
                    extra={"config": e.path, "error_type": "ConfigError"}
                )
        return targets
