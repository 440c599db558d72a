"""
Grouping Config Manager
========================

Loads GroupingConfig from YAML and hot-reloads it when the file changes.
"""

import threading
from pathlib import Path
from typing import Optional

import yaml
from pydantic import ValidationError
from watchdog.events import FileSystemEventHandler
from watchdog.observers import Observer

from ticketdedup.grouping.domain import GroupingConfig
from ticketdedup.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)


class ConfigFileHandler(FileSystemEventHandler):
    """Watchdog event handler for grouping config file changes."""

    def __init__(self, config_manager: "GroupingConfigManager", config_path: Path):
        self.config_manager = config_manager
        self.config_path = config_path
        super().__init__()

    def on_modified(self, event):
        if event.is_directory:
            return
        if Path(event.src_path).resolve() == self.config_path.resolve():
            logger.info("Grouping config file changed", extra={"path": str(event.src_path)})
            self.config_manager.reload()


class GroupingConfigManager:
    """
    Thread-safe holder of the current GroupingConfig.

    A reload that fails to parse or validate keeps the previous config.
    """

    def __init__(self):
        self._config: Optional[GroupingConfig] = None
        self._lock = threading.Lock()
        self._path: Optional[Path] = None
        self._observer = None

    def load(self, path: Path) -> GroupingConfig:
        """
        Initial configuration load.

        Raises:
            ValidationError: If the file holds invalid thresholds
        """
        self._path = Path(path)
        self._config = self._load_from_file(self._path)
        return self._config

    def _load_from_file(self, path: Path) -> GroupingConfig:
        if not path.exists():
            logger.warning("Grouping config file not found, using defaults", extra={"path": str(path)})
            return GroupingConfig()

        with open(path, "r") as f:
            data = yaml.safe_load(f) or {}

        return GroupingConfig(**data)

    def reload(self) -> bool:
        """Reload configuration from file. Returns True on success."""
        if self._path is None:
            return False

        try:
            new_config = self._load_from_file(self._path)
        except (OSError, yaml.YAMLError, ValidationError, TypeError) as e:
            logger.error("Failed to reload grouping config", extra={"error": str(e)})
            return False

        with self._lock:
            self._config = new_config
        logger.info("Grouping configuration reloaded")
        return True

    def start_watching(self) -> None:
        """
        Watch the config file for changes.

        Skipped when the file does not exist or the platform offers no file
        notifications.
        """
        if self._path is None:
            raise RuntimeError("Config not loaded. Call load() first.")

        if not self._path.exists():
            logger.info("Grouping config file missing, not watching", extra={"path": str(self._path)})
            return

        try:
            self._observer = Observer()
            self._observer.schedule(
                ConfigFileHandler(self, self._path),
                str(self._path.parent.resolve()),
                recursive=False
            )
            self._observer.start()
            logger.info("Watching grouping config file", extra={"path": str(self._path)})
        except OSError as e:
            logger.warning("File watching not available, using static config", extra={"error": str(e)})
            self._observer = None

    def stop_watching(self) -> None:
        if self._observer is not None:
            self._observer.stop()
            self._observer.join(timeout=5)
            self._observer = None

    @property
    def config(self) -> GroupingConfig:
        if self._config is None:
            raise RuntimeError("Grouping configuration not loaded")
        with self._lock:
            return self._config
