"""Persistence for sync settings and recent run history."""
from __future__ import annotations

import json
import logging
from pathlib import Path

from lifesync import config
from lifesync.models import SyncRunResult, SyncSettings

logger = logging.getLogger("lifesync")


class SyncStateStore:
    """Keeps ``SyncSettings`` and the last few run results in a JSON file."""

    def __init__(self, storage_path: Path | None, history_limit: int | None = None):
        self.storage_path = storage_path
        self.history_limit = max(1, history_limit or config.RUN_HISTORY_LIMIT)
        self._settings = SyncSettings()
        self._run_history: list[SyncRunResult] = []
        self._load()

    def _load(self):
        """Load settings and history from JSON storage."""
        if self.storage_path is None or not self.storage_path.exists():
            return

        try:
            content = self.storage_path.read_text()
            if not content.strip():
                return
            data = json.loads(content)
        except (OSError, ValueError) as e:
            logger.error(f"Failed to load sync state file: {e}")
            return

        try:
            self._settings = SyncSettings(**(data.get("settings") or {}))
        except ValueError as e:
            logger.error(f"Failed to load sync settings, using defaults: {e}")
        for run_data in data.get("runHistory", []):
            try:
                self._run_history.append(SyncRunResult(**run_data))
            except ValueError as e:
                logger.error(f"Failed to load sync run: {e}")
        self._run_history = self._run_history[: self.history_limit]

    def _save(self):
        """Save settings and history to JSON storage."""
        if self.storage_path is None:
            return
        data = {
            "settings": self._settings.model_dump(),
            "runHistory": [run.model_dump() for run in self._run_history],
        }
        self.storage_path.parent.mkdir(parents=True, exist_ok=True)
        self.storage_path.write_text(json.dumps(data, indent=2))

    @property
    def settings(self) -> SyncSettings:
        return self._settings

    @property
    def run_history(self) -> list[SyncRunResult]:
        return list(self._run_history)

    def save_settings(self, settings: SyncSettings):
        self._settings = settings
        self._save()

    def add_run(self, run: SyncRunResult):
        """Prepend a completed run, keeping the newest ``history_limit`` entries."""
        self._run_history = [run, *self._run_history][: self.history_limit]
        self._save()
