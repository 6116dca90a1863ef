from __future__ import annotations

import json
import logging
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from pydantic import ValidationError

from .models import AutoReplySettings
from .utils import write_json_atomic

logger = logging.getLogger("mixer.settings")


class SettingsStore:
    """Persisted auto-reply switches owned by the shop operator."""

    def __init__(self, path: Path) -> None:
        """Purpose: Initialize the store and load saved settings from disk.
        Inputs/Outputs: Input is a Path; no return value.
        Side Effects / State: Loads settings into memory.
        Dependencies: Calls _load; uses a JSON file on disk.
        Failure Modes: Malformed JSON or invalid values fall back to defaults.
        Testing Notes: Toggle, recreate the store on the same path, and read back.
        """
        # Keep the backing file path and hydrate the cached settings.
        self._path = path
        self._settings = AutoReplySettings()
        self._lock = threading.RLock()
        self._load()

    def _load(self) -> None:
        """Purpose: Load settings from the JSON file if it exists.
        Inputs/Outputs: Reads self._path; no return value.
        Side Effects / State: Replaces self._settings.
        Failure Modes: Missing file, JSONDecodeError or ValidationError keep defaults.
        Testing Notes: Validate behavior with missing and malformed files.
        """
        if not self._path.exists():
            return
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
            self._settings = AutoReplySettings.model_validate(data)
        except (json.JSONDecodeError, ValidationError) as exc:
            logger.warning("path=%s settings unreadable, using defaults error=%s", self._path, exc)

    def _persist(self) -> None:
        """Purpose: Write the current settings to disk.
        Inputs/Outputs: Writes a JSON file; no return value.
        Failure Modes: IO errors will raise exceptions (not handled here).
        """
        write_json_atomic(self._path, self._settings.model_dump(by_alias=True))

    def get_settings(self) -> AutoReplySettings:
        return self._settings.model_copy()

    def set_enabled(self, enabled: bool) -> AutoReplySettings:
        with self._lock:
            self._settings = self._settings.model_copy(
                update={"auto_reply_enabled": bool(enabled), "updated_at": _now_iso()}
            )
            self._persist()
        logger.info("auto_reply_enabled=%s", self._settings.auto_reply_enabled)
        return self.get_settings()

    def toggle(self) -> AutoReplySettings:
        with self._lock:
            return self.set_enabled(not self._settings.auto_reply_enabled)

    def update(self, confidence_threshold: Optional[float] = None) -> AutoReplySettings:
        """Purpose: Update tunable settings, validating ranges.
        Inputs/Outputs: Input is an optional new threshold; returns the new settings.
        Side Effects / State: Persists to disk.
        Failure Modes: Raises ValidationError when the threshold is outside [0, 1].
        """
        with self._lock:
            data = self._settings.model_dump()
            if confidence_threshold is not None:
                data["confidence_threshold"] = confidence_threshold
            data["updated_at"] = _now_iso()
            self._settings = AutoReplySettings.model_validate(data)
            self._persist()
        logger.info("confidence_threshold=%.2f", self._settings.confidence_threshold)
        return self.get_settings()


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()
