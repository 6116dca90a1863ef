from __future__ import annotations

import json
import logging
import threading
from pathlib import Path
from typing import Dict, Iterable, List

from pydantic import ValidationError

from .models import TrainingPair
from .utils import write_json_atomic

logger = logging.getLogger("mixer.training")

CATEGORIES = ("greeting", "product", "order", "shipping", "payment", "other")


class TrainingStore:
    """Persisted training pairs, deduplicated by their conversation/message id key."""

    def __init__(self, path: Path) -> None:
        self._path = path
        self._pairs: List[TrainingPair] = []
        self._ids: set = set()
        self._lock = threading.RLock()
        self._load()

    def _load(self) -> None:
        """Purpose: Load stored pairs from disk, skipping entries that fail validation.
        Inputs/Outputs: Reads self._path; no return value.
        Side Effects / State: Populates _pairs and _ids.
        Failure Modes: Missing file or JSONDecodeError results in an empty store.
        """
        if not self._path.exists():
            return
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except json.JSONDecodeError:
            logger.warning("path=%s training data unreadable", self._path)
            return
        for raw in data.get("pairs", []) if isinstance(data, dict) else []:
            try:
                pair = TrainingPair.model_validate(raw)
            except ValidationError:
                continue
            if pair.id and pair.id in self._ids:
                continue
            self._pairs.append(pair)
            if pair.id:
                self._ids.add(pair.id)

    def _persist(self) -> None:
        payload = {"pairs": [pair.model_dump(by_alias=True, exclude_none=True) for pair in self._pairs]}
        write_json_atomic(self._path, payload)

    def add_pairs(self, pairs: Iterable[TrainingPair]) -> int:
        """Purpose: Append new pairs, ignoring ids that are already stored.
        Inputs/Outputs: Input is an iterable of pairs; output is the number added.
        Side Effects / State: Mutates the store and writes to disk when anything changed.
        Failure Modes: IO errors on persist propagate.
        Testing Notes: Adding the same crawl twice must add zero the second time.
        """
        added = 0
        with self._lock:
            for pair in pairs:
                if pair.id and pair.id in self._ids:
                    continue
                self._pairs.append(pair)
                if pair.id:
                    self._ids.add(pair.id)
                added += 1
            if added:
                self._persist()
            total = len(self._pairs)
        logger.info("training_pairs_added=%s total=%s", added, total)
        return added

    def get_training_data(self) -> List[TrainingPair]:
        with self._lock:
            return list(self._pairs)

    def count(self) -> int:
        return len(self._pairs)


def count_by_category(pairs: Iterable[TrainingPair]) -> Dict[str, int]:
    counts = {category: 0 for category in CATEGORIES}
    for pair in pairs:
        counts[pair.category or "other"] += 1
    return counts
