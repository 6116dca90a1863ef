from __future__ import annotations

import json
import logging
import threading
import time
from pathlib import Path
from typing import Dict, List, Optional

from pydantic import ValidationError

from .models import ConversationTurn, StoredConversation
from .utils import write_json_atomic

logger = logging.getLogger("mixer.conversations")


class ConversationStore:
    """Per-customer Messenger conversation history with a handoff flag."""

    def __init__(
        self,
        path: Optional[Path] = None,
        max_turns: int = 50,
        max_conversations: Optional[int] = 500,
    ) -> None:
        """Purpose: Initialize the store and hydrate from disk if available.
        Inputs/Outputs: Inputs are an optional file path, a per-conversation turn cap and
            a conversation cap; no return.
        Side Effects / State: Loads conversations into memory.
        Dependencies: Calls _load; relies on StoredConversation for validation.
        Failure Modes: JSON decode errors leave an empty cache.
        Testing Notes: Verify load on startup and that max_conversations prunes oldest.
        """
        self._path = path
        self._max_turns = max_turns
        self._max_conversations = max_conversations
        self._conversations: Dict[str, StoredConversation] = {}
        # Webhook events and dashboard requests run on different worker threads.
        self._lock = threading.RLock()
        self._load()

    def _load(self) -> None:
        """Purpose: Load persisted conversations from disk into memory.
        Inputs/Outputs: Reads from self._path; no return value.
        Side Effects / State: Populates _conversations.
        Failure Modes: Missing file or JSONDecodeError results in an empty cache;
            individual invalid records are skipped.
        """
        if not self._path or not self._path.exists():
            return
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except json.JSONDecodeError:
            logger.warning("path=%s conversations unreadable", self._path)
            return
        for sender_id, raw in (data.get("conversations", {}) if isinstance(data, dict) else {}).items():
            try:
                self._conversations[sender_id] = StoredConversation.model_validate(raw)
            except ValidationError:
                continue
        if self._prune():
            self._persist()

    def _persist(self) -> None:
        """Purpose: Persist in-memory conversations to disk.
        Side Effects / State: Replaces the file atomically; callers hold self._lock.
        Failure Modes: IO errors raise exceptions (not caught here).
        """
        if not self._path:
            return
        payload = {
            "conversations": {
                sender_id: conversation.model_dump() for sender_id, conversation in self._conversations.items()
            }
        }
        write_json_atomic(self._path, payload)

    def add_turn(self, sender_id: str, role: str, message: str, clear_awaiting: bool = True) -> None:
        """Purpose: Append a turn to a customer's conversation.
        Inputs/Outputs: Inputs are the customer PSID, role, text and whether an employee
            turn hands the conversation back from the human queue; no return value.
        Side Effects / State: Creates the conversation if needed, trims to max_turns,
            prunes old conversations and persists.
        Failure Modes: ValidationError for an unknown role; IO errors on persist.
        Testing Notes: Add more than max_turns turns and check the oldest are dropped;
            automated page replies pass clear_awaiting=False and keep the handoff.
        """
        turn = ConversationTurn(role=role, message=message)
        with self._lock:
            conversation = self._conversations.setdefault(sender_id, StoredConversation(sender_id=sender_id))
            conversation.turns.append(turn)
            if self._max_turns and len(conversation.turns) > self._max_turns:
                conversation.turns = conversation.turns[-self._max_turns :]
            if role == "employee" and clear_awaiting:
                conversation.awaiting_human = False
            conversation.updated_at = time.time()
            self._prune()
            self._persist()

    def get_history(self, sender_id: str) -> List[ConversationTurn]:
        with self._lock:
            conversation = self._conversations.get(sender_id)
            return list(conversation.turns) if conversation else []

    def mark_awaiting_human(self, sender_id: str, awaiting: bool = True) -> None:
        with self._lock:
            conversation = self._conversations.setdefault(sender_id, StoredConversation(sender_id=sender_id))
            conversation.awaiting_human = awaiting
            conversation.updated_at = time.time()
            self._persist()

    def is_awaiting_human(self, sender_id: str) -> bool:
        with self._lock:
            conversation = self._conversations.get(sender_id)
            return bool(conversation and conversation.awaiting_human)

    def _prune(self) -> bool:
        """Drop least-recently updated conversations above max_conversations."""
        if not self._max_conversations or self._max_conversations <= 0:
            return False
        if len(self._conversations) <= self._max_conversations:
            return False
        ordered = sorted(self._conversations.values(), key=lambda c: c.updated_at, reverse=True)
        keep_ids = {c.sender_id for c in ordered[: self._max_conversations]}
        removed = [sender_id for sender_id in list(self._conversations) if sender_id not in keep_ids]
        for sender_id in removed:
            self._conversations.pop(sender_id, None)
        return bool(removed)
