from __future__ import annotations

import logging
import re
import unicodedata
from typing import Any, Dict, List, Optional, Tuple

from .errors import MessengerError
from .messenger_client import MessengerClient
from .models import TrainingPair
from .training_store import count_by_category

logger = logging.getLogger("mixer.training")

# Ordered: the first matching rule wins. Patterns run on lowercase NFC text with
# diacritics kept, so "gia đình" is not a price question and "con" is not "còn".
CATEGORY_RULES: List[Tuple[str, re.Pattern]] = [
    ("greeting", re.compile(r"\b(chào|hello|hi|xin chào|alo)\b")),
    ("shipping", re.compile(r"\b(ship|giao|vận chuyển|bao lâu|mấy ngày)\b")),
    ("product", re.compile(r"\b(giá|bao nhiêu|tiền|vnđ|vnd|đồng)\b|\d+\s*(k|tr)\b")),
    ("order", re.compile(r"\b(đơn|order|mua|đặt|check|tracking)\b")),
    ("payment", re.compile(r"\b(thanh toán|chuyển khoản|ck|cod|stk|bank)\b")),
    ("product", re.compile(r"\b(size|màu|còn|hết|stock|có không)\b")),
]

MESSAGES_PER_CONVERSATION = 50


def categorize_message(message: str) -> str:
    # Some Vietnamese keyboards send decomposed tone marks.
    text = unicodedata.normalize("NFC", message or "").lower()
    for category, pattern in CATEGORY_RULES:
        if pattern.search(text):
            return category
    return "other"


def extract_training_pairs(messages: List[Dict[str, Any]], page_id: str) -> List[TrainingPair]:
    """Purpose: Pair each customer message with the page reply that directly follows it.
    Inputs/Outputs: Input is one conversation's messages in chronological order and the
        page id; output is a list of TrainingPair with id "<customerMsgId>_<pageMsgId>".
    Side Effects / State: None.
    Failure Modes: Messages without text or sender are skipped.
    Testing Notes: customer, page, customer, customer, page -> two pairs, the second with
        the preceding customer message as context.
    """
    pairs: List[TrainingPair] = []
    for index in range(len(messages) - 1):
        current = messages[index]
        following = messages[index + 1]
        if _sender(current) == page_id or _sender(following) != page_id:
            continue
        customer_text = current.get("message")
        employee_text = following.get("message")
        if not customer_text or not employee_text:
            continue
        context: Optional[str] = None
        if index > 0 and messages[index - 1].get("message"):
            context = messages[index - 1]["message"]
        pairs.append(
            TrainingPair(
                id=f"{current.get('id')}_{following.get('id')}",
                customer_message=customer_text,
                employee_response=employee_text,
                context=context,
                category=categorize_message(customer_text),
                created_at=current.get("created_time"),
            )
        )
    return pairs


def crawl_training_pairs(messenger: MessengerClient, limit: int = 50) -> Tuple[List[TrainingPair], Dict[str, Any]]:
    """Mine training pairs from the page's recent conversations; returns (pairs, stats)."""
    conversations = messenger.list_conversations(limit=limit)
    pairs: List[TrainingPair] = []
    for conversation in conversations:
        conversation_id = conversation.get("id")
        if not conversation_id:
            continue
        try:
            messages = messenger.list_messages(conversation_id, limit=MESSAGES_PER_CONVERSATION)
        except MessengerError as exc:
            logger.warning("conversation=%s skipped error=%s", conversation_id, exc)
            continue
        # Graph returns newest first.
        messages = list(reversed(messages))
        pairs.extend(extract_training_pairs(messages, messenger.page_id))

    stats = {
        "totalConversations": len(conversations),
        "totalPairs": len(pairs),
        "byCategory": count_by_category(pairs),
    }
    logger.info("crawl conversations=%s pairs=%s", len(conversations), len(pairs))
    return pairs, stats


def _sender(message: Dict[str, Any]) -> Optional[str]:
    sender = message.get("from") or {}
    return sender.get("id") if isinstance(sender, dict) else None
