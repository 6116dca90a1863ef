"""Shared fixtures: settings on a temp data dir and fakes for Gemini and the Graph API."""

from dataclasses import replace
from pathlib import Path
from typing import List, Optional

import pytest

from mixer_backend.config import BASE_DIR, Settings
from mixer_backend.errors import GenerationFailure, MessengerError
from mixer_backend.models import ConversationTurn, ProductSummary, TrainingPair


class FakeGenerator:
    """Scripted stand-in for GeminiClient: returns or raises the queued outcomes in order."""

    def __init__(self, *outcomes):
        self.outcomes = list(outcomes) or ["Dạ shop còn hàng ạ, bạn cần size nào?"]
        self.prompts: List[str] = []
        self.calls: List[dict] = []

    def generate_text(self, prompt, model=None, response_format=None, thinking_budget=None):
        self.prompts.append(prompt)
        self.calls.append({"model": model, "response_format": response_format, "thinking_budget": thinking_budget})
        outcome = self.outcomes.pop(0) if len(self.outcomes) > 1 else self.outcomes[0]
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome


class FakeMessenger:
    """Records sends, read receipts and profile updates; conversations/messages are served from dicts."""

    def __init__(self, page_id="PAGE", conversations=None, messages=None, fail_send=False):
        self.page_id = page_id
        self.sent: List[tuple] = []
        self.seen: List[str] = []
        self.profiles: List[dict] = []
        self._conversations = conversations or []
        self._messages = messages or {}
        self._fail_send = fail_send

    def send_text_message(self, recipient_id, text):
        if self._fail_send:
            raise MessengerError("(#100) No matching user found", code=100)
        self.sent.append((recipient_id, text))
        return {"recipient_id": recipient_id, "message_id": f"m_{len(self.sent)}"}

    def mark_seen(self, recipient_id):
        if self._fail_send:
            raise MessengerError("(#100) No matching user found", code=100)
        self.seen.append(recipient_id)
        return {"recipient_id": recipient_id}

    def set_messenger_profile(self, profile):
        if self._fail_send:
            raise MessengerError("(#200) Permissions error", code=200)
        self.profiles.append(profile)
        return {"result": "success"}

    def list_conversations(self, limit=50):
        return self._conversations[:limit]

    def list_messages(self, conversation_id, limit=50):
        result = self._messages.get(conversation_id, [])
        if isinstance(result, BaseException):
            raise result
        return result


def make_settings(tmp_path: Path, **overrides) -> Settings:
    settings = Settings(
        gemini_api_keys=("test-key",),
        gemini_model="gemini-2.0-flash",
        generation_timeout_sec=30.0,
        generation_retries=0,
        retry_initial_delay_sec=0.0,
        prompts_dir=BASE_DIR / "prompts",
        data_dir=tmp_path / "data",
        products_path=tmp_path / "data" / "products.json",
        fb_page_access_token="page-token",
        fb_page_id="PAGE",
        fb_verify_token="verify-me",
        fb_api_version="v18.0",
        viettelpost_username="shop",
        viettelpost_password="secret",
    )
    return replace(settings, **overrides)


@pytest.fixture
def settings(tmp_path):
    return make_settings(tmp_path)


@pytest.fixture
def pairs() -> List[TrainingPair]:
    return [
        TrainingPair(
            id=f"c{i}_p{i}",
            customer_message=f"câu hỏi {i}",
            employee_response=f"trả lời {i}",
            category="other",
        )
        for i in range(15)
    ]


@pytest.fixture
def products() -> List[ProductSummary]:
    return [
        ProductSummary(name=f"Sản phẩm {i}", price=100000 + i * 1000, stock=i % 2, sizes=["M"], colors=["Đen"])
        for i in range(25)
    ]


@pytest.fixture
def history() -> List[ConversationTurn]:
    turns = []
    for i in range(8):
        role = "customer" if i % 2 == 0 else "employee"
        turns.append(ConversationTurn(role=role, message=f"lượt {i}"))
    return turns


def failing(message: str = "boom", cause: Optional[BaseException] = None) -> GenerationFailure:
    return GenerationFailure(message, cause=cause)
