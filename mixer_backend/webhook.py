from __future__ import annotations

import logging
from typing import Any, Callable, Dict, Optional

from .auto_reply import AutoReplyAgent
from .catalog import ProductCatalog
from .conversation_store import ConversationStore
from .messenger_client import MessengerClient
from .models import AIResponse, AutoReplySettings
from .settings_store import SettingsStore
from .training_store import TrainingStore

logger = logging.getLogger("mixer.webhook")

POSTBACK_REPLIES = {
    "GET_STARTED": (
        "Chào mừng bạn đến với shop! 🎉\n\nBạn có thể nhắn tin để hỏi về:\n"
        "• Sản phẩm & giá cả\n• Size & màu sắc\n• Chính sách đổi trả\n\n"
        "Mình sẽ phản hồi sớm nhất có thể ạ!"
    ),
    "VIEW_PRODUCTS": "Dạ bạn muốn xem sản phẩm loại nào ạ? Áo, quần, hay phụ kiện?",
    "VIEW_CART": "Dạ bạn nhắn giúp shop tên sản phẩm, size và màu bạn đã chọn, shop kiểm tra và giữ hàng cho bạn nhé!",
    "CHECKOUT": (
        "Dạ để đặt hàng bạn gửi giúp shop: tên, số điện thoại, địa chỉ nhận hàng và sản phẩm (size, màu) nhé. "
        "Shop nhận COD hoặc chuyển khoản ạ!"
    ),
    "CONTACT": "Dạ bạn để lại số điện thoại, nhân viên shop sẽ gọi lại cho bạn sớm nhất ạ!",
}

SHOPEE_URL = "https://s.shopee.vn/VzxlZeu4F"

PERSISTENT_MENU = [
    {
        "locale": "default",
        "composer_input_disabled": False,
        "call_to_actions": [
            {"type": "postback", "title": "🛍️ Xem sản phẩm", "payload": "VIEW_PRODUCTS"},
            {"type": "postback", "title": "🛒 Xem giỏ hàng", "payload": "VIEW_CART"},
            {"type": "postback", "title": "📦 Đặt hàng", "payload": "CHECKOUT"},
            {"type": "postback", "title": "📞 Liên hệ Hotline", "payload": "CONTACT"},
            {"type": "web_url", "title": "🛒 Shopee", "url": SHOPEE_URL, "webview_height_ratio": "full"},
        ],
    }
]


def install_messenger_menu(messenger: MessengerClient) -> Dict[str, Any]:
    """Purpose: Register the persistent menu and the Get Started button for the page.
    Inputs/Outputs: Input is a MessengerClient; returns the Graph results keyed
        "menu" and "getStarted".
    Side Effects / State: Two POSTs to me/messenger_profile.
    Failure Modes: MessengerError from either call propagates; when the menu call fails
        the Get Started call is not attempted.
    """
    menu = messenger.set_messenger_profile({"persistent_menu": PERSISTENT_MENU})
    get_started = messenger.set_messenger_profile({"get_started": {"payload": "GET_STARTED"}})
    return {"menu": menu, "getStarted": get_started}


def should_auto_send(reply: AIResponse, settings: AutoReplySettings) -> bool:
    """Send only when enabled, not escalated, and confident enough."""
    return (
        settings.auto_reply_enabled
        and not reply.should_handoff
        and reply.confidence >= settings.confidence_threshold
    )


class MessengerWebhook:
    """Routes Messenger webhook events into the conversation store and the reply pipeline."""

    def __init__(
        self,
        verify_token: str,
        get_agent: Callable[[], AutoReplyAgent],
        get_messenger: Callable[[], MessengerClient],
        settings_store: SettingsStore,
        training_store: TrainingStore,
        catalog: ProductCatalog,
        conversations: ConversationStore,
    ) -> None:
        self._verify_token = verify_token
        self._get_agent = get_agent
        self._get_messenger = get_messenger
        self._settings_store = settings_store
        self._training_store = training_store
        self._catalog = catalog
        self._conversations = conversations

    def verify(self, mode: Optional[str], token: Optional[str], challenge: Optional[str]) -> Optional[str]:
        """Return the challenge to echo back, or None when verification fails."""
        if mode == "subscribe" and self._verify_token and token == self._verify_token:
            logger.info("webhook verified")
            return challenge or ""
        logger.warning("webhook verification failed mode=%s", mode)
        return None

    def handle_payload(self, body: Dict[str, Any]) -> int:
        """Purpose: Process every messaging event of a page webhook delivery.
        Inputs/Outputs: Input is the decoded webhook body; output is the number of events
            processed without error.
        Side Effects / State: Updates conversations, may call Gemini and the Send API.
        Failure Modes: Errors of one event are logged and the remaining events still run,
            so the HTTP layer can always acknowledge the delivery.
        Testing Notes: Feed an entry with a failing event followed by a good one.
        """
        processed = 0
        for entry in body.get("entry", []) or []:
            for event in entry.get("messaging", []) or []:
                try:
                    self.handle_event(event)
                    processed += 1
                except Exception:
                    logger.exception("event from=%s failed", (event.get("sender") or {}).get("id"))
        return processed

    def handle_event(self, event: Dict[str, Any]) -> None:
        message = event.get("message")
        if message is not None:
            if message.get("is_echo"):
                self._handle_echo((event.get("recipient") or {}).get("id"), message.get("text") or "")
            else:
                self.handle_message((event.get("sender") or {}).get("id"), message.get("text") or "")
        elif event.get("postback") is not None:
            self.handle_postback((event.get("sender") or {}).get("id"), event["postback"].get("payload") or "")

    def handle_message(self, sender_id: Optional[str], text: str) -> Optional[AIResponse]:
        """Purpose: Record a customer message and auto-reply when the settings allow it.
        Inputs/Outputs: Inputs are the sender PSID and text; returns the reply proposal
            (sent or not), or None when the pipeline was not consulted.
        Side Effects / State: Appends turns, may send a message, may flag the
            conversation as waiting for a human.
        Dependencies: SettingsStore, TrainingStore, ProductCatalog, AutoReplyAgent.
        Failure Modes: ConfigurationError and MessengerError propagate to handle_payload.
        Testing Notes: Disabled settings must never reach the agent.
        """
        if not sender_id:
            return None
        if not text:
            logger.info("sender=%s non-text message ignored", sender_id)
            return None

        history = self._conversations.get_history(sender_id)
        self._conversations.add_turn(sender_id, "customer", text)

        settings = self._settings_store.get_settings()
        if not settings.auto_reply_enabled:
            logger.info("sender=%s auto_reply=off", sender_id)
            return None
        if self._conversations.is_awaiting_human(sender_id):
            logger.info("sender=%s awaiting_human, auto reply paused", sender_id)
            return None

        reply = self._get_agent().generate_reply(
            text,
            self._training_store.get_training_data(),
            self._catalog.list_products(),
            history,
        )
        if not should_auto_send(reply, settings):
            self._conversations.mark_awaiting_human(sender_id)
            logger.info(
                "sender=%s handoff confidence=%.2f threshold=%.2f flagged=%s",
                sender_id,
                reply.confidence,
                settings.confidence_threshold,
                reply.should_handoff,
            )
            return reply

        self._get_messenger().send_text_message(sender_id, reply.message)
        self._conversations.add_turn(sender_id, "employee", reply.message)
        logger.info("sender=%s auto_replied confidence=%.2f", sender_id, reply.confidence)
        return reply

    def handle_postback(self, sender_id: Optional[str], payload: str) -> None:
        reply = POSTBACK_REPLIES.get(payload)
        if not sender_id or reply is None:
            logger.warning("sender=%s unknown postback=%s", sender_id, payload)
            return
        self._get_messenger().send_text_message(sender_id, reply)
        # Canned menu replies do not count as a human taking over.
        self._conversations.add_turn(sender_id, "employee", reply, clear_awaiting=False)

    def _handle_echo(self, recipient_id: Optional[str], text: str) -> None:
        # Echoes of replies this service sent are already recorded.
        if not recipient_id or not text:
            return
        history = self._conversations.get_history(recipient_id)
        if history and history[-1].role == "employee" and history[-1].message == text:
            return
        canned = text in POSTBACK_REPLIES.values()
        self._conversations.add_turn(recipient_id, "employee", text, clear_awaiting=not canned)
