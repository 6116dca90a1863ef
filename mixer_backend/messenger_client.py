"""Client for the Facebook Graph API Messenger endpoints used by the shop."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

import requests

from .errors import ConfigurationError, MessengerError
from .models import ConversationSummary, MessageSummary

logger = logging.getLogger("mixer.messenger")

GRAPH_BASE_URL = "https://graph.facebook.com"


class MessengerClient:
    """Send messages and read page conversations through the Graph API."""

    def __init__(
        self,
        page_access_token: str,
        page_id: str = "",
        api_version: str = "v18.0",
        timeout: int = 15,
        session: Optional[requests.Session] = None,
    ):
        if not page_access_token:
            raise ConfigurationError("PAGE_ACCESS_TOKEN not configured")
        self.page_access_token = page_access_token
        self.page_id = page_id
        self.base_url = f"{GRAPH_BASE_URL}/{api_version}"
        self.timeout = timeout
        self.session = session or requests.Session()

    def _request(self, method: str, path: str, params: Optional[dict] = None, json: Optional[dict] = None) -> Dict[str, Any]:
        """Call the Graph API and return the decoded body; Graph errors become MessengerError."""
        query = dict(params or {})
        query["access_token"] = self.page_access_token
        try:
            resp = self.session.request(
                method,
                f"{self.base_url}/{path.lstrip('/')}",
                params=query,
                json=json,
                timeout=self.timeout,
            )
            data = resp.json()
        except requests.RequestException as exc:
            raise MessengerError(f"Graph API unreachable: {exc}") from exc
        except ValueError as exc:
            raise MessengerError("Graph API returned a non-JSON body") from exc
        if isinstance(data, dict) and data.get("error"):
            error = data["error"]
            raise MessengerError(error.get("message", "Graph API error"), code=error.get("code"))
        return data if isinstance(data, dict) else {}

    def send_text_message(self, recipient_id: str, text: str) -> Dict[str, Any]:
        """Send a plain text reply; returns {"recipient_id", "message_id"}."""
        data = self._request(
            "POST",
            "me/messages",
            json={
                "recipient": {"id": recipient_id},
                "message": {"text": text},
                "messaging_type": "RESPONSE",
            },
        )
        logger.info("recipient=%s message_id=%s sent", recipient_id, data.get("message_id"))
        return data

    def mark_seen(self, recipient_id: str) -> Dict[str, Any]:
        """Send the mark_seen sender action so the customer sees a read receipt."""
        data = self._request(
            "POST",
            "me/messages",
            json={"recipient": {"id": recipient_id}, "sender_action": "mark_seen"},
        )
        logger.info("recipient=%s marked_seen", recipient_id)
        return data

    def set_messenger_profile(self, profile: Dict[str, Any]) -> Dict[str, Any]:
        """Update page-level Messenger settings (persistent menu, get started button)."""
        data = self._request("POST", "me/messenger_profile", json=profile)
        logger.info("messenger_profile fields=%s updated", ",".join(sorted(profile)))
        return data

    def list_conversations(self, limit: int = 50) -> List[Dict[str, Any]]:
        if not self.page_id:
            raise ConfigurationError("FB_PAGE_ID not configured")
        data = self._request(
            "GET",
            f"{self.page_id}/conversations",
            params={"fields": "id,participants,updated_time,snippet,unread_count", "limit": limit},
        )
        return data.get("data", []) or []

    def list_messages(self, conversation_id: str, limit: int = 50) -> List[Dict[str, Any]]:
        """Messages of one conversation, newest first as Graph returns them."""
        data = self._request(
            "GET",
            f"{conversation_id}/messages",
            params={"fields": "id,message,from,to,created_time", "limit": limit},
        )
        return data.get("data", []) or []


def summarize_conversation(raw: Dict[str, Any], page_id: str) -> ConversationSummary:
    """Project a Graph conversation onto the inbox row; the customer is the non-page participant."""
    participants = (raw.get("participants") or {}).get("data") or []
    customer = next((p for p in participants if p.get("id") != page_id), {})
    unread = int(raw.get("unread_count") or 0)
    return ConversationSummary(
        id=raw.get("id", ""),
        recipient_id=customer.get("id") or "",
        customer_name=customer.get("name") or "Khách hàng",
        last_message=raw.get("snippet") or "",
        last_message_time=raw.get("updated_time"),
        is_unread=unread > 0,
        unread_count=unread,
    )


def summarize_message(raw: Dict[str, Any], page_id: str) -> MessageSummary:
    sender = raw.get("from") or {}
    return MessageSummary(
        id=raw.get("id", ""),
        text=raw.get("message") or "",
        sender_id=sender.get("id") or "",
        sender_name=sender.get("name") or "",
        is_from_page=bool(page_id) and sender.get("id") == page_id,
        timestamp=raw.get("created_time"),
    )
