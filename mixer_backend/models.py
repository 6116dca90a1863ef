from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

TrainingCategory = Literal["greeting", "product", "order", "shipping", "payment", "other"]
TurnRole = Literal["customer", "employee"]


class ApiModel(BaseModel):
    """Base model accepting both camelCase aliases and snake_case names."""
    model_config = ConfigDict(populate_by_name=True)


class TrainingPair(ApiModel):
    """One exemplar of desired shop behavior."""
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    customer_message: str = Field(alias="customerMessage")
    employee_response: str = Field(alias="employeeResponse")
    context: Optional[str] = None
    category: Optional[TrainingCategory] = None
    id: Optional[str] = None
    created_at: Optional[str] = Field(default=None, alias="createdAt")


class ProductSummary(ApiModel):
    """Catalog projection used to ground replies."""
    name: str
    price: int = 0
    stock: int = Field(default=0, ge=0)
    sizes: List[str] = Field(default_factory=list)
    colors: List[str] = Field(default_factory=list)
    id: Optional[str] = None


class ConversationTurn(ApiModel):
    """Single message in a customer conversation."""
    role: TurnRole
    message: str


class AIResponse(ApiModel):
    """Reply proposal produced by the auto-reply pipeline."""
    message: str
    confidence: float = Field(ge=0.0, le=1.0)
    should_handoff: bool = Field(alias="shouldHandoff")


class AutoReplySettings(ApiModel):
    """Operator-controlled switches for auto-sending replies."""
    auto_reply_enabled: bool = Field(default=False, alias="ai_auto_reply_enabled")
    confidence_threshold: float = Field(default=0.6, ge=0.0, le=1.0, alias="ai_confidence_threshold")
    updated_at: Optional[str] = None


class ChatRequest(ApiModel):
    """Request payload for the standalone AI chat endpoint."""
    message: str = ""
    conversation_history: List[ConversationTurn] = Field(default_factory=list, alias="conversationHistory")
    training_pairs: Optional[List[TrainingPair]] = Field(default=None, alias="trainingPairs")
    products: Optional[List[ProductSummary]] = None


class ChatResponse(ApiModel):
    """Response payload returned by the AI chat endpoint."""
    success: bool
    response: str
    confidence: float
    should_handoff: bool = Field(alias="shouldHandoff")
    trace: List[Dict[str, str]] = Field(default_factory=list)


class GenerateRequest(ApiModel):
    """Request payload for the raw generation proxy."""
    prompt: str = ""
    model: Optional[str] = None
    response_format: Optional[Literal["json", "text"]] = Field(default=None, alias="responseFormat")
    thinking_budget: Optional[int] = Field(default=None, alias="thinkingBudget")


class SettingsAction(ApiModel):
    """Mutation request for the auto-reply settings endpoint."""
    action: str
    data: Dict[str, Any] = Field(default_factory=dict)


class SendRequest(ApiModel):
    """Manual send request issued by a human agent."""
    recipient_id: str = Field(default="", alias="recipientId")
    message: str = ""


class MarkSeenRequest(ApiModel):
    """Read receipt request issued when an agent opens a conversation."""
    recipient_id: str = Field(default="", alias="recipientId")


class ConversationSummary(ApiModel):
    """Inbox row for one page conversation."""
    id: str
    recipient_id: str = Field(default="", alias="recipientId")
    customer_name: str = Field(default="Khách hàng", alias="customerName")
    last_message: str = Field(default="", alias="lastMessage")
    last_message_time: Optional[str] = Field(default=None, alias="lastMessageTime")
    is_unread: bool = Field(default=False, alias="isUnread")
    unread_count: int = Field(default=0, alias="unreadCount")


class MessageSummary(ApiModel):
    """One Graph message as shown in the dashboard thread view."""
    id: str
    text: str = ""
    sender_id: str = Field(default="", alias="senderId")
    sender_name: str = Field(default="", alias="senderName")
    is_from_page: bool = Field(default=False, alias="isFromPage")
    timestamp: Optional[str] = None


class StoredConversation(BaseModel):
    """Persisted conversation with its recent turns and handoff flag."""
    sender_id: str
    turns: List[ConversationTurn] = Field(default_factory=list)
    awaiting_human: bool = False
    updated_at: float = 0.0
