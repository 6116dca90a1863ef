from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, Optional

import requests
from dotenv import load_dotenv
from fastapi import FastAPI, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
from pydantic import ValidationError
from starlette.concurrency import run_in_threadpool

from .auto_reply import AutoReplyAgent
from .catalog import ProductCatalog
from .config import Settings, load_settings
from .conversation_store import ConversationStore
from .errors import CarrierError, ConfigurationError, GenerationFailure, MalformedOutput, MessengerError
from .key_rotation import TextGenerator, build_generator
from .messenger_client import MessengerClient, summarize_conversation, summarize_message
from .models import ChatRequest, ChatResponse, GenerateRequest, MarkSeenRequest, SendRequest, SettingsAction
from .prompt_builder import PromptBuilder
from .settings_store import SettingsStore
from .training_crawler import crawl_training_pairs
from .training_store import TrainingStore
from .utils import parse_json_output
from .viettelpost_client import ViettelPostClient
from .webhook import MessengerWebhook, install_messenger_menu

BASE_DIR = Path(__file__).resolve().parent

log_level_name = os.getenv("LOG_LEVEL", "INFO").upper()
log_level = getattr(logging, log_level_name, logging.INFO)
if not logging.getLogger().handlers:
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

logging.getLogger("mixer").setLevel(log_level)
logger = logging.getLogger("mixer.app")

ENV_PATH = BASE_DIR / ".env"
if ENV_PATH.exists():
    load_dotenv(ENV_PATH, override=True)


@dataclass
class Services:
    """Stores and lazily built external clients shared by the endpoints."""
    settings: Settings
    settings_store: SettingsStore
    training_store: TrainingStore
    conversations: ConversationStore
    catalog: ProductCatalog
    prompt_builder: PromptBuilder
    generator_factory: Callable[[Settings], TextGenerator]
    messenger_factory: Callable[[Settings], MessengerClient]
    carrier_factory: Callable[[Settings], ViettelPostClient]
    _generator: Optional[TextGenerator] = field(default=None, init=False)
    _agent: Optional[AutoReplyAgent] = field(default=None, init=False)
    _messenger: Optional[MessengerClient] = field(default=None, init=False)
    _carrier: Optional[ViettelPostClient] = field(default=None, init=False)

    def generator(self) -> TextGenerator:
        # ConfigurationError surfaces on every call until a key is configured.
        if self._generator is None:
            self._generator = self.generator_factory(self.settings)
        return self._generator

    def agent(self) -> AutoReplyAgent:
        if self._agent is None:
            self._agent = AutoReplyAgent(
                generator=self.generator(),
                prompt_builder=self.prompt_builder,
                policy=self.settings.confidence,
                model=self.settings.gemini_model,
                max_retries=self.settings.generation_retries,
                retry_initial_delay=self.settings.retry_initial_delay_sec,
            )
        return self._agent

    def messenger(self) -> MessengerClient:
        if self._messenger is None:
            self._messenger = self.messenger_factory(self.settings)
        return self._messenger

    def carrier(self) -> ViettelPostClient:
        if self._carrier is None:
            self._carrier = self.carrier_factory(self.settings)
        return self._carrier


def _default_generator(settings: Settings) -> TextGenerator:
    return build_generator(settings.gemini_api_keys, settings.gemini_model, timeout_sec=settings.generation_timeout_sec)


def _default_messenger(settings: Settings) -> MessengerClient:
    return MessengerClient(settings.fb_page_access_token, page_id=settings.fb_page_id, api_version=settings.fb_api_version)


def _default_carrier(settings: Settings) -> ViettelPostClient:
    return ViettelPostClient(settings.viettelpost_username, settings.viettelpost_password)


def build_services(
    settings: Settings,
    generator_factory: Callable[[Settings], TextGenerator] = _default_generator,
    messenger_factory: Callable[[Settings], MessengerClient] = _default_messenger,
    carrier_factory: Callable[[Settings], ViettelPostClient] = _default_carrier,
) -> Services:
    data_dir = settings.data_dir
    data_dir.mkdir(parents=True, exist_ok=True)
    return Services(
        settings=settings,
        settings_store=SettingsStore(data_dir / "settings.json"),
        training_store=TrainingStore(data_dir / "training_pairs.json"),
        conversations=ConversationStore(data_dir / "conversations.json"),
        catalog=ProductCatalog(settings.products_path),
        prompt_builder=PromptBuilder.from_file(
            settings.prompts_dir / "auto_reply.txt",
            limits=settings.prompt_limits,
            shop=settings.shop,
            include_glossary=settings.include_glossary,
        ),
        generator_factory=generator_factory,
        messenger_factory=messenger_factory,
        carrier_factory=carrier_factory,
    )


def error_response(status_code: int, message: str, **extra: Any) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "error": message, **extra})


def create_app(services: Optional[Services] = None) -> FastAPI:
    """Purpose: Build the FastAPI application around a Services container.
    Inputs/Outputs: Optional Services (tests inject fakes); returns the app.
    Side Effects / State: Creates the data directory when building default services.
    Dependencies: Settings, stores, AutoReplyAgent, MessengerWebhook.
    Failure Modes: Missing credentials do not fail startup; the endpoints that need them
        answer 500 instead.
    Testing Notes: Use fastapi.testclient.TestClient with a Services built on tmp_path.
    """
    services = services or build_services(load_settings())
    app = FastAPI(title="MIXER Shop Assistant")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type"],
    )
    app.state.services = services

    webhook = MessengerWebhook(
        verify_token=services.settings.fb_verify_token,
        get_agent=services.agent,
        get_messenger=services.messenger,
        settings_store=services.settings_store,
        training_store=services.training_store,
        catalog=services.catalog,
        conversations=services.conversations,
    )

    @app.get("/api/health")
    def health() -> Dict[str, Any]:
        return {
            "status": "ok",
            "trainingDataCount": services.training_store.count(),
            "productCount": services.catalog.count(),
        }

    @app.get("/api/webhook/facebook")
    def verify_webhook(
        mode: Optional[str] = Query(default=None, alias="hub.mode"),
        token: Optional[str] = Query(default=None, alias="hub.verify_token"),
        challenge: Optional[str] = Query(default=None, alias="hub.challenge"),
    ):
        """Facebook subscription handshake: echo the challenge when the token matches."""
        echoed = webhook.verify(mode, token, challenge)
        if echoed is None:
            return error_response(403, "Verification failed")
        return PlainTextResponse(echoed)

    @app.post("/api/webhook/facebook")
    async def receive_webhook(request: Request):
        """Purpose: Receive Messenger events and run the auto-reply flow for each.
        Inputs/Outputs: Input is the raw webhook JSON; output is always 200 for page events.
        Side Effects / State: Conversation updates, Gemini calls, Send API calls.
        Failure Modes: Non-page objects return 404; event errors are logged, not returned.
        Testing Notes: Post a page event with auto-reply enabled and a fake agent.
        """
        try:
            body = await request.json()
        except ValueError:
            return error_response(400, "Invalid JSON")
        if not isinstance(body, dict) or body.get("object") != "page":
            logger.info("webhook ignored object=%s", body.get("object") if isinstance(body, dict) else None)
            return error_response(404, "Not a page event")
        # handle_payload blocks on Gemini and Graph calls.
        processed = await run_in_threadpool(webhook.handle_payload, body)
        logger.info("webhook events_processed=%s", processed)
        return {"status": "EVENT_RECEIVED"}

    @app.post("/api/ai/chat")
    def ai_chat(payload: ChatRequest):
        """Standalone call site of the reply pipeline for the dashboard inbox."""
        if not payload.message.strip():
            return error_response(400, "Message is required")
        try:
            agent = services.agent()
        except ConfigurationError as exc:
            return error_response(500, str(exc))
        training_pairs = (
            payload.training_pairs if payload.training_pairs is not None else services.training_store.get_training_data()
        )
        products = payload.products if payload.products is not None else services.catalog.list_products()
        context = agent.run(payload.message, training_pairs, products, payload.conversation_history)
        reply = context.response
        return ChatResponse(
            success=True,
            response=reply.message,
            confidence=reply.confidence,
            should_handoff=reply.should_handoff,
            trace=context.trace,
        ).model_dump(by_alias=True)

    @app.post("/api/ai/generate")
    def ai_generate(payload: GenerateRequest):
        """Server-side proxy so the dashboard never holds a Gemini key."""
        if not payload.prompt:
            return error_response(400, "prompt is required")
        try:
            text = services.generator().generate_text(
                payload.prompt,
                model=payload.model,
                response_format=payload.response_format,
                thinking_budget=payload.thinking_budget,
            )
        except ConfigurationError as exc:
            return error_response(500, str(exc))
        except GenerationFailure as exc:
            logger.error("ai_generate failed error=%s", exc)
            return error_response(500, "AI processing failed")
        if payload.response_format == "json":
            try:
                parse_json_output(text)
            except MalformedOutput:
                logger.warning("ai_generate json mode returned unparsable output chars=%s", len(text))
                return error_response(502, "AI returned malformed JSON", text=text)
        return {"success": True, "text": text}

    @app.get("/api/ai/settings")
    def get_ai_settings() -> Dict[str, Any]:
        return {
            "success": True,
            "settings": services.settings_store.get_settings().model_dump(by_alias=True),
            "trainingDataCount": services.training_store.count(),
        }

    @app.post("/api/ai/settings")
    def update_ai_settings(payload: SettingsAction):
        store = services.settings_store
        if payload.action == "toggle":
            return {"success": True, "enabled": store.toggle().auto_reply_enabled}
        if payload.action == "setEnabled":
            return {"success": True, "enabled": store.set_enabled(bool(payload.data.get("enabled"))).auto_reply_enabled}
        if payload.action == "updateSettings":
            try:
                updated = store.update(confidence_threshold=payload.data.get("confidenceThreshold"))
            except ValidationError:
                return error_response(400, "confidenceThreshold must be between 0 and 1")
            return {"success": True, "settings": updated.model_dump(by_alias=True)}
        return error_response(400, "Unknown action")

    @app.get("/api/facebook/crawl-training")
    def crawl_training(limit: int = Query(default=50, ge=1, le=500), save: bool = True):
        try:
            pairs, stats = crawl_training_pairs(services.messenger(), limit=limit)
        except ConfigurationError as exc:
            return error_response(500, str(exc))
        except MessengerError as exc:
            return error_response(400, str(exc))
        if save:
            stats["added"] = services.training_store.add_pairs(pairs)
        return {
            "success": True,
            "stats": stats,
            "trainingPairs": [pair.model_dump(by_alias=True, exclude_none=True) for pair in pairs],
        }

    @app.post("/api/facebook/send")
    def send_message(payload: SendRequest):
        if not payload.recipient_id or not payload.message:
            return error_response(400, "recipientId and message are required")
        try:
            result = services.messenger().send_text_message(payload.recipient_id, payload.message)
        except ConfigurationError as exc:
            return error_response(500, str(exc))
        except MessengerError as exc:
            return error_response(400, str(exc))
        services.conversations.add_turn(payload.recipient_id, "employee", payload.message)
        return {
            "success": True,
            "messageId": result.get("message_id"),
            "recipientId": result.get("recipient_id"),
        }

    @app.get("/api/facebook/conversations")
    def list_conversations(limit: int = Query(default=50, ge=1, le=500)):
        """Inbox list for the dashboard; the customer is the participant that is not the page."""
        try:
            messenger = services.messenger()
            raw = messenger.list_conversations(limit=limit)
        except ConfigurationError as exc:
            return error_response(500, str(exc))
        except MessengerError as exc:
            return error_response(400, str(exc))
        conversations = [summarize_conversation(item, messenger.page_id).model_dump(by_alias=True) for item in raw]
        return {"success": True, "conversations": conversations, "count": len(conversations)}

    @app.get("/api/facebook/messages")
    def list_messages(
        conversation_id: str = Query(default="", alias="conversationId"),
        limit: int = Query(default=50, ge=1, le=500),
    ):
        if not conversation_id:
            return error_response(400, "conversationId is required")
        try:
            messenger = services.messenger()
            raw = messenger.list_messages(conversation_id, limit=limit)
        except ConfigurationError as exc:
            return error_response(500, str(exc))
        except MessengerError as exc:
            return error_response(400, str(exc))
        return {
            "success": True,
            "messages": [summarize_message(item, messenger.page_id).model_dump(by_alias=True) for item in raw],
            "conversationId": conversation_id,
        }

    @app.post("/api/facebook/mark-seen")
    def mark_seen(payload: MarkSeenRequest):
        if not payload.recipient_id:
            return error_response(400, "recipientId is required")
        try:
            services.messenger().mark_seen(payload.recipient_id)
        except ConfigurationError as exc:
            return error_response(500, str(exc))
        except MessengerError as exc:
            return error_response(400, str(exc))
        return {"success": True, "recipientId": payload.recipient_id}

    @app.post("/api/facebook/setup-menu")
    def setup_menu():
        """One-off page setup: persistent menu plus the Get Started button."""
        try:
            results = install_messenger_menu(services.messenger())
        except ConfigurationError as exc:
            return error_response(500, str(exc))
        except MessengerError as exc:
            logger.error("setup_menu failed error=%s", exc)
            return error_response(400, str(exc))
        return {"success": True, "message": "Messenger menu configured", **results}

    @app.get("/api/shipping/inventories")
    def shipping_inventories():
        try:
            return services.carrier().list_inventories()
        except ConfigurationError as exc:
            return error_response(500, str(exc))
        except (CarrierError, requests.RequestException) as exc:
            return error_response(502, str(exc))

    @app.post("/api/shipping/price")
    def shipping_price(payload: Dict[str, Any]):
        try:
            return services.carrier().calculate_shipping(payload)
        except ConfigurationError as exc:
            return error_response(500, str(exc))
        except (CarrierError, requests.RequestException) as exc:
            return error_response(502, str(exc))

    return app


app = create_app()
