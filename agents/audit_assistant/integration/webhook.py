"""
Webhook Channel
===============

FastAPI adapter exposing the conversation handler over HTTP:

- ``POST /webhook``: ``{"message": "...", "context": {...}}`` -> channel-neutral response
- ``GET /health``: ``{"status": "ok", "initialized": bool}``

When an auth token is configured, requests must carry
``Authorization: Bearer <token>``.
"""

import secrets
from contextlib import asynccontextmanager
from typing import Any, Awaitable, Callable, Dict, Optional

from fastapi import FastAPI, Header, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from shared.config.logging_config import get_component_logger
from shared.config.settings import WebhookConfig
from shared.schemas.audit_models import ConversationContext
from shared.utils.metrics import get_metrics_collector

from .conversation_handler import ConversationHandler


class WebhookRequest(BaseModel):
    """Inbound webhook payload."""
    message: Optional[str] = None
    context: ConversationContext = Field(default_factory=ConversationContext)


class WebhookServer:
    """Builds and owns the FastAPI app for the webhook channel."""

    def __init__(
        self,
        handler: ConversationHandler,
        config: Optional[WebhookConfig] = None,
        on_shutdown: Optional[Callable[[], Awaitable[Any]]] = None,
        logger=None
    ):
        self.handler = handler
        self.config = config or WebhookConfig()
        self.on_shutdown = on_shutdown
        self.logger = logger or get_component_logger("integration.webhook")
        self.metrics = get_metrics_collector()

        self.app = FastAPI(
            title="Audit Assistant Webhook",
            description="Natural-language questions about the organization audit log",
            version="1.0.0",
            lifespan=self.lifespan
        )

        self._setup_middleware()
        self._setup_routes()

    @asynccontextmanager
    async def lifespan(self, app: FastAPI):
        """Release remote resources on shutdown."""
        self.logger.info("Webhook channel started", extra={"initialized": self.handler.is_initialized})
        yield
        if self.on_shutdown is not None:
            await self.on_shutdown()
        self.logger.info("Webhook channel stopped")

    def _setup_middleware(self):
        self.app.add_middleware(
            CORSMiddleware,
            allow_origins=["*"],
            allow_methods=["GET", "POST"],
            allow_headers=["*"],
        )

    def _check_auth(self, authorization: Optional[str]) -> None:
        if self.config.auth_token is None:
            return

        if not authorization or not authorization.startswith('Bearer '):
            self.metrics.counter("webhook.unauthorized_total").increment()
            raise HTTPException(status_code=401, detail="Missing bearer token")

        token = authorization[len('Bearer '):]
        if not secrets.compare_digest(token, self.config.auth_token.get_secret_value()):
            self.metrics.counter("webhook.forbidden_total").increment()
            raise HTTPException(status_code=403, detail="Invalid token")

    def _setup_routes(self):

        @self.app.get("/health")
        async def health_check() -> Dict[str, Any]:
            return {"status": "ok", "initialized": self.handler.is_initialized}

        @self.app.post("/webhook")
        async def webhook(
            request: WebhookRequest,
            authorization: Optional[str] = Header(default=None)
        ) -> Dict[str, Any]:
            self._check_auth(authorization)

            if not request.message or not request.message.strip():
                raise HTTPException(status_code=400, detail="Message is required")

            self.metrics.counter("webhook.requests_total").increment()
            response = await self.handler.process_message(request.message, request.context)
            return response.to_dict()


def create_app(
    handler: ConversationHandler,
    config: Optional[WebhookConfig] = None,
    on_shutdown: Optional[Callable[[], Awaitable[Any]]] = None
) -> FastAPI:
    """Create the webhook FastAPI application."""
    return WebhookServer(handler, config, on_shutdown).app
