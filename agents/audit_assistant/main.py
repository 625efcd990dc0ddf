"""
Audit Assistant - Main Entry Point

Wires the query pipeline from settings and serves it through the webhook
channel:

- ``AuditApiClient`` / ``AuditService``: remote audit log and user directory
- analyzers: security events, user activity, anomalies
- ``RequestRouter`` and ``ConversationHandler``: NLP and workflow dispatch
- ``WebhookServer``: FastAPI app served by uvicorn

Run with ``python -m agents.audit_assistant.main``.
"""

import argparse
import asyncio
from dataclasses import dataclass
from typing import Optional

import uvicorn
from fastapi import FastAPI

from shared.config.logging_config import get_component_logger, setup_logging
from shared.config.settings import Settings, get_settings
from shared.schemas.event_catalog import DEFAULT_EVENT_CATALOG, EventCatalog

from .api.client import AuditApiClient
from .api.service import AuditService
from .integration.conversation_handler import ConversationHandler
from .integration.request_router import RequestRouter
from .integration.webhook import create_app


@dataclass
class AuditAssistant:
    """The assembled pipeline and the resources it owns."""
    settings: Settings
    client: AuditApiClient
    service: AuditService
    router: RequestRouter
    handler: ConversationHandler

    async def close(self) -> None:
        await self.client.close()


def create_assistant(settings: Settings, catalog: EventCatalog = DEFAULT_EVENT_CATALOG) -> AuditAssistant:
    """Build every component from one ``Settings`` instance."""
    logger = get_component_logger("audit_assistant")

    client = AuditApiClient(settings.api_key, config=settings.api, logger=logger.child("api.client"))
    service = AuditService(
        client,
        org_id=settings.org_id,
        group_id=settings.SNYK_GROUP_ID,
        audit_config=settings.audit,
        cache_settings=settings.cache,
        catalog=catalog,
        logger=logger.child("api.service")
    )
    router = RequestRouter(
        service,
        audit_config=settings.audit,
        catalog=catalog,
        logger=logger.child("router")
    )
    handler = ConversationHandler(
        router,
        nlp_config=settings.nlp,
        cache_settings=settings.cache,
        logger=logger.child("conversation")
    )

    return AuditAssistant(settings=settings, client=client, service=service, router=router, handler=handler)


def create_webhook_app(settings: Optional[Settings] = None) -> FastAPI:
    """FastAPI app for the webhook channel, built from settings."""
    settings = settings or get_settings()
    assistant = create_assistant(settings)
    return create_app(assistant.handler, settings.webhook, on_shutdown=assistant.close)


async def run_server(host: Optional[str] = None, port: Optional[int] = None) -> None:
    """Run the webhook server until interrupted."""
    settings = get_settings()
    setup_logging(settings.logging)

    app = create_webhook_app(settings)
    config = uvicorn.Config(
        app,
        host=host or settings.webhook.host,
        port=port or settings.webhook.port,
        log_level="debug" if settings.debug else "info",
        access_log=True
    )
    await uvicorn.Server(config).serve()


def main() -> None:
    parser = argparse.ArgumentParser(description="Audit log assistant webhook server")
    parser.add_argument("--host", default=None, help="Host to bind to")
    parser.add_argument("--port", type=int, default=None, help="Port to bind to")
    args = parser.parse_args()

    asyncio.run(run_server(args.host, args.port))


if __name__ == "__main__":
    main()
