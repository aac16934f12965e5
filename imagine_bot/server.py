"""FastAPI application exposing the WhatsApp webhook and keep-alive endpoints."""
from __future__ import annotations

import json
import logging
import time
from contextlib import asynccontextmanager
from typing import Optional

import requests
import uvicorn
from fastapi import BackgroundTasks, FastAPI, HTTPException, Query, Request
from fastapi.responses import PlainTextResponse

from . import __version__
from .adapters.whatsapp import WhatsAppClient, parse_webhook, verify_signature, verify_subscription
from .config import Settings
from .errors import WhatsAppAPIError, WhatsAppAuthError
from .telemetry import TelemetryCollector, get_telemetry, set_telemetry
from .whatsapp_bot import MessageDispatcher, build_dispatcher

logger = logging.getLogger(__name__)


def check_connection(client: WhatsAppClient) -> bool:
    """Confirm the Cloud API credentials at startup.

    A rejected token is fatal, since nothing can be delivered. Transient
    failures are logged and startup continues.
    """

    try:
        profile = client.verify_credentials()
    except WhatsAppAuthError:
        logger.error("WhatsApp rejected the access token; refusing to start")
        raise
    except (WhatsAppAPIError, requests.RequestException) as exc:
        logger.warning("Could not verify WhatsApp credentials: %s", exc)
        get_telemetry().track_system_event("whatsapp_check_failed", {"error": str(exc)})
        return False
    name = profile.get("verified_name") or profile.get("display_phone_number") or "unknown"
    logger.info("✅ Connected to WhatsApp as %s", name)
    get_telemetry().track_system_event("whatsapp_connected", {"name": name})
    return True


def create_app(dispatcher: MessageDispatcher, settings: Settings) -> FastAPI:
    started_at = time.time()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Web Server listening on port %s", settings.port)
        yield
        get_telemetry().flush()

    app = FastAPI(title="Imagine Bot", version=__version__, lifespan=lifespan)

    @app.get("/keep-awake", response_class=PlainTextResponse)
    def keep_awake() -> str:
        return "Bot is Awake!"

    @app.get("/health")
    def health() -> dict:
        return {
            "status": "ok",
            "uptime_seconds": round(time.time() - started_at, 1),
            "whatsapp_configured": settings.whatsapp.configured,
            "image_mode": "mock" if settings.image.mock_mode else "live",
        }

    @app.get("/webhook", response_class=PlainTextResponse)
    def subscribe(
        mode: Optional[str] = Query(None, alias="hub.mode"),
        token: Optional[str] = Query(None, alias="hub.verify_token"),
        challenge: Optional[str] = Query(None, alias="hub.challenge"),
    ) -> str:
        echoed = verify_subscription(mode, token, challenge, settings.whatsapp.verify_token)
        if echoed is None:
            logger.warning("Rejected webhook subscription attempt (mode=%s)", mode)
            raise HTTPException(status_code=403, detail="verification failed")
        logger.info("Webhook subscription verified")
        return echoed

    @app.post("/webhook")
    async def receive(request: Request, background_tasks: BackgroundTasks) -> dict:
        body = await request.body()
        if settings.whatsapp.app_secret:
            signature = request.headers.get("X-Hub-Signature-256")
            if not verify_signature(body, signature, settings.whatsapp.app_secret):
                logger.warning("Rejected webhook delivery with bad signature")
                raise HTTPException(status_code=403, detail="invalid signature")
        try:
            payload = json.loads(body or b"{}")
        except ValueError as exc:
            raise HTTPException(status_code=400, detail="invalid JSON body") from exc

        messages = parse_webhook(payload)
        for message in messages:
            background_tasks.add_task(dispatcher.handle, message)
        return {"status": "ok", "messages": len(messages)}

    @app.get("/stats")
    def stats() -> dict:
        return get_telemetry().generate_report()

    return app


def main() -> None:
    settings = Settings.from_env()
    logging.basicConfig(level=settings.log_level)
    for issue in settings.validate():
        logger.warning(issue)

    set_telemetry(TelemetryCollector(settings.telemetry_db))
    whatsapp = WhatsAppClient(settings.whatsapp)
    dispatcher = build_dispatcher(settings, whatsapp=whatsapp)
    if settings.whatsapp.configured:
        check_connection(whatsapp)

    app = create_app(dispatcher, settings)
    try:
        uvicorn.run(app, host="0.0.0.0", port=settings.port, log_level=settings.log_level.lower())
    finally:
        whatsapp.close()


__all__ = ["create_app", "check_connection", "main"]


if __name__ == "__main__":
    main()
