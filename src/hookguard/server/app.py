"""aiohttp webhook receiver.

Routes:
- POST /webhooks        signed webhook delivery
- GET  /webhooks        endpoint status
- GET  /health          liveness
- GET  /stats           WebhookMonitor summary (admin)
- POST /stats/reset     clear WebhookMonitor state (admin)
- GET  /metrics         Prometheus exposition (admin)

Responses to webhook senders never include error details. Signature and
payload problems answer 4xx so that the provider does not retry them;
processing failures answer 500 so that it does.
"""

from __future__ import annotations

import base64
import secrets
from typing import Any

import structlog
from aiohttp import web

from hookguard.core.config import HookguardConfig, get_config
from hookguard.errors import (
    ExhaustedRetriesError,
    MalformedPayloadError,
    SignatureError,
)
from hookguard.observability.metrics import generate_metrics, get_content_type
from hookguard.observability.monitor import WebhookMonitor
from hookguard.webhooks.dedup import DeduplicationCache
from hookguard.webhooks.pipeline import EventHandler, WebhookEvent, WebhookPipeline
from hookguard.webhooks.retry import RetryExecutor
from hookguard.webhooks.verifier import SignatureVerifier

logger = structlog.get_logger()

PIPELINE_KEY = web.AppKey("pipeline", WebhookPipeline)
HANDLER_KEY = web.AppKey("handler", object)
CONFIG_KEY = web.AppKey("config", HookguardConfig)


def build_pipeline(
    config: HookguardConfig | None = None,
    monitor: WebhookMonitor | None = None,
) -> WebhookPipeline[Any]:
    """Wire a pipeline from configuration.

    Raises:
        ValueError: No webhook secret is configured.
    """
    config = config or get_config()
    verifier_cfg = config.verifier
    dedup_cfg = config.dedup

    if not verifier_cfg.webhook_secret:
        raise ValueError("HOOKGUARD_WEBHOOK_SECRET is not configured")

    return WebhookPipeline(
        verifier=SignatureVerifier(
            secret=verifier_cfg.webhook_secret,
            tolerance=verifier_cfg.tolerance_seconds,
            algorithm=verifier_cfg.algorithm,
        ),
        cache=DeduplicationCache(
            ttl=dedup_cfg.dedup_ttl_seconds,
            max_entries=dedup_cfg.dedup_max_entries,
            sweep_interval=dedup_cfg.dedup_sweep_interval,
        ),
        executor=RetryExecutor(policy=config.retry.to_policy()),
        monitor=monitor or WebhookMonitor(),
        processing_timeout=config.server.processing_timeout,
    )


async def log_event_handler(event: WebhookEvent) -> dict[str, Any]:
    """Default handler: acknowledge the event without side effects."""
    logger.info("Webhook event received", event_id=event.id, event_type=event.type)
    return {"event_id": event.id, "acknowledged": True}


def _check_admin_auth(request: web.Request) -> web.Response | None:
    """Check HTTP Basic credentials for admin endpoints.

    Returns None when authorized or when no admin credentials are configured.
    """
    server_cfg = request.app[CONFIG_KEY].server
    admin_user = server_cfg.admin_user
    admin_pass = server_cfg.admin_password

    if not (admin_user and admin_pass):
        return None

    unauthorized = web.Response(
        text="Unauthorized",
        status=401,
        headers={"WWW-Authenticate": 'Basic realm="Hookguard Admin"'},
    )

    auth_header = request.headers.get("Authorization", "")
    if not auth_header.startswith("Basic "):
        return unauthorized

    try:
        decoded = base64.b64decode(auth_header[6:], validate=True).decode("utf-8")
        username, password = decoded.split(":", 1)
    except (ValueError, UnicodeDecodeError):
        return unauthorized

    if secrets.compare_digest(username, admin_user) and secrets.compare_digest(
        password, admin_pass
    ):
        return None
    return unauthorized


async def handle_webhook(request: web.Request) -> web.Response:
    """Receive one signed webhook delivery."""
    pipeline = request.app[PIPELINE_KEY]
    handler: EventHandler[Any] = request.app[HANDLER_KEY]  # type: ignore[assignment]
    header_name = request.app[CONFIG_KEY].verifier.signature_header

    body = await request.read()
    signature = request.headers.get(header_name)

    try:
        outcome = await pipeline.process(body, signature, handler)
    except SignatureError as e:
        return web.json_response({"status": "unauthorized"}, status=e.status_code)
    except MalformedPayloadError as e:
        logger.warning("Rejected malformed webhook payload", error=str(e))
        return web.json_response({"status": "invalid_payload"}, status=e.status_code)
    except ExhaustedRetriesError as e:
        logger.error(
            "Webhook processing failed",
            event_type=e.context.event_type,
            event_id=e.context.event_id,
            attempts=e.attempts,
            error=str(e),
        )
        return web.json_response({"status": "error"}, status=e.status_code)

    return web.json_response(
        {
            "status": outcome.status,
            "event_id": outcome.event.id,
            "event_type": outcome.event.type,
        }
    )


async def handle_webhook_status(request: web.Request) -> web.Response:
    return web.json_response({"message": "Webhook endpoint", "status": "active"})


async def handle_health(request: web.Request) -> web.Response:
    """Health check endpoint. Returns status only."""
    return web.json_response({"status": "healthy"})


async def handle_stats(request: web.Request) -> web.Response:
    """Monitor summary - requires admin auth when configured."""
    if auth_error := _check_admin_auth(request):
        return auth_error

    pipeline = request.app[PIPELINE_KEY]
    summary = pipeline.monitor.get_metrics()
    data = summary.to_dict()  # type: ignore[union-attr]
    data["dedup_entries"] = len(pipeline.cache)
    return web.json_response(data)


async def handle_stats_reset(request: web.Request) -> web.Response:
    if auth_error := _check_admin_auth(request):
        return auth_error

    request.app[PIPELINE_KEY].monitor.reset_metrics()
    return web.json_response({"status": "reset"})


async def handle_metrics(request: web.Request) -> web.Response:
    """Prometheus metrics endpoint - requires admin auth when configured."""
    if auth_error := _check_admin_auth(request):
        return auth_error

    return web.Response(body=generate_metrics(), headers={"Content-Type": get_content_type()})


async def _start_background_tasks(app: web.Application) -> None:
    await app[PIPELINE_KEY].cache.start()


async def _stop_background_tasks(app: web.Application) -> None:
    await app[PIPELINE_KEY].cache.stop()


def create_app(
    pipeline: WebhookPipeline[Any] | None = None,
    handler: EventHandler[Any] = log_event_handler,
    config: HookguardConfig | None = None,
) -> web.Application:
    """Create the receiver application.

    Args:
        pipeline: Pre-built pipeline; built from ``config`` when omitted.
        handler: Business callback invoked once per new event.
        config: Settings; defaults to ``get_config()``.
    """
    config = config or get_config()
    if pipeline is None:
        pipeline = build_pipeline(config)

    app = web.Application(client_max_size=config.server.max_body_size)
    app[CONFIG_KEY] = config
    app[PIPELINE_KEY] = pipeline
    app[HANDLER_KEY] = handler

    app.router.add_post("/webhooks", handle_webhook)
    app.router.add_get("/webhooks", handle_webhook_status)
    app.router.add_get("/health", handle_health)
    app.router.add_get("/stats", handle_stats)
    app.router.add_post("/stats/reset", handle_stats_reset)
    app.router.add_get("/metrics", handle_metrics)

    app.on_startup.append(_start_background_tasks)
    app.on_cleanup.append(_stop_background_tasks)
    return app


def parse_bind(bind: str) -> tuple[str, int]:
    """Split ``host:port``; a bare port binds all interfaces."""
    host, sep, port = bind.rpartition(":")
    if not sep:
        return "0.0.0.0", int(bind)
    return host or "0.0.0.0", int(port)


def run_server(
    config: HookguardConfig | None = None,
    handler: EventHandler[Any] = log_event_handler,
) -> None:
    """Run the receiver until interrupted."""
    config = config or get_config()
    host, port = parse_bind(config.server.bind)
    app = create_app(handler=handler, config=config)
    logger.info("Starting webhook receiver", host=host, port=port)
    web.run_app(app, host=host, port=port, print=None)
