import logging
from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI, Request

from .api.router import api_router
from .core.config import Settings, get_settings
from .core.logging_config import configure_logging
from .db.session import create_engine_from_settings, create_session_factory
from .features.media import BlobStorage, FingerprintStore, MediaIngestor, ProviderCredentials
from .features.messaging import LoggingMessagingClient, MessagingClient, TwilioMessagingClient
from .features.reminders import ReminderScheduler, TimeExpressionParser

logger = logging.getLogger(__name__)

settings = get_settings()

_TWILIO_MEDIA_HOST = "twilio.com"


def build_messaging_client(config: Settings, client: httpx.AsyncClient) -> MessagingClient:
    if not config.twilio_configured:
        logger.warning("Twilio credentials are not configured; reminders will only be logged.")
        return LoggingMessagingClient()
    return TwilioMessagingClient(
        client,
        account_sid=config.twilio_account_sid,
        auth_token=config.twilio_auth_token,
        from_number=config.twilio_whatsapp_number,
        api_base_url=config.twilio_api_base_url,
    )


def build_media_credentials(config: Settings) -> ProviderCredentials | None:
    if not (config.twilio_account_sid and config.twilio_auth_token):
        return None
    return ProviderCredentials(
        host_suffix=_TWILIO_MEDIA_HOST,
        username=config.twilio_account_sid,
        password=config.twilio_auth_token,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging()
    engine = create_engine_from_settings(settings)
    session_factory = create_session_factory(engine)
    http_client = httpx.AsyncClient(
        timeout=settings.media_fetch_timeout_seconds,
        follow_redirects=True,
    )

    fingerprint_store = FingerprintStore(BlobStorage(settings.media_storage_dir))
    scheduler = ReminderScheduler(
        session_factory,
        build_messaging_client(settings, http_client),
        TimeExpressionParser(default_hour=settings.reminder_default_hour),
        poll_interval_seconds=settings.reminder_poll_interval_seconds,
        default_timezone=settings.default_timezone,
    )

    app.state.session_factory = session_factory
    app.state.http_client = http_client
    app.state.fingerprint_store = fingerprint_store
    app.state.media_ingestor = MediaIngestor(
        fingerprint_store,
        http_client,
        max_size_bytes=settings.media_max_size_bytes,
        credentials=build_media_credentials(settings),
    )
    app.state.reminder_scheduler = scheduler

    if settings.reminder_scheduler_enabled:
        scheduler.start()
    else:
        logger.info("Reminder scheduler disabled by configuration.")
    try:
        yield
    finally:
        await scheduler.stop()
        await http_client.aclose()
        await engine.dispose()


app = FastAPI(title="Memobot API", docs_url="/api/docs", lifespan=lifespan)
app.include_router(api_router)


@app.get("/")
async def read_root() -> dict:
    return {"status": "ok", "service": "memobot"}


@app.get("/health")
async def health_check(request: Request) -> dict:
    checks: dict[str, object] = {}
    store = getattr(request.app.state, "fingerprint_store", None)
    if store is not None:
        checks["storage"] = store.health_check()
    scheduler = getattr(request.app.state, "reminder_scheduler", None)
    if scheduler is not None:
        checks["scheduler"] = scheduler.health_check()

    storage_ok = checks.get("storage", {}).get("status", "healthy") == "healthy"
    scheduler_ok = not settings.reminder_scheduler_enabled or bool(
        checks.get("scheduler", {}).get("running", True)
    )
    return {"healthy": storage_ok and scheduler_ok, "checks": checks}
