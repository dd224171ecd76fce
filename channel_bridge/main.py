import asyncio
import os

from fastapi import FastAPI

from channel_bridge.config import settings
from channel_bridge.logging_config import get_logger, setup_logging
from channel_bridge.routers import chatwoot_webhook, delivery, handoff, meta_webhook
from channel_bridge.services.container import build_services

setup_logging(settings.log_level)

app = FastAPI(
    title="Channel Bridge",
    description="Reliability bridge between a WhatsApp Business channel and a Chatwoot monitoring inbox",
    version="0.1.0",
)

app.include_router(meta_webhook.router)
app.include_router(chatwoot_webhook.router)
app.include_router(delivery.router)
app.include_router(handoff.router)

maintenance_logger = get_logger("maintenance")
_maintenance_task: asyncio.Task | None = None


def _is_env_enabled(value: str | None, default: bool = True) -> bool:
    if value is None:
        return default
    return value.strip().lower() not in {"0", "false", "no", "off"}


def _is_maintenance_enabled() -> bool:
    if os.environ.get("PYTEST_CURRENT_TEST"):
        return False
    return settings.maintenance_enabled and _is_env_enabled(os.environ.get("MAINTENANCE_WORKER_ENABLED"))


async def _maintenance_loop() -> None:
    interval_seconds = max(settings.maintenance_interval_seconds, 1.0)
    while True:
        try:
            await asyncio.sleep(interval_seconds)
            services = getattr(app.state, "services", None)
            if services is None:
                continue
            removed = services.run_maintenance()
            if any(removed.values()):
                maintenance_logger.info("Maintenance sweep", extra={"context": removed})
        except asyncio.CancelledError:
            break
        except Exception as exc:
            maintenance_logger.error(
                "Maintenance loop failed",
                extra={"context": {"error": str(exc)}},
            )


@app.on_event("startup")
async def start_services() -> None:
    global _maintenance_task
    if getattr(app.state, "services", None) is None:
        app.state.services = build_services(settings)
    if not _is_maintenance_enabled():
        return
    if _maintenance_task is None or _maintenance_task.done():
        _maintenance_task = asyncio.create_task(_maintenance_loop())
        maintenance_logger.info("Maintenance worker started")


@app.on_event("shutdown")
async def stop_services() -> None:
    global _maintenance_task
    if _maintenance_task is not None:
        _maintenance_task.cancel()
        try:
            await _maintenance_task
        except asyncio.CancelledError:
            pass
        _maintenance_task = None

    services = getattr(app.state, "services", None)
    if services is not None:
        await services.aclose()
        app.state.services = None


@app.get("/health")
async def health():
    return {"status": "ok"}
