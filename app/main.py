import asyncio
import os

from fastapi import Depends, FastAPI
from sqlalchemy import text
from sqlalchemy.orm import Session

from app.config import ConfigurationError, settings
from app.database import SessionLocal, get_db, init_db
from app.logging_config import get_logger, setup_logging
from app.routers import admin, message, webhook
from app.services.conversation_store import SqlConversationStore
from app.services.notification_service import SendGridNotifier, process_pending_submissions

setup_logging(settings.log_level)

app = FastAPI(
    title="Life Forecast Bot API",
    description="WhatsApp consultation bot with human payment review",
    version="0.1.0",
)

app.include_router(message.router)
app.include_router(webhook.router)
app.include_router(admin.router)

notify_logger = get_logger("notify_worker")
_notify_worker_task: asyncio.Task | None = None


def _is_notify_worker_enabled() -> bool:
    if os.environ.get("PYTEST_CURRENT_TEST"):
        return False
    return settings.notify_worker_enabled


def _run_notify_batch() -> dict:
    try:
        notifier = SendGridNotifier.from_settings(settings)
    except ConfigurationError as e:
        return {"skipped": str(e)}

    db = SessionLocal()
    try:
        return process_pending_submissions(
            SqlConversationStore(db),
            notifier,
            max_attempts=settings.notify_max_attempts,
            dashboard_url=settings.dashboard_base_url,
        )
    finally:
        db.close()


async def _notify_worker_loop() -> None:
    interval_seconds = max(settings.notify_worker_interval_seconds, 1.0)
    while True:
        try:
            await asyncio.sleep(interval_seconds)
            results = await asyncio.to_thread(_run_notify_batch)
            if results.get("processed"):
                notify_logger.info("Notification worker processed", extra={"context": results})
        except asyncio.CancelledError:
            break
        except Exception as exc:
            notify_logger.error(
                "Notification worker loop failed",
                extra={"context": {"error": str(exc)}},
            )


@app.on_event("startup")
async def on_startup() -> None:
    global _notify_worker_task
    if settings.create_tables:
        init_db()
    if not _is_notify_worker_enabled():
        return
    if _notify_worker_task is None or _notify_worker_task.done():
        _notify_worker_task = asyncio.create_task(_notify_worker_loop())
        notify_logger.info("Notification worker started")


@app.on_event("shutdown")
async def stop_notify_worker() -> None:
    global _notify_worker_task
    if _notify_worker_task is None:
        return
    _notify_worker_task.cancel()
    try:
        await _notify_worker_task
    except asyncio.CancelledError:
        pass
    _notify_worker_task = None


@app.get("/health")
async def health():
    return {"status": "ok"}


@app.get("/db-check")
def db_check(db: Session = Depends(get_db)):
    db.execute(text("SELECT 1"))
    return {"status": "ok"}
