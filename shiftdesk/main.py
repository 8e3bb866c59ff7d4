from contextlib import asynccontextmanager
import asyncio
import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from shiftdesk.core.config import get_settings
from shiftdesk.core.errors import ShiftError, TransientIOError
from shiftdesk.core.logging import configure_logging
from shiftdesk.models import profile, time_entry  # noqa: F401
from shiftdesk.routers.aggregates import router as aggregates_router
from shiftdesk.routers.auth import router as auth_router
from shiftdesk.routers.profiles import router as profiles_router
from shiftdesk.routers.time_entries import router as time_entries_router
from shiftdesk.services.change_channel import InProcessChangeChannel
from shiftdesk.services.live_sync import LiveSyncNotifier, start_live_sync_task
from shiftdesk.services.profile_store import ProfileStore
from shiftdesk.services.shift_ledger import ShiftLedger
from shiftdesk.services.shift_service import ShiftService

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging()

    task = start_live_sync_task(app.state.live_notifier, app.state.settings)
    try:
        yield
    finally:
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
            except Exception:
                # notifier crash during shutdown; already logged.
                pass


async def handle_shift_error(request: Request, exc: ShiftError):
    content = {"detail": exc.message}
    if isinstance(exc, TransientIOError):
        content["sync_failed"] = True
    return JSONResponse(status_code=exc.status_code, content=content)


def create_app(settings=None) -> FastAPI:
    settings = settings or get_settings()

    channel = InProcessChangeChannel()
    ledger = ShiftLedger(publisher=channel.publish)
    service = ShiftService(ledger, ProfileStore(), settings=settings)
    notifier = LiveSyncNotifier(
        lambda query, sort, include_idle: service.query_aggregates(query, sort, include_idle=include_idle),
        channel,
        poll_seconds=settings.live_poll_seconds,
    )

    app = FastAPI(
        title="Shiftdesk",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.change_channel = channel
    app.state.shift_service = service
    app.state.live_notifier = notifier

    app.add_exception_handler(ShiftError, handle_shift_error)

    @app.middleware("http")
    async def catch_unhandled_exceptions(request: Request, call_next):
        try:
            return await call_next(request)
        except Exception:
            logger.exception("Unhandled exception")
            return JSONResponse(status_code=500, content={"detail": "Internal Server Error"})

    app.include_router(auth_router)
    app.include_router(time_entries_router)
    app.include_router(aggregates_router)
    app.include_router(profiles_router)

    @app.get("/")
    def root():
        return {"status": "Shiftdesk running"}

    @app.get("/health")
    def health():
        return {
            "status": "ok",
            "version": "1.0.0",
        }

    return app


app = create_app()
