# Application entrypoint: configures logging, middleware, startup routines, and API routers.
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import logging
import os
import threading
import time

from .cache import MemoryTTLStore, TypingIndicator
from .config import LOG_LEVEL, SWEEP_INTERVAL_SECONDS, TYPING_MAX_ENTRIES, TYPING_TTL_SECONDS, is_sqlite
from .db import Base, engine
from .errors import ServiceError
from .routes.admin import router as admin_router
from .routes.apartments import router as apartments_router
from .routes.auth import router as auth_router
from .routes.bookings import router as bookings_router
from .routes.calendar import router as calendar_router
from .routes.chats import router as chats_router
from .routes.favorites import router as favorites_router
from .routes.reviews import router as reviews_router
from .sweepers import sweep_bookings

logger = logging.getLogger("nestrent")

if not logging.getLogger().handlers:
    logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s %(message)s")


def _start_booking_sweeper(interval_seconds: int) -> None:
    """
    Launch a daemon thread that periodically completes finished stays and expires stale requests.

    Errors are logged and the loop continues on the next interval.
    """
    def _loop() -> None:
        while True:
            try:
                sweep_bookings()
            except Exception:
                logger.exception("sweeper.failed")
            time.sleep(interval_seconds)

    t = threading.Thread(target=_loop, name="booking-sweeper", daemon=True)
    t.start()


# Parse CORS origins from a comma-separated env var.
# '*' cannot be combined with allow_credentials=True, so it maps to the dev origins.
def _parse_cors_origins(env_value: str | None) -> list[str]:
    default_dev_origins = [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ]
    if not env_value:
        return default_dev_origins
    origins = [o.strip() for o in env_value.split(",") if o.strip()]
    if "*" in origins:
        return default_dev_origins
    return origins


app = FastAPI(title="NestRent API", version="0.1.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=_parse_cors_origins(os.getenv("CORS_ORIGINS")),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Typing indicator state: bounded in-process store, shared through Redis when enabled
app.state.typing = TypingIndicator(
    ttl_seconds=TYPING_TTL_SECONDS,
    local=MemoryTTLStore(max_entries=TYPING_MAX_ENTRIES),
)


@app.exception_handler(ServiceError)
async def service_error_handler(request: Request, exc: ServiceError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("request.failed", extra={"path": request.url.path, "error": exc.detail})
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})


@app.on_event("startup")
def on_startup() -> None:
    # Local SQLite gets tables created directly; server databases rely on Alembic migrations
    if is_sqlite():
        Base.metadata.create_all(bind=engine)
    if SWEEP_INTERVAL_SECONDS > 0:
        _start_booking_sweeper(SWEEP_INTERVAL_SECONDS)


# Liveness endpoint for container orchestrators and uptime checks
@app.get("/healthz")
def healthz() -> dict:
    return {"status": "ok"}


app.include_router(auth_router, prefix="", tags=["auth"])
app.include_router(apartments_router, prefix="/api/v1", tags=["apartments"])
app.include_router(calendar_router, prefix="/api/v1", tags=["calendar"])
app.include_router(bookings_router, prefix="/api/v1", tags=["bookings"])
app.include_router(chats_router, prefix="/api/v1", tags=["chats"])
app.include_router(reviews_router, prefix="/api/v1", tags=["reviews"])
app.include_router(favorites_router, prefix="/api/v1", tags=["favorites"])
app.include_router(admin_router, prefix="/api/v1", tags=["admin"])
