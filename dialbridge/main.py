"""Main FastAPI application."""
import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from dialbridge.core.config import settings
from dialbridge.core.dependencies import create_meeting_provider
from dialbridge.core.errors import CallError
from dialbridge.core.logging import setup_logging
from dialbridge.db.database import AsyncSessionLocal, engine, init_db
from dialbridge.api import auth, calls, health
from dialbridge.services.call_session.registry import SessionRegistry
from dialbridge.services.persistence.history import HistoryRecorder

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    # Startup
    setup_logging()
    await init_db()
    history = HistoryRecorder(AsyncSessionLocal)
    app.state.history = history
    app.state.registry = SessionRegistry(create_meeting_provider(), history)
    yield
    # Shutdown
    await engine.dispose()


app = FastAPI(
    title="Dialbridge",
    description="Call session orchestration: internet calls with carrier-dial fallback",
    version="0.1.0",
    lifespan=lifespan,
)


@app.exception_handler(CallError)
async def call_error_handler(request: Request, exc: CallError):
    """Map call errors to ``{"error": ...}`` bodies."""
    if exc.status_code >= 500:
        logger.error(f"[API] {request.method} {request.url.path} failed: {exc.detail}")
    else:
        logger.info(f"[API] {request.method} {request.url.path} rejected: {exc.detail}")
    return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    """Report malformed request bodies as 400."""
    errors = exc.errors()
    first = errors[0] if errors else {}
    location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    message = first.get("msg", "Invalid request")
    return JSONResponse(
        status_code=400,
        content={"error": f"{location}: {message}" if location else message},
    )


app.include_router(health.router, tags=["health"])
app.include_router(auth.router, tags=["auth"])
app.include_router(calls.router, tags=["calls"])


def run() -> None:
    """Serve the API with uvicorn."""
    import uvicorn

    uvicorn.run("dialbridge.main:app", host=settings.host, port=settings.port)
