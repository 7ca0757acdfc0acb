import logging
import logging.config
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from pageeditor import config
from pageeditor.dependencies import create_gateway
from pageeditor.routers.blocks import router as blocks_router
from pageeditor.routers.editor import router as editor_router
from pageeditor.routers.extract import limiter, router as extract_router
from pageeditor.routers.legacy import router as legacy_router
from pageeditor.routers.realtime import router as realtime_router
from pageeditor.routers.storage import router as storage_router
from pageeditor.services.block_store import BlockStore
from pageeditor.services.editor import SessionRegistry
from pageeditor.services.storage import branding, resolve_branding

logging.config.dictConfig(
    {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "json": {
                "format": '{"time": "%(asctime)s", "level": "%(levelname)s", "logger": "%(name)s", "message": "%(message)s"}',
            },
        },
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "formatter": "json",
            },
        },
        "root": {"level": config.LOG_LEVEL, "handlers": ["console"]},
    }
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    app.state.branding = await resolve_branding(app.state.gateway)
    logger.info("Using site logo %s", app.state.branding.logo_url)
    yield
    app.state.sessions.close_all()
    logger.info("Closed all editor sessions")


app = FastAPI(
    title="Page Editor API",
    description="Block-based editing, preview and content extraction for the clinic website.",
    version="1.0.0",
    lifespan=lifespan,
)

# Rate-limiting state
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

# Backend wiring
app.state.gateway = create_gateway()
app.state.store = BlockStore(app.state.gateway)
app.state.sessions = SessionRegistry(app.state.store, app.state.gateway)
app.state.branding = branding(app.state.gateway)


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled exception for %s", request.url)
    return JSONResponse(status_code=500, content={"detail": "An unexpected error occurred."})


app.include_router(blocks_router)
app.include_router(editor_router)
app.include_router(extract_router)
app.include_router(legacy_router)
app.include_router(storage_router)
app.include_router(realtime_router)


@app.get("/", summary="Health check")
async def root() -> dict:
    return {"message": "Hello from Page Editor"}
