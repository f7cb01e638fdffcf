"""FastAPI backend for the StackSERP generation pipeline."""

import logging
import sys
import time
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from stackserp.config import get_settings

logger = logging.getLogger(__name__)
logging.basicConfig(level=logging.INFO)

settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Optionally run the worker loop inside the API process."""
    worker = None
    if settings.stackserp_embedded_worker:
        from stackserp.jobs import get_job_store
        from stackserp.keywords import get_keyword_store
        from stackserp.pipeline import build_orchestrator
        from stackserp.worker import WorkerLoop

        worker = WorkerLoop(
            get_job_store(),
            build_orchestrator(settings),
            keywords=get_keyword_store(),
            poll_interval=settings.stackserp_poll_interval,
            stuck_after=settings.stackserp_stuck_after_seconds,
        )
        worker.start_in_thread()
        logger.info("Embedded worker started")
    yield
    if worker is not None:
        worker.stop()


app = FastAPI(
    title="StackSERP API",
    description="Keyword-to-article generation jobs: enqueue, poll, retry, cancel.",
    version="0.1.0",
    docs_url="/api/docs",
    redoc_url="/api/redoc",
    lifespan=lifespan,
)


# ---------------------------------------------------------------------------
# Basic in-memory rate limiter (per IP, 30 requests / 60 s for mutating routes)
# ---------------------------------------------------------------------------
RATE_LIMIT_WINDOW = 60  # seconds
RATE_LIMIT_MAX = 30  # max requests per window
_rate_store: dict[str, list[float]] = {}
_last_sweep = 0.0


def _sweep_rate_store(now: float) -> None:
    """Forget clients with no request inside the window; runs at most once per window."""
    global _last_sweep
    if now - _last_sweep < RATE_LIMIT_WINDOW:
        return
    _last_sweep = now
    stale = [ip for ip, hits in _rate_store.items() if not hits or now - hits[-1] >= RATE_LIMIT_WINDOW]
    for ip in stale:
        del _rate_store[ip]


@app.middleware("http")
async def rate_limit_middleware(request: Request, call_next):
    """Simple sliding-window rate limiter for non-GET routes."""
    if request.method in ("GET", "HEAD", "OPTIONS"):
        return await call_next(request)

    client_ip = request.client.host if request.client else "unknown"
    now = time.time()
    _sweep_rate_store(now)
    recent = [t for t in _rate_store.get(client_ip, ()) if now - t < RATE_LIMIT_WINDOW]
    _rate_store[client_ip] = recent
    if len(recent) >= RATE_LIMIT_MAX:
        return Response(
            content='{"detail":"Rate limit exceeded. Try again later."}',
            status_code=429,
            media_type="application/json",
        )
    recent.append(now)
    return await call_next(request)


# ---------------------------------------------------------------------------
# CORS: added LAST so it is the outermost middleware and 429 responses
# still carry CORS headers.
# ---------------------------------------------------------------------------
cors_origins = settings.cors_origin_list
cors_origin_regex = settings.cors_origin_regex
logger.info("CORS configured for origins: %s", cors_origins)
if cors_origin_regex:
    logger.info("CORS origin regex: %s", cors_origin_regex)

logger.info(
    "Storage: %s",
    "Postgres" if settings.stackserp_database_url else f"JSON files under {settings.data_dir}",
)
cors_kw: dict = {
    "allow_origins": cors_origins,
    "allow_credentials": True,
    "allow_methods": ["*"],
    "allow_headers": ["*"],
    "expose_headers": ["*"],
}
if cors_origin_regex:
    cors_kw["allow_origin_regex"] = cors_origin_regex
app.add_middleware(CORSMiddleware, **cors_kw)


# ---------------------------------------------------------------------------
# Health & root
# ---------------------------------------------------------------------------
class HealthResponse(BaseModel):
    status: str
    data_dir: str
    embedded_worker: bool


@app.get("/health", response_model=HealthResponse)
@app.get("/api/health", response_model=HealthResponse)
async def health():
    """Health check endpoint."""
    return HealthResponse(
        status="ok",
        data_dir=str(settings.data_dir),
        embedded_worker=settings.stackserp_embedded_worker,
    )


@app.get("/api/")
async def root():
    """API root."""
    return {"message": "StackSERP API", "version": "0.1.0"}


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------
from backend.routes import generate, jobs  # noqa: E402

app.include_router(generate.router, prefix="/api", tags=["generate"])
app.include_router(jobs.router, prefix="/api", tags=["jobs"])
