import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from pbn_builder.config import settings
from pbn_builder.api.router import api_router
from pbn_builder.clients.github import GitHubClient
from pbn_builder.clients.llm import LLMClient
from pbn_builder.clients.vercel import VercelClient
from pbn_builder.services.cleanup import CleanupService
from pbn_builder.services.pipeline import SitePipeline
from pbn_builder.services.runner import JobRunner
from pbn_builder.services.updates import ConnectionManager
from pbn_builder.storage.state import StateDB

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

# 全域資源
_state_db: StateDB | None = None
_runner: JobRunner | None = None
_connections: ConnectionManager | None = None


def get_state_db() -> StateDB:
    assert _state_db is not None
    return _state_db


def get_runner() -> JobRunner:
    assert _runner is not None
    return _runner


def get_connections() -> ConnectionManager:
    assert _connections is not None
    return _connections


@asynccontextmanager
async def lifespan(app: FastAPI):
    global _state_db, _runner, _connections

    logger.info("Starting PBN builder API...")
    _state_db = StateDB(settings.state_db_path)
    logger.info("State DB initialized: %s", settings.state_db_path)

    if not settings.github_pat:
        logger.warning("GITHUB_PAT is not set, site creation will fail")
    if not settings.vercel_token:
        logger.warning("VERCEL_TOKEN is not set, site creation will fail")

    llm = LLMClient()
    github = GitHubClient()
    vercel = VercelClient()
    _connections = ConnectionManager()
    _runner = JobRunner(
        _state_db,
        SitePipeline(llm, github, vercel),
        CleanupService(_state_db, github, vercel),
        _connections,
    )
    _runner.start()
    logger.info("Job runner started (poll every %.1fs)", settings.scheduler_poll_seconds)

    yield

    logger.info("Shutting down...")
    await _runner.stop()
    await llm.close()
    await github.close()
    await vercel.close()
    _state_db.close()


app = FastAPI(title="PBN Builder", version="0.1.0", lifespan=lifespan)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.include_router(api_router)


@app.exception_handler(RequestValidationError)
async def validation_error(request: Request, exc: RequestValidationError):
    fields = sorted({".".join(str(p) for p in err["loc"][1:]) for err in exc.errors()})
    return JSONResponse(
        status_code=400,
        content={"detail": "Missing or invalid fields", "fields": fields},
    )


@app.exception_handler(Exception)
async def server_error(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"detail": "Server error"})


@app.get("/api/v1/health")
async def health():
    return {
        "status": "ok" if _state_db else "starting",
        "running_projects": len(_state_db.running_projects()) if _state_db else 0,
    }


def run():
    import uvicorn

    uvicorn.run("pbn_builder.main:app", host=settings.host, port=settings.port)
