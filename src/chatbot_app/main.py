import logging
import secrets
from contextlib import asynccontextmanager
from typing import Any, Optional

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from fastapi.security import APIKeyHeader
from pydantic import BaseModel

from review_library.client_factory import get_available_providers
from review_library.failure_logger import configure_failure_logger
from review_library.key_pool import sanitize_pool_name
from review_library.key_rotator import (
    InMemoryRotationStore,
    JsonRotationStore,
    KeyRotator,
)

from chatbot_app.db import open_rotation_database
from chatbot_app.orchestrator import STAGES, ReviewOrchestrator
from chatbot_app.query_expander import QueryExpander
from chatbot_app.rotation_store import SqlRotationStore, prune_failover_events
from chatbot_app.settings import (
    EnvConfigProvider,
    get_data_dir,
    get_debug_enabled,
    get_request_timeout,
    get_rotation_backend,
    get_rotation_state_path,
    get_service_api_key,
    get_site_settings,
)

logger = logging.getLogger(__name__)


async def _build_rotation_store(app: FastAPI):
    backend = get_rotation_backend()
    if backend == "sql":
        engine, session_maker = await open_rotation_database()
        app.state.db_engine = engine
        await prune_failover_events(session_maker)
        return SqlRotationStore(session_maker)
    if backend == "memory":
        return InMemoryRotationStore()
    return JsonRotationStore(get_rotation_state_path())


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build the orchestrator and its rotation store for the app's lifetime."""
    app.state.service_api_key = get_service_api_key()
    app.state.db_engine = None

    debug = get_debug_enabled()
    if debug:
        configure_failure_logger(get_data_dir() / "logs")

    site = get_site_settings()
    rotator = KeyRotator(store=await _build_rotation_store(app), debug=debug)
    orchestrator = ReviewOrchestrator(
        EnvConfigProvider(),
        rotator=rotator,
        client_options={
            "timeout": get_request_timeout(),
            "debug": debug,
            "site_url": site.url,
            "site_name": site.name,
        },
    )
    app.state.orchestrator = orchestrator
    app.state.query_expander = QueryExpander(orchestrator)
    logger.info("Review service started (rotation backend: %s)", get_rotation_backend())
    yield
    await orchestrator.aclose()
    if app.state.db_engine is not None:
        await app.state.db_engine.dispose()
    logger.info("Review service stopped.")


app = FastAPI(lifespan=lifespan)
api_key_header = APIKeyHeader(name="Authorization", auto_error=False)


def get_orchestrator(request: Request) -> ReviewOrchestrator:
    """Dependency to get the review orchestrator from the app state."""
    return request.app.state.orchestrator


def get_query_expander(request: Request) -> QueryExpander:
    return request.app.state.query_expander


async def verify_api_key(request: Request, auth: Optional[str] = Depends(api_key_header)):
    """Dependency to verify the service API key."""
    expected = f"Bearer {request.app.state.service_api_key}"
    if not auth or not secrets.compare_digest(auth, expected):
        raise HTTPException(status_code=401, detail="Invalid or missing API Key")
    return auth


class ReviewRequestBody(BaseModel):
    question: str
    answer: str = ""
    stage: str = "default"


class ExpandQueryRequestBody(BaseModel):
    message: str
    history: list[dict[str, Any]] = []


@app.get("/")
def read_root():
    return {"Status": "Review service is running"}


@app.post("/v1/review")
async def review(
    body: ReviewRequestBody,
    orchestrator: ReviewOrchestrator = Depends(get_orchestrator),
    _=Depends(verify_api_key),
):
    """
    Run the stage's second-stage review over a question/answer pair.

    Failures return the fixed user-safe message with the classified status.
    """
    if body.stage not in STAGES:
        raise HTTPException(status_code=400, detail=f"Unknown stage: {body.stage}")

    outcome = await orchestrator.review_answer(body.question, body.answer, stage=body.stage)
    if not outcome.ok:
        return JSONResponse(
            status_code=outcome.status,
            content={
                "success": False,
                "code": outcome.error.code,
                "message": outcome.error.message,
            },
        )
    return {
        "success": True,
        "answer": outcome.answer,
        "provider": outcome.provider,
        "reviewed": outcome.reviewed,
    }


@app.post("/v1/query/expand")
async def expand_query(
    body: ExpandQueryRequestBody,
    expander: QueryExpander = Depends(get_query_expander),
    _=Depends(verify_api_key),
):
    """Turn a chat message into a standalone search query."""
    return {"query": await expander.expand(body.message, body.history)}


@app.get("/v1/providers")
async def list_providers(_=Depends(verify_api_key)):
    """
    Returns a list of all available providers.
    """
    return get_available_providers()


@app.get("/v1/rotation/{pool_name}")
async def rotation_state(
    pool_name: str,
    orchestrator: ReviewOrchestrator = Depends(get_orchestrator),
    _=Depends(verify_api_key),
):
    pool = sanitize_pool_name(pool_name)
    return {
        "pool": pool,
        "index": await orchestrator.rotator.get_current_index(pool),
        "recent_failovers": [
            {
                "failed_index": event.failed_index,
                "status": event.status,
                "key_count": event.key_count,
                "timestamp": event.timestamp,
            }
            for event in await orchestrator.rotator.failover_history(pool)
        ],
    }
