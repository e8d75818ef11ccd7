"""
Core API backend for threadwise.

This module exposes the agent loop over HTTP:
- **GET /health**                - liveness probe for health checks.
- **POST /thread**               - start a thread with {"message": "..."} and run one loop pass.
- **POST /thread/stream**        - same, relaying every loop event as server-sent events.
- **GET /thread/{id}**           - current state of a thread.
- **POST /thread/{id}/response** - answer a clarification request and run one more loop pass.

The oracle, tool registry, thread store and result cache live on ``app.state`` so tests and other
deployments can inject their own (see :func:`create_app`).
"""

import asyncio
import contextlib
import json
import logging
from typing import (
    Any,
    AsyncIterator,
    Dict,
)

from fastapi import (
    APIRouter,
    Depends,
    FastAPI,
    HTTPException,
    Request,
)
from fastapi.middleware.cors import CORSMiddleware
from sse_starlette.sse import EventSourceResponse

from threadwise.agent.agent_loop import (
    agent_loop,
    agent_loop_stream,
)
from threadwise.agent.oracle import (
    BaseOracle,
    load_oracle,
)
from threadwise.api.models import (
    MessageRequest,
    ThreadResponse,
)
from threadwise.common import (
    AnsiColors,
    colored_print,
)
from threadwise.config import settings
from threadwise.core.errors import (
    IterationLimitError,
    OracleError,
)
from threadwise.core.events import (
    CompleteEvent,
    LoopDone,
)
from threadwise.core.schema import (
    HUMAN_RESPONSE,
    REQUEST_MORE_INFORMATION,
    USER_INPUT,
    NextStep,
)
from threadwise.core.thread import Thread
from threadwise.memory.result_cache import ResultCache
from threadwise.memory.thread_store import (
    InMemoryThreadStore,
    ThreadStore,
)
from threadwise.tools import ToolRegistry
from threadwise.tools.defaults import default_registry

logger = logging.getLogger(__name__)

router = APIRouter()


# ---------------------------------------------------------------------------
# Helper functions
# ---------------------------------------------------------------------------
def get_oracle(request: Request) -> BaseOracle:
    """Return the app's oracle, loading the configured one on first use."""
    state = request.app.state
    if state.oracle is None:
        state.oracle = load_oracle(tool_schemas=state.registry.schemas())
    return state.oracle


def get_registry(request: Request) -> ToolRegistry:
    """Return the app's tool registry."""
    return request.app.state.registry


def get_store(request: Request) -> ThreadStore:
    """Return the app's thread store."""
    return request.app.state.store


def response_url(thread_id: str) -> str:
    """Where the human answers a clarification request for *thread_id*."""
    return f"/thread/{thread_id}/response"


def needs_human(thread: Thread) -> bool:
    """True when the last event asks the human for more information."""
    last = thread.last_event
    return (
        last is not None
        and isinstance(last.data, NextStep)
        and last.data.intent == REQUEST_MORE_INFORMATION
    )


def thread_response(thread_id: str, thread: Thread) -> ThreadResponse:
    """Build the API view of *thread*."""
    return ThreadResponse(
        thread_id=thread_id,
        events=thread.events,
        response_url=response_url(thread_id) if needs_human(thread) else None,
    )


async def run_pass(thread: Thread, oracle: BaseOracle, registry: ToolRegistry) -> Thread:
    """Run one blocking loop pass, mapping oracle failures to HTTP errors."""
    try:
        return await agent_loop(thread, oracle, registry)
    except OracleError as exc:
        logger.error("Oracle failure: %s", exc)
        raise HTTPException(status_code=502, detail=str(exc)) from exc
    except IterationLimitError as exc:
        logger.error("Loop limit reached: %s", exc)
        raise HTTPException(status_code=500, detail=str(exc)) from exc


def _sse(payload: Dict[str, Any]) -> Dict[str, str]:
    return {"data": json.dumps(payload)}


async def relay_stream(
    thread_id: str,
    thread: Thread,
    oracle: BaseOracle,
    registry: ToolRegistry,
    store: ThreadStore,
) -> AsyncIterator[Dict[str, str]]:
    """
    Turn one streaming loop pass into server-sent event payloads.

    The first event announces the thread id and the last one is always ``{"type": "done"}``.
    The store is updated once the pass finishes.
    """
    yield _sse({"type": "thread_created", "thread_id": thread_id})
    try:
        async for item in agent_loop_stream(thread, oracle, registry):
            if isinstance(item, LoopDone):
                store.update(thread_id, item.thread)
                continue
            payload = item.model_dump(mode="json")
            if isinstance(item, CompleteEvent) and item.data.intent == REQUEST_MORE_INFORMATION:
                payload["response_url"] = response_url(thread_id)
            yield _sse(payload)
    except (OracleError, IterationLimitError) as exc:
        logger.error("Streaming pass failed for thread %s: %s", thread_id, exc)
        store.update(thread_id, thread)
        yield _sse({"type": "error", "error": str(exc)})
    yield _sse({"type": "done"})


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------
@router.get("/health", summary="Health check")
async def health() -> dict[str, str]:
    """Return a simple liveness payload."""
    return {"status": "ok"}


@router.post("/thread", response_model=ThreadResponse, summary="Start a thread")
async def create_thread(
    req: MessageRequest,
    oracle: BaseOracle = Depends(get_oracle),
    registry: ToolRegistry = Depends(get_registry),
    store: ThreadStore = Depends(get_store),
) -> ThreadResponse:
    """Create a thread from the user's message and run the agent until it needs the human."""
    thread = Thread()
    thread.append(USER_INPUT, req.message)
    thread_id = store.create(thread)

    result = await run_pass(thread, oracle, registry)
    store.update(thread_id, result)
    return thread_response(thread_id, result)


@router.post("/thread/stream", summary="Start a thread, streaming progress")
async def stream_thread(
    req: MessageRequest,
    oracle: BaseOracle = Depends(get_oracle),
    registry: ToolRegistry = Depends(get_registry),
    store: ThreadStore = Depends(get_store),
) -> EventSourceResponse:
    """Same as ``POST /thread`` but relays every loop event as it happens."""
    thread = Thread()
    thread.append(USER_INPUT, req.message)
    thread_id = store.create(thread)
    return EventSourceResponse(relay_stream(thread_id, thread, oracle, registry, store))


@router.get("/thread/{thread_id}", response_model=ThreadResponse, summary="Get a thread")
async def get_thread(thread_id: str, store: ThreadStore = Depends(get_store)) -> ThreadResponse:
    """Return the current state of a thread."""
    thread = store.get(thread_id)
    if thread is None:
        raise HTTPException(status_code=404, detail="Thread not found")
    return thread_response(thread_id, thread)


@router.post(
    "/thread/{thread_id}/response",
    response_model=ThreadResponse,
    summary="Answer a clarification request",
)
async def respond_to_thread(
    thread_id: str,
    req: MessageRequest,
    oracle: BaseOracle = Depends(get_oracle),
    registry: ToolRegistry = Depends(get_registry),
    store: ThreadStore = Depends(get_store),
) -> ThreadResponse:
    """Append the human's answer and run the agent again."""
    thread = store.get(thread_id)
    if thread is None:
        raise HTTPException(status_code=404, detail="Thread not found")

    thread.append(HUMAN_RESPONSE, req.message)
    result = await run_pass(thread, oracle, registry)
    store.update(thread_id, result)
    return thread_response(thread_id, result)


# ---------------------------------------------------------------------------
# Application factory
# ---------------------------------------------------------------------------
def create_app(
    oracle: BaseOracle | None = None,
    registry: ToolRegistry | None = None,
    store: ThreadStore | None = None,
    cache: ResultCache | None = None,
) -> FastAPI:
    """
    Build the FastAPI application.

    Anything not given is created from settings; the oracle is only loaded on the first request
    that needs it.
    """
    cache = cache or ResultCache(ttl=settings.CACHE_TTL_SECONDS)

    @contextlib.asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        sweeper = asyncio.create_task(cache.run_sweeper(settings.CACHE_SWEEP_INTERVAL))
        try:
            yield
        finally:
            sweeper.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await sweeper

    app = FastAPI(
        title="threadwise API",
        version="0.1.0",
        description="Agent loop over an append-only event thread",
        lifespan=lifespan,
    )
    app.state.cache = cache
    app.state.registry = registry or default_registry(cache)
    app.state.store = store or InMemoryThreadStore()
    app.state.oracle = oracle

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.include_router(router)
    return app


app = create_app()


# ---------------------------------------------------------------------------
# Public helper to launch the API (imported by main.py)
# ---------------------------------------------------------------------------
def run_api(
    host: str = "0.0.0.0", port: int = 8000, reload: bool = False, log_level: str | None = None
) -> None:
    """Start a uvicorn server hosting *app*.

    Parameters
    ----------
    host, port:
        Bind address for the HTTP server.
    reload:
        If *True*, enable auto-reload (useful in development).
    log_level:
        Logging level to use (default from settings if not provided).
    """

    # Lazy import - keeps uvicorn an optional dependency at pkg-import time
    import uvicorn  # pylint: disable=import-outside-toplevel

    if log_level is None:  # Use the default from settings if not provided
        log_level = settings.LOG_LEVEL

    logger.info(
        "Starting threadwise API at %s:%d (reload=%s, log_level=%s)", host, port, reload, log_level
    )
    colored_print(f"🧵 threadwise API is running at http://localhost:{port}.", AnsiColors.GREEN)
    colored_print(f"Visit http://localhost:{port}/docs for API documentation.", AnsiColors.BLUE)
    uvicorn.run(
        "threadwise.api.app:app",
        host=host,
        port=port,
        reload=reload,
        log_level=log_level,
    )


# ---------------------------------------------------------------------------
# `python -m threadwise.api.app` helper
# ---------------------------------------------------------------------------
if __name__ == "__main__":
    run_api(reload=True)
