"""HTTP binding of the orchestrator service."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from ..engine import ExecutionEngine, build_engine
from ..errors import (
    ConflictError,
    NotFoundError,
    SetlistError,
    ValidationError,
)
from ..models import Playlist
from .contracts import (
    ORCHESTRATOR_SERVICE,
    PlaylistRequest,
    PlaylistResponse,
    PlaylistSegue,
    PlaylistSegueResponse,
)

logger = logging.getLogger(__name__)

_STATUS_CODES = {
    NotFoundError: 404,
    ValidationError: 422,
    ConflictError: 409,
}


def status_code_for(error: SetlistError) -> int:
    for error_type, code in _STATUS_CODES.items():
        if isinstance(error, error_type):
            return code
    return 500


def _describe(exc: RequestValidationError) -> str:
    return "; ".join(
        f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}"
        for error in exc.errors()
    )


def create_app(engine: Optional[ExecutionEngine] = None) -> FastAPI:
    """Create the orchestrator application around ``engine``."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(f"Orchestrator starting; talkback {app.state.engine.talkback}")
        yield
        await app.state.engine.close()
        logger.info("Orchestrator stopped")

    app = FastAPI(
        title="setlist",
        description="Playlist orchestrator",
        lifespan=lifespan,
    )
    app.state.engine = engine or build_engine()

    @app.exception_handler(SetlistError)
    async def _handle_setlist_error(request: Request, exc: SetlistError) -> JSONResponse:
        return JSONResponse(status_code=status_code_for(exc), content={"error": str(exc)})

    @app.exception_handler(RequestValidationError)
    async def _handle_invalid_request(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        return JSONResponse(status_code=422, content={"error": _describe(exc)})

    @app.get("/healthz")
    async def healthz() -> dict[str, str]:
        return {"status": "ok"}

    @app.post(ORCHESTRATOR_SERVICE.path("TriggerPlaylist"), response_model=PlaylistResponse)
    async def trigger_playlist(request: PlaylistRequest) -> PlaylistResponse:
        result = await app.state.engine.trigger(
            request.slug, request.context, request.origin
        )
        return PlaylistResponse(slug=result.slug, status=result.status.value)

    @app.post(
        ORCHESTRATOR_SERVICE.path("SeguePlaylist"), response_model=PlaylistSegueResponse
    )
    async def segue_playlist(request: PlaylistSegue) -> PlaylistSegueResponse:
        result = await app.state.engine.segue(
            request.slug, request.output, step_id=request.step_id
        )
        return PlaylistSegueResponse(success=result.success)

    @app.get("/playlists", response_model=list[Playlist])
    async def list_playlists() -> list[Playlist]:
        return await app.state.engine.list_playlists()

    @app.get("/playlists/{slug}")
    async def show_playlist(slug: str) -> dict[str, Any]:
        playlist, context = await app.state.engine.get_playlist(slug)
        return {
            "playlist": playlist.model_dump(mode="json"),
            "context": context.model_dump(mode="json") if context else None,
        }

    @app.post("/playlists/{slug}/crash", response_model=Playlist)
    async def crash_playlist(slug: str) -> Playlist:
        return await app.state.engine.crash(slug)

    @app.get("/strategies")
    async def list_strategies() -> list[dict[str, Any]]:
        strategies = await app.state.engine.list_strategies()
        return [s.model_dump(mode="json") for s in strategies]

    @app.get("/strategies/{slug}")
    async def show_strategy(slug: str) -> dict[str, Any]:
        return (await app.state.engine.get_strategy(slug)).model_dump(mode="json")

    @app.get("/plugins")
    async def list_plugins() -> list[dict[str, Any]]:
        plugins = await app.state.engine.list_plugins()
        return [p.model_dump(mode="json") for p in plugins]

    @app.get("/plugins/{slug}")
    async def show_plugin(slug: str) -> dict[str, Any]:
        return (await app.state.engine.get_plugin(slug)).model_dump(mode="json")

    return app
