"""HTTP + WebSocket front end for the scoreboard service.

Every HTTP route requires the shared secret in the `x-api-key` header. The
WebSocket channel lives at `/ws`; see `scorehub.gateway` for its protocol.

Run with: `uvicorn scorehub.fastapi_app:app --reload`
"""
from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Body, Depends, FastAPI, Request, WebSocket
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from scorehub.auth import API_KEY_HEADER, handshake_token, require_api_key
from scorehub.config import Settings, get_settings
from scorehub.errors import NotFoundError, ScorehubError
from scorehub.gateway import SyncGateway
from scorehub.log import get_logger
from scorehub.match_store import MatchStore
from scorehub.models import MatchData, MatchFields, ScoreboardCreate, to_wire
from scorehub.scoreboard_store import ScoreboardStore

log = get_logger("scorehub.app")


def get_scoreboard_store(request: Request) -> ScoreboardStore:
    return request.app.state.scoreboards


def get_match_store(request: Request) -> MatchStore:
    return request.app.state.matches


def _deleted(success: bool, noun: str) -> Dict[str, Any]:
    return {
        "success": success,
        "message": f"{noun} deleted successfully" if success else f"{noun} not found",
    }


# ----------------------------------------------------------------------
# Scoreboards
# ----------------------------------------------------------------------

async def list_scoreboards(store: ScoreboardStore = Depends(get_scoreboard_store)) -> List[Dict[str, Any]]:
    return [to_wire(s) for s in store.find_all()]


async def get_scoreboard(scoreboard_id: str, store: ScoreboardStore = Depends(get_scoreboard_store)) -> Optional[Dict[str, Any]]:
    return to_wire(store.find_one(scoreboard_id))


async def create_scoreboard(
    payload: ScoreboardCreate, store: ScoreboardStore = Depends(get_scoreboard_store)
) -> Dict[str, Any]:
    return to_wire(await store.create(payload.name))


async def delete_scoreboard(scoreboard_id: str, store: ScoreboardStore = Depends(get_scoreboard_store)) -> Dict[str, Any]:
    return _deleted(await store.delete(scoreboard_id), "Scoreboard")


async def replace_scoreboards(
    payload: Any = Body(...), store: ScoreboardStore = Depends(get_scoreboard_store)
) -> List[Dict[str, Any]]:
    """Bulk replace; the store validates the whole batch before applying it."""
    return [to_wire(s) for s in await store.update_all(payload)]


async def upsert_scoreboard_match(
    scoreboard_id: str,
    payload: MatchFields,
    scoreboards: ScoreboardStore = Depends(get_scoreboard_store),
    matches: MatchStore = Depends(get_match_store),
) -> Dict[str, Any]:
    """Create the scoreboard's match, or update it when one already exists."""
    if scoreboards.find_one(scoreboard_id) is None:
        raise NotFoundError(f"Scoreboard with id {scoreboard_id} not found")

    data = MatchData(**payload.model_dump(exclude_unset=True), scoreboard_id=scoreboard_id)
    existing = matches.find_by_scoreboard(scoreboard_id)
    if existing is None:
        return to_wire(await matches.create(data))
    updated = await matches.update(existing.id, data)
    return to_wire(updated or existing)


async def get_scoreboard_match(
    scoreboard_id: str,
    scoreboards: ScoreboardStore = Depends(get_scoreboard_store),
    matches: MatchStore = Depends(get_match_store),
) -> Optional[Dict[str, Any]]:
    if scoreboards.find_one(scoreboard_id) is None:
        raise NotFoundError(f"Scoreboard with id {scoreboard_id} not found")
    return to_wire(matches.find_by_scoreboard(scoreboard_id))


# ----------------------------------------------------------------------
# Tennis matches
# ----------------------------------------------------------------------

async def list_matches(store: MatchStore = Depends(get_match_store)) -> List[Dict[str, Any]]:
    return [to_wire(m) for m in store.find_all()]


async def get_current_match(store: MatchStore = Depends(get_match_store)) -> Optional[Dict[str, Any]]:
    return to_wire(store.get_current_match())


async def get_match(match_id: str, store: MatchStore = Depends(get_match_store)) -> Optional[Dict[str, Any]]:
    return to_wire(store.find_one(match_id))


async def create_match(payload: MatchData, store: MatchStore = Depends(get_match_store)) -> Dict[str, Any]:
    return to_wire(await store.create(payload))


async def update_match(
    match_id: str, payload: MatchData, store: MatchStore = Depends(get_match_store)
) -> Optional[Dict[str, Any]]:
    return to_wire(await store.update(match_id, payload))


async def delete_match(match_id: str, store: MatchStore = Depends(get_match_store)) -> Dict[str, Any]:
    return _deleted(await store.delete(match_id), "Match")


# ----------------------------------------------------------------------
# Misc
# ----------------------------------------------------------------------

async def health(request: Request) -> Dict[str, Any]:
    gateway: SyncGateway = request.app.state.gateway
    return {"ok": True, "connections": len(gateway.connections.active_connections)}


async def websocket_endpoint(websocket: WebSocket) -> None:
    gateway: SyncGateway = websocket.app.state.gateway
    await gateway.serve(websocket, handshake_token(websocket))


async def scorehub_error_handler(request: Request, exc: ScorehubError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message, "code": exc.code})


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """Build the app with its own stores and gateway.

    Stores are only read from disk when the app starts (lifespan), so
    building an app never touches the data directory.
    """
    settings = settings or get_settings()
    scoreboards = ScoreboardStore(settings.scoreboards_path)
    matches = MatchStore(settings.matches_path)
    gateway = SyncGateway(scoreboards, matches)

    @asynccontextmanager
    async def _lifespan(app: FastAPI):
        await scoreboards.load()
        await matches.load()
        log.info(f"Serving {len(scoreboards.find_all())} scoreboards from {settings.data_dir}")
        yield

    app = FastAPI(title="Scorehub", lifespan=_lifespan)
    app.state.settings = settings
    app.state.scoreboards = scoreboards
    app.state.matches = matches
    app.state.gateway = gateway

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization", API_KEY_HEADER],
    )
    app.add_exception_handler(ScorehubError, scorehub_error_handler)

    router = APIRouter(dependencies=[Depends(require_api_key)])

    router.get("/scoreboards")(list_scoreboards)
    router.post("/scoreboards")(create_scoreboard)
    router.put("/scoreboards")(replace_scoreboards)
    router.get("/scoreboards/{scoreboard_id}")(get_scoreboard)
    router.delete("/scoreboards/{scoreboard_id}")(delete_scoreboard)
    router.post("/scoreboards/{scoreboard_id}/tennis")(upsert_scoreboard_match)
    router.get("/scoreboards/{scoreboard_id}/tennis")(get_scoreboard_match)

    router.get("/tennis")(list_matches)
    # must precede /tennis/{match_id}
    router.get("/tennis/current")(get_current_match)
    router.get("/tennis/{match_id}")(get_match)
    router.post("/tennis")(create_match)
    router.put("/tennis/{match_id}")(update_match)
    router.delete("/tennis/{match_id}")(delete_match)

    app.include_router(router)
    app.get("/health")(health)
    app.websocket("/ws")(websocket_endpoint)
    return app


app = create_app()
