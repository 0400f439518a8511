"""
FastAPI Application - HTTP/WebSocket surface of a host server.

Endpoints:
    POST   /api/v1/rooms                 Create a room (caller is host)
    GET    /api/v1/rooms/{code}          Lobby view
    POST   /api/v1/rooms/{code}/join     Take a seat
    POST   /api/v1/rooms/{code}/start    Host starts the match
    GET    /api/v1/rooms/{code}/state    Game state for ?user_id=
    POST   /api/v1/rooms/{code}/intents  Submit a move
    WS     /api/v1/rooms/{code}/ws       Pushes every accepted state
    GET    /health                       Health check

This server is the host for every room it creates: intents posted here
are applied by the room's HostCoordinator and written to the record
store. Peers in other processes can follow the same record directly.

All responses are JSON with explicit Pydantic schemas.
"""

from contextlib import asynccontextmanager
from typing import Optional, Union
import asyncio
import json
import logging

from ..config import Settings

logger = logging.getLogger(__name__)

ERROR_STATUS = {
    "ROOM_NOT_FOUND": 404,
    "ROOM_FULL": 409,
    "ROOM_FINISHED": 409,
    "ROOM_IN_PROGRESS": 409,
    "NOT_HOST": 403,
    "NOT_ENOUGH_PLAYERS": 409,
    "INTENT_REJECTED": 409,
    "VALIDATION_ERROR": 400,
    "STORE_UNAVAILABLE": 503,
    "INTERNAL_ERROR": 500,
}


def build_service(settings: Settings):
    """APIService wired to Redis when configured, in-memory otherwise."""
    from ..engine_core.reducer import Reducer, RulesConfig
    from .service import APIService

    rules = RulesConfig(declaration_window=settings.last_card_window)

    def reducer_factory():
        return Reducer(config=rules)

    if settings.redis_url:
        from ..sync.redis_backend import RedisChannel, RedisRecordStore, connect
        client = connect(settings.redis_url)
        return APIService(
            records=RedisRecordStore(client),
            channel=RedisChannel(client),
            reducer_factory=reducer_factory,
        )
    return APIService(reducer_factory=reducer_factory)


def create_app(service=None, settings: Optional[Settings] = None):
    """
    Create the FastAPI application.

    Args:
        service: Optional APIService instance (built from settings if not provided)
        settings: Optional Settings (read from the environment if not provided)

    Returns:
        FastAPI application instance
    """
    try:
        from fastapi import FastAPI, Query, WebSocket, WebSocketDisconnect
        from fastapi.middleware.cors import CORSMiddleware
        from fastapi.responses import JSONResponse
    except ImportError:
        raise ImportError(
            "FastAPI not installed. Install with: pip install fastapi uvicorn"
        )

    from .schemas import (
        CreateRoomRequest,
        JoinRoomRequest,
        StartRoomRequest,
        IntentRequest,
        RoomResponse,
        GameStateResponse,
        IntentResponse,
        ErrorResponse,
        HealthResponse,
    )
    from .. import __version__

    settings = settings or Settings.from_env()
    api_service = service or build_service(settings)

    @asynccontextmanager
    async def lifespan(app):
        async def sweep_declarations():
            while True:
                await asyncio.sleep(settings.tick_interval)
                try:
                    api_service.tick()
                except Exception:
                    logger.exception("Declaration sweep failed")

        task = asyncio.create_task(sweep_declarations())
        try:
            yield
        finally:
            task.cancel()

    app = FastAPI(
        title="Cardsync Host API",
        description="""
Host-authoritative colour-matching card game.

## Versions

Every accepted move bumps the game's `version` by one. Intents carry the
`observed_version` they were formed against; an intent formed against an
older version is rejected with reason `stale` and the current version in
`details.expected_version`. Fetch the state again and re-decide; never
replay a rejected intent blindly.

## Error Codes

| Code | Description |
|------|-------------|
| `ROOM_NOT_FOUND` | No such room on this server |
| `ROOM_FULL` | Every seat is taken |
| `ROOM_FINISHED` | The game is over |
| `NOT_HOST` | Only the host may start |
| `NOT_ENOUGH_PLAYERS` | Lobby not full yet |
| `INTENT_REJECTED` | Move refused, see `details.reason` |
        """,
        version=__version__,
        docs_url="/api/docs",
        redoc_url="/api/redoc",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.service = api_service

    # =========================================================================
    # Error helpers
    # =========================================================================

    def make_error_response(error: ErrorResponse) -> JSONResponse:
        """Create a standardized error response."""
        return JSONResponse(
            status_code=ERROR_STATUS.get(error.error_code.value, 400),
            content=error.model_dump(mode="json"),
        )

    def respond(result):
        if isinstance(result, ErrorResponse):
            return make_error_response(result)
        return result

    # =========================================================================
    # Room Endpoints
    # =========================================================================

    @app.post(
        "/api/v1/rooms",
        response_model=RoomResponse,
        status_code=201,
        responses={400: {"model": ErrorResponse}, 503: {"model": ErrorResponse}},
        tags=["Rooms"],
        summary="Create a room",
    )
    async def create_room(request: CreateRoomRequest) -> Union[RoomResponse, JSONResponse]:
        """Create a room; the caller is seated at index 0 and becomes the host."""
        return respond(api_service.create_room(request))

    @app.get(
        "/api/v1/rooms/{code}",
        response_model=RoomResponse,
        responses={404: {"model": ErrorResponse}},
        tags=["Rooms"],
        summary="Get the lobby view of a room",
    )
    async def get_room(code: str) -> Union[RoomResponse, JSONResponse]:
        return respond(api_service.get_room(code))

    @app.post(
        "/api/v1/rooms/{code}/join",
        response_model=RoomResponse,
        responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
        tags=["Rooms"],
        summary="Take a seat in a room",
    )
    async def join_room(code: str, request: JoinRoomRequest) -> Union[RoomResponse, JSONResponse]:
        """Joining again with the same user id returns the same seat."""
        return respond(api_service.join_room(code, request))

    @app.post(
        "/api/v1/rooms/{code}/start",
        response_model=GameStateResponse,
        responses={
            403: {"model": ErrorResponse},
            404: {"model": ErrorResponse},
            409: {"model": ErrorResponse},
        },
        tags=["Rooms"],
        summary="Start the match (host only)",
    )
    async def start_room(code: str, request: StartRoomRequest) -> Union[GameStateResponse, JSONResponse]:
        return respond(api_service.start_room(code, request))

    # =========================================================================
    # Game Endpoints
    # =========================================================================

    @app.get(
        "/api/v1/rooms/{code}/state",
        response_model=GameStateResponse,
        responses={404: {"model": ErrorResponse}},
        tags=["Game"],
        summary="Get the game state",
    )
    async def get_state(
        code: str,
        user_id: Optional[str] = Query(None, description="Viewer; only their own hand is shown"),
    ) -> Union[GameStateResponse, JSONResponse]:
        return respond(api_service.get_game_state(code, user_id))

    @app.post(
        "/api/v1/rooms/{code}/intents",
        response_model=IntentResponse,
        responses={
            400: {"model": ErrorResponse},
            404: {"model": ErrorResponse},
            409: {"model": ErrorResponse, "description": "Intent rejected"},
        },
        tags=["Game"],
        summary="Submit a move",
    )
    async def submit_intent(code: str, request: IntentRequest) -> Union[IntentResponse, JSONResponse]:
        """
        Submit a draw, play, pass or last-card declaration.

        Rejected intents are never retried by the server.
        """
        return respond(api_service.submit_intent(code, request))

    # =========================================================================
    # WebSocket Endpoint
    # =========================================================================

    @app.websocket("/api/v1/rooms/{code}/ws")
    async def room_socket(websocket: WebSocket, code: str, user_id: Optional[str] = None):
        """
        WebSocket for real-time updates.

        Messages from server:
        - state_update: a new version was accepted
        - game_over: the accepted state has a winner
        - room_update: lobby view (sent on connect before the match starts)
        - error: room not found, bad JSON

        Messages from client:
        - ping: Keep-alive
        """
        await websocket.accept()
        loop = asyncio.get_running_loop()
        queue: asyncio.Queue = asyncio.Queue()

        def on_state(state):
            loop.call_soon_threadsafe(queue.put_nowait, state)

        unsubscribe = api_service.subscribe(code, on_state)
        if unsubscribe is None:
            await websocket.send_json({
                "type": "error",
                "payload": {"message": f"Room {code} not found"},
            })
            await websocket.close()
            return

        def state_message(view: GameStateResponse) -> dict:
            return {
                "type": "game_over" if view.winner_id else "state_update",
                "payload": view.model_dump(mode="json"),
            }

        async def push_updates():
            while True:
                state = await queue.get()
                await websocket.send_json(state_message(api_service.state_view(state, user_id)))

        sender = None
        try:
            initial = api_service.get_game_state(code, user_id)
            if isinstance(initial, GameStateResponse):
                await websocket.send_json(state_message(initial))
            else:
                room = api_service.get_room(code)
                await websocket.send_json({
                    "type": "room_update",
                    "payload": room.model_dump(mode="json"),
                })

            sender = asyncio.create_task(push_updates())

            while True:
                data = await websocket.receive_text()
                try:
                    message = json.loads(data)
                except json.JSONDecodeError:
                    await websocket.send_json({
                        "type": "error",
                        "payload": {"message": "Invalid JSON"},
                    })
                    continue
                if isinstance(message, dict) and message.get("type") == "ping":
                    await websocket.send_json({"type": "pong"})

        except WebSocketDisconnect:
            pass
        finally:
            unsubscribe()
            if sender:
                sender.cancel()

    # =========================================================================
    # Health Check
    # =========================================================================

    @app.get(
        "/health",
        response_model=HealthResponse,
        tags=["System"],
        summary="Health check",
    )
    async def health_check() -> HealthResponse:
        """Health check endpoint for load balancers."""
        return HealthResponse(
            status="healthy",
            service="cardsync-host",
            version=__version__,
            rooms=api_service.room_count,
        )

    return app


# For running directly: uvicorn cardsync.api.app:app
app = None
try:
    app = create_app()
except ImportError:
    # FastAPI not installed
    pass
