"""
API Module - HTTP/WebSocket interface of a host server.

Clients:
1. Create or join a room
2. The host starts the match
3. Submit intents formed against the version they last saw
4. Follow accepted states over the WebSocket

The FastAPI app lives in api.app and is built with create_app().
"""

from .schemas import (
    # Requests
    CreateRoomRequest,
    JoinRoomRequest,
    StartRoomRequest,
    IntentRequest,
    # Responses
    RoomResponse,
    GameStateResponse,
    IntentResponse,
    ErrorResponse,
    HealthResponse,
    # Shared
    CardInfo,
    PlayerView,
    SeatInfo,
    ErrorCode,
)
from .service import APIService

__all__ = [
    # Requests
    "CreateRoomRequest",
    "JoinRoomRequest",
    "StartRoomRequest",
    "IntentRequest",
    # Responses
    "RoomResponse",
    "GameStateResponse",
    "IntentResponse",
    "ErrorResponse",
    "HealthResponse",
    # Shared
    "CardInfo",
    "PlayerView",
    "SeatInfo",
    "ErrorCode",
    # Service
    "APIService",
]
