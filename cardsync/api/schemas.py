"""
Pydantic Schemas for API - Request/response models for OpenAPI.

These models define the exact contract between clients and the host
server. All responses include explicit types for OpenAPI schema generation.

Error Codes:
- ROOM_NOT_FOUND: No room with that code (or not hosted by this server)
- ROOM_FULL: Every seat is taken
- ROOM_FINISHED: The room's game is over
- ROOM_IN_PROGRESS: The room has already started
- NOT_HOST: Only the host may do this
- NOT_ENOUGH_PLAYERS: Lobby not full yet
- INTENT_REJECTED: The host refused the intent (see details.reason)
- VALIDATION_ERROR: Request failed validation
- STORE_UNAVAILABLE: The record store could not be reached
"""

from enum import Enum
from typing import Optional, Any
from pydantic import BaseModel, Field

from ..engine_core.action import ActionType


# =============================================================================
# Enums
# =============================================================================

class RoomStatus(str, Enum):
    """Room status values."""
    WAITING = "waiting"
    ACTIVE = "active"
    FINISHED = "finished"


class ErrorCode(str, Enum):
    """Structured error codes."""
    ROOM_NOT_FOUND = "ROOM_NOT_FOUND"
    ROOM_FULL = "ROOM_FULL"
    ROOM_FINISHED = "ROOM_FINISHED"
    ROOM_IN_PROGRESS = "ROOM_IN_PROGRESS"
    NOT_HOST = "NOT_HOST"
    NOT_ENOUGH_PLAYERS = "NOT_ENOUGH_PLAYERS"
    INTENT_REJECTED = "INTENT_REJECTED"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    STORE_UNAVAILABLE = "STORE_UNAVAILABLE"
    INTERNAL_ERROR = "INTERNAL_ERROR"


# =============================================================================
# Requests
# =============================================================================

class CreateRoomRequest(BaseModel):
    """Create a room; the caller becomes the host in seat 0."""
    user_id: str = Field(min_length=1)
    display_name: str = Field(min_length=1, max_length=40)
    expected_players: int = Field(ge=2, le=10)


class JoinRoomRequest(BaseModel):
    user_id: str = Field(min_length=1)
    display_name: str = Field(min_length=1, max_length=40)


class StartRoomRequest(BaseModel):
    user_id: str = Field(min_length=1)


class IntentRequest(BaseModel):
    """A move submitted over HTTP, formed against `observed_version`."""
    actor_id: str = Field(min_length=1, description="User id (or seat id) of the acting participant")
    action: ActionType
    observed_version: int = Field(ge=0)
    card_id: Optional[str] = None
    declared_color: Optional[str] = Field(None, description="red, yellow, green or blue (wild cards)")
    reason: Optional[str] = None


# =============================================================================
# Shared Models
# =============================================================================

class SeatInfo(BaseModel):
    user_id: str
    display_name: str
    player_index: int

    model_config = {"from_attributes": True}


class CardInfo(BaseModel):
    """Card information for display."""
    card_id: str
    kind: str
    color: Optional[str] = None
    value: str
    label: str


class PlayerView(BaseModel):
    """
    One seat as seen by a viewer.

    `hand` is only filled for the viewer's own seat; everyone else
    shows a count.
    """
    player_id: str
    name: str
    user_id: Optional[str] = None
    is_automated: bool = False
    is_current_turn: bool = False
    hand_count: int
    one_card_warning: bool = False
    must_declare_last_card: bool = False
    hand: Optional[list[CardInfo]] = None


class TurnInfo(BaseModel):
    has_drawn: bool = False
    drawn_card_id: Optional[str] = None
    drawn_card_playable: bool = False


class PendingDeclarationInfo(BaseModel):
    player_id: str
    deadline: float


# =============================================================================
# Responses
# =============================================================================

class RoomResponse(BaseModel):
    """Lobby view of a room."""
    record_id: str
    code: str
    invite_token: str
    host_user_id: str
    expected_players: int
    status: RoomStatus
    version: int
    seats: list[SeatInfo] = Field(default_factory=list)
    api_version: str = "v1"


class GameStateResponse(BaseModel):
    """Game state filtered for one viewer."""
    session_id: str
    room_code: Optional[str] = None
    version: int
    status: RoomStatus
    current_player_id: str
    direction: int
    active_color: str
    top_card: Optional[CardInfo] = None
    draw_pile_count: int
    discard_pile_count: int
    players: list[PlayerView]
    turn: TurnInfo
    pending_declaration: Optional[PendingDeclarationInfo] = None
    winner_id: Optional[str] = None
    round_points: int = 0
    playable_card_ids: list[str] = Field(
        default_factory=list, description="Viewer's cards that are legal right now"
    )
    api_version: str = "v1"


class IntentResponse(BaseModel):
    """The host accepted the intent."""
    intent_id: str
    accepted: bool = True
    version: int
    api_version: str = "v1"


class ErrorResponse(BaseModel):
    """Standard error response."""
    error: str
    error_code: ErrorCode
    details: Optional[dict[str, Any]] = None


class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    service: str
    version: str
    rooms: int = 0
