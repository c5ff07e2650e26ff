"""Pydantic models for the room lobby API."""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, Field

from teenpatti.engine import DEFAULT_MIN_BET, DEFAULT_STARTING_CHIPS, RoomState


# --- Request models ---


class CreateRoomRequest(BaseModel):
    creator_name: str = Field(..., min_length=1, max_length=20)
    creator_pin: str = Field(..., pattern=r"^\d{4}$")
    starting_chips: int = Field(default=DEFAULT_STARTING_CHIPS, ge=100, le=1_000_000_000)
    min_bet: int = Field(default=DEFAULT_MIN_BET, ge=1)
    max_players: int = Field(default=6, ge=2, le=6)
    turn_timeout: int = Field(default=0, ge=0, le=300)  # seconds, 0 = no timer
    requires_buy_in_lock: bool = False  # escrow must confirm each seat before start


class JoinRoomRequest(BaseModel):
    player_name: str = Field(..., min_length=1, max_length=20)
    player_pin: str = Field(..., pattern=r"^\d{4}$")


class PlayerAuthRequest(BaseModel):
    player_id: str
    pin: str = Field(..., pattern=r"^\d{4}$")


class ActionRequest(BaseModel):
    player_id: str
    pin: str = Field(..., pattern=r"^\d{4}$")
    action: str  # pack/fold, see, chaal/bet
    amount: int = Field(default=0, ge=0)


# --- Response / state models ---


class PlayerInfo(BaseModel):
    """Public-facing player information (no PIN)."""

    id: str
    name: str
    connected: bool = False
    is_creator: bool = False
    buy_in_locked: bool = False


class RoomSettings(BaseModel):
    starting_chips: int
    min_bet: int
    max_players: int
    turn_timeout: int = 0
    requires_buy_in_lock: bool = False


class RoomInfo(BaseModel):
    """Lobby view of a room sent to clients."""

    room_id: str
    short_code: str
    status: RoomState
    settings: RoomSettings
    players: list[PlayerInfo]
    creator_id: str


class CreateRoomResponse(BaseModel):
    room_id: str
    short_code: str
    player_id: str
    room: RoomInfo


class JoinRoomResponse(BaseModel):
    room_id: str
    player_id: str
    room: RoomInfo


class ActionResponse(BaseModel):
    ok: bool = True
    action: str
    amount: int = 0
    round_result: Optional[dict] = None
