from __future__ import annotations

from typing import List, Literal, Optional

from pydantic import BaseModel, Field


class GameSettings(BaseModel):
    number_of_rounds: int = Field(..., ge=1)
    round_countdown: Optional[int] = None
    playlist_ids: List[int] = []
    user_hash: Optional[str] = None


class Player(BaseModel):
    id: str
    name: str
    avatar: Optional[str] = None
    score: int = 0
    is_host: bool = False
    has_submitted: bool = False


class GameData(BaseModel):
    id: str
    type: str
    play_mode: Literal["home", "remote"]
    settings: GameSettings
    players: List[Player] = []
    current_round: int = 0
    state: Literal["waiting", "playing", "finished"] = "waiting"
    created_at: int


class JoinResult(BaseModel):
    game_id: str
    play_mode: Literal["home", "remote"]
    player_id: str
