from __future__ import annotations

import logging
import secrets
import time
from typing import Literal, Optional

from redis.asyncio import Redis

from ..core.config import Settings, get_settings
from ..schemas.games import GameData, GameSettings, JoinResult, Player

GAME_ID_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
GAME_ID_LENGTH = 6
PLAYER_ID_LENGTH = 21

logger = logging.getLogger("games")


class GameError(Exception):
    pass


def generate_game_id() -> str:
    return "".join(secrets.choice(GAME_ID_ALPHABET) for _ in range(GAME_ID_LENGTH))


def generate_player_id() -> str:
    return secrets.token_urlsafe(PLAYER_ID_LENGTH)[:PLAYER_ID_LENGTH]


class GameRoomStore:
    """Quiz rooms kept as JSON documents in Redis, expiring after ``game_ttl_seconds``.

    Each write refreshes the TTL, so a room lives as long as it keeps being played.
    """

    def __init__(self, redis: Redis, settings: Settings | None = None) -> None:
        self.redis = redis
        self.settings = settings or get_settings()

    @property
    def ttl(self) -> int:
        return self.settings.game_ttl_seconds

    @staticmethod
    def _key(game_id: str) -> str:
        return f"game:{game_id}"

    async def _save(self, game: GameData) -> None:
        await self.redis.setex(self._key(game.id), self.ttl, game.model_dump_json())

    async def create_game(
        self,
        *,
        host_name: str,
        game_type: str,
        play_mode: Literal["home", "remote"],
        settings: GameSettings,
        host_avatar: Optional[str] = None,
    ) -> str:
        game = GameData(
            id=generate_game_id(),
            type=game_type,
            play_mode=play_mode,
            settings=settings,
            players=[Player(id=generate_player_id(), name=host_name, avatar=host_avatar, is_host=True)],
            created_at=int(time.time() * 1000),
        )
        await self._save(game)
        logger.info("Created %s game %s for host %s", game_type, game.id, host_name)
        return game.id

    async def get_game(self, game_id: str) -> Optional[GameData]:
        raw = await self.redis.get(self._key(game_id))
        if not raw:
            return None
        return GameData.model_validate_json(raw)

    async def join_game(self, game_id: str, player_name: str, player_avatar: Optional[str] = None) -> Optional[JoinResult]:
        game = await self.get_game(game_id)
        if game is None:
            return None
        if game.state != "waiting":
            raise GameError("Game has already started")
        if any(player.name == player_name for player in game.players):
            raise GameError("Player with this name already exists")

        player = Player(id=generate_player_id(), name=player_name, avatar=player_avatar)
        game.players.append(player)
        await self._save(game)
        return JoinResult(game_id=game.id, play_mode=game.play_mode, player_id=player.id)

    async def update_game(self, game: GameData) -> None:
        await self._save(game)

    async def get_question_type_index(self, game_id: str) -> int:
        raw = await self.redis.get(f"{self._key(game_id)}:questionTypeIndex")
        return int(raw) if raw else 0

    async def set_question_type_index(self, game_id: str, index: int) -> None:
        await self.redis.setex(f"{self._key(game_id)}:questionTypeIndex", self.ttl, str(index))

    async def cleanup_expired_games(self) -> int:
        removed = 0
        for key in await self.redis.keys("game:*"):
            # -1: key exists without an expiry
            if await self.redis.ttl(key) == -1:
                await self.redis.delete(key)
                removed += 1
        if removed:
            logger.info("Removed %d game keys without expiry", removed)
        return removed
