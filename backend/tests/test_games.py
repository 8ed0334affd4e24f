from __future__ import annotations

import asyncio

import pytest

from qrsong.schemas.games import GameSettings
from qrsong.services.games import GAME_ID_ALPHABET, GameError, GameRoomStore, generate_game_id


@pytest.fixture
def store(fake_redis, settings) -> GameRoomStore:
    return GameRoomStore(fake_redis, settings)


def _create(store: GameRoomStore, **overrides) -> str:
    kwargs = dict(
        host_name="Host",
        game_type="quiz",
        play_mode="remote",
        settings=GameSettings(number_of_rounds=5, playlist_ids=[1, 2]),
    )
    kwargs.update(overrides)
    return asyncio.run(store.create_game(**kwargs))


def test_game_ids_use_unambiguous_alphabet():
    game_id = generate_game_id()
    assert len(game_id) == 6
    assert set(game_id) <= set(GAME_ID_ALPHABET)
    assert not set("01IO") & set(GAME_ID_ALPHABET)


def test_create_game_stores_room_with_ttl(store, fake_redis, settings):
    game_id = _create(store)
    key = f"game:{game_id}"
    assert fake_redis.expiry[key] == settings.game_ttl_seconds == 14400

    game = asyncio.run(store.get_game(game_id))
    assert game.state == "waiting"
    assert game.settings.number_of_rounds == 5
    assert [player.name for player in game.players] == ["Host"]
    assert game.players[0].is_host


def test_join_adds_player(store):
    game_id = _create(store)
    result = asyncio.run(store.join_game(game_id, "Guest", "cat.png"))
    assert result.game_id == game_id
    assert result.play_mode == "remote"

    game = asyncio.run(store.get_game(game_id))
    guest = game.players[1]
    assert (guest.id, guest.avatar, guest.is_host) == (result.player_id, "cat.png", False)


def test_join_unknown_game_returns_none(store):
    assert asyncio.run(store.join_game("NOPE42", "Guest")) is None


def test_join_rejects_duplicate_names(store):
    game_id = _create(store)
    with pytest.raises(GameError, match="already exists"):
        asyncio.run(store.join_game(game_id, "Host"))


def test_join_rejects_started_game(store):
    game_id = _create(store)

    async def scenario():
        game = await store.get_game(game_id)
        game.state = "playing"
        await store.update_game(game)
        await store.join_game(game_id, "Late")

    with pytest.raises(GameError, match="already started"):
        asyncio.run(scenario())


def test_question_type_index_defaults_to_zero(store, fake_redis, settings):
    async def scenario():
        before = await store.get_question_type_index("ABC234")
        await store.set_question_type_index("ABC234", 3)
        return before, await store.get_question_type_index("ABC234")

    assert asyncio.run(scenario()) == (0, 3)
    assert fake_redis.expiry["game:ABC234:questionTypeIndex"] == settings.game_ttl_seconds


def test_cleanup_removes_only_keys_without_expiry(store, fake_redis):
    live = _create(store)
    fake_redis.values["game:STALE2"] = "{}"

    assert asyncio.run(store.cleanup_expired_games()) == 1
    assert "game:STALE2" not in fake_redis.values
    assert f"game:{live}" in fake_redis.values


def test_settings_require_a_round():
    with pytest.raises(ValueError):
        GameSettings(number_of_rounds=0)
