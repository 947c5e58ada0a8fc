from __future__ import annotations

import asyncio
import json

import pytest

from app.models.player import Player
from app.models.session import Session
from app.services.errors import PersistenceError, ValidationError
from app.services.persistence import PersistenceManager


def _session(session_id: str = "ABC123") -> Session:
    session = Session(id=session_id, name=f"Session {session_id}")
    session.players["c1"] = Player(id="c1", name="Alice")
    session.players["c2"] = Player(id="c2", name="GM", is_gm=True)
    return session


def _game_state():
    return {
        "currentScene": None,
        "activeChallenge": None,
        "chat": [{"id": str(i), "message": f"m{i}"} for i in range(30)],
        "diceRolls": [{"id": str(i)} for i in range(12)],
        "notes": [{"id": str(i), "text": f"n{i}"} for i in range(15)],
        "lastRoll": {"id": "11"},
        "gameObjects": [{"id": "obj_1", "type": "character", "contents": {"characterName": "Rin"}, "tags": {}}],
    }


def test_save_truncates_history_and_writes_player_pairs(tmp_path):
    persistence = PersistenceManager(tmp_path)
    asyncio.run(persistence.save_complete_session("ABC123", _session(), _game_state()))

    raw = json.loads((tmp_path / "sessions" / "ABC123.json").read_text(encoding="utf-8"))
    state = raw["gameState"]
    assert [m["id"] for m in state["chat"]] == [str(i) for i in range(10, 30)]
    assert [r["id"] for r in state["diceRolls"]] == [str(i) for i in range(7, 12)]
    assert [n["id"] for n in state["notes"]] == [str(i) for i in range(5, 15)]
    assert raw["session"]["players"][0][0] == "c1"
    assert raw["session"]["players"][0][1]["name"] == "Alice"
    assert raw["sessionId"] == "ABC123"
    assert raw["lastSaved"].endswith("Z")


def test_load_round_trips_session_and_state(tmp_path):
    persistence = PersistenceManager(tmp_path)
    asyncio.run(persistence.save_complete_session("ABC123", _session(), _game_state()))

    session, game_state = asyncio.run(persistence.load_complete_session("ABC123"))

    assert set(session.players) == {"c1", "c2"}
    assert session.players["c2"].is_gm is True
    assert game_state["gameObjects"][0]["contents"]["characterName"] == "Rin"
    assert len(game_state["chat"]) == 20


def test_missing_snapshot_is_none_and_corrupted_one_raises(tmp_path):
    persistence = PersistenceManager(tmp_path)
    assert asyncio.run(persistence.load_complete_session("nothing")) is None

    (tmp_path / "sessions").mkdir(parents=True)
    (tmp_path / "sessions" / "broken.json").write_text("{not json", encoding="utf-8")
    with pytest.raises(PersistenceError):
        asyncio.run(persistence.load_complete_session("broken"))


@pytest.mark.parametrize("session_id", ["", "../etc", "a/b", "a\\b"])
def test_session_ids_are_checked_against_path_traversal(tmp_path, session_id):
    with pytest.raises(ValidationError):
        PersistenceManager(tmp_path).session_path(session_id)


def test_listing_players_stats_and_delete(tmp_path):
    persistence = PersistenceManager(tmp_path)

    async def scenario():
        await persistence.save_complete_session("OLD", _session("OLD"), None)
        await asyncio.sleep(0.01)
        await persistence.save_complete_session("NEW", _session("NEW"), _game_state())
        sessions = await persistence.get_all_sessions()
        players = await persistence.get_session_players("NEW")
        stats = await persistence.get_session_stats("NEW")
        first_delete = await persistence.delete_session_data("OLD")
        second_delete = await persistence.delete_session_data("OLD")
        return sessions, players, stats, first_delete, second_delete

    sessions, players, stats, first_delete, second_delete = asyncio.run(scenario())

    assert [s["sessionId"] for s in sessions] == ["NEW", "OLD"]
    assert sessions[0]["playerCount"] == 2
    assert players == ["Alice", "GM"]
    assert stats["totalChatMessages"] == 20
    assert stats["totalDiceRolls"] == 5
    assert stats["totalNotes"] == 10
    assert stats["totalGameObjects"] == 1
    assert first_delete is True
    assert second_delete is False
