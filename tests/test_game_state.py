from __future__ import annotations

import copy
import random

import pytest

from app.models.actions import ACTION_TYPES
from app.services.errors import UnknownActionError
from app.services.game_objects import GameObjectManager
from app.services.game_state import MAX_CHAT_MESSAGES, MAX_DICE_ROLLS, MAX_NOTES, GameStateManager

SESSION_ID = "state_session"


@pytest.fixture
def manager():
    return GameStateManager(GameObjectManager(), modifier_source="client", rng=random.Random(3))


def _apply(manager, action):
    assert manager.validate_action(SESSION_ID, action), action
    return manager.apply_action(SESSION_ID, action)


def _scene_with_challenge(manager, challenge_id=1):
    state = _apply(manager, {
        "type": "create_object",
        "objectType": "scene",
        "contents": {"name": "Docks", "challenges": [{"id": challenge_id, "name": "Guards", "overcome": False}]},
    })
    return state["gameObjects"][-1]["id"]


def test_every_action_kind_is_validated_and_applied(manager):
    assert set(manager._validators) == set(ACTION_TYPES)
    assert set(manager._appliers) == set(ACTION_TYPES)


def test_empty_state_is_created_lazily(manager):
    state = manager.get_session_state(SESSION_ID)
    assert state == {
        "currentScene": None,
        "activeChallenge": None,
        "chat": [],
        "diceRolls": [],
        "notes": [],
        "lastRoll": None,
        "gameObjects": [],
    }


def test_malformed_or_unknown_actions_are_rejected(manager):
    assert manager.validate_action(SESSION_ID, {"type": "teleport"}) is False
    assert manager.validate_action(SESSION_ID, {"objectType": "scene"}) is False
    assert manager.validate_action(SESSION_ID, "create_object") is False
    assert manager.validate_action(SESSION_ID, {"type": "create_object", "objectType": "scene"}) is False
    assert manager.validate_action(SESSION_ID, {"type": "update_object", "objectId": "obj_404", "contents": {}}) is False
    assert manager.validate_action(SESSION_ID, {"type": "add_tag", "objectId": "obj_1", "tagType": "a", "tagName": "b", "modifier": 2}) is False
    assert manager.validate_action(SESSION_ID, {"type": "roll_dice", "relevantObjectIds": "obj_1"}) is False
    assert manager.validate_action(SESSION_ID, {"type": "add_note", "text": "   "}) is False


def test_invalid_action_leaves_state_untouched(manager):
    _apply(manager, {"type": "create_object", "objectType": "character", "contents": {"characterName": "Rin"}})
    before = copy.deepcopy(manager.get_session_state(SESSION_ID))

    action = {"type": "set_active_challenge", "challengeId": 1, "sceneId": "obj_404"}
    assert manager.validate_action(SESSION_ID, action) is False

    assert manager.get_session_state(SESSION_ID) == before


def test_apply_unknown_kind_raises(manager):
    with pytest.raises(UnknownActionError):
        manager.apply_action(SESSION_ID, {"type": "teleport"})


def test_create_update_delete_flow(manager):
    state = _apply(manager, {"type": "create_object", "objectType": "character", "contents": {"characterName": "Rin"}})
    object_id = state["gameObjects"][0]["id"]

    state = _apply(manager, {"type": "update_object", "objectId": object_id, "objectType": "character", "contents": {"level": 2}})
    assert state["gameObjects"][0]["contents"] == {"characterName": "Rin", "level": 2}

    _apply(manager, {"type": "add_tag", "objectId": object_id, "tagType": "helpful", "tagName": "quick", "modifier": 1})
    assert manager.calculate_roll_modifier(SESSION_ID, [object_id])["modifier"] == 1

    state = _apply(manager, {"type": "delete_object", "objectId": object_id})
    assert state["gameObjects"] == []


def test_deleting_current_scene_clears_reference(manager):
    scene_id = _scene_with_challenge(manager)
    _apply(manager, {"type": "set_scene", "sceneObjectId": scene_id})
    assert manager.get_current_scene(SESSION_ID)["id"] == scene_id

    state = _apply(manager, {"type": "delete_object", "objectId": scene_id})
    assert state["currentScene"] is None


def test_set_scene_accepts_null(manager):
    scene_id = _scene_with_challenge(manager)
    _apply(manager, {"type": "set_scene", "sceneObjectId": scene_id})
    state = _apply(manager, {"type": "set_scene", "sceneObjectId": None})
    assert state["currentScene"] is None


def test_set_active_challenge_looks_inside_scene(manager):
    scene_id = _scene_with_challenge(manager, challenge_id=7)
    _apply(manager, {"type": "set_scene", "sceneObjectId": scene_id})

    state = _apply(manager, {"type": "set_active_challenge", "challengeId": 7, "sceneId": scene_id})
    assert state["activeChallenge"] == 7
    assert manager.get_active_challenge(SESSION_ID)["name"] == "Guards"

    # challenge absent de la scène : rien ne change
    state = _apply(manager, {"type": "set_active_challenge", "challengeId": 99, "sceneId": scene_id})
    assert state["activeChallenge"] == 7

    state = _apply(manager, {"type": "clear_active_challenge"})
    assert state["activeChallenge"] is None


def test_overcoming_active_challenge_clears_it(manager):
    scene_id = _scene_with_challenge(manager)
    _apply(manager, {"type": "set_active_challenge", "challengeId": 1, "sceneId": scene_id})

    state = _apply(manager, {"type": "overcome_challenge", "challengeId": 1, "sceneId": scene_id})

    challenge = state["gameObjects"][0]["contents"]["challenges"][0]
    assert state["activeChallenge"] is None
    assert challenge["overcome"] is True
    assert challenge["overcomeAt"]


def test_toggle_overcome_back_clears_timestamp(manager):
    scene_id = _scene_with_challenge(manager)
    action = {"type": "toggle_overcome_challenge", "challengeId": "1", "sceneId": scene_id}

    state = _apply(manager, action)
    assert state["gameObjects"][0]["contents"]["challenges"][0]["overcome"] is True

    state = _apply(manager, action)
    challenge = state["gameObjects"][0]["contents"]["challenges"][0]
    assert challenge["overcome"] is False
    assert challenge["overcomeAt"] is None


def test_roll_dice_records_last_roll(manager):
    tags = [{"tag": "sword", "effect": "positive"}, {"tag": "wounded", "effect": "negative"}]
    state = _apply(manager, {
        "type": "roll_dice",
        "relevantObjectIds": [],
        "selectedTags": tags,
        "modifier": 0,
        "playerId": "c1",
        "playerName": "Alice",
    })

    roll = state["lastRoll"]
    assert state["diceRolls"] == [roll]
    assert roll["total"] == sum(roll["rolls"]) + roll["modifier"]
    assert roll["playerName"] == "Alice"
    assert roll["description"] == "2d6 (sword vs wounded)"


def test_server_side_modifier_ignores_unknown_tags():
    store = GameObjectManager()
    manager = GameStateManager(store, modifier_source="server", rng=random.Random(1))
    hero = store.create_game_object(SESSION_ID, "character", {"characterName": "Rin"})
    store.add_tag(SESSION_ID, hero["id"], "helpful", "sword", 1)

    state = _apply(manager, {
        "type": "roll_dice",
        "relevantObjectIds": [hero["id"]],
        "selectedTags": [{"tag": "sword", "effect": "positive"}, {"tag": "dragon", "effect": "positive"}],
        "modifier": 5,
    })
    assert state["lastRoll"]["modifier"] == 1


def test_logs_are_bounded_fifo(manager):
    for index in range(MAX_CHAT_MESSAGES + 5):
        manager.add_chat_message(SESSION_ID, {"id": str(index), "message": f"m{index}"})
    for index in range(MAX_DICE_ROLLS + 3):
        manager.add_dice_roll(SESSION_ID, {"id": str(index)})
    for index in range(MAX_NOTES + 4):
        manager.add_note(SESSION_ID, {"id": str(index), "text": f"n{index}"})

    state = manager.get_session_state(SESSION_ID)
    assert len(state["chat"]) == MAX_CHAT_MESSAGES
    assert [m["id"] for m in state["chat"]] == [str(i) for i in range(5, MAX_CHAT_MESSAGES + 5)]
    assert len(state["diceRolls"]) == MAX_DICE_ROLLS
    assert state["diceRolls"][0]["id"] == "3"
    assert state["lastRoll"]["id"] == str(MAX_DICE_ROLLS + 2)
    assert len(state["notes"]) == MAX_NOTES
    assert [n["id"] for n in state["notes"]] == [str(i) for i in range(4, MAX_NOTES + 4)]

    state = _apply(manager, {"type": "add_note", "text": "last word"})
    assert len(state["notes"]) == MAX_NOTES
    assert state["notes"][0]["id"] == "5"
    assert state["notes"][-1]["text"] == "last word"


def test_add_note_trims_and_accepts_note_text(manager):
    state = _apply(manager, {"type": "add_note", "noteText": "  watch the tide  ", "author": "GM"})
    assert state["notes"][0]["text"] == "watch the tide"
    assert state["notes"][0]["author"] == "GM"


def test_restore_is_idempotent(manager):
    saved = {
        "currentScene": "obj_5",
        "activeChallenge": None,
        "chat": [{"id": "1", "playerName": "Alice", "message": "hi"}],
        "diceRolls": [],
        "notes": [],
        "gameObjects": [
            {"id": "obj_5", "type": "scene", "contents": {"name": "Docks"}, "tags": {}},
            {"id": "obj_6", "type": "character", "contents": {"characterName": "Rin"}, "tags": {}},
        ],
    }

    manager.restore_session_state(SESSION_ID, saved)
    manager.restore_session_state(SESSION_ID, saved)

    state = manager.get_session_state(SESSION_ID)
    assert len(state["gameObjects"]) == 2
    assert state["currentScene"] == "obj_5"
    assert state["chat"] == saved["chat"]


def test_cleanup_session_drops_state_and_objects(manager):
    _apply(manager, {"type": "create_object", "objectType": "character", "contents": {}})
    manager.cleanup_session(SESSION_ID)
    assert manager.has_state(SESSION_ID) is False
    assert manager.get_session_data(SESSION_ID)["gameObjects"] == []
    assert manager.get_session_data(SESSION_ID)["sessionId"] == SESSION_ID
