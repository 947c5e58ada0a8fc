from __future__ import annotations

from app.services.game_objects import GameObjectManager

SESSION_ID = "objects_session"


def test_create_assigns_sequential_ids_and_filters_by_type():
    store = GameObjectManager()
    rin = store.create_game_object(SESSION_ID, "character", {"characterName": "Rin"}, created_by="p1")
    scene = store.create_game_object(SESSION_ID, "scene", {"name": "Docks"})

    assert rin["id"] == "obj_1"
    assert scene["id"] == "obj_2"
    assert rin["createdBy"] == "p1"
    assert store.get_session_objects(SESSION_ID, "character") == [rin]
    assert len(store.get_session_objects(SESSION_ID)) == 2
    assert store.get_session_objects("other_session") == []


def test_update_merges_contents_and_replaces_tags():
    store = GameObjectManager()
    obj = store.create_game_object(SESSION_ID, "character", {"characterName": "Rin", "level": 1}, {"old": {}})

    store.update_game_object(SESSION_ID, obj["id"], {"level": 2}, {"new": {}}, "p2")

    updated = store.get_game_object(SESSION_ID, obj["id"])
    assert updated["contents"] == {"characterName": "Rin", "level": 2}
    assert updated["tags"] == {"new": {}}
    assert updated["lastModifiedBy"] == "p2"
    assert store.update_game_object(SESSION_ID, "obj_999", {"x": 1}) is None


def test_tags_drive_modifier_and_buckets():
    store = GameObjectManager()
    obj = store.create_game_object(SESSION_ID, "character", {"name": "Rin"})
    store.add_tag(SESSION_ID, obj["id"], "helpful", "sharp blade", 1, "p1")
    store.add_tag(SESSION_ID, obj["id"], "harmful", "wounded", -1, "p1")
    store.add_tag(SESSION_ID, obj["id"], "weird", "glowing", 1, "p1")

    assert store.calculate_modifier(SESSION_ID, [obj["id"]]) == 1
    relevant = store.get_relevant_tags(SESSION_ID, [obj["id"]])
    assert [t["name"] for t in relevant["helpful"]] == ["sharp blade"]
    assert [t["name"] for t in relevant["harmful"]] == ["wounded"]
    assert [t["name"] for t in relevant["other"]] == ["glowing"]
    assert relevant["helpful"][0]["source"] == "character: Rin"
    assert store.object_has_tag(SESSION_ID, obj["id"], "wounded")

    store.remove_tag(SESSION_ID, obj["id"], "harmful", "wounded")
    assert "harmful" not in store.get_game_object(SESSION_ID, obj["id"])["tags"]
    assert not store.object_has_tag(SESSION_ID, obj["id"], "wounded")
    assert store.remove_tag(SESSION_ID, obj["id"], "harmful", "wounded") is None


def test_restore_replaces_by_id_and_moves_counter():
    store = GameObjectManager()
    saved = {"id": "obj_41", "type": "scene", "contents": {"name": "Harbor"}, "tags": {}}

    store.restore_game_object(SESSION_ID, dict(saved))
    store.restore_game_object(SESSION_ID, dict(saved))

    assert len(store.get_session_objects(SESSION_ID)) == 1
    created = store.create_game_object(SESSION_ID, "character", {})
    assert created["id"] == "obj_42"


def test_delete_and_cleanup():
    store = GameObjectManager()
    obj = store.create_game_object(SESSION_ID, "fellowship", {})
    assert store.delete_game_object(SESSION_ID, obj["id"]) is True
    assert store.delete_game_object(SESSION_ID, obj["id"]) is False

    store.create_game_object(SESSION_ID, "character", {})
    stats = store.get_session_stats(SESSION_ID)
    assert stats["totalObjects"] == 1
    assert stats["objectTypes"] == {"character": 1}

    store.cleanup_session(SESSION_ID)
    assert store.get_session_objects(SESSION_ID) == []
