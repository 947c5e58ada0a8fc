import pytest

pytest.importorskip("httpx", reason="httpx requis pour les tests client FastAPI")

from fastapi.testclient import TestClient

from app.main import app


def _join(ws, session_id: str, name: str, is_gm: bool = False) -> dict:
    ws.send_json({"type": "join-session", "payload": {"sessionId": session_id, "playerName": name, "isGM": is_gm}})
    reply = ws.receive_json()
    assert reply["type"] == "session-joined"
    return reply["payload"]


def test_health():
    client = TestClient(app)
    response = client.get("/api/health")
    assert response.status_code == 200
    payload = response.json()
    assert payload["status"] == "ok"
    assert payload["uptime"] >= 0
    assert payload["activeSessions"] == 0


def test_websocket_flow_and_session_views(runtime):
    with TestClient(app) as client:
        with client.websocket_connect("/ws") as ws:
            hello = ws.receive_json()
            assert hello["type"] == "connected"

            joined = _join(ws, "ABC123", "GM", is_gm=True)
            assert joined["player"]["id"] == hello["payload"]["connectionId"]
            assert joined["player"]["isGM"] is True
            assert joined["gameState"]["gameObjects"] == []

            ws.send_json({
                "type": "game-action",
                "payload": {"type": "create_object", "objectType": "character", "contents": {"characterName": "Rin"}},
            })
            update = ws.receive_json()
            assert update["type"] == "game-state-updated"
            object_id = update["payload"]["gameState"]["gameObjects"][0]["id"]

            state = client.get("/api/sessions/ABC123").json()
            assert state["sessionId"] == "ABC123"
            assert [o["id"] for o in state["gameObjects"]] == [object_id]

            objects = client.get("/api/sessions/ABC123/objects/character").json()
            assert [o["contents"]["characterName"] for o in objects["objects"]] == ["Rin"]
            assert client.get("/api/sessions/ABC123/objects/scene").json()["objects"] == []

            ws.send_text("not json")
            error = ws.receive_json()
            assert error == {"type": "error", "payload": {"message": "Invalid JSON message"}}

    # arrêt de l'app : sauvegarde de toutes les sessions en mémoire
    assert (runtime.persistence.sessions_dir / "ABC123.json").exists()

    client = TestClient(app)
    saved = client.get("/api/sessions").json()["sessions"]
    assert [s["sessionId"] for s in saved] == ["ABC123"]

    stats = client.get("/api/sessions/ABC123/stats").json()
    assert stats["totalGameObjects"] == 1

    # le GM s'est déconnecté avant la sauvegarde d'arrêt
    players = client.get("/api/sessions/ABC123/players").json()
    assert players == {"sessionId": "ABC123", "players": []}


def test_delete_session_everywhere(runtime):
    with TestClient(app) as client:
        with client.websocket_connect("/ws") as ws:
            ws.receive_json()
            _join(ws, "DOOMED", "GM", is_gm=True)
            ws.send_json({"type": "game-action", "payload": {"type": "create_object", "objectType": "scene", "contents": {}}})
            ws.receive_json()

        deleted = client.delete("/api/sessions/DOOMED")
        assert deleted.status_code == 200
        assert deleted.json()["deleted"] is True

        assert runtime.sessions.get_session("DOOMED") is None
        assert client.get("/api/sessions/DOOMED/objects/scene").json()["objects"] == []
        assert not (runtime.persistence.sessions_dir / "DOOMED.json").exists()


def test_unknown_stats_and_bad_ids():
    client = TestClient(app)
    assert client.get("/api/sessions/nothing/stats").status_code == 404
    assert client.get("/api/sessions/bad..id").status_code == 400


def test_binary_frame_gets_an_error_and_keeps_the_socket_open():
    with TestClient(app) as client:
        with client.websocket_connect("/ws") as ws:
            ws.receive_json()
            ws.send_bytes(b"\x00\x01")
            assert ws.receive_json() == {"type": "error", "payload": {"message": "Only text frames are supported"}}

            joined = _join(ws, "BIN", "Alice")
            assert joined["player"]["name"] == "Alice"
