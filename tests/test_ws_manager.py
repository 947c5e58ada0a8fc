from __future__ import annotations

import asyncio

from app.services.ws_manager import WSManager


def test_room_emit_sends_the_same_frame_to_everyone(make_socket):
    state = {"round": 1}

    class MutatingSocket(make_socket):
        # une autre action modifie l'état pendant l'envoi
        async def send_text(self, data: str):
            await super().send_text(data)
            await asyncio.sleep(0)
            state["round"] += 1

    manager = WSManager()
    sockets = [MutatingSocket() for _ in range(3)]

    async def scenario():
        for socket in sockets:
            manager.join_room(await manager.connect(socket), "ABC123")
        return await manager.emit_to_room("ABC123", "game-state-updated", {"gameState": state})

    assert asyncio.run(scenario()) == 3
    assert [s.payloads("game-state-updated") for s in sockets] == [[{"gameState": {"round": 1}}]] * 3
    assert state["round"] == 4


def test_room_emit_drops_dead_sockets_and_honours_exclude(make_socket):
    manager = WSManager()
    alive, dead, sender = make_socket(), make_socket(), make_socket()

    async def scenario():
        ids = []
        for socket in (alive, dead, sender):
            connection_id = await manager.connect(socket)
            manager.join_room(connection_id, "ABC123")
            ids.append(connection_id)
        dead.closed = True
        sent = await manager.emit_to_room("ABC123", "player-joined", {"player": "x"}, exclude=[ids[2]])
        return ids, sent

    (alive_id, dead_id, sender_id), sent = asyncio.run(scenario())

    assert sent == 1
    assert alive.payloads("player-joined") == [{"player": "x"}]
    assert sender.payloads("player-joined") == []
    assert manager.is_connected(dead_id) is False
    assert manager.rooms_of(alive_id) == ["ABC123"]
