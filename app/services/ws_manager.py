# app/services/ws_manager.py
"""
Service: ws_manager.py
- Mapping connection_id -> WebSocket (id attribué à l'acceptation, uuid hex).
- Rooms par session : room -> set(connection_id) ET connection_id -> set(room).
- Snapshots immuables pour éviter "set changed size during iteration".
- Envois typés {"type", "payload"}; un envoi raté retire la socket morte.
- Admin: stats(), close_all().
"""
from __future__ import annotations
from typing import Any, Dict, Iterable, List, Optional, Set
from dataclasses import dataclass, field
from threading import RLock
from uuid import uuid4
import json
import logging

from starlette.websockets import WebSocket, WebSocketDisconnect

logger = logging.getLogger(__name__)


@dataclass
class WSManager:
    _lock: RLock = field(default_factory=RLock, init=False, repr=False)
    # connection_id -> WebSocket
    connections: Dict[str, WebSocket] = field(default_factory=dict)
    # room -> set(connection_id)
    rooms: Dict[str, Set[str]] = field(default_factory=dict)
    # reverse map: connection_id -> set(room)
    conn_rooms: Dict[str, Set[str]] = field(default_factory=dict)

    async def connect(self, ws: WebSocket) -> str:
        """Accepte la connexion WS et renvoie son identifiant."""
        await ws.accept()
        return self.register(ws)

    def register(self, ws: WebSocket, connection_id: Optional[str] = None) -> str:
        """Enregistre une socket déjà acceptée."""
        cid = connection_id or uuid4().hex
        with self._lock:
            self.connections[cid] = ws
            self.conn_rooms.setdefault(cid, set())
        return cid

    def unlink(self, connection_id: str) -> None:
        """Retire la connexion de toutes les structures (socket + rooms)."""
        with self._lock:
            self.connections.pop(connection_id, None)
            for room in self.conn_rooms.pop(connection_id, set()):
                members = self.rooms.get(room)
                if members is not None:
                    members.discard(connection_id)
                    if not members:
                        self.rooms.pop(room, None)

    async def disconnect(self, connection_id: str) -> None:
        """Ferme proprement la connexion et nettoie les registres."""
        with self._lock:
            ws = self.connections.get(connection_id)
        self.unlink(connection_id)
        if ws is None:
            return
        try:
            await ws.close()
        except RuntimeError as exc:
            # socket déjà fermée côté transport
            logger.debug("WS close ignored", extra={"connection_id": connection_id, "error": str(exc)})

    def is_connected(self, connection_id: str) -> bool:
        with self._lock:
            return connection_id in self.connections

    def connection_ids(self) -> List[str]:
        with self._lock:
            return list(self.connections.keys())

    # ---------- rooms ----------
    def join_room(self, connection_id: str, room: str) -> None:
        with self._lock:
            self.rooms.setdefault(room, set()).add(connection_id)
            self.conn_rooms.setdefault(connection_id, set()).add(room)

    def leave_room(self, connection_id: str, room: str) -> None:
        with self._lock:
            members = self.rooms.get(room)
            if members is not None:
                members.discard(connection_id)
                if not members:
                    self.rooms.pop(room, None)
            self.conn_rooms.get(connection_id, set()).discard(room)

    def rooms_of(self, connection_id: str) -> List[str]:
        with self._lock:
            return list(self.conn_rooms.get(connection_id, set()))

    # ---------- snapshots immuables ----------
    def _snapshot_room(self, room: str, exclude: Iterable[str] = ()) -> List[str]:
        skip = set(exclude)
        with self._lock:
            return [cid for cid in self.rooms.get(room, set()) if cid not in skip]

    def _snapshot_all(self) -> List[str]:
        with self._lock:
            return list(self.connections.keys())

    # ---------- envois ----------
    @staticmethod
    def _encode(message: Any) -> str:
        return json.dumps(message, ensure_ascii=False, separators=(",", ":"), default=str)

    async def _send_json_one(self, connection_id: str, payload: Any) -> bool:
        return await self._send_text_one(connection_id, self._encode(payload))

    async def _send_text_one(self, connection_id: str, data: str) -> bool:
        """Envoie à une connexion; renvoie True si succès, sinon False (et retire le WS mort)."""
        with self._lock:
            ws = self.connections.get(connection_id)
        if ws is None:
            return False
        try:
            await ws.send_text(data)
            return True
        except (RuntimeError, OSError, WebSocketDisconnect) as exc:
            logger.warning("WS send failed, dropping connection", extra={"connection_id": connection_id, "error": str(exc)})
            self.unlink(connection_id)
            return False

    async def send(self, connection_id: str, event_type: str, payload: Any) -> bool:
        return await self._send_json_one(connection_id, {"type": event_type, "payload": payload})

    async def emit_to_room(
        self,
        room: str,
        event_type: str,
        payload: Any,
        exclude: Iterable[str] = (),
    ) -> int:
        """Diffuse à toute la room (sauf `exclude`); renvoie le nombre d'envois réussis."""
        conns = self._snapshot_room(room, exclude)
        # encodé une fois : tous les destinataires reçoivent le même état
        data = self._encode({"type": event_type, "payload": payload})
        success = 0
        for cid in conns:
            if await self._send_text_one(cid, data):
                success += 1
        logger.debug("Room emit", extra={"room": room, "event": event_type, "sent": success, "targets": len(conns)})
        return success

    # ---------- admin ----------
    def stats(self) -> dict:
        with self._lock:
            rooms = {room: len(members) for room, members in self.rooms.items()}
            return {
                "connections_total": len(self.connections),
                "rooms": rooms,
                "rooms_total": len(rooms),
            }

    async def close_all(self) -> dict:
        """Ferme TOUTES les sockets."""
        for cid in self._snapshot_all():
            await self.disconnect(cid)
        return self.stats()
