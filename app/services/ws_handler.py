"""
Service: ws_handler.py
Rôle :
- Seul composant exposé au réseau : traduit les événements WebSocket en appels
  SessionManager / GameStateManager et renvoie des messages {"type", "payload"}.
- Tient la table connexion -> session (une session par connexion vivante).

Événements client -> serveur :
- join-session, leave-session, chat-message, game-action, roll-dice,
  get-saved-sessions, get-session-players, get-current-game-state

Frontière d'erreur :
- Chaque événement est traité dans un try/except : toute erreur devient un message
  `error {message}` envoyé à l'émetteur seul, jamais à la room.

Sauvegardes :
- Le snapshot est construit de façon synchrone juste après la mutation, l'écriture
  part en tâche de fond (`drain()` attend les écritures en cours).
"""
from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Awaitable, Callable, Dict, Optional, Set, Type, TypeVar

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from app.models.events import (
    ChatMessagePayload,
    CurrentGameStatePayload,
    JoinSessionPayload,
    RollDicePayload,
    SessionPlayersPayload,
)
from app.models.player import Player
from app.models.records import ChatMessage
from app.services.errors import NotFoundError, SessionError, ValidationError
from app.services.game_state import GameStateManager
from app.services.session_manager import SessionManager
from app.services.ws_manager import WSManager
from app.utils.time_utils import utc_now_iso

logger = logging.getLogger(__name__)

CONNECTED_MESSAGE = "Connected to tabletop session server"
NOT_IN_SESSION = "Not in a session"

P = TypeVar("P", bound=BaseModel)


def _parse(model: Type[P], payload: Dict[str, Any], message: str) -> P:
    try:
        return model.model_validate(payload)
    except PydanticValidationError as exc:
        raise ValidationError(message) from exc


class WebSocketHandler:
    def __init__(self, ws: WSManager, sessions: SessionManager, game_states: GameStateManager) -> None:
        self.ws = ws
        self.sessions = sessions
        self.game_states = game_states
        # connection_id -> session_id
        self.socket_sessions: Dict[str, str] = {}
        self._pending_saves: Set[asyncio.Task] = set()

        self._events: Dict[str, Callable[[str, Dict[str, Any]], Awaitable[None]]] = {
            "join-session": self.handle_join_session,
            "leave-session": self.handle_leave_session,
            "chat-message": self.handle_chat_message,
            "game-action": self.handle_game_action,
            "roll-dice": self.handle_roll_dice,
            "get-saved-sessions": self.handle_get_saved_sessions,
            "get-session-players": self.handle_get_session_players,
            "get-current-game-state": self.handle_get_current_game_state,
        }
        self._failure_messages = {
            "join-session": "Failed to join session",
            "game-action": "Failed to process game action",
            "roll-dice": "Failed to process dice roll",
            "get-saved-sessions": "Failed to get saved sessions",
            "get-session-players": "Failed to get session players",
            "get-current-game-state": "Failed to reconnect to session",
        }

        sessions.set_state_provider(self._state_for_save)
        sessions.set_eviction_listener(game_states.cleanup_session)

    # -----------------------------
    # Cycle de vie d'une connexion
    # -----------------------------
    async def on_connect(self, websocket) -> str:
        connection_id = await self.ws.connect(websocket)
        logger.info("New connection", extra={"connection_id": connection_id})
        await self.ws.send(
            connection_id,
            "connected",
            {"message": CONNECTED_MESSAGE, "connectionId": connection_id, "timestamp": utc_now_iso()},
        )
        return connection_id

    async def on_text(self, connection_id: str, raw: str) -> None:
        """Décode une trame texte puis la route; une trame invalide produit un `error`."""
        try:
            frame = json.loads(raw)
        except ValueError:
            await self.send_error(connection_id, "Invalid JSON message")
            return
        if not isinstance(frame, dict) or not isinstance(frame.get("type"), str):
            await self.send_error(connection_id, "Message type is required")
            return

        payload = frame.get("payload")
        if payload is None:
            payload = {k: v for k, v in frame.items() if k != "type"}
        await self.handle_event(connection_id, frame["type"], payload)

    async def handle_event(self, connection_id: str, event: str, payload: Any) -> None:
        handler = self._events.get(event)
        if handler is None:
            await self.send_error(connection_id, f"Unknown event: {event}")
            return
        if not isinstance(payload, dict):
            await self.send_error(connection_id, "Event payload must be an object")
            return
        try:
            await handler(connection_id, payload)
        except SessionError as exc:
            logger.warning("Event rejected", extra={"event": event, "connection_id": connection_id, "error": str(exc)})
            await self.send_error(connection_id, str(exc))
        except Exception:
            logger.exception("Event handler failed", extra={"event": event, "connection_id": connection_id})
            await self.send_error(connection_id, self._failure_messages.get(event, "Internal server error"))

    async def on_disconnect(self, connection_id: str) -> None:
        """Déconnexion transport : comme un leave, sans accusé personnel."""
        session_id = self.socket_sessions.pop(connection_id, None)
        if session_id is not None:
            self._schedule_save(session_id)
            player = self.sessions.remove_player_from_session(session_id, connection_id)
            self.ws.leave_room(connection_id, session_id)
            session = self.sessions.get_session(session_id)
            if player is not None and session is not None:
                await self.ws.emit_to_room(
                    session_id,
                    "player-disconnected",
                    {"playerName": player.name, "playerId": player.id, "session": session.to_client()},
                )
            logger.info("Connection left session", extra={"connection_id": connection_id, "session_id": session_id})
        self.ws.unlink(connection_id)

    # -----------------------------
    # Helpers
    # -----------------------------
    async def send_error(self, connection_id: str, message: str) -> None:
        await self.ws.send(connection_id, "error", {"message": message})

    def _require_session(self, connection_id: str) -> str:
        session_id = self.socket_sessions.get(connection_id)
        if session_id is None or self.sessions.get_session(session_id) is None:
            raise ValidationError(NOT_IN_SESSION)
        return session_id

    def _state_for_save(self, session_id: str) -> Optional[Dict[str, Any]]:
        if not self.game_states.has_state(session_id):
            return None
        return self.game_states.get_session_state(session_id)

    def _schedule_save(self, session_id: str) -> Optional[asyncio.Task]:
        """Fige le snapshot maintenant, écrit en arrière-plan (si autoSave)."""
        session = self.sessions.get_session(session_id)
        if session is None or not session.settings.auto_save:
            return None
        snapshot = self.sessions.build_snapshot(session_id, self._state_for_save(session_id))
        task = asyncio.get_running_loop().create_task(self.sessions.write_snapshot(session_id, snapshot))
        self._pending_saves.add(task)
        task.add_done_callback(self._pending_saves.discard)
        return task

    async def drain(self) -> None:
        """Attend la fin des écritures de snapshots en cours."""
        while self._pending_saves:
            await asyncio.gather(*list(self._pending_saves), return_exceptions=True)

    async def _leave_current(self, connection_id: str, notify_self: bool) -> None:
        session_id = self.socket_sessions.get(connection_id)
        if session_id is None:
            return
        self._schedule_save(session_id)
        player = self.sessions.remove_player_from_session(session_id, connection_id)
        self.ws.leave_room(connection_id, session_id)
        self.socket_sessions.pop(connection_id, None)
        if player is None:
            return
        if notify_self:
            await self.ws.send(connection_id, "session-left", {"playerName": player.name, "sessionId": session_id})
        session = self.sessions.get_session(session_id)
        await self.ws.emit_to_room(
            session_id,
            "player-left",
            {
                "playerName": player.name,
                "playerId": player.id,
                "session": session.to_client() if session else None,
            },
        )

    # -----------------------------
    # Événements
    # -----------------------------
    async def handle_join_session(self, connection_id: str, payload: Dict[str, Any]) -> None:
        data = _parse(JoinSessionPayload, payload, "Session ID and player name are required")

        current = self.socket_sessions.get(connection_id)
        if current is not None:
            await self._leave_current(connection_id, notify_self=False)

        session, saved_state = await self.sessions.get_or_create_session(
            data.session_id, {"name": f"Session {data.session_id}", "autoSave": True}
        )
        if saved_state:
            self.game_states.restore_session_state(data.session_id, saved_state)

        self.sessions.cleanup_disconnected_players(data.session_id, self.ws.connection_ids())
        player = self.sessions.add_player_to_session(
            data.session_id, Player(id=connection_id, name=data.player_name, is_gm=data.is_gm)
        )
        self.ws.join_room(connection_id, data.session_id)
        self.socket_sessions[connection_id] = data.session_id

        game_state = self.game_states.get_session_state(data.session_id)
        session_view = session.to_client()
        await self.ws.send(
            connection_id,
            "session-joined",
            {"session": session_view, "player": player.to_client(), "gameState": game_state},
        )
        await self.ws.emit_to_room(
            data.session_id,
            "player-joined",
            {"player": player.to_client(), "session": session_view},
            exclude=[connection_id],
        )
        self._schedule_save(data.session_id)

    async def handle_leave_session(self, connection_id: str, payload: Dict[str, Any]) -> None:
        if connection_id not in self.socket_sessions:
            raise ValidationError(NOT_IN_SESSION)
        await self._leave_current(connection_id, notify_self=True)

    async def handle_chat_message(self, connection_id: str, payload: Dict[str, Any]) -> None:
        session_id = self._require_session(connection_id)
        data = _parse(ChatMessagePayload, payload, "Message must be a non-empty string")
        player_name = self.sessions.get_player_name(session_id, connection_id)
        if player_name is None:
            raise ValidationError(NOT_IN_SESSION)

        message = ChatMessage(player_name=player_name, message=data.message).to_client()
        self.game_states.add_chat_message(session_id, message)
        self.sessions.update_session_activity(session_id)
        await self.ws.emit_to_room(session_id, "chat-message", message)

    async def handle_game_action(self, connection_id: str, payload: Dict[str, Any]) -> None:
        session_id = self._require_session(connection_id)
        if not self.game_states.validate_action(session_id, payload):
            raise ValidationError("Invalid game action")

        game_state = self.game_states.apply_action(session_id, payload)
        self.sessions.update_session_activity(session_id)
        self._schedule_save(session_id)
        await self.ws.emit_to_room(session_id, "game-state-updated", {"gameState": game_state})

    async def handle_roll_dice(self, connection_id: str, payload: Dict[str, Any]) -> None:
        session_id = self._require_session(connection_id)
        data = _parse(RollDicePayload, payload, "Invalid relevant object IDs")
        action = {
            "type": "roll_dice",
            "relevantObjectIds": data.relevant_object_ids,
            "selectedTags": data.selected_tags,
            "modifier": data.modifier,
            "playerId": connection_id,
            "playerName": self.sessions.get_player_name(session_id, connection_id),
        }
        if not self.game_states.validate_action(session_id, action):
            raise ValidationError("Invalid dice roll action")

        game_state = self.game_states.apply_action(session_id, action)
        self.sessions.update_session_activity(session_id)
        self._schedule_save(session_id)
        # résultat léger d'abord, l'état complet ensuite
        await self.ws.emit_to_room(session_id, "dice-rolled", game_state["lastRoll"])
        await self.ws.emit_to_room(session_id, "game-state-updated", {"gameState": game_state})

    async def handle_get_saved_sessions(self, connection_id: str, payload: Dict[str, Any]) -> None:
        sessions = await self.sessions.get_saved_sessions()
        await self.ws.send(connection_id, "saved-sessions", {"sessions": sessions})

    async def handle_get_session_players(self, connection_id: str, payload: Dict[str, Any]) -> None:
        data = _parse(SessionPlayersPayload, payload, "Session ID is required")
        players = await self.sessions.get_session_players(data.session_id)
        await self.ws.send(connection_id, "session-players", {"sessionId": data.session_id, "players": players})

    async def handle_get_current_game_state(self, connection_id: str, payload: Dict[str, Any]) -> None:
        data = _parse(CurrentGameStatePayload, payload, "Session ID and player name are required")
        session_id = data.session_id

        session = self.sessions.get_session(session_id)
        if session is None:
            loaded = await self.sessions.load_session(session_id)
            if loaded is None:
                raise NotFoundError("Session not found")
            session, saved_state = loaded
            if saved_state:
                self.game_states.restore_session_state(session_id, saved_state)

        current = self.socket_sessions.get(connection_id)
        if current is not None and current != session_id:
            await self._leave_current(connection_id, notify_self=False)

        rebound = None
        if session.find_player_by_name(data.player_name) is not None:
            rebound = self.sessions.rebind_player_connection(session_id, data.player_name, connection_id)
        # joueurs du snapshot restés sur des connexions mortes
        self.sessions.cleanup_disconnected_players(session_id, self.ws.connection_ids())
        player = rebound or self.sessions.add_player_to_session(
            session_id, Player(id=connection_id, name=data.player_name, is_gm=False)
        )
        self.ws.join_room(connection_id, session_id)
        self.socket_sessions[connection_id] = session_id

        session_view = session.to_client()
        await self.ws.send(
            connection_id,
            "current-game-state",
            {
                "session": session_view,
                "player": player.to_client(),
                "gameState": self.game_states.get_session_state(session_id),
            },
        )
        await self.ws.emit_to_room(
            session_id,
            "player-joined",
            {"player": player.to_client(), "session": session_view},
            exclude=[connection_id],
        )
