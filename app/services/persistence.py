"""
Service: persistence.py
Rôle :
- Passerelle de persistance : un snapshot JSON (session + état de jeu) par session.
- Lecture/écriture via orjson (io_utils), exécutées dans un worker thread (anyio)
  pour ne jamais bloquer la boucle d'événements.

Stockage :
- `<DATA_DIR>/sessions/<session_id>.json`

Contrat :
- `load_complete_session()` renvoie None si aucun snapshot n'existe (cas "nouvelle session"),
  lève `PersistenceError` si le fichier est illisible ou invalide.
- `save_complete_session()` lève `PersistenceError` sur échec I/O; c'est l'appelant
  (SessionManager) qui décide de journaliser et d'avaler l'erreur.
- La sérialisation tronque l'historique : 20 messages, 5 jets, 10 notes.
"""
from __future__ import annotations

import copy
import functools
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import anyio
import orjson
from pydantic import ValidationError as PydanticValidationError

from app.config.settings import settings
from app.models.game import PersistedGameState, SessionSnapshot
from app.models.session import Session
from app.services.errors import PersistenceError, ValidationError
from app.utils.time_utils import parse_iso, utc_now_iso
from .io_utils import delete_file, read_json, write_json

logger = logging.getLogger(__name__)

SESSIONS_DIRNAME = "sessions"
PERSISTED_CHAT_LIMIT = 20
PERSISTED_DICE_ROLLS_LIMIT = 5
PERSISTED_NOTES_LIMIT = 10


def _tail(items: Any, limit: int) -> list:
    if not isinstance(items, list):
        return []
    return list(items[-limit:])


def serialize_game_state(game_state: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """Copie profonde persistable de l'état de jeu (historique tronqué)."""
    if game_state is None:
        return None
    data = copy.deepcopy(dict(game_state))
    data["chat"] = _tail(data.get("chat"), PERSISTED_CHAT_LIMIT)
    data["diceRolls"] = _tail(data.get("diceRolls"), PERSISTED_DICE_ROLLS_LIMIT)
    data["notes"] = _tail(data.get("notes"), PERSISTED_NOTES_LIMIT)
    data["gameObjects"] = list(data.get("gameObjects") or [])
    return data


def deserialize_game_state(raw: Optional[PersistedGameState]) -> Optional[Dict[str, Any]]:
    if raw is None:
        return None
    return raw.to_dict()


class PersistenceManager:
    """Stockage fichier des snapshots de sessions."""

    def __init__(self, data_dir: Optional[Path | str] = None) -> None:
        self.data_dir = Path(data_dir or settings.DATA_DIR)
        self.sessions_dir = self.data_dir / SESSIONS_DIRNAME

    # -----------------------------
    # Chemins
    # -----------------------------
    def _ensure_dirs(self) -> None:
        self.sessions_dir.mkdir(parents=True, exist_ok=True)

    def session_path(self, session_id: str) -> Path:
        sid = str(session_id or "")
        if not sid.strip() or "/" in sid or "\\" in sid or ".." in sid:
            raise ValidationError(f"Invalid session id: {session_id!r}")
        return self.sessions_dir / f"{sid}.json"

    # -----------------------------
    # Snapshots
    # -----------------------------
    def build_snapshot(
        self,
        session_id: str,
        session: Session,
        game_state: Optional[Dict[str, Any]],
    ) -> Dict[str, Any]:
        """Sérialise immédiatement (synchrone) : l'écriture peut ensuite être différée."""
        return {
            "sessionId": session_id,
            "lastSaved": utc_now_iso(),
            "session": session.to_snapshot(),
            "gameState": serialize_game_state(game_state),
        }

    async def save_snapshot(self, session_id: str, snapshot: Dict[str, Any]) -> None:
        path = self.session_path(session_id)
        try:
            self._ensure_dirs()
            await anyio.to_thread.run_sync(functools.partial(write_json, path, snapshot, indent=True))
        except (OSError, TypeError, orjson.JSONEncodeError) as exc:
            raise PersistenceError(f"Failed to save session {session_id}: {exc}") from exc
        logger.info("Saved session data", extra={"session_id": session_id})

    async def save_complete_session(
        self,
        session_id: str,
        session: Session,
        game_state: Optional[Dict[str, Any]],
    ) -> None:
        await self.save_snapshot(session_id, self.build_snapshot(session_id, session, game_state))

    async def load_session_data(self, session_id: str) -> Optional[Dict[str, Any]]:
        """Snapshot brut (dict) ou None s'il n'existe pas."""
        path = self.session_path(session_id)
        try:
            data = await anyio.to_thread.run_sync(read_json, path)
        except (OSError, orjson.JSONDecodeError) as exc:
            raise PersistenceError(f"Failed to read session {session_id}: {exc}") from exc
        if data is None:
            logger.debug("No saved data found", extra={"session_id": session_id})
            return None
        if not isinstance(data, dict):
            raise PersistenceError(f"Corrupted snapshot for session {session_id}")
        return data

    async def load_complete_session(
        self, session_id: str
    ) -> Optional[Tuple[Session, Optional[Dict[str, Any]]]]:
        data = await self.load_session_data(session_id)
        if data is None:
            return None
        try:
            snapshot = SessionSnapshot.model_validate({"sessionId": session_id, **data})
            if not snapshot.session:
                raise PersistenceError(f"Snapshot for session {session_id} has no session data")
            session = Session.from_snapshot(snapshot.session)
        except PydanticValidationError as exc:
            raise PersistenceError(f"Invalid snapshot for session {session_id}: {exc}") from exc
        return session, deserialize_game_state(snapshot.game_state)

    async def delete_session_data(self, session_id: str) -> bool:
        path = self.session_path(session_id)
        try:
            deleted = await anyio.to_thread.run_sync(delete_file, path)
        except OSError as exc:
            raise PersistenceError(f"Failed to delete session {session_id}: {exc}") from exc
        if deleted:
            logger.info("Deleted session data", extra={"session_id": session_id})
        return deleted

    # -----------------------------
    # Requêtes
    # -----------------------------
    def _disk_session_ids(self) -> List[str]:
        if not self.sessions_dir.exists():
            return []
        return sorted(p.stem for p in self.sessions_dir.glob("*.json") if p.is_file())

    async def get_all_sessions(self) -> List[Dict[str, Any]]:
        """Métadonnées des sessions sauvegardées, les plus récentes d'abord."""
        sessions: List[Dict[str, Any]] = []
        for session_id in self._disk_session_ids():
            try:
                data = await self.load_session_data(session_id)
            except (PersistenceError, ValidationError):
                logger.warning("Skipping unreadable snapshot", extra={"session_id": session_id})
                continue
            if not data:
                continue
            session = data.get("session") or {}
            players = session.get("players") or []
            sessions.append({
                "sessionId": session_id,
                "name": session.get("name") or session_id,
                "created": session.get("created"),
                "lastSaved": data.get("lastSaved"),
                "playerCount": len(players),
                "isActive": bool(session.get("isActive", False)),
            })

        def _key(entry: Dict[str, Any]) -> float:
            moment = parse_iso(entry.get("lastSaved"))
            return moment.timestamp() if moment else 0.0

        return sorted(sessions, key=_key, reverse=True)

    async def get_session_players(self, session_id: str) -> List[str]:
        """Noms (dédupliqués, ordre d'apparition) des joueurs enregistrés dans le snapshot."""
        data = await self.load_session_data(session_id)
        if not data or not data.get("session"):
            return []
        session = Session.from_snapshot(data["session"])
        names: List[str] = []
        for player in session.players.values():
            if player.name and player.name not in names:
                names.append(player.name)
        return names

    async def get_session_stats(self, session_id: str) -> Optional[Dict[str, Any]]:
        data = await self.load_session_data(session_id)
        if not data:
            return None
        game_state = data.get("gameState") or {}
        session = data.get("session") or {}
        return {
            "sessionId": session_id,
            "totalChatMessages": len(game_state.get("chat") or []),
            "totalDiceRolls": len(game_state.get("diceRolls") or []),
            "totalNotes": len(game_state.get("notes") or []),
            "totalGameObjects": len(game_state.get("gameObjects") or []),
            "lastSaved": data.get("lastSaved"),
            "created": session.get("created"),
        }
