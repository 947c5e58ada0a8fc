"""
Service: session_manager.py
Rôle :
- Registre en mémoire des sessions (seul mutateur autorisé des métadonnées de session).
- Pont vers la persistance (chargement/sauvegarde des snapshots).
- Auto-save périodique par session + "janitor" (éviction des sessions inactives,
  purge des timers orphelins).

Invariants :
- len(session.players) <= session.max_players
- au plus un joueur par nom d'affichage (la reconnexion remplace l'entrée existante)
- session.is_active == bool(session.players)

Notes :
- Les timers sont des tâches asyncio; armer un timer déjà armé ne fait rien.
- Sans boucle d'événements active (ex: appel synchrone en test), l'armement est
  différé : `add_player_to_session()` ré-arme de façon idempotente.
- Le timer ne fait que LIRE l'état de jeu via le provider enregistré par le handler.
"""
from __future__ import annotations

import asyncio
import logging
from datetime import timedelta
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Tuple

from app.config.settings import settings
from app.models.player import Player
from app.models.session import Session, SessionSettings
from app.services.errors import (
    AlreadyExistsError,
    DuplicateConnectionError,
    NotFoundError,
    PersistenceError,
    SessionFullError,
    ValidationError,
)
from app.services.persistence import PersistenceManager
from app.utils.time_utils import parse_iso, utc_now

logger = logging.getLogger(__name__)

GameStateProvider = Callable[[str], Optional[Dict[str, Any]]]


class SessionManager:
    def __init__(
        self,
        persistence: Optional[PersistenceManager] = None,
        *,
        auto_save_interval: Optional[float] = None,
        session_timeout: Optional[float] = None,
        cleanup_interval: Optional[float] = None,
        max_players: Optional[int] = None,
    ) -> None:
        self.persistence = persistence or PersistenceManager()
        self.auto_save_interval = auto_save_interval or settings.AUTO_SAVE_INTERVAL_SECONDS
        self.session_timeout = session_timeout or settings.SESSION_TIMEOUT_SECONDS
        self.cleanup_interval = cleanup_interval or settings.CLEANUP_INTERVAL_SECONDS
        self.max_players = max_players or settings.MAX_PLAYERS_PER_SESSION

        self._sessions: Dict[str, Session] = {}
        self._auto_save_tasks: Dict[str, asyncio.Task] = {}
        self._janitor: Optional[asyncio.Task] = None
        self._state_provider: Optional[GameStateProvider] = None
        self._evict_listener: Optional[Callable[[str], None]] = None
        self._write_locks: Dict[str, asyncio.Lock] = {}
        self._load_locks: Dict[str, asyncio.Lock] = {}

    def set_eviction_listener(self, listener: Optional[Callable[[str], None]]) -> None:
        """Appelé avec l'id de chaque session évincée par le janitor."""
        self._evict_listener = listener

    def set_state_provider(self, provider: Optional[GameStateProvider]) -> None:
        """Source de l'état de jeu lue par l'auto-save (enregistrée par le handler WS)."""
        self._state_provider = provider

    # -----------------------------
    # Création / chargement
    # -----------------------------
    def _build_session(self, session_id: str, options: Optional[Mapping[str, Any]]) -> Session:
        opts = dict(options or {})
        raw_settings: Dict[str, Any] = {
            "allowSpectators": bool(opts.get("allowSpectators", False)),
            "autoSave": opts.get("autoSave") is not False,
        }
        raw_settings.update(opts.get("settings") or {})
        return Session(
            id=session_id,
            name=opts.get("name") or f"Session {session_id}",
            max_players=opts.get("maxPlayers") or self.max_players,
            settings=SessionSettings.model_validate(raw_settings),
        )

    def create_session(self, session_id: str, options: Optional[Mapping[str, Any]] = None) -> Session:
        if not session_id or not str(session_id).strip():
            raise ValidationError("Session id is required")
        if session_id in self._sessions:
            raise AlreadyExistsError(f"Session already exists: {session_id}")

        session = self._build_session(session_id, options)
        self._sessions[session_id] = session
        if session.settings.auto_save:
            self.start_auto_save(session_id)
        logger.info("Created session", extra={"session_id": session_id})
        return session

    def _load_lock(self, session_id: str) -> asyncio.Lock:
        return self._load_locks.setdefault(session_id, asyncio.Lock())

    async def load_session(self, session_id: str) -> Optional[Tuple[Session, Optional[Dict[str, Any]]]]:
        """
        (session, game_state) depuis le snapshot, ou None (absent ou illisible).
        Une session déjà enregistrée n'est jamais remplacée : elle est renvoyée telle quelle,
        sans état à restaurer.
        """
        async with self._load_lock(session_id):
            return await self._load_registered(session_id)

    async def _load_registered(self, session_id: str) -> Optional[Tuple[Session, Optional[Dict[str, Any]]]]:
        # appelant détenteur du verrou de chargement de `session_id`
        live = self._sessions.get(session_id)
        if live is not None:
            return live, None
        try:
            loaded = await self.persistence.load_complete_session(session_id)
        except (PersistenceError, ValidationError) as exc:
            logger.warning("Could not load session", extra={"session_id": session_id, "error": str(exc)})
            return None
        if loaded is None:
            return None
        if session_id in self._sessions:
            return self._sessions[session_id], None

        session, game_state = loaded
        self._sessions[session_id] = session
        if session.settings.auto_save:
            self.start_auto_save(session_id)
        logger.info(
            "Loaded session",
            extra={
                "session_id": session_id,
                "players": len(session.players),
                "objects": len((game_state or {}).get("gameObjects") or []),
            },
        )
        return session, game_state

    async def get_or_create_session(
        self, session_id: str, options: Optional[Mapping[str, Any]] = None
    ) -> Tuple[Session, Optional[Dict[str, Any]]]:
        """
        Session vivante si déjà en mémoire (game_state None : rien à restaurer),
        sinon snapshot persisté, sinon création.

        La session en mémoire passe avant le snapshot : recharger le disque par-dessus
        une partie en cours perdrait tout ce qui n'a pas encore été sauvegardé.
        Chargement et création sont sérialisés par id : deux joins simultanés
        obtiennent le même objet Session.
        """
        live = self._sessions.get(session_id)
        if live is not None:
            return live, None
        async with self._load_lock(session_id):
            loaded = await self._load_registered(session_id)
            if loaded is not None:
                return loaded
            return self.create_session(session_id, options), None

    # -----------------------------
    # Lecture
    # -----------------------------
    def get_session(self, session_id: str) -> Optional[Session]:
        return self._sessions.get(session_id)

    def get_all_sessions(self) -> List[Session]:
        return list(self._sessions.values())

    def get_active_sessions(self) -> List[Session]:
        return [s for s in self._sessions.values() if s.is_active]

    def get_player(self, session_id: str, connection_id: str) -> Optional[Player]:
        session = self._sessions.get(session_id)
        return session.players.get(connection_id) if session else None

    def get_player_name(self, session_id: str, connection_id: str) -> Optional[str]:
        player = self.get_player(session_id, connection_id)
        return player.name if player else None

    def find_player_by_name(self, session_id: str, name: str) -> Optional[Player]:
        session = self._sessions.get(session_id)
        return session.find_player_by_name(name) if session else None

    def update_session_activity(self, session_id: str) -> None:
        session = self._sessions.get(session_id)
        if session is not None:
            session.touch()

    # -----------------------------
    # Joueurs
    # -----------------------------
    def add_player_to_session(self, session_id: str, player: Player) -> Player:
        session = self._sessions.get(session_id)
        if session is None:
            raise NotFoundError(f"Session not found: {session_id}")
        if len(session.players) >= session.max_players:
            raise SessionFullError(f"Session is full ({session.max_players} players)")
        if player.id in session.players:
            raise DuplicateConnectionError("Player already in session")

        existing = session.find_player_by_name(player.name)
        if existing is not None:
            # même humain, nouvelle connexion : une seule entrée par nom
            del session.players[existing.id]
            stored = existing.model_copy(update={"id": player.id, "is_gm": player.is_gm})
            logger.info(
                "Player reconnected",
                extra={"session_id": session_id, "player_name": player.name, "old_id": existing.id, "new_id": player.id},
            )
        else:
            stored = player
            logger.info("Player joined", extra={"session_id": session_id, "player_name": player.name})

        session.players[stored.id] = stored
        session.touch()
        session.is_active = True
        if session.settings.auto_save:
            self.start_auto_save(session_id)
        return stored

    def rebind_player_connection(self, session_id: str, player_name: str, connection_id: str) -> Player:
        """Rattache le joueur `player_name` à une nouvelle connexion (l'ancienne clé disparaît)."""
        session = self._sessions.get(session_id)
        if session is None:
            raise NotFoundError(f"Session not found: {session_id}")
        existing = session.find_player_by_name(player_name)
        if existing is None:
            raise NotFoundError(f"Player not found: {player_name}")
        if existing.id != connection_id:
            if connection_id in session.players:
                raise DuplicateConnectionError("Connection already bound to another player")
            del session.players[existing.id]
            existing = existing.model_copy(update={"id": connection_id})
            session.players[connection_id] = existing
        session.touch()
        session.is_active = True
        return existing

    def remove_player_from_session(self, session_id: str, connection_id: str) -> Optional[Player]:
        session = self._sessions.get(session_id)
        if session is None:
            return None
        player = session.players.pop(connection_id, None)
        if player is None:
            return None
        session.touch()
        if not session.players:
            session.is_active = False
        logger.info("Player left", extra={"session_id": session_id, "player_name": player.name})
        return player

    def cleanup_disconnected_players(self, session_id: str, live_connection_ids: Iterable[str]) -> List[Player]:
        """Retire les joueurs dont la connexion n'est plus vivante (déconnexions non signalées)."""
        session = self._sessions.get(session_id)
        if session is None:
            return []
        live = set(live_connection_ids)
        removed: List[Player] = []
        for connection_id in [cid for cid in session.players if cid not in live]:
            removed.append(session.players.pop(connection_id))
        if removed:
            if not session.players:
                session.is_active = False
            logger.info(
                "Removed stale players",
                extra={"session_id": session_id, "players": [p.name for p in removed]},
            )
        return removed

    # -----------------------------
    # Persistance
    # -----------------------------
    def build_snapshot(self, session_id: str, game_state: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
        """Snapshot figé maintenant (synchrone); None si la session est inconnue."""
        session = self._sessions.get(session_id)
        if session is None:
            return None
        return self.persistence.build_snapshot(session_id, session, game_state)

    async def write_snapshot(self, session_id: str, snapshot: Optional[Dict[str, Any]]) -> bool:
        """
        Écriture best-effort : l'échec est journalisé, jamais propagé.
        Une session retirée du registre entre-temps (suppression, éviction) n'est plus écrite.
        """
        if snapshot is None:
            return False
        # écritures d'une même session sérialisées dans l'ordre de création
        lock = self._write_locks.setdefault(session_id, asyncio.Lock())
        try:
            async with lock:
                if session_id not in self._sessions:
                    logger.debug("Skipping save of unregistered session", extra={"session_id": session_id})
                    return False
                await self.persistence.save_snapshot(session_id, snapshot)
        except (PersistenceError, ValidationError) as exc:
            logger.warning("Failed to save session", extra={"session_id": session_id, "error": str(exc)})
            return False
        return True

    async def save_session(self, session_id: str, game_state: Optional[Dict[str, Any]]) -> bool:
        return await self.write_snapshot(session_id, self.build_snapshot(session_id, game_state))

    async def delete_session(self, session_id: str) -> bool:
        """Retire la session de la mémoire et supprime son snapshot. True si quelque chose existait."""
        self.stop_auto_save(session_id)
        existed = self._sessions.pop(session_id, None) is not None
        self._write_locks.pop(session_id, None)
        self._load_locks.pop(session_id, None)
        try:
            deleted = await self.persistence.delete_session_data(session_id)
        except PersistenceError as exc:
            logger.warning("Failed to delete session data", extra={"session_id": session_id, "error": str(exc)})
            deleted = False
        logger.info("Deleted session", extra={"session_id": session_id})
        return existed or deleted

    async def save_all_active(self) -> int:
        """Sauvegarde chaque session en mémoire (arrêt du serveur)."""
        saved = 0
        for session_id in list(self._sessions):
            game_state = self._state_provider(session_id) if self._state_provider else None
            if await self.save_session(session_id, game_state):
                saved += 1
        return saved

    async def get_saved_sessions(self) -> List[Dict[str, Any]]:
        return await self.persistence.get_all_sessions()

    async def get_session_players(self, session_id: str) -> List[str]:
        try:
            return await self.persistence.get_session_players(session_id)
        except (PersistenceError, ValidationError) as exc:
            logger.warning("Could not read session players", extra={"session_id": session_id, "error": str(exc)})
            return []

    async def get_session_stats(self, session_id: str) -> Optional[Dict[str, Any]]:
        try:
            return await self.persistence.get_session_stats(session_id)
        except (PersistenceError, ValidationError) as exc:
            logger.warning("Could not read session stats", extra={"session_id": session_id, "error": str(exc)})
            return None

    # -----------------------------
    # Auto-save
    # -----------------------------
    def is_auto_saving(self, session_id: str) -> bool:
        task = self._auto_save_tasks.get(session_id)
        return task is not None and not task.done()

    def start_auto_save(self, session_id: str) -> bool:
        """Arme le timer de la session; False s'il l'était déjà ou sans boucle active."""
        if self.is_auto_saving(session_id):
            return False
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running loop, auto-save deferred", extra={"session_id": session_id})
            return False
        self._auto_save_tasks[session_id] = loop.create_task(self._auto_save_loop(session_id))
        logger.debug("Started auto-save", extra={"session_id": session_id})
        return True

    def stop_auto_save(self, session_id: str) -> None:
        task = self._auto_save_tasks.pop(session_id, None)
        if task is not None and not task.done():
            task.cancel()

    async def _auto_save_loop(self, session_id: str) -> None:
        while True:
            await asyncio.sleep(self.auto_save_interval)
            session = self._sessions.get(session_id)
            if session is None or not session.settings.auto_save:
                continue
            game_state = self._state_provider(session_id) if self._state_provider else None
            logger.debug("Auto-saving session", extra={"session_id": session_id})
            await self.save_session(session_id, game_state)

    # -----------------------------
    # Janitor
    # -----------------------------
    def cleanup_inactive_sessions(self) -> List[str]:
        """Évince de la mémoire les sessions inactives (snapshots intacts)."""
        threshold = utc_now() - timedelta(seconds=self.session_timeout)
        evicted: List[str] = []
        for session_id, session in list(self._sessions.items()):
            last_activity = parse_iso(session.last_activity)
            if last_activity is not None and last_activity >= threshold:
                continue
            del self._sessions[session_id]
            self.stop_auto_save(session_id)
            self._write_locks.pop(session_id, None)
            self._load_locks.pop(session_id, None)
            evicted.append(session_id)
            if self._evict_listener is not None:
                self._evict_listener(session_id)
            logger.info("Evicted inactive session", extra={"session_id": session_id})
        return evicted

    def prune_orphan_timers(self) -> List[str]:
        orphans = [sid for sid in self._auto_save_tasks if sid not in self._sessions]
        for session_id in orphans:
            self.stop_auto_save(session_id)
        return orphans

    def start_janitor(self) -> None:
        if self._janitor is not None and not self._janitor.done():
            return
        self._janitor = asyncio.get_running_loop().create_task(self._janitor_loop())

    async def _janitor_loop(self) -> None:
        while True:
            await asyncio.sleep(self.cleanup_interval)
            self.cleanup_inactive_sessions()
            self.prune_orphan_timers()

    async def shutdown(self) -> None:
        """Annule tous les timers (auto-save + janitor) et attend leur fin."""
        tasks = list(self._auto_save_tasks.values())
        if self._janitor is not None:
            tasks.append(self._janitor)
        self._auto_save_tasks.clear()
        self._janitor = None
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
