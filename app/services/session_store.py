"""
Session runtime registry
========================

Assemble les singletons du serveur (WS, persistance, objets de jeu, réducteur,
registre de sessions, handler) et les expose via `get_runtime()`.

`reset_runtime()` reconstruit tout (utile en test, avec un répertoire de données
temporaire).
"""
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from threading import RLock
from typing import Optional

from .game_objects import GameObjectManager
from .game_state import GameStateManager
from .persistence import PersistenceManager
from .session_manager import SessionManager
from .ws_handler import WebSocketHandler
from .ws_manager import WSManager


@dataclass
class Runtime:
    ws: WSManager
    persistence: PersistenceManager
    game_objects: GameObjectManager
    game_states: GameStateManager
    sessions: SessionManager
    handler: WebSocketHandler


_instance: Optional[Runtime] = None
_LOCK = RLock()


def build_runtime(data_dir: Optional[Path | str] = None, **session_options) -> Runtime:
    ws = WSManager()
    persistence = PersistenceManager(data_dir)
    game_objects = GameObjectManager()
    game_states = GameStateManager(game_objects)
    sessions = SessionManager(persistence, **session_options)
    handler = WebSocketHandler(ws, sessions, game_states)
    return Runtime(
        ws=ws,
        persistence=persistence,
        game_objects=game_objects,
        game_states=game_states,
        sessions=sessions,
        handler=handler,
    )


def get_runtime() -> Runtime:
    """Retourne le runtime partagé (créé à la demande)."""
    global _instance
    with _LOCK:
        if _instance is None:
            _instance = build_runtime()
        return _instance


def reset_runtime(data_dir: Optional[Path | str] = None, **session_options) -> Runtime:
    """Remplace le runtime partagé par une instance neuve."""
    global _instance
    with _LOCK:
        _instance = build_runtime(data_dir, **session_options)
        return _instance
