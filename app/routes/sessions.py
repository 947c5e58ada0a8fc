"""
Routes de consultation des sessions (REST).

Objectifs :
- Lister les sessions sauvegardées et lire l'état de jeu d'une session.
- Exposer les joueurs et statistiques persistés.
- Supprimer une session partout (mémoire, snapshot, état de jeu, objets).

Les mutations de jeu ne passent JAMAIS par ici : elles arrivent par le WebSocket
(validate -> apply).
"""
from __future__ import annotations

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel

from app.services.errors import ValidationError
from app.services.session_store import get_runtime

router = APIRouter(prefix="/api/sessions", tags=["sessions"])


# ---------------------------------------------------------------------------
# Modèles Pydantic
# ---------------------------------------------------------------------------
class SavedSessionsResponse(BaseModel):
    sessions: List[Dict[str, Any]]


class SessionPlayersResponse(BaseModel):
    sessionId: str
    players: List[str]


class SessionDeleteResponse(BaseModel):
    ok: bool
    sessionId: str
    deleted: bool


class SessionObjectsResponse(BaseModel):
    sessionId: str
    objectType: str
    objects: List[Dict[str, Any]]


def _check_id(session_id: str) -> str:
    try:
        get_runtime().persistence.session_path(session_id)
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return session_id


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------
@router.get("", response_model=SavedSessionsResponse)
async def list_sessions():
    sessions = await get_runtime().sessions.get_saved_sessions()
    return {"sessions": sessions}


@router.get("/{session_id}")
async def get_session_data(session_id: str) -> Dict[str, Any]:
    """Vue réducteur de la session (créée vide si inconnue en mémoire)."""
    _check_id(session_id)
    return get_runtime().game_states.get_session_data(session_id)


@router.get("/{session_id}/players", response_model=SessionPlayersResponse)
async def get_session_players(session_id: str):
    _check_id(session_id)
    players = await get_runtime().sessions.get_session_players(session_id)
    return {"sessionId": session_id, "players": players}


@router.get("/{session_id}/stats")
async def get_session_stats(session_id: str) -> Dict[str, Any]:
    _check_id(session_id)
    stats: Optional[Dict[str, Any]] = await get_runtime().sessions.get_session_stats(session_id)
    if stats is None:
        raise HTTPException(status_code=404, detail="Session not found")
    return stats


@router.delete("/{session_id}", response_model=SessionDeleteResponse)
async def delete_session(session_id: str):
    _check_id(session_id)
    runtime = get_runtime()
    deleted = await runtime.sessions.delete_session(session_id)
    runtime.game_states.cleanup_session(session_id)
    return {"ok": True, "sessionId": session_id, "deleted": deleted}


@router.get("/{session_id}/objects/{object_type}", response_model=SessionObjectsResponse)
async def get_session_objects(session_id: str, object_type: str):
    _check_id(session_id)
    objects = get_runtime().game_objects.get_session_objects(session_id, object_type)
    return {"sessionId": session_id, "objectType": object_type, "objects": objects}
