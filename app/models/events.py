"""
Models / events.py
Rôle:
- Payloads entrants des événements WebSocket client -> serveur.

Notes:
- Champs wire en camelCase (`sessionId`, `playerName`, `isGM`...).
- Les chaînes sont strippées; une chaîne vide est refusée.
- `game-action` n'a pas de modèle ici : son payload EST l'action (voir models/actions.py).
"""
from typing import Any, Dict, List

from pydantic import BaseModel, ConfigDict, Field


class _Payload(BaseModel):
    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True, extra="ignore")


class JoinSessionPayload(_Payload):
    session_id: str = Field(alias="sessionId", min_length=1)
    player_name: str = Field(alias="playerName", min_length=1)
    is_gm: bool = Field(False, alias="isGM")


class ChatMessagePayload(_Payload):
    message: str = Field(min_length=1)


class RollDicePayload(_Payload):
    relevant_object_ids: List[Any] = Field(default_factory=list, alias="relevantObjectIds")
    selected_tags: List[Dict[str, Any]] = Field(default_factory=list, alias="selectedTags")
    modifier: int = 0


class SessionPlayersPayload(_Payload):
    session_id: str = Field(alias="sessionId", min_length=1)


class CurrentGameStatePayload(_Payload):
    session_id: str = Field(alias="sessionId", min_length=1)
    player_name: str = Field(alias="playerName", min_length=1)
