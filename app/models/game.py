"""
Models / game.py
Rôle:
- Décrire (et valider de façon tolérante) le snapshot persisté d'une session.

Format fichier (un fichier par session):
{
  "sessionId": "...", "lastSaved": "...",
  "session":   { id, name, created, lastActivity, players: [[id, player], ...], maxPlayers, isActive, settings },
  "gameState": { currentScene, activeChallenge, chat[], diceRolls[], notes[], lastRoll, gameObjects[] }
}

Notes:
- `extra="allow"` partout : un snapshot écrit par une version plus récente reste lisible.
- Les listes absentes ou nulles deviennent des listes vides à la lecture.
"""
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class PersistedGameState(BaseModel):
    current_scene: Optional[str] = Field(None, alias="currentScene")
    active_challenge: Optional[Any] = Field(None, alias="activeChallenge")
    chat: List[Dict[str, Any]] = Field(default_factory=list)
    dice_rolls: List[Dict[str, Any]] = Field(default_factory=list, alias="diceRolls")
    notes: List[Dict[str, Any]] = Field(default_factory=list)
    last_roll: Optional[Dict[str, Any]] = Field(None, alias="lastRoll")
    game_objects: List[Dict[str, Any]] = Field(default_factory=list, alias="gameObjects")

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    @field_validator("chat", "dice_rolls", "notes", "game_objects", mode="before")
    @classmethod
    def _none_as_empty(cls, value: Any) -> Any:
        return [] if value is None else value

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json")


class SessionSnapshot(BaseModel):
    session_id: str = Field(alias="sessionId")
    last_saved: Optional[str] = Field(None, alias="lastSaved")
    session: Optional[Dict[str, Any]] = None
    game_state: Optional[PersistedGameState] = Field(None, alias="gameState")

    model_config = ConfigDict(populate_by_name=True, extra="allow")
