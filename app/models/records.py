"""
Models / records.py
Rôle:
- Enregistrements append-only des journaux de session (chat, notes, jets de dés).

Notes:
- `DiceRoll` est figé (frozen): un jet est créé une seule fois par action `roll_dice`
  puis ajouté au journal et exposé comme `lastRoll`.
- Les journaux stockent la forme `to_client()` (dict camelCase) pour que les
  snapshots et les broadcasts partagent exactement la même représentation.
"""
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from app.utils.time_utils import millis_id, utc_now_iso


class _Record(BaseModel):
    id: str = Field(default_factory=millis_id)
    timestamp: str = Field(default_factory=utc_now_iso)

    model_config = ConfigDict(populate_by_name=True)

    def to_client(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json")


class ChatMessage(_Record):
    player_name: str = Field(alias="playerName")
    message: str


class Note(_Record):
    text: str
    author: Optional[str] = None


class DiceRoll(_Record):
    """Résultat 2d6 + modificateur, immuable."""
    player_id: Optional[str] = Field(None, alias="playerId")
    player_name: Optional[str] = Field(None, alias="playerName")
    rolls: List[int]  # [d1, d2]
    modifier: int = 0
    total: int
    relevant_object_ids: List[Any] = Field(default_factory=list, alias="relevantObjectIds")
    selected_tags: List[Dict[str, Any]] = Field(default_factory=list, alias="selectedTags")
    description: str = "2d6"

    model_config = ConfigDict(populate_by_name=True, frozen=True)
