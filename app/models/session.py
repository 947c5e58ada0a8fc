"""
Models / session.py
Rôle:
- Métadonnées d'une session (table de jeu) et de ses joueurs connectés.

Invariants (maintenus par `SessionManager`, seul mutateur autorisé):
- len(players) <= max_players
- is_active == bool(players) après chaque ajout/retrait
- au plus un joueur par nom d'affichage

Formats:
- `to_client()`   : players sous forme de liste (payloads WebSocket).
- `to_snapshot()` : players sous forme de paires [[connection_id, player], ...] (fichier JSON).
- `from_snapshot()` accepte les paires, un mapping {id: player} ou une liste de joueurs.
"""
from __future__ import annotations

from typing import Any, Dict, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field

from app.models.player import Player
from app.utils.time_utils import utc_now_iso


class SessionSettings(BaseModel):
    allow_spectators: bool = Field(False, alias="allowSpectators")
    auto_save: bool = Field(True, alias="autoSave")

    model_config = ConfigDict(populate_by_name=True, extra="allow")


class Session(BaseModel):
    id: str
    name: str
    created: str = Field(default_factory=utc_now_iso)
    last_activity: str = Field(default_factory=utc_now_iso, alias="lastActivity")
    players: Dict[str, Player] = Field(default_factory=dict)
    max_players: int = Field(10, alias="maxPlayers", ge=1)
    is_active: bool = Field(False, alias="isActive")
    settings: SessionSettings = Field(default_factory=SessionSettings)

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    # ------------------------------------------------------------------
    # Requêtes
    # ------------------------------------------------------------------
    def find_player_by_name(self, name: str) -> Optional[Player]:
        for player in self.players.values():
            if player.name == name:
                return player
        return None

    def touch(self) -> None:
        self.last_activity = utc_now_iso()

    # ------------------------------------------------------------------
    # Sérialisation
    # ------------------------------------------------------------------
    def _base_dump(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json", exclude={"players"})

    def to_client(self) -> Dict[str, Any]:
        data = self._base_dump()
        data["players"] = [p.to_client() for p in self.players.values()]
        return data

    def to_snapshot(self) -> Dict[str, Any]:
        data = self._base_dump()
        data["players"] = [[pid, p.to_client()] for pid, p in self.players.items()]
        return data

    @classmethod
    def from_snapshot(cls, payload: Mapping[str, Any]) -> "Session":
        data = dict(payload)
        data["players"] = _players_from_payload(data.get("players"))
        return cls.model_validate(data)


def _players_from_payload(raw: Any) -> Dict[str, Dict[str, Any]]:
    players: Dict[str, Dict[str, Any]] = {}
    if isinstance(raw, Mapping):
        for pid, pdata in raw.items():
            if isinstance(pdata, Mapping):
                players[str(pid)] = {"id": str(pid), **pdata}
        return players
    if not isinstance(raw, list):
        return players
    for entry in raw:
        # format paires [id, player]
        if isinstance(entry, (list, tuple)) and len(entry) == 2 and isinstance(entry[1], Mapping):
            pid = str(entry[0])
            players[pid] = {**entry[1], "id": pid}
        # format liste de joueurs
        elif isinstance(entry, Mapping) and entry.get("id"):
            players[str(entry["id"])] = dict(entry)
    return players
