"""
Models / player.py
Rôle:
- Définir la structure d'un joueur connecté à une session (côté modèles Pydantic).

Champs:
- id: identifiant de la connexion WebSocket courante (transitoire, change à chaque reconnexion).
- name: nom d'affichage; c'est l'identité stable utilisée pour rattacher une reconnexion.
- is_gm: drapeau narrateur/MJ (alias wire `isGM`).
- joined_at: horodatage ISO d'arrivée dans la session (alias wire `joinedAt`).
"""
from pydantic import BaseModel, ConfigDict, Field

from app.utils.time_utils import utc_now_iso


class Player(BaseModel):
    """Joueur d'une session, sérialisé en camelCase pour le front."""
    id: str  # connection id (socket courant)
    name: str  # nom affiché, unique dans une session
    is_gm: bool = Field(False, alias="isGM")
    joined_at: str = Field(default_factory=utc_now_iso, alias="joinedAt")

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    def to_client(self) -> dict:
        return self.model_dump(by_alias=True, mode="json")
