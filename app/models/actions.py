"""
Models / actions.py
Rôle:
- Définir les actions de jeu (seul moyen sanctionné de muter l'état partagé depuis le réseau).

Notes:
- Une classe Pydantic par type d'action, discriminée par le champ `type` (Literal).
- `parse_action()` lève `pydantic.ValidationError` pour un type inconnu ou un champ
  obligatoire manquant : le réducteur traduit cela en `validate_action() -> False`.
- Les champs wire sont en camelCase (`objectId`, `sceneId`...), les attributs en snake_case.
- `extra="allow"` : le front envoie des champs informatifs (ex: `objectType` sur update).
"""
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, TypeAdapter, field_validator
from pydantic.alias_generators import to_camel

# Identifiant d'objet (obj_<n>) ou de challenge embarqué (souvent numérique côté front)
ChallengeRef = Union[str, int]


class _Action(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")


class CreateObjectAction(_Action):
    type: Literal["create_object"] = "create_object"
    object_type: str = Field(min_length=1)
    contents: Dict[str, Any]
    tags: Dict[str, Any] = Field(default_factory=dict)
    created_by: Optional[str] = None


class UpdateObjectAction(_Action):
    type: Literal["update_object"] = "update_object"
    object_id: str = Field(min_length=1)
    contents: Optional[Dict[str, Any]] = None
    tags: Optional[Dict[str, Any]] = None
    last_modified_by: Optional[str] = None


class DeleteObjectAction(_Action):
    type: Literal["delete_object"] = "delete_object"
    object_id: str = Field(min_length=1)


class AddTagAction(_Action):
    type: Literal["add_tag"] = "add_tag"
    object_id: str = Field(min_length=1)
    tag_type: str = Field(min_length=1)
    tag_name: str = Field(min_length=1)
    modifier: Literal[1, -1]
    added_by: Optional[str] = None


class RemoveTagAction(_Action):
    type: Literal["remove_tag"] = "remove_tag"
    object_id: str = Field(min_length=1)
    tag_type: str = Field(min_length=1)
    tag_name: str = Field(min_length=1)
    removed_by: Optional[str] = None


class RollDiceAction(_Action):
    type: Literal["roll_dice"] = "roll_dice"
    relevant_object_ids: List[Any]
    selected_tags: List[Dict[str, Any]] = Field(default_factory=list)
    modifier: int = 0
    player_id: Optional[str] = None
    player_name: Optional[str] = None


class SetSceneAction(_Action):
    type: Literal["set_scene"] = "set_scene"
    scene_object_id: Optional[str] = None


class SetChallengeAction(_Action):
    type: Literal["set_challenge"] = "set_challenge"
    challenge_object_id: Optional[str] = None


class SetActiveChallengeAction(_Action):
    type: Literal["set_active_challenge"] = "set_active_challenge"
    challenge_id: ChallengeRef
    scene_id: str = Field(min_length=1)


class ClearActiveChallengeAction(_Action):
    type: Literal["clear_active_challenge"] = "clear_active_challenge"


class OvercomeChallengeAction(_Action):
    type: Literal["overcome_challenge"] = "overcome_challenge"
    challenge_id: ChallengeRef
    scene_id: str = Field(min_length=1)


class ToggleOvercomeChallengeAction(_Action):
    type: Literal["toggle_overcome_challenge"] = "toggle_overcome_challenge"
    challenge_id: ChallengeRef
    scene_id: str = Field(min_length=1)


class AddNoteAction(_Action):
    type: Literal["add_note"] = "add_note"
    # le front historique envoie `noteText`
    text: str = Field(validation_alias=AliasChoices("text", "noteText"))
    author: Optional[str] = None

    @field_validator("text")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("note text must not be blank")
        return value


GameAction = Annotated[
    Union[
        CreateObjectAction,
        UpdateObjectAction,
        DeleteObjectAction,
        AddTagAction,
        RemoveTagAction,
        RollDiceAction,
        SetSceneAction,
        SetChallengeAction,
        SetActiveChallengeAction,
        ClearActiveChallengeAction,
        OvercomeChallengeAction,
        ToggleOvercomeChallengeAction,
        AddNoteAction,
    ],
    Field(discriminator="type"),
]

ACTION_TYPES = (
    CreateObjectAction,
    UpdateObjectAction,
    DeleteObjectAction,
    AddTagAction,
    RemoveTagAction,
    RollDiceAction,
    SetSceneAction,
    SetChallengeAction,
    SetActiveChallengeAction,
    ClearActiveChallengeAction,
    OvercomeChallengeAction,
    ToggleOvercomeChallengeAction,
    AddNoteAction,
)

_ADAPTER: TypeAdapter = TypeAdapter(GameAction)


def parse_action(data: Any):
    """Construit l'action typée depuis un dict wire (lève pydantic.ValidationError)."""
    if isinstance(data, _Action):
        return data
    return _ADAPTER.validate_python(data)
