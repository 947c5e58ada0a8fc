"""
Service: game_state.py
Rôle :
- Réducteur d'état de jeu par session (`GameStateManager`) : seule autorité qui mute
  l'état transitoire (chat, jets, notes, scène courante, challenge actif).
- Pipeline valider → appliquer : `validate_action()` est un prédicat pur (jamais d'exception
  pour une entrée client invalide), `apply_action()` suppose l'action déjà validée.
- Les objets de jeu appartiennent au `GameObjectManager`; la liste `gameObjects` de
  l'état est une projection recalculée à chaque lecture.

Journaux bornés (FIFO, les plus anciens tombent) :
- chat 100, jets 50, notes 50.

Concurrence :
- Toutes les mutations sont synchrones (aucun `await`) : une action est appliquée
  entièrement avant qu'une autre coroutine puisse observer l'état.
"""
from __future__ import annotations

import copy
import logging
import random
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from pydantic import ValidationError as PydanticValidationError

from app.config.settings import settings
from app.engine.dice import describe_roll, roll_2d6, server_modifier
from app.models.actions import (
    AddNoteAction,
    AddTagAction,
    ClearActiveChallengeAction,
    CreateObjectAction,
    DeleteObjectAction,
    OvercomeChallengeAction,
    RemoveTagAction,
    RollDiceAction,
    SetActiveChallengeAction,
    SetChallengeAction,
    SetSceneAction,
    ToggleOvercomeChallengeAction,
    UpdateObjectAction,
    parse_action,
)
from app.models.records import DiceRoll, Note
from app.services.errors import UnknownActionError
from app.services.game_objects import GameObjectManager
from app.utils.time_utils import utc_now_iso

logger = logging.getLogger(__name__)

MAX_CHAT_MESSAGES = 100
MAX_DICE_ROLLS = 50
MAX_NOTES = 50
SCENE_TYPE = "scene"


def _append_bounded(log: List[Dict[str, Any]], entry: Dict[str, Any], limit: int) -> None:
    """Ajout en fin de journal puis bornage (les plus anciens sont retirés)."""
    log.append(entry)
    overflow = len(log) - limit
    if overflow > 0:
        del log[:overflow]


def _same_ref(left: Any, right: Any) -> bool:
    if left is None or right is None:
        return False
    return str(left) == str(right)


@dataclass
class SessionGameState:
    current_scene: Optional[str] = None
    active_challenge: Optional[Any] = None
    chat: List[Dict[str, Any]] = field(default_factory=list)
    dice_rolls: List[Dict[str, Any]] = field(default_factory=list)
    notes: List[Dict[str, Any]] = field(default_factory=list)
    last_roll: Optional[Dict[str, Any]] = None
    game_objects: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        """Vue wire (camelCase); les listes sont copiées, pas les éléments."""
        return {
            "currentScene": self.current_scene,
            "activeChallenge": self.active_challenge,
            "chat": list(self.chat),
            "diceRolls": list(self.dice_rolls),
            "notes": list(self.notes),
            "lastRoll": self.last_roll,
            "gameObjects": list(self.game_objects),
        }


class GameStateManager:
    """Autorité unique sur l'état de jeu des sessions."""

    def __init__(
        self,
        game_objects: GameObjectManager,
        *,
        modifier_source: Optional[str] = None,
        rng: Optional[random.Random] = None,
    ) -> None:
        self.game_objects = game_objects
        self.modifier_source = modifier_source
        self.rng = rng
        self._states: Dict[str, SessionGameState] = {}

        # dispatch fermé : une entrée par variante d'action (voir test_actions)
        self._validators: Dict[type, Callable[[str, Any], bool]] = {
            CreateObjectAction: self._validate_always,
            UpdateObjectAction: self._validate_object_exists,
            DeleteObjectAction: self._validate_object_exists,
            AddTagAction: self._validate_object_exists,
            RemoveTagAction: self._validate_object_exists,
            RollDiceAction: self._validate_always,
            SetSceneAction: self._validate_set_scene,
            SetChallengeAction: self._validate_set_challenge,
            SetActiveChallengeAction: self._validate_scene_exists,
            ClearActiveChallengeAction: self._validate_always,
            OvercomeChallengeAction: self._validate_scene_exists,
            ToggleOvercomeChallengeAction: self._validate_scene_exists,
            AddNoteAction: self._validate_always,
        }
        self._appliers: Dict[type, Callable[[str, Any], None]] = {
            CreateObjectAction: self._apply_create_object,
            UpdateObjectAction: self._apply_update_object,
            DeleteObjectAction: self._apply_delete_object,
            AddTagAction: self._apply_add_tag,
            RemoveTagAction: self._apply_remove_tag,
            RollDiceAction: self._apply_roll_dice,
            SetSceneAction: self._apply_set_scene,
            SetChallengeAction: self._apply_set_challenge,
            SetActiveChallengeAction: self._apply_set_active_challenge,
            ClearActiveChallengeAction: self._apply_clear_active_challenge,
            OvercomeChallengeAction: self._apply_overcome_challenge,
            ToggleOvercomeChallengeAction: self._apply_toggle_overcome_challenge,
            AddNoteAction: self._apply_add_note,
        }

    # -----------------------------
    # État
    # -----------------------------
    def _state(self, session_id: str) -> SessionGameState:
        state = self._states.get(session_id)
        if state is None:
            state = self._states[session_id] = SessionGameState()
        state.game_objects = self.game_objects.get_session_objects(session_id)
        return state

    def has_state(self, session_id: str) -> bool:
        return session_id in self._states

    def get_session_state(self, session_id: str) -> Dict[str, Any]:
        """Vue courante (créée vide au premier accès), projection `gameObjects` rafraîchie."""
        return self._state(session_id).to_dict()

    def get_session_data(self, session_id: str) -> Dict[str, Any]:
        """Vue REST : l'état de jeu préfixé de l'identifiant de session."""
        return {"sessionId": session_id, **self.get_session_state(session_id)}

    def cleanup_session(self, session_id: str) -> None:
        self._states.pop(session_id, None)
        self.game_objects.cleanup_session(session_id)
        logger.info("Cleaned up game state", extra={"session_id": session_id})

    def restore_session_state(self, session_id: str, saved_state: Optional[Dict[str, Any]]) -> None:
        """
        Fusionne un snapshot persisté dans l'état vivant et ré-enregistre ses objets.
        Idempotent : les objets sont remplacés par id, jamais dupliqués.
        """
        if not saved_state:
            return
        saved = copy.deepcopy(saved_state)
        state = self._state(session_id)
        state.current_scene = saved.get("currentScene") or None
        state.active_challenge = saved.get("activeChallenge") or None
        state.chat = list(saved.get("chat") or [])[-MAX_CHAT_MESSAGES:]
        state.dice_rolls = list(saved.get("diceRolls") or [])[-MAX_DICE_ROLLS:]
        state.notes = list(saved.get("notes") or [])[-MAX_NOTES:]
        state.last_roll = saved.get("lastRoll") or None

        for game_object in saved.get("gameObjects") or []:
            if isinstance(game_object, dict):
                self.game_objects.restore_game_object(session_id, game_object)
        state.game_objects = self.game_objects.get_session_objects(session_id)
        logger.info(
            "Restored game state",
            extra={"session_id": session_id, "objects": len(state.game_objects)},
        )

    # -----------------------------
    # Journaux
    # -----------------------------
    def add_chat_message(self, session_id: str, message: Dict[str, Any]) -> None:
        _append_bounded(self._state(session_id).chat, message, MAX_CHAT_MESSAGES)

    def add_dice_roll(self, session_id: str, roll: Dict[str, Any]) -> None:
        state = self._state(session_id)
        _append_bounded(state.dice_rolls, roll, MAX_DICE_ROLLS)
        state.last_roll = roll

    def add_note(self, session_id: str, note: Dict[str, Any]) -> None:
        _append_bounded(self._state(session_id).notes, note, MAX_NOTES)

    # -----------------------------
    # Scène / challenge
    # -----------------------------
    def set_current_scene(self, session_id: str, scene_object_id: Optional[str]) -> None:
        self._state(session_id).current_scene = scene_object_id or None

    def set_active_challenge(self, session_id: str, challenge_id: Optional[Any]) -> None:
        self._state(session_id).active_challenge = challenge_id if challenge_id not in ("", None) else None

    def get_current_scene(self, session_id: str) -> Optional[Dict[str, Any]]:
        return self.game_objects.get_game_object(session_id, self._state(session_id).current_scene)

    def get_active_challenge(self, session_id: str) -> Optional[Dict[str, Any]]:
        """Challenge actif : d'abord dans la scène courante, sinon objet autonome."""
        state = self._state(session_id)
        if state.active_challenge is None:
            return None
        scene = self.get_current_scene(session_id)
        if scene is not None:
            found = self._find_challenge(scene, state.active_challenge)
            if found is not None:
                return found
        return self.game_objects.get_game_object(session_id, state.active_challenge)

    @staticmethod
    def _find_challenge(scene: Dict[str, Any], challenge_id: Any) -> Optional[Dict[str, Any]]:
        challenges = (scene.get("contents") or {}).get("challenges")
        if not isinstance(challenges, list):
            return None
        for challenge in challenges:
            if isinstance(challenge, dict) and _same_ref(challenge.get("id"), challenge_id):
                return challenge
        return None

    def _scene_challenge(self, session_id: str, scene_id: str, challenge_id: Any) -> Optional[Dict[str, Any]]:
        scene = self.game_objects.get_game_object(session_id, scene_id)
        if scene is None:
            return None
        return self._find_challenge(scene, challenge_id)

    def calculate_roll_modifier(self, session_id: str, relevant_object_ids: List[Any]) -> Dict[str, Any]:
        """Modificateur indicatif calculé depuis les tags `add_tag` des objets concernés."""
        modifier = self.game_objects.calculate_modifier(session_id, relevant_object_ids)
        relevant = self.game_objects.get_relevant_tags(session_id, relevant_object_ids)
        description = "2d6"
        if modifier:
            description += f" +{modifier}" if modifier > 0 else f" {modifier}"
        categories = [name for name, tags in relevant.items() if tags]
        if categories:
            description += f" (from {len(categories)} tag categories)"
        return {"modifier": modifier, "relevantTags": relevant, "rollType": "2d6", "description": description}

    # -----------------------------
    # Validation
    # -----------------------------
    def validate_action(self, session_id: str, action: Any) -> bool:
        """Prédicat pur : False pour toute entrée invalide, type inconnu compris."""
        try:
            parsed = parse_action(action)
        except PydanticValidationError as exc:
            logger.debug("Rejected malformed action", extra={"session_id": session_id, "errors": exc.errors()})
            return False
        validator = self._validators.get(type(parsed))
        if validator is None:
            return False
        return bool(validator(session_id, parsed))

    def _validate_always(self, session_id: str, action: Any) -> bool:
        return True

    def _validate_object_exists(self, session_id: str, action: Any) -> bool:
        return self.game_objects.get_game_object(session_id, action.object_id) is not None

    def _validate_set_scene(self, session_id: str, action: SetSceneAction) -> bool:
        if not action.scene_object_id:
            return True
        return self.game_objects.get_game_object(session_id, action.scene_object_id) is not None

    def _validate_set_challenge(self, session_id: str, action: SetChallengeAction) -> bool:
        if not action.challenge_object_id:
            return True
        return self.game_objects.get_game_object(session_id, action.challenge_object_id) is not None

    def _validate_scene_exists(self, session_id: str, action: Any) -> bool:
        if action.challenge_id in ("", None):
            return False
        scene = self.game_objects.get_game_object(session_id, action.scene_id)
        return scene is not None and scene.get("type") == SCENE_TYPE

    # -----------------------------
    # Application
    # -----------------------------
    def apply_action(self, session_id: str, action: Any) -> Dict[str, Any]:
        """Applique une action DÉJÀ validée et renvoie la vue mise à jour."""
        try:
            parsed = parse_action(action)
        except PydanticValidationError as exc:
            raise UnknownActionError(f"Unknown or malformed action: {exc}") from exc
        applier = self._appliers.get(type(parsed))
        if applier is None:
            raise UnknownActionError(f"Unknown action type: {type(parsed).__name__}")
        applier(session_id, parsed)
        logger.debug("Applied action", extra={"session_id": session_id, "action_type": parsed.type})
        return self.get_session_state(session_id)

    def _apply_create_object(self, session_id: str, action: CreateObjectAction) -> None:
        self.game_objects.create_game_object(
            session_id, action.object_type, action.contents, action.tags, action.created_by
        )

    def _apply_update_object(self, session_id: str, action: UpdateObjectAction) -> None:
        self.game_objects.update_game_object(
            session_id, action.object_id, action.contents, action.tags, action.last_modified_by
        )

    def _apply_delete_object(self, session_id: str, action: DeleteObjectAction) -> None:
        self.game_objects.delete_game_object(session_id, action.object_id)
        state = self._state(session_id)
        if _same_ref(state.current_scene, action.object_id):
            state.current_scene = None
        if _same_ref(state.active_challenge, action.object_id):
            state.active_challenge = None

    def _apply_add_tag(self, session_id: str, action: AddTagAction) -> None:
        self.game_objects.add_tag(
            session_id, action.object_id, action.tag_type, action.tag_name, action.modifier, action.added_by
        )

    def _apply_remove_tag(self, session_id: str, action: RemoveTagAction) -> None:
        self.game_objects.remove_tag(
            session_id, action.object_id, action.tag_type, action.tag_name, action.removed_by
        )

    def _roll_modifier(self, session_id: str, action: RollDiceAction) -> int:
        source = self.modifier_source or settings.DICE_MODIFIER_SOURCE
        if source != "server":
            return action.modifier

        def _exists(tag_name: str) -> bool:
            return any(
                self.game_objects.object_has_tag(session_id, object_id, tag_name)
                for object_id in action.relevant_object_ids
            )

        return server_modifier(action.selected_tags, _exists)

    def _apply_roll_dice(self, session_id: str, action: RollDiceAction) -> None:
        modifier = self._roll_modifier(session_id, action)
        first, second, total = roll_2d6(modifier, self.rng)
        roll = DiceRoll(
            player_id=action.player_id,
            player_name=action.player_name,
            rolls=[first, second],
            modifier=modifier,
            total=total,
            relevant_object_ids=list(action.relevant_object_ids),
            selected_tags=list(action.selected_tags),
            description=describe_roll(modifier, action.selected_tags),
        )
        self.add_dice_roll(session_id, roll.to_client())

    def _apply_set_scene(self, session_id: str, action: SetSceneAction) -> None:
        self.set_current_scene(session_id, action.scene_object_id)

    def _apply_set_challenge(self, session_id: str, action: SetChallengeAction) -> None:
        self.set_active_challenge(session_id, action.challenge_object_id)

    def _apply_set_active_challenge(self, session_id: str, action: SetActiveChallengeAction) -> None:
        challenge = self._scene_challenge(session_id, action.scene_id, action.challenge_id)
        if challenge is not None:
            self.set_active_challenge(session_id, challenge.get("id"))

    def _apply_clear_active_challenge(self, session_id: str, action: ClearActiveChallengeAction) -> None:
        self.set_active_challenge(session_id, None)

    def _mark_overcome(self, session_id: str, challenge: Dict[str, Any]) -> None:
        challenge["overcome"] = True
        challenge["overcomeAt"] = utc_now_iso()
        # un challenge surmonté n'est jamais laissé actif
        if _same_ref(self._state(session_id).active_challenge, challenge.get("id")):
            self.set_active_challenge(session_id, None)

    def _apply_overcome_challenge(self, session_id: str, action: OvercomeChallengeAction) -> None:
        challenge = self._scene_challenge(session_id, action.scene_id, action.challenge_id)
        if challenge is not None:
            self._mark_overcome(session_id, challenge)

    def _apply_toggle_overcome_challenge(self, session_id: str, action: ToggleOvercomeChallengeAction) -> None:
        challenge = self._scene_challenge(session_id, action.scene_id, action.challenge_id)
        if challenge is None:
            return
        if challenge.get("overcome"):
            challenge["overcome"] = False
            challenge["overcomeAt"] = None
        else:
            self._mark_overcome(session_id, challenge)

    def _apply_add_note(self, session_id: str, action: AddNoteAction) -> None:
        note = Note(text=action.text.strip(), author=action.author)
        self.add_note(session_id, note.to_client())
