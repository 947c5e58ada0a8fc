"""
Service: game_objects.py
Rôle :
- Magasin des objets de jeu (personnages, scènes, challenges, fellowship) par session.
- Source de vérité des objets : l'état de jeu n'en garde que des identifiants et
  recalcule sa liste `gameObjects` à chaque lecture.

Structure d'un objet :
{
  "id": "obj_1", "type": "character",
  "contents": {...},                          # payload métier opaque
  "tags": { "<tagType>": { "<tagName>": {"modifier": 1, "addedBy": ..., "addedAt": ...} } },
  "createdBy", "createdAt", "lastModified", "lastModifiedBy"
}

Notes :
- Identifiants séquentiels `obj_<n>` partagés entre sessions; `restore_game_object()`
  avance le compteur au-delà des ids restaurés.
- `restore_game_object()` remplace par id : restaurer deux fois le même snapshot
  ne duplique rien.
"""
from __future__ import annotations

import logging
import re
from typing import Any, Dict, Iterable, List, Optional

from app.utils.time_utils import utc_now_iso

logger = logging.getLogger(__name__)

OBJECT_ID_PREFIX = "obj_"
TAG_BUCKETS = ("helpful", "harmful", "environmental", "character", "other")
_OBJECT_ID_RE = re.compile(r"^obj_(\d+)$")


class GameObjectManager:
    """Objets de jeu taggés, indexés par session puis par id."""

    def __init__(self) -> None:
        self._objects: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self._next_object_id = 1

    # ------------------------------------------------------------------
    # CRUD
    # ------------------------------------------------------------------
    def _generate_object_id(self) -> str:
        object_id = f"{OBJECT_ID_PREFIX}{self._next_object_id}"
        self._next_object_id += 1
        return object_id

    def create_game_object(
        self,
        session_id: str,
        object_type: str,
        contents: Optional[Dict[str, Any]] = None,
        tags: Optional[Dict[str, Any]] = None,
        created_by: Optional[str] = None,
    ) -> Dict[str, Any]:
        bucket = self._objects.setdefault(session_id, {})
        now = utc_now_iso()
        game_object = {
            "id": self._generate_object_id(),
            "type": object_type,
            "contents": dict(contents or {}),
            "tags": dict(tags or {}),
            "createdBy": created_by,
            "createdAt": now,
            "lastModified": now,
            "lastModifiedBy": created_by,
        }
        bucket[game_object["id"]] = game_object
        logger.debug(
            "Created game object",
            extra={"session_id": session_id, "object_id": game_object["id"], "object_type": object_type},
        )
        return game_object

    def get_game_object(self, session_id: str, object_id: Any) -> Optional[Dict[str, Any]]:
        if object_id is None:
            return None
        return self._objects.get(session_id, {}).get(str(object_id))

    def get_session_objects(self, session_id: str, object_type: Optional[str] = None) -> List[Dict[str, Any]]:
        objects = list(self._objects.get(session_id, {}).values())
        if object_type:
            return [obj for obj in objects if obj.get("type") == object_type]
        return objects

    def update_game_object(
        self,
        session_id: str,
        object_id: str,
        contents: Optional[Dict[str, Any]] = None,
        tags: Optional[Dict[str, Any]] = None,
        modified_by: Optional[str] = None,
    ) -> Optional[Dict[str, Any]]:
        """Fusion superficielle de `contents`; `tags` remplacés en bloc s'ils sont fournis."""
        game_object = self.get_game_object(session_id, object_id)
        if game_object is None:
            return None
        if contents is not None:
            game_object["contents"] = {**game_object.get("contents", {}), **contents}
        if tags is not None:
            game_object["tags"] = dict(tags)
        game_object["lastModified"] = utc_now_iso()
        game_object["lastModifiedBy"] = modified_by
        return game_object

    def delete_game_object(self, session_id: str, object_id: str) -> bool:
        deleted = self._objects.get(session_id, {}).pop(str(object_id), None) is not None
        if deleted:
            logger.debug("Deleted game object", extra={"session_id": session_id, "object_id": object_id})
        return deleted

    # ------------------------------------------------------------------
    # Tags
    # ------------------------------------------------------------------
    def add_tag(
        self,
        session_id: str,
        object_id: str,
        tag_type: str,
        tag_name: str,
        modifier: int,
        added_by: Optional[str] = None,
    ) -> Optional[Dict[str, Any]]:
        game_object = self.get_game_object(session_id, object_id)
        if game_object is None:
            return None
        tags = game_object.setdefault("tags", {})
        category = tags.get(tag_type)
        if not isinstance(category, dict):
            category = tags[tag_type] = {}
        now = utc_now_iso()
        category[tag_name] = {"modifier": modifier, "addedBy": added_by, "addedAt": now}
        game_object["lastModified"] = now
        game_object["lastModifiedBy"] = added_by
        return game_object

    def remove_tag(
        self,
        session_id: str,
        object_id: str,
        tag_type: str,
        tag_name: str,
        removed_by: Optional[str] = None,
    ) -> Optional[Dict[str, Any]]:
        game_object = self.get_game_object(session_id, object_id)
        if game_object is None:
            return None
        category = game_object.get("tags", {}).get(tag_type)
        if not isinstance(category, dict) or tag_name not in category:
            return None
        del category[tag_name]
        if not category:
            del game_object["tags"][tag_type]
        game_object["lastModified"] = utc_now_iso()
        game_object["lastModifiedBy"] = removed_by
        return game_object

    def _iter_tags(self, session_id: str, object_ids: Iterable[Any]):
        for object_id in object_ids:
            game_object = self.get_game_object(session_id, object_id)
            if game_object is None:
                continue
            for tag_type, category in (game_object.get("tags") or {}).items():
                if not isinstance(category, dict):
                    continue
                for tag_name, tag in category.items():
                    if isinstance(tag, dict) and "modifier" in tag:
                        yield game_object, tag_type, tag_name, tag

    def calculate_modifier(self, session_id: str, relevant_object_ids: Iterable[Any]) -> int:
        """Somme des modificateurs de tags portés par les objets concernés."""
        total = 0
        for _obj, _tag_type, _tag_name, tag in self._iter_tags(session_id, relevant_object_ids):
            try:
                total += int(tag["modifier"])
            except (TypeError, ValueError):
                continue
        return total

    def get_relevant_tags(self, session_id: str, relevant_object_ids: Iterable[Any]) -> Dict[str, List[Dict[str, Any]]]:
        relevant: Dict[str, List[Dict[str, Any]]] = {bucket: [] for bucket in TAG_BUCKETS}
        for game_object, tag_type, tag_name, tag in self._iter_tags(session_id, relevant_object_ids):
            contents = game_object.get("contents") or {}
            info = {
                "name": tag_name,
                "modifier": tag.get("modifier"),
                "source": f"{game_object.get('type')}: {contents.get('name') or game_object['id']}",
                "objectId": game_object["id"],
                "addedBy": tag.get("addedBy"),
            }
            relevant[tag_type if tag_type in relevant else "other"].append(info)
        return relevant

    def object_has_tag(self, session_id: str, object_id: Any, tag_name: str) -> bool:
        """Le tag existe-t-il sur l'objet (au premier niveau ou dans une catégorie) ?"""
        game_object = self.get_game_object(session_id, object_id)
        if game_object is None:
            return False
        tags = game_object.get("tags") or {}
        if tag_name in tags:
            return True
        return any(isinstance(category, dict) and tag_name in category for category in tags.values())

    # ------------------------------------------------------------------
    # Restauration / nettoyage
    # ------------------------------------------------------------------
    def restore_game_object(self, session_id: str, game_object: Dict[str, Any]) -> None:
        object_id = str(game_object.get("id") or "")
        if not object_id:
            logger.warning("Skipping game object without id", extra={"session_id": session_id})
            return
        self._objects.setdefault(session_id, {})[object_id] = game_object
        match = _OBJECT_ID_RE.match(object_id)
        if match and int(match.group(1)) >= self._next_object_id:
            self._next_object_id = int(match.group(1)) + 1

    def cleanup_session(self, session_id: str) -> None:
        self._objects.pop(session_id, None)

    def get_session_stats(self, session_id: str) -> Dict[str, Any]:
        objects = self.get_session_objects(session_id)
        stats: Dict[str, Any] = {"totalObjects": len(objects), "objectTypes": {}, "totalTags": 0}
        for obj in objects:
            stats["objectTypes"][obj.get("type")] = stats["objectTypes"].get(obj.get("type"), 0) + 1
            for category in (obj.get("tags") or {}).values():
                if isinstance(category, dict):
                    stats["totalTags"] += len(category)
        return stats
