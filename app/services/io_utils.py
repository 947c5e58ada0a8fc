"""
Utilitaires IO JSON (rapides) basés sur orjson.
- read_json(Path)  → Any | None (None si fichier manquant)
- write_json(Path, data, indent=False) → écriture atomique (fichier temporaire + rename)
- delete_file(Path) → bool (False si le fichier n'existait pas)

Attention:
- orjson renvoie/attend des bytes; on lit/écrit en mode binaire.
- Les clés non-str sont converties (OPT_NON_STR_KEYS) pour tolérer des payloads clients.
"""
import orjson as json
import os
from pathlib import Path
from typing import Any


def read_json(path: Path) -> Any:
    """Lit un fichier JSON (ou None s'il n'existe pas)."""
    if not path.exists():
        return None
    with path.open("rb") as f:
        return json.loads(f.read())


def write_json(path: Path, data: Any, indent: bool = False) -> None:
    """Écrit un fichier JSON de manière sûre (dossier parent créé si absent)."""
    path.parent.mkdir(parents=True, exist_ok=True)
    option = json.OPT_NON_STR_KEYS
    if indent:
        option |= json.OPT_INDENT_2
    tmp = path.with_name(path.name + ".tmp")
    with tmp.open("wb") as f:
        f.write(json.dumps(data, option=option))
    os.replace(tmp, path)


def delete_file(path: Path) -> bool:
    """Supprime un fichier s'il existe."""
    try:
        path.unlink()
        return True
    except FileNotFoundError:
        return False
