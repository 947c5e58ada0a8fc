"""
Configuration de l'application (Settings)
=========================================

Rôle
----
- Centraliser les paramètres du serveur de sessions (host/port, chemins, limites, timers).
- Les valeurs par défaut conviennent pour un environnement de dev local.
- Les variables peuvent être surchargées via un fichier `.env` ou l'environnement.

Intégrations
------------
- `pydantic-settings` charge automatiquement les variables d'env et `.env`.
- Les services/routers importent `from app.config.settings import settings`.

Bonnes pratiques
----------------
- `DATA_DIR` calcule un chemin relatif au repo : `<repo>/app/data`.
- Les snapshots de sessions sont écrits dans `DATA_DIR/sessions/<session_id>.json`.
- `DICE_MODIFIER_SOURCE="server"` recalcule le modificateur des jets côté serveur
  au lieu de faire confiance à la valeur envoyée par le client.

Exemples de `.env`
------------------
APP_NAME="Tabletop Session Host (Staging)"
HOST="0.0.0.0"
PORT=8080
DATA_DIR="/var/opt/tabletop/data"
ALLOWED_ORIGINS=["http://localhost:3000"]
SESSION_TIMEOUT_SECONDS=7200
DICE_MODIFIER_SOURCE="server"
"""
from typing import List, Literal

from pydantic_settings import BaseSettings, SettingsConfigDict
import os


class Settings(BaseSettings):
    # Nom du service (apparaît dans /api/health)
    APP_NAME: str = "Tabletop Session Host"
    # Bind réseau (FastAPI / Uvicorn)
    HOST: str = "0.0.0.0"
    PORT: int = 3000

    # Répertoire des fichiers persistés (snapshots de sessions)
    # Par défaut: <repo>/app/data
    DATA_DIR: str = os.path.join(os.path.dirname(os.path.dirname(__file__)), "data")

    # Frontends autorisés (CORS). "*" en dev.
    ALLOWED_ORIGINS: List[str] = ["*"]

    # Niveau de log racine (DEBUG, INFO, WARNING...)
    LOG_LEVEL: str = "INFO"

    # Sessions
    MAX_PLAYERS_PER_SESSION: int = 10
    SESSION_TIMEOUT_SECONDS: float = 3600.0      # éviction mémoire après 1h d'inactivité
    AUTO_SAVE_INTERVAL_SECONDS: float = 30.0
    CLEANUP_INTERVAL_SECONDS: float = 60.0       # cycle du "janitor"

    # Jets de dés : "client" = modificateur fourni par le client, "server" = recalculé
    DICE_MODIFIER_SOURCE: Literal["client", "server"] = "client"

    # Paramétrage pydantic-settings :
    # - lit le fichier .env (UTF-8) si présent
    # - ignore les clés supplémentaires pour éviter les erreurs
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")


# Instance unique importable partout : `settings`
settings = Settings()
