"""
Module routes/health.py
Rôle:
- Endpoint de santé (service OK + uptime + état des connexions).

Intégrations:
- settings: nom d'app.
- runtime: statistiques du gestionnaire WebSocket et nombre de sessions en mémoire.
"""
from fastapi import APIRouter
import time

from app.config.settings import settings
from app.services.session_store import get_runtime
from app.utils.time_utils import utc_now_iso

router = APIRouter(prefix="/api/health", tags=["health"])

_STARTED_AT = time.monotonic()


@router.get("")
async def health():
    """Renvoie un OK minimal avec le nom de service configuré et l'uptime en secondes."""
    runtime = get_runtime()
    return {
        "status": "ok",
        "service": settings.APP_NAME,
        "timestamp": utc_now_iso(),
        "uptime": round(time.monotonic() - _STARTED_AT, 3),
        "sessions": len(runtime.sessions.get_all_sessions()),
        "activeSessions": len(runtime.sessions.get_active_sessions()),
        "connections": runtime.ws.stats()["connections_total"],
    }
