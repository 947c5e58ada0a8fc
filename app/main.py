"""
Application FastAPI : Point d'entrée
====================================

Rôle
----
- Instancie l'app FastAPI, configure le logging et le CORS pour le front,
- Monte les routeurs (REST + WebSocket),
- Démarre le "janitor" des sessions au démarrage, sauvegarde et ferme tout à l'arrêt.

Notes
-----
- Les importations des routeurs sont explicites pour éviter les surprises d'auto-discovery.
- ⚠️ Le middleware CORS doit être ajouté AVANT les include_router.
- Lancement : `uvicorn app.main:app --host 0.0.0.0 --port 3000`
"""
import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.config.settings import settings
from app.routes.health import router as health_router
from app.routes.sessions import router as sessions_router
from app.routes.websocket import router as ws_router
from app.services.session_store import get_runtime

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

# --- App FastAPI principale  ---
app = FastAPI(title=settings.APP_NAME)

# ===========================
# CORS
# ===========================
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_ORIGINS,
    allow_credentials="*" not in settings.ALLOWED_ORIGINS,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ===========================
# Montage des routers
# ===========================
app.include_router(health_router)
app.include_router(sessions_router)
app.include_router(ws_router)                  # WebSocket endpoint (/ws)


# --- Racine utile pour "ping" simple (sans /api/health) ---
@app.get("/")
async def root():
    return {"ok": True, "service": settings.APP_NAME}


# --- Hooks de cycle de vie ---
@app.on_event("startup")
async def start_janitor():
    """Démarre le nettoyage périodique (sessions inactives + timers orphelins)."""
    get_runtime().sessions.start_janitor()
    logger.info("Server started", extra={"data_dir": settings.DATA_DIR})


@app.on_event("shutdown")
async def save_and_close():
    """
    À l'arrêt:
    - sauvegarde chaque session en mémoire (best effort),
    - attend les écritures en cours, annule les timers, ferme les sockets.
    """
    runtime = get_runtime()
    saved = await runtime.sessions.save_all_active()
    await runtime.handler.drain()
    await runtime.sessions.shutdown()
    await runtime.ws.close_all()
    logger.info("Server stopped", extra={"saved_sessions": saved})
