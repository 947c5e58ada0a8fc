# app/routes/websocket.py
"""
WebSocket endpoint.

- /ws : canal unique des clients de table (joueurs et narrateur).
  Trames JSON {"type": <événement>, "payload": {...}} dans les deux sens;
  tout le protocole est délégué à `WebSocketHandler`.
"""
from __future__ import annotations

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from app.services.session_store import get_runtime

router = APIRouter()

BINARY_FRAME_MESSAGE = "Only text frames are supported"


@router.websocket("/ws")
async def websocket_endpoint(ws: WebSocket):
    """
    Boucle d'écoute d'une connexion.
    - `connected` envoyé à l'acceptation (avec l'id de connexion attribué).
    - Chaque trame texte est traitée jusqu'au bout avant la suivante (ordre de réception).
    - Trame binaire -> `error` à l'émetteur, la connexion reste ouverte.
    - Déconnexion transport -> traitée comme un départ de session.
    """
    handler = get_runtime().handler
    connection_id = await handler.on_connect(ws)
    try:
        while True:
            message = await ws.receive()
            if message["type"] == "websocket.disconnect":
                break
            raw = message.get("text")
            if raw is None:
                await handler.send_error(connection_id, BINARY_FRAME_MESSAGE)
                continue
            await handler.on_text(connection_id, raw)
    except WebSocketDisconnect:
        pass
    finally:
        await handler.on_disconnect(connection_id)
