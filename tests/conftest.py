from __future__ import annotations

import json

import pytest

from app.services.session_store import reset_runtime


class FakeSocket:
    """WebSocket minimal : garde les trames envoyées (décodées)."""

    def __init__(self):
        self.sent = []
        self.accepted = False
        self.closed = False

    async def accept(self):
        self.accepted = True

    async def send_text(self, data: str):
        if self.closed:
            raise RuntimeError("socket closed")
        self.sent.append(json.loads(data))

    async def close(self):
        self.closed = True

    def types(self):
        return [frame["type"] for frame in self.sent]

    def payloads(self, event_type: str):
        return [frame["payload"] for frame in self.sent if frame["type"] == event_type]


@pytest.fixture(autouse=True)
def runtime(tmp_path):
    """Runtime neuf par test, snapshots écrits dans un répertoire temporaire."""
    return reset_runtime(tmp_path)


@pytest.fixture
def make_socket():
    return FakeSocket
