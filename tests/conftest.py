"""Shared fixtures: an in-process Godot stand-in and a fake connection for adapter tests."""

import asyncio
import json
from contextlib import asynccontextmanager

import pytest
from websockets.asyncio.server import serve

from live_vroid.config import RetryPolicy


def success_reply(message: dict, result=None) -> dict:
    """Build the success response Godot sends for a command."""
    return {
        "status": "success",
        "result": result if result is not None else {"clip": message["params"].get("clip")},
        "commandId": message["commandId"],
    }


def ack_commands(message: dict):
    """Responder acknowledging every command, ignoring pings."""
    if "commandId" not in message:
        return None
    return success_reply(message)


class FakeGodot:
    """Records what the bridge sends and answers through a responder callable.

    The responder receives each decoded message and returns None (no reply),
    a dict or raw string, or a list of those to send in order.
    """

    def __init__(self, responder=None):
        self.responder = responder
        self.received = []
        self.connections = []
        self.url = None

    async def handler(self, websocket):
        self.connections.append(websocket)
        async for raw in websocket:
            message = json.loads(raw)
            self.received.append(message)
            if self.responder is None:
                continue
            reply = self.responder(message)
            if asyncio.iscoroutine(reply):
                reply = await reply
            if reply is None:
                continue
            for item in reply if isinstance(reply, list) else [reply]:
                await websocket.send(item if isinstance(item, str) else json.dumps(item))

    @property
    def commands(self):
        return [m for m in self.received if "commandId" in m]

    @property
    def pings(self):
        return [m for m in self.received if m.get("type") == "ping"]

    async def close_all(self):
        for websocket in self.connections:
            await websocket.close()


@asynccontextmanager
async def running_godot(responder=None):
    godot = FakeGodot(responder)
    async with serve(godot.handler, "127.0.0.1", 0) as server:
        port = server.sockets[0].getsockname()[1]
        godot.url = f"ws://127.0.0.1:{port}"
        yield godot


async def eventually(predicate, timeout: float = 2.0, interval: float = 0.01):
    """Poll until predicate() is truthy or fail after timeout seconds."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(interval)


@pytest.fixture
def godot_server():
    return running_godot


@pytest.fixture
def fast_policy():
    return RetryPolicy(max_retries=0, retry_delay=0.01, command_timeout=2.0, connect_timeout=2.0)


class FakeConnection:
    """Stands in for GodotConnection in adapter tests."""

    def __init__(self):
        self.events = []
        self.requests = []
        self.messages = []
        self.failures = {}
        self.connected = True

    def fail_clip(self, clip: str, error: Exception):
        self.failures[clip] = error

    async def send_request(self, kind, params=None):
        self.requests.append((kind, params))
        self.events.append(("send", params["clip"]))
        error = self.failures.get(params["clip"])
        if error is not None:
            raise error
        return {"ok": True}

    async def send_message(self, message):
        error = self.failures.get(message["clip"])
        if error is not None:
            raise error
        self.messages.append(message)

    def get_status(self):
        return {
            "connected": self.connected,
            "url": "ws://localhost:8080",
            "pendingCommands": 0,
        }


@pytest.fixture
def fake_connection():
    return FakeConnection()
