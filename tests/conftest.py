"""Shared fixtures: a fake ComfyUI server standing in for requests and websocket-client."""

from __future__ import annotations

import io
import json
from urllib.parse import urlparse

import pytest
import websocket
from PIL import Image

from comfyui_relay import comfy
from comfyui_relay.server import create_app
from comfyui_relay.workflow import default_workflow

PROMPT_ID = "prompt-1"


def make_png(color="red") -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", (4, 4), color).save(buffer, format="PNG")
    return buffer.getvalue()


class FakeResponse:
    def __init__(self, url, status_code=200, json_data=None, content=b""):
        self.url = url
        self.status_code = status_code
        self._json_data = json_data
        self.content = content if json_data is None else json.dumps(json_data).encode()
        self.text = self.content.decode("utf-8", errors="replace")

    @property
    def ok(self):
        return self.status_code < 400

    def json(self):
        return json.loads(self.content)


class FakeWebSocket:
    def __init__(self, messages, refuse=False):
        self.messages = messages
        self.refuse = refuse
        self.url = None
        self.closed = False

    def connect(self, url):
        if self.refuse:
            raise ConnectionRefusedError("Connection refused")
        self.url = url

    def recv(self):
        if not self.messages:
            raise websocket.WebSocketConnectionClosedException("Connection is already closed.")
        return self.messages.pop(0)

    def close(self):
        self.closed = True


class FakeComfy:
    """Records every request and socket, and answers like a ComfyUI server that already ran the job."""

    def __init__(self):
        self.prompt_id = PROMPT_ID
        self.requests = []
        self.sockets = []
        self.queued = []
        self.queue_status = 200
        self.refuse_connections = False
        self.images = {
            "ComfyUI_00001_.png": make_png("red"),
            "ComfyUI_00002_.png": make_png("blue"),
        }
        self.history = {
            PROMPT_ID: {
                "outputs": {
                    "9": {
                        "images": [
                            {"filename": "ComfyUI_00001_.png", "subfolder": "", "type": "output"},
                            {"filename": "ComfyUI_00002_.png", "subfolder": "", "type": "output"},
                        ]
                    },
                    "12": {"text": ["not an image"]},
                }
            }
        }
        self.messages = [
            json.dumps({"type": "status", "data": {"status": {"exec_info": {"queue_remaining": 1}}}}),
            json.dumps({"type": "execution_start", "data": {"prompt_id": PROMPT_ID}}),
            json.dumps({"type": "executing", "data": {"node": "3", "prompt_id": PROMPT_ID}}),
            b"\x00\x00\x00\x01\x00\x00\x00\x02preview",
            "not json",
            json.dumps({"type": "executing", "data": {"node": None, "prompt_id": "someone-else"}}),
            json.dumps({"type": "executing", "data": {"node": None, "prompt_id": PROMPT_ID}}),
        ]

    def websocket(self):
        ws = FakeWebSocket(list(self.messages), refuse=self.refuse_connections)
        self.sockets.append(ws)
        return ws

    def request(self, method, url, **kwargs):
        self.requests.append((method, url, kwargs))
        path = urlparse(url).path

        if method == "POST" and path == "/prompt":
            self.queued.append(kwargs["json"])
            if self.queue_status != 200:
                return FakeResponse(url, status_code=self.queue_status, json_data={"error": "invalid prompt"})
            return FakeResponse(url, json_data={"prompt_id": self.prompt_id, "number": 0, "node_errors": {}})

        if method == "GET" and path.startswith("/history/"):
            return FakeResponse(url, json_data=self.history)

        if method == "GET" and path == "/view":
            filename = kwargs["params"]["filename"]
            if filename not in self.images:
                return FakeResponse(url, status_code=404, content=b"404: Not Found")
            return FakeResponse(url, content=self.images[filename])

        return FakeResponse(url, status_code=404, content=b"404: Not Found")


@pytest.fixture
def fake_comfy(monkeypatch):
    server = FakeComfy()
    monkeypatch.setattr(comfy.websocket, "WebSocket", server.websocket)
    monkeypatch.setattr(comfy.requests, "request", server.request)
    return server


@pytest.fixture
def workflow():
    return default_workflow("masterpiece best quality man", seed=5)


@pytest.fixture
def workflow_json(workflow):
    return json.dumps(workflow.to_prompt())


@pytest.fixture
def app():
    application = create_app("comfy.local:8188")
    application.config["TESTING"] = True
    return application


@pytest.fixture
def client(app):
    return app.test_client()
