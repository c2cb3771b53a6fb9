from __future__ import annotations

import json
from types import SimpleNamespace

import pytest

from stockmeta.config import Settings
from stockmeta.models import READY, EncodedPayload, WorkItem
from stockmeta.observer import RunObserver


@pytest.fixture
def anyio_backend():
    return "asyncio"


class FakeModels:
    """Stands in for client.aio.models; `responder(call_number, kwargs)` decides each reply"""

    def __init__(self, responder):
        self.responder = responder
        self.calls = []

    async def generate_content(self, **kwargs):
        self.calls.append(kwargs)
        return self.responder(len(self.calls), kwargs)


class FakeClient:
    def __init__(self, responder, api_key=None):
        self.api_key = api_key
        self.models = FakeModels(responder)
        self.aio = SimpleNamespace(models=self.models)


def text_response(payload):
    text = payload if isinstance(payload, str) else json.dumps(payload)
    return SimpleNamespace(text=text, candidates=[SimpleNamespace(finish_reason="STOP")])


METADATA = {
    "title": "RED APPLE on a wooden table",
    "description": "A red apple on a wooden table.",
    "keywords": ["Apple", "fruit", " red ", "apple"],
    "category": "Food and drink",
}


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


class RecordingObserver(RunObserver):
    def __init__(self):
        self.snapshots = []
        self.notifications = []
        self.generating = []
        self.records = []
        self.completed = []

    def on_progress(self, snapshot):
        self.snapshots.append(snapshot)

    def on_notify(self, message, level):
        self.notifications.append((level, message))

    def on_generating(self, is_generating):
        self.generating.append(is_generating)

    def on_result(self, record):
        self.records.append(record)

    def on_complete(self, success, total):
        self.completed.append((success, total))

    @property
    def statuses(self):
        return [s.status for s in self.snapshots]


def make_item(name="photo.jpg", status=READY):
    return WorkItem(
        filename=name,
        payload=EncodedPayload(data=b"jpeg-bytes", mime_type="image/jpeg"),
        thumbnail=b"thumb",
        status=status,
    )


@pytest.fixture
def settings(tmp_path):
    return Settings(path=str(tmp_path / "settings.json"), data={"api_keys": ["key-one"]})


@pytest.fixture
def observer():
    return RecordingObserver()


@pytest.fixture
def clock():
    return FakeClock()
