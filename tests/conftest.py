"""Shared fakes for Captain Focus tests: no network, no audio hardware."""
from __future__ import annotations

import threading

import pytest
import requests

from captain_focus.core.voice import SettingsStore, Voice, VoiceIO


class FakeResponse:
    def __init__(self, status_code=200, data=None, reason="OK"):
        self.status_code = status_code
        self._data = data
        self.reason = reason

    @property
    def ok(self):
        return self.status_code < 400

    def json(self):
        if self._data is None:
            raise ValueError("no JSON body")
        return self._data


class FakeSession:
    """Stands in for requests.Session; queue responses or exceptions per method."""

    def __init__(self):
        self.calls = []
        self.post_result = FakeResponse(200, {"response": "ok"})
        self.get_result = FakeResponse(200, {"status": "healthy"})

    def _answer(self, result):
        if isinstance(result, Exception):
            raise result
        return result

    def post(self, url, json=None, timeout=None):
        self.calls.append(("POST", url, json))
        return self._answer(self.post_result)

    def get(self, url, timeout=None):
        self.calls.append(("GET", url, None))
        return self._answer(self.get_result)


class FakeSynth:
    def __init__(self, voices=None, available=True, fail=False, gate=None):
        self._voices = voices if voices is not None else [
            Voice("Lessac", "en-US", "lessac.onnx"),
            Voice("Amy female", "en-US", "amy.onnx"),
        ]
        self.available = available
        self.fail = fail
        self.gate = gate
        self.calls = []

    def voices(self):
        return list(self._voices)

    def synthesize(self, text, voice, length_scale=1.0):
        self.calls.append((text, voice, length_scale))
        if self.gate is not None:
            self.gate.wait(5)
        if self.fail:
            raise RuntimeError("piper broke")
        return b"\x10\x00" * 8


class FakePlayer:
    def __init__(self):
        self.enqueued = []
        self.pending = []
        self.interrupts = 0

    def enqueue(self, raw, rate=22050, on_done=None):
        self.enqueued.append((raw, rate))
        self.pending.append(on_done)

    def finish(self):
        """Simulate playback of everything queued reaching its end."""
        done, self.pending = self.pending, []
        for cb in done:
            if cb:
                cb()

    def interrupt(self):
        self.interrupts += 1
        self.finish()

    def wait(self):
        pass


class FakeListener:
    def __init__(self, text="", available=True, error=None, gate=None):
        self.text = text
        self.available = available
        self.error = error
        self.gate = gate

    def listen_once(self):
        if self.gate is not None:
            self.gate.wait(5)
        if self.error is not None:
            raise self.error
        return self.text


@pytest.fixture
def session():
    return FakeSession()


@pytest.fixture
def store(tmp_path):
    return SettingsStore(tmp_path / "voice.json")


@pytest.fixture
def synth():
    return FakeSynth()


@pytest.fixture
def player():
    return FakePlayer()


@pytest.fixture
def listener():
    return FakeListener(text="what is photosynthesis")


@pytest.fixture
def voice(synth, player, listener, store):
    io = VoiceIO(synthesizer=synth, player=player, listener=listener, store=store)
    io.load_voices()
    return io


@pytest.fixture
def gate():
    return threading.Event()


@pytest.fixture
def connection_error():
    return requests.ConnectionError("connection refused")
