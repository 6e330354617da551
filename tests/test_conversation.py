import pytest
from fastapi.testclient import TestClient

import focus_backend
from conftest import FakeListener, FakeResponse
from captain_focus.core.api_client import (
    CONNECT_ERROR,
    BackendServerError,
    BackendUnavailableError,
    FocusAPI,
)
from captain_focus.core.conversation import (
    API_KEY_MISSING,
    CAPTAIN,
    CONNECTED,
    CONNECTING,
    ERROR,
    FALLBACK_REPLY,
    GREETING,
    HEALTH_FAILED,
    MODEL_UNHEALTHY,
    USER,
    ConversationController,
)


class FakeAPI:
    def __init__(self, reply="Let's start with the basics!", error=None, health=None):
        self.reply = reply
        self.error = error
        self.health = health if health is not None else {"status": "healthy"}
        self.sent = []

    def send_message(self, messages):
        self.sent.append(messages)
        if self.error is not None:
            raise self.error
        return self.reply

    def check_health(self):
        if isinstance(self.health, Exception):
            raise self.health
        return self.health

    def get_system_prompt(self):
        return "SYSTEM"

    def get_backend_url(self):
        return "http://backend.test"


def test_starts_with_greeting():
    chat = ConversationController(FakeAPI())
    assert len(chat.messages) == 1
    greeting = chat.messages[0]
    assert (greeting.text, greeting.sender, greeting.mood) == (GREETING, CAPTAIN, "happy")
    assert chat.connection_status == CONNECTING
    assert chat.status_text() == "🔄 Connecting..."


def test_send_builds_history_and_appends_reply(voice, synth):
    api = FakeAPI()
    chat = ConversationController(api, voice)
    chat.set_input("I'm confused about fractions")
    reply = chat.send_message()

    assert [m.sender for m in chat.messages] == [CAPTAIN, USER, CAPTAIN]
    assert chat.messages[1].text == "I'm confused about fractions"
    assert reply.text == "Let's start with the basics!"
    assert reply.mood == "confused"
    assert api.sent[0] == [
        {"role": "system", "content": "SYSTEM"},
        {"role": "assistant", "content": GREETING},
        {"role": "user", "content": "I'm confused about fractions"},
    ]
    assert chat.input_text == ""
    assert not chat.is_typing
    assert chat.api_error is None
    voice.wait_speech()
    assert synth.calls[-1][0] == "Let's start with the basics!"
    assert chat.is_speaking


def test_history_maps_user_and_captain_roles():
    api = FakeAPI()
    chat = ConversationController(api)
    chat.send_message("first question")
    chat.send_message("second question")
    roles = [m["role"] for m in api.sent[1]]
    assert roles == ["system", "assistant", "user", "assistant", "user"]
    assert api.sent[1][-1]["content"] == "second question"


@pytest.mark.parametrize("text", ["", "   ", "\n\t"])
def test_blank_input_is_ignored(text):
    api = FakeAPI()
    chat = ConversationController(api)
    assert chat.send_message(text) is None
    assert len(chat.messages) == 1
    assert api.sent == []


def test_failure_falls_back(voice, synth):
    api = FakeAPI(error=BackendServerError("Server error: Failed to process message", 500))
    chat = ConversationController(api, voice)
    reply = chat.send_message("thanks for the help")

    assert reply.text == FALLBACK_REPLY
    assert reply.mood == "neutral"
    assert chat.api_error == "Server error: Failed to process message"
    assert not chat.is_typing
    voice.wait_speech()
    assert synth.calls[-1][0] == FALLBACK_REPLY.replace("⚡", "").strip()


def test_new_send_clears_previous_error():
    api = FakeAPI(error=BackendUnavailableError(CONNECT_ERROR))
    chat = ConversationController(api)
    chat.send_message("hello")
    assert chat.api_error == CONNECT_ERROR
    api.error = None
    chat.send_message("hello again")
    assert chat.api_error is None


def test_send_refused_while_listening(voice, gate):
    voice.listener = FakeListener(text="spoken", gate=gate)
    chat = ConversationController(FakeAPI(), voice)
    chat.toggle_voice()
    assert chat.is_listening
    assert chat.send_message("typed meanwhile") is None
    gate.set()
    voice.wait_listening()


def test_message_ids_are_unique():
    chat = ConversationController(FakeAPI())
    for i in range(5):
        chat.send_message(f"question {i}")
    ids = [m.id for m in chat.messages[1:]]
    assert len(set(ids)) == len(ids)
    assert ids == sorted(ids, key=int)


def test_subscribers_are_notified():
    chat = ConversationController(FakeAPI())
    seen = []
    chat.subscribe(lambda c: seen.append((c.is_typing, len(c.messages))))
    chat.send_message("hi")
    assert (True, 2) in seen
    assert seen[-1] == (False, 3)


def test_dismiss_error():
    chat = ConversationController(FakeAPI())
    chat.api_error = "boom"
    chat.dismiss_error()
    assert chat.api_error is None


# ---- connection ----

def test_check_connection_ok():
    chat = ConversationController(FakeAPI(health={"status": "healthy", "environment": {"port": 3001}}))
    assert chat.check_connection() == CONNECTED
    assert chat.api_error is None
    assert chat.status_text() == "✅ Connected"


@pytest.mark.parametrize("health,error", [
    ({"status": "healthy", "environment": {"hasApiKey": False}}, API_KEY_MISSING),
    ({"status": "healthy", "omnidimensionApiHealth": False}, MODEL_UNHEALTHY),
])
def test_check_connection_reports_model_configuration(health, error):
    chat = ConversationController(FakeAPI(health=health))
    assert chat.check_connection() == CONNECTED
    assert chat.api_error == error


def test_check_connection_health_failed():
    api = FakeAPI()
    api.health = {}
    chat = ConversationController(api)
    assert chat.check_connection() == ERROR
    assert chat.api_error == HEALTH_FAILED
    assert chat.status_text() == "❌ Connection Error"


def test_check_connection_exception():
    chat = ConversationController(FakeAPI(health=RuntimeError("dns")))
    assert chat.check_connection() == ERROR
    assert chat.api_error == CONNECT_ERROR


# ---- voice ----

def test_toggle_voice_fills_input_from_transcript(voice):
    chat = ConversationController(FakeAPI(), voice)
    assert chat.toggle_voice() is True
    voice.wait_listening()
    assert chat.input_text == "what is photosynthesis"
    assert not chat.is_voice_active
    assert not chat.is_listening


def test_toggle_voice_reports_start_even_when_recognition_fails_at_once(voice):
    voice.listener = FakeListener(error=OSError("no microphone"))
    chat = ConversationController(FakeAPI(), voice)
    assert chat.toggle_voice() is True
    voice.wait_listening()
    assert not chat.is_voice_active
    assert chat.input_text == ""
    # the next toggle starts a fresh session instead of stopping a dead one
    assert chat.toggle_voice() is True
    voice.wait_listening()


def test_toggle_voice_off_stops_listening(voice, gate):
    voice.listener = FakeListener(text="ignored", gate=gate)
    chat = ConversationController(FakeAPI(), voice)
    chat.toggle_voice()
    assert chat.toggle_voice() is False
    assert not chat.is_listening
    gate.set()
    voice.wait_listening()
    assert chat.input_text == ""


def test_toggle_voice_cancels_speech(voice, gate):
    voice.listener = FakeListener(gate=gate)
    chat = ConversationController(FakeAPI(), voice)
    chat.send_message("hello")
    assert chat.is_speaking
    chat.toggle_voice()
    assert not chat.is_speaking
    gate.set()
    voice.wait_listening()


def test_voice_settings_passthrough(voice, store):
    chat = ConversationController(FakeAPI(), voice)
    chat.update_voice_settings(rate=1.4)
    assert store.load().rate == 1.4
    chat.reset_voice_settings()
    assert store.load().rate == 0.9


def test_without_voice_everything_still_works():
    chat = ConversationController(FakeAPI())
    assert chat.toggle_voice() is False
    chat.test_voice()
    assert not chat.is_speaking and not chat.is_listening


# ---- end to end against the real backend app ----

class BackendSession:
    """Routes FocusAPI calls into the FastAPI app in-process."""

    def __init__(self):
        self.client = TestClient(focus_backend.app)

    def _wrap(self, r):
        try:
            data = r.json()
        except ValueError:
            data = None
        return FakeResponse(r.status_code, data, r.reason_phrase)

    def post(self, url, json=None, timeout=None):
        return self._wrap(self.client.post(url.replace("http://backend.test", ""), json=json))

    def get(self, url, timeout=None):
        return self._wrap(self.client.get(url.replace("http://backend.test", "")))


def test_round_trip_through_backend():
    api = FocusAPI("http://backend.test", session=BackendSession())
    chat = ConversationController(api)
    assert chat.check_connection() == CONNECTED
    reply = chat.send_message("this is too hard")
    assert 'I received your message: "this is too hard"' in reply.text
    assert reply.mood == "confused"
    assert chat.api_error is None
