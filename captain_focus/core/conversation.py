"""
Captain Focus Conversation — message history, send/receive, fallback, voice hooks.
The terminal UI only reads state from here and calls the public methods.
"""
from __future__ import annotations
import sys
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Optional

from .api_client import BackendError, FocusAPI, CONNECT_ERROR
from .mood import HAPPY, NEUTRAL, detect_mood
from .voice import VoiceIO

USER    = "user"
CAPTAIN = "captain"

CONNECTING = "connecting"
CONNECTED  = "connected"
ERROR      = "error"

GREETING = (
    "🎮 Greetings, brave scholar! I'm Captain Focus, your AI study companion! "
    "I'm here to turn your learning journey into an epic quest. "
    "What subject shall we conquer today? ⚔️✨"
)

FALLBACK_REPLY = (
    "🤖 I'm having trouble connecting to my AI brain right now, but I'm still here to help! "
    "This might be due to API configuration issues. Please check the backend logs "
    "and make sure the backend is configured correctly. ⚡"
)

HEALTH_FAILED = (
    "Backend health check failed. Please ensure the backend service is running and accessible."
)
API_KEY_MISSING = (
    "AI model API key not configured. Please set the API key in your backend .env file."
)
MODEL_UNHEALTHY = (
    "AI model API is not responding. Please check your API key and network connection."
)

STATUS_TEXT = {
    CONNECTED:  "✅ Connected",
    ERROR:      "❌ Connection Error",
    CONNECTING: "🔄 Connecting...",
}


@dataclass
class Message:
    id: str
    text: str
    sender: str
    mood: Optional[str] = None
    timestamp: datetime = field(default_factory=datetime.now)


class ConversationController:
    def __init__(self, api: FocusAPI, voice: Optional[VoiceIO] = None):
        self.api = api
        self.voice = voice
        self.messages: list[Message] = [
            Message("1", GREETING, CAPTAIN, mood=HAPPY),
        ]
        self.input_text = ""
        self.is_typing = False
        self.is_voice_active = False
        self.api_error: Optional[str] = None
        self.connection_status = CONNECTING
        self._listeners: list[Callable[["ConversationController"], None]] = []
        self._last_id = 0

        if voice is not None:
            voice.on_change = self._notify
            voice.on_transcript = self._on_transcript
            voice.on_listen_end = self._on_listen_end

    # ---- observers ----
    def subscribe(self, callback: Callable[["ConversationController"], None]) -> None:
        self._listeners.append(callback)

    def _notify(self) -> None:
        for cb in list(self._listeners):
            cb(self)

    # ---- derived state ----
    @property
    def is_listening(self) -> bool:
        return bool(self.voice and self.voice.is_listening)

    @property
    def is_speaking(self) -> bool:
        return bool(self.voice and self.voice.is_speaking)

    @property
    def can_send(self) -> bool:
        return bool(self.input_text.strip()) and not self.is_listening and not self.is_typing

    def status_text(self) -> str:
        return STATUS_TEXT.get(self.connection_status, STATUS_TEXT[CONNECTING])

    def _next_id(self) -> str:
        # millisecond clock, bumped so two messages in the same ms stay unique
        now = int(time.time() * 1000)
        self._last_id = max(now, self._last_id + 1)
        return str(self._last_id)

    # ---- connection ----
    def check_connection(self) -> str:
        try:
            health = self.api.check_health()
        except Exception as e:
            print(f"[chat] ❌ Backend connection failed: {e}", file=sys.stderr, flush=True)
            self.connection_status = ERROR
            self.api_error = CONNECT_ERROR
            self._notify()
            return self.connection_status

        if health:
            self.connection_status = CONNECTED
            env = health.get("environment") or {}
            if isinstance(env, dict) and env.get("hasApiKey") is False:
                self.api_error = API_KEY_MISSING
            elif health.get("omnidimensionApiHealth") is False:
                self.api_error = MODEL_UNHEALTHY
        else:
            self.connection_status = ERROR
            self.api_error = HEALTH_FAILED
        self._notify()
        return self.connection_status

    # ---- messaging ----
    def set_input(self, text: str) -> None:
        self.input_text = text
        self._notify()

    def _history_for_api(self, current: str) -> list[dict]:
        history = [
            {"role": "user" if m.sender == USER else "assistant", "content": m.text}
            for m in self.messages
        ]
        return (
            [{"role": "system", "content": self.api.get_system_prompt()}]
            + history
            + [{"role": "user", "content": current}]
        )

    def send_message(self, text: Optional[str] = None) -> Optional[Message]:
        """Send text (or the pending input). Returns the captain's reply, or None if nothing was sent."""
        if text is not None:
            self.input_text = text
        current = self.input_text
        if not current.strip() or self.is_listening or self.is_typing:
            return None

        api_messages = self._history_for_api(current)
        self.messages.append(Message(self._next_id(), current, USER))
        self.input_text = ""
        self.is_typing = True
        self.api_error = None
        self._notify()

        try:
            reply_text = self.api.send_message(api_messages)
            reply = Message(self._next_id(), reply_text, CAPTAIN, mood=detect_mood(current))
        except BackendError as e:
            print(f"[chat] Error getting AI response: {e}", file=sys.stderr, flush=True)
            self.api_error = str(e) or "Failed to get response from AI"
            reply = Message(self._next_id(), FALLBACK_REPLY, CAPTAIN, mood=NEUTRAL)

        self.messages.append(reply)
        self.is_typing = False
        self._notify()
        self.speak(reply.text)
        return reply

    def dismiss_error(self) -> None:
        self.api_error = None
        self._notify()

    # ---- voice ----
    def speak(self, text: str) -> None:
        if self.voice is not None:
            self.voice.speak(text)

    def test_voice(self) -> None:
        if self.voice is not None:
            self.voice.test_voice()

    def update_voice_settings(self, **changes) -> None:
        if self.voice is not None:
            self.voice.update_settings(**changes)

    def reset_voice_settings(self) -> None:
        if self.voice is not None:
            self.voice.reset_settings()

    def toggle_voice(self) -> bool:
        """Flip voice input on/off. Returns True when a listening session started."""
        if self.voice is None:
            return False
        if self.voice.is_speaking:
            self.voice.cancel()
        if self.is_voice_active:
            self.is_voice_active = False
            self.voice.stop_listening()
            self._notify()
            return False

        # set before the worker starts: a fast result clears it again
        self.is_voice_active = True
        started = self.voice.start_listening()
        if not started:
            self.is_voice_active = False
        self._notify()
        return started

    def _on_transcript(self, text: str) -> None:
        self.input_text = text
        self.is_voice_active = False

    def _on_listen_end(self) -> None:
        self.is_voice_active = False
