"""
Captain Focus Voice I/O — speech in and speech out for the chat.

Speech out:  text → clean → Piper (raw PCM) → volume scale → AudioPlayer queue → aplay
Speech in:   mic (SpeechRecognition) → Google web speech or a Whisper HTTP server → transcript

Pitch is done at playback: aplay runs at SAMPLE_RATE * pitch, and Piper's
--length_scale is set to pitch / rate so the spoken speed still equals rate.
"""
from __future__ import annotations

import json
import os
import queue
import re
import subprocess
import sys
import threading
from dataclasses import dataclass, asdict
from pathlib import Path
from typing import Callable, Optional

import numpy as np
import requests

# ── Config ───────────────────────────────────────────────────────────────────
SETTINGS_PATH = Path(os.getenv("FOCUS_VOICE_SETTINGS",
                               str(Path.home() / ".captain_focus_voice.json")))
PIPER_DIR   = Path(os.getenv("FOCUS_PIPER_DIR", str(Path.home() / ".captain_focus" / "piper")))
PIPER_BIN   = os.getenv("FOCUS_PIPER_BIN", str(PIPER_DIR / "piper"))
STT_ENGINE  = os.getenv("FOCUS_STT_ENGINE", "google")
WHISPER_URL = os.getenv("FOCUS_WHISPER_URL", "http://127.0.0.1:8765/transcribe")

SAMPLE_RATE = 22050
CHANNELS    = 1
FORMAT      = "S16_LE"
VOLUME      = 0.8
LANGUAGE    = "en-US"

PITCH_RANGE = (0.5, 2.0)
RATE_RANGE  = (0.5, 1.5)

TEST_PHRASE = (
    "Hello! This is how Captain Focus sounds with your current voice settings. "
    "Ready for an epic learning adventure?"
)

PIPER_VOICE_LABELS: dict[str, str] = {
    "en_US-amy-medium":     "Amy female",
    "en_US-lessac-medium":  "Lessac",
    "en_US-ljspeech-high":  "LJSpeech female",
    "en_US-ryan-medium":    "Ryan male",
    "en_GB-alba-medium":    "Alba female",
}

_FEMALE_HINTS = ("female", "woman", "zira", "samantha")

_DECORATIVE = ["🎮", "🤔", "🌙", "⚡", "🎯", "🧠", "💡", "🗝", "📚", "⚔", "🚀",
               "✨", "🎉", "🏆", "🧩", "💙", "🌟", "😌", "\ufe0f"]
_DECORATIVE_RE = re.compile("|".join(re.escape(e) for e in _DECORATIVE))


# ── Settings ─────────────────────────────────────────────────────────────────
def _clamp(value: float, bounds: tuple[float, float]) -> float:
    lo, hi = bounds
    return round(min(hi, max(lo, float(value))), 2)


@dataclass
class VoiceSettings:
    selected_voice: int = 0
    pitch: float = 1.1
    rate: float = 0.9

    def __post_init__(self):
        self.selected_voice = int(self.selected_voice)
        self.pitch = _clamp(self.pitch, PITCH_RANGE)
        self.rate = _clamp(self.rate, RATE_RANGE)

    def to_json(self) -> dict:
        return {"selectedVoice": self.selected_voice, "pitch": self.pitch, "rate": self.rate}

    @classmethod
    def from_json(cls, data: dict) -> "VoiceSettings":
        default = cls()
        return cls(
            selected_voice=data.get("selectedVoice", default.selected_voice),
            pitch=data.get("pitch", default.pitch),
            rate=data.get("rate", default.rate),
        )


class SettingsStore:
    """Voice settings saved as JSON in the user's home directory."""

    def __init__(self, path: Path = SETTINGS_PATH):
        self.path = Path(path)

    def load(self) -> VoiceSettings:
        if not self.path.exists():
            return VoiceSettings()
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
            if not isinstance(data, dict):
                raise ValueError("settings file is not an object")
            return VoiceSettings.from_json(data)
        except (OSError, ValueError, TypeError) as e:
            print(f"[tts] ignoring bad settings file {self.path}: {e}", file=sys.stderr)
            return VoiceSettings()

    def save(self, settings: VoiceSettings) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(settings.to_json(), indent=2), encoding="utf-8")


# ── Voices ───────────────────────────────────────────────────────────────────
@dataclass
class Voice:
    name: str
    lang: str
    model: str = ""

    @property
    def display_name(self) -> str:
        return f"{self.name} ({self.lang})"


def pick_default_voice(voices: list[Voice], selected: int) -> int:
    """Keep a valid selection; otherwise prefer a female-sounding voice, else 0."""
    if not voices or 0 <= selected < len(voices):
        return selected
    for i, voice in enumerate(voices):
        name = voice.name.lower()
        if any(hint in name for hint in _FEMALE_HINTS):
            return i
    return 0


def clean_for_speech(text: str) -> str:
    """Drop decorative emoji and collapse whitespace."""
    text = _DECORATIVE_RE.sub("", text)
    return re.sub(r"\s+", " ", text).strip()


def apply_volume(raw: bytes, volume: float) -> bytes:
    """Scale S16_LE PCM samples by volume."""
    if volume >= 1.0 or not raw:
        return raw
    samples = np.frombuffer(raw[: len(raw) - len(raw) % 2], dtype=np.int16)
    scaled = (samples.astype(np.float32) * volume).astype(np.int16)
    return scaled.tobytes()


# ── Piper synthesis ──────────────────────────────────────────────────────────
class PiperSynthesizer:
    def __init__(self, piper_bin: str = PIPER_BIN, voices_dir: Path = PIPER_DIR):
        self.piper_bin = piper_bin
        self.voices_dir = Path(voices_dir)

    @property
    def available(self) -> bool:
        return Path(self.piper_bin).exists()

    def voices(self) -> list[Voice]:
        if not self.voices_dir.exists():
            return []
        found = []
        for model in sorted(self.voices_dir.glob("*.onnx")):
            stem = model.stem
            lang = stem.split("-", 1)[0].replace("_", "-")
            found.append(Voice(PIPER_VOICE_LABELS.get(stem, stem), lang, str(model)))
        return found

    def synthesize(self, text: str, voice: Voice, length_scale: float = 1.0) -> bytes:
        """Text → raw S16_LE PCM via Piper pipe mode."""
        proc = subprocess.Popen(
            [self.piper_bin, "--model", voice.model, "--output-raw",
             "--length_scale", f"{length_scale:.3f}"],
            stdin=subprocess.PIPE,
            stdout=subprocess.PIPE,
            stderr=subprocess.DEVNULL,
        )
        raw, _ = proc.communicate(input=text.encode("utf-8"), timeout=30)
        if proc.returncode != 0:
            raise RuntimeError(f"Piper exited {proc.returncode} for text={text[:60]!r}")
        return raw


# ── Audio player (serialized aplay queue) ────────────────────────────────────
class AudioPlayer:
    """
    Background worker that plays PCM chunks serially through aplay.
    interrupt() kills the current aplay and drains the queue; each chunk's
    on_done still fires so callers can clear their speaking flag.
    Chunks queued before an interrupt never start, even if the worker
    already took them off the queue.
    """

    def __init__(self) -> None:
        self._q: queue.Queue = queue.Queue()
        self._proc: subprocess.Popen | None = None
        self._proc_lock = threading.Lock()
        self._generation = 0
        self._worker_started = False

    def _ensure_worker(self) -> None:
        if not self._worker_started:
            self._worker_started = True
            threading.Thread(target=self._worker, daemon=True, name="focus-audio").start()

    def _worker(self) -> None:
        while True:
            raw, rate, generation, on_done = self._q.get()
            try:
                self._play(raw, rate, generation, on_done)
            finally:
                self._q.task_done()

    def _play(self, raw: bytes, rate: int, generation: int,
              on_done: Optional[Callable[[], None]] = None) -> None:
        try:
            with self._proc_lock:
                if generation != self._generation:
                    return
                self._proc = subprocess.Popen(
                    ["aplay", "-r", str(rate), "-f", FORMAT,
                     "-c", str(CHANNELS), "-q"],
                    stdin=subprocess.PIPE,
                    stderr=subprocess.DEVNULL,
                )
                proc = self._proc
            proc.communicate(input=raw)
        except (OSError, ValueError) as e:
            print(f"[tts] aplay error: {e}", file=sys.stderr)
        finally:
            with self._proc_lock:
                self._proc = None
            if on_done:
                on_done()

    def enqueue(self, raw: bytes, rate: int = SAMPLE_RATE,
                on_done: Optional[Callable[[], None]] = None) -> None:
        self._ensure_worker()
        with self._proc_lock:
            generation = self._generation
        self._q.put((raw, rate, generation, on_done))

    def wait(self) -> None:
        """Block until all queued audio finishes."""
        self._q.join()

    def interrupt(self) -> None:
        """Stop current playback, drain pending queue."""
        with self._proc_lock:
            self._generation += 1
        while not self._q.empty():
            try:
                _, _, _, on_done = self._q.get_nowait()
            except queue.Empty:
                break
            self._q.task_done()
            if on_done:
                on_done()
        with self._proc_lock:
            if self._proc is not None:
                try:
                    self._proc.kill()
                    self._proc.wait(timeout=1)
                except (OSError, subprocess.TimeoutExpired) as e:
                    print(f"[tts] could not stop aplay: {e}", file=sys.stderr)
                self._proc = None


# ── Speech recognition ───────────────────────────────────────────────────────
class SpeechListener:
    """Single-utterance recognizer: one phrase, final result only."""

    def __init__(self, engine: str = STT_ENGINE, whisper_url: str = WHISPER_URL,
                 timeout: float = 8.0, phrase_time_limit: float = 15.0):
        self.engine = engine
        self.whisper_url = whisper_url
        self.timeout = timeout
        self.phrase_time_limit = phrase_time_limit

    @property
    def available(self) -> bool:
        try:
            import speech_recognition  # noqa: F401
        except ImportError:
            return False
        return True

    def listen_once(self) -> str:
        """Block for one phrase. Returns "" when nothing intelligible was heard."""
        import speech_recognition as sr

        r = sr.Recognizer()
        try:
            with sr.Microphone() as source:
                r.adjust_for_ambient_noise(source, duration=0.5)
                audio = r.listen(source, timeout=self.timeout,
                                 phrase_time_limit=self.phrase_time_limit)
        except sr.WaitTimeoutError:
            return ""

        if self.engine == "whisper":
            return self._transcribe_whisper(audio.get_wav_data())
        try:
            return r.recognize_google(audio, language=LANGUAGE).strip()
        except sr.UnknownValueError:
            return ""

    def _transcribe_whisper(self, wav_data: bytes) -> str:
        resp = requests.post(
            self.whisper_url,
            files={"audio": ("clip.wav", wav_data, "audio/wav")},
            timeout=30,
        )
        resp.raise_for_status()
        return (resp.json().get("text") or "").strip()


# ── Adapter ──────────────────────────────────────────────────────────────────
class VoiceIO:
    """
    Bridges synthesis and recognition to the conversation controller.
    Tracks is_speaking / is_listening and owns the persisted voice settings.
    """

    def __init__(
        self,
        synthesizer: Optional[PiperSynthesizer] = None,
        player: Optional[AudioPlayer] = None,
        listener: Optional[SpeechListener] = None,
        store: Optional[SettingsStore] = None,
        on_change: Optional[Callable[[], None]] = None,
    ):
        self.synthesizer = synthesizer or PiperSynthesizer()
        self.player = player or AudioPlayer()
        self.listener = listener or SpeechListener()
        self.store = store or SettingsStore()
        self.on_change = on_change or (lambda: None)
        self.on_transcript: Callable[[str], None] = lambda text: None
        self.on_listen_end: Callable[[], None] = lambda: None

        self.settings = self.store.load()
        self.voices: list[Voice] = []
        self.is_speaking = False
        self.is_listening = False
        self._utterance = 0
        self._lock = threading.Lock()
        self._listen_session = 0
        self._listen_thread: threading.Thread | None = None
        self._speech_thread: threading.Thread | None = None

    # ---- capability ----
    @property
    def can_speak(self) -> bool:
        return self.synthesizer.available

    @property
    def can_listen(self) -> bool:
        return self.listener.available

    # ---- settings ----
    def load_voices(self) -> list[Voice]:
        self.voices = self.synthesizer.voices()
        picked = pick_default_voice(self.voices, self.settings.selected_voice)
        if picked != self.settings.selected_voice:
            self.update_settings(selected_voice=picked)
        return self.voices

    def update_settings(self, **changes) -> VoiceSettings:
        merged = {**asdict(self.settings), **changes}
        self.settings = VoiceSettings(**merged)
        self.store.save(self.settings)
        self.on_change()
        return self.settings

    def reset_settings(self) -> VoiceSettings:
        self.settings = VoiceSettings()
        self.store.save(self.settings)
        self.on_change()
        return self.settings

    def current_voice(self) -> Optional[Voice]:
        idx = self.settings.selected_voice
        if 0 <= idx < len(self.voices):
            return self.voices[idx]
        return None

    # ---- speech out ----
    def _set_speaking(self, value: bool) -> None:
        self.is_speaking = value
        self.on_change()

    def speak(self, text: str) -> None:
        """Cancel whatever is playing, then speak text with the current settings."""
        self.cancel()
        if not self.can_speak:
            return
        clean = clean_for_speech(text)
        voice = self.current_voice() or (self.voices[0] if self.voices else None)
        if not clean or voice is None:
            return

        with self._lock:
            self._utterance += 1
            utterance = self._utterance
        self._set_speaking(True)

        def _done() -> None:
            with self._lock:
                current = utterance == self._utterance
            if current:
                self._set_speaking(False)

        s = self.settings

        def _synth_enqueue() -> None:
            try:
                raw = self.synthesizer.synthesize(clean, voice, length_scale=s.pitch / s.rate)
            except (OSError, RuntimeError, subprocess.TimeoutExpired) as e:
                print(f"[tts] speak error: {e}", file=sys.stderr)
                _done()
                return
            # a cancel during synthesis drops the audio
            with self._lock:
                if utterance != self._utterance:
                    return
                self.player.enqueue(apply_volume(raw, VOLUME), int(SAMPLE_RATE * s.pitch), _done)

        self._speech_thread = threading.Thread(
            target=_synth_enqueue, daemon=True, name="focus-synth"
        )
        self._speech_thread.start()

    def wait_speech(self, timeout: float = 30.0) -> None:
        """Block until the latest utterance is synthesized and queued (not played)."""
        if self._speech_thread is not None:
            self._speech_thread.join(timeout)

    def test_voice(self) -> None:
        self.speak(TEST_PHRASE)

    def cancel(self) -> None:
        with self._lock:
            self._utterance += 1
        self.player.interrupt()
        if self.is_speaking:
            self._set_speaking(False)

    # ---- speech in ----
    def start_listening(self) -> bool:
        if self.is_listening or not self.can_listen:
            return False
        with self._lock:
            self._listen_session += 1
            session = self._listen_session
        self.is_listening = True
        self.on_change()
        self._listen_thread = threading.Thread(
            target=self._listen_worker, args=(session,), daemon=True, name="focus-listen"
        )
        self._listen_thread.start()
        return True

    def _listen_worker(self, session: int) -> None:
        text = ""
        try:
            text = self.listener.listen_once()
        except Exception as e:  # any recognizer failure ends the session
            print(f"[stt] recognition error: {e}", file=sys.stderr)
        with self._lock:
            live = session == self._listen_session
        if not live:
            return
        self.is_listening = False
        if text:
            self.on_transcript(text)
        self.on_listen_end()
        self.on_change()

    def stop_listening(self) -> None:
        """Abandon the current session; a late result is ignored."""
        with self._lock:
            self._listen_session += 1
        if self.is_listening:
            self.is_listening = False
            self.on_listen_end()
            self.on_change()

    def wait_listening(self, timeout: float = 30.0) -> None:
        if self._listen_thread is not None:
            self._listen_thread.join(timeout)
