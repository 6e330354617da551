"""
Captain Focus API client — talks to the backend chat service.
Resolves the backend URL and turns HTTP/transport failures into BackendError subclasses.
"""
from __future__ import annotations
import os
import sys
from typing import Optional

import requests

LOCAL_BACKEND_URL = "http://localhost:3001"
PRODUCTION_BACKEND_URL = "https://captain-focus-backend.onrender.com"
LOCAL_HOSTNAMES = {"localhost", "127.0.0.1"}
DEFAULT_TIMEOUT = float(os.getenv("FOCUS_HTTP_TIMEOUT", "30"))

SYSTEM_PROMPT = (
    "You are Captain Focus, a friendly AI study companion. "
    "Help students learn with enthusiasm and encouragement!"
)

CONNECT_ERROR = "Cannot connect to backend server. Please ensure the backend service is running."


class BackendError(Exception):
    """Base for every failure surfaced by the API client."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class InvalidConversationError(BackendError):
    pass


class BackendUnavailableError(BackendError):
    pass


class BackendNotFoundError(BackendError):
    pass


class BackendServerError(BackendError):
    pass


class BackendRequestError(BackendError):
    pass


class InvalidResponseError(BackendError):
    pass


def resolve_backend_url(hostname: Optional[str] = None, env: Optional[dict] = None) -> str:
    """Pick the backend base URL.

    A local hostname always means the local dev backend. Any other hostname
    means production unless FOCUS_BACKEND_URL overrides it. With no hostname
    at all, the override or the local backend.
    """
    env = os.environ if env is None else env
    override = (env.get("FOCUS_BACKEND_URL") or "").strip()
    if hostname in LOCAL_HOSTNAMES:
        url = LOCAL_BACKEND_URL
    elif hostname:
        url = override or PRODUCTION_BACKEND_URL
    else:
        url = override or LOCAL_BACKEND_URL
    return url.rstrip("/")


def _error_detail(resp: requests.Response) -> str:
    try:
        data = resp.json()
    except ValueError:
        data = {}
    if isinstance(data, dict) and data.get("error"):
        return str(data["error"])
    return f"HTTP {resp.status_code}: {resp.reason}"


class FocusAPI:
    def __init__(
        self,
        backend_url: str = "",
        session: Optional[requests.Session] = None,
        timeout: float = DEFAULT_TIMEOUT,
    ):
        self.backend_url = (backend_url or resolve_backend_url()).rstrip("/")
        self.session = session or requests.Session()
        self.timeout = timeout
        print(f"[api] 🔗 Backend URL: {self.backend_url}", flush=True)

    def send_message(self, messages: list[dict]) -> str:
        """Send the latest user message, return the reply text."""
        if not messages or messages[-1].get("role") != "user":
            raise InvalidConversationError("Latest message must be from user")
        content = messages[-1].get("content", "")
        print(f"[api] 📤 Sending message to backend: {content[:50]}...", flush=True)

        try:
            resp = self.session.post(
                f"{self.backend_url}/api/chat",
                json={"message": content},
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            print(f"[api] ❌ API error: {e}", file=sys.stderr, flush=True)
            raise BackendUnavailableError(CONNECT_ERROR) from e

        if not resp.ok:
            detail = _error_detail(resp)
            if resp.status_code == 404:
                raise BackendNotFoundError(
                    "Backend service not found. Please check if the server is running.",
                    resp.status_code,
                )
            if resp.status_code == 500:
                raise BackendServerError(f"Server error: {detail}", resp.status_code)
            raise BackendRequestError(f"Backend request failed: {detail}", resp.status_code)

        try:
            data = resp.json()
        except ValueError:
            data = {}
        text = data.get("response") if isinstance(data, dict) else None
        if not text or not isinstance(text, str):
            raise InvalidResponseError(
                "Invalid response from backend: missing response text", resp.status_code
            )

        print("[api] 📥 Received response from backend", flush=True)
        return text

    def check_health(self) -> Optional[dict]:
        """Health payload, or None if the backend is unreachable or unhealthy."""
        print("[api] 🏥 Checking backend health...", flush=True)
        try:
            resp = self.session.get(f"{self.backend_url}/api/health", timeout=self.timeout)
        except requests.RequestException as e:
            print(f"[api] ❌ Health check failed: {e}", file=sys.stderr, flush=True)
            return None
        if not resp.ok:
            print(f"[api] ⚠️ Health check failed with status: {resp.status_code}", flush=True)
            return None
        try:
            data = resp.json()
        except ValueError:
            print("[api] ❌ Health check returned invalid JSON", file=sys.stderr, flush=True)
            return None
        if not isinstance(data, dict):
            return None
        print(f"[api] ✅ Backend health check passed: {data.get('status')}", flush=True)
        return data

    def get_backend_url(self) -> str:
        return self.backend_url

    def set_backend_url(self, url: str) -> None:
        self.backend_url = url.rstrip("/")
        print(f"[api] 🔗 Backend URL updated: {self.backend_url}", flush=True)

    def get_system_prompt(self) -> str:
        return SYSTEM_PROMPT
