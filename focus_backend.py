#!/usr/bin/env python3
"""
Captain Focus Backend — chat API for the study companion.
FastAPI + uvicorn. Replies are a templated mock until a real model is wired in.
"""
from __future__ import annotations

import errno
import json
import os
import platform
import socket
import sys
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from urllib.parse import parse_qsl

from dotenv import load_dotenv

load_dotenv()

from fastapi import FastAPI, Request  # noqa: E402
from fastapi.middleware.cors import CORSMiddleware  # noqa: E402
from fastapi.responses import JSONResponse  # noqa: E402
from starlette.exceptions import HTTPException as StarletteHTTPException  # noqa: E402

# ---------------------------------------------------------------------------
# Config
# ---------------------------------------------------------------------------
PORT    = int(os.getenv("PORT", "3001"))
HOST    = os.getenv("FOCUS_HOST", "0.0.0.0")
APP_ENV = os.getenv("FOCUS_ENV", "development")

SERVICE_NAME = "Captain Focus Backend"
API_VERSION  = "1.0.0"
MAX_BODY_BYTES = 10 * 1024 * 1024  # 10MB

ENDPOINTS = {"health": "/api/health", "chat": "/api/chat"}
AVAILABLE_ENDPOINTS = ["/", ENDPOINTS["health"], ENDPOINTS["chat"]]

PRODUCTION_ORIGINS = [
    "https://captain-focus.netlify.app",
    "https://your-frontend-domain.com",
]
DEV_ORIGINS = ["http://localhost:5173", "http://127.0.0.1:5173"]

SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "X-XSS-Protection": "1; mode=block",
}

MOCK_NOTE = "This is a mock response. Connect a real AI model to get real responses."


def cors_origins(env: str) -> list[str]:
    return PRODUCTION_ORIGINS if env == "production" else DEV_ORIGINS


def now_iso() -> str:
    """UTC timestamp with millisecond precision, e.g. 2024-05-01T12:00:00.000Z"""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def build_mock_reply(message: str) -> str:
    return (
        f'🎮 Hey there, brave scholar! I received your message: "{message}". '
        "I'm Captain Focus, ready to help you on your learning quest! "
        "Once a real AI model is connected, I'll provide amazing personalized responses. "
        "For now, I'm just a simple backend ready for deployment! ⚔️✨"
    )


def _is_valid_message(message: object) -> bool:
    return isinstance(message, str) and bool(message.strip())


# ---------------------------------------------------------------------------
# FastAPI setup
# ---------------------------------------------------------------------------
@asynccontextmanager
async def lifespan(_app: FastAPI):
    print("🚀 Captain Focus Backend Server Started", flush=True)
    print(f"📍 Port: {PORT}", flush=True)
    print(f"🌍 Environment: {APP_ENV}", flush=True)
    print(f"⏰ Started at: {now_iso()}", flush=True)
    print("✅ Server is ready for deployment!", flush=True)
    yield
    print("🛑 Shutting down gracefully...", flush=True)


app = FastAPI(title="Captain Focus Backend API", version=API_VERSION, lifespan=lifespan)


class BodyTooLarge(Exception):
    pass


def _too_large() -> JSONResponse:
    return JSONResponse({
        "error": "Request body too large",
        "code": "PAYLOAD_TOO_LARGE",
        "timestamp": now_iso(),
    }, status_code=413)


@app.middleware("http")
async def security_headers(request: Request, call_next):
    length = request.headers.get("content-length", "")
    if length.isdigit() and int(length) > MAX_BODY_BYTES:
        response = _too_large()
    else:
        response = await call_next(request)
    for name, value in SECURITY_HEADERS.items():
        response.headers[name] = value
    return response


# outermost layer, so the 413 short-circuit also gets CORS headers
app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins(APP_ENV),
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization"],
)


# ---------------------------------------------------------------------------
# Error handlers
# ---------------------------------------------------------------------------
@app.exception_handler(StarletteHTTPException)
async def http_error(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    # Unknown routes and wrong methods both read as "not found"
    if exc.status_code in (404, 405):
        return JSONResponse({
            "error": "Endpoint not found",
            "code": "NOT_FOUND",
            "path": request.url.path,
            "availableEndpoints": AVAILABLE_ENDPOINTS,
            "timestamp": now_iso(),
        }, status_code=404)
    return JSONResponse({"error": str(exc.detail), "timestamp": now_iso()},
                        status_code=exc.status_code)


@app.exception_handler(Exception)
async def unhandled_error(request: Request, exc: Exception) -> JSONResponse:
    print(f"[backend] 🚨 Unhandled error on {request.url.path}: {exc!r}",
          file=sys.stderr, flush=True)
    return JSONResponse({
        "error": "Internal server error",
        "code": "INTERNAL_ERROR",
        "timestamp": now_iso(),
    }, status_code=500, headers=SECURITY_HEADERS)


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------
@app.get("/")
async def index() -> JSONResponse:
    return JSONResponse({
        "name": "Captain Focus Backend API",
        "version": API_VERSION,
        "status": "running",
        "message": "Backend is ready for AI integration!",
        "endpoints": ENDPOINTS,
        "timestamp": now_iso(),
    })


@app.get("/api/health")
async def health() -> JSONResponse:
    return JSONResponse({
        "status": "healthy",
        "service": SERVICE_NAME,
        "message": "Server is running perfectly!",
        "timestamp": now_iso(),
        "environment": {
            "appEnv": APP_ENV,
            "pythonVersion": platform.python_version(),
            "port": PORT,
        },
    })


async def _read_body(request: Request) -> dict:
    """JSON or urlencoded form body as a dict. Counts bytes as they arrive,
    so chunked uploads without a Content-Length are capped too."""
    raw = b""
    async for chunk in request.stream():
        raw += chunk
        if len(raw) > MAX_BODY_BYTES:
            raise BodyTooLarge(f"body exceeds {MAX_BODY_BYTES} bytes")

    ctype = request.headers.get("content-type", "")
    try:
        text = raw.decode("utf-8")
        if ctype.startswith("application/x-www-form-urlencoded"):
            return dict(parse_qsl(text))
        body = json.loads(text)
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}


@app.post("/api/chat")
async def chat(request: Request) -> JSONResponse:
    try:
        body = await _read_body(request)
    except BodyTooLarge as e:
        print(f"[backend] ⛔ {e}", file=sys.stderr, flush=True)
        return _too_large()
    message = body.get("message")

    if not _is_valid_message(message):
        return JSONResponse({
            "error": "Valid message is required",
            "code": "INVALID_MESSAGE",
        }, status_code=400)

    try:
        reply = build_mock_reply(message)
    except Exception as e:
        print(f"[backend] 💥 Chat error: {e!r}", file=sys.stderr, flush=True)
        return JSONResponse({
            "error": "Failed to process message",
            "code": "CHAT_FAILED",
            "details": str(e) or "Unknown error",
            "timestamp": now_iso(),
        }, status_code=500)

    return JSONResponse({
        "response": reply,
        "message": MOCK_NOTE,
        "timestamp": now_iso(),
        "status": "success",
    })


# ---------------------------------------------------------------------------
# Main
# ---------------------------------------------------------------------------
def check_port(host: str, port: int) -> None:
    """Exit with status 1 if the port can't be bound."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        try:
            sock.bind((host, port))
        except OSError as e:
            if e.errno == errno.EADDRINUSE:
                print(f"❌ Port {port} is already in use", file=sys.stderr, flush=True)
            else:
                print(f"❌ Server error: {e}", file=sys.stderr, flush=True)
            sys.exit(1)


def main() -> None:
    import uvicorn
    check_port(HOST, PORT)
    uvicorn.run(app, host=HOST, port=PORT, log_level="info")


if __name__ == "__main__":
    main()
