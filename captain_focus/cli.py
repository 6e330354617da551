#!/usr/bin/env python3
"""
Captain Focus — terminal study companion
Usage: captain-focus [--backend URL] [--no-voice] [-c MESSAGE]
"""
from __future__ import annotations
import argparse
import sys
from pathlib import Path

from dotenv import load_dotenv
from prompt_toolkit import PromptSession
from prompt_toolkit.auto_suggest import AutoSuggestFromHistory
from prompt_toolkit.history import FileHistory
from prompt_toolkit.styles import Style

from captain_focus.core.api_client import FocusAPI, resolve_backend_url
from captain_focus.core.conversation import ConversationController
from captain_focus.core.voice import VoiceIO
from captain_focus.ui.renderer import (
    console, print_header, print_help, print_error, print_message,
    render_conversation, render_error_banner, render_settings, render_status,
    render_voice_status,
)

HISTORY_FILE = Path.home() / ".captain_focus_history"


def parse_args(argv=None):
    p = argparse.ArgumentParser(
        prog="captain-focus",
        description="Captain Focus — chat with your AI study companion",
    )
    p.add_argument("--backend", "-b", default="",
                   help="Backend base URL (default: FOCUS_BACKEND_URL or http://localhost:3001)")
    p.add_argument("--host", default=None,
                   help="Hostname the client is served from, used to pick the backend")
    p.add_argument("--no-voice", action="store_true",
                   help="Disable speech input and output")
    p.add_argument("-c", "--command", type=str, default="",
                   help="Send a single message non-interactively")
    return p.parse_args(argv)


def _parse_float(value: str) -> float | None:
    try:
        return float(value)
    except ValueError:
        return None


def handle_command(chat: ConversationController, line: str) -> bool:
    """Run a slash command. Returns False when the session should end."""
    parts = line.split(maxsplit=1)
    cmd = parts[0].lower()
    arg = parts[1].strip() if len(parts) > 1 else ""
    voice = chat.voice

    if cmd in ("/exit", "/quit", "/q"):
        console.print("[focus.purple]Quest paused. See you soon, scholar![/]")
        return False

    if cmd == "/help":
        print_help()
    elif cmd == "/dismiss":
        chat.dismiss_error()
    elif cmd == "/health":
        chat.check_connection()
        console.print(render_status(chat))
        if chat.api_error:
            console.print(render_error_banner(chat.api_error))
    elif cmd == "/backend":
        if arg:
            chat.api.set_backend_url(arg)
            chat.check_connection()
        console.print(render_status(chat))
    elif voice is None:
        print_error("Voice is disabled (--no-voice)")
    elif cmd == "/settings":
        console.print(render_settings(voice))
    elif cmd == "/select":
        if arg.isdigit() and int(arg) < len(voice.voices):
            chat.update_voice_settings(selected_voice=int(arg))
            console.print(render_settings(voice))
        else:
            print_error("Usage: /select N (see /settings)")
    elif cmd in ("/pitch", "/rate"):
        value = _parse_float(arg)
        if value is None:
            print_error(f"Usage: {cmd} <number>")
        else:
            chat.update_voice_settings(**{cmd[1:]: value})
            console.print(render_settings(voice))
    elif cmd == "/test-voice":
        if voice.is_speaking:
            console.print("[focus.dim]Testing Voice...[/]")
        else:
            chat.test_voice()
    elif cmd == "/reset-voice":
        chat.reset_voice_settings()
        console.print(render_settings(voice))
    elif cmd == "/voice":
        if not voice.can_listen:
            print_error("Speech recognition is not available (install the 'voice' extra)")
        elif chat.toggle_voice():
            console.print(render_voice_status(chat) or "")
            voice.wait_listening()
            if chat.input_text:
                console.print(f"[focus.dim]Heard:[/] {chat.input_text}")
        else:
            console.print("[focus.dim]Voice input off.[/]")
    else:
        print_error(f"Unknown command: {cmd}")
    return True


def send_and_show(chat: ConversationController, text: str | None = None) -> None:
    with console.status("[focus.purple]Captain Focus is thinking...[/]"):
        reply = chat.send_message(text)
    if reply is None:
        return
    if chat.api_error:
        console.print(render_error_banner(chat.api_error))
    print_message(reply, speaking=chat.is_speaking)


def main(argv=None):
    load_dotenv()
    args = parse_args(argv)

    api = FocusAPI(args.backend or resolve_backend_url(args.host))
    voice = None
    if not args.no_voice:
        voice = VoiceIO()
        voice.load_voices()
    chat = ConversationController(api, voice)

    print_header()
    chat.check_connection()

    if args.command:
        send_and_show(chat, args.command)
        if voice is not None:
            voice.wait_speech()
            voice.player.wait()
        return

    console.print(render_conversation(chat))
    session = PromptSession(
        history=FileHistory(str(HISTORY_FILE)),
        auto_suggest=AutoSuggestFromHistory(),
        style=Style.from_dict({"prompt": "#a78bfa bold"}),
    )

    while True:
        try:
            # A spoken transcript is offered as editable default text
            user_input = session.prompt("❯ ", default=chat.input_text).strip()
        except KeyboardInterrupt:
            continue
        except EOFError:
            break
        chat.input_text = ""

        if not user_input:
            continue
        if user_input.startswith("/"):
            if not handle_command(chat, user_input):
                break
            continue
        send_and_show(chat, user_input)

    if voice is not None:
        voice.cancel()
        voice.stop_listening()


if __name__ == "__main__":
    sys.exit(main())
