"""
Captain Focus UI — Rich terminal rendering.
"""
from __future__ import annotations
from rich.console import Console, Group
from rich.panel import Panel
from rich.table import Table
from rich.text import Text
from rich.theme import Theme
from rich.align import Align
from rich import box

from captain_focus.core.conversation import (
    CAPTAIN, CONNECTED, ERROR, ConversationController, Message,
)
from captain_focus.core.mood import mood_icon
from captain_focus.core.voice import VoiceIO

FOCUS_THEME = Theme({
    "focus.purple":  "bold #a78bfa",
    "focus.pink":    "bold #f472b6",
    "focus.dim":     "#8b8ba7",
    "focus.ok":      "bold green",
    "focus.error":   "bold red",
    "focus.warn":    "bold yellow",
    "focus.user":    "bold white on #4c1d95",
    "focus.captain": "white",
})

console = Console(theme=FOCUS_THEME, highlight=False)

STATUS_STYLE = {
    CONNECTED: "focus.ok",
    ERROR:     "focus.error",
}


def print_header():
    console.print(Panel(
        Align.center(
            "[focus.purple]Captain Focus[/]\n[focus.dim]Your AI Study Companion[/]"
        ),
        border_style="#a78bfa",
        box=box.ROUNDED,
    ))


def render_status(chat: ConversationController) -> Text:
    style = STATUS_STYLE.get(chat.connection_status, "focus.warn")
    line = Text()
    line.append(chat.status_text(), style=style)
    line.append(f"  Backend: {chat.api.get_backend_url()}", style="focus.dim")
    return line


def render_error_banner(error: str) -> Panel:
    return Panel(
        f"[focus.error]API Configuration Issue[/]\n{error}\n"
        "[focus.dim]/dismiss to hide[/]",
        border_style="red",
        box=box.ROUNDED,
    )


def render_message(message: Message, speaking: bool = False) -> Align:
    if message.sender == CAPTAIN:
        icon, icon_style = mood_icon(message.mood)
        title = Text.assemble(("CF ", "focus.pink"), ("Captain Focus ", "focus.purple"),
                              (icon, icon_style))
        if speaking:
            title.append(" •••", style="focus.ok")
        bubble = Panel(message.text, title=title, title_align="left",
                       border_style="#6d28d9", box=box.ROUNDED, expand=False, width=72)
        return Align.left(bubble)
    bubble = Panel(Text(message.text, style="focus.user"), border_style="#7c3aed",
                   box=box.ROUNDED, expand=False, width=72)
    return Align.right(bubble)


def render_typing() -> Align:
    return Align.left(Panel("[focus.purple]● ● ●[/]", title="CF", title_align="left",
                            border_style="#6d28d9", box=box.ROUNDED, expand=False))


def render_voice_status(chat: ConversationController) -> Text | None:
    if chat.is_listening:
        return Text("🎤 Listening...", style="focus.error")
    if chat.is_speaking:
        return Text("••• Captain Focus is speaking...", style="focus.ok")
    return None


def render_conversation(chat: ConversationController) -> Group:
    parts = []
    if chat.api_error:
        parts.append(render_error_banner(chat.api_error))
    parts.append(render_status(chat))
    last = chat.messages[-1] if chat.messages else None
    for message in chat.messages:
        parts.append(render_message(message, speaking=chat.is_speaking and message is last))
    if chat.is_typing:
        parts.append(render_typing())
    status = render_voice_status(chat)
    if status is not None:
        parts.append(status)
    return Group(*parts)


def render_settings(voice: VoiceIO) -> Panel:
    s = voice.settings
    table = Table(box=None, show_header=False, padding=(0, 1))
    table.add_column(justify="right")
    table.add_column()
    if voice.voices:
        for i, v in enumerate(voice.voices):
            marker = "[focus.purple]●[/]" if i == s.selected_voice else " "
            table.add_row(f"{marker} {i}", v.display_name)
    else:
        table.add_row("", "[focus.dim]No voices installed[/]")
    body = Group(
        Text("Voice Selection", style="focus.purple"),
        table,
        Text(f"Pitch: {s.pitch:.1f}   (0.5 lower … 2.0 higher)"),
        Text(f"Speed: {s.rate:.1f}   (0.5 slower … 1.5 faster)"),
        Text("/select N · /pitch X · /rate X · /test-voice · /reset-voice", style="focus.dim"),
    )
    return Panel(body, title="Voice Settings", border_style="#a78bfa", box=box.ROUNDED)


def print_message(message: Message, speaking: bool = False):
    console.print(render_message(message, speaking))


def print_error(msg: str):
    console.print(f"[focus.error]Error: {msg}[/]")


def print_help():
    console.print(Panel(
        "[focus.purple]Captain Focus Commands[/]\n\n"
        "  [bold]/help[/]           Show this help\n"
        "  [bold]/voice[/]          Speak your next message\n"
        "  [bold]/settings[/]       Show voice settings\n"
        "  [bold]/select N[/]       Pick voice N\n"
        "  [bold]/pitch X[/]        Set pitch (0.5 - 2.0)\n"
        "  [bold]/rate X[/]         Set speed (0.5 - 1.5)\n"
        "  [bold]/test-voice[/]     Hear the current voice\n"
        "  [bold]/reset-voice[/]    Restore default voice settings\n"
        "  [bold]/dismiss[/]        Hide the error banner\n"
        "  [bold]/health[/]         Re-check the backend\n"
        "  [bold]/backend URL[/]    Switch backend\n"
        "  [bold]/exit[/]           Exit\n\n"
        "Anything else is sent to Captain Focus.",
        border_style="#a78bfa",
        box=box.ROUNDED,
        title="Help",
    ))
