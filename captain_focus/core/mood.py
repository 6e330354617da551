"""
Mood detection — keyword match on what the student typed.
Only used to pick the icon next to Captain Focus's reply.
"""
from __future__ import annotations
import re

TIRED    = "tired"
CONFUSED = "confused"
HAPPY    = "happy"
NEUTRAL  = "neutral"

# Checked in order: first hit wins ("don't understand" is confused, not happy)
_MOOD_PATTERNS = [
    (TIRED,    re.compile(r"tired|exhausted|sleepy|bored|overwhelmed", re.IGNORECASE)),
    (CONFUSED, re.compile(r"confused|don't understand|help|stuck|hard|difficult", re.IGNORECASE)),
    (HAPPY,    re.compile(r"great|awesome|got it|understand|thanks|good", re.IGNORECASE)),
]

# mood -> (icon, rich style)
MOOD_ICONS = {
    TIRED:    ("💙", "bold blue"),
    CONFUSED: ("🧠", "bold yellow"),
    HAPPY:    ("✨", "bold green"),
    NEUTRAL:  ("⚡", "bold magenta"),
}


def detect_mood(text: str) -> str:
    for mood, pattern in _MOOD_PATTERNS:
        if pattern.search(text):
            return mood
    return NEUTRAL


def mood_icon(mood: str | None) -> tuple[str, str]:
    return MOOD_ICONS.get(mood or NEUTRAL, MOOD_ICONS[NEUTRAL])
