"""Short messages shown after a task is completed.

Messages are loaded from ``ENCOURAGEMENTS.md`` at the project root: bullets
under an ``## On time`` heading cheer on-time completions, bullets under
``## Late`` soften late ones.  If the file or a section is missing, a small
built-in list is used.
"""

from __future__ import annotations

import random
from pathlib import Path

_FALLBACK_ON_TIME: list[str] = [
    "Keep up the great work!",
    "Another one done before the deadline.",
    "That streak is growing.",
    "Future you says thanks.",
]

_FALLBACK_LATE: list[str] = [
    "Try to complete tasks on time for bonus points!",
    "Done is still better than not done.",
    "A fresh streak starts with the next one.",
]


def _load_sections() -> dict[str, list[str]]:
    """Parse bullets per ``##`` heading from ENCOURAGEMENTS.md."""
    md_path = Path(__file__).resolve().parent.parent / "ENCOURAGEMENTS.md"
    if not md_path.exists():
        return {}

    sections: dict[str, list[str]] = {}
    current = ""
    for line in md_path.read_text(encoding="utf-8").splitlines():
        stripped = line.strip()
        if stripped.startswith("## "):
            current = stripped[3:].strip().lower()
        elif stripped.startswith("- ") and current:
            msg = stripped[2:].strip()
            if msg:
                sections.setdefault(current, []).append(msg)
    return sections


_SECTIONS = _load_sections()
_ON_TIME: list[str] = _SECTIONS.get("on time") or _FALLBACK_ON_TIME
_LATE: list[str] = _SECTIONS.get("late") or _FALLBACK_LATE


def completion_message(is_on_time: bool) -> str:
    """Return a random message matching how the task was completed."""
    return random.choice(_ON_TIME if is_on_time else _LATE)
