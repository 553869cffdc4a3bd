from __future__ import annotations

from typing import Optional, Tuple


def _split(seconds: Optional[float]) -> Tuple[int, int, int]:
    safe_seconds = max(0, int(seconds or 0))
    hours, remainder = divmod(safe_seconds, 3600)
    minutes, secs = divmod(remainder, 60)
    return hours, minutes, secs


def format_timer(seconds: Optional[float]) -> str:
    """Running-timer display: ``HH:MM:SS`` from one hour on, ``MM:SS`` below."""
    hours, minutes, secs = _split(seconds)
    if hours > 0:
        return f"{hours:02}:{minutes:02}:{secs:02}"
    return f"{minutes:02}:{secs:02}"


def format_duration_short(seconds: Optional[float]) -> str:
    """Compact display such as ``2h 5m``, ``12m`` or ``40s``."""
    hours, minutes, secs = _split(seconds)
    if hours > 0:
        return f"{hours}h {minutes}m"
    if minutes > 0:
        return f"{minutes}m"
    return f"{secs}s"
