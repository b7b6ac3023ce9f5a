"""Small display helpers shared by the render sink."""

from __future__ import annotations


def format_age(seconds: float | None) -> str:
    """Compact relative age: 'just now', '42s ago', '5m ago', '3h ago', '2d ago'."""
    if seconds is None:
        return "never"
    secs = int(max(0.0, seconds))
    if secs < 5:
        return "just now"
    if secs < 60:
        return f"{secs}s ago"
    if secs < 3600:
        return f"{secs // 60}m ago"
    if secs < 86400:
        return f"{secs // 3600}h ago"
    return f"{secs // 86400}d ago"


def describe_error(exc: BaseException) -> str:
    """Render an exception as the error string carried on result messages."""
    text = str(exc)
    name = type(exc).__name__
    return f"{name}: {text}" if text else name
