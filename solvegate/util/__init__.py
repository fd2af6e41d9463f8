from .format import (
    format_bytes,
    format_ms,
    shorten,
    tail_lines,
)

__all__ = [
    "format_bytes",
    "format_ms",
    "shorten",
    "tail_lines",
]
