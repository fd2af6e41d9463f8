def tail_lines(text: str, count: int) -> str:
    lines = [line.rstrip() for line in text.splitlines() if line.strip()]
    if count <= 0:
        return ""
    return "\n".join(lines[-count:])


def shorten(text: str, limit: int, marker: str = "...") -> str:
    if limit <= len(marker):
        return text[:limit]
    if len(text) <= limit:
        return text
    return text[: limit - len(marker)] + marker


def format_ms(ms: float | int | None) -> str:
    if ms is None:
        return "-"
    if ms < 1000:
        return f"{ms:.0f}ms"
    seconds = ms / 1000.0
    if seconds < 60:
        return f"{seconds:.2f}s"
    minutes, rem = divmod(seconds, 60)
    return f"{int(minutes)}m{rem:04.1f}s"


def format_bytes(size: int) -> str:
    if size < 1024:
        return f"{size}B"
    if size < 1024 * 1024:
        return f"{size / 1024:.1f}KiB"
    return f"{size / (1024 * 1024):.1f}MiB"
