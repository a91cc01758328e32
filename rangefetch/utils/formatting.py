"""
Helper functions for formatting data into human-readable strings.
"""

_SIZE_UNITS = ("KB", "MB", "GB", "TB")


def format_size(bytes_size: int) -> str:
    """Formats a byte count for display, e.g. ``512 B`` or ``64.0 KB``."""
    if bytes_size < 1024:
        return f"{max(bytes_size, 0)} B"
    size = float(bytes_size)
    for unit in _SIZE_UNITS:
        size /= 1024
        if size < 1024 or unit == _SIZE_UNITS[-1]:
            return f"{size:.1f} {unit}"
    raise AssertionError("unreachable")


def format_duration(seconds: float) -> str:
    """Formats a duration, e.g. ``350ms``, ``42s`` or ``1h 5m 3s``."""
    if seconds < 1:
        return f"{seconds * 1000:.0f}ms"
    minutes, secs = divmod(int(seconds), 60)
    hours, minutes = divmod(minutes, 60)
    parts = [f"{value}{unit}" for value, unit in ((hours, "h"), (minutes, "m")) if value]
    if secs or not parts:
        parts.append(f"{secs}s")
    return " ".join(parts)
