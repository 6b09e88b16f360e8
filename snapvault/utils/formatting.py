"""
Human-readable formatting helpers.
"""


def format_bytes(num_bytes: int) -> str:
    """
    Format a byte count with binary units.

    Examples:
        >>> format_bytes(0)
        '0 B'
        >>> format_bytes(1536)
        '1.5 KB'
    """
    units = ['B', 'KB', 'MB', 'GB', 'TB']
    size = float(num_bytes)
    unit_index = 0

    while size >= 1024 and unit_index < len(units) - 1:
        size /= 1024
        unit_index += 1

    rounded = round(size, 2)
    if rounded == int(rounded):
        rounded = int(rounded)
    return f"{rounded} {units[unit_index]}"


def format_duration(duration_ms: int) -> str:
    """Format a duration in milliseconds as e.g. '2m 05s' or '850 ms'."""
    if duration_ms < 1000:
        return f"{duration_ms} ms"

    seconds = duration_ms // 1000
    minutes, seconds = divmod(seconds, 60)
    hours, minutes = divmod(minutes, 60)

    if hours:
        return f"{hours}h {minutes:02d}m {seconds:02d}s"
    if minutes:
        return f"{minutes}m {seconds:02d}s"
    return f"{seconds}s"
