"""
MBBS Formatting Utilities

Helper functions for formatting output.
"""

import time
from datetime import datetime


def format_stat_time(timestamp: int) -> str:
    """
    Format epoch seconds for the stats table.

    Args:
        timestamp: Seconds since epoch

    Returns:
        Formatted string like "12-10 14:32:15"
    """
    if not timestamp:
        return "Never"

    dt = datetime.fromtimestamp(timestamp)
    return dt.strftime("%m-%d %H:%M:%S")


def format_uptime(start_time: float) -> str:
    """
    Format uptime from start timestamp.

    Args:
        start_time: Unix timestamp of start

    Returns:
        Formatted string like "2d 5h 30m"
    """
    if not start_time:
        return "Unknown"

    elapsed = int(time.time() - start_time)

    days = elapsed // 86400
    hours = (elapsed % 86400) // 3600
    minutes = (elapsed % 3600) // 60

    parts = []
    if days > 0:
        parts.append(f"{days}d")
    if hours > 0 or days > 0:
        parts.append(f"{hours}h")
    parts.append(f"{minutes}m")

    return " ".join(parts)


def format_node_id(num: int) -> str:
    """Meshtastic-style node id, e.g. 2882400018 -> "!abcdef12"."""
    return f"!{num & 0xFFFFFFFF:08x}"


def truncate(text: str, max_length: int = 50, suffix: str = "...") -> str:
    """
    Truncate text to maximum length.

    Args:
        text: Text to truncate
        max_length: Maximum length including suffix
        suffix: Suffix to add if truncated

    Returns:
        Truncated text
    """
    if len(text) <= max_length:
        return text

    return text[:max_length - len(suffix)] + suffix
