"""MBBS Utilities Module."""

from .formatting import format_node_id, format_stat_time, format_uptime, truncate

__all__ = ["format_node_id", "format_stat_time", "format_uptime", "truncate"]
