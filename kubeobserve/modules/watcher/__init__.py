"""
Watcher Module - Black Box Interface

Purpose: Wait for expected lines in the output of a background command
Interface: wait_until_match(), count_lines(), filter_lines(), count_matching()
Hidden: Event-driven line scanning, deadline handling
"""

from .watcher import (
    MatchResult,
    count_lines,
    count_matching,
    filter_lines,
    wait_until_match,
)

__all__ = [
    "MatchResult",
    "count_lines",
    "count_matching",
    "filter_lines",
    "wait_until_match",
]
