"""
Utilities for Field Nodes
"""

from .events import log_debug, log_event, read_events
from .serializers import serialize_node, node_summary

__all__ = [
    "log_debug",
    "log_event",
    "read_events",
    "serialize_node",
    "node_summary"
]
