"""
Serialization helpers for exposing field data via CLI and export.
"""

from __future__ import annotations

from typing import Any, Dict

from ..models.node import Node


def serialize_node(node: Node) -> Dict[str, Any]:
    """
    Returns a JSON-serializable dict representation of a Node.

    Unset optional blocks are dropped so exports stay readable.
    """
    data = node.model_dump(mode="json")
    if data.get("review_metadata") is None:
        data.pop("review_metadata", None)
    for artifact in data.get("artifacts", []):
        if artifact.get("metadata") is None:
            artifact.pop("metadata", None)
        if artifact.get("thumbnail") is None:
            artifact.pop("thumbnail", None)
    return data


def node_summary(node: Node) -> str:
    """One-line listing used by browse screens and the CLI."""
    return f"{node.id} {node.title} [{node.status}] by @{node.author} ({node.connection_count} connections)"
