"""
Field Nodes CLI helper for maintenance and external integrations.

Reads and writes the node store directly, without the terminal. Every
command prints one JSON object; failures print {"error": ...}.
"""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

ROOT = Path(__file__).resolve().parents[1]
SRC_PATH = ROOT / "src"
if str(SRC_PATH) not in sys.path:
    sys.path.insert(0, str(SRC_PATH))

from field_nodes.config import settings
from field_nodes.main import build_node_store
from field_nodes.models.node import NODE_STATUSES, SearchOptions
from field_nodes.storage.engine import LocalNodeStore, NodeStoreBase
from field_nodes.storage.errors import FieldNodesError, NodeNotFoundError
from field_nodes.storage.kv import JsonFileStore
from field_nodes.utils.events import read_events
from field_nodes.utils.serializers import serialize_node

# Fields an operator may change from the command line
EDITABLE_FIELDS = {"title", "thought", "tags", "status", "artifacts", "origin", "review_metadata", "suggested_connections"}


def list_nodes(store: NodeStoreBase, status: Optional[str] = None, author: Optional[str] = None,
               query: str = "") -> Dict[str, Any]:
    options = SearchOptions(query=query, status=status, author=author, sort_by="recent", sort_order="asc")
    return {"nodes": [serialize_node(n) for n in store.search_advanced(options)]}


def get_node(store: NodeStoreBase, node_id: str) -> Dict[str, Any]:
    node = store.get_node(node_id)
    connected = [n.id for n in store.get_connected(node_id)]
    return {"node": serialize_node(node), "connected": connected}


def update_node(store: NodeStoreBase, node_id: str, payload: Dict[str, Any]) -> Dict[str, Any]:
    updates = {k: v for k, v in payload.items() if k in EDITABLE_FIELDS}
    if not updates:
        return {"error": "No valid fields provided", "allowed": sorted(EDITABLE_FIELDS)}
    return {"node": serialize_node(store.update_node(node_id, updates))}


def delete_node(store: NodeStoreBase, node_id: str) -> Dict[str, Any]:
    store.delete_node(node_id)
    return {"status": "deleted", "node_id": node_id}


def connect(store: NodeStoreBase, source: str, target: str) -> Dict[str, Any]:
    a, b = store.connect_nodes(source, target)
    return {"status": "connected", "source": a.id, "target": b.id,
            "connection_counts": {a.id: a.connection_count, b.id: b.connection_count}}


def sync_counters(store: NodeStoreBase) -> Dict[str, Any]:
    return {"counters": [c.model_dump() for c in store.sync_counters_with_nodes()]}


def stats(store: NodeStoreBase) -> Dict[str, Any]:
    return {"stats": store.get_stats(), "by_type": store.get_stats_by_type()}


def export_data(store: NodeStoreBase) -> Dict[str, Any]:
    return store.export_data()


def import_data(store: NodeStoreBase, path: Path) -> Dict[str, Any]:
    if not isinstance(store, LocalNodeStore):
        return {"error": "Import is only supported for the local store"}
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)
    store.import_data(data)
    synced = store.sync_counters_with_nodes()
    return {"status": "imported", "nodes": len(data.get("nodes", [])),
            "counters": [c.model_dump() for c in synced]}


def list_events(event_type: Optional[str] = None, limit: int = 50) -> Dict[str, Any]:
    events: List[Dict[str, Any]] = read_events(event_type)
    return {"events": events[-limit:] if limit else events}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Field Nodes CLI helper")
    sub = parser.add_subparsers(dest="command")

    list_cmd = sub.add_parser("list-nodes")
    list_cmd.add_argument("--status", choices=NODE_STATUSES)
    list_cmd.add_argument("--author")
    list_cmd.add_argument("--query", default="")

    node_cmd = sub.add_parser("get-node")
    node_cmd.add_argument("--id", required=True)

    update = sub.add_parser("update-node")
    update.add_argument("--id", required=True, help="Node ID")
    update.add_argument("--data", required=True, help="JSON payload with fields to update")

    delete = sub.add_parser("delete-node")
    delete.add_argument("--id", required=True)

    link = sub.add_parser("connect")
    link.add_argument("--source", required=True)
    link.add_argument("--target", required=True)

    sub.add_parser("sync-counters")
    sub.add_parser("stats")
    sub.add_parser("export")

    imp = sub.add_parser("import")
    imp.add_argument("--file", required=True, type=Path)

    events = sub.add_parser("events")
    events.add_argument("--type", help="Optional event type filter, e.g. NODE_CREATED")
    events.add_argument("--limit", type=int, default=50)
    return parser


def run(args: argparse.Namespace, store: NodeStoreBase) -> Dict[str, Any]:
    if args.command == "list-nodes":
        return list_nodes(store, args.status, args.author, args.query)
    if args.command == "get-node":
        return get_node(store, args.id)
    if args.command == "update-node":
        try:
            payload = json.loads(args.data)
        except json.JSONDecodeError as exc:
            return {"error": f"Invalid JSON payload: {exc}"}
        return update_node(store, args.id, payload)
    if args.command == "delete-node":
        return delete_node(store, args.id)
    if args.command == "connect":
        return connect(store, args.source, args.target)
    if args.command == "sync-counters":
        return sync_counters(store)
    if args.command == "stats":
        return stats(store)
    if args.command == "export":
        return export_data(store)
    if args.command == "import":
        return import_data(store, args.file)
    if args.command == "events":
        return list_events(args.type, args.limit)
    return {"error": f"Unknown command: {args.command}"}


def main(argv: Optional[List[str]] = None, store: Optional[NodeStoreBase] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not args.command:
        parser.print_help()
        return 1

    store = store or build_node_store(JsonFileStore(settings.STORE_PATH, settings.LOCK_FILE))
    try:
        result = run(args, store)
    except NodeNotFoundError as exc:
        result = {"error": str(exc)}
    except FieldNodesError as exc:
        result = {"error": f"{type(exc).__name__}: {exc}"}
    except OSError as exc:
        result = {"error": f"File error: {exc}"}

    print(json.dumps(result, ensure_ascii=False, indent=2))
    return 1 if "error" in result else 0


if __name__ == "__main__":
    sys.exit(main())
