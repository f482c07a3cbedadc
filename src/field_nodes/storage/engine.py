"""
Storage Engine: NodeStoreBase, LocalNodeStore

The shared base implements every query on top of a handful of primitives so
the local and remote variants answer searches identically. The local variant
keeps JSON arrays in an injected PersistentStore.
"""

import json
import re
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Tuple

import networkx as nx
from pydantic import ValidationError as PydanticValidationError

from .errors import NodeNotFoundError, StorageError, ValidationError
from .kv import PersistentStore
from ..models.node import (
    DEFAULT_FIELDS,
    NODE_STATUSES,
    NODE_TYPE_INFO,
    NODE_TYPES,
    Field,
    Node,
    NodeCounter,
    SearchOptions,
    apply_grounding,
    utc_now,
)
from ..models.identity import UserIdentity
from ..utils.events import log_debug, log_event
from ..utils.serializers import serialize_node

NODE_ID_PATTERN = re.compile(r"^FN-([A-Z]{2})\.(\d+)$")

# Fields the store owns; updates never overwrite them
IMMUTABLE_FIELDS = {"id", "created_at"}


def format_node_id(node_type: str, count: int) -> str:
    """FN-{type}.{count} with three-digit zero padding."""
    return f"FN-{node_type}.{count:03d}"


def _contains(value: Optional[str], term: str) -> bool:
    return bool(value) and term in value.lower()


def node_matches(node: Node, term: str) -> bool:
    """Case-insensitive substring match over the searchable parts of a node."""
    term = term.lower()
    if (
        _contains(node.title, term)
        or _contains(node.thought, term)
        or any(_contains(tag, term) for tag in node.tags)
        or _contains(node.author, term)
        or _contains(node.origin.description, term)
    ):
        return True
    for artifact in node.artifacts:
        meta = artifact.metadata
        if meta and (
            _contains(meta.title, term)
            or _contains(meta.author, term)
            or _contains(meta.extracted_text, term)
        ):
            return True
    return False


def _sort_key(sort_by: str):
    if sort_by == "connections":
        return lambda n: n.connection_count
    if sort_by == "title":
        return lambda n: n.title.casefold()
    if sort_by == "status":
        return lambda n: n.status
    return lambda n: n.updated_at


class NodeStoreBase(ABC):
    """Contract shared by the local and the backend-backed node stores."""

    # --- primitives ---

    @abstractmethod
    def get_all_nodes(self) -> List[Node]: ...

    @abstractmethod
    def get_node(self, node_id: str) -> Node: ...

    @abstractmethod
    def save_node(self, node: Node) -> Node: ...

    @abstractmethod
    def _insert_node(self, node: Node) -> Node: ...

    @abstractmethod
    def update_node(self, node_id: str, updates: Dict[str, Any]) -> Node: ...

    @abstractmethod
    def delete_node(self, node_id: str) -> None: ...

    @abstractmethod
    def connect_nodes(self, source_id: str, target_id: str) -> Tuple[Node, Node]: ...

    @abstractmethod
    def generate_node_id(self, node_type: str = "RN") -> str: ...

    @abstractmethod
    def get_node_counters(self) -> List[NodeCounter]: ...

    @abstractmethod
    def reset_node_counters(self) -> None: ...

    @abstractmethod
    def sync_counters_with_nodes(self) -> List[NodeCounter]: ...

    @abstractmethod
    def get_all_fields(self) -> List[Field]: ...

    @abstractmethod
    def save_field(self, field: Field) -> None: ...

    @abstractmethod
    def get_all_users(self) -> List[UserIdentity]: ...

    @abstractmethod
    def save_user(self, user: UserIdentity) -> None: ...

    def _release_node_id(self, node_type: str, node_id: str) -> None:
        """Called when an insert fails after an id was minted."""

    # --- creation ---

    def create_node(self, node: Node, node_type: str = "RN") -> Node:
        """
        Assigns a fresh id, stamps timestamps, applies the grounded rule
        and persists the node.

        Returns:
            The stored record (with server-assigned fields filled in)
        """
        if node_type not in NODE_TYPES:
            raise ValidationError(f"Unknown node type '{node_type}'")
        node_id = self.generate_node_id(node_type)
        now = utc_now()
        record = node.model_copy(update={
            "id": node_id,
            "created_at": now,
            "updated_at": now,
            "last_tended": now,
            "connection_count": len(node.connections),
        })
        apply_grounding(record)
        try:
            stored = self._insert_node(record)
        except Exception:
            self._release_node_id(node_type, node_id)
            raise
        log_debug(f"[CREATE_NODE] {stored.id} by @{stored.author} ({stored.status})")
        log_event("NODE_CREATED", {
            "id": stored.id,
            "type": node_type,
            "status": stored.status,
            "artifacts_count": len(stored.artifacts)
        })
        return stored

    # --- queries ---

    def list_by_field(self, field_id: str) -> List[Node]:
        term = field_id.lower()
        return [
            n for n in self.get_all_nodes()
            if any(term in tag.lower() for tag in n.tags) or term in n.origin.description.lower()
        ]

    def list_by_status(self, status: str) -> List[Node]:
        return [n for n in self.get_all_nodes() if n.status == status]

    def list_by_author(self, author: str) -> List[Node]:
        return [n for n in self.get_all_nodes() if n.author == author]

    def search(self, query: str) -> List[Node]:
        """Substring search in insertion order. An empty query matches everything."""
        nodes = self.get_all_nodes()
        if not query:
            return nodes
        return [n for n in nodes if node_matches(n, query)]

    def search_advanced(self, options: SearchOptions) -> List[Node]:
        """All provided filters must match (AND), then sort."""
        nodes = self.search(options.query) if options.query else self.get_all_nodes()

        if options.field:
            term = options.field.lower()
            nodes = [n for n in nodes if any(term in tag.lower() for tag in n.tags)]
        if options.status:
            nodes = [n for n in nodes if n.status == options.status]
        if options.author:
            nodes = [n for n in nodes if n.author == options.author]
        if options.tags:
            wanted = set(options.tags)
            nodes = [n for n in nodes if wanted.intersection(n.tags)]

        return sorted(nodes, key=_sort_key(options.sort_by), reverse=options.sort_order == "desc")

    def get_field(self, field_id: str) -> Optional[Field]:
        return next((f for f in self.get_all_fields() if f.id == field_id), None)

    def get_user(self, name: str) -> Optional[UserIdentity]:
        return next((u for u in self.get_all_users() if u.name == name), None)

    @staticmethod
    def node_type_from_id(node_id: str) -> Optional[str]:
        match = NODE_ID_PATTERN.match(node_id or "")
        return match.group(1) if match else None

    # --- graph ---

    def connection_graph(self) -> nx.Graph:
        """Undirected graph of confirmed connections (dangling ids are skipped)."""
        graph = nx.Graph()
        nodes = self.get_all_nodes()
        known = {n.id for n in nodes}
        for node in nodes:
            graph.add_node(node.id, title=node.title, status=node.status)
        for node in nodes:
            for other in node.connections:
                if other in known and other != node.id:
                    graph.add_edge(node.id, other)
        return graph

    def get_connected(self, node_id: str) -> List[Node]:
        graph = self.connection_graph()
        if node_id not in graph:
            raise NodeNotFoundError(node_id)
        by_id = {n.id: n for n in self.get_all_nodes()}
        return [by_id[n] for n in sorted(graph.neighbors(node_id))]

    # --- statistics ---

    def get_stats(self) -> Dict[str, Any]:
        nodes = self.get_all_nodes()
        graph = self.connection_graph()
        return {
            "total_nodes": len(nodes),
            "total_fields": len(self.get_all_fields()),
            "total_users": len(self.get_all_users()),
            "nodes_by_status": {s: sum(1 for n in nodes if n.status == s) for s in NODE_STATUSES},
            "average_connections": (sum(n.connection_count for n in nodes) / len(nodes)) if nodes else 0,
            "clusters": nx.number_connected_components(graph) if nodes else 0,
        }

    def get_stats_by_type(self) -> Dict[str, Dict[str, Any]]:
        nodes = self.get_all_nodes()
        counters = {c.type: c.current_count for c in self.get_node_counters()}
        stats = {}
        for node_type, info in NODE_TYPE_INFO.items():
            typed = [n for n in nodes if self.node_type_from_id(n.id) == node_type]
            stats[node_type] = {
                "name": info["name"],
                "description": info["description"],
                "total_created": counters.get(node_type, -1) + 1,
                "actual_count": len(typed),
                "latest_id": typed[-1].id if typed else None,
            }
        return stats

    def export_data(self) -> Dict[str, Any]:
        return {
            "nodes": [serialize_node(n) for n in self.get_all_nodes()],
            "fields": [f.model_dump(mode="json") for f in self.get_all_fields()],
            "users": [u.model_dump(mode="json") for u in self.get_all_users()],
            "exported_at": utc_now(),
        }


class LocalNodeStore(NodeStoreBase):
    """Local-first node store backed by a PersistentStore (JSON arrays per key)."""

    NODES_KEY = "nodes"
    FIELDS_KEY = "fields"
    USERS_KEY = "users"
    COUNTERS_KEY = "node_counters"

    def __init__(self, store: PersistentStore):
        self.store = store

    # --- raw access ---

    def _read_list(self, key: str) -> Optional[List[Dict[str, Any]]]:
        raw = self.store.get(key)
        if raw is None:
            return None
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            raise StorageError(f"Stored '{key}' is not valid JSON: {e}") from e
        if not isinstance(data, list):
            raise StorageError(f"Stored '{key}' must be a JSON array")
        return data

    def _write_list(self, key: str, items: List[Dict[str, Any]]) -> None:
        try:
            payload = json.dumps(items, ensure_ascii=False)
        except (TypeError, ValueError) as e:
            raise StorageError(f"Could not serialize '{key}': {e}") from e
        self.store.set(key, payload)

    def _load_nodes(self) -> List[Node]:
        try:
            return [Node(**item) for item in self._read_list(self.NODES_KEY) or []]
        except (PydanticValidationError, TypeError) as e:
            raise StorageError(f"Stored node is malformed: {e}") from e

    def _write_nodes(self, nodes: List[Node]) -> None:
        self._write_list(self.NODES_KEY, [n.model_dump(mode="json") for n in nodes])

    @staticmethod
    def _index_of(nodes: List[Node], node_id: str) -> int:
        for i, node in enumerate(nodes):
            if node.id == node_id:
                return i
        return -1

    # --- nodes ---

    def get_all_nodes(self) -> List[Node]:
        return self._load_nodes()

    def get_node(self, node_id: str) -> Node:
        for node in self._load_nodes():
            if node.id == node_id:
                return node
        raise NodeNotFoundError(node_id)

    def save_node(self, node: Node) -> Node:
        """Upsert by id. Existing records keep their created_at."""
        nodes = self._load_nodes()
        index = self._index_of(nodes, node.id)
        now = utc_now()
        if index >= 0:
            record = node.model_copy(update={"created_at": nodes[index].created_at, "updated_at": now})
            nodes[index] = record
        else:
            record = node.model_copy(update={"created_at": node.created_at or now, "updated_at": now})
            nodes.append(record)
        self._write_nodes(nodes)
        return record

    def _insert_node(self, node: Node) -> Node:
        nodes = self._load_nodes()
        if self._index_of(nodes, node.id) >= 0:
            raise StorageError(f"Node id {node.id} already exists; counters need a resync")
        nodes.append(node)
        self._write_nodes(nodes)
        return node

    def update_node(self, node_id: str, updates: Dict[str, Any]) -> Node:
        """
        Merges updates into an existing node.

        Raises:
            NodeNotFoundError: no node with that id
            ValidationError: the merged record is not a valid node
        """
        nodes = self._load_nodes()
        index = self._index_of(nodes, node_id)
        if index < 0:
            raise NodeNotFoundError(node_id)

        changes = {k: v for k, v in updates.items() if k not in IMMUTABLE_FIELDS}
        merged = nodes[index].model_dump()
        merged.update(changes)
        merged["updated_at"] = utc_now()
        try:
            updated = Node(**merged)
        except PydanticValidationError as e:
            raise ValidationError(f"Invalid update for {node_id}: {e}") from e

        if "artifacts" in changes:
            apply_grounding(updated)
        if "connections" in changes:
            updated.connection_count = len(updated.connections)

        nodes[index] = updated
        self._write_nodes(nodes)
        log_event("NODE_UPDATED", {"id": node_id, "fields": sorted(changes)})
        return updated

    def delete_node(self, node_id: str) -> None:
        nodes = self._load_nodes()
        if self._index_of(nodes, node_id) < 0:
            raise NodeNotFoundError(node_id)
        remaining = []
        for node in nodes:
            if node.id == node_id:
                continue
            if node_id in node.connections:
                node.connections = [c for c in node.connections if c != node_id]
                node.connection_count = len(node.connections)
            remaining.append(node)
        self._write_nodes(remaining)
        log_event("NODE_DELETED", {"id": node_id})

    def connect_nodes(self, source_id: str, target_id: str) -> Tuple[Node, Node]:
        """Links two nodes both ways in one write."""
        if source_id == target_id:
            raise ValidationError("a node cannot be linked to itself")
        nodes = self._load_nodes()
        s, t = self._index_of(nodes, source_id), self._index_of(nodes, target_id)
        if s < 0:
            raise NodeNotFoundError(source_id)
        if t < 0:
            raise NodeNotFoundError(target_id)

        now = utc_now()
        for here, there in ((s, target_id), (t, source_id)):
            node = nodes[here]
            if there not in node.connections:
                node.connections.append(there)
            node.suggested_connections = [c for c in node.suggested_connections if c != there]
            node.connection_count = len(node.connections)
            node.updated_at = now
        self._write_nodes(nodes)
        log_event("NODES_CONNECTED", {"from": source_id, "to": target_id})
        return nodes[s], nodes[t]

    # --- counters ---

    def get_node_counters(self) -> List[NodeCounter]:
        try:
            return [NodeCounter(**c) for c in self._read_list(self.COUNTERS_KEY) or []]
        except (PydanticValidationError, TypeError) as e:
            raise StorageError(f"Stored node counter is malformed: {e}") from e

    def _write_counters(self, counters: List[NodeCounter]) -> None:
        self._write_list(self.COUNTERS_KEY, [c.model_dump() for c in counters])

    def _set_counter(self, node_type: str, count: int) -> None:
        counters = self.get_node_counters()
        for counter in counters:
            if counter.type == node_type:
                counter.current_count = count
                break
        else:
            counters.append(NodeCounter(type=node_type, current_count=count))
        self._write_counters(counters)

    def generate_node_id(self, node_type: str = "RN") -> str:
        if node_type not in NODE_TYPES:
            raise ValidationError(f"Unknown node type '{node_type}'")
        current = next((c.current_count for c in self.get_node_counters() if c.type == node_type), -1)
        next_count = current + 1
        self._set_counter(node_type, next_count)
        return format_node_id(node_type, next_count)

    def _release_node_id(self, node_type: str, node_id: str) -> None:
        match = NODE_ID_PATTERN.match(node_id)
        issued = int(match.group(2))
        current = next((c.current_count for c in self.get_node_counters() if c.type == node_type), -1)
        if current == issued:
            self._set_counter(node_type, issued - 1)

    def reset_node_counters(self) -> None:
        self.store.delete(self.COUNTERS_KEY)

    def sync_counters_with_nodes(self) -> List[NodeCounter]:
        """Recomputes every counter from the highest stored id of its type."""
        highest = {t: -1 for t in NODE_TYPES}
        for node in self._load_nodes():
            match = NODE_ID_PATTERN.match(node.id)
            if match and match.group(1) in highest:
                highest[match.group(1)] = max(highest[match.group(1)], int(match.group(2)))
        counters = [NodeCounter(type=t, current_count=c) for t, c in highest.items()]
        self._write_counters(counters)
        log_event("COUNTERS_SYNCED", {c.type: c.current_count for c in counters})
        return counters

    # --- fields ---

    def get_all_fields(self) -> List[Field]:
        stored = self._read_list(self.FIELDS_KEY)
        items = stored if stored is not None else DEFAULT_FIELDS
        try:
            return [Field(**f) for f in items]
        except (PydanticValidationError, TypeError) as e:
            raise StorageError(f"Stored field is malformed: {e}") from e

    def save_field(self, field: Field) -> None:
        fields = self.get_all_fields()
        for i, existing in enumerate(fields):
            if existing.id == field.id:
                fields[i] = field
                break
        else:
            fields.append(field)
        self._write_list(self.FIELDS_KEY, [f.model_dump() for f in fields])

    # --- users ---

    def get_all_users(self) -> List[UserIdentity]:
        try:
            return [UserIdentity(**u) for u in self._read_list(self.USERS_KEY) or []]
        except (PydanticValidationError, TypeError) as e:
            raise StorageError(f"Stored user is malformed: {e}") from e

    def save_user(self, user: UserIdentity) -> None:
        users = self.get_all_users()
        for i, existing in enumerate(users):
            if existing.name == user.name:
                users[i] = user
                break
        else:
            users.append(user)
        self._write_list(self.USERS_KEY, [u.model_dump() for u in users])

    # --- maintenance ---

    def import_data(self, data: Dict[str, Any]) -> None:
        """Restores an export. Sections missing from the payload are left untouched."""
        try:
            if "nodes" in data:
                self._write_nodes([Node(**n) for n in data["nodes"]])
            if "fields" in data:
                self._write_list(self.FIELDS_KEY, [Field(**f).model_dump() for f in data["fields"]])
            if "users" in data:
                self._write_list(self.USERS_KEY, [UserIdentity(**u).model_dump() for u in data["users"]])
        except PydanticValidationError as e:
            raise ValidationError(f"Import payload is malformed: {e}") from e
        log_event("DATA_IMPORTED", {k: len(data[k]) for k in ("nodes", "fields", "users") if k in data})

    def clear_all(self) -> None:
        for key in (self.NODES_KEY, self.FIELDS_KEY, self.USERS_KEY, self.COUNTERS_KEY):
            self.store.delete(key)
