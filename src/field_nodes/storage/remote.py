"""
Remote node store over a PostgREST-style backend-as-a-service.

Ids are minted server side (rpc/get_next_node_id) so concurrent clients never
receive the same id. Connections live in their own table, one row per pair,
and are read back in both directions.
"""

from typing import Any, Dict, List, Optional, Tuple

import requests
from pydantic import ValidationError as PydanticValidationError

from .engine import NODE_ID_PATTERN, NodeStoreBase, IMMUTABLE_FIELDS
from .errors import NodeNotFoundError, StorageError, ValidationError
from ..config import settings
from ..models.identity import UserIdentity, UserProfile
from ..models.node import (
    DEFAULT_FIELDS,
    MEMBERSHIP_ROLES,
    NODE_TYPES,
    ActivityEntry,
    Field,
    FieldMembership,
    Node,
    NodeCounter,
    apply_grounding,
    utc_now,
)
from ..utils.events import log_debug, log_event
from ..utils.serializers import serialize_node

# Node columns derived from the node_connections table instead of stored on the row
_DERIVED_COLUMNS = ("connections",)


def _parse_row(model, row: Dict[str, Any]):
    """Builds a model from a row; null columns fall back to model defaults."""
    try:
        return model(**{k: v for k, v in row.items() if v is not None})
    except PydanticValidationError as e:
        raise StorageError(f"Remote {model.__name__} row is malformed: {e}") from e


class RemoteNodeStore(NodeStoreBase):
    def __init__(
        self,
        base_url: str = None,
        api_key: str = None,
        session: Optional[requests.Session] = None,
        timeout: float = None,
    ):
        self.base_url = (base_url or settings.SUPABASE_URL).rstrip("/")
        self.api_key = api_key or settings.SUPABASE_ANON_KEY
        self.timeout = timeout or settings.REMOTE_TIMEOUT
        self.session = session or requests.Session()
        self.session.headers.update({
            "apikey": self.api_key,
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        })

    # --- transport ---

    def _request(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, str]] = None,
        payload: Any = None,
        prefer: Optional[str] = None,
    ) -> Any:
        url = f"{self.base_url}/rest/v1/{path}"
        headers = {"Prefer": prefer} if prefer else {}
        try:
            response = self.session.request(
                method, url, params=params, json=payload, headers=headers, timeout=self.timeout
            )
            response.raise_for_status()
        except requests.RequestException as e:
            log_debug(f"[REMOTE] {method} {path} failed: {e}")
            log_event("STORAGE_ERROR", {"method": method, "path": path, "error": str(e)})
            raise StorageError(f"Remote {method} {path} failed: {e}") from e

        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as e:
            raise StorageError(f"Remote {path} returned invalid JSON") from e

    # --- row mapping ---

    @staticmethod
    def _row_from_node(node: Node) -> Dict[str, Any]:
        row = serialize_node(node)
        for column in _DERIVED_COLUMNS:
            row.pop(column, None)
        return row

    @staticmethod
    def _node_from_row(row: Dict[str, Any], connections: List[str]) -> Node:
        data = {k: v for k, v in row.items() if v is not None}
        data["connections"] = connections
        data["connection_count"] = len(connections)
        try:
            return Node(**data)
        except PydanticValidationError as e:
            raise StorageError(f"Remote node row is malformed: {e}") from e

    def _connection_rows(self, node_id: Optional[str] = None) -> List[Dict[str, Any]]:
        params = {"select": "from_node_id,to_node_id"}
        if node_id:
            params["or"] = f"(from_node_id.eq.{node_id},to_node_id.eq.{node_id})"
        return self._request("GET", "node_connections", params=params) or []

    @staticmethod
    def _neighbours(rows: List[Dict[str, Any]]) -> Dict[str, List[str]]:
        neighbours: Dict[str, List[str]] = {}
        for row in rows:
            a, b = row["from_node_id"], row["to_node_id"]
            for here, there in ((a, b), (b, a)):
                linked = neighbours.setdefault(here, [])
                if there not in linked:
                    linked.append(there)
        return neighbours

    # --- nodes ---

    def get_all_nodes(self) -> List[Node]:
        rows = self._request("GET", "nodes", params={"select": "*", "order": "created_at.asc"}) or []
        neighbours = self._neighbours(self._connection_rows())
        return [self._node_from_row(row, neighbours.get(row["id"], [])) for row in rows]

    def _fetch_row(self, node_id: str) -> Dict[str, Any]:
        rows = self._request("GET", "nodes", params={"select": "*", "id": f"eq.{node_id}"}) or []
        if not rows:
            raise NodeNotFoundError(node_id)
        return rows[0]

    def get_node(self, node_id: str) -> Node:
        row = self._fetch_row(node_id)
        neighbours = self._neighbours(self._connection_rows(node_id))
        return self._node_from_row(row, neighbours.get(node_id, []))

    def generate_node_id(self, node_type: str = "RN") -> str:
        if node_type not in NODE_TYPES:
            raise ValidationError(f"Unknown node type '{node_type}'")
        node_id = self._request("POST", "rpc/get_next_node_id", payload={"node_prefix": node_type})
        if not isinstance(node_id, str) or not NODE_ID_PATTERN.match(node_id):
            raise StorageError(f"Server returned an invalid node id: {node_id!r}")
        return node_id

    def _insert_node(self, node: Node) -> Node:
        rows = self._request("POST", "nodes", payload=self._row_from_node(node), prefer="return=representation")
        if not rows:
            raise StorageError(f"Remote insert of {node.id} returned no row")
        stored = self._node_from_row(rows[0], [])
        # node row is committed here; the activity entry is best effort
        try:
            self._request("POST", "activity_log", payload={
                "action": "offered",
                "node_id": node.id,
                "user_handle": node.author,
                "created_at": node.created_at,
            })
        except StorageError as e:
            log_debug(f"[ACTIVITY] {node.id} stored, activity entry lost: {e}")
        return stored

    def save_node(self, node: Node) -> Node:
        now = utc_now()
        try:
            existing = self._fetch_row(node.id)
        except NodeNotFoundError:
            existing = None

        if existing is None:
            record = node.model_copy(update={"created_at": node.created_at or now, "updated_at": now})
            return self._insert_node(record)

        record = node.model_copy(update={"created_at": existing["created_at"], "updated_at": now})
        row = self._row_from_node(record)
        row.pop("created_at", None)
        row.pop("connection_count", None)
        self._request("PATCH", "nodes", params={"id": f"eq.{node.id}"}, payload=row)
        return self.get_node(node.id)

    def update_node(self, node_id: str, updates: Dict[str, Any]) -> Node:
        current = self.get_node(node_id)
        changes = {k: v for k, v in updates.items() if k not in IMMUTABLE_FIELDS}
        if "connections" in changes:
            raise ValidationError("connections change through connect_nodes")

        merged = current.model_dump()
        merged.update(changes)
        merged["updated_at"] = utc_now()
        try:
            updated = Node(**merged)
        except PydanticValidationError as e:
            raise ValidationError(f"Invalid update for {node_id}: {e}") from e
        if "artifacts" in changes:
            apply_grounding(updated)

        row = self._row_from_node(updated)
        patch = {k: row[k] for k in list(changes) + ["status", "updated_at"] if k in row}
        self._request("PATCH", "nodes", params={"id": f"eq.{node_id}"}, payload=patch)
        log_event("NODE_UPDATED", {"id": node_id, "fields": sorted(changes)})
        return updated

    def delete_node(self, node_id: str) -> None:
        rows = self._request(
            "DELETE", "nodes", params={"id": f"eq.{node_id}"}, prefer="return=representation"
        )
        if not rows:
            raise NodeNotFoundError(node_id)
        self._request("DELETE", "node_connections", params={
            "or": f"(from_node_id.eq.{node_id},to_node_id.eq.{node_id})"
        })
        log_event("NODE_DELETED", {"id": node_id})

    def connect_nodes(self, source_id: str, target_id: str) -> Tuple[Node, Node]:
        if source_id == target_id:
            raise ValidationError("a node cannot be linked to itself")
        source = self.get_node(source_id)
        self._fetch_row(target_id)

        if target_id not in source.connections:
            self._request("POST", "node_connections", payload={
                "from_node_id": source_id,
                "to_node_id": target_id,
                "created_at": utc_now(),
            })
        source, target = self.get_node(source_id), self.get_node(target_id)
        for node in (source, target):
            self._request("PATCH", "nodes", params={"id": f"eq.{node.id}"}, payload={
                "connection_count": node.connection_count,
                "updated_at": utc_now(),
            })
        log_event("NODES_CONNECTED", {"from": source_id, "to": target_id})
        return source, target

    # --- counters ---

    def get_node_counters(self) -> List[NodeCounter]:
        rows = self._request("GET", "node_counters", params={"select": "type,current_count"}) or []
        return [_parse_row(NodeCounter, row) for row in rows]

    def reset_node_counters(self) -> None:
        self._request("DELETE", "node_counters", params={"type": "in.(" + ",".join(NODE_TYPES) + ")"})

    def sync_counters_with_nodes(self) -> List[NodeCounter]:
        highest = {t: -1 for t in NODE_TYPES}
        for node in self.get_all_nodes():
            match = NODE_ID_PATTERN.match(node.id)
            if match and match.group(1) in highest:
                highest[match.group(1)] = max(highest[match.group(1)], int(match.group(2)))
        counters = [NodeCounter(type=t, current_count=c) for t, c in highest.items()]
        self._request(
            "POST", "node_counters",
            payload=[c.model_dump() for c in counters],
            prefer="resolution=merge-duplicates",
        )
        log_event("COUNTERS_SYNCED", {c.type: c.current_count for c in counters})
        return counters

    # --- fields ---

    def get_all_fields(self) -> List[Field]:
        rows = self._request("GET", "fields", params={"select": "*"}) or []
        return [_parse_row(Field, row) for row in (rows or DEFAULT_FIELDS)]

    def save_field(self, field: Field) -> None:
        self._request("POST", "fields", payload=field.model_dump(), prefer="resolution=merge-duplicates")

    def get_public_fields(self) -> List[Field]:
        rows = self._request("GET", "fields", params={
            "select": "*", "is_public": "eq.true", "order": "created_at.desc",
        }) or []
        return [_parse_row(Field, row) for row in rows]

    def get_field_nodes(self, field_id: str) -> List[Node]:
        """Nodes filed under one field, newest first."""
        rows = self._request("GET", "nodes", params={
            "select": "*", "field_id": f"eq.{field_id}", "order": "created_at.desc",
        }) or []
        neighbours = self._neighbours(self._connection_rows()) if rows else {}
        return [self._node_from_row(row, neighbours.get(row["id"], [])) for row in rows]

    # --- memberships ---

    def join_field(self, field_id: str, user_id: str, role: str = "contributor") -> FieldMembership:
        if role not in MEMBERSHIP_ROLES:
            raise ValidationError("role must be one of: " + ", ".join(MEMBERSHIP_ROLES))
        rows = self._request(
            "POST", "field_memberships",
            payload={"field_id": field_id, "user_id": user_id, "role": role, "joined_at": utc_now()},
            prefer="return=representation",
        )
        if not rows:
            raise StorageError(f"Joining field {field_id} returned no row")
        log_event("FIELD_JOINED", {"field_id": field_id, "user_id": user_id, "role": role})
        return _parse_row(FieldMembership, rows[0])

    def leave_field(self, field_id: str, user_id: str) -> None:
        self._request("DELETE", "field_memberships", params={
            "field_id": f"eq.{field_id}", "user_id": f"eq.{user_id}",
        })
        log_event("FIELD_LEFT", {"field_id": field_id, "user_id": user_id})

    def get_field_members(self, field_id: str) -> List[FieldMembership]:
        rows = self._request("GET", "field_memberships", params={
            "select": "*", "field_id": f"eq.{field_id}",
        }) or []
        return [_parse_row(FieldMembership, row) for row in rows]

    def get_user_fields(self, user_id: str) -> List[Tuple[Field, str]]:
        """(field, role) for every field the user belongs to."""
        rows = self._request("GET", "field_memberships", params={
            "select": "field:fields(*),role", "user_id": f"eq.{user_id}",
        }) or []
        return [(_parse_row(Field, row["field"]), row["role"]) for row in rows if row.get("field")]

    # --- activity ---

    def get_activity_feed(self, field_id: str, limit: int = 50) -> List[ActivityEntry]:
        rows = self._request("GET", "activity_log", params={
            "select": "*",
            "field_id": f"eq.{field_id}",
            "order": "created_at.desc",
            "limit": str(limit),
        }) or []
        return [_parse_row(ActivityEntry, row) for row in rows]

    # --- users ---

    def get_all_users(self) -> List[UserIdentity]:
        rows = self._request("GET", "users", params={"select": "username,role,password_hash"}) or []
        return [
            UserIdentity.from_record(row["username"], row.get("role") or "", row.get("password_hash") or "")
            for row in rows
        ]

    def save_user(self, user: UserIdentity) -> None:
        self._request(
            "POST", "users",
            params={"on_conflict": "username"},
            payload={"username": user.name, "role": user.role, "password_hash": user.password_hash},
            prefer="resolution=merge-duplicates",
        )

    def get_profile(self, user_id: str) -> UserProfile:
        rows = self._request("GET", "users", params={"select": "*", "id": f"eq.{user_id}"}) or []
        if not rows:
            raise NodeNotFoundError(user_id)
        return UserProfile(**{k: rows[0].get(k) for k in ("id", "username", "display_name", "avatar_url")})

    def update_profile(self, user_id: str, updates: Dict[str, Any]) -> UserProfile:
        allowed = {k: v for k, v in updates.items() if k in ("username", "display_name", "avatar_url")}
        rows = self._request(
            "PATCH", "users", params={"id": f"eq.{user_id}"}, payload=allowed, prefer="return=representation"
        )
        if not rows:
            raise NodeNotFoundError(user_id)
        return UserProfile(**{k: rows[0].get(k) for k in ("id", "username", "display_name", "avatar_url")})
