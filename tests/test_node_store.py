"""
Test Suite for the local node store

Tests for:
1. Id minting and counters
2. CRUD round trips and NotFound handling
3. Reciprocal connections
4. Search, filters and sorting
5. Persistence failures
"""

import json
import pytest

import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from field_nodes.models.identity import UserIdentity
from field_nodes.models.node import Node, NodeArtifact, NodeOrigin, SearchOptions
from field_nodes.storage.engine import LocalNodeStore
from field_nodes.storage.errors import NodeNotFoundError, StorageError, ValidationError
from field_nodes.storage.kv import JsonFileStore, MemoryStore
from field_nodes.utils.events import read_events

SERVER_FIELDS = {"id", "created_at", "updated_at", "last_tended"}


@pytest.fixture
def store():
    return LocalNodeStore(MemoryStore())


def make_node(title="Algorithms as curators of taste", **kwargs):
    return Node(title=title, **kwargs)


class TestIdGeneration:
    """Tests for typed, monotonic node ids"""

    def test_sequential_ids(self, store):
        """Test: N creations yield FN-RN.000 ... FN-RN.(N-1)"""
        ids = [store.create_node(make_node(f"node {i}")).id for i in range(5)]
        assert ids == [f"FN-RN.{i:03d}" for i in range(5)]

    def test_counters_are_per_type(self, store):
        assert store.create_node(make_node(), "RN").id == "FN-RN.000"
        assert store.create_node(make_node(), "RF").id == "FN-RF.000"
        assert store.create_node(make_node(), "RN").id == "FN-RN.001"

    def test_unknown_type_rejected(self, store):
        with pytest.raises(ValidationError):
            store.create_node(make_node(), "XX")

    def test_node_type_from_id(self, store):
        assert store.node_type_from_id("FN-SN.042") == "SN"
        assert store.node_type_from_id("note-42") is None

    def test_failed_insert_releases_id(self):
        """Test: a write failure after minting does not burn the number"""

        class FailingNodes(MemoryStore):
            def set(self, key, value):
                if key == "nodes":
                    raise StorageError("quota exceeded")
                super().set(key, value)

        store = LocalNodeStore(FailingNodes())
        with pytest.raises(StorageError):
            store.create_node(make_node())
        counters = {c.type: c.current_count for c in store.get_node_counters()}
        assert counters["RN"] == -1

    def test_sync_after_gap_avoids_collision(self, store):
        for i in range(3):
            store.create_node(make_node(f"node {i}"))
        store.delete_node("FN-RN.001")
        store.reset_node_counters()

        with pytest.raises(StorageError):
            store.create_node(make_node("collides with FN-RN.000"))

        counters = {c.type: c.current_count for c in store.sync_counters_with_nodes()}
        assert counters["RN"] == 2
        assert counters["CN"] == -1
        assert store.create_node(make_node("after sync")).id == "FN-RN.003"


class TestCrud:
    """Tests for create/get/update/delete"""

    def test_round_trip(self, store):
        """Test: getNode(createNode(n).id) equals n apart from server fields"""
        node = make_node(thought="This TikTok reframed aesthetic judgment", tags=["taste"], author="ada")
        created = store.create_node(node)
        loaded = store.get_node(created.id)
        assert loaded.model_dump() == created.model_dump()
        assert loaded.model_dump(exclude=SERVER_FIELDS) == node.model_dump(exclude=SERVER_FIELDS)
        assert loaded.created_at and loaded.updated_at and loaded.last_tended

    def test_create_logs_event(self, store):
        created = store.create_node(make_node())
        events = read_events("NODE_CREATED")
        assert events[-1]["data"]["id"] == created.id

    def test_artifacts_ground_on_create(self, store):
        created = store.create_node(make_node(artifacts=[NodeArtifact(url="http://example.com")]))
        assert created.status == "grounded"

    def test_get_missing(self, store):
        with pytest.raises(NodeNotFoundError):
            store.get_node("FN-RN.999")

    def test_update(self, store):
        created = store.create_node(make_node())
        updated = store.update_node(created.id, {"title": "Taste as infrastructure", "id": "FN-XX.000"})
        assert updated.title == "Taste as infrastructure"
        assert updated.id == created.id
        assert updated.created_at == created.created_at
        assert store.get_node(created.id).title == "Taste as infrastructure"

    def test_update_missing_raises(self, store):
        """Test: updating an unknown id is reported, not ignored"""
        with pytest.raises(NodeNotFoundError):
            store.update_node("FN-RN.404", {"title": "ghost"})

    def test_update_invalid_value(self, store):
        created = store.create_node(make_node())
        with pytest.raises(ValidationError):
            store.update_node(created.id, {"status": "published"})

    def test_removing_artifacts_reverts_to_draft(self, store):
        created = store.create_node(make_node(artifacts=[NodeArtifact(url="http://example.com")]))
        updated = store.update_node(created.id, {"artifacts": []})
        assert updated.status == "draft"

    def test_reviewed_status_survives_artifact_removal(self, store):
        created = store.create_node(make_node(status="reviewed", artifacts=[NodeArtifact(url="http://a")]))
        assert store.update_node(created.id, {"artifacts": []}).status == "reviewed"

    def test_save_node_upsert_keeps_created_at(self, store):
        created = store.create_node(make_node())
        saved = store.save_node(created.model_copy(update={"title": "edited", "created_at": "1999-01-01"}))
        assert saved.created_at == created.created_at
        assert store.get_node(created.id).title == "edited"
        assert len(store.get_all_nodes()) == 1

    def test_delete(self, store):
        created = store.create_node(make_node())
        store.delete_node(created.id)
        assert store.get_all_nodes() == []

    def test_delete_missing_raises(self, store):
        with pytest.raises(NodeNotFoundError):
            store.delete_node("FN-RN.404")


class TestConnections:
    """Tests for reciprocal connections"""

    def test_connect_is_reciprocal(self, store):
        a = store.create_node(make_node("a"))
        b = store.create_node(make_node("b"))
        store.connect_nodes(a.id, b.id)

        a, b = store.get_node(a.id), store.get_node(b.id)
        assert a.connections == [b.id]
        assert b.connections == [a.id]
        assert a.connection_count == b.connection_count == 1

    def test_connect_twice_is_idempotent(self, store):
        a = store.create_node(make_node("a"))
        b = store.create_node(make_node("b"))
        store.connect_nodes(a.id, b.id)
        store.connect_nodes(b.id, a.id)
        assert store.get_node(a.id).connections == [b.id]

    def test_connect_missing(self, store):
        a = store.create_node(make_node("a"))
        with pytest.raises(NodeNotFoundError):
            store.connect_nodes(a.id, "FN-RN.404")
        assert store.get_node(a.id).connections == []

    def test_connect_self(self, store):
        a = store.create_node(make_node("a"))
        with pytest.raises(ValidationError):
            store.connect_nodes(a.id, a.id)

    def test_delete_removes_back_references(self, store):
        a = store.create_node(make_node("a"))
        b = store.create_node(make_node("b"))
        store.connect_nodes(a.id, b.id)
        store.delete_node(b.id)
        assert store.get_node(a.id).connections == []
        assert store.get_node(a.id).connection_count == 0

    def test_get_connected(self, store):
        a = store.create_node(make_node("a"))
        b = store.create_node(make_node("b"))
        c = store.create_node(make_node("c"))
        store.connect_nodes(a.id, b.id)
        store.connect_nodes(c.id, a.id)
        assert [n.id for n in store.get_connected(a.id)] == [b.id, c.id]
        assert store.get_stats()["clusters"] == 1


class TestQueries:
    """Tests for search and filters"""

    @pytest.fixture
    def seeded(self, store):
        store.create_node(make_node(
            "Mutual aid networks", thought="care as infrastructure", author="ada", tags=["mutual-aid", "care"]
        ))
        store.create_node(make_node(
            "Archive fever", author="bell", tags=["archiving"],
            origin=NodeOrigin(type="lecture", description="feminist systems lecture"),
        ))
        store.create_node(make_node(
            "Taste engines", author="ada",
            artifacts=[NodeArtifact(url="http://example.com/paper", metadata={"title": "Curated Care"})],
        ))
        return store

    def test_search_fields(self, seeded):
        """Test: title, thought, tags, author, origin and artifact metadata are searched"""
        assert [n.title for n in seeded.search("CARE")] == ["Mutual aid networks", "Taste engines"]
        assert [n.title for n in seeded.search("feminist")] == ["Archive fever"]
        assert [n.title for n in seeded.search("bell")] == ["Archive fever"]
        assert seeded.search("nothing like this") == []

    def test_empty_query_returns_all(self, seeded):
        assert len(seeded.search("")) == 3

    def test_list_filters(self, seeded):
        assert [n.title for n in seeded.list_by_author("ada")] == ["Mutual aid networks", "Taste engines"]
        assert [n.title for n in seeded.list_by_status("grounded")] == ["Taste engines"]
        assert [n.title for n in seeded.list_by_field("mutual")] == ["Mutual aid networks"]
        assert [n.title for n in seeded.list_by_field("feminist")] == ["Archive fever"]

    def test_advanced_and_semantics(self, seeded):
        options = SearchOptions(query="care", author="ada", status="draft")
        assert [n.title for n in seeded.search_advanced(options)] == ["Mutual aid networks"]

    def test_advanced_tags_any(self, seeded):
        options = SearchOptions(tags=["archiving", "care"], sort_by="title", sort_order="asc")
        assert [n.title for n in seeded.search_advanced(options)] == ["Archive fever", "Mutual aid networks"]

    def test_sort_by_connections(self, seeded):
        nodes = seeded.get_all_nodes()
        seeded.connect_nodes(nodes[2].id, nodes[0].id)
        seeded.connect_nodes(nodes[2].id, nodes[1].id)
        ranked = seeded.search_advanced(SearchOptions(sort_by="connections", sort_order="desc"))
        assert ranked[0].title == "Taste engines"


class TestFieldsUsersAndMaintenance:
    """Tests for fields, users, stats, export/import"""

    def test_default_fields(self, store):
        fields = store.get_all_fields()
        assert [f.id for f in fields] == [
            "system_design", "feminist_theory", "mutual_aid", "archiving", "infrastructure"
        ]
        assert store.get_field("archiving").name == "Archiving"
        assert store.get_field("nope") is None

    def test_users(self, store):
        store.save_user(UserIdentity.account("ada", "secret"))
        store.save_user(UserIdentity.account("ada", "changed", role="steward"))
        users = store.get_all_users()
        assert len(users) == 1
        assert store.get_user("ada").role == "steward"
        assert store.get_user("bell") is None

    def test_stats(self, store):
        store.create_node(make_node("a"))
        store.create_node(make_node("b", artifacts=[NodeArtifact(url="http://x")]))
        stats = store.get_stats()
        assert stats["total_nodes"] == 2
        assert stats["nodes_by_status"]["grounded"] == 1
        by_type = store.get_stats_by_type()
        assert by_type["RN"]["total_created"] == 2
        assert by_type["RN"]["latest_id"] == "FN-RN.001"

    def test_export_import_clear(self, store):
        store.create_node(make_node("keep me"))
        exported = json.loads(json.dumps(store.export_data()))

        store.clear_all()
        assert store.get_all_nodes() == []

        store.import_data(exported)
        assert [n.title for n in store.get_all_nodes()] == ["keep me"]


class TestPersistenceFailures:
    """Tests for storage errors"""

    def test_corrupt_key_raises(self):
        store = LocalNodeStore(MemoryStore({"nodes": "{oops"}))
        with pytest.raises(StorageError):
            store.get_all_nodes()

    def test_non_array_raises(self):
        store = LocalNodeStore(MemoryStore({"nodes": "{}"}))
        with pytest.raises(StorageError):
            store.get_all_nodes()

    def test_json_file_store_round_trip(self, tmp_path):
        kv = JsonFileStore(tmp_path / "store.json")
        store = LocalNodeStore(kv)
        created = store.create_node(make_node())
        reopened = LocalNodeStore(JsonFileStore(tmp_path / "store.json"))
        assert reopened.get_node(created.id).model_dump() == created.model_dump()

    def test_corrupt_file_is_backed_up(self, tmp_path):
        path = tmp_path / "store.json"
        path.write_text("{not json", encoding="utf-8")
        kv = JsonFileStore(path)
        with pytest.raises(StorageError):
            kv.get("nodes")
        assert list(tmp_path.glob("store.bak.*"))
        assert path.read_text(encoding="utf-8") == "{not json"

    def test_malformed_user_row_raises(self):
        """Test: a stored user missing its name is a storage error, not a crash"""
        store = LocalNodeStore(MemoryStore({"users": json.dumps([{"bogus": 1}])}))
        with pytest.raises(StorageError):
            store.get_all_users()
        with pytest.raises(StorageError):
            store.get_user("ada")

    def test_malformed_field_row_raises(self):
        store = LocalNodeStore(MemoryStore({"fields": json.dumps([{"name": "no id"}])}))
        with pytest.raises(StorageError):
            store.get_all_fields()

    def test_non_object_row_raises(self):
        store = LocalNodeStore(MemoryStore({"users": json.dumps(["ada"])}))
        with pytest.raises(StorageError):
            store.get_all_users()

    def test_unwritable_lock_file_raises(self, tmp_path):
        kv = JsonFileStore(tmp_path / "store.json", lock_path=tmp_path / "missing" / "store.lock")
        with pytest.raises(StorageError):
            kv.set("nodes", "[]")
        assert not (tmp_path / "store.json").exists()
