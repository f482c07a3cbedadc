"""
Test Suite for the maintenance CLI (tools/field_nodes_cli.py)

Tests for:
1. JSON output per command
2. Error reporting and exit codes
3. Export / import round trip with counter resync
"""

import json
import pytest

import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))
sys.path.insert(0, str(Path(__file__).parent.parent / "tools"))

import field_nodes_cli as cli
from field_nodes.models.node import Node, NodeArtifact
from field_nodes.storage.engine import LocalNodeStore
from field_nodes.storage.kv import MemoryStore


@pytest.fixture
def store():
    store = LocalNodeStore(MemoryStore())
    store.create_node(Node(title="Algorithms as curators of taste", author="ada"))
    store.create_node(Node(title="Care as infrastructure", author="grace",
                           artifacts=[NodeArtifact(url="http://example.com")]))
    return store


def invoke(capsys, store, *argv):
    code = cli.main(list(argv), store=store)
    return code, json.loads(capsys.readouterr().out)


class TestReadCommands:
    """Tests for list-nodes, get-node, stats"""

    def test_list_all(self, capsys, store):
        code, out = invoke(capsys, store, "list-nodes")
        assert code == 0
        assert [n["id"] for n in out["nodes"]] == ["FN-RN.000", "FN-RN.001"]

    def test_list_filtered(self, capsys, store):
        _, out = invoke(capsys, store, "list-nodes", "--status", "grounded")
        assert [n["id"] for n in out["nodes"]] == ["FN-RN.001"]
        _, out = invoke(capsys, store, "list-nodes", "--author", "ada")
        assert [n["title"] for n in out["nodes"]] == ["Algorithms as curators of taste"]
        _, out = invoke(capsys, store, "list-nodes", "--query", "care")
        assert [n["id"] for n in out["nodes"]] == ["FN-RN.001"]

    def test_get_node_with_neighbours(self, capsys, store):
        store.connect_nodes("FN-RN.000", "FN-RN.001")
        code, out = invoke(capsys, store, "get-node", "--id", "FN-RN.000")
        assert code == 0
        assert out["node"]["connections"] == ["FN-RN.001"]
        assert out["connected"] == ["FN-RN.001"]

    def test_get_missing_node(self, capsys, store):
        code, out = invoke(capsys, store, "get-node", "--id", "FN-RN.404")
        assert code == 1
        assert "FN-RN.404" in out["error"]

    def test_stats(self, capsys, store):
        _, out = invoke(capsys, store, "stats")
        assert out["stats"]["total_nodes"] == 2
        assert out["stats"]["nodes_by_status"]["grounded"] == 1
        assert out["by_type"]["RN"]["total_created"] == 2


class TestWriteCommands:
    """Tests for update-node, delete-node, connect, sync-counters"""

    def test_update_allowed_fields_only(self, capsys, store):
        code, out = invoke(capsys, store, "update-node", "--id", "FN-RN.000",
                           "--data", json.dumps({"title": "Taste", "id": "FN-RN.999"}))
        assert code == 0
        assert out["node"]["title"] == "Taste"
        assert out["node"]["id"] == "FN-RN.000"

    def test_update_without_valid_fields(self, capsys, store):
        code, out = invoke(capsys, store, "update-node", "--id", "FN-RN.000", "--data", '{"id": "x"}')
        assert code == 1
        assert "title" in out["allowed"]

    def test_update_bad_json(self, capsys, store):
        code, out = invoke(capsys, store, "update-node", "--id", "FN-RN.000", "--data", "{nope")
        assert code == 1
        assert out["error"].startswith("Invalid JSON payload")

    def test_update_invalid_status(self, capsys, store):
        code, out = invoke(capsys, store, "update-node", "--id", "FN-RN.000", "--data", '{"status": "lost"}')
        assert code == 1
        assert out["error"].startswith("ValidationError")

    def test_connect_and_delete(self, capsys, store):
        _, out = invoke(capsys, store, "connect", "--source", "FN-RN.000", "--target", "FN-RN.001")
        assert out["connection_counts"] == {"FN-RN.000": 1, "FN-RN.001": 1}

        code, out = invoke(capsys, store, "delete-node", "--id", "FN-RN.001")
        assert code == 0
        assert out == {"status": "deleted", "node_id": "FN-RN.001"}
        assert store.get_node("FN-RN.000").connections == []

    def test_sync_counters(self, capsys, store):
        store.reset_node_counters()
        _, out = invoke(capsys, store, "sync-counters")
        counters = {c["type"]: c["current_count"] for c in out["counters"]}
        assert counters["RN"] == 1
        assert counters["RF"] == -1
        assert store.create_node(Node(title="next")).id == "FN-RN.002"


class TestExportImport:
    """Tests for export/import"""

    def test_round_trip(self, capsys, store, tmp_path):
        _, exported = invoke(capsys, store, "export")
        dump = tmp_path / "export.json"
        dump.write_text(json.dumps(exported), encoding="utf-8")

        fresh = LocalNodeStore(MemoryStore())
        code, out = invoke(capsys, fresh, "import", "--file", str(dump))

        assert code == 0
        assert out["nodes"] == 2
        assert [n.id for n in fresh.get_all_nodes()] == ["FN-RN.000", "FN-RN.001"]
        assert fresh.create_node(Node(title="after import")).id == "FN-RN.002"

    def test_import_missing_file(self, capsys, store, tmp_path):
        code, out = invoke(capsys, store, "import", "--file", str(tmp_path / "absent.json"))
        assert code == 1
        assert out["error"].startswith("File error")


class TestEventsCommand:
    """Tests for the events command"""

    def test_events_filtered(self, capsys, store):
        store.delete_node("FN-RN.000")
        _, out = invoke(capsys, store, "events", "--type", "NODE_DELETED")
        assert [e["data"]["id"] for e in out["events"]] == ["FN-RN.000"]

    def test_no_command(self, capsys):
        assert cli.main([], store=LocalNodeStore(MemoryStore())) == 1
