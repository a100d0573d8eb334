"""
Tests for persisted snapshots
"""

import json

import pytest

from planrev_core.errors import CycleDetected, SnapshotError
from planrev_core.snapshot import (
    SCHEMA_VERSION,
    dumps,
    load_snapshot,
    loads,
    save_snapshot,
    snapshot_from_dict,
    snapshot_to_dict,
)


class TestSnapshotDict:
    """Tests for dict conversion."""

    def test_round_trip(self, plan_graph, plan_constraints):
        """Test sections, edges and constraints survive a round trip."""
        plan_graph.propose_content("budget", {"total": 45_000_000, "region": "North"}, basis={"mandate": 1})
        data = snapshot_to_dict(plan_graph, plan_constraints)

        graph, constraints = snapshot_from_dict(json.loads(json.dumps(data)))

        assert [s.to_dict() for s in graph.sections()] == [s.to_dict() for s in plan_graph.sections()]
        assert graph.edges() == plan_graph.edges()
        assert constraints.to_dict() == plan_constraints.to_dict()
        assert graph.get("budget").version == 2

    def test_tables(self, plan_graph, plan_constraints):
        """Test the three tables are present."""
        data = snapshot_to_dict(plan_graph, plan_constraints)

        assert data["schema"] == SCHEMA_VERSION
        assert {row["id"] for row in data["sections"]} == set(plan_graph.ids())
        assert data["edges"][0] == {"source": "mandate", "target": "strategy", "kind": "constrains"}
        assert set(data["constraints"]["sources"]) == {"mandate", "strategy"}

    def test_without_constraints(self, plan_graph):
        """Test a graph-only snapshot."""
        graph, constraints = snapshot_from_dict(snapshot_to_dict(plan_graph))
        assert constraints is None
        assert len(graph) == len(plan_graph)

    def test_hash_mismatch(self, plan_graph):
        """Test tampered content is refused."""
        data = snapshot_to_dict(plan_graph)
        data["sections"][0]["content"] = "tampered"

        with pytest.raises(SnapshotError):
            snapshot_from_dict(data)

    def test_unknown_schema(self, plan_graph):
        """Test an unknown schema version is refused."""
        data = snapshot_to_dict(plan_graph)
        data["schema"] = 99
        with pytest.raises(SnapshotError):
            snapshot_from_dict(data)

    def test_malformed_row(self, plan_graph):
        """Test a row with an invalid tier is refused."""
        data = snapshot_to_dict(plan_graph)
        data["sections"][0]["tier"] = "secret"
        with pytest.raises(SnapshotError):
            snapshot_from_dict(data)

    def test_cyclic_edges(self, plan_graph):
        """Test structural errors surface on load."""
        data = snapshot_to_dict(plan_graph)
        data["edges"].append({"source": "summary", "target": "mandate", "kind": "informs"})
        with pytest.raises(CycleDetected):
            snapshot_from_dict(data)


class TestSnapshotFiles:
    """Tests for JSON and YAML files."""

    @pytest.mark.parametrize("suffix", [".json", ".yaml"])
    def test_file_round_trip(self, temp_dir, plan_graph, plan_constraints, suffix):
        """Test both file formats reproduce the snapshot exactly."""
        path = save_snapshot(temp_dir / f"plan{suffix}", plan_graph, plan_constraints)
        graph, constraints = load_snapshot(path)

        assert snapshot_to_dict(graph, constraints) == snapshot_to_dict(plan_graph, plan_constraints)

    def test_json_is_deterministic(self, graph_factory):
        """Test identical graphs serialize identically."""
        assert dumps(graph_factory()) == dumps(graph_factory())

    def test_unknown_format(self, plan_graph):
        """Test an unsupported format is refused."""
        with pytest.raises(ValueError):
            dumps(plan_graph, fmt="xml")

    def test_non_mapping_document(self):
        """Test a document that is not a mapping."""
        with pytest.raises(SnapshotError):
            loads("[1, 2]")

    def test_missing_file(self, temp_dir):
        """Test loading a missing file."""
        with pytest.raises(SnapshotError):
            load_snapshot(temp_dir / "absent.json")
