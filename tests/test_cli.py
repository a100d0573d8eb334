"""
Tests for planrevctl
"""

import json

import pytest

from planrev_core.cli.planrevctl import build_parser, main
from planrev_core.graph import build_graph
from planrev_core.snapshot import save_snapshot

from conftest import EDGES, make_sections


@pytest.fixture
def snapshot_path(isolated_env, plan_graph, plan_constraints):
    return save_snapshot(isolated_env / "plan.json", plan_graph, plan_constraints)


def _json_out(capsys):
    return json.loads(capsys.readouterr().out)


class TestParser:
    """Tests for argument parsing."""

    def test_no_command_prints_help(self, isolated_env, capsys):
        """Test running without a command."""
        assert main([]) == 0
        assert "planrevctl" in capsys.readouterr().out

    def test_validate_needs_content(self):
        """Test --content and --content-file are mutually exclusive and required."""
        parser = build_parser()
        with pytest.raises(SystemExit):
            parser.parse_args(["validate", "plan.json", "budget"])


class TestOrder:
    """Tests for the order command."""

    def test_json(self, snapshot_path, capsys):
        """Test dependency order as JSON."""
        assert main(["order", str(snapshot_path), "--json"]) == 0
        assert _json_out(capsys) == ["mandate", "strategy", "budget", "timeline", "summary"]

    def test_text(self, snapshot_path, capsys):
        """Test the text listing shows tiers."""
        assert main(["order", str(snapshot_path)]) == 0
        out = capsys.readouterr().out
        assert "mandate" in out
        assert "locked" in out

    def test_missing_snapshot(self, isolated_env, capsys):
        """Test a missing snapshot file exits with status 1."""
        assert main(["order", str(isolated_env / "absent.json")]) == 1
        assert "Error" in capsys.readouterr().out


class TestValidate:
    """Tests for the validate command."""

    def test_rejected(self, snapshot_path, capsys):
        """Test a budget above the ceiling exits with status 2."""
        code = main(["validate", str(snapshot_path), "budget",
                     "--content", "Total budget: 60,000,000 EUR for North with resilience.", "--json"])

        assert code == 2
        result = _json_out(capsys)
        assert result["accepted"] is False
        failed = [o["constraint_id"] for o in result["outcomes"] if not o["satisfied"]]
        assert failed == ["mandate:budget_cap"]

    def test_accepted(self, snapshot_path, capsys):
        """Test a compliant budget exits with status 0."""
        code = main(["validate", str(snapshot_path), "budget",
                     "--content", "Total budget: 40,000,000 EUR for North with resilience."])

        assert code == 0
        assert "Accepted" in capsys.readouterr().out

    def test_content_file(self, snapshot_path, isolated_env):
        """Test content read from a file."""
        proposal = isolated_env / "budget.txt"
        proposal.write_text("Total budget: 45,000,000 EUR for South with resilience.", encoding="utf-8")

        assert main(["validate", str(snapshot_path), "budget", "--content-file", str(proposal)]) == 0

    def test_unknown_section(self, snapshot_path, capsys):
        """Test an unknown target exits with status 1."""
        assert main(["validate", str(snapshot_path), "nope", "--content", "x"]) == 1
        assert "nope" in capsys.readouterr().out

    def test_bad_score(self, snapshot_path):
        """Test a malformed --score exits with status 1."""
        assert main(["validate", str(snapshot_path), "budget", "--content", "x", "--score", "oops"]) == 1


class TestPlan:
    """Tests for the plan command."""

    def test_forward_impact(self, snapshot_path, capsys):
        """Test a strategy change reaches its dependents in order."""
        assert main(["plan", str(snapshot_path), "strategy", "--json"]) == 0

        plan = _json_out(capsys)
        assert plan["changed"] == ["strategy"]
        assert plan["order"] == ["budget", "timeline", "summary"]

    def test_cycle_file_makes_replans_empty(self, snapshot_path, isolated_env, capsys):
        """Test a second run within the same cycle has nothing to do."""
        cycle = isolated_env / "cycle.json"

        assert main(["plan", str(snapshot_path), "strategy", "--cycle", str(cycle), "--json"]) == 0
        first = _json_out(capsys)
        assert main(["plan", str(snapshot_path), "strategy", "--cycle", str(cycle), "--json"]) == 0
        second = _json_out(capsys)

        assert first["forward_impact"]
        assert second["forward_impact"] == []
        assert second["skipped"] == ["strategy"]
        assert json.loads(cycle.read_text())["acknowledged"] == {"strategy": 1}

    def test_nothing_to_do(self, snapshot_path, isolated_env, capsys):
        """Test the text output for an empty plan."""
        cycle = isolated_env / "cycle.json"
        main(["plan", str(snapshot_path), "summary", "--cycle", str(cycle)])
        capsys.readouterr()

        assert main(["plan", str(snapshot_path), "summary", "--cycle", str(cycle)]) == 0
        assert "Nothing to do." in capsys.readouterr().out

    def test_ledger(self, snapshot_path, isolated_env, capsys):
        """Test the plan is appended to the ledger."""
        ledger = isolated_env / "ledger.jsonl"
        assert main(["plan", str(snapshot_path), "strategy", "--ledger", str(ledger)]) == 0

        events = [json.loads(line)["event"] for line in ledger.read_text().splitlines()]
        assert events == ["plan"]


class TestMatch:
    """Tests for the match command."""

    def test_renamed_section(self, snapshot_path, isolated_env, capsys):
        """Test a renamed section is matched to its predecessor."""
        sections = make_sections()
        sections[-1].id = "exec-summary"
        edges = [(s, "exec-summary" if t == "summary" else t, k) for s, t, k in EDGES]
        curr = save_snapshot(isolated_env / "next.yaml", build_graph(sections, edges, name="plan-2027"))

        assert main(["match", str(snapshot_path), str(curr), "--json"]) == 0

        result = _json_out(capsys)
        pairs = {(m["prev_id"], m["curr_id"]) for m in result["matches"]}
        assert ("summary", "exec-summary") in pairs
        assert ("budget", "budget") in pairs
        assert result["new_sections"] == []
        assert result["deprecated_sections"] == []

    def test_invalid_threshold(self, snapshot_path):
        """Test an out-of-range threshold exits with status 1."""
        assert main(["match", str(snapshot_path), str(snapshot_path), "-t", "2"]) == 1
