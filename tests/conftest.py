"""
Pytest Configuration and Fixtures

A small governed planning document used across the suite:

    mandate (locked) --constrains--> strategy (reviewable)
    mandate --derivesFrom--> budget (generated)
    strategy --derivesFrom--> budget, timeline (generated)
    budget, timeline --summarizes--> summary (generated)
"""

import sys
import tempfile
from pathlib import Path
from typing import Callable, Generator, List

import pytest

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from planrev_core.constraints import ConstraintSet, compile_constraints
from planrev_core.graph import GraphModel, build_graph
from planrev_core.models import (
    ConstraintKind,
    EdgeKind,
    GovernanceTier,
    RuleTemplate,
    Section,
)


MANDATE_TEXT = "The program budget must not exceed 50,000,000 EUR. Allowed regions: North, South."

EDGES = [
    ("mandate", "strategy", EdgeKind.CONSTRAINS),
    ("mandate", "budget", EdgeKind.DERIVES_FROM),
    ("strategy", "budget", EdgeKind.DERIVES_FROM),
    ("strategy", "timeline", EdgeKind.DERIVES_FROM),
    ("budget", "summary", EdgeKind.SUMMARIZES),
    ("timeline", "summary", EdgeKind.SUMMARIZES),
]


def make_sections() -> List[Section]:
    """Fresh sections of the sample document."""
    return [
        Section(
            id="mandate",
            tier=GovernanceTier.LOCKED,
            title="Program Mandate",
            kind="mandate",
            content=MANDATE_TEXT,
            rules=[
                RuleTemplate("budget_cap", ConstraintKind.NUMERIC_CEILING, applies_to="budget"),
                RuleTemplate(
                    "regions",
                    ConstraintKind.ENUMERATED_SET,
                    parameters={
                        "allowed": ["North", "South"],
                        "universe": ["North", "South", "East", "West"],
                    },
                ),
            ],
        ),
        Section(
            id="strategy",
            tier=GovernanceTier.REVIEWABLE,
            title="Regional Strategy",
            kind="prose",
            content="Focus on North expansion with resilience.",
            rules=[
                RuleTemplate(
                    "resilience",
                    ConstraintKind.REQUIRED_TERM,
                    applies_to="generated",
                    parameters={"terms": ["resilience"]},
                ),
            ],
        ),
        Section(
            id="budget",
            tier=GovernanceTier.GENERATED,
            title="Budget Overview",
            kind="table",
            content="Total budget: 40,000,000 EUR for North with resilience.",
        ),
        Section(
            id="timeline",
            tier=GovernanceTier.GENERATED,
            title="Delivery Timeline",
            kind="prose",
            content="Phase 1 in North, resilience milestones.",
        ),
        Section(
            id="summary",
            tier=GovernanceTier.GENERATED,
            title="Executive Summary",
            kind="prose",
            content="Summary of budget and timeline.",
        ),
    ]


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for tests."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def graph_factory() -> Callable[[], GraphModel]:
    """Factory building independent copies of the sample document graph."""
    def factory(name: str = "plan-2026") -> GraphModel:
        return build_graph(make_sections(), EDGES, name=name)
    return factory


@pytest.fixture
def plan_graph(graph_factory) -> GraphModel:
    """The sample document graph."""
    return graph_factory()


@pytest.fixture
def plan_constraints(plan_graph) -> ConstraintSet:
    """Constraints compiled from the sample document."""
    return compile_constraints(plan_graph)


@pytest.fixture
def isolated_env(temp_dir: Path, monkeypatch) -> Path:
    """Working directory and HOME without any planrev.yaml or PLANREV_* variables."""
    monkeypatch.chdir(temp_dir)
    monkeypatch.setenv("HOME", str(temp_dir))
    for name in ("PLANREV_MATCH_THRESHOLD", "PLANREV_MATCH_TIMEOUT",
                 "PLANREV_NUMERIC_DELTA_PCT", "PLANREV_LOG_LEVEL"):
        monkeypatch.delenv(name, raising=False)
    return temp_dir
