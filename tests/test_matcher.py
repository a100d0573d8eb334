"""
Tests for the Revision Matcher
"""

import threading

import numpy as np
import pytest

from planrev_core.errors import ComputationTimeout, ConfigError, UnknownSection
from planrev_core.graph import build_graph
from planrev_core.matcher import (
    MatchResult,
    ScorerWeights,
    match_revisions,
    pair_similarity,
    retire_deprecated,
    seed_next_graph,
)
from planrev_core.models import Edge, Fingerprint, GovernanceTier, Section
from planrev_core.providers import HashingEmbedding, fingerprint_embedding


def _fp(section_id, tokens, kind="prose", position=0.0, embedding=None):
    return Fingerprint(section_id, frozenset(tokens), kind, list(embedding or []), position)


@pytest.fixture
def revision_2025():
    embedder = HashingEmbedding(dimension=32)
    texts = {
        "intro": ("introduction context", "prose"),
        "budget": ("budget overview", "table"),
        "risks": ("risk register", "list"),
        "outlook": ("outlook next steps", "prose"),
    }
    return [
        _fp(sid, title.split(), kind, i / 3, fingerprint_embedding(embedder, title))
        for i, (sid, (title, kind)) in enumerate(texts.items())
    ]


class TestScoring:
    """Tests for pair similarity."""

    def test_identical_scores_one(self):
        """Test identical fingerprints score exactly 1.0."""
        fp = _fp("a", {"budget", "overview"}, "table", 0.5, [0.3, 0.4, 0.5])
        score, components = pair_similarity(fp, fp)

        assert score == 1.0
        assert set(components) == {"title", "structure", "content", "position"}

    def test_domain_scorer_slot(self):
        """Test the domain scorer contributes when supplied."""
        a = _fp("a", {"x"}, position=0.0)
        b = _fp("b", {"x"}, position=0.0)
        score, components = pair_similarity(a, b, domain_scorer=lambda p, c: 0.0)

        assert components["domain"] == 0.0
        assert score == pytest.approx((0.35 + 0.15 + 0.10) / 0.75)

    def test_weights_must_sum_to_one(self):
        """Test invalid weights are refused."""
        with pytest.raises(ConfigError):
            ScorerWeights(title=0.5, structure=0.5, content=0.5, position=0.0, domain=0.0)
        with pytest.raises(ConfigError):
            ScorerWeights(title=-0.1, structure=0.45, content=0.25, position=0.25, domain=0.15)

    def test_weights_from_dict(self):
        """Test partial dicts keep the remaining defaults."""
        weights = ScorerWeights.from_dict({"title": 0.45, "domain": 0.05})
        assert weights.to_dict() == {
            "title": 0.45, "structure": 0.15, "content": 0.25, "position": 0.10, "domain": 0.05,
        }


class TestMatchRevisions:
    """Tests for match_revisions."""

    def test_identical_sets(self, revision_2025):
        """Test identical sets match every section at 1.0."""
        result = match_revisions(revision_2025, revision_2025)

        assert sorted((m.prev_id, m.curr_id) for m in result.matches) == [
            ("budget", "budget"), ("intro", "intro"), ("outlook", "outlook"), ("risks", "risks"),
        ]
        assert all(m.similarity == pytest.approx(1.0) for m in result.matches)
        assert result.new_sections == ()
        assert result.deprecated_sections == ()
        assert result.ambiguous == ()

    def test_disjoint_sets(self):
        """Test disjoint sets produce no matches."""
        prev = [_fp("p1", {"alpha"}, "table", 0.0, [1, 0, 0, 0]),
                _fp("p2", {"beta"}, "table", 1.0, [0, 1, 0, 0])]
        curr = [_fp("c1", {"gamma"}, "list", 0.0, [0, 0, 1, 0]),
                _fp("c2", {"delta"}, "list", 0.5, [0, 0, 0, 1]),
                _fp("c3", {"epsilon"}, "list", 1.0, [0, 0, 0, 1])]

        result = match_revisions(prev, curr, threshold=0.6)

        assert result.matches == ()
        assert result.deprecated_sections == ("p1", "p2")
        assert result.new_sections == ("c1", "c2", "c3")
        assert len(result.ambiguous) == 2
        assert all(a.similarity < 0.6 for a in result.ambiguous)

    def test_renamed_and_moved(self, revision_2025):
        """Test renamed ids are matched by content and a new section is reported."""
        embedder = HashingEmbedding(dimension=32)
        curr = [
            _fp("s-intro", {"introduction", "context"}, "prose", 0.0,
                fingerprint_embedding(embedder, "introduction context")),
            _fp("s-budget", {"budget", "overview", "2026"}, "table", 0.25,
                fingerprint_embedding(embedder, "budget overview 2026")),
            _fp("s-hr", {"staffing", "plan"}, "table", 0.5,
                fingerprint_embedding(embedder, "staffing plan")),
            _fp("s-risks", {"risk", "register"}, "list", 0.75,
                fingerprint_embedding(embedder, "risk register")),
            _fp("s-outlook", {"outlook", "next", "steps"}, "prose", 1.0,
                fingerprint_embedding(embedder, "outlook next steps")),
        ]

        result = match_revisions(revision_2025, curr)

        assert result.id_map()["s-intro"] == "intro"
        assert result.id_map()["s-budget"] == "budget"
        assert result.id_map()["s-risks"] == "risks"
        assert result.id_map()["s-outlook"] == "outlook"
        assert result.new_sections == ("s-hr",)
        assert result.deprecated_sections == ()

    def test_tie_broken_by_prev_id(self):
        """Test equally similar candidates resolve to the smaller prev id."""
        prev = [_fp("b", {"x"}, position=0.5), _fp("a", {"x"}, position=0.5)]
        curr = [_fp("z", {"x"}, position=0.5)]

        result = match_revisions(prev, curr)

        assert [(m.prev_id, m.curr_id) for m in result.matches] == [("a", "z")]
        assert result.deprecated_sections == ("b",)

    def test_tie_broken_by_position(self):
        """Test equal totals prefer the smaller positional distance."""
        # a-z and b-z are equally similar once position is out of the score
        weights = ScorerWeights(title=0.75, structure=0.25, content=0.0, position=0.0, domain=0.0)
        prev = [_fp("a", {"x"}, position=0.0), _fp("b", {"x"}, position=0.9)]
        curr = [_fp("z", {"x"}, position=1.0)]

        result = match_revisions(prev, curr, weights=weights)

        assert [(m.prev_id, m.curr_id) for m in result.matches] == [("b", "z")]

    def test_input_order_irrelevant(self, revision_2025):
        """Test results do not depend on input order."""
        forward = match_revisions(revision_2025, revision_2025)
        backward = match_revisions(list(reversed(revision_2025)), list(reversed(revision_2025)))
        assert forward == backward

    def test_empty_sides(self, revision_2025):
        """Test one empty side."""
        result = match_revisions([], revision_2025)
        assert result.matches == ()
        assert len(result.new_sections) == 4

    def test_duplicate_ids_refused(self):
        """Test fingerprint ids must be unique per side."""
        with pytest.raises(ValueError):
            match_revisions([_fp("a", {"x"}), _fp("a", {"y"})], [])

    def test_invalid_threshold(self):
        """Test the threshold must lie in [0, 1]."""
        with pytest.raises(ConfigError):
            match_revisions([], [], threshold=1.5)

    def test_cancel_token(self, revision_2025):
        """Test a set cancel token aborts without a result."""
        cancel = threading.Event()
        cancel.set()
        with pytest.raises(ComputationTimeout):
            match_revisions(revision_2025, revision_2025, cancel=cancel)

    def test_timeout(self):
        """Test a tiny time bound raises ComputationTimeout."""
        rng = np.random.default_rng(7)
        prev = [_fp(f"p{i:03d}", {f"t{i}"}, position=i / 119, embedding=rng.random(16).tolist()) for i in range(120)]
        curr = [_fp(f"c{i:03d}", {f"t{i}"}, position=i / 119, embedding=rng.random(16).tolist()) for i in range(120)]

        with pytest.raises(ComputationTimeout):
            match_revisions(prev, curr, timeout=0.001)


class TestSeeding:
    """Tests for seeding the next revision's graph."""

    @pytest.fixture
    def prev_graph(self):
        return build_graph(
            [
                Section(id="intro", tier=GovernanceTier.GENERATED, content="Intro text",
                        title="Introduction", kind="prose"),
                Section(id="budget", tier=GovernanceTier.GENERATED, content="Budget 10",
                        title="Budget Overview", kind="table"),
            ],
            [("intro", "budget")],
            name="2025",
        )

    @pytest.fixture
    def curr_sections(self):
        return [
            Section(id="s1", tier=GovernanceTier.GENERATED, content="Intro text revised",
                    title="Introduction", kind="prose"),
            Section(id="s2", tier=GovernanceTier.GENERATED, content="Risk", title="Risk Register", kind="list"),
        ]

    def _match(self, prev_graph, curr_sections) -> MatchResult:
        prev = [Fingerprint.from_section(s, position=i) for i, s in enumerate(prev_graph.sections()[::-1])]
        curr = [Fingerprint.from_section(s, position=i) for i, s in enumerate(curr_sections)]
        return match_revisions(prev, curr)

    def test_match_result(self, prev_graph, curr_sections):
        """Test the low-similarity optimal pair is ambiguous, not forced."""
        result = self._match(prev_graph, curr_sections)

        assert [(m.prev_id, m.curr_id) for m in result.matches] == [("intro", "s1")]
        assert [(a.prev_id, a.curr_id) for a in result.ambiguous] == [("budget", "s2")]
        assert result.new_sections == ("s2",)
        assert result.deprecated_sections == ("budget",)

    def test_seed_next_graph(self, prev_graph, curr_sections):
        """Test matched sections keep id and history, new ones enter, deprecated ones leave."""
        result = self._match(prev_graph, curr_sections)
        graph = seed_next_graph(prev_graph, result, curr_sections, [Edge("intro", "s2")], name="2026")

        assert graph.ids() == ["intro", "s2"]
        assert graph.get("intro").content == "Intro text revised"
        assert graph.get("intro").version == 2
        assert graph.children("intro") == ["s2"]

    def test_retire_deprecated(self, prev_graph, curr_sections):
        """Test unmatched previous sections are marked, not removed."""
        result = self._match(prev_graph, curr_sections)
        retire_deprecated(prev_graph, result)

        assert prev_graph.get("budget").deprecated
        assert "budget" in prev_graph

    def test_missing_current_section(self, prev_graph, curr_sections):
        """Test the current sections must cover the match result."""
        result = self._match(prev_graph, curr_sections)
        with pytest.raises(UnknownSection):
            seed_next_graph(prev_graph, result, curr_sections[:1])
