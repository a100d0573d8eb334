"""
Revision Matcher: align the sections of two document revisions.

Each (prev, curr) pair is scored as a weighted sum of normalized
components: title token overlap, structural-type equality, embedding
cosine, relative-position overlap and an optional domain-specific
scorer. The complete similarity matrix is solved for the assignment of
maximum total similarity (Kuhn-Munkres); assigned pairs below the
acceptance threshold are reported as ambiguous, never forced.

Tie-breaking between equally similar assignments is deterministic: the
smaller total positional distance wins, then the smaller prev ids. It
is encoded as an exact integer cost so the solver never depends on
floating-point noise. Similarities are compared at 1e-6 resolution.

Example:
    result = match_revisions(last_year, this_year, threshold=0.6, timeout=5.0)
    next_graph = seed_next_graph(prev_graph, result, draft_sections, new_edges)
"""

from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple
import logging
import time

import numpy as np

from planrev_core.assignment import CancelToken, run_bounded, solve_assignment
from planrev_core.errors import ComputationTimeout, ConfigError, UnknownSection
from planrev_core.graph import GraphModel
from planrev_core.models import Edge, Fingerprint, Section

logger = logging.getLogger(__name__)

DEFAULT_THRESHOLD = 0.6
SIMILARITY_QUANTUM = 10 ** 6

DomainScorer = Callable[[Fingerprint, Fingerprint], float]

COMPONENTS = ("title", "structure", "content", "position", "domain")


@dataclass(frozen=True)
class ScorerWeights:
    """Weights of the similarity components (must sum to 1)."""
    title: float = 0.35
    structure: float = 0.15
    content: float = 0.25
    position: float = 0.10
    domain: float = 0.15

    def __post_init__(self):
        values = [getattr(self, name) for name in COMPONENTS]
        if any(v < 0 for v in values):
            raise ConfigError(f"Scorer weights must be non-negative: {values}")
        if abs(sum(values) - 1.0) > 1e-9:
            raise ConfigError(f"Scorer weights must sum to 1, got {sum(values):.6f}")

    def to_dict(self) -> Dict[str, float]:
        return {name: getattr(self, name) for name in COMPONENTS}

    @classmethod
    def from_dict(cls, d: Mapping[str, float]) -> "ScorerWeights":
        return cls(**{name: float(d[name]) for name in COMPONENTS if name in d})


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class MatchedPair:
    prev_id: str
    curr_id: str
    similarity: float
    components: Dict[str, float] = field(default_factory=dict, compare=False)

    def to_dict(self) -> Dict[str, object]:
        return {
            "prev_id": self.prev_id,
            "curr_id": self.curr_id,
            "similarity": round(self.similarity, 6),
            "components": {k: round(v, 6) for k, v in sorted(self.components.items())},
        }


@dataclass(frozen=True)
class AmbiguousMatch:
    """An optimal pairing rejected for falling below the acceptance threshold."""
    prev_id: str
    curr_id: str
    similarity: float

    def to_dict(self) -> Dict[str, object]:
        return {"prev_id": self.prev_id, "curr_id": self.curr_id, "similarity": round(self.similarity, 6)}


@dataclass(frozen=True)
class MatchResult:
    matches: Tuple[MatchedPair, ...] = ()
    new_sections: Tuple[str, ...] = ()
    deprecated_sections: Tuple[str, ...] = ()
    ambiguous: Tuple[AmbiguousMatch, ...] = ()
    threshold: float = DEFAULT_THRESHOLD

    def id_map(self) -> Dict[str, str]:
        """curr id -> id in the next revision (matched sections keep the prev id)."""
        mapping = {m.curr_id: m.prev_id for m in self.matches}
        mapping.update({cid: cid for cid in self.new_sections})
        return mapping

    def to_dict(self) -> Dict[str, object]:
        return {
            "threshold": self.threshold,
            "matches": [m.to_dict() for m in self.matches],
            "new_sections": list(self.new_sections),
            "deprecated_sections": list(self.deprecated_sections),
            "ambiguous": [a.to_dict() for a in self.ambiguous],
        }


# ---------------------------------------------------------------------------
# Scoring
# ---------------------------------------------------------------------------

def _cosine(a: Sequence[float], b: Sequence[float]) -> Optional[float]:
    if not len(a) or not len(b):
        return None
    va, vb = np.asarray(a, dtype=np.float64), np.asarray(b, dtype=np.float64)
    if va.shape != vb.shape:
        raise ValueError(f"Embedding dimensions differ: {va.shape} vs {vb.shape}")
    na, nb = np.linalg.norm(va), np.linalg.norm(vb)
    if na == 0 or nb == 0:
        return None
    if np.array_equal(va, vb):
        return 1.0
    return float(min(1.0, max(0.0, np.dot(va, vb) / (na * nb))))


def component_scores(
    prev: Fingerprint,
    curr: Fingerprint,
    domain_scorer: Optional[DomainScorer] = None,
) -> Dict[str, float]:
    """
    Normalized [0, 1] components available for a pair.

    Components without evidence on both sides (no titles, no type tags,
    a missing embedding, no domain scorer) are omitted.
    """
    scores: Dict[str, float] = {}
    if prev.tokens or curr.tokens:
        union = prev.tokens | curr.tokens
        scores["title"] = len(prev.tokens & curr.tokens) / len(union)
    if prev.structural_type or curr.structural_type:
        scores["structure"] = 1.0 if prev.structural_type == curr.structural_type else 0.0
    cosine = _cosine(prev.embedding, curr.embedding)
    if cosine is not None:
        scores["content"] = cosine
    scores["position"] = 1.0 - abs(prev.position - curr.position)
    if domain_scorer is not None:
        scores["domain"] = min(1.0, max(0.0, float(domain_scorer(prev, curr))))
    return scores


def pair_similarity(
    prev: Fingerprint,
    curr: Fingerprint,
    weights: Optional[ScorerWeights] = None,
    domain_scorer: Optional[DomainScorer] = None,
) -> Tuple[float, Dict[str, float]]:
    """
    Weighted similarity of a pair, renormalized over the available components.

    Returns:
        (similarity in [0, 1], component scores)
    """
    weights = weights or ScorerWeights()
    scores = component_scores(prev, curr, domain_scorer)
    total_weight = sum(getattr(weights, name) for name in scores)
    if total_weight <= 0:
        return 0.0, scores
    weighted = sum(getattr(weights, name) * value for name, value in scores.items())
    return min(1.0, weighted / total_weight), scores


def similarity_matrix(
    prev: Sequence[Fingerprint],
    curr: Sequence[Fingerprint],
    weights: Optional[ScorerWeights] = None,
    domain_scorer: Optional[DomainScorer] = None,
    cancel: Optional[CancelToken] = None,
) -> np.ndarray:
    """Complete len(prev) x len(curr) similarity matrix."""
    matrix = np.zeros((len(prev), len(curr)), dtype=np.float64)
    for i, p in enumerate(prev):
        if cancel is not None and cancel.is_set():
            raise ComputationTimeout("Similarity computation cancelled")
        for j, c in enumerate(curr):
            matrix[i, j] = pair_similarity(p, c, weights, domain_scorer)[0]
    return matrix


def tie_broken_costs(
    similarity: np.ndarray,
    prev: Sequence[Fingerprint],
    curr: Sequence[Fingerprint],
) -> List[List[int]]:
    """
    Exact integer costs ordering assignments lexicographically by
    (total similarity desc, total positional distance asc, prev rank asc).

    Rows are expected sorted by prev id, so the row index is the prev rank.
    """
    n, m = similarity.shape
    k = min(n, m)
    rank_bound = k * n + 1
    position_bound = rank_bound * (k * SIMILARITY_QUANTUM + 1)
    costs = []
    for i in range(n):
        row = []
        for j in range(m):
            sim_q = int(round(float(similarity[i, j]) * SIMILARITY_QUANTUM))
            pos_q = int(round(abs(prev[i].position - curr[j].position) * SIMILARITY_QUANTUM))
            row.append(-sim_q * position_bound + pos_q * rank_bound + i)
        costs.append(row)
    return costs


# ---------------------------------------------------------------------------
# Matching
# ---------------------------------------------------------------------------

def _check_ids(fingerprints: Sequence[Fingerprint], side: str) -> List[Fingerprint]:
    ordered = sorted(fingerprints, key=lambda f: f.section_id)
    for a, b in zip(ordered, ordered[1:]):
        if a.section_id == b.section_id:
            raise ValueError(f"Duplicate {side} fingerprint id '{a.section_id}'")
    return ordered


def match_revisions(
    prev_sections: Iterable[Fingerprint],
    curr_sections: Iterable[Fingerprint],
    weights: Optional[ScorerWeights] = None,
    threshold: float = DEFAULT_THRESHOLD,
    timeout: Optional[float] = None,
    cancel: Optional[CancelToken] = None,
    domain_scorer: Optional[DomainScorer] = None,
) -> MatchResult:
    """
    Align two revisions' sections.

    Args:
        prev_sections: Fingerprints of the previous revision
        curr_sections: Fingerprints of the new revision
        weights: Component weights (defaults 0.35/0.15/0.25/0.10/0.15)
        threshold: Minimum similarity of an accepted pair
        timeout: Seconds allowed for the computation (None = unbounded)
        cancel: Event that aborts the computation when set
        domain_scorer: Pluggable scorer for the domain slot

    Returns:
        MatchResult

    Raises:
        ComputationTimeout: on timeout or cancellation (no partial result)
    """
    if not 0.0 <= threshold <= 1.0:
        raise ConfigError(f"Threshold must be within [0, 1], got {threshold}")
    prev = _check_ids(list(prev_sections), "prev")
    curr = _check_ids(list(curr_sections), "curr")

    def compute(token: CancelToken) -> MatchResult:
        started = time.monotonic()
        sims = similarity_matrix(prev, curr, weights, domain_scorer, token)
        pairs = solve_assignment(tie_broken_costs(sims, prev, curr), cancel=token)

        matches: List[MatchedPair] = []
        ambiguous: List[AmbiguousMatch] = []
        for i, j in pairs:
            score = float(sims[i, j])
            p, c = prev[i], curr[j]
            if score >= threshold:
                components = pair_similarity(p, c, weights, domain_scorer)[1]
                matches.append(MatchedPair(p.section_id, c.section_id, score, components))
            else:
                ambiguous.append(AmbiguousMatch(p.section_id, c.section_id, score))

        matched_prev = {m.prev_id for m in matches}
        matched_curr = {m.curr_id for m in matches}
        result = MatchResult(
            matches=tuple(matches),
            new_sections=tuple(c.section_id for c in curr if c.section_id not in matched_curr),
            deprecated_sections=tuple(p.section_id for p in prev if p.section_id not in matched_prev),
            ambiguous=tuple(ambiguous),
            threshold=threshold,
        )
        logger.info(f"Matched {len(prev)} -> {len(curr)} sections: {len(matches)} pairs, "
                    f"{len(result.new_sections)} new, {len(result.deprecated_sections)} deprecated, "
                    f"{len(ambiguous)} ambiguous ({time.monotonic() - started:.3f}s)")
        return result

    return run_bounded(compute, timeout, cancel)


# ---------------------------------------------------------------------------
# Seeding the next revision
# ---------------------------------------------------------------------------

def seed_next_graph(
    prev_graph: GraphModel,
    result: MatchResult,
    curr_sections: Iterable[Section],
    new_edges: Iterable[Edge] = (),
    name: str = "",
) -> GraphModel:
    """
    Build the next revision's Graph Model from a match result.

    Matched sections keep their previous id, history (version continues,
    bumped when content changed) and the edges between matched sections.
    New sections enter under their own ids and only receive the edges
    declared in new_edges (expressed in next-revision ids). Deprecated
    sections are left out of the active graph.
    """
    curr_by_id = {s.id: s for s in curr_sections}
    for cid in result.id_map():
        if cid not in curr_by_id:
            raise UnknownSection(cid)

    graph = GraphModel(name=name)
    for m in result.matches:
        old = prev_graph.get(m.prev_id)
        carried = curr_by_id[m.curr_id].clone()
        carried.id = m.prev_id
        carried.basis = dict(old.basis)
        if not carried.rules and not carried.constraints:
            carried.rules = [r for r in old.rules]
            carried.constraints = list(old.constraints)
        carried.version = old.version + (0 if carried.content_hash == old.content_hash else 1)
        carried.deprecated = False
        graph.add_section(carried)
    for cid in result.new_sections:
        graph.add_section(curr_by_id[cid])

    carried_ids = {m.prev_id for m in result.matches}
    for edge in prev_graph.edges():
        if edge.source in carried_ids and edge.target in carried_ids:
            graph.add_edge(edge.source, edge.target, edge.kind)
    for edge in new_edges:
        graph.add_edge(edge.source, edge.target, edge.kind)

    logger.info(f"Seeded next revision '{name}': {len(carried_ids)} carried, "
                f"{len(result.new_sections)} new, {len(result.deprecated_sections)} retired")
    return graph


def retire_deprecated(prev_graph: GraphModel, result: MatchResult) -> None:
    """Mark the previous revision's unmatched sections deprecated (kept for history)."""
    for sid in result.deprecated_sections:
        prev_graph.deprecate(sid)
