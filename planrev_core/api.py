"""
Public entry points of the revision engine.

Thin functional facade over the graph, constraint, propagation and
matching layers. Every function takes its collaborators explicitly and
performs no I/O.

Example:
    graph = build_graph(sections, edges)
    constraints = compile_constraints(graph, VocabularyTermExtractor(terms))
    result = validate(graph, constraints, "budget_detail", proposed)
    plan = compute_ripple_plan(graph, constraints, ["mandate"], cycle=cycle)
    matches = match_revisions(prev_fps, curr_fps, threshold=0.6, timeout=5.0)
"""

from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Any, Iterable, List, Mapping, Optional, Sequence
import logging

from planrev_core import constraints as _constraints
from planrev_core import graph as _graph
from planrev_core import matcher as _matcher
from planrev_core import propagation as _propagation
from planrev_core.assignment import CancelToken
from planrev_core.constraints import ConstraintCompiler, ConstraintSet, ValidationResult
from planrev_core.graph import EdgeLike, GraphModel
from planrev_core.matcher import DEFAULT_THRESHOLD, DomainScorer, MatchResult, ScorerWeights
from planrev_core.models import Fingerprint, Section
from planrev_core.propagation import ChangeLike, RevisionCycle, UpdatePlan
from planrev_core.providers import SimilarityProvider, TermExtractor
from planrev_core.tolerance import ToleranceConfig

logger = logging.getLogger(__name__)


def build_graph(sections: Iterable[Section], edges: Iterable[EdgeLike] = (), name: str = "") -> GraphModel:
    """
    Build a Graph Model from sections and (source, target[, kind]) edges.

    Raises:
        CycleDetected, UnknownSection, DuplicateId, DuplicateEdge
    """
    return _graph.build_graph(sections, edges, name=name)


def compile_constraints(graph: GraphModel, term_extractor: Optional[TermExtractor] = None) -> ConstraintSet:
    """
    Compile the rule templates of every governance section.

    Raises:
        CompilationError
    """
    return _constraints.compile_constraints(graph, ConstraintCompiler(term_extractor))


def validate(
    graph: GraphModel,
    constraints: ConstraintSet,
    target_id: str,
    proposed_content: Any,
    scores: Optional[Mapping[str, float]] = None,
    similarity: Optional[SimilarityProvider] = None,
) -> ValidationResult:
    """Validate proposed content for a section against its bound constraints."""
    return _constraints.validate(graph, constraints, target_id, proposed_content, scores, similarity)


def compute_ripple_plan(
    graph: GraphModel,
    constraints: ConstraintSet,
    changed: Iterable[ChangeLike],
    tolerance: Optional[ToleranceConfig] = None,
    cycle: Optional[RevisionCycle] = None,
) -> UpdatePlan:
    """
    Plan the ripple effects of accepted changes.

    Pass the same RevisionCycle across calls of one revision cycle;
    already propagated changes then yield an empty plan.
    """
    return _propagation.compute_ripple_plan(graph, constraints, changed, tolerance, cycle)


def match_revisions(
    prev: Iterable[Fingerprint],
    curr: Iterable[Fingerprint],
    weights: Optional[ScorerWeights] = None,
    threshold: float = DEFAULT_THRESHOLD,
    timeout: Optional[float] = None,
    cancel: Optional[CancelToken] = None,
    domain_scorer: Optional[DomainScorer] = None,
) -> MatchResult:
    """
    Align the sections of two revisions.

    Raises:
        ComputationTimeout: on timeout or cancellation
    """
    return _matcher.match_revisions(prev, curr, weights, threshold, timeout, cancel, domain_scorer)


# ---------------------------------------------------------------------------
# Batch planning
# ---------------------------------------------------------------------------

@dataclass
class PlanJob:
    """One independent document to plan."""
    graph: GraphModel
    constraints: ConstraintSet
    changes: Sequence[ChangeLike]
    tolerance: Optional[ToleranceConfig] = None
    cycle: RevisionCycle = field(default_factory=RevisionCycle)


def compute_plans_parallel(jobs: Sequence[PlanJob], max_workers: int = 4) -> List[UpdatePlan]:
    """
    Plan independent documents concurrently.

    Jobs must not share a graph or a cycle. Plans are returned in job
    order; the first failure is re-raised.
    """
    if not jobs:
        return []
    plans: List[Optional[UpdatePlan]] = [None] * len(jobs)
    logger.info(f"Planning {len(jobs)} documents with max {max_workers} workers")

    with ThreadPoolExecutor(max_workers=max(1, min(max_workers, len(jobs)))) as executor:
        futures = {
            executor.submit(compute_ripple_plan, job.graph, job.constraints, job.changes,
                            job.tolerance, job.cycle): index
            for index, job in enumerate(jobs)
        }
        for future in as_completed(futures):
            index = futures[future]
            try:
                plans[index] = future.result()
            except Exception as e:
                logger.error(f"Planning job {index} ('{jobs[index].graph.name}') failed: {e}")
                raise
    return plans
