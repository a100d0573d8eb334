"""
Ripple Propagator: what must be regenerated, reviewed or cross-checked
after a set of sections changed, and in which order.

The propagator only plans. The caller regenerates each forward entry
(respecting plan.ready()), then hands the candidate back through
accept_regenerated(), which validates it against the constraint set.
Hard failures block the entry and hold everything downstream of it, so
invalid content never cascades.

Idempotence: a RevisionCycle remembers which change versions were
already propagated, and each section remembers the ancestor versions it
was last regenerated against (Section.basis). Planning the same change
twice therefore yields an empty forward impact the second time.

Example:
    propagator = RipplePropagator(ToleranceConfig(backward=numeric_delta_exceeds(10)))
    plan = propagator.compute_plan(graph, constraints, [Change("mandate", old_text)])
    while plan.ready():
        entry = plan.ready()[0]
        plan, result = propagator.accept_regenerated(
            plan, graph, constraints, entry.section_id, regenerate(entry))
"""

from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Set, Tuple, Union
import json
import logging

from planrev_core.constraints import ConstraintSet, ValidationResult, validate
from planrev_core.errors import PlanStateError
from planrev_core.graph import GraphModel
from planrev_core.ledger import RevisionLedger
from planrev_core.models import GOVERNANCE_TIERS, GovernanceTier
from planrev_core.providers import SimilarityProvider
from planrev_core.tolerance import ChangeContext, ToleranceConfig

logger = logging.getLogger(__name__)


class PlanAction(str, Enum):
    """What the caller must do with a plan entry."""
    NEEDS_REGENERATION = "needsRegeneration"
    NEEDS_REVIEW = "needsReview"
    BACKWARD_REVIEW = "backwardReview"
    LATERAL_CHECK = "lateralCheck"


class EntryStatus(str, Enum):
    """Progress of a forward entry."""
    PENDING = "pending"
    SETTLED = "settled"
    BLOCKED = "blocked"     # failed hard validation
    HELD = "held"           # downstream of a blocked entry


@dataclass(frozen=True)
class Change:
    """An accepted edit. previous_content feeds tolerance predicates."""
    section_id: str
    previous_content: Any = None


ChangeLike = Union[Change, str]


# ---------------------------------------------------------------------------
# Revision cycle (idempotence guard)
# ---------------------------------------------------------------------------

class RevisionCycle:
    """
    Per-cycle memory of propagated change versions.

    Single writer: share a cycle only between sequential planning calls.
    """

    def __init__(self, cycle_id: str = "cycle-1", acknowledged: Optional[Mapping[str, int]] = None):
        self.cycle_id = cycle_id
        self._acknowledged: Dict[str, int] = dict(acknowledged or {})

    def is_acknowledged(self, section_id: str, version: int) -> bool:
        return self._acknowledged.get(section_id, 0) >= version

    def acknowledge(self, section_id: str, version: int) -> None:
        self._acknowledged[section_id] = max(version, self._acknowledged.get(section_id, 0))

    def acknowledged(self) -> Dict[str, int]:
        return dict(sorted(self._acknowledged.items()))

    def to_dict(self) -> Dict[str, Any]:
        return {"cycle_id": self.cycle_id, "acknowledged": self.acknowledged()}

    @classmethod
    def from_dict(cls, d: Mapping[str, Any]) -> "RevisionCycle":
        return cls(d.get("cycle_id", "cycle-1"), d.get("acknowledged", {}))


# ---------------------------------------------------------------------------
# Plan
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class PlanEntry:
    """One section requiring action."""
    section_id: str
    tier: GovernanceTier
    action: PlanAction
    triggered_by: Tuple[str, ...] = ()
    upstream: Tuple[str, ...] = ()      # forward entries that must settle first
    status: EntryStatus = EntryStatus.PENDING
    detail: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "section_id": self.section_id,
            "tier": self.tier.value,
            "action": self.action.value,
            "triggered_by": list(self.triggered_by),
            "upstream": list(self.upstream),
            "status": self.status.value,
            "detail": self.detail,
        }


@dataclass(frozen=True)
class UpdatePlan:
    """
    Result of ripple planning.

    forward_impact is topologically ordered; order lists the same ids.
    backward_review and lateral_check are for human attention only.
    """
    changed: Tuple[str, ...] = ()
    skipped: Tuple[str, ...] = ()       # changes already propagated this cycle
    forward_impact: Tuple[PlanEntry, ...] = ()
    backward_review: Tuple[PlanEntry, ...] = ()
    lateral_check: Tuple[PlanEntry, ...] = ()

    @property
    def order(self) -> Tuple[str, ...]:
        return tuple(e.section_id for e in self.forward_impact)

    @property
    def is_empty(self) -> bool:
        return not (self.forward_impact or self.backward_review or self.lateral_check)

    @property
    def is_complete(self) -> bool:
        """Every forward entry settled."""
        return all(e.status == EntryStatus.SETTLED for e in self.forward_impact)

    def entry(self, section_id: str) -> PlanEntry:
        for e in self.forward_impact:
            if e.section_id == section_id:
                return e
        raise PlanStateError(f"Section '{section_id}' is not in the forward impact of this plan")

    def with_status(self, section_id: str, status: EntryStatus, detail: str = "") -> "UpdatePlan":
        """Copy of the plan with one entry's status changed and held flags recomputed."""
        self.entry(section_id)
        explicit = {
            e.section_id: (status, detail) if e.section_id == section_id else (e.status, e.detail)
            for e in self.forward_impact
        }
        return replace(self, forward_impact=_restatus(self.forward_impact, explicit))

    def blocked(self) -> List[PlanEntry]:
        return [e for e in self.forward_impact if e.status == EntryStatus.BLOCKED]

    def held(self) -> List[PlanEntry]:
        return [e for e in self.forward_impact if e.status == EntryStatus.HELD]

    def ready(self) -> List[PlanEntry]:
        """Pending forward entries whose upstream entries have all settled, in order."""
        settled = {e.section_id for e in self.forward_impact if e.status == EntryStatus.SETTLED}
        return [
            e for e in self.forward_impact
            if e.status == EntryStatus.PENDING and all(u in settled for u in e.upstream)
        ]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "changed": list(self.changed),
            "skipped": list(self.skipped),
            "order": list(self.order),
            "forward_impact": [e.to_dict() for e in self.forward_impact],
            "backward_review": [e.to_dict() for e in self.backward_review],
            "lateral_check": [e.to_dict() for e in self.lateral_check],
        }

    def to_json(self) -> str:
        """Canonical JSON (byte-identical for identical plans)."""
        return json.dumps(self.to_dict(), sort_keys=True, separators=(",", ":"))


def _restatus(
    entries: Sequence[PlanEntry],
    explicit: Mapping[str, Tuple[EntryStatus, str]],
) -> Tuple[PlanEntry, ...]:
    """Apply explicit statuses; pending/held entries downstream of a block become held."""
    result = []
    stopped: Set[str] = set()
    for e in entries:
        status, detail = explicit[e.section_id]
        if status in (EntryStatus.PENDING, EntryStatus.HELD):
            blockers = [u for u in e.upstream if u in stopped]
            if blockers:
                status, detail = EntryStatus.HELD, f"held by {', '.join(blockers)}"
            else:
                status, detail = EntryStatus.PENDING, ""
        if status in (EntryStatus.BLOCKED, EntryStatus.HELD):
            stopped.add(e.section_id)
        result.append(replace(e, status=status, detail=detail))
    return tuple(result)


# ---------------------------------------------------------------------------
# Propagator
# ---------------------------------------------------------------------------

class RipplePropagator:
    """
    Plans ripple effects of accepted changes.

    Args:
        tolerance: Caller predicates for backward review and lateral checks
        cycle: Idempotence memory; a fresh cycle is created when omitted
        ledger: Optional ledger recording plans, acceptances and blocks
    """

    def __init__(
        self,
        tolerance: Optional[ToleranceConfig] = None,
        cycle: Optional[RevisionCycle] = None,
        ledger: Optional[RevisionLedger] = None,
    ):
        self.tolerance = tolerance or ToleranceConfig()
        self.cycle = cycle if cycle is not None else RevisionCycle()
        self.ledger = ledger

    # ------------------------------------------------------------------
    # Planning
    # ------------------------------------------------------------------

    def compute_plan(
        self,
        graph: GraphModel,
        constraints: ConstraintSet,
        changes: Iterable[ChangeLike],
    ) -> UpdatePlan:
        """
        Compute the update plan for a set of accepted changes.

        Args:
            graph: Graph holding the changed sections' new content
            constraints: Constraint set (carried for the acceptance step)
            changes: Change records or bare section ids

        Returns:
            UpdatePlan

        Raises:
            UnknownSection: if a changed id is not in the graph
        """
        by_id: Dict[str, Change] = {}
        for change in changes:
            if isinstance(change, str):
                change = Change(change)
            graph.get(change.section_id)
            by_id.setdefault(change.section_id, change)

        fresh: List[str] = []
        skipped: List[str] = []
        for sid in sorted(by_id):
            if self.cycle.is_acknowledged(sid, graph.get(sid).version):
                skipped.append(sid)
            else:
                fresh.append(sid)
        if skipped:
            logger.debug(f"Already propagated this cycle: {', '.join(skipped)}")

        forward = self._forward(graph, fresh)
        forward_ids = {e.section_id for e in forward}
        backward = self._backward(graph, fresh, by_id)
        lateral = self._lateral(graph, fresh, by_id, forward_ids)

        for sid in fresh:
            self.cycle.acknowledge(sid, graph.get(sid).version)

        plan = UpdatePlan(
            changed=tuple(fresh),
            skipped=tuple(skipped),
            forward_impact=forward,
            backward_review=backward,
            lateral_check=lateral,
        )
        logger.info(f"Ripple plan for {len(fresh)} change(s): {len(forward)} forward, "
                    f"{len(backward)} backward, {len(lateral)} lateral")
        if self.ledger is not None and fresh:
            self.ledger.record("plan", detail=f"{len(forward)} forward", data=plan.to_dict())
        return plan

    def _forward(self, graph: GraphModel, fresh: Sequence[str]) -> Tuple[PlanEntry, ...]:
        changed = set(fresh)
        triggers: Dict[str, List[str]] = {}
        for sid in fresh:
            for desc in graph.descendants_of(sid):
                if desc not in changed:
                    triggers.setdefault(desc, []).append(sid)

        candidates = []
        for sid, sources in triggers.items():
            section = graph.get(sid)
            if section.deprecated:
                continue
            # already regenerated against the triggering versions
            if all(section.basis.get(src, 0) >= graph.get(src).version for src in sources):
                continue
            candidates.append(sid)

        ordered = graph.topological_order(candidates)
        entries = []
        for sid in ordered:
            section = graph.get(sid)
            action = (PlanAction.NEEDS_REGENERATION if section.tier == GovernanceTier.GENERATED
                      else PlanAction.NEEDS_REVIEW)
            ancestors = graph.ancestors_of(sid)
            upstream = tuple(a for a in ordered if a in ancestors)
            entries.append(PlanEntry(
                section_id=sid,
                tier=section.tier,
                action=action,
                triggered_by=tuple(sorted(triggers[sid])),
                upstream=upstream,
            ))
        return tuple(entries)

    def _backward(
        self,
        graph: GraphModel,
        fresh: Sequence[str],
        by_id: Mapping[str, Change],
    ) -> Tuple[PlanEntry, ...]:
        predicate = self.tolerance.backward
        if predicate is None:
            return ()
        changed = set(fresh)
        flagged: Dict[str, List[str]] = {}
        for sid in fresh:
            section = graph.get(sid)
            for anc in graph.ancestors_of(sid):
                related = graph.get(anc)
                if anc in changed or related.deprecated or related.tier not in GOVERNANCE_TIERS:
                    continue
                if predicate(ChangeContext(section, related, by_id[sid].previous_content)):
                    flagged.setdefault(anc, []).append(sid)
        return tuple(
            PlanEntry(anc, graph.get(anc).tier, PlanAction.BACKWARD_REVIEW, tuple(sorted(flagged[anc])))
            for anc in graph.topological_order(flagged)
        )

    def _lateral(
        self,
        graph: GraphModel,
        fresh: Sequence[str],
        by_id: Mapping[str, Change],
        forward_ids: Set[str],
    ) -> Tuple[PlanEntry, ...]:
        predicate = self.tolerance.lateral
        changed = set(fresh)
        flagged: Dict[str, List[str]] = {}
        for sid in fresh:
            section = graph.get(sid)
            for sib in graph.siblings_of(sid, self.tolerance.lateral_distance):
                related = graph.get(sib)
                if sib in changed or sib in forward_ids or related.deprecated or related.tier != section.tier:
                    continue
                if predicate is None or predicate(ChangeContext(section, related, by_id[sid].previous_content)):
                    flagged.setdefault(sib, []).append(sid)
        return tuple(
            PlanEntry(sib, graph.get(sib).tier, PlanAction.LATERAL_CHECK, tuple(sorted(flagged[sib])))
            for sib in graph.topological_order(flagged)
        )

    # ------------------------------------------------------------------
    # Acceptance loop
    # ------------------------------------------------------------------

    def accept_regenerated(
        self,
        plan: UpdatePlan,
        graph: GraphModel,
        constraints: ConstraintSet,
        section_id: str,
        content: Any,
        scores: Optional[Mapping[str, float]] = None,
        similarity: Optional[SimilarityProvider] = None,
    ) -> Tuple[UpdatePlan, ValidationResult]:
        """
        Validate regenerated content for a forward entry and settle or block it.

        Accepted content is proposed into the graph with its ancestor basis
        recorded. A hard failure blocks the entry and holds its downstream
        entries; the graph is left untouched. A blocked entry may be retried.

        Raises:
            PlanStateError: if the entry is not ready (upstream unsettled,
                already settled, or held)
        """
        entry = plan.entry(section_id)
        if entry.status == EntryStatus.SETTLED:
            raise PlanStateError(f"Section '{section_id}' is already settled")
        if entry.status == EntryStatus.HELD:
            raise PlanStateError(f"Section '{section_id}' is held: {entry.detail}")
        unsettled = [u for u in entry.upstream if plan.entry(u).status != EntryStatus.SETTLED]
        if unsettled:
            raise PlanStateError(f"Section '{section_id}' must wait for: {', '.join(unsettled)}")

        result = validate(graph, constraints, section_id, content, scores, similarity)
        if not result.accepted:
            detail = "; ".join(f"{o.constraint_id}: {o.detail}" for o in result.hard_failures)
            logger.warning(f"Blocked regeneration of {section_id}: {detail}")
            if self.ledger is not None:
                self.ledger.record("blocked", section_id, graph.get(section_id).version,
                                   detail=detail, data=result.to_dict())
            return plan.with_status(section_id, EntryStatus.BLOCKED, detail), result

        section = graph.propose_content(section_id, content, basis=self._basis(graph, section_id))
        # regenerated content is itself propagated by this plan
        self.cycle.acknowledge(section_id, section.version)
        if self.ledger is not None:
            self.ledger.record("accepted", section_id, section.version, section.content_hash,
                               data={"soft_failures": [o.to_dict() for o in result.soft_failures]})
        logger.debug(f"Settled {section_id} at v{section.version}")
        return plan.with_status(section_id, EntryStatus.SETTLED), result

    def acknowledge_review(self, plan: UpdatePlan, graph: GraphModel, section_id: str) -> UpdatePlan:
        """Settle a needsReview entry whose content the reviewer kept unchanged."""
        entry = plan.entry(section_id)
        if entry.action != PlanAction.NEEDS_REVIEW:
            raise PlanStateError(f"Section '{section_id}' needs regeneration, not review")
        unsettled = [u for u in entry.upstream if plan.entry(u).status != EntryStatus.SETTLED]
        if unsettled:
            raise PlanStateError(f"Section '{section_id}' must wait for: {', '.join(unsettled)}")
        graph.record_basis(section_id, self._basis(graph, section_id))
        if self.ledger is not None:
            self.ledger.record("reviewed", section_id, graph.get(section_id).version,
                               graph.get(section_id).content_hash)
        return plan.with_status(section_id, EntryStatus.SETTLED)

    @staticmethod
    def _basis(graph: GraphModel, section_id: str) -> Dict[str, int]:
        return {a: graph.get(a).version for a in sorted(graph.ancestors_of(section_id))}


def compute_ripple_plan(
    graph: GraphModel,
    constraints: ConstraintSet,
    changes: Iterable[ChangeLike],
    tolerance: Optional[ToleranceConfig] = None,
    cycle: Optional[RevisionCycle] = None,
) -> UpdatePlan:
    """Functional entry point; pass the same cycle across calls for idempotence."""
    return RipplePropagator(tolerance, cycle).compute_plan(graph, constraints, changes)
