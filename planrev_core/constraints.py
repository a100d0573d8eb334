"""
Constraint Validator: compile governance rules and check proposed content.

Governance sections (Locked, Reviewable) declare rule templates. The
compiler instantiates them against the section's current content into
Constraint values, grouped in a versioned ConstraintSet. Validation is
a pure function of (graph, constraint set, target, proposed content,
similarity scores): it never caches, never mutates and never computes
similarity itself.

Example:
    constraints = compile_constraints(graph, ConstraintCompiler(extractor))
    result = validate(graph, constraints, "budget_detail", proposed)
    if not result.accepted:
        for outcome in result.hard_failures:
            print(outcome.constraint_id, outcome.detail)
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional, Tuple
import logging
import re

from planrev_core.errors import CompilationError, UnknownSection
from planrev_core.graph import GraphModel
from planrev_core.models import (
    INHERITING_KINDS,
    Constraint,
    ConstraintKind,
    RuleTemplate,
    Section,
    Severity,
    canonical_payload,
)
from planrev_core.providers import SimilarityProvider, TermExtractor, term_present

logger = logging.getLogger(__name__)

ALL_TARGETS = ("*", "")

_MULTIPLIERS = {
    "k": 1e3, "thousand": 1e3,
    "m": 1e6, "mm": 1e6, "million": 1e6,
    "b": 1e9, "bn": 1e9, "billion": 1e9,
}

_NUMBER_RE = re.compile(
    r"(?<![\w.])(-?\d{1,3}(?:,\d{3})+(?:\.\d+)?|-?\d+(?:\.\d+)?)"
    r"\s*(thousand|million|billion|bn|mm|k|m|b)?(?![\w])",
    re.IGNORECASE,
)


# ---------------------------------------------------------------------------
# Payload helpers
# ---------------------------------------------------------------------------

def extract_numbers(text: str, label: Optional[str] = None) -> List[float]:
    """
    Numbers mentioned in free text, with thousands separators and
    magnitude words ("60,000,000", "60M", "1.5 billion").

    With a label, only lines mentioning the label are scanned.
    """
    if label:
        text = "\n".join(line for line in text.splitlines() if term_present(label, line))
    values = []
    for m in _NUMBER_RE.finditer(text):
        value = float(m.group(1).replace(",", ""))
        suffix = (m.group(2) or "").lower()
        values.append(value * _MULTIPLIERS.get(suffix, 1.0))
    return values


def payload_numbers(content: Any, parameters: Mapping[str, Any]) -> List[float]:
    """Numeric values a ceiling applies to, according to payload shape."""
    if isinstance(content, bool):
        return []
    if isinstance(content, (int, float)):
        return [float(content)]
    if isinstance(content, Mapping):
        key = parameters.get("field")
        if key:
            if key not in content:
                return []
            return payload_numbers(content[key], {})
        values: List[float] = []
        for v in content.values():
            values.extend(payload_numbers(v, {}))
        return values
    if isinstance(content, (list, tuple)):
        values = []
        for v in content:
            values.extend(payload_numbers(v, parameters))
        return values
    return extract_numbers(str(content), parameters.get("label"))


def _field_values(content: Any, key: str) -> Optional[List[str]]:
    if not isinstance(content, Mapping) or key not in content:
        return None
    value = content[key]
    if isinstance(value, (list, tuple, set)):
        return [str(v) for v in value]
    return [str(value)]


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ConstraintOutcome:
    """Evaluation of one constraint. An unsatisfied outcome is a violation."""
    constraint_id: str
    kind: ConstraintKind
    severity: Severity
    satisfied: bool
    detail: str = ""

    @property
    def is_violation(self) -> bool:
        return not self.satisfied

    def to_dict(self) -> Dict[str, Any]:
        return {
            "constraint_id": self.constraint_id,
            "kind": self.kind.value,
            "severity": self.severity.value,
            "satisfied": self.satisfied,
            "detail": self.detail,
        }


@dataclass(frozen=True)
class ValidationResult:
    """
    All constraint outcomes for one proposal.

    accepted is true iff no hard constraint is unsatisfied; soft
    failures are advisory.
    """
    target_id: str
    constraint_set_version: int
    outcomes: Tuple[ConstraintOutcome, ...] = ()

    @property
    def accepted(self) -> bool:
        return not self.hard_failures

    @property
    def hard_failures(self) -> List[ConstraintOutcome]:
        return [o for o in self.outcomes if o.is_violation and o.severity == Severity.HARD]

    @property
    def soft_failures(self) -> List[ConstraintOutcome]:
        return [o for o in self.outcomes if o.is_violation and o.severity == Severity.SOFT]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "target_id": self.target_id,
            "constraint_set_version": self.constraint_set_version,
            "accepted": self.accepted,
            "outcomes": [o.to_dict() for o in self.outcomes],
        }


# ---------------------------------------------------------------------------
# Constraint Set
# ---------------------------------------------------------------------------

class ConstraintSet:
    """
    Versioned, immutable collection of compiled constraints.

    Constraints are grouped by governance source together with the source
    version they were compiled from. Recompilation is explicit: callers
    compare versions with stale_sources() and call refresh().
    """

    def __init__(
        self,
        sources: Optional[Mapping[str, Tuple[int, Iterable[Constraint]]]] = None,
        version: int = 1,
    ):
        self._version = version
        self._sources: Dict[str, Tuple[int, Tuple[Constraint, ...]]] = {}
        self._index: Dict[str, Constraint] = {}
        for source_id in sorted(sources or {}):
            source_version, items = (sources or {})[source_id]
            ordered = tuple(sorted(items, key=lambda c: c.id))
            self._sources[source_id] = (source_version, ordered)
            for c in ordered:
                self._index[c.id] = c

    @property
    def version(self) -> int:
        return self._version

    def __len__(self) -> int:
        return len(self._index)

    def __iter__(self) -> Iterator[Constraint]:
        return iter(self.constraints())

    def __contains__(self, constraint_id: object) -> bool:
        return constraint_id in self._index

    def constraints(self) -> List[Constraint]:
        """All constraints, ordered by id."""
        return [self._index[cid] for cid in sorted(self._index)]

    def get(self, constraint_id: str) -> Constraint:
        return self._index[constraint_id]

    def sources(self) -> List[str]:
        return list(self._sources)

    def for_source(self, source_id: str) -> List[Constraint]:
        return list(self._sources.get(source_id, (0, ()))[1])

    def compiled_version(self, source_id: str) -> Optional[int]:
        entry = self._sources.get(source_id)
        return entry[0] if entry else None

    def stale_sources(self, graph: GraphModel) -> List[str]:
        """
        Governance sources whose compiled constraints no longer match the graph:
        version moved, rules newly declared, or section gone/deprecated.
        """
        stale = set()
        for source_id, (compiled_at, _) in self._sources.items():
            if source_id not in graph:
                stale.add(source_id)
                continue
            section = graph.get(source_id)
            if section.deprecated or section.version != compiled_at:
                stale.add(source_id)
        for section in graph.sections():
            if section.rules and not section.deprecated and section.id not in self._sources:
                stale.add(section.id)
        return sorted(stale)

    def refresh(self, graph: GraphModel, compiler: Optional["ConstraintCompiler"] = None) -> "ConstraintSet":
        """
        Recompile stale sources only.

        Returns self when nothing is stale, otherwise a new set with version + 1.
        """
        stale = self.stale_sources(graph)
        if not stale:
            return self
        compiler = compiler or ConstraintCompiler()
        sources = dict(self._sources)
        for source_id in stale:
            sources.pop(source_id, None)
            if source_id not in graph:
                continue
            section = graph.get(source_id)
            if section.deprecated or not section.rules:
                continue
            sources[source_id] = (section.version, compiler.compile(section))
        logger.info(f"Refreshed constraint set v{self._version} -> v{self._version + 1} "
                    f"(recompiled: {', '.join(stale)})")
        return ConstraintSet(sources, version=self._version + 1)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "version": self._version,
            "sources": {
                source_id: {
                    "source_version": source_version,
                    "constraints": [c.to_dict() for c in items],
                }
                for source_id, (source_version, items) in self._sources.items()
            },
        }

    @classmethod
    def from_dict(cls, d: Mapping[str, Any]) -> "ConstraintSet":
        sources = {
            source_id: (
                entry["source_version"],
                [Constraint.from_dict(c) for c in entry.get("constraints", [])],
            )
            for source_id, entry in d.get("sources", {}).items()
        }
        return cls(sources, version=d.get("version", 1))


# ---------------------------------------------------------------------------
# Compiler
# ---------------------------------------------------------------------------

class ConstraintCompiler:
    """
    Instantiate rule templates against governance section content.

    Deterministic in (section content, rule templates, extractor output).

    Args:
        term_extractor: Provider used to derive enumerated sets and required
            terms when a template does not list them explicitly
    """

    def __init__(self, term_extractor: Optional[TermExtractor] = None):
        self.term_extractor = term_extractor

    def compile(self, section: Section) -> List[Constraint]:
        """
        Compile every rule template declared on a governance section.

        Raises:
            CompilationError: if the section is not a governance section or a
                template cannot be instantiated
        """
        if not section.rules:
            return []
        if not section.is_governance:
            raise CompilationError(
                section.id, section.rules[0].rule_id,
                f"rules may only be declared on locked or reviewable sections (tier={section.tier.value})",
            )
        compiled = []
        seen = set()
        for rule in section.rules:
            if rule.rule_id in seen:
                raise CompilationError(section.id, rule.rule_id, "duplicate rule id")
            seen.add(rule.rule_id)
            params = self._parameters(section, rule)
            compiled.append(Constraint(
                id=f"{section.id}:{rule.rule_id}",
                source_id=section.id,
                source_version=section.version,
                kind=rule.kind,
                severity=rule.severity,
                applies_to=rule.applies_to,
                parameters=params,
            ))
        logger.debug(f"Compiled {len(compiled)} constraints from {section.id} v{section.version}")
        return compiled

    def _extract(self, section: Section, rule: RuleTemplate) -> List[str]:
        if self.term_extractor is None:
            raise CompilationError(section.id, rule.rule_id, "no term extractor to derive terms from content")
        return list(self.term_extractor.extract(canonical_payload(section.content)))

    def _parameters(self, section: Section, rule: RuleTemplate) -> Dict[str, Any]:
        params = dict(rule.parameters)

        if rule.kind == ConstraintKind.NUMERIC_CEILING:
            if "ceiling" not in params:
                values = payload_numbers(section.content, params)
                if not values:
                    raise CompilationError(section.id, rule.rule_id, "no numeric ceiling found in content")
                params["ceiling"] = max(values)
            try:
                params["ceiling"] = float(params["ceiling"])
            except (TypeError, ValueError):
                raise CompilationError(section.id, rule.rule_id, f"ceiling is not numeric: {params['ceiling']!r}")

        elif rule.kind == ConstraintKind.ENUMERATED_SET:
            if "allowed" not in params:
                values = _field_values(section.content, params["field"]) if params.get("field") else None
                params["allowed"] = values if values is not None else self._extract(section, rule)
            params["allowed"] = sorted({str(v) for v in params["allowed"]}, key=str.lower)
            if not params.get("field") and "universe" not in params:
                vocabulary = getattr(self.term_extractor, "vocabulary", None)
                if not vocabulary:
                    raise CompilationError(
                        section.id, rule.rule_id,
                        "text enumerated sets need a 'universe' of candidate terms or a 'field'",
                    )
                params["universe"] = list(vocabulary)
            if "universe" in params:
                params["universe"] = sorted({str(v) for v in params["universe"]}, key=str.lower)

        elif rule.kind == ConstraintKind.REQUIRED_TERM:
            if "terms" not in params:
                params["terms"] = self._extract(section, rule)
            if not params["terms"]:
                raise CompilationError(section.id, rule.rule_id, "no required terms")
            params["terms"] = [str(t) for t in params["terms"]]

        elif rule.kind == ConstraintKind.SEMANTIC_ALIGNMENT:
            if "threshold" not in params:
                raise CompilationError(section.id, rule.rule_id, "semantic alignment needs a threshold")
            threshold = float(params["threshold"])
            if not 0.0 <= threshold <= 1.0:
                raise CompilationError(section.id, rule.rule_id, f"threshold out of [0, 1]: {threshold}")
            params["threshold"] = threshold
            params.setdefault("reference", section.id)

        return params


def compile_constraints(graph: GraphModel, compiler: Optional[ConstraintCompiler] = None) -> ConstraintSet:
    """
    Compile every active governance section of the graph.

    Raises:
        CompilationError: on the first template that cannot be compiled
    """
    compiler = compiler or ConstraintCompiler()
    sources = {}
    for section in graph.sections():
        if section.rules and not section.deprecated:
            sources[section.id] = (section.version, compiler.compile(section))
    cset = ConstraintSet(sources, version=1)
    logger.info(f"Compiled {len(cset)} constraints from {len(sources)} governance sections")
    return cset


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------

def _binds(constraint: Constraint, section: Section) -> bool:
    target = constraint.applies_to
    return target is None or target in ALL_TARGETS or target == section.tier.value or target == section.id


def collect_constraints(graph: GraphModel, constraints: ConstraintSet, target_id: str) -> List[Constraint]:
    """
    Constraints bound to a target: directly (applies_to names it, or its
    constraint list names the rule) or inherited from ancestors reachable
    through derivesFrom/constrains edges. Ordered by constraint id.
    """
    section = graph.get(target_id)
    listed = set(section.constraints)
    ancestors = graph.ancestors_of(target_id, kinds=INHERITING_KINDS)
    bound = []
    for c in constraints.constraints():
        rule_id = c.id.split(":", 1)[-1]
        direct = c.applies_to == target_id or c.id in listed or rule_id in listed
        inherited = c.source_id in ancestors and _binds(c, section)
        if direct or inherited:
            bound.append(c)
    return bound


def _evaluate(
    graph: GraphModel,
    constraint: Constraint,
    content: Any,
    scores: Mapping[str, float],
    similarity: Optional[SimilarityProvider],
) -> ConstraintOutcome:
    params = constraint.parameters
    kind = constraint.kind

    def outcome(satisfied: bool, detail: str) -> ConstraintOutcome:
        return ConstraintOutcome(constraint.id, kind, constraint.severity, satisfied, detail)

    if kind == ConstraintKind.NUMERIC_CEILING:
        ceiling = float(params["ceiling"])
        values = payload_numbers(content, params)
        if not values:
            return outcome(False, "no numeric value found")
        peak = max(values)
        if peak > ceiling:
            return outcome(False, f"{peak:,.2f} exceeds ceiling {ceiling:,.2f}")
        return outcome(True, f"{peak:,.2f} within ceiling {ceiling:,.2f}")

    if kind == ConstraintKind.ENUMERATED_SET:
        allowed = {str(a).lower() for a in params.get("allowed", [])}
        key = params.get("field")
        values = _field_values(content, key) if key else None
        if key and values is None and isinstance(content, Mapping):
            return outcome(False, f"field '{key}' missing")
        if values is None:
            text = canonical_payload(content)
            values = [u for u in params.get("universe", []) if term_present(u, text)]
        outside = [v for v in values if v.lower() not in allowed]
        if outside:
            return outcome(False, f"not in allowed set: {', '.join(outside)}")
        return outcome(True, "all values allowed")

    if kind == ConstraintKind.REQUIRED_TERM:
        text = canonical_payload(content)
        missing = [t for t in params.get("terms", []) if not term_present(t, text)]
        if missing:
            return outcome(False, f"missing required terms: {', '.join(missing)}")
        return outcome(True, "all required terms present")

    if kind == ConstraintKind.SEMANTIC_ALIGNMENT:
        threshold = float(params["threshold"])
        score = scores.get(constraint.id)
        if score is None and similarity is not None:
            reference = params.get("reference", constraint.source_id)
            try:
                ref_content = graph.get(reference).content
            except UnknownSection:
                return outcome(False, f"reference section '{reference}' not found")
            score = similarity.similarity(canonical_payload(ref_content), canonical_payload(content))
        if score is None:
            return outcome(False, "no similarity score supplied")
        score = min(1.0, max(0.0, float(score)))
        if score < threshold:
            return outcome(False, f"similarity {score:.3f} below threshold {threshold:.3f}")
        return outcome(True, f"similarity {score:.3f} meets threshold {threshold:.3f}")

    return outcome(False, f"unsupported constraint kind {kind}")


def validate(
    graph: GraphModel,
    constraints: ConstraintSet,
    target_id: str,
    proposed_content: Any,
    scores: Optional[Mapping[str, float]] = None,
    similarity: Optional[SimilarityProvider] = None,
) -> ValidationResult:
    """
    Check proposed content for a section against every bound constraint.

    Args:
        graph: Graph snapshot
        constraints: Compiled constraint set
        target_id: Section receiving the content
        proposed_content: Candidate payload
        scores: Precomputed similarity scores keyed by constraint id
        similarity: Provider consulted for semantic constraints without a score

    Returns:
        ValidationResult (violations are data, never exceptions)

    Raises:
        UnknownSection: if target_id is not in the graph
    """
    bound = collect_constraints(graph, constraints, target_id)
    stale = sorted({c.source_id for c in bound
                    if c.source_id in graph and graph.get(c.source_id).version != c.source_version})
    if stale:
        logger.warning(f"Validating {target_id} against stale constraints from: {', '.join(stale)}")

    outcomes = tuple(_evaluate(graph, c, proposed_content, scores or {}, similarity) for c in bound)
    result = ValidationResult(target_id, constraints.version, outcomes)
    logger.debug(f"Validated {target_id}: {len(outcomes)} constraints, "
                 f"{len(result.hard_failures)} hard / {len(result.soft_failures)} soft failures")
    return result


def is_valid(
    graph: GraphModel,
    constraints: ConstraintSet,
    section_id: str,
    scores: Optional[Mapping[str, float]] = None,
    similarity: Optional[SimilarityProvider] = None,
) -> bool:
    """Whether a section's latest content satisfies all bound hard constraints."""
    section = graph.get(section_id)
    return validate(graph, constraints, section_id, section.content, scores, similarity).accepted
