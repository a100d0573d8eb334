"""
Exception taxonomy for the revision engine.

Structural and immutability errors are raised to the caller and never
downgraded. Constraint outcomes and ambiguous matches are returned as
data (see constraints.ConstraintOutcome and matcher.AmbiguousMatch).
"""

from typing import List, Optional


class PlanRevError(Exception):
    """Base class for all revision engine errors."""
    pass


# ---------------------------------------------------------------------------
# Structural errors (graph mutations are rejected, model left unchanged)
# ---------------------------------------------------------------------------

class StructuralError(PlanRevError):
    """A graph mutation would break a structural invariant."""
    pass


class DuplicateId(StructuralError):
    """A section with the same id already exists."""

    def __init__(self, section_id: str):
        super().__init__(f"Section '{section_id}' already exists")
        self.section_id = section_id


class DuplicateEdge(StructuralError):
    """The exact (source, target, kind) edge already exists."""

    def __init__(self, source: str, target: str, kind: str):
        super().__init__(f"Edge {source} -[{kind}]-> {target} already exists")
        self.source = source
        self.target = target
        self.kind = kind


class UnknownSection(StructuralError):
    """An operation referenced a section id absent from the graph."""

    def __init__(self, section_id: str):
        super().__init__(f"Section '{section_id}' not found")
        self.section_id = section_id


class CycleDetected(StructuralError):
    """Adding the edge would close a cycle."""

    def __init__(self, source: str, target: str, path: Optional[List[str]] = None):
        self.source = source
        self.target = target
        self.path = list(path or [])
        msg = f"Edge {source} -> {target} would create a cycle"
        if self.path:
            msg += f" (existing path: {' -> '.join(self.path)})"
        super().__init__(msg)


# ---------------------------------------------------------------------------
# Governance errors
# ---------------------------------------------------------------------------

class ImmutableSectionViolation(PlanRevError):
    """Content was proposed for a published Locked section."""

    def __init__(self, section_id: str):
        super().__init__(f"Section '{section_id}' is locked and published; content is immutable")
        self.section_id = section_id


class FrozenSnapshotError(PlanRevError):
    """A mutation was attempted on a published read-only snapshot."""
    pass


class CompilationError(PlanRevError):
    """A rule template could not be compiled into a constraint."""

    def __init__(self, source_id: str, rule_id: str, reason: str):
        super().__init__(f"Cannot compile rule '{rule_id}' of section '{source_id}': {reason}")
        self.source_id = source_id
        self.rule_id = rule_id
        self.reason = reason


# ---------------------------------------------------------------------------
# Matching, persistence, configuration
# ---------------------------------------------------------------------------

class PlanStateError(PlanRevError):
    """An update plan operation was requested out of order or for an unknown entry."""
    pass


class ComputationTimeout(PlanRevError):
    """The assignment solve was cancelled or exceeded its time bound."""
    pass


class SnapshotError(PlanRevError):
    """A persisted snapshot could not be reconstructed exactly."""
    pass


class ConfigError(PlanRevError):
    """Invalid configuration value."""
    pass
