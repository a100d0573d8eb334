"""
Core data models for the revision engine.

All models are JSON-serializable dataclasses shared by the graph,
constraint, propagation and matching layers. The persisted-snapshot
schema (snapshot.py) is built from their to_dict/from_dict pairs.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Optional
import copy
import hashlib
import json
import re


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class GovernanceTier(str, Enum):
    """Governance classification of a section."""
    LOCKED = "locked"            # Immutable mandate once published
    REVIEWABLE = "reviewable"    # Human approval required to change
    GENERATED = "generated"      # Machine-regenerable


GOVERNANCE_TIERS = (GovernanceTier.LOCKED, GovernanceTier.REVIEWABLE)


class EdgeKind(str, Enum):
    """Dependency relation between two sections."""
    DERIVES_FROM = "derivesFrom"
    CONSTRAINS = "constrains"
    INFORMS = "informs"
    SUMMARIZES = "summarizes"


# Edge kinds along which constraints are inherited
INHERITING_KINDS: FrozenSet[EdgeKind] = frozenset({EdgeKind.DERIVES_FROM, EdgeKind.CONSTRAINS})


class ConstraintKind(str, Enum):
    """Predicate families a rule template can compile into."""
    ENUMERATED_SET = "enumeratedSet"
    NUMERIC_CEILING = "numericCeiling"
    REQUIRED_TERM = "requiredTerm"
    SEMANTIC_ALIGNMENT = "semanticAlignment"


class Severity(str, Enum):
    """Constraint severity. Only hard failures block acceptance."""
    HARD = "hard"
    SOFT = "soft"


# ---------------------------------------------------------------------------
# Utility
# ---------------------------------------------------------------------------

def canonical_payload(content: Any) -> str:
    """Stable text form of a payload (strings pass through, others as sorted JSON)."""
    if isinstance(content, str):
        return content
    return json.dumps(content, sort_keys=True, separators=(",", ":"), default=str)


def content_hash(content: Any) -> str:
    """Compute SHA-256 hash of a section payload."""
    text = canonical_payload(content)
    return f"sha256:{hashlib.sha256(text.encode('utf-8')).hexdigest()}"


_TOKEN_RE = re.compile(r"[a-z0-9]+")


def title_tokens(title: str) -> FrozenSet[str]:
    """Normalized title token set (lowercase alphanumeric runs)."""
    return frozenset(_TOKEN_RE.findall(title.lower()))


# ---------------------------------------------------------------------------
# Rule Template
# ---------------------------------------------------------------------------

@dataclass
class RuleTemplate:
    """
    A governance rule declared on a Locked or Reviewable section.

    Parameters missing from the template are derived from the section
    content at compile time (see constraints.ConstraintCompiler).
    """
    rule_id: str
    kind: ConstraintKind
    severity: Severity = Severity.HARD
    applies_to: Optional[str] = None    # None/"*" = all descendants, tier name, or section id
    parameters: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "rule_id": self.rule_id,
            "kind": self.kind.value,
            "severity": self.severity.value,
            "applies_to": self.applies_to,
            "parameters": self.parameters,
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "RuleTemplate":
        return cls(
            rule_id=d["rule_id"],
            kind=ConstraintKind(d["kind"]),
            severity=Severity(d.get("severity", "hard")),
            applies_to=d.get("applies_to"),
            parameters=dict(d.get("parameters", {})),
        )


# ---------------------------------------------------------------------------
# Section
# ---------------------------------------------------------------------------

@dataclass
class Section:
    """
    A node of the planning document.

    Content is owned exclusively by the node and changes only through
    GraphModel.propose_content, which bumps version and content_hash.
    """
    id: str
    tier: GovernanceTier
    content: Any = ""
    title: str = ""
    kind: str = ""                      # structural type tag, e.g. "budget_table"
    version: int = 1
    content_hash: str = ""
    constraints: List[str] = field(default_factory=list)    # rule ids applying when targeted
    rules: List[RuleTemplate] = field(default_factory=list)
    published: bool = False
    deprecated: bool = False
    basis: Dict[str, int] = field(default_factory=dict)     # ancestor id -> version generated against

    def __post_init__(self):
        if not isinstance(self.tier, GovernanceTier):
            self.tier = GovernanceTier(self.tier)
        if not self.content_hash:
            self.content_hash = content_hash(self.content)

    @property
    def is_governance(self) -> bool:
        return self.tier in GOVERNANCE_TIERS

    @property
    def is_immutable(self) -> bool:
        return self.tier == GovernanceTier.LOCKED and self.published

    def clone(self) -> "Section":
        return copy.deepcopy(self)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "tier": self.tier.value,
            "content": self.content,
            "title": self.title,
            "kind": self.kind,
            "version": self.version,
            "content_hash": self.content_hash,
            "constraints": list(self.constraints),
            "rules": [r.to_dict() for r in self.rules],
            "published": self.published,
            "deprecated": self.deprecated,
            "basis": dict(sorted(self.basis.items())),
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "Section":
        return cls(
            id=d["id"],
            tier=GovernanceTier(d["tier"]),
            content=d.get("content", ""),
            title=d.get("title", ""),
            kind=d.get("kind", ""),
            version=d.get("version", 1),
            content_hash=d.get("content_hash", ""),
            constraints=list(d.get("constraints", [])),
            rules=[RuleTemplate.from_dict(r) for r in d.get("rules", [])],
            published=d.get("published", False),
            deprecated=d.get("deprecated", False),
            basis=dict(d.get("basis", {})),
        )


# ---------------------------------------------------------------------------
# Dependency Edge
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Edge:
    """Directed dependency: target depends on source."""
    source: str
    target: str
    kind: EdgeKind = EdgeKind.DERIVES_FROM

    def to_dict(self) -> Dict[str, Any]:
        return {"source": self.source, "target": self.target, "kind": self.kind.value}

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "Edge":
        return cls(
            source=d["source"],
            target=d["target"],
            kind=EdgeKind(d.get("kind", "derivesFrom")),
        )


# ---------------------------------------------------------------------------
# Constraint
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Constraint:
    """
    A compiled, checkable predicate bound to a governance section.

    source_version records the section version it was compiled from;
    a newer section version makes the constraint stale.
    """
    id: str                     # "<source_id>:<rule_id>"
    source_id: str
    source_version: int
    kind: ConstraintKind
    severity: Severity
    applies_to: Optional[str] = None
    parameters: Dict[str, Any] = field(default_factory=dict, hash=False, compare=True)

    @property
    def is_hard(self) -> bool:
        return self.severity == Severity.HARD

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "source_id": self.source_id,
            "source_version": self.source_version,
            "kind": self.kind.value,
            "severity": self.severity.value,
            "applies_to": self.applies_to,
            "parameters": self.parameters,
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "Constraint":
        return cls(
            id=d["id"],
            source_id=d["source_id"],
            source_version=d["source_version"],
            kind=ConstraintKind(d["kind"]),
            severity=Severity(d.get("severity", "hard")),
            applies_to=d.get("applies_to"),
            parameters=dict(d.get("parameters", {})),
        )


# ---------------------------------------------------------------------------
# Fingerprint (Matcher input)
# ---------------------------------------------------------------------------

@dataclass
class Fingerprint:
    """
    Compact similarity signature of a section, computed by the caller.

    position is the relative index of the section in its document, in [0, 1].
    """
    section_id: str
    tokens: FrozenSet[str] = field(default_factory=frozenset)
    structural_type: str = ""
    embedding: List[float] = field(default_factory=list)
    position: float = 0.0

    def __post_init__(self):
        self.tokens = frozenset(self.tokens)
        self.position = min(1.0, max(0.0, float(self.position)))

    @classmethod
    def from_section(
        cls,
        section: Section,
        embedding: Optional[List[float]] = None,
        position: float = 0.0,
    ) -> "Fingerprint":
        """Build a fingerprint from section metadata and a precomputed embedding."""
        return cls(
            section_id=section.id,
            tokens=title_tokens(section.title),
            structural_type=section.kind,
            embedding=list(embedding or []),
            position=position,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "section_id": self.section_id,
            "tokens": sorted(self.tokens),
            "structural_type": self.structural_type,
            "embedding": list(self.embedding),
            "position": self.position,
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "Fingerprint":
        return cls(
            section_id=d["section_id"],
            tokens=frozenset(d.get("tokens", [])),
            structural_type=d.get("structural_type", ""),
            embedding=list(d.get("embedding", [])),
            position=d.get("position", 0.0),
        )
