"""
planrev core - Dependency-aware revision engine for governed planning documents

Graph Model, Constraint Validator, Ripple Propagator and Revision Matcher.
"""

__version__ = "0.1.0"

from .errors import (
    PlanRevError,
    StructuralError,
    DuplicateId,
    DuplicateEdge,
    UnknownSection,
    CycleDetected,
    ImmutableSectionViolation,
    FrozenSnapshotError,
    CompilationError,
    PlanStateError,
    ComputationTimeout,
    SnapshotError,
    ConfigError,
)
from .models import (
    GovernanceTier,
    EdgeKind,
    ConstraintKind,
    Severity,
    RuleTemplate,
    Section,
    Edge,
    Constraint,
    Fingerprint,
    content_hash,
)
from .graph import GraphModel
from .providers import (
    SimilarityProvider,
    EmbeddingProvider,
    TermExtractor,
    TokenOverlapSimilarity,
    HashingEmbedding,
    VocabularyTermExtractor,
)
from .constraints import (
    ConstraintCompiler,
    ConstraintSet,
    ConstraintOutcome,
    ValidationResult,
    is_valid,
)
from .tolerance import (
    ChangeContext,
    ToleranceConfig,
    numeric_delta_exceeds,
    introduces_unknown_terms,
    category_changed,
    any_of,
    all_of,
)
from .propagation import (
    Change,
    EntryStatus,
    PlanAction,
    PlanEntry,
    RevisionCycle,
    RipplePropagator,
    UpdatePlan,
)
from .matcher import (
    ScorerWeights,
    MatchedPair,
    AmbiguousMatch,
    MatchResult,
    seed_next_graph,
    retire_deprecated,
)
from .ledger import RevisionLedger, LedgerEntry
from .snapshot import save_snapshot, load_snapshot
from .config import PlanRevConfig, load_config, get_config, set_config
from .api import (
    build_graph,
    compile_constraints,
    validate,
    compute_ripple_plan,
    match_revisions,
    PlanJob,
    compute_plans_parallel,
)

__all__ = [
    "PlanRevError",
    "StructuralError",
    "DuplicateId",
    "DuplicateEdge",
    "UnknownSection",
    "CycleDetected",
    "ImmutableSectionViolation",
    "FrozenSnapshotError",
    "CompilationError",
    "PlanStateError",
    "ComputationTimeout",
    "SnapshotError",
    "ConfigError",
    "GovernanceTier",
    "EdgeKind",
    "ConstraintKind",
    "Severity",
    "RuleTemplate",
    "Section",
    "Edge",
    "Constraint",
    "Fingerprint",
    "content_hash",
    "GraphModel",
    "SimilarityProvider",
    "EmbeddingProvider",
    "TermExtractor",
    "TokenOverlapSimilarity",
    "HashingEmbedding",
    "VocabularyTermExtractor",
    "ConstraintCompiler",
    "ConstraintSet",
    "ConstraintOutcome",
    "ValidationResult",
    "is_valid",
    "ChangeContext",
    "ToleranceConfig",
    "numeric_delta_exceeds",
    "introduces_unknown_terms",
    "category_changed",
    "any_of",
    "all_of",
    "Change",
    "EntryStatus",
    "PlanAction",
    "PlanEntry",
    "RevisionCycle",
    "RipplePropagator",
    "UpdatePlan",
    "ScorerWeights",
    "MatchedPair",
    "AmbiguousMatch",
    "MatchResult",
    "seed_next_graph",
    "retire_deprecated",
    "RevisionLedger",
    "LedgerEntry",
    "save_snapshot",
    "load_snapshot",
    "PlanRevConfig",
    "load_config",
    "get_config",
    "set_config",
    "build_graph",
    "compile_constraints",
    "validate",
    "compute_ripple_plan",
    "match_revisions",
    "PlanJob",
    "compute_plans_parallel",
]
