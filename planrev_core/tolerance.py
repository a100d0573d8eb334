"""
Tolerance predicates for backward review and lateral checks.

The propagator holds no threshold of its own. Callers decide what makes
a change significant by passing predicates over a ChangeContext; the
factories below cover the common cases (numeric drift, new terms,
category switch) and can be combined with any_of / all_of.
"""

from dataclasses import dataclass
from typing import Any, Callable, Mapping, Optional, TYPE_CHECKING
import logging

from planrev_core.constraints import payload_numbers
from planrev_core.models import Section, canonical_payload
from planrev_core.providers import TermExtractor, term_present

if TYPE_CHECKING:
    from planrev_core.config import ToleranceSettings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ChangeContext:
    """
    A changed section paired with a related section under consideration.

    related is the ancestor (backward review) or sibling (lateral check).
    previous_content is None when the caller did not supply it.
    """
    changed: Section
    related: Section
    previous_content: Any = None

    @property
    def new_content(self) -> Any:
        return self.changed.content


TolerancePredicate = Callable[[ChangeContext], bool]


def numeric_delta_exceeds(percent: float, field: Optional[str] = None, label: Optional[str] = None) -> TolerancePredicate:
    """
    True when the largest number in the changed payload moved by more than
    `percent` relative to its previous value.
    """
    if percent < 0:
        raise ValueError("percent must be non-negative")
    params = {k: v for k, v in (("field", field), ("label", label)) if v}

    def predicate(ctx: ChangeContext) -> bool:
        if ctx.previous_content is None:
            return False
        before = payload_numbers(ctx.previous_content, params)
        after = payload_numbers(ctx.new_content, params)
        if not before or not after:
            return bool(before) != bool(after)
        old, new = max(before), max(after)
        if old == 0:
            return new != 0
        return abs(new - old) / abs(old) * 100.0 > percent

    predicate.__name__ = f"numeric_delta_exceeds_{percent:g}pct"
    return predicate


def introduces_unknown_terms(extractor: TermExtractor) -> TolerancePredicate:
    """True when the changed payload mentions a term absent from the related section."""

    def predicate(ctx: ChangeContext) -> bool:
        related_text = canonical_payload(ctx.related.content)
        terms = extractor.extract(canonical_payload(ctx.new_content))
        return any(not term_present(t, related_text) for t in terms)

    predicate.__name__ = "introduces_unknown_terms"
    return predicate


def category_changed(field: str) -> TolerancePredicate:
    """True when a mapping payload's category field changed value."""

    def predicate(ctx: ChangeContext) -> bool:
        before, after = ctx.previous_content, ctx.new_content
        if not isinstance(before, Mapping) or not isinstance(after, Mapping):
            return False
        return before.get(field) != after.get(field)

    predicate.__name__ = f"category_changed_{field}"
    return predicate


def any_of(*predicates: TolerancePredicate) -> TolerancePredicate:
    def predicate(ctx: ChangeContext) -> bool:
        return any(p(ctx) for p in predicates)
    return predicate


def all_of(*predicates: TolerancePredicate) -> TolerancePredicate:
    def predicate(ctx: ChangeContext) -> bool:
        return all(p(ctx) for p in predicates)
    return predicate


@dataclass(frozen=True)
class ToleranceConfig:
    """
    Caller-supplied tolerance for ripple planning.

    backward: without a predicate no ancestor is flagged for re-review.
    lateral: without a predicate every same-tier sibling is flagged.
    lateral_distance: maximum path length through a common ancestor.
    """
    backward: Optional[TolerancePredicate] = None
    lateral: Optional[TolerancePredicate] = None
    lateral_distance: int = 2

    @classmethod
    def from_settings(
        cls,
        settings: "ToleranceSettings",
        extractor: Optional[TermExtractor] = None,
    ) -> "ToleranceConfig":
        """Build predicates from configuration values (see config.ToleranceSettings)."""
        backward = []
        if settings.numeric_delta_pct is not None:
            backward.append(numeric_delta_exceeds(settings.numeric_delta_pct, settings.numeric_field))
        if settings.flag_new_terms:
            if extractor is None:
                logger.warning("flag_new_terms is set but no term extractor was supplied; ignoring")
            else:
                backward.append(introduces_unknown_terms(extractor))
        if settings.category_field:
            backward.append(category_changed(settings.category_field))
        return cls(
            backward=any_of(*backward) if backward else None,
            lateral=None,
            lateral_distance=settings.lateral_distance,
        )
