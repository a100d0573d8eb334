"""
planrevctl: CLI over persisted planning-document snapshots.

Commands:
    order      Print the sections in dependency order
    validate   Check proposed content for a section against its constraints
    plan       Compute the ripple plan for changed sections
    match      Align the sections of two revisions
"""

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Dict, List, Optional

from planrev_core.config import PlanRevConfig, configure_logging, load_config
from planrev_core.constraints import ConstraintCompiler, ConstraintSet, compile_constraints, validate
from planrev_core.errors import PlanRevError
from planrev_core.graph import GraphModel
from planrev_core.ledger import RevisionLedger
from planrev_core.matcher import match_revisions
from planrev_core.models import Fingerprint, canonical_payload
from planrev_core.propagation import Change, RevisionCycle, RipplePropagator
from planrev_core.providers import HashingEmbedding, VocabularyTermExtractor, fingerprint_embedding
from planrev_core.snapshot import load_snapshot
from planrev_core.tolerance import ToleranceConfig

logger = logging.getLogger(__name__)

# ANSI color helpers (auto-disabled for non-TTY)
_USE_COLOR = sys.stdout.isatty()


def _c(code: str, text: str) -> str:
    if not _USE_COLOR:
        return text
    return f"\033[{code}m{text}\033[0m"


def _bold(text: str) -> str:
    return _c("1", text)


def _green(text: str) -> str:
    return _c("32", text)


def _yellow(text: str) -> str:
    return _c("33", text)


def _red(text: str) -> str:
    return _c("31", text)


def _dim(text: str) -> str:
    return _c("2", text)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _config(args: argparse.Namespace) -> PlanRevConfig:
    return load_config(Path(args.config) if args.config else None)


def _extractor(config: PlanRevConfig) -> Optional[VocabularyTermExtractor]:
    return VocabularyTermExtractor(config.vocabulary) if config.vocabulary else None


def _constraints_for(graph: GraphModel, stored: Optional[ConstraintSet], config: PlanRevConfig) -> ConstraintSet:
    """Stored constraints refreshed against the graph, or a fresh compilation."""
    compiler = ConstraintCompiler(_extractor(config))
    if stored is None:
        return compile_constraints(graph, compiler)
    return stored.refresh(graph, compiler)


def _emit_json(data: object) -> None:
    print(json.dumps(data, indent=2, sort_keys=True, ensure_ascii=False))


def _fingerprints(graph: GraphModel, embedder: HashingEmbedding) -> List[Fingerprint]:
    """Fingerprints positioned by dependency order (first = 0, last = 1)."""
    order = [sid for sid in graph.topological_order() if not graph.get(sid).deprecated]
    span = max(1, len(order) - 1)
    return [
        Fingerprint.from_section(
            graph.get(sid),
            embedding=fingerprint_embedding(embedder, canonical_payload(graph.get(sid).content)),
            position=index / span,
        )
        for index, sid in enumerate(order)
    ]


# ---------------------------------------------------------------------------
# Command: order
# ---------------------------------------------------------------------------

def cmd_order(args: argparse.Namespace) -> int:
    """Print sections in topological order."""
    graph, _ = load_snapshot(Path(args.snapshot))
    order = graph.topological_order()
    if args.json:
        _emit_json(order)
        return 0
    for index, sid in enumerate(order, 1):
        section = graph.get(sid)
        tag = _dim(" (deprecated)") if section.deprecated else ""
        print(f"{index:>4}. {sid:<30} {section.tier.value:<11} v{section.version}{tag}")
    return 0


# ---------------------------------------------------------------------------
# Command: validate
# ---------------------------------------------------------------------------

def _parse_scores(items: Optional[List[str]]) -> Dict[str, float]:
    scores = {}
    for item in items or []:
        key, sep, value = item.rpartition("=")
        if not sep or not key:
            raise argparse.ArgumentTypeError(f"Score must look like CONSTRAINT_ID=VALUE, got {item!r}")
        scores[key] = float(value)
    return scores


def cmd_validate(args: argparse.Namespace) -> int:
    """Validate proposed content; exit status 2 when rejected."""
    config = _config(args)
    graph, stored = load_snapshot(Path(args.snapshot))
    constraints = _constraints_for(graph, stored, config)

    if args.content_file:
        content = Path(args.content_file).read_text(encoding="utf-8")
    else:
        content = args.content
    result = validate(graph, constraints, args.target, content, _parse_scores(args.score))

    if args.json:
        _emit_json(result.to_dict())
        return 0 if result.accepted else 2

    print(_bold(f"Validation of {args.target} (constraint set v{result.constraint_set_version})"))
    if not result.outcomes:
        print(_dim("  No constraints bound to this section."))
    for outcome in result.outcomes:
        if outcome.satisfied:
            mark = _green("ok  ")
        elif outcome.severity.value == "hard":
            mark = _red("FAIL")
        else:
            mark = _yellow("warn")
        print(f"  {mark} {outcome.constraint_id:<36} {outcome.detail}")
    print()
    print(_green("Accepted") if result.accepted else _red("Rejected"))
    return 0 if result.accepted else 2


# ---------------------------------------------------------------------------
# Command: plan
# ---------------------------------------------------------------------------

def cmd_plan(args: argparse.Namespace) -> int:
    """Compute the ripple plan for changed sections."""
    config = _config(args)
    graph, stored = load_snapshot(Path(args.snapshot))
    constraints = _constraints_for(graph, stored, config)

    previous = {}
    if args.previous:
        prev_graph, _ = load_snapshot(Path(args.previous))
        previous = {sid: prev_graph.get(sid).content for sid in args.changed if sid in prev_graph}

    cycle_path = Path(args.cycle) if args.cycle else None
    cycle = RevisionCycle()
    if cycle_path and cycle_path.exists():
        cycle = RevisionCycle.from_dict(json.loads(cycle_path.read_text(encoding="utf-8")))

    propagator = RipplePropagator(
        tolerance=ToleranceConfig.from_settings(config.tolerance, _extractor(config)),
        cycle=cycle,
        ledger=RevisionLedger(Path(args.ledger)) if args.ledger else None,
    )
    plan = propagator.compute_plan(graph, constraints, [Change(sid, previous.get(sid)) for sid in args.changed])

    if cycle_path:
        cycle_path.parent.mkdir(parents=True, exist_ok=True)
        cycle_path.write_text(json.dumps(cycle.to_dict(), indent=2, sort_keys=True), encoding="utf-8")

    if args.json:
        _emit_json(plan.to_dict())
        return 0

    if plan.skipped:
        print(_dim(f"Already propagated this cycle: {', '.join(plan.skipped)}"))
    if plan.is_empty:
        print(_green("Nothing to do."))
        return 0

    print(_bold("Forward impact"))
    for entry in plan.forward_impact:
        print(f"  {entry.section_id:<30} {entry.action.value:<18} {_dim('<- ' + ', '.join(entry.triggered_by))}")
    if plan.backward_review:
        print(_bold("Backward review"))
        for entry in plan.backward_review:
            print(f"  {_yellow(entry.section_id):<30} {_dim('<- ' + ', '.join(entry.triggered_by))}")
    if plan.lateral_check:
        print(_bold("Lateral check"))
        for entry in plan.lateral_check:
            print(f"  {entry.section_id:<30} {_dim('<- ' + ', '.join(entry.triggered_by))}")
    return 0


# ---------------------------------------------------------------------------
# Command: match
# ---------------------------------------------------------------------------

def cmd_match(args: argparse.Namespace) -> int:
    """Align two revisions' sections."""
    config = _config(args)
    prev_graph, _ = load_snapshot(Path(args.prev))
    curr_graph, _ = load_snapshot(Path(args.curr))
    embedder = HashingEmbedding()

    threshold = args.threshold if args.threshold is not None else config.matcher.threshold
    timeout = args.timeout if args.timeout is not None else config.matcher.timeout
    result = match_revisions(
        _fingerprints(prev_graph, embedder),
        _fingerprints(curr_graph, embedder),
        weights=config.matcher.scorer_weights(),
        threshold=threshold,
        timeout=timeout,
    )

    if args.json:
        _emit_json(result.to_dict())
        return 0

    print(_bold(f"Matches (threshold {threshold:.2f})"))
    for m in result.matches:
        arrow = "==" if m.prev_id == m.curr_id else "->"
        print(f"  {m.prev_id:<28} {arrow} {m.curr_id:<28} {_green(f'{m.similarity:.3f}')}")
    for a in result.ambiguous:
        print(f"  {a.prev_id:<28} ?? {a.curr_id:<28} {_yellow(f'{a.similarity:.3f}')}")
    if result.new_sections:
        print(_bold("New"))
        for sid in result.new_sections:
            print(f"  {sid}")
    if result.deprecated_sections:
        print(_bold("Deprecated"))
        for sid in result.deprecated_sections:
            print(f"  {_dim(sid)}")
    return 0


# ---------------------------------------------------------------------------
# Argument parser
# ---------------------------------------------------------------------------

def build_parser() -> argparse.ArgumentParser:
    """Build the planrevctl argument parser."""
    parser = argparse.ArgumentParser(
        prog="planrevctl",
        description="Dependency-aware revision engine for governed planning documents",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Verbose output")
    parser.add_argument("-c", "--config", help="Path to planrev.yaml (default: search upward)")

    sub = parser.add_subparsers(dest="command", help="Available commands")

    # --- order ---
    p_order = sub.add_parser("order", help="Print sections in dependency order")
    p_order.add_argument("snapshot", help="Snapshot file (.json, .yaml)")
    p_order.add_argument("--json", action="store_true", help="JSON output")
    p_order.set_defaults(func=cmd_order)

    # --- validate ---
    p_validate = sub.add_parser("validate", help="Validate proposed content for a section")
    p_validate.add_argument("snapshot", help="Snapshot file (.json, .yaml)")
    p_validate.add_argument("target", help="Target section id")
    group = p_validate.add_mutually_exclusive_group(required=True)
    group.add_argument("--content", help="Proposed content as text")
    group.add_argument("--content-file", help="File holding the proposed content")
    p_validate.add_argument("--score", action="append", metavar="CONSTRAINT_ID=VALUE",
                            help="Precomputed similarity score for a semantic constraint (repeatable)")
    p_validate.add_argument("--json", action="store_true", help="JSON output")
    p_validate.set_defaults(func=cmd_validate)

    # --- plan ---
    p_plan = sub.add_parser("plan", help="Compute the ripple plan for changed sections")
    p_plan.add_argument("snapshot", help="Snapshot holding the accepted changes")
    p_plan.add_argument("changed", nargs="+", help="Changed section ids")
    p_plan.add_argument("--previous", help="Snapshot before the changes (enables numeric tolerance)")
    p_plan.add_argument("--cycle", help="Revision cycle state file (read and updated)")
    p_plan.add_argument("--ledger", help="JSONL ledger to append the plan to")
    p_plan.add_argument("--json", action="store_true", help="JSON output")
    p_plan.set_defaults(func=cmd_plan)

    # --- match ---
    p_match = sub.add_parser("match", help="Align two revisions")
    p_match.add_argument("prev", help="Previous revision snapshot")
    p_match.add_argument("curr", help="New revision snapshot")
    p_match.add_argument("-t", "--threshold", type=float, default=None, help="Acceptance threshold")
    p_match.add_argument("--timeout", type=float, default=None, help="Time bound in seconds")
    p_match.add_argument("--json", action="store_true", help="JSON output")
    p_match.set_defaults(func=cmd_match)

    return parser


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for planrevctl."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.verbose:
        logging.basicConfig(level=logging.DEBUG, format="%(name)s: %(message)s")
    else:
        try:
            configure_logging(_config(args).logging)
        except PlanRevError as e:
            print(_red(f"Error: {e}"))
            return 1

    if not args.command:
        parser.print_help()
        return 0

    try:
        return args.func(args)
    except PlanRevError as e:
        logger.debug("Command failed", exc_info=True)
        print(_red(f"Error: {e}"))
        return 1
    except (OSError, ValueError, argparse.ArgumentTypeError) as e:
        print(_red(f"Error: {e}"))
        return 1


if __name__ == "__main__":
    sys.exit(main())
