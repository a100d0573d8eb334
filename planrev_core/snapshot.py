"""
Persisted-snapshot schema.

A snapshot is three tables: sections (id, tier, content, hash, version
and governance metadata), edges (source, target, kind) and compiled
constraints (id, applies_to, kind, parameters, severity). It is enough
to rebuild a Graph Model and its ConstraintSet exactly. Storage is the
caller's concern; the helpers below only convert to and from dicts,
JSON and YAML text or files.
"""

from pathlib import Path
from typing import Any, Dict, Optional, Tuple
import json
import logging

import yaml

from planrev_core.constraints import ConstraintSet
from planrev_core.errors import SnapshotError
from planrev_core.graph import GraphModel, build_graph
from planrev_core.models import Edge, Section, content_hash

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 1


def snapshot_to_dict(graph: GraphModel, constraints: Optional[ConstraintSet] = None) -> Dict[str, Any]:
    """Serialize a graph (and optionally its constraint set) to plain data."""
    return {
        "schema": SCHEMA_VERSION,
        "name": graph.name,
        "sections": [s.to_dict() for s in graph.sections()],
        "edges": [e.to_dict() for e in graph.edges()],
        "constraints": constraints.to_dict() if constraints is not None else None,
    }


def snapshot_from_dict(data: Dict[str, Any]) -> Tuple[GraphModel, Optional[ConstraintSet]]:
    """
    Rebuild a graph and constraint set.

    Raises:
        SnapshotError: on an unknown schema or a content hash mismatch
        StructuralError: if the edge table violates graph invariants
    """
    schema = data.get("schema", SCHEMA_VERSION)
    if schema != SCHEMA_VERSION:
        raise SnapshotError(f"Unsupported snapshot schema {schema!r}")

    sections = []
    for row in data.get("sections", []):
        try:
            section = Section.from_dict(row)
        except (KeyError, ValueError) as e:
            raise SnapshotError(f"Malformed section row {row.get('id', '?')!r}: {e}") from e
        expected = content_hash(section.content)
        if row.get("content_hash") and row["content_hash"] != expected:
            raise SnapshotError(f"Content hash mismatch for section '{section.id}'")
        sections.append(section)

    try:
        edges = [Edge.from_dict(row) for row in data.get("edges", [])]
    except (KeyError, ValueError) as e:
        raise SnapshotError(f"Malformed edge row: {e}") from e

    graph = build_graph(sections, edges, name=data.get("name", ""))
    constraints = None
    if data.get("constraints"):
        constraints = ConstraintSet.from_dict(data["constraints"])
    logger.debug(f"Loaded snapshot '{graph.name}' with {len(graph)} sections")
    return graph, constraints


def dumps(graph: GraphModel, constraints: Optional[ConstraintSet] = None, fmt: str = "json") -> str:
    """Snapshot as JSON (sorted keys) or YAML text."""
    data = snapshot_to_dict(graph, constraints)
    if fmt == "yaml":
        return yaml.safe_dump(data, sort_keys=True, allow_unicode=True)
    if fmt == "json":
        return json.dumps(data, sort_keys=True, indent=2, ensure_ascii=False)
    raise ValueError(f"Unknown snapshot format: {fmt}")


def loads(text: str, fmt: str = "json") -> Tuple[GraphModel, Optional[ConstraintSet]]:
    if fmt == "yaml":
        data = yaml.safe_load(text)
    elif fmt == "json":
        data = json.loads(text)
    else:
        raise ValueError(f"Unknown snapshot format: {fmt}")
    if not isinstance(data, dict):
        raise SnapshotError("Snapshot document must be a mapping")
    return snapshot_from_dict(data)


def _format_for(path: Path) -> str:
    return "yaml" if path.suffix.lower() in (".yaml", ".yml") else "json"


def save_snapshot(path: Path, graph: GraphModel, constraints: Optional[ConstraintSet] = None) -> Path:
    """Write a snapshot file; format follows the extension (.json, .yaml/.yml)."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(dumps(graph, constraints, _format_for(path)), encoding="utf-8")
    logger.info(f"Saved snapshot to {path}")
    return path


def load_snapshot(path: Path) -> Tuple[GraphModel, Optional[ConstraintSet]]:
    path = Path(path)
    if not path.exists():
        raise SnapshotError(f"Snapshot file not found: {path}")
    return loads(path.read_text(encoding="utf-8"), _format_for(path))
