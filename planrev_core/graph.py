"""
Graph Model: DAG of document sections and their dependencies.

The model is built incrementally by a single writer (add_section,
add_edge, propose_content) and published to readers as an immutable
handle via snapshot(). Edges are never removed; a structural revision
builds a new model from the next snapshot.

Example:
    graph = build_graph(sections, [("mandate", "budget", "constrains")])
    order = graph.topological_order()
    handle = graph.snapshot()   # read-only, safe to share across threads
"""

from collections import deque
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple, Union
import copy
import heapq
import logging

from planrev_core.errors import (
    CycleDetected,
    DuplicateEdge,
    DuplicateId,
    FrozenSnapshotError,
    ImmutableSectionViolation,
    UnknownSection,
)
from planrev_core.models import Edge, EdgeKind, Section, content_hash

logger = logging.getLogger(__name__)

EdgeLike = Union[Edge, Tuple[str, str], Tuple[str, str, Union[str, EdgeKind]]]
KindFilter = Optional[Iterable[Union[str, EdgeKind]]]


def _kinds(kinds: KindFilter) -> Optional[Set[EdgeKind]]:
    if kinds is None:
        return None
    return {EdgeKind(k) for k in kinds}


class GraphModel:
    """
    Directed acyclic graph of sections.

    Invariants:
        - every edge endpoint is a known section
        - the edge relation is acyclic (checked on every add_edge)
        - section versions strictly increase

    Failed mutations leave the model unchanged.
    """

    def __init__(self, name: str = ""):
        self.name = name
        self._sections: Dict[str, Section] = {}
        self._edges: List[Edge] = []
        # adjacency: node -> neighbour -> kinds of the edges between them
        self._out: Dict[str, Dict[str, Set[EdgeKind]]] = {}
        self._in: Dict[str, Dict[str, Set[EdgeKind]]] = {}
        self._frozen = False

    # ------------------------------------------------------------------
    # Mutations (single writer)
    # ------------------------------------------------------------------

    def _check_writable(self) -> None:
        if self._frozen:
            raise FrozenSnapshotError(f"Graph snapshot '{self.name}' is read-only")

    def add_section(self, section: Section) -> None:
        """Add a section. Raises DuplicateId if the id is taken."""
        self._check_writable()
        if section.id in self._sections:
            raise DuplicateId(section.id)
        self._sections[section.id] = section.clone()
        self._out[section.id] = {}
        self._in[section.id] = {}
        logger.debug(f"Added section {section.id} (tier={section.tier.value}, v{section.version})")

    def add_edge(self, source: str, target: str, kind: Union[str, EdgeKind] = EdgeKind.DERIVES_FROM) -> Edge:
        """
        Add a dependency edge source -> target.

        Raises:
            UnknownSection: if either endpoint is absent
            CycleDetected: if target already reaches source
            DuplicateEdge: if the identical edge exists
        """
        self._check_writable()
        kind = EdgeKind(kind)
        for endpoint in (source, target):
            if endpoint not in self._sections:
                raise UnknownSection(endpoint)

        if source == target:
            logger.warning(f"Rejected self-loop on {source}")
            raise CycleDetected(source, target, [source])

        # target is an ancestor of source iff a path target -> ... -> source exists
        path = self._find_path(target, source)
        if path is not None:
            logger.warning(f"Rejected edge {source} -> {target}: closes cycle {' -> '.join(path)}")
            raise CycleDetected(source, target, path)

        existing = self._out[source].get(target, set())
        if kind in existing:
            raise DuplicateEdge(source, target, kind.value)

        edge = Edge(source=source, target=target, kind=kind)
        self._edges.append(edge)
        self._out[source].setdefault(target, set()).add(kind)
        self._in[target].setdefault(source, set()).add(kind)
        logger.debug(f"Added edge {source} -[{kind.value}]-> {target}")
        return edge

    def propose_content(
        self,
        section_id: str,
        content: Any,
        basis: Optional[Dict[str, int]] = None,
    ) -> Section:
        """
        Replace a section's content, bumping version and content hash.

        Args:
            section_id: Target section
            content: New payload
            basis: Ancestor versions the content was generated against

        Returns:
            The updated section

        Raises:
            ImmutableSectionViolation: if the section is Locked and published
        """
        self._check_writable()
        section = self.get(section_id)
        if section.is_immutable:
            logger.warning(f"Rejected content proposal for published locked section {section_id}")
            raise ImmutableSectionViolation(section_id)

        section.content = copy.deepcopy(content)
        section.content_hash = content_hash(section.content)
        section.version += 1
        if basis is not None:
            section.basis = dict(basis)
        logger.debug(f"Section {section_id} now at v{section.version} ({section.content_hash[:19]})")
        return section

    def record_basis(self, section_id: str, basis: Dict[str, int]) -> None:
        """Record the ancestor versions a section was reviewed against (no content change)."""
        self._check_writable()
        self.get(section_id).basis = dict(basis)

    def publish(self, section_id: str) -> None:
        """Mark a section published. Published Locked sections become immutable."""
        self._check_writable()
        self.get(section_id).published = True

    def deprecate(self, section_id: str) -> None:
        """Mark a section superseded. Sections are never removed."""
        self._check_writable()
        self.get(section_id).deprecated = True

    def snapshot(self) -> "GraphModel":
        """Return a frozen deep copy safe to share between concurrent readers."""
        frozen = copy.deepcopy(self)
        frozen._frozen = True
        return frozen

    @property
    def is_frozen(self) -> bool:
        return self._frozen

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def __contains__(self, section_id: object) -> bool:
        return section_id in self._sections

    def __len__(self) -> int:
        return len(self._sections)

    def get(self, section_id: str) -> Section:
        """Get section by id. Raises UnknownSection."""
        try:
            return self._sections[section_id]
        except KeyError:
            raise UnknownSection(section_id) from None

    def ids(self) -> List[str]:
        return sorted(self._sections)

    def sections(self) -> List[Section]:
        """All sections, ordered by id."""
        return [self._sections[i] for i in sorted(self._sections)]

    def edges(self) -> List[Edge]:
        """All edges in insertion order."""
        return list(self._edges)

    def edge_kinds(self, source: str, target: str) -> Set[EdgeKind]:
        return set(self._out.get(source, {}).get(target, set()))

    def parents(self, section_id: str, kinds: KindFilter = None) -> List[str]:
        self.get(section_id)
        return sorted(self._neighbours(self._in, section_id, _kinds(kinds)))

    def children(self, section_id: str, kinds: KindFilter = None) -> List[str]:
        self.get(section_id)
        return sorted(self._neighbours(self._out, section_id, _kinds(kinds)))

    def ancestors_of(self, section_id: str, kinds: KindFilter = None) -> Set[str]:
        """Transitive predecessors (excluding the node), optionally along given edge kinds."""
        self.get(section_id)
        return set(self._distances(self._in, section_id, _kinds(kinds)))

    def descendants_of(self, section_id: str, kinds: KindFilter = None) -> Set[str]:
        """Transitive successors (excluding the node), optionally along given edge kinds."""
        self.get(section_id)
        return set(self._distances(self._out, section_id, _kinds(kinds)))

    def common_ancestors(self, id_a: str, id_b: str) -> Set[str]:
        """Sections that are ancestors of both id_a and id_b."""
        return self.ancestors_of(id_a) & self.ancestors_of(id_b)

    def siblings_of(self, section_id: str, max_distance: int = 2) -> List[str]:
        """
        Sections reachable through a common ancestor within max_distance hops.

        A candidate S qualifies when some ancestor A has
        depth(A -> section) + depth(A -> S) <= max_distance. With the default
        of 2 this is the set of nodes sharing a direct parent. The node
        itself, its ancestors and its descendants are excluded.
        """
        self.get(section_id)
        if max_distance < 2:
            return []
        up = self._distances(self._in, section_id, None, limit=max_distance - 1)
        found: Set[str] = set()
        for ancestor, d_up in up.items():
            down = self._distances(self._out, ancestor, None, limit=max_distance - d_up)
            found.update(down)
        found.discard(section_id)
        found -= set(up)
        found -= self.descendants_of(section_id)
        found -= self.ancestors_of(section_id)
        return sorted(found)

    def topological_order(self, subset: Optional[Iterable[str]] = None) -> List[str]:
        """
        Deterministic topological order (Kahn's algorithm, ties by ascending id).

        Args:
            subset: Restrict the order to these ids (edges among them still respected
                    through the full graph's reachability)

        Returns:
            Section ids, sources before targets
        """
        in_degree = {sid: len(self._in[sid]) for sid in self._sections}
        heap = [sid for sid, degree in in_degree.items() if degree == 0]
        heapq.heapify(heap)
        order: List[str] = []

        while heap:
            sid = heapq.heappop(heap)
            order.append(sid)
            for succ in self._out[sid]:
                in_degree[succ] -= 1
                if in_degree[succ] == 0:
                    heapq.heappush(heap, succ)

        if len(order) != len(self._sections):
            # unreachable while add_edge guards acyclicity
            remaining = sorted(set(self._sections) - set(order))
            raise CycleDetected(remaining[0], remaining[-1], remaining)

        if subset is not None:
            wanted = set(subset)
            return [sid for sid in order if sid in wanted]
        return order

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    @staticmethod
    def _neighbours(
        adjacency: Dict[str, Dict[str, Set[EdgeKind]]],
        node: str,
        kinds: Optional[Set[EdgeKind]],
    ) -> List[str]:
        return [
            other for other, edge_kinds in adjacency[node].items()
            if kinds is None or edge_kinds & kinds
        ]

    def _distances(
        self,
        adjacency: Dict[str, Dict[str, Set[EdgeKind]]],
        start: str,
        kinds: Optional[Set[EdgeKind]],
        limit: Optional[int] = None,
    ) -> Dict[str, int]:
        """BFS hop distances from start (start excluded)."""
        dist: Dict[str, int] = {}
        queue = deque([(start, 0)])
        while queue:
            node, d = queue.popleft()
            if limit is not None and d >= limit:
                continue
            for other in sorted(self._neighbours(adjacency, node, kinds)):
                if other != start and other not in dist:
                    dist[other] = d + 1
                    queue.append((other, d + 1))
        return dist

    def _find_path(self, start: str, goal: str) -> Optional[List[str]]:
        """Shortest path start -> goal along edges, or None."""
        if start == goal:
            return [start]
        parent: Dict[str, str] = {}
        queue = deque([start])
        seen = {start}
        while queue:
            node = queue.popleft()
            for succ in sorted(self._out[node]):
                if succ in seen:
                    continue
                parent[succ] = node
                if succ == goal:
                    path = [goal]
                    while path[-1] != start:
                        path.append(parent[path[-1]])
                    return list(reversed(path))
                seen.add(succ)
                queue.append(succ)
        return None


def build_graph(
    sections: Iterable[Section],
    edges: Iterable[EdgeLike] = (),
    name: str = "",
) -> GraphModel:
    """
    Construct a Graph Model from ingestion output.

    Args:
        sections: Sections of the snapshot
        edges: Edge objects or (source, target[, kind]) tuples

    Returns:
        A live (writable) GraphModel; call snapshot() to publish it

    Raises:
        DuplicateId, UnknownSection, CycleDetected, DuplicateEdge
    """
    graph = GraphModel(name=name)
    for section in sections:
        graph.add_section(section)
    count = 0
    for edge in edges:
        if isinstance(edge, Edge):
            graph.add_edge(edge.source, edge.target, edge.kind)
        elif len(edge) == 2:
            graph.add_edge(edge[0], edge[1])
        else:
            graph.add_edge(edge[0], edge[1], edge[2])
        count += 1
    logger.info(f"Built graph '{name}': {len(graph)} sections, {count} edges")
    return graph
