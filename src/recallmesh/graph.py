"""Relationship graph traversal for RecallMesh.

Walks the typed edges between memories breadth-first, so callers can see
what a memory is connected to and how strongly.
"""

from __future__ import annotations

import logging
from collections import deque
from typing import TYPE_CHECKING, Any

from .relevance import validate_unit_interval
from .store import MemoryNotFoundError

if TYPE_CHECKING:
    from .memory import Memory
    from .store import MemoryStore

logger = logging.getLogger(__name__)

MAX_DEPTH = 3
MAX_EDGES_PER_NODE = 20
DEFAULT_MIN_STRENGTH = 0.6


def _node(memory: Memory) -> dict[str, Any]:
    return {
        "id": memory.id,
        "text": memory.text,
        "created_at": memory.created_at.isoformat(),
        "helpfulness_score": memory.helpfulness_score,
        "usage_count": memory.usage_count,
    }


class RelationshipGraph:
    """Breadth-first view over the relationship edges of one owner.

    Args:
        store: Backing :class:`MemoryStore`.
    """

    def __init__(self, store: MemoryStore) -> None:
        self._store = store

    def build(
        self,
        root_id: str,
        depth: int = 1,
        min_strength: float = DEFAULT_MIN_STRENGTH,
        owner_id: str | None = None,
    ) -> dict[str, Any]:
        """Collect the nodes and edges reachable from *root_id*.

        Only outgoing edges at or above *min_strength* are followed, at
        most 20 per node (strongest first), and *depth* is capped at 3.
        Edges pointing at deleted memories are listed but not expanded.

        Args:
            root_id: Memory to start from.
            depth: Number of hops to expand.
            min_strength: Minimum edge strength to follow.
            owner_id: When given, the root must belong to this owner.

        Returns:
            ``{root_memory_id, nodes, edges, stats}``.

        Raises:
            ValueError: On a negative depth or bad threshold.
            MemoryNotFoundError: If the root does not exist or belongs to
                another owner.
        """
        if isinstance(depth, bool) or not isinstance(depth, int) or depth < 0:
            raise ValueError(f"depth must be a non-negative integer, got {depth!r}")
        validate_unit_interval("min_strength", min_strength)
        root = self._store.get(root_id)
        if root is None or (owner_id is not None and root.owner_id != owner_id):
            raise MemoryNotFoundError(root_id)

        max_depth = min(depth, MAX_DEPTH)
        nodes: dict[str, dict[str, Any]] = {root.id: _node(root)}
        edges: list[dict[str, Any]] = []
        visited: set[str] = set()
        queue: deque[tuple[str, int]] = deque([(root.id, 0)])

        while queue:
            memory_id, level = queue.popleft()
            if memory_id in visited or level >= max_depth:
                continue
            visited.add(memory_id)

            outgoing = self._store.get_relationships([memory_id], min_strength=min_strength)
            outgoing = outgoing[:MAX_EDGES_PER_NODE]
            targets = self._store.get_many(
                rel.related_memory_id for rel in outgoing if rel.related_memory_id not in nodes
            )
            for rel in outgoing:
                edges.append(
                    {
                        "id": rel.id,
                        "from": rel.memory_id,
                        "to": rel.related_memory_id,
                        "type": rel.relationship_type,
                        "strength": rel.strength,
                        "explanation": rel.explanation,
                    }
                )
                target = targets.get(rel.related_memory_id)
                if target is None or target.id in nodes:
                    continue
                nodes[target.id] = _node(target)
                queue.append((target.id, level + 1))

        logger.debug("Graph from %s: %d nodes, %d edges", root_id, len(nodes), len(edges))
        return {
            "root_memory_id": root.id,
            "nodes": list(nodes.values()),
            "edges": edges,
            "stats": {
                "node_count": len(nodes),
                "edge_count": len(edges),
                "depth": max_depth,
            },
        }

    def type_stats(self, owner_id: str) -> dict[str, Any]:
        """Count edges and average strength per relationship type."""
        totals: dict[str, list[float]] = {}
        edges = self._store.list_relationships(owner_id)
        for rel in edges:
            totals.setdefault(rel.relationship_type, []).append(rel.strength)
        return {
            "types": {
                rtype: {"count": len(values), "avg_strength": round(sum(values) / len(values), 3)}
                for rtype, values in sorted(totals.items())
            },
            "total_relationships": len(edges),
        }
