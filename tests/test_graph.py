"""Tests for relationship graph traversal."""

from __future__ import annotations

import pytest

from recallmesh.graph import RelationshipGraph
from recallmesh.memory import Memory
from recallmesh.store import MemoryNotFoundError


def _save(store, text: str, owner: str = "alice") -> Memory:
    mem = Memory(text=text, owner_id=owner)
    store.save(mem)
    return mem


@pytest.fixture()
def chain(store):
    """a -> b -> c -> d with a weak side edge a -> e."""
    a, b, c, d, e = (_save(store, t) for t in "abcde")
    store.add_relationship(a.id, b.id, strength=0.9)
    store.add_relationship(b.id, c.id, "follows", strength=0.8)
    store.add_relationship(c.id, d.id, strength=0.7)
    store.add_relationship(a.id, e.id, strength=0.3)
    return a, b, c, d, e


def _ids(graph):
    return {n["id"] for n in graph["nodes"]}


def test_depth_one(store, chain):
    a, b, *_ = chain
    graph = RelationshipGraph(store).build(a.id)
    assert graph["root_memory_id"] == a.id
    assert _ids(graph) == {a.id, b.id}
    assert [(e["from"], e["to"]) for e in graph["edges"]] == [(a.id, b.id)]
    assert graph["stats"] == {"node_count": 2, "edge_count": 1, "depth": 1}


def test_deeper_traversal(store, chain):
    a, b, c, d, _ = chain
    graph = RelationshipGraph(store).build(a.id, depth=2)
    assert _ids(graph) == {a.id, b.id, c.id}
    assert graph["edges"][1]["type"] == "follows"


def test_depth_is_capped(store, chain):
    a, b, c, d, _ = chain
    graph = RelationshipGraph(store).build(a.id, depth=10)
    assert _ids(graph) == {a.id, b.id, c.id, d.id}
    assert graph["stats"]["depth"] == 3


def test_depth_zero_is_root_only(store, chain):
    a = chain[0]
    graph = RelationshipGraph(store).build(a.id, depth=0)
    assert _ids(graph) == {a.id}
    assert graph["edges"] == []


def test_min_strength_includes_weak_edges(store, chain):
    a, b, _, _, e = chain
    graph = RelationshipGraph(store).build(a.id, min_strength=0.2)
    assert _ids(graph) == {a.id, b.id, e.id}


def test_cycles_terminate(store):
    a, b, c = (_save(store, t) for t in "abc")
    store.add_relationship(a.id, b.id, strength=0.9)
    store.add_relationship(b.id, c.id, strength=0.9)
    store.add_relationship(c.id, a.id, strength=0.9)
    graph = RelationshipGraph(store).build(a.id, depth=3)
    assert graph["stats"]["node_count"] == 3
    assert graph["stats"]["edge_count"] == 3


def test_edge_to_deleted_memory_is_listed_not_expanded(store):
    a, b = _save(store, "a"), _save(store, "b")
    store.add_relationship(a.id, b.id, strength=0.9)
    store.delete(b.id)
    graph = RelationshipGraph(store).build(a.id, depth=2)
    assert _ids(graph) == {a.id}
    assert graph["stats"]["edge_count"] == 1


def test_root_must_exist_and_match_owner(store, chain):
    graph = RelationshipGraph(store)
    with pytest.raises(MemoryNotFoundError):
        graph.build("ghost")
    with pytest.raises(MemoryNotFoundError):
        graph.build(chain[0].id, owner_id="bob")


@pytest.mark.parametrize("kwargs", [{"depth": -1}, {"depth": 1.5}, {"min_strength": 2}])
def test_invalid_arguments(store, chain, kwargs):
    with pytest.raises(ValueError):
        RelationshipGraph(store).build(chain[0].id, **kwargs)


def test_type_stats(store, chain):
    stats = RelationshipGraph(store).type_stats("alice")
    assert stats["total_relationships"] == 4
    assert stats["types"]["follows"] == {"count": 1, "avg_strength": 0.8}
    assert stats["types"]["related_to"]["count"] == 3
    assert stats["types"]["related_to"]["avg_strength"] == pytest.approx(0.633)
