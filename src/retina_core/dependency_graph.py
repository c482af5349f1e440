# retina_core/dependency_graph.py
"""
Goal dependency graph checks.

Edges run in execution order: "A depends on B" gives B -> A and
"A enables B" gives A -> B. The graph is rebuilt from the supplied
dependencies on every call.
"""
from typing import Iterable, List, Optional, Sequence

import networkx as nx

from .data_structures import (
    AffectedGoals,
    CycleDetectionResult,
    GoalDependency,
    ValidationResult,
)


def _check_ids(ids, what: str) -> List[str]:
    if isinstance(ids, str) or not isinstance(ids, (list, tuple)):
        raise TypeError(f"{what} must be a list of goal ids, got {type(ids).__name__}")
    for i in ids:
        if not isinstance(i, str):
            raise TypeError(f"{what} must contain strings, got {i!r}")
    return list(ids)


def _check_dependency(dep: GoalDependency):
    if not isinstance(dep.goal_id, str):
        raise TypeError(f"goal_id must be a string, got {dep.goal_id!r}")
    _check_ids(dep.depends_on, f"{dep.goal_id}.depends_on")
    _check_ids(dep.enables, f"{dep.goal_id}.enables")


def build_graph(dependencies: Iterable[GoalDependency]) -> nx.DiGraph:
    # DiGraph keeps insertion order, so traversal (and the reported cycle)
    # is deterministic for a given input order.
    G = nx.DiGraph()
    for dep in dependencies:
        _check_dependency(dep)
        G.add_node(dep.goal_id)
        for target in dep.depends_on:
            G.add_edge(target, dep.goal_id)
        for target in dep.enables:
            G.add_edge(dep.goal_id, target)
    return G


def _requirement_graph(dependencies: Iterable[GoalDependency]) -> nx.DiGraph:
    """goal -> dependency edges only; enables never count as upstream."""
    G = nx.DiGraph()
    for dep in dependencies:
        _check_dependency(dep)
        G.add_node(dep.goal_id)
        for target in dep.depends_on:
            G.add_edge(dep.goal_id, target)
    return G


def find_cycle(graph: nx.DiGraph) -> Optional[List[str]]:
    """
    First cycle found, as a closed path in edge direction
    [n0, n1, ..., n0], or None.
    """
    try:
        edges = nx.find_cycle(graph)
    except nx.NetworkXNoCycle:
        return None
    return [u for u, _ in edges] + [edges[0][0]]


def would_create_cycle(
    existing: Sequence[GoalDependency],
    goal_id: str,
    depends_on: Sequence[str],
    enables: Sequence[str],
) -> CycleDetectionResult:
    """
    Check whether replacing ``goal_id``'s entry with the proposed edges
    closes a cycle. Cycles are reported as data, never raised.
    """
    if not isinstance(goal_id, str):
        raise TypeError(f"goal_id must be a string, got {goal_id!r}")

    proposed = GoalDependency(
        goal_id=goal_id,
        depends_on=_check_ids(depends_on, "depends_on"),
        enables=_check_ids(enables, "enables"),
    )
    all_deps = [d for d in existing if d.goal_id != goal_id] + [proposed]

    cycle = find_cycle(build_graph(all_deps))
    if cycle:
        # report in dependency order: each id depends on the next
        cycle = cycle[::-1]
        return CycleDetectionResult(
            has_cycle=True,
            cycle=cycle,
            message=f"Circular dependency detected: {' → '.join(cycle)}",
        )

    return CycleDetectionResult(
        has_cycle=False, message="No circular dependencies detected"
    )


def validate_dependencies(
    goal_id: str,
    depends_on: Sequence[str],
    enables: Sequence[str],
    existing: Sequence[GoalDependency],
) -> ValidationResult:
    depends_on = _check_ids(depends_on, "depends_on")
    enables = _check_ids(enables, "enables")

    if goal_id in depends_on or goal_id in enables:
        return ValidationResult(False, "A goal cannot depend on itself")

    if set(depends_on) & set(enables):
        return ValidationResult(
            False, "A goal cannot both depend on and enable the same goal"
        )

    res = would_create_cycle(existing, goal_id, depends_on, enables)
    if res.has_cycle:
        return ValidationResult(False, res.message)

    return ValidationResult(True)


def get_topological_order(dependencies: Sequence[GoalDependency]) -> Optional[List[str]]:
    """Execution order of every goal, or None when the graph has a cycle."""
    G = build_graph(dependencies)
    try:
        return list(nx.topological_sort(G))
    except nx.NetworkXUnfeasible:
        return None


def _reachable(G: nx.DiGraph, node: str) -> List[str]:
    # nx.descendants never includes the source; a goal on a cycle
    # reaches itself.
    if node not in G:
        return []
    reach = nx.descendants(G, node)
    if G.has_edge(node, node) or any(p in reach for p in G.predecessors(node)):
        reach.add(node)
    return [n for n in G if n in reach]


def get_affected_goals(goal_id: str, dependencies: Sequence[GoalDependency]) -> AffectedGoals:
    """
    upstream: transitive closure of depends_on.
    downstream: every goal reachable forward from ``goal_id``.
    """
    return AffectedGoals(
        upstream=_reachable(_requirement_graph(dependencies), goal_id),
        downstream=_reachable(build_graph(dependencies), goal_id),
    )
