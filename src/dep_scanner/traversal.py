"""
Deterministic traversal of a parsed dependency graph.
"""

from typing import List, Set

from .dependency import DependencyGraph, DependencyNode


def get_all_dependencies(graph: DependencyGraph) -> List[DependencyNode]:
    """
    Collect every node reachable from the graph's roots.

    Pre-order depth-first: roots in declared order, each node's children in
    their recorded order. Each node is returned once; children missing from
    the graph (uninstalled optional dependencies) are skipped.

    Args:
        graph: Parsed dependency graph

    Returns:
        List[DependencyNode]: Reachable nodes in visit order
    """
    visited: Set[str] = set()
    result: List[DependencyNode] = []

    # Reversed pushes keep the pop order equal to the declared order
    stack = list(reversed(graph.roots))
    while stack:
        node_id = stack.pop()
        if node_id in visited:
            continue
        visited.add(node_id)

        node = graph.nodes.get(node_id)
        if node is None:
            continue

        result.append(node)
        stack.extend(reversed(node.dependencies))

    return result
