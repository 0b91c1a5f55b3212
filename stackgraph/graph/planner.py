"""
Topological ordering of a stack graph.

Depth-first traversal with a three-colour marker. Nodes are started in
declaration order and each node emits its references (visited in
declaration order) before itself. A referenced node therefore lands just
before its first referencer, ahead of independent nodes declared earlier
than it: declaring a -> c, b, c plans as [c, a, b]. The same declarations always
yield the same plan.
"""
from typing import Dict, List

from stackgraph.errors import CycleError
from stackgraph.graph.builder import Graph
from stackgraph.models.resource import ResourceNode

_WHITE = 0  # unvisited
_GRAY = 1   # on the current DFS path
_BLACK = 2  # done


def plan(graph: Graph) -> List[ResourceNode]:
    """Return every node after all the nodes it references."""
    order: List[str] = []
    color: Dict[str, int] = {node_id: _WHITE for node_id in graph.nodes}
    index = {node_id: i for i, node_id in enumerate(graph.nodes)}
    path: List[str] = []

    def visit(node_id: str) -> None:
        color[node_id] = _GRAY
        path.append(node_id)
        for dep in sorted(graph.references(node_id), key=index.__getitem__):
            if color[dep] == _GRAY:
                raise CycleError(path[path.index(dep):] + [dep])
            if color[dep] == _WHITE:
                visit(dep)
        path.pop()
        color[node_id] = _BLACK
        order.append(node_id)

    for node_id in graph.nodes:
        if color[node_id] == _WHITE:
            visit(node_id)

    return [graph.node(node_id) for node_id in order]


def reverse_plan(graph: Graph) -> List[ResourceNode]:
    """Teardown order: the exact reverse of plan()."""
    return list(reversed(plan(graph)))
