"""
Stack declaration and dependency graph construction.
"""
from typing import Any, Dict, Iterable, List, Optional, Union

from stackgraph.errors import DuplicateIdError, UnknownReferenceError
from stackgraph.models.resource import ResourceKind, ResourceNode, ResourceState


class Graph:
    """Declared nodes plus the reference edges between them."""

    def __init__(self, nodes: Iterable[ResourceNode]):
        self.nodes: Dict[str, ResourceNode] = {n.id: n for n in nodes}
        self._references: Dict[str, List[str]] = {}
        self._dependents: Dict[str, List[str]] = {node_id: [] for node_id in self.nodes}
        for node in self.nodes.values():
            refs = node.references()
            for target in refs:
                if target not in self.nodes:
                    raise UnknownReferenceError(node.id, target)
                self._dependents[target].append(node.id)
            self._references[node.id] = refs

    def __contains__(self, node_id: str) -> bool:
        return node_id in self.nodes

    def __iter__(self):
        return iter(self.nodes.values())

    def __len__(self) -> int:
        return len(self.nodes)

    def node(self, node_id: str) -> ResourceNode:
        return self.nodes[node_id]

    def references(self, node_id: str) -> List[str]:
        """Nodes that `node_id` reads outputs from."""
        return list(self._references[node_id])

    def dependents(self, node_id: str) -> List[str]:
        """Nodes that read outputs from `node_id`."""
        return list(self._dependents[node_id])

    def edges(self) -> List[tuple]:
        return [(src, dst) for src, dsts in self._references.items() for dst in dsts]

    def prune(self) -> List[str]:
        """
        Drop Destroyed nodes from the live set once nothing live references them.
        Returns the removed ids.
        """
        removed: List[str] = []
        changed = True
        while changed:
            changed = False
            for node_id, node in list(self.nodes.items()):
                if node.state != ResourceState.DESTROYED:
                    continue
                if self._dependents[node_id]:
                    continue
                for target in self._references.pop(node_id):
                    self._dependents[target].remove(node_id)
                del self._dependents[node_id]
                del self.nodes[node_id]
                removed.append(node_id)
                changed = True
        return removed


class StackBuilder:
    """Collects node declarations and builds the graph from them."""

    def __init__(self):
        self._nodes: Dict[str, ResourceNode] = {}

    def declare(
        self,
        kind: Union[ResourceKind, str],
        node_id: str,
        attributes: Optional[Dict[str, Any]] = None,
        region: Optional[str] = None,
    ) -> ResourceNode:
        if node_id in self._nodes:
            raise DuplicateIdError(node_id)
        node = ResourceNode(
            id=node_id,
            kind=ResourceKind(kind),
            attributes=dict(attributes or {}),
            region=region,
        )
        self._nodes[node_id] = node
        return node

    @property
    def nodes(self) -> List[ResourceNode]:
        return list(self._nodes.values())

    def build(self) -> Graph:
        return Graph(self._nodes.values())
