"""
Runs a declared stack end to end: build, plan, apply, report, tear down.
"""
from typing import Any, Dict, List, Optional

from stackgraph.errors import NotReadyError, UnknownReferenceError
from stackgraph.graph import planner
from stackgraph.graph.builder import StackBuilder
from stackgraph.models.resource import ResourceNode, ResourceState, iter_refs
from stackgraph.provisioning.provisioner import Provisioner


class StackOrchestrator:
    """
    Declaration and planning errors are raised from the constructor, before
    the provisioner is ever called. Outputs may only reference declared nodes.
    """

    def __init__(
        self,
        name: str,
        builder: StackBuilder,
        provisioner: Provisioner,
        outputs: Optional[Dict[str, Any]] = None,
    ):
        self.name = name
        self.provisioner = provisioner
        self.builder = builder
        self.graph = builder.build()
        self.order = planner.plan(self.graph)
        self.declared_outputs = dict(outputs or {})
        for ref in iter_refs(self.declared_outputs):
            if ref.node_id not in self.graph:
                raise UnknownReferenceError(self.name, ref.node_id)

    def plan(self) -> List[ResourceNode]:
        return list(self.order)

    def deploy(self) -> Dict[str, Any]:
        """Apply the plan and return the stack outputs."""
        # Nodes pruned by an earlier teardown come back as Destroyed and are re-created.
        if len(self.graph) < len(self.builder.nodes):
            self.graph = self.builder.build()
            self.order = planner.plan(self.graph)
        self.provisioner.apply(self.order)
        return self.outputs()

    def refresh(self, match_attributes: bool = True) -> Dict[str, Any]:
        self.provisioner.refresh(self.order, match_attributes=match_attributes)
        return self.outputs()

    def teardown(self) -> List[str]:
        """Destroy every live node in reverse plan order."""
        destroyed = self.provisioner.destroy(planner.reverse_plan(self.graph), self.graph)
        self.graph.prune()
        self.order = [n for n in self.order if n.id in self.graph]
        return destroyed

    def outputs(self) -> Dict[str, Any]:
        """Stack outputs whose references are resolvable right now."""
        resolved = {}
        for key, val in self.declared_outputs.items():
            try:
                resolved[key] = self.provisioner.registry.resolve(val, self.name)
            except NotReadyError:
                continue
        return resolved

    def states(self) -> Dict[str, ResourceState]:
        return {n.id: n.state for n in self.order}
