"""
Applies planned nodes against a resource provider, and tears them down.
"""
import time
from typing import Any, Callable, Dict, Iterable, List, Optional

from rich.console import Console

from stackgraph.errors import (
    DependentsRemainError,
    NotReadyError,
    ProviderError,
    ProvisionError,
    ResourceAbsentError,
    TransientProviderError,
)
from stackgraph.graph.builder import Graph
from stackgraph.models.resource import ResourceNode, ResourceState
from stackgraph.providers.base import ResourceProvider
from stackgraph.provisioning.registry import OutputRegistry

console = Console(stderr=True)

MAX_ATTEMPTS = 5
BASE_DELAY = 1.0
MAX_DELAY = 30.0
WAIT_TIMEOUT = 300.0
POLL_INTERVAL = 5.0

# States in which a node may still hold a provider-side resource.
_LIVE_STATES = {
    ResourceState.PROVISIONING,
    ResourceState.READY,
    ResourceState.FAILED,
    ResourceState.DESTROYING,
}


class Provisioner:
    """
    Walks an ordered node list and converges each node against the provider.

    The registry outlives individual runs, so a second apply() on the same
    nodes only revisits those that are not Ready.
    """

    def __init__(
        self,
        provider: ResourceProvider,
        default_region: str,
        registry: Optional[OutputRegistry] = None,
        max_attempts: int = MAX_ATTEMPTS,
        base_delay: float = BASE_DELAY,
        max_delay: float = MAX_DELAY,
        wait_timeout: float = WAIT_TIMEOUT,
        poll_interval: float = POLL_INTERVAL,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.provider = provider
        self.default_region = default_region
        self.registry = registry if registry is not None else OutputRegistry()
        self.max_attempts = max(1, max_attempts)
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.wait_timeout = wait_timeout
        self.poll_interval = poll_interval
        self.sleep = sleep
        self.clock = clock

    # ------------------------------------------------------------------ apply

    def apply(self, nodes: Iterable[ResourceNode]) -> OutputRegistry:
        """
        Provision `nodes` in the given order. Stops at the first node that
        fails; nodes already Ready stay as they are.

        Raises:
            ProvisionError: a node failed after retries, or was rejected
            NotReadyError: the order is not a valid plan
        """
        for node in nodes:
            if node.state == ResourceState.READY:
                continue
            if node.state in (ResourceState.FAILED, ResourceState.DESTROYED):
                node.transition(ResourceState.PENDING)
                self.registry.forget(node.id)
            self._provision(node)
        return self.registry

    def refresh(
        self, nodes: Iterable[ResourceNode], match_attributes: bool = True
    ) -> OutputRegistry:
        """
        Adopt resources that already exist, without creating anything. With
        match_attributes=False, a resource is adopted even if its recorded
        attributes have drifted from the declaration (used before teardown).
        It is then looked up by address alone, so a missing resource does not
        hide the ones that reference it. When attributes are matched, nodes
        whose references cannot be resolved are left Pending.
        """
        for node in nodes:
            if node.state != ResourceState.PENDING:
                continue
            attributes = None
            if match_attributes:
                if any(not self.registry.is_ready(ref) for ref in node.references()):
                    continue
                attributes = self.registry.resolve(node.attributes, node.id)
            region = self.region_for(node)
            try:
                outputs = self._with_retry(
                    node,
                    lambda: self.provider.lookup(node.kind, node.id, attributes, region),
                )
            except ProviderError as exc:
                raise ProvisionError(node.id, node.kind.value, exc) from exc
            if outputs is None:
                continue
            node.transition(ResourceState.PROVISIONING)
            self._publish(node, outputs)
        return self.registry

    def region_for(self, node: ResourceNode) -> str:
        return node.region or self.default_region

    def _provision(self, node: ResourceNode) -> None:
        for ref in node.references():
            if not self.registry.is_ready(ref):
                raise NotReadyError(ref)
        attributes = self.registry.resolve(node.attributes, node.id)
        region = self.region_for(node)

        node.transition(ResourceState.PROVISIONING)
        try:
            outputs = self._with_retry(
                node, lambda: self._converge(node, attributes, region)
            )
        except ProviderError as exc:
            node.transition(ResourceState.FAILED)
            console.print(f"[red]Failed:[/red] {node.qualified_name}: {exc}")
            raise ProvisionError(node.id, node.kind.value, exc) from exc
        except BaseException:
            node.transition(ResourceState.FAILED)
            raise
        self._publish(node, outputs)

    def _converge(
        self, node: ResourceNode, attributes: Dict[str, Any], region: str
    ) -> Dict[str, Any]:
        outputs = self.provider.lookup(node.kind, node.id, attributes, region)
        if outputs is not None:
            console.print(f"[dim]Reused[/dim] {node.qualified_name} ({region})")
        else:
            outputs = self.provider.create(node.kind, node.id, attributes, region)
            console.print(f"[green]Created[/green] {node.qualified_name} ({region})")
        self._await_ready(node, region)
        return outputs

    def _await_ready(self, node: ResourceNode, region: str) -> None:
        deadline = self.clock() + self.wait_timeout
        while not self.provider.is_ready(node.kind, node.id, region):
            if self.clock() >= deadline:
                raise TransientProviderError(
                    f"timed out after {self.wait_timeout:.0f}s waiting for {node.qualified_name}"
                )
            self.sleep(self.poll_interval)

    def _publish(self, node: ResourceNode, outputs: Dict[str, Any]) -> None:
        for key, value in outputs.items():
            self.registry.set(node.id, key, value)
        self.registry.mark_ready(node.id)
        node.outputs = self.registry.outputs(node.id)
        node.transition(ResourceState.READY)

    def _with_retry(self, node: ResourceNode, fn: Callable[[], Any]) -> Any:
        for attempt in range(1, self.max_attempts + 1):
            try:
                return fn()
            except TransientProviderError as exc:
                if attempt == self.max_attempts:
                    raise
                delay = min(self.base_delay * (2 ** (attempt - 1)), self.max_delay)
                console.print(
                    f"[yellow]Warning:[/yellow] {node.qualified_name}: {exc}; "
                    f"retrying in {delay:.1f}s ({attempt}/{self.max_attempts})"
                )
                self.sleep(delay)

    # ------------------------------------------------------------------ destroy

    def destroy(
        self, nodes: Iterable[ResourceNode], graph: Optional[Graph] = None
    ) -> List[str]:
        """
        Tear down `nodes` in the given (reverse plan) order. A node is only
        torn down once every node referencing it holds nothing live.
        Returns the ids destroyed in this run.

        Raises:
            DependentsRemainError: the order would orphan a reference
            ProvisionError: the provider failed to delete a node
        """
        nodes = list(nodes)
        known: Dict[str, ResourceNode] = {n.id: n for n in nodes}
        if graph is not None:
            known.update(graph.nodes)
        dependents: Dict[str, List[str]] = {node_id: [] for node_id in known}
        for n in known.values():
            for ref in n.references():
                if ref in dependents and n.id not in dependents[ref]:
                    dependents[ref].append(n.id)

        destroyed: List[str] = []
        for node in nodes:
            if node.state not in _LIVE_STATES:
                continue
            live = [d for d in dependents[node.id] if known[d].state in _LIVE_STATES]
            if live:
                raise DependentsRemainError(node.id, live)

            region = self.region_for(node)
            node.transition(ResourceState.DESTROYING)
            try:
                self._with_retry(node, lambda: self._delete(node, region))
            except ProviderError as exc:
                node.transition(ResourceState.FAILED)
                console.print(f"[red]Failed:[/red] {node.qualified_name}: {exc}")
                raise ProvisionError(node.id, node.kind.value, exc) from exc
            except BaseException:
                node.transition(ResourceState.FAILED)
                raise
            node.transition(ResourceState.DESTROYED)
            node.outputs = {}
            self.registry.forget(node.id)
            destroyed.append(node.id)
        return destroyed

    def _delete(self, node: ResourceNode, region: str) -> None:
        try:
            self.provider.delete(node.kind, node.id, region)
        except ResourceAbsentError:
            console.print(f"[dim]Already absent[/dim] {node.qualified_name}")
            return
        console.print(f"[green]Destroyed[/green] {node.qualified_name} ({region})")
