from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional

from stackgraph.errors import InvalidTransitionError


class ResourceKind(str, Enum):
    ZONE         = "Zone"
    CERTIFICATE  = "Certificate"
    TABLE        = "Table"
    FUNCTION     = "Function"
    GATEWAY      = "Gateway"
    BUCKET       = "Bucket"
    DISTRIBUTION = "Distribution"
    ALIAS_RECORD = "AliasRecord"
    DEPLOYMENT   = "Deployment"


class ResourceState(str, Enum):
    PENDING      = "Pending"
    PROVISIONING = "Provisioning"
    READY        = "Ready"
    FAILED       = "Failed"
    DESTROYING   = "Destroying"
    DESTROYED    = "Destroyed"


# Pending -> Provisioning -> {Ready | Failed}; Ready -> Destroying -> Destroyed.
# Failed may go back to Pending on the next apply, or to Destroying on teardown.
_TRANSITIONS = {
    ResourceState.PENDING:      {ResourceState.PROVISIONING},
    ResourceState.PROVISIONING: {ResourceState.READY, ResourceState.FAILED},
    ResourceState.READY:        {ResourceState.DESTROYING},
    ResourceState.FAILED:       {ResourceState.PENDING, ResourceState.DESTROYING},
    ResourceState.DESTROYING:   {ResourceState.DESTROYED, ResourceState.FAILED},
    ResourceState.DESTROYED:    {ResourceState.PENDING},
}


@dataclass(frozen=True)
class Ref:
    """Placeholder for another node's output, resolved at apply time."""
    node_id: str
    key: str

    @classmethod
    def parse(cls, text: str) -> "Ref":
        """Parse 'Node.key' (optionally wrapped in ${...})."""
        text = text.strip()
        if text.startswith("${") and text.endswith("}"):
            text = text[2:-1]
        node_id, sep, key = text.partition(".")
        if not sep or not node_id or not key:
            raise ValueError(f"Invalid reference {text!r}, expected 'Node.key'")
        return cls(node_id, key)

    def __str__(self) -> str:
        return f"${{{self.node_id}.{self.key}}}"


def iter_refs(val: Any) -> Iterator[Ref]:
    """Recursively yield every Ref inside an attribute value."""
    if isinstance(val, Ref):
        yield val
    elif isinstance(val, dict):
        for v in val.values():
            yield from iter_refs(v)
    elif isinstance(val, (list, tuple)):
        for item in val:
            yield from iter_refs(item)


@dataclass
class ResourceNode:
    id: str
    kind: ResourceKind
    attributes: Dict[str, Any] = field(default_factory=dict)
    region: Optional[str] = None
    outputs: Dict[str, Any] = field(default_factory=dict)
    state: ResourceState = ResourceState.PENDING

    @property
    def qualified_name(self) -> str:
        return f"{self.kind.value}.{self.id}"

    def references(self) -> List[str]:
        """Ids of the nodes this one references, in first-appearance order."""
        seen: List[str] = []
        for ref in iter_refs(self.attributes):
            if ref.node_id not in seen:
                seen.append(ref.node_id)
        return seen

    def transition(self, new_state: ResourceState) -> None:
        if new_state not in _TRANSITIONS[self.state]:
            raise InvalidTransitionError(
                f"{self.qualified_name}: illegal transition "
                f"{self.state.value} -> {new_state.value}"
            )
        self.state = new_state
