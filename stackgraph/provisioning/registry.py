import threading
from typing import Any, Dict, Optional, Set

from stackgraph.errors import NotReadyError, OutputConflictError, UnknownReferenceError
from stackgraph.models.resource import Ref


class OutputRegistry:
    """
    Generated outputs per node. Values become readable once the node is
    marked ready, and each key is write-once.
    """

    def __init__(self):
        self._outputs: Dict[str, Dict[str, Any]] = {}
        self._ready: Set[str] = set()
        self._lock = threading.Lock()

    def set(self, node_id: str, key: str, value: Any) -> None:
        with self._lock:
            values = self._outputs.setdefault(node_id, {})
            if key in values:
                if values[key] != value:
                    raise OutputConflictError(node_id, key, values[key], value)
                return
            values[key] = value

    def mark_ready(self, node_id: str) -> None:
        with self._lock:
            self._outputs.setdefault(node_id, {})
            self._ready.add(node_id)

    def forget(self, node_id: str) -> None:
        """Drop a destroyed node's outputs."""
        with self._lock:
            self._ready.discard(node_id)
            self._outputs.pop(node_id, None)

    def is_ready(self, node_id: str) -> bool:
        return node_id in self._ready

    def get(self, node_id: str, key: str, requester: Optional[str] = None) -> Any:
        if node_id not in self._ready:
            raise NotReadyError(node_id)
        values = self._outputs[node_id]
        if key not in values:
            raise UnknownReferenceError(requester or node_id, node_id, key)
        return values[key]

    def outputs(self, node_id: str) -> Dict[str, Any]:
        if node_id not in self._ready:
            raise NotReadyError(node_id)
        return dict(self._outputs[node_id])

    def resolve(self, val: Any, requester: Optional[str] = None) -> Any:
        """Return `val` with every Ref replaced by the referenced output."""
        if isinstance(val, Ref):
            return self.get(val.node_id, val.key, requester)
        if isinstance(val, dict):
            return {k: self.resolve(v, requester) for k, v in val.items()}
        if isinstance(val, (list, tuple)):
            return [self.resolve(v, requester) for v in val]
        return val
