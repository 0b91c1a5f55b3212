"""
Contract between the provisioner and an external resource API.
"""
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

from stackgraph.models.resource import ResourceKind


class ResourceProvider(ABC):
    """
    Resources are addressed by (kind, node_id, region). Attributes handed to
    a provider are fully resolved: they never contain references.
    """

    @abstractmethod
    def lookup(
        self,
        kind: ResourceKind,
        node_id: str,
        attributes: Optional[Dict[str, Any]],
        region: str,
    ) -> Optional[Dict[str, Any]]:
        """
        Outputs of an existing resource with identical attributes, else None.
        With attributes=None any existing resource at that address matches.
        """

    @abstractmethod
    def create(
        self,
        kind: ResourceKind,
        node_id: str,
        attributes: Dict[str, Any],
        region: str,
    ) -> Dict[str, Any]:
        """
        Create (or replace) the resource and return its generated outputs.

        Raises:
            TransientProviderError: throttled or eventually-consistent miss
            TerminalProviderError: configuration rejected
        """

    def is_ready(self, kind: ResourceKind, node_id: str, region: str) -> bool:
        """Whether a long-running creation (validation, rollout) has settled."""
        return True

    @abstractmethod
    def delete(self, kind: ResourceKind, node_id: str, region: str) -> None:
        """
        Raises:
            ResourceAbsentError: nothing to delete
        """
