"""
JSON plan report generator.
"""
import json
from datetime import datetime, timezone
from typing import Any, Dict, List

from stackgraph import __version__
from stackgraph.models.resource import ResourceNode, ResourceState


def _count_by_state(nodes: List[ResourceNode]) -> dict:
    counts = {s.value: 0 for s in ResourceState}
    for n in nodes:
        counts[n.state.value] += 1
    return counts


def build_report(
    nodes: List[ResourceNode],
    outputs: Dict[str, Any],
    source: str,
    stack: str = "stack",
    default_region: str = "",
) -> str:
    report = {
        "meta": {
            "generated": datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ"),
            "source": source,
            "stack": stack,
            "tool": "stackgraph",
            "version": __version__,
        },
        "summary": _count_by_state(nodes),
        "plan": [
            {
                "position": i,
                "id": n.id,
                "kind": n.kind.value,
                "region": n.region or default_region,
                "state": n.state.value,
                "references": n.references(),
                "outputs": n.outputs,
            }
            for i, n in enumerate(nodes, 1)
        ],
        "outputs": outputs,
    }
    return json.dumps(report, indent=2, default=str)
