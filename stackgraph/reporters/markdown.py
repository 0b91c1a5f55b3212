"""
Markdown + Mermaid plan report generator.
"""
import re
from collections import defaultdict
from datetime import datetime, timezone
from typing import Any, Dict, List

from jinja2 import Environment

from stackgraph import __version__
from stackgraph.models.resource import ResourceKind, ResourceNode, ResourceState, iter_refs

_STATE_EMOJI = {
    "Pending": "⚪",
    "Provisioning": "🔵",
    "Ready": "🟢",
    "Failed": "🔴",
    "Destroying": "🟠",
    "Destroyed": "⚫",
}

_STATE_ASCII = {s.value: f"[{s.value.upper()}]" for s in ResourceState}

_STATE_STYLE = {
    "Ready": "fill:#88cc00,color:#000",
    "Failed": "fill:#ff4444,color:#fff",
    "Destroyed": "fill:#999999,color:#fff",
}


def _sanitize_node_id(name: str) -> str:
    return re.sub(r"[^a-zA-Z0-9_]", "_", name)


def _node_shape(node: ResourceNode) -> str:
    """Return a Mermaid node definition string (without ID)."""
    label = f"{node.id}<br/>{node.kind.value}"
    if node.kind in (ResourceKind.ZONE, ResourceKind.ALIAS_RECORD):
        return f"{{{{{label}}}}}"
    if node.kind in (ResourceKind.TABLE, ResourceKind.BUCKET):
        return f"[({label})]"
    if node.kind in (ResourceKind.GATEWAY, ResourceKind.DISTRIBUTION):
        return f"(({label}))"
    if node.kind == ResourceKind.CERTIFICATE:
        return f"[/{label}/]"
    if node.kind == ResourceKind.DEPLOYMENT:
        return f">{label}]"
    return f"[{label}]"


def _edge_labels(node: ResourceNode) -> Dict[str, List[str]]:
    """Referenced node id -> output keys read from it."""
    labels: Dict[str, List[str]] = defaultdict(list)
    for ref in iter_refs(node.attributes):
        if ref.key not in labels[ref.node_id]:
            labels[ref.node_id].append(ref.key)
    return labels


def build_mermaid(nodes: List[ResourceNode], default_region: str = "") -> str:
    lines = ["flowchart LR"]

    by_region: Dict[str, List[ResourceNode]] = defaultdict(list)
    for n in nodes:
        by_region[n.region or default_region or "default"].append(n)

    for region, members in by_region.items():
        lines.append(f"    subgraph {_sanitize_node_id(region)}[\"{region}\"]")
        for n in members:
            lines.append(f"        {_sanitize_node_id(n.id)}{_node_shape(n)}")
        lines.append("    end")

    # Edges point from a node to what it depends on
    for n in nodes:
        src_id = _sanitize_node_id(n.id)
        for dst, keys in _edge_labels(n).items():
            lines.append(f"    {src_id} -->|{', '.join(keys)}| {_sanitize_node_id(dst)}")

    for n in nodes:
        style = _STATE_STYLE.get(n.state.value)
        if style:
            lines.append(f"    style {_sanitize_node_id(n.id)} {style}")

    return "\n".join(lines)


_TEMPLATE = """\
# Stack Plan: {{ stack }}

**Generated:** {{ generated }}
**Source:** {{ source }}
**Tool:** stackgraph v{{ version }}

---

## Summary

**{{ nodes|length }} resources** in {{ regions|length }} region(s): {{ regions|join(", ") }}.
{% for state, count in counts.items() if count %}
- **{{ state }}**: {{ count }}{% endfor %}

---

## Creation Order

| # | Resource | Kind | Region | State | Depends on |
|---|----------|------|--------|-------|------------|
{% for n in nodes %}| {{ loop.index }} | `{{ n.id }}` | {{ n.kind.value }} | {{ n.region or default_region }} | {{ state_icon[n.state.value] }} {{ n.state.value }} | {{ n.references()|join(", ") or "-" }} |
{% endfor %}
Teardown runs in exactly the reverse order.
{% if outputs %}

---

## Outputs

| Output | Value |
|--------|-------|
{% for key, val in outputs.items() %}| {{ key }} | {{ val }} |
{% endfor %}{% endif %}

---

## Dependency Diagram

```mermaid
{{ mermaid }}
```
"""


def _count_by_state(nodes: List[ResourceNode]) -> Dict[str, int]:
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
    ascii_mode: bool = False,
) -> str:
    regions = sorted({n.region or default_region for n in nodes} - {""})

    env = Environment(autoescape=False)
    template = env.from_string(_TEMPLATE)

    return template.render(
        generated=datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M UTC"),
        source=source,
        stack=stack,
        version=__version__,
        nodes=nodes,
        regions=regions,
        counts=_count_by_state(nodes),
        outputs={k: str(v) for k, v in outputs.items()},
        default_region=default_region,
        state_icon=_STATE_ASCII if ascii_mode else _STATE_EMOJI,
        mermaid=build_mermaid(nodes, default_region),
    )
