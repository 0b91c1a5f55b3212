"""
YAML and JSON stack declarations.

    resources:
      ContactsTable:
        kind: Table
        attributes:
          table_name: demo-contacts
      CreateContactFunction:
        kind: Function
        region: ap-southeast-2
        attributes:
          environment:
            TABLE_NAME: !Ref ContactsTable.name     # or "${ContactsTable.name}"
    outputs:
      TableName: !Ref ContactsTable.name

`resources` may also be a list of entries carrying an `id` key.
"""
import json
import os
import re
from typing import Any, Dict, List

import yaml
from rich.console import Console

from stackgraph.models.declaration import Declaration, StackDocument
from stackgraph.models.resource import Ref

console = Console(stderr=True)

_REF_RE = re.compile(r"^\$\{\s*([A-Za-z0-9_-]+)\.([A-Za-z0-9_-]+)\s*\}$")


class StackLoader(yaml.SafeLoader):
    pass


def _ref_constructor(loader: yaml.SafeLoader, node: yaml.Node) -> Ref:
    return Ref.parse(loader.construct_scalar(node))


StackLoader.add_constructor("!Ref", _ref_constructor)


def convert_refs(val: Any) -> Any:
    """Turn every '${Node.key}' string into a Ref, recursively."""
    if isinstance(val, str):
        m = _REF_RE.match(val)
        return Ref(m.group(1), m.group(2)) if m else val
    if isinstance(val, dict):
        return {k: convert_refs(v) for k, v in val.items()}
    if isinstance(val, list):
        return [convert_refs(v) for v in val]
    return val


def _entries(resources: Any) -> List[Dict[str, Any]]:
    if isinstance(resources, dict):
        return [
            dict(definition, id=node_id) if isinstance(definition, dict) else {"id": node_id}
            for node_id, definition in resources.items()
        ]
    if isinstance(resources, list):
        return [r for r in resources if isinstance(r, dict)]
    return []


def parse_document(data: Any, filepath: str, source_format: str) -> StackDocument:
    doc = StackDocument(source_file=filepath, source_format=source_format)
    if not isinstance(data, dict):
        raise ValueError(f"{filepath}: expected a mapping at the top level")

    for entry in _entries(data.get("resources")):
        node_id = entry.get("id")
        kind = entry.get("kind") or entry.get("type")
        if not node_id or not kind:
            raise ValueError(f"{filepath}: every resource needs an id and a kind")
        attributes = entry.get("attributes", entry.get("properties")) or {}
        if not isinstance(attributes, dict):
            raise ValueError(f"{filepath}: attributes of '{node_id}' must be a mapping")
        doc.declarations.append(Declaration(
            kind=str(kind),
            id=str(node_id),
            attributes=convert_refs(attributes),
            region=entry.get("region"),
            source_file=filepath,
        ))

    outputs = data.get("outputs") or {}
    if not isinstance(outputs, dict):
        raise ValueError(f"{filepath}: outputs must be a mapping")
    doc.outputs = convert_refs(outputs)
    return doc


def parse_file(filepath: str) -> StackDocument:
    _, ext = os.path.splitext(filepath.lower())
    with open(filepath, encoding="utf-8") as fh:
        if ext == ".json":
            return parse_document(json.load(fh), filepath, "json")
        return parse_document(yaml.load(fh, Loader=StackLoader), filepath, "yaml")
