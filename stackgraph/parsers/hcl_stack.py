"""
HCL stack declarations.

    resource "Table" "ContactsTable" {
      table_name = "demo-contacts"
    }

    resource "Function" "CreateContactFunction" {
      region  = "ap-southeast-2"
      handler = "index.handler"
      environment = {
        TABLE_NAME = "${ContactsTable.name}"
      }
    }

    output "TableName" {
      value = "${ContactsTable.name}"
    }

`region` inside a resource block is the node's region override, not an
attribute.
"""
from typing import Any, Dict, Iterator, Tuple

import hcl2

from stackgraph.models.declaration import Declaration, StackDocument
from stackgraph.parsers.yaml_stack import convert_refs


def _clean(val: Any) -> Any:
    """
    Strip the quoting some python-hcl2 releases keep around string values,
    and the parser's own metadata keys.
    """
    if isinstance(val, str):
        if len(val) >= 2 and val[0] == '"' and val[-1] == '"':
            return val[1:-1]
        return val
    if isinstance(val, list):
        return [_clean(v) for v in val]
    if isinstance(val, dict):
        return {
            _clean(k): _clean(v)
            for k, v in val.items()
            if not (isinstance(k, str) and k.startswith("__"))
        }
    return val


def _blocks(data: Dict[str, Any], block_type: str) -> Iterator[Tuple[str, Any]]:
    """Yield (label, body) for every `block_type` block."""
    for block in data.get(block_type, []):
        if not isinstance(block, dict):
            continue
        for label, body in block.items():
            yield label, body


def parse_file(filepath: str) -> StackDocument:
    with open(filepath, encoding="utf-8") as fh:
        data = _clean(hcl2.load(fh))

    doc = StackDocument(source_file=filepath, source_format="hcl")

    for kind, instances in _blocks(data, "resource"):
        if isinstance(instances, dict):
            instances = [instances]
        for instance_map in instances:
            if not isinstance(instance_map, dict):
                continue
            for node_id, raw_props in instance_map.items():
                props = dict(raw_props) if isinstance(raw_props, dict) else {}
                region = props.pop("region", None)
                doc.declarations.append(Declaration(
                    kind=kind,
                    id=node_id,
                    attributes=convert_refs(props),
                    region=region,
                    source_file=filepath,
                ))

    for name, body in _blocks(data, "output"):
        if isinstance(body, list):
            body = body[0] if body else {}
        if isinstance(body, dict) and "value" in body:
            doc.outputs[name] = convert_refs(body["value"])

    return doc
