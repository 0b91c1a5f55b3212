"""
Loads stack declarations from YAML, JSON and HCL files onto one builder.
"""
import os
from typing import Any, Dict, List, Tuple

from stackgraph.detect import detect_format
from stackgraph.errors import StackError
from stackgraph.graph.builder import StackBuilder
from stackgraph.models.declaration import StackDocument
from stackgraph.parsers import hcl_stack, yaml_stack


def collect_files(paths: List[str]) -> List[str]:
    """Expand directories into the stack files they contain, in sorted order."""
    files = []
    for p in paths:
        if os.path.isfile(p):
            files.append(p)
        elif os.path.isdir(p):
            for root, _, fnames in sorted(os.walk(p)):
                for fname in sorted(fnames):
                    fpath = os.path.join(root, fname)
                    if detect_format(fpath) != "unknown":
                        files.append(fpath)
        else:
            raise StackError(f"'{p}' does not exist")
    return files


def parse_file(filepath: str) -> StackDocument:
    fmt = detect_format(filepath)
    try:
        if fmt == "hcl":
            return hcl_stack.parse_file(filepath)
        if fmt in ("yaml", "json"):
            return yaml_stack.parse_file(filepath)
    except StackError:
        raise
    except Exception as exc:
        raise StackError(f"Failed to parse {filepath}: {exc}") from exc
    raise StackError(f"Unsupported stack file: {filepath}")


def load_stack(paths: List[str]) -> Tuple[StackBuilder, Dict[str, Any]]:
    """
    Declare every resource found in `paths` on one builder. Ids must be
    unique across all files, as must output names.
    """
    builder = StackBuilder()
    outputs: Dict[str, Any] = {}
    for fp in collect_files(paths):
        doc = parse_file(fp)
        for d in doc.declarations:
            try:
                builder.declare(d.kind, d.id, d.attributes, region=d.region)
            except ValueError as exc:
                raise StackError(f"{fp}: unknown kind '{d.kind}' for resource '{d.id}'") from exc
        for key, val in doc.outputs.items():
            if key in outputs:
                raise StackError(f"{fp}: output '{key}' is already declared")
            outputs[key] = val
    return builder, outputs
