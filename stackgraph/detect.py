import json
import os

import yaml

from stackgraph.parsers.yaml_stack import StackLoader


def _is_stack_doc(doc) -> bool:
    return isinstance(doc, dict) and isinstance(doc.get("resources"), (dict, list))


def detect_format(filepath: str) -> str:
    """
    Return 'hcl', 'yaml', 'json', or 'unknown'.
    """
    _, ext = os.path.splitext(filepath.lower())

    if ext in (".hcl", ".tf"):
        return "hcl"

    if ext == ".json":
        try:
            with open(filepath, encoding="utf-8") as fh:
                data = json.load(fh)
        except (OSError, ValueError):
            return "unknown"
        return "json" if _is_stack_doc(data) else "unknown"

    if ext in (".yaml", ".yml"):
        try:
            with open(filepath, encoding="utf-8") as fh:
                data = yaml.load(fh, Loader=StackLoader)
        except (OSError, ValueError, yaml.YAMLError):
            return "unknown"
        return "yaml" if _is_stack_doc(data) else "unknown"

    return "unknown"
