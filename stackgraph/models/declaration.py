from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


@dataclass
class Declaration:
    kind: str              # ResourceKind value, e.g. "Table"
    id: str                # logical name, unique within the stack
    attributes: Dict[str, Any] = field(default_factory=dict)
    region: Optional[str] = None
    source_file: str = ""


@dataclass
class StackDocument:
    source_file: str
    source_format: str = ""      # "yaml", "json", "hcl"
    declarations: List[Declaration] = field(default_factory=list)
    outputs: Dict[str, Any] = field(default_factory=dict)
