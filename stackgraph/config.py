"""
Stack settings: built-in defaults, then stackgraph.yaml in the working
directory, then environment variables, then CLI flags.
"""
import os
from dataclasses import dataclass, field, fields, replace
from typing import Any, Dict, List, Mapping, Optional

import yaml
from rich.console import Console

from stackgraph.errors import StackError

console = Console(stderr=True)

CONFIG_FILE = "stackgraph.yaml"

_ENV_VARS = {
    "domain_name": "DOMAIN_NAME",
    "subdomain": "SUB_DOMAIN",
    "region": "AWS_DEFAULT_REGION",
    "state_file": "STACKGRAPH_STATE_FILE",
}

TABLE_ACCESS_LEVELS = ("read", "write", "read_write")


@dataclass
class Settings:
    domain_name: str = ""
    subdomain: str = ""
    region: str = "ap-southeast-2"
    cdn_certificate_region: str = "us-east-1"
    asset_dir: str = os.path.join("frontend", "build")
    state_file: str = os.path.join(".stackgraph", "state.json")
    table_access: str = "read_write"
    max_attempts: int = 5
    base_delay: float = 1.0
    max_delay: float = 30.0
    wait_timeout: float = 300.0
    poll_interval: float = 5.0
    hosted_zones: List[str] = field(default_factory=list)

    @property
    def site_domain(self) -> str:
        return f"{self.subdomain}.{self.domain_name}"

    @property
    def api_domain(self) -> str:
        return f"api.{self.subdomain}.{self.domain_name}"

    @property
    def site_url(self) -> str:
        return f"https://{self.site_domain}"

    @property
    def api_url(self) -> str:
        return f"https://{self.api_domain}"

    @property
    def zones(self) -> List[str]:
        return self.hosted_zones or ([self.domain_name] if self.domain_name else [])

    def validate(self) -> None:
        if not self.domain_name:
            raise StackError("domain name is required (--domain or DOMAIN_NAME)")
        if not self.subdomain:
            raise StackError("subdomain is required (--subdomain or SUB_DOMAIN)")
        if self.table_access not in TABLE_ACCESS_LEVELS:
            raise StackError(
                f"table_access must be one of {', '.join(TABLE_ACCESS_LEVELS)}, "
                f"got '{self.table_access}'"
            )


def _read_config_file(path: str) -> Dict[str, Any]:
    if not os.path.exists(path):
        return {}
    try:
        with open(path, "r", encoding="utf-8") as fh:
            data = yaml.safe_load(fh) or {}
    except yaml.YAMLError as exc:
        raise StackError(f"Invalid config file {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise StackError(f"Config file {path} must contain a mapping")
    return data


def load_settings(
    overrides: Optional[Mapping[str, Any]] = None,
    config_path: str = CONFIG_FILE,
    environ: Optional[Mapping[str, str]] = None,
) -> Settings:
    environ = os.environ if environ is None else environ
    known = {f.name: f for f in fields(Settings)}
    values: Dict[str, Any] = {}

    for key, val in _read_config_file(config_path).items():
        if key not in known:
            console.print(f"[yellow]Warning:[/yellow] unknown setting '{key}' in {config_path}, ignoring.")
            continue
        values[key] = val

    for key, var in _ENV_VARS.items():
        if environ.get(var):
            values[key] = environ[var]

    for key, val in (overrides or {}).items():
        if val is not None:
            values[key] = val

    settings = Settings()
    coerced = {}
    for key, val in values.items():
        default = getattr(settings, key)
        try:
            if isinstance(default, list):
                coerced[key] = [val] if isinstance(val, str) else list(val)
            elif isinstance(default, (int, float)):
                coerced[key] = type(default)(val)
            else:
                coerced[key] = str(val)
        except (TypeError, ValueError) as exc:
            raise StackError(f"Invalid value for setting '{key}': {val!r}") from exc
    return replace(settings, **coerced)
