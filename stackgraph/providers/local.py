"""
In-process model of a cloud account.

LocalProvider keeps every resource it creates in a plain dict that can be
saved to (and restored from) the JSON state file, and it enforces the
constraints a real account imposes on this topology: hosted zones are looked
up rather than created, a CDN distribution only accepts certificates issued
in the CDN region, a gateway only accepts certificates from its own region,
and a bucket cannot be deleted while it still holds objects.
"""
import hashlib
import json
import os
from typing import Any, Callable, Dict, List, Optional

from stackgraph.errors import (
    ResourceAbsentError,
    TerminalProviderError,
    TransientProviderError,
)
from stackgraph.models.resource import ResourceKind
from stackgraph.providers.base import ResourceProvider

DEFAULT_ACCOUNT = "000000000000"
CDN_REGION = "us-east-1"

_ACCESS_ACTIONS = {
    "read": ["GetItem", "Query", "Scan", "BatchGetItem"],
    "write": ["PutItem", "UpdateItem", "DeleteItem", "BatchWriteItem"],
}
_ACCESS_ACTIONS["read_write"] = _ACCESS_ACTIONS["read"] + _ACCESS_ACTIONS["write"]


def _normalize(val: Any) -> Any:
    """JSON round-trip so attributes compare equal before and after persistence."""
    return json.loads(json.dumps(val, sort_keys=True, default=str))


def _digest(*parts: Any, length: int = 12) -> str:
    raw = json.dumps(parts, sort_keys=True, default=str).encode("utf-8")
    return hashlib.sha1(raw).hexdigest()[:length]


def _require(attributes: Dict[str, Any], key: str, kind: ResourceKind) -> Any:
    val = attributes.get(key)
    if val in (None, ""):
        raise TerminalProviderError(f"{kind.value} requires attribute '{key}'")
    return val


def _asset_files(source: str) -> List[str]:
    files = []
    for root, _, fnames in os.walk(source):
        for fname in fnames:
            files.append(os.path.relpath(os.path.join(root, fname), source).replace(os.sep, "/"))
    return sorted(files)


def _asset_digest(source: str) -> str:
    h = hashlib.sha1()
    for rel in _asset_files(source):
        h.update(rel.encode("utf-8"))
        with open(os.path.join(source, rel), "rb") as fh:
            h.update(fh.read())
    return h.hexdigest()


class LocalProvider(ResourceProvider):
    """
    Args:
        hosted_zones: domain names the account already hosts
        account: account id used in generated ARNs
        cdn_region: the only region a distribution accepts certificates from
        settle_polls: is_ready() polls before a certificate or distribution settles
        throttle: node id -> number of create calls to reject as throttled
        state: a previous to_dict() snapshot
    """

    def __init__(
        self,
        hosted_zones: Optional[List[str]] = None,
        account: str = DEFAULT_ACCOUNT,
        cdn_region: str = CDN_REGION,
        settle_polls: int = 0,
        throttle: Optional[Dict[str, int]] = None,
        state: Optional[Dict[str, Any]] = None,
    ):
        state = state or {}
        self.account = state.get("account", account)
        self.cdn_region = cdn_region
        self.settle_polls = settle_polls
        self.throttle = dict(throttle or {})
        self.zones: Dict[str, str] = dict(state.get("hosted_zones", {}))
        for domain in hosted_zones or []:
            self.zones.setdefault(domain, "Z" + _digest(self.account, domain, length=13).upper())
        self.resources: Dict[str, Dict[str, Any]] = dict(state.get("resources", {}))
        self._pending: Dict[str, int] = {}

        self._creators: Dict[ResourceKind, Callable[..., Dict[str, Any]]] = {
            ResourceKind.ZONE: self._create_zone,
            ResourceKind.CERTIFICATE: self._create_certificate,
            ResourceKind.TABLE: self._create_table,
            ResourceKind.FUNCTION: self._create_function,
            ResourceKind.GATEWAY: self._create_gateway,
            ResourceKind.BUCKET: self._create_bucket,
            ResourceKind.DISTRIBUTION: self._create_distribution,
            ResourceKind.ALIAS_RECORD: self._create_alias_record,
            ResourceKind.DEPLOYMENT: self._create_deployment,
        }

    # ------------------------------------------------------------------ persistence

    def to_dict(self) -> Dict[str, Any]:
        return {
            "account": self.account,
            "hosted_zones": dict(self.zones),
            "resources": dict(self.resources),
        }

    # ------------------------------------------------------------------ contract

    @staticmethod
    def address(kind: ResourceKind, node_id: str, region: str) -> str:
        return f"{kind.value}/{node_id}@{region}"

    def lookup(self, kind, node_id, attributes, region):
        record = self.resources.get(self.address(kind, node_id, region))
        if record is None:
            return None
        if attributes is not None:
            if record["attributes"] != _normalize(attributes):
                return None
            # Redeploy when the asset bundle changed on disk.
            if kind == ResourceKind.DEPLOYMENT:
                source = attributes.get("source", "")
                if not os.path.isdir(source) or _asset_digest(source) != record["outputs"]["digest"]:
                    return None
        return dict(record["outputs"])

    def create(self, kind, node_id, attributes, region):
        remaining = self.throttle.get(node_id, 0)
        if remaining > 0:
            self.throttle[node_id] = remaining - 1
            raise TransientProviderError(f"Rate exceeded creating {kind.value} '{node_id}'")

        attributes = _normalize(attributes)
        address = self.address(kind, node_id, region)
        outputs = self._creators[kind](node_id, attributes, region)
        self.resources[address] = {
            "kind": kind.value,
            "id": node_id,
            "region": region,
            "attributes": attributes,
            "outputs": outputs,
        }
        if kind in (ResourceKind.CERTIFICATE, ResourceKind.DISTRIBUTION) and self.settle_polls:
            self._pending[address] = self.settle_polls
        return dict(outputs)

    def is_ready(self, kind, node_id, region):
        address = self.address(kind, node_id, region)
        remaining = self._pending.get(address, 0)
        if remaining <= 0:
            self._pending.pop(address, None)
            return True
        self._pending[address] = remaining - 1
        return False

    def delete(self, kind, node_id, region):
        address = self.address(kind, node_id, region)
        record = self.resources.get(address)
        if record is None:
            raise ResourceAbsentError(f"{kind.value} '{node_id}' does not exist in {region}")
        if kind == ResourceKind.BUCKET:
            name = record["outputs"]["name"]
            holders = [
                r["id"] for r in self._records(ResourceKind.DEPLOYMENT)
                if r["outputs"]["bucket"] == name
            ]
            if holders:
                raise TerminalProviderError(
                    f"Bucket '{name}' is not empty (deployed by {', '.join(holders)})"
                )
        del self.resources[address]
        self._pending.pop(address, None)

    # ------------------------------------------------------------------ helpers

    def _records(self, kind: ResourceKind) -> List[Dict[str, Any]]:
        return [r for r in self.resources.values() if r["kind"] == kind.value]

    def _find_output(self, kind: ResourceKind, key: str, value: Any) -> Optional[Dict[str, Any]]:
        for r in self._records(kind):
            if r["outputs"].get(key) == value:
                return r
        return None

    def _arn(self, service: str, region: str, resource: str) -> str:
        return f"arn:aws:{service}:{region}:{self.account}:{resource}"

    # ------------------------------------------------------------------ kinds

    def _create_zone(self, node_id, attributes, region):
        domain = _require(attributes, "domain_name", ResourceKind.ZONE)
        if domain not in self.zones:
            raise TerminalProviderError(f"No hosted zone found for '{domain}'")
        return {"id": self.zones[domain], "name": domain}

    def _create_certificate(self, node_id, attributes, region):
        domain = _require(attributes, "domain_name", ResourceKind.CERTIFICATE)
        zone_id = attributes.get("zone_id")
        if zone_id and zone_id not in self.zones.values():
            raise TerminalProviderError(f"DNS validation zone '{zone_id}' does not exist")
        cert = _digest(self.account, region, domain, attributes.get("alternative_names", []))
        return {
            "arn": self._arn("acm", region, f"certificate/{cert}"),
            "domain_name": domain,
            "region": region,
        }

    def _create_table(self, node_id, attributes, region):
        name = attributes.get("table_name") or f"{node_id}-{_digest(node_id, region, length=8)}"
        _require(attributes, "partition_key", ResourceKind.TABLE)
        for r in self._records(ResourceKind.TABLE):
            if r["region"] == region and r["outputs"]["name"] == name and r["id"] != node_id:
                raise TerminalProviderError(f"Table '{name}' already exists")
        return {
            "name": name,
            "arn": self._arn("dynamodb", region, f"table/{name}"),
        }

    def _create_function(self, node_id, attributes, region):
        name = attributes.get("function_name") or f"{node_id}-{_digest(node_id, region, length=8)}"
        statements = []
        for grant in attributes.get("grants", []):
            access = grant.get("access", "read_write")
            if access not in _ACCESS_ACTIONS:
                raise TerminalProviderError(f"Unknown table access '{access}' for function '{name}'")
            if not self._find_output(ResourceKind.TABLE, "arn", grant.get("resource")):
                raise TransientProviderError(f"Table '{grant.get('resource')}' not visible yet")
            statements.append({"resource": grant["resource"], "actions": _ACCESS_ACTIONS[access]})
        return {
            "arn": self._arn("lambda", region, f"function:{name}"),
            "name": name,
            "role_arn": self._arn("iam", "", f"role/{name}-role"),
            "policy": statements,
        }

    def _create_gateway(self, node_id, attributes, region):
        domain = attributes.get("domain_name")
        cert_arn = attributes.get("certificate_arn")
        if domain and not cert_arn:
            raise TerminalProviderError("A custom gateway domain requires 'certificate_arn'")
        if cert_arn:
            cert = self._find_output(ResourceKind.CERTIFICATE, "arn", cert_arn)
            if cert is None:
                raise TransientProviderError(f"Certificate '{cert_arn}' not found")
            if cert["region"] != region:
                raise TerminalProviderError(
                    f"Gateway in {region} cannot use a certificate issued in {cert['region']}"
                )
        for route in attributes.get("routes", []):
            if not self._find_output(ResourceKind.FUNCTION, "arn", route.get("target")):
                raise TransientProviderError(f"Function '{route.get('target')}' not found")
        api_id = _digest(self.account, region, node_id, length=10)
        endpoint = f"https://{api_id}.execute-api.{region}.amazonaws.com"
        return {
            "id": api_id,
            "endpoint": endpoint,
            "domain": f"d-{_digest(api_id, domain, length=10)}.execute-api.{region}.amazonaws.com",
            "url": f"https://{domain}" if domain else endpoint,
        }

    def _create_bucket(self, node_id, attributes, region):
        name = attributes.get("bucket_name") or f"{node_id.lower()}-{_digest(node_id, region, length=8)}"
        for r in self._records(ResourceKind.BUCKET):
            if r["outputs"]["name"] == name and r["id"] != node_id:
                raise TerminalProviderError(f"Bucket '{name}' already exists")
        return {
            "name": name,
            "arn": f"arn:aws:s3:::{name}",
            "website_domain": f"{name}.s3-website-{region}.amazonaws.com",
            "website_url": f"http://{name}.s3-website-{region}.amazonaws.com",
        }

    def _create_distribution(self, node_id, attributes, region):
        _require(attributes, "origin", ResourceKind.DISTRIBUTION)
        cert_arn = attributes.get("certificate_arn")
        if cert_arn:
            cert = self._find_output(ResourceKind.CERTIFICATE, "arn", cert_arn)
            if cert is None:
                raise TransientProviderError(f"Certificate '{cert_arn}' not found")
            if cert["region"] != self.cdn_region:
                raise TerminalProviderError(
                    f"Distributions only accept certificates from {self.cdn_region}, "
                    f"got one from {cert['region']}"
                )
        dist = _digest(self.account, node_id, attributes.get("aliases", []), length=13).upper()
        return {
            "id": f"E{dist}",
            "domain": f"d{dist.lower()}.cloudfront.net",
            "arn": self._arn("cloudfront", "", f"distribution/E{dist}"),
        }

    def _create_alias_record(self, node_id, attributes, region):
        zone_id = _require(attributes, "zone_id", ResourceKind.ALIAS_RECORD)
        name = _require(attributes, "record_name", ResourceKind.ALIAS_RECORD)
        target = _require(attributes, "target", ResourceKind.ALIAS_RECORD)
        if zone_id not in self.zones.values():
            raise TerminalProviderError(f"Hosted zone '{zone_id}' does not exist")
        zone_name = next(d for d, z in self.zones.items() if z == zone_id)
        if name != zone_name and not name.endswith("." + zone_name):
            raise TerminalProviderError(f"Record '{name}' is outside zone '{zone_name}'")
        return {"name": name, "target": target, "zone_id": zone_id}

    def _create_deployment(self, node_id, attributes, region):
        source = _require(attributes, "source", ResourceKind.DEPLOYMENT)
        bucket = _require(attributes, "bucket", ResourceKind.DEPLOYMENT)
        if not os.path.isdir(source):
            raise TerminalProviderError(f"Asset directory '{source}' does not exist")
        if not self._find_output(ResourceKind.BUCKET, "name", bucket):
            raise TransientProviderError(f"Bucket '{bucket}' not found")
        files = _asset_files(source)
        digest = _asset_digest(source)
        outputs: Dict[str, Any] = {
            "bucket": bucket,
            "object_count": len(files),
            "digest": digest,
        }
        distribution_id = attributes.get("distribution_id")
        if distribution_id:
            if not self._find_output(ResourceKind.DISTRIBUTION, "id", distribution_id):
                raise TransientProviderError(f"Distribution '{distribution_id}' not found")
            paths = attributes.get("invalidation_paths") or ["/*"]
            outputs["invalidation_id"] = "I" + _digest(distribution_id, digest, paths, length=13).upper()
            outputs["invalidated_paths"] = paths
        return outputs
