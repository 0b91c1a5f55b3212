"""Pytest fixtures for stackgraph tests."""

import os

import pytest

from stackgraph.graph.builder import StackBuilder
from stackgraph.models.resource import Ref
from stackgraph.providers.local import LocalProvider
from stackgraph.provisioning.provisioner import Provisioner

FIXTURES = os.path.join(os.path.dirname(__file__), "fixtures")
SITE_DIR = os.path.join(FIXTURES, "site")
REGION = "ap-southeast-2"


class RecordingProvider(LocalProvider):
    """LocalProvider that records create/delete calls and can fail on demand."""

    def __init__(self, *args, fail=None, **kwargs):
        super().__init__(*args, **kwargs)
        self.created = []
        self.deleted = []
        self.fail = dict(fail or {})

    def create(self, kind, node_id, attributes, region):
        self.created.append(node_id)
        if node_id in self.fail:
            raise self.fail[node_id]
        return super().create(kind, node_id, attributes, region)

    def delete(self, kind, node_id, region):
        self.deleted.append(node_id)
        return super().delete(kind, node_id, region)


class FakeClock:
    """Monotonic clock that only advances when slept on."""

    def __init__(self):
        self.now = 0.0
        self.sleeps = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


def declare_scenario(builder: StackBuilder) -> StackBuilder:
    """Zone z, Table t, Function f -> t.name, Gateway g -> f.arn, AliasRecord a -> g.domain, z.id."""
    builder.declare("Zone", "z", {"domain_name": "example.com"})
    builder.declare("Table", "t", {
        "table_name": "contacts",
        "partition_key": {"name": "pk", "type": "S"},
    })
    builder.declare("Function", "f", {
        "handler": "index.handler",
        "environment": {"TABLE_NAME": Ref("t", "name")},
    })
    builder.declare("Gateway", "g", {
        "routes": [{"method": "POST", "path": "/contacts", "target": Ref("f", "arn")}],
    })
    builder.declare("AliasRecord", "a", {
        "zone_id": Ref("z", "id"),
        "record_name": "api.example.com",
        "target": Ref("g", "domain"),
    })
    return builder


@pytest.fixture
def provider() -> RecordingProvider:
    return RecordingProvider(hosted_zones=["example.com"])


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def provisioner(provider, clock) -> Provisioner:
    return Provisioner(
        provider,
        REGION,
        max_attempts=3,
        base_delay=1.0,
        poll_interval=5.0,
        wait_timeout=60.0,
        sleep=clock.sleep,
        clock=clock,
    )


@pytest.fixture
def scenario():
    return declare_scenario(StackBuilder()).build()
