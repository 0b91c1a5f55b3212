"""
End-to-end tests for the contact-form stack against the local provider.
"""
import shutil

import pytest

from conftest import REGION, SITE_DIR, RecordingProvider
from stackgraph.config import Settings
from stackgraph.errors import ProvisionError, StackError
from stackgraph.models.resource import ResourceKind, ResourceState
from stackgraph.provisioning.provisioner import Provisioner
from stackgraph.stacks import contacts

EXPECTED_ORDER = [
    "Zone",
    "ApiCertificate",
    "SiteCertificate",
    "ContactsTable",
    "CreateContactFunction",
    "ContactsApi",
    "ApiAliasRecord",
    "SiteBucket",
    "SiteDistribution",
    "SiteAliasRecord",
    "SiteDeployment",
]


def _settings(**kwargs) -> Settings:
    values = dict(domain_name="example.com", subdomain="demo", asset_dir=SITE_DIR)
    values.update(kwargs)
    return Settings(**values)


def _stack(settings, provider, clock):
    provisioner = Provisioner(
        provider,
        settings.region,
        max_attempts=3,
        sleep=clock.sleep,
        clock=clock,
    )
    return contacts.build(settings, provisioner)


@pytest.fixture
def provider():
    return RecordingProvider(hosted_zones=["example.com"])


class TestDeclaration:
    def test_plan_order(self, provider, clock):
        stack = _stack(_settings(), provider, clock)
        assert [n.id for n in stack.plan()] == EXPECTED_ORDER

    def test_stack_name(self, provider, clock):
        assert _stack(_settings(), provider, clock).name == "demo.example.com"

    def test_missing_domain_rejected(self):
        with pytest.raises(StackError):
            contacts.declare(Settings(subdomain="demo"))

    def test_missing_subdomain_rejected(self):
        with pytest.raises(StackError):
            contacts.declare(Settings(domain_name="example.com"))

    def test_table_named_after_subdomain(self):
        builder, _ = contacts.declare(_settings())
        table = next(n for n in builder.nodes if n.id == "ContactsTable")
        assert table.attributes["table_name"] == "demo-contacts"
        assert table.kind == ResourceKind.TABLE

    def test_site_certificate_in_cdn_region(self):
        builder, _ = contacts.declare(_settings())
        nodes = {n.id: n for n in builder.nodes}
        assert nodes["SiteCertificate"].region == "us-east-1"
        assert nodes["ApiCertificate"].region is None


class TestDeploy:
    def test_outputs(self, provider, clock):
        outputs = _stack(_settings(), provider, clock).deploy()
        assert outputs == {
            "SiteUrl": "https://demo.example.com",
            "ApiUrl": "https://api.demo.example.com",
        }

    def test_every_node_ready(self, provider, clock):
        stack = _stack(_settings(), provider, clock)
        stack.deploy()
        assert set(stack.states().values()) == {ResourceState.READY}
        assert provider.created == EXPECTED_ORDER

    def test_function_environment_resolved(self, provider, clock):
        stack = _stack(_settings(), provider, clock)
        stack.deploy()
        fn = provider.resources[provider.address(ResourceKind.FUNCTION, "CreateContactFunction", REGION)]
        assert fn["attributes"]["environment"] == {
            "TABLE_NAME": "demo-contacts",
            "ORIGIN_URL": "https://demo.example.com",
        }

    def test_certificates_issued_in_their_regions(self, provider, clock):
        stack = _stack(_settings(), provider, clock)
        stack.deploy()
        assert stack.graph.node("SiteCertificate").outputs["region"] == "us-east-1"
        assert stack.graph.node("ApiCertificate").outputs["region"] == REGION

    def test_alias_records_target_their_endpoints(self, provider, clock):
        stack = _stack(_settings(), provider, clock)
        stack.deploy()
        g = stack.graph
        assert g.node("ApiAliasRecord").outputs["target"] == g.node("ContactsApi").outputs["domain"]
        assert g.node("SiteAliasRecord").outputs["target"] == g.node("SiteDistribution").outputs["domain"]
        assert g.node("ApiAliasRecord").outputs["zone_id"] == g.node("Zone").outputs["id"]

    def test_deployment_uploads_assets_and_invalidates(self, provider, clock):
        stack = _stack(_settings(), provider, clock)
        stack.deploy()
        deployment = stack.graph.node("SiteDeployment").outputs
        assert deployment["bucket"] == "demo.example.com"
        assert deployment["object_count"] == 2
        assert deployment["invalidated_paths"] == ["/*"]

    def test_default_grant_is_read_write(self, provider, clock):
        stack = _stack(_settings(), provider, clock)
        stack.deploy()
        policy = stack.graph.node("CreateContactFunction").outputs["policy"]
        assert policy[0]["resource"] == stack.graph.node("ContactsTable").outputs["arn"]
        assert "PutItem" in policy[0]["actions"]
        assert "GetItem" in policy[0]["actions"]

    def test_read_only_grant(self, provider, clock):
        stack = _stack(_settings(table_access="read"), provider, clock)
        stack.deploy()
        actions = stack.graph.node("CreateContactFunction").outputs["policy"][0]["actions"]
        assert "GetItem" in actions
        assert "PutItem" not in actions

    def test_wrong_cdn_certificate_region_fails_at_distribution(self, provider, clock):
        stack = _stack(_settings(cdn_certificate_region=REGION), provider, clock)
        with pytest.raises(ProvisionError) as exc:
            stack.deploy()
        assert exc.value.node_id == "SiteDistribution"
        assert exc.value.error_kind == "terminal"
        states = stack.states()
        assert states["ApiAliasRecord"] == ResourceState.READY
        assert states["SiteDistribution"] == ResourceState.FAILED
        assert states["SiteAliasRecord"] == ResourceState.PENDING
        assert states["SiteDeployment"] == ResourceState.PENDING
        assert clock.sleeps == []

    def test_partial_outputs_after_failure(self, provider, clock):
        stack = _stack(_settings(cdn_certificate_region=REGION), provider, clock)
        with pytest.raises(ProvisionError):
            stack.deploy()
        assert stack.outputs() == {
            "SiteUrl": "https://demo.example.com",
            "ApiUrl": "https://api.demo.example.com",
        }

    def test_unknown_hosted_zone_fails_first(self, clock):
        provider = RecordingProvider(hosted_zones=["other.org"])
        stack = _stack(_settings(), provider, clock)
        with pytest.raises(ProvisionError) as exc:
            stack.deploy()
        assert exc.value.node_id == "Zone"
        assert provider.created == ["Zone"]

    def test_redeploy_reuses_everything(self, provider, clock):
        _stack(_settings(), provider, clock).deploy()
        created = list(provider.created)
        outputs = _stack(_settings(), provider, clock).deploy()
        assert provider.created == created
        assert outputs["ApiUrl"] == "https://api.demo.example.com"

    def test_changed_assets_redeploy_only_deployment(self, provider, clock, tmp_path):
        site = tmp_path / "site"
        shutil.copytree(SITE_DIR, str(site))
        settings = _settings(asset_dir=str(site))
        _stack(settings, provider, clock).deploy()
        created = list(provider.created)

        (site / "index.html").write_text("<h1>changed</h1>\n")
        _stack(settings, provider, clock).deploy()
        assert provider.created[len(created):] == ["SiteDeployment"]


class TestTeardown:
    def test_teardown_reverse_order(self, provider, clock):
        stack = _stack(_settings(), provider, clock)
        stack.deploy()
        destroyed = stack.teardown()
        assert destroyed == list(reversed(EXPECTED_ORDER))
        assert provider.deleted == destroyed

    def test_teardown_empties_account_and_graph(self, provider, clock):
        stack = _stack(_settings(), provider, clock)
        stack.deploy()
        stack.teardown()
        assert provider.resources == {}
        assert len(stack.graph) == 0
        assert stack.plan() == []
        assert stack.outputs() == {"SiteUrl": "https://demo.example.com"}

    def test_teardown_from_fresh_run(self, provider, clock):
        _stack(_settings(), provider, clock).deploy()
        fresh = _stack(_settings(), provider, clock)
        fresh.refresh(match_attributes=False)
        assert len(fresh.teardown()) == len(EXPECTED_ORDER)
        assert provider.resources == {}

    def test_teardown_after_partial_failure(self, provider, clock):
        stack = _stack(_settings(cdn_certificate_region=REGION), provider, clock)
        with pytest.raises(ProvisionError):
            stack.deploy()
        destroyed = stack.teardown()
        assert "SiteDeployment" not in destroyed
        assert "SiteDistribution" in destroyed
        assert provider.resources == {}

    def test_teardown_with_missing_resource(self, provider, clock):
        _stack(_settings(), provider, clock).deploy()
        del provider.resources[provider.address(ResourceKind.TABLE, "ContactsTable", REGION)]

        fresh = _stack(_settings(), provider, clock)
        fresh.refresh(match_attributes=False)
        destroyed = fresh.teardown()
        assert provider.resources == {}
        assert "ContactsTable" not in destroyed
        assert "CreateContactFunction" in destroyed
        assert "ApiAliasRecord" in destroyed

    def test_deploy_after_teardown_recreates(self, provider, clock):
        stack = _stack(_settings(), provider, clock)
        stack.deploy()
        stack.teardown()
        outputs = stack.deploy()
        assert outputs["ApiUrl"] == "https://api.demo.example.com"
        assert [n.id for n in stack.plan()] == EXPECTED_ORDER
        assert set(stack.states().values()) == {ResourceState.READY}
        assert len(provider.resources) == len(EXPECTED_ORDER)
