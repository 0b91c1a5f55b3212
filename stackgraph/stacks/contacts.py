"""
The contact-form stack: a static site behind a CDN and a single POST
endpoint that stores submissions in a key-value table.

    Zone ─┬─ ApiCertificate ─────────────┐
          │                              ▼
          │  ContactsTable ─▶ CreateContactFunction ─▶ ContactsApi ─▶ ApiAliasRecord
          │
          ├─ SiteCertificate (CDN region) ─┐
          │                                ▼
          │  SiteBucket ───────────▶ SiteDistribution ─▶ SiteAliasRecord
          │        │                       │
          │        └──────▶ SiteDeployment ◀┘
"""
from typing import Any, Dict, Tuple

from stackgraph.config import Settings
from stackgraph.graph.builder import StackBuilder
from stackgraph.models.resource import Ref, ResourceKind
from stackgraph.provisioning.provisioner import Provisioner
from stackgraph.stacks.orchestrator import StackOrchestrator

CONTACTS_PATH = "/contacts"


def declare(settings: Settings) -> Tuple[StackBuilder, Dict[str, Any]]:
    """Declare every node of the stack. Returns the builder and stack outputs."""
    settings.validate()
    b = StackBuilder()
    zone = Ref("Zone", "id")

    b.declare(ResourceKind.ZONE, "Zone", {"domain_name": settings.domain_name})

    b.declare(ResourceKind.CERTIFICATE, "ApiCertificate", {
        "domain_name": settings.api_domain,
        "zone_id": zone,
    })
    # The CDN only accepts certificates from its own fixed region.
    b.declare(ResourceKind.CERTIFICATE, "SiteCertificate", {
        "domain_name": settings.site_domain,
        "zone_id": zone,
    }, region=settings.cdn_certificate_region)

    b.declare(ResourceKind.TABLE, "ContactsTable", {
        "table_name": f"{settings.subdomain}-contacts",
        "partition_key": {"name": "pk", "type": "S"},
        "sort_key": {"name": "sk", "type": "S"},
        "billing_mode": "PAY_PER_REQUEST",
    })

    b.declare(ResourceKind.FUNCTION, "CreateContactFunction", {
        "handler": "index.handler",
        "runtime": "nodejs14.x",
        "code": "backend/create-contact",
        "environment": {
            "TABLE_NAME": Ref("ContactsTable", "name"),
            "ORIGIN_URL": settings.site_url,
        },
        "grants": [
            {"resource": Ref("ContactsTable", "arn"), "access": settings.table_access},
        ],
    })

    b.declare(ResourceKind.GATEWAY, "ContactsApi", {
        "domain_name": settings.api_domain,
        "certificate_arn": Ref("ApiCertificate", "arn"),
        "routes": [
            {"method": "POST", "path": CONTACTS_PATH, "target": Ref("CreateContactFunction", "arn")},
        ],
        "cors": {
            "allow_origins": [settings.site_url],
            "allow_methods": ["OPTIONS", "POST"],
            "allow_headers": ["Content-Type"],
        },
    })

    b.declare(ResourceKind.ALIAS_RECORD, "ApiAliasRecord", {
        "zone_id": zone,
        "record_name": settings.api_domain,
        "target": Ref("ContactsApi", "domain"),
    })

    b.declare(ResourceKind.BUCKET, "SiteBucket", {
        "bucket_name": settings.site_domain,
        "public_read": True,
        "website_index_document": "index.html",
        "website_error_document": "index.html",
    })

    b.declare(ResourceKind.DISTRIBUTION, "SiteDistribution", {
        "origin": Ref("SiteBucket", "website_domain"),
        "aliases": [settings.site_domain],
        "certificate_arn": Ref("SiteCertificate", "arn"),
        "viewer_protocol_policy": "redirect-to-https",
    })

    b.declare(ResourceKind.ALIAS_RECORD, "SiteAliasRecord", {
        "zone_id": zone,
        "record_name": settings.site_domain,
        "target": Ref("SiteDistribution", "domain"),
    })

    b.declare(ResourceKind.DEPLOYMENT, "SiteDeployment", {
        "source": settings.asset_dir,
        "bucket": Ref("SiteBucket", "name"),
        "distribution_id": Ref("SiteDistribution", "id"),
        "invalidation_paths": ["/*"],
    })

    outputs = {
        "SiteUrl": settings.site_url,
        "ApiUrl": Ref("ContactsApi", "url"),
    }
    return b, outputs


def build(settings: Settings, provisioner: Provisioner) -> StackOrchestrator:
    builder, outputs = declare(settings)
    name = f"{settings.subdomain}.{settings.domain_name}"
    return StackOrchestrator(name, builder, provisioner, outputs)
