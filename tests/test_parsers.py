"""
Parser tests — verify declarations and references extracted from each fixture.
"""
import os

import pytest

from conftest import FIXTURES
from stackgraph.detect import detect_format
from stackgraph.errors import CycleError, DuplicateIdError, StackError, UnknownReferenceError
from stackgraph.graph import planner
from stackgraph.loader import collect_files, load_stack
from stackgraph.models.resource import Ref
from stackgraph.providers.local import LocalProvider
from stackgraph.provisioning.provisioner import Provisioner
from stackgraph.stacks.orchestrator import StackOrchestrator


def _by_id(doc):
    return {d.id: d for d in doc.declarations}


# --------------------------------------------------------- YAML / JSON
class TestYamlParser:
    def setup_method(self):
        from stackgraph.parsers import yaml_stack
        self.parser = yaml_stack

    def test_declaration_count(self):
        doc = self.parser.parse_file(os.path.join(FIXTURES, "scenario.yaml"))
        assert [d.id for d in doc.declarations] == ["z", "t", "f", "g", "a"]

    def test_source_format(self):
        doc = self.parser.parse_file(os.path.join(FIXTURES, "scenario.yaml"))
        assert doc.source_format == "yaml"
        for d in doc.declarations:
            assert d.source_file.endswith("scenario.yaml")

    def test_kinds_preserved(self):
        decls = _by_id(self.parser.parse_file(os.path.join(FIXTURES, "scenario.yaml")))
        assert decls["z"].kind == "Zone"
        assert decls["a"].kind == "AliasRecord"

    def test_tag_refs(self):
        decls = _by_id(self.parser.parse_file(os.path.join(FIXTURES, "scenario.yaml")))
        assert decls["f"].attributes["environment"]["TABLE_NAME"] == Ref("t", "name")
        assert decls["a"].attributes["zone_id"] == Ref("z", "id")

    def test_interpolated_refs(self):
        decls = _by_id(self.parser.parse_file(os.path.join(FIXTURES, "scenario.yaml")))
        assert decls["g"].attributes["routes"][0]["target"] == Ref("f", "arn")

    def test_plain_strings_untouched(self):
        decls = _by_id(self.parser.parse_file(os.path.join(FIXTURES, "scenario.yaml")))
        assert decls["f"].attributes["environment"]["ORIGIN_URL"] == "https://demo.example.com"

    def test_outputs(self):
        doc = self.parser.parse_file(os.path.join(FIXTURES, "scenario.yaml"))
        assert doc.outputs == {"ApiEndpoint": Ref("g", "url"), "Region": "ap-southeast-2"}

    def test_json_list_format(self):
        doc = self.parser.parse_file(os.path.join(FIXTURES, "duplicate.json"))
        assert doc.source_format == "json"
        assert [d.id for d in doc.declarations] == ["ContactsTable", "ContactsTable"]

    def test_region_override(self):
        doc = self.parser.parse_document({
            "resources": {"c": {"kind": "Certificate", "region": "us-east-1"}},
        }, "inline.yaml", "yaml")
        assert doc.declarations[0].region == "us-east-1"
        assert doc.declarations[0].attributes == {}

    def test_embedded_interpolation_is_literal(self):
        assert self.parser.convert_refs("https://${g.domain}/x") == "https://${g.domain}/x"

    def test_resource_without_kind_rejected(self):
        with pytest.raises(ValueError):
            self.parser.parse_document({"resources": {"x": {"attributes": {}}}}, "x.yaml", "yaml")

    def test_non_mapping_document_rejected(self):
        with pytest.raises(ValueError):
            self.parser.parse_document(["resources"], "x.yaml", "yaml")

    def test_malformed_ref_tag_rejected(self, tmp_path):
        p = tmp_path / "bad.yaml"
        p.write_text("resources:\n  f:\n    kind: Function\n    attributes: {x: !Ref nodot}\n")
        with pytest.raises(ValueError):
            self.parser.parse_file(str(p))


# --------------------------------------------------------- HCL
class TestHclParser:
    def setup_method(self):
        from stackgraph.parsers import hcl_stack
        self.parser = hcl_stack

    def test_declaration_count(self):
        doc = self.parser.parse_file(os.path.join(FIXTURES, "scenario.hcl"))
        assert sorted(d.id for d in doc.declarations) == ["a", "f", "g", "t", "z"]

    def test_source_format_is_hcl(self):
        doc = self.parser.parse_file(os.path.join(FIXTURES, "scenario.hcl"))
        assert doc.source_format == "hcl"

    def test_region_lifted_out_of_attributes(self):
        decls = _by_id(self.parser.parse_file(os.path.join(FIXTURES, "scenario.hcl")))
        assert decls["f"].region == "us-east-1"
        assert "region" not in decls["f"].attributes
        assert decls["t"].region is None

    def test_refs_converted(self):
        decls = _by_id(self.parser.parse_file(os.path.join(FIXTURES, "scenario.hcl")))
        assert decls["f"].attributes["environment"]["TABLE_NAME"] == Ref("t", "name")
        assert decls["a"].attributes["target"] == Ref("g", "domain")

    def test_plain_values_unquoted(self):
        decls = _by_id(self.parser.parse_file(os.path.join(FIXTURES, "scenario.hcl")))
        assert decls["z"].attributes["domain_name"] == "example.com"
        assert decls["t"].attributes["partition_key"]["name"] == "pk"

    def test_no_parser_metadata_keys(self):
        for d in self.parser.parse_file(os.path.join(FIXTURES, "scenario.hcl")).declarations:
            assert not any(k.startswith("__") for k in d.attributes)

    def test_outputs(self):
        doc = self.parser.parse_file(os.path.join(FIXTURES, "scenario.hcl"))
        assert doc.outputs == {"ApiEndpoint": Ref("g", "url")}


# --------------------------------------------------------- Detection
class TestFormatDetection:
    def test_hcl_extension(self, tmp_path):
        p = tmp_path / "stack.tf"
        p.write_text("")
        assert detect_format(str(p)) == "hcl"

    def test_yaml_stack(self):
        assert detect_format(os.path.join(FIXTURES, "scenario.yaml")) == "yaml"

    def test_json_stack(self):
        assert detect_format(os.path.join(FIXTURES, "duplicate.json")) == "json"

    def test_other_yaml_is_unknown(self):
        assert detect_format(os.path.join(FIXTURES, "not_a_stack.yaml")) == "unknown"

    def test_unknown_returns_unknown(self, tmp_path):
        p = tmp_path / "notes.txt"
        p.write_text("resources: {}")
        assert detect_format(str(p)) == "unknown"

    def test_broken_yaml_is_unknown(self, tmp_path):
        p = tmp_path / "broken.yaml"
        p.write_text("resources: [unclosed\n")
        assert detect_format(str(p)) == "unknown"


# --------------------------------------------------------- Loader
class TestLoadStack:
    def test_yaml_stack_plans_in_reference_order(self):
        builder, outputs = load_stack([os.path.join(FIXTURES, "scenario.yaml")])
        nodes = planner.plan(builder.build())
        assert [n.id for n in nodes] == ["z", "t", "f", "g", "a"]
        assert outputs["ApiEndpoint"] == Ref("g", "url")

    def test_hcl_stack_matches_yaml_graph(self):
        builder, _ = load_stack([os.path.join(FIXTURES, "scenario.hcl")])
        graph = builder.build()
        assert graph.references("a") == ["z", "g"]
        assert graph.node("f").region == "us-east-1"

    def test_duplicate_ids_rejected(self):
        with pytest.raises(DuplicateIdError):
            load_stack([os.path.join(FIXTURES, "duplicate.json")])

    def test_duplicate_ids_across_files_rejected(self):
        with pytest.raises(DuplicateIdError):
            load_stack([
                os.path.join(FIXTURES, "scenario.yaml"),
                os.path.join(FIXTURES, "scenario.hcl"),
            ])

    def test_unknown_reference_rejected_at_build(self):
        builder, _ = load_stack([os.path.join(FIXTURES, "unknown_ref.yaml")])
        with pytest.raises(UnknownReferenceError) as exc:
            builder.build()
        assert exc.value.target == "missing"

    def test_output_referencing_undeclared_node_rejected(self):
        builder, outputs = load_stack([os.path.join(FIXTURES, "unknown_output.yaml")])
        provisioner = Provisioner(LocalProvider(), "ap-southeast-2")
        with pytest.raises(UnknownReferenceError) as exc:
            StackOrchestrator("unknown_output", builder, provisioner, outputs)
        assert exc.value.target == "Nope"
        assert exc.value.node_id == "unknown_output"

    def test_cycle_rejected_at_plan(self):
        builder, _ = load_stack([os.path.join(FIXTURES, "cycle.yaml")])
        with pytest.raises(CycleError) as exc:
            planner.plan(builder.build())
        assert exc.value.chain == ["a", "c", "b", "a"]

    def test_unknown_kind_rejected(self, tmp_path):
        p = tmp_path / "queue.yaml"
        p.write_text("resources:\n  q:\n    kind: Queue\n")
        with pytest.raises(StackError) as exc:
            load_stack([str(p)])
        assert "Queue" in str(exc.value)

    def test_missing_path_rejected(self, tmp_path):
        with pytest.raises(StackError):
            load_stack([str(tmp_path / "nope.yaml")])

    def test_directory_skips_non_stack_files(self, tmp_path):
        (tmp_path / "b.yaml").write_text("resources:\n  t:\n    kind: Table\n")
        (tmp_path / "a.yaml").write_text("resources:\n  z:\n    kind: Zone\n")
        (tmp_path / "README.md").write_text("# notes")
        (tmp_path / "configmap.yaml").write_text("kind: ConfigMap\n")
        files = collect_files([str(tmp_path)])
        assert [os.path.basename(f) for f in files] == ["a.yaml", "b.yaml"]
        builder, _ = load_stack([str(tmp_path)])
        assert [n.id for n in builder.nodes] == ["z", "t"]
