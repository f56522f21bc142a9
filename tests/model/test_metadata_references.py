"""
Tests for schema-driven metadata and predecessor discovery.
"""

import pytest

from imodel_transformer.core.constants import INVALID_ID
from imodel_transformer.core.enums import EntityKind
from imodel_transformer.demo_repository import CONTROLS_SCHEMA, install_schemas
from imodel_transformer.model.entities import AspectProps, Code, ElementProps, ModelProps, RelationshipProps
from imodel_transformer.model.metadata import MetadataService
from imodel_transformer.model.references import PredecessorRef, PredecessorWalker
from imodel_transformer.model.schema import parse_version, split_class_name


class TestMetadataService:
    def test_base_classes_most_derived_first(self, demo_repo):
        repo, _ = demo_repo
        metadata = MetadataService(repo)
        assert metadata.base_classes("Plant:Pump") == [
            "Plant:Pump",
            "Core:PhysicalElement",
            "Core:GeometricElement",
            "Core:Element",
        ]
        assert metadata.is_subclass_of("Plant:Pump", "Core:Element")
        assert not metadata.is_subclass_of("Core:Subject", "Core:GeometricElement")

    def test_reference_properties_include_inherited(self, demo_repo):
        repo, _ = demo_repo
        metadata = MetadataService(repo)
        names = [p.name for p in metadata.reference_properties("Plant:Pump")]
        assert names == ["category", "type_definition", "feeds"]

    def test_unknown_class_raises_key_error(self, demo_repo):
        repo, _ = demo_repo
        metadata = MetadataService(repo)
        with pytest.raises(KeyError):
            metadata.get_class("Plant:Turbine")
        assert not metadata.has_class("Plant:Turbine")

    def test_refreshes_for_schemas_imported_later(self, demo_repo):
        repo, _ = demo_repo
        metadata = MetadataService(repo)
        assert metadata.has_class("Plant:Pipe")
        install_schemas(repo, [CONTROLS_SCHEMA])
        # Not loaded the first time round, found after the automatic refresh
        names = [p.name for p in metadata.reference_properties("Controls:Valve")]
        assert names == ["category", "type_definition", "connects", "controlled_by"]

    def test_malformed_class_name(self):
        with pytest.raises(ValueError):
            split_class_name("NoSchemaPrefix")
        assert split_class_name("Plant:Pump") == ("Plant", "Pump")
        assert parse_version("01.02.10") == (1, 2, 10)


class TestPredecessorWalker:
    @pytest.fixture
    def walker(self, demo_repo):
        repo, _ = demo_repo
        return PredecessorWalker(MetadataService(repo))

    def test_element_predecessors(self, walker):
        pipe = ElementProps(
            id=0x40,
            class_name="Plant:Pipe",
            model=0x12,
            parent=0x30,
            code=Code(spec=5, scope=0x12, value="P-1"),
            properties={"category": 0x13, "connects": [0x30, 0x31, INVALID_ID]},
        )
        assert walker.element_predecessors(pipe) == {
            PredecessorRef.model(0x12),
            PredecessorRef.element(0x12),
            PredecessorRef.element(0x30),
            PredecessorRef.element(0x31),
            PredecessorRef.element(0x13),
        }

    def test_element_never_waits_on_itself(self, walker):
        pump = ElementProps(
            id=0x30,
            class_name="Plant:Pump",
            model=0x12,
            code=Code.empty(),
            properties={"feeds": 0x30},
        )
        refs = walker.element_predecessors(pump)
        assert PredecessorRef.element(0x30) not in refs

    def test_aspect_model_and_relationship_predecessors(self, walker):
        aspect = AspectProps(class_name="Plant:Inspection", element_id=0x30, properties={"inspected_with": 0x14})
        assert walker.aspect_predecessors(aspect) == {PredecessorRef.element(0x30), PredecessorRef.element(0x14)}
        model = ModelProps(id=0x12, class_name="Core:PhysicalModel", parent_model=1)
        assert walker.model_predecessors(model) == {PredecessorRef.element(0x12)}
        relationship = RelationshipProps(class_name="Plant:PipeFeedsPump", source_id=0x32, target_id=0x30)
        assert walker.relationship_predecessors(relationship) == {
            PredecessorRef.element(0x32),
            PredecessorRef.element(0x30),
        }

    def test_remap_and_drop_invalid_references(self, walker):
        mapping = {0x13: 0x23, 0x30: 0x40}
        properties = {"category": 0x13, "connects": [0x30, 0x31], "label": "pipe"}
        remapped = walker.remap_properties("Plant:Pipe", properties, lambda i: mapping.get(i, INVALID_ID))
        assert remapped == {"category": 0x23, "connects": [0x40, INVALID_ID], "label": "pipe"}
        # The input bag is untouched
        assert properties["connects"] == [0x30, 0x31]

        cleaned = walker.drop_invalid_references("Plant:Pipe", remapped | {"category": INVALID_ID})
        assert cleaned == {"category": None, "connects": [0x40], "label": "pipe"}

    def test_ref_formatting(self):
        assert str(PredecessorRef.element(0x1B)) == "element 0x1b"
        assert PredecessorRef.model(1).kind == EntityKind.model
