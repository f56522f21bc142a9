"""
Tests for the source traversal and its filters.
"""

import pytest

from imodel_transformer.core.constants import DICTIONARY_ID, REPOSITORY_MODEL_ID, ROOT_SUBJECT_ID
from imodel_transformer.core.enums import EntityKind
from imodel_transformer.core.exceptions import CodeSpecNotFound, TransformerStateError
from imodel_transformer.demo_repository import EQUIPMENT_CODE_SPEC_NAME, TEST_ELEMENT_COUNT
from imodel_transformer.transformer.exporter import Exporter


@pytest.fixture
def exporter(demo_repo, recording_handler):
    repo, _ = demo_repo
    exporter = Exporter(repo)
    exporter.register_handler(recording_handler)
    yield exporter
    exporter.dispose()


class TestExportOrder:
    def test_containers_come_before_contents(self, demo_repo, exporter, recording_handler):
        repo, contents = demo_repo
        exporter.export_all()

        names = recording_handler.names()
        assert names.index("code_spec") < names.index("model") < names.index("element")
        assert names.index("element") < names.index("relationship")
        assert recording_handler.ids("code_spec")[-1] == EQUIPMENT_CODE_SPEC_NAME
        assert recording_handler.ids("model") == [REPOSITORY_MODEL_ID, DICTIONARY_ID, contents.model_id]

        elements = recording_handler.ids("element")
        assert elements[0] == ROOT_SUBJECT_ID
        # A modeled element is visited before its model's contents
        assert elements.index(contents.model_id) < elements.index(contents.object_ids[0])
        assert elements.index(contents.pump_ids[0]) < elements.index(contents.pipe_id)
        assert len(elements) == repo.count(EntityKind.element)

    def test_aspects_follow_their_element(self, demo_repo, exporter, recording_handler):
        _, contents = demo_repo
        exporter.export_all()
        pump_id = contents.pump_ids[0]
        calls = recording_handler.calls
        position = calls.index(("element", pump_id))
        assert calls[position + 1][0] == "unique_aspect"
        assert calls[position + 2] == ("multi_aspects", pump_id)

    def test_relationships_of_a_subclass(self, demo_repo, exporter, recording_handler):
        _, contents = demo_repo
        exporter.export_relationships("Plant:PipeFeedsPump")
        assert recording_handler.ids("relationship") == [contents.relationship_ids[-1]]

    def test_code_spec_by_name(self, exporter, recording_handler):
        exporter.export_code_spec_by_name(EQUIPMENT_CODE_SPEC_NAME)
        assert recording_handler.calls == [("code_spec", EQUIPMENT_CODE_SPEC_NAME)]
        with pytest.raises(CodeSpecNotFound):
            exporter.export_code_spec_by_name("Missing:Spec")

    def test_schemas_exist_while_handled(self, exporter, recording_handler):
        seen = []
        recording_handler.on_export_schemas_complete = lambda paths: seen.extend(p.exists() for p in paths)
        paths = exporter.export_schemas()
        assert recording_handler.ids("schema") == ["Plant"]
        assert seen == [True]
        assert not paths[0].exists()


class TestExclusions:
    def test_excluded_element_hides_its_children(self, demo_repo, exporter, recording_handler):
        _, contents = demo_repo
        exporter.exclude_element(contents.pump_ids[0])
        exporter.export_all()
        elements = recording_handler.ids("element")
        assert contents.pump_ids[0] not in elements
        assert contents.pipe_id not in elements
        assert contents.pump_ids[1] in elements
        assert not exporter.was_visited(contents.pipe_id)

    def test_excluded_modeled_element_hides_the_model(self, demo_repo, exporter, recording_handler):
        _, contents = demo_repo
        exporter.exclude_element(contents.model_id)
        exporter.export_all()
        assert contents.model_id not in recording_handler.ids("model")
        assert contents.object_ids[0] not in recording_handler.ids("element")

    def test_excluded_class_includes_subclasses(self, demo_repo, exporter, recording_handler):
        _, contents = demo_repo
        exporter.exclude_element_class("Core:PhysicalElement")
        exporter.export_all()
        elements = set(recording_handler.ids("element"))
        assert elements.isdisjoint(contents.object_ids + contents.pump_ids + [contents.pipe_id])
        assert contents.display_style_id in elements

    def test_excluded_code_spec(self, demo_repo, exporter, recording_handler):
        _, contents = demo_repo
        exporter.exclude_code_spec(EQUIPMENT_CODE_SPEC_NAME)
        exporter.export_all()
        assert EQUIPMENT_CODE_SPEC_NAME not in recording_handler.ids("code_spec")
        elements = recording_handler.ids("element")
        assert elements.count(contents.object_ids[0]) == 0
        assert contents.pump_ids[0] in elements

    def test_excluded_aspect_and_relationship_classes(self, demo_repo, exporter, recording_handler):
        _, contents = demo_repo
        exporter.exclude_element_aspect_class("Plant:Nameplate")
        exporter.exclude_relationship_class("Plant:PipeFeedsPump")
        exporter.export_all()
        assert recording_handler.ids("unique_aspect") == []
        assert contents.relationship_ids[-1] not in recording_handler.ids("relationship")

    def test_handler_predicate(self, demo_repo, exporter, recording_handler):
        _, contents = demo_repo
        recording_handler.should_export_element = lambda element: element.user_label != "Object 1"
        exporter.export_all()
        assert contents.object_ids[0] not in recording_handler.ids("element")


class TestVisitFlags:
    def test_suppressed_callbacks_still_count(self, demo_repo, exporter, recording_handler):
        _, contents = demo_repo
        exporter.visit_elements = False
        exporter.visit_relationships = False
        exporter.export_all()
        assert recording_handler.ids("element") == []
        assert recording_handler.ids("multi_aspects") == []
        assert recording_handler.ids("relationship") == []
        assert exporter.statistics.elements > TEST_ELEMENT_COUNT
        assert exporter.statistics.relationships == len(contents.relationship_ids)
        assert exporter.statistics.aspects == 6


class TestChangeDetection:
    def test_only_changes_and_deletes(self, demo_repo, exporter, recording_handler):
        repo, contents = demo_repo
        checkpoint = repo.change_counter
        element = repo.get_element(contents.object_ids[2])
        element.user_label = "Renamed"
        repo.update_element(element)
        repo.delete_element(contents.object_ids[-1])
        repo.delete_relationship(contents.relationship_ids[0])
        repo.save_changes("Edit")

        exporter.export_changes(checkpoint)
        assert recording_handler.ids("element") == [contents.object_ids[2]]
        assert recording_handler.ids("model") == []
        assert recording_handler.ids("relationship") == []
        deletes = [c for c in recording_handler.calls if c[0].startswith("delete")]
        assert deletes == [
            ("delete_relationship", contents.relationship_ids[0]),
            ("delete_element", contents.object_ids[-1]),
        ]

    def test_timestamp_checkpoint(self, demo_repo, exporter, recording_handler):
        repo, _ = demo_repo
        exporter.changes_since = "2000-01-01T00:00:00"
        assert exporter.changes_since == 0
        exporter.changes_since = None
        assert exporter.changes_since is None

    def test_deletes_require_a_checkpoint(self, exporter):
        with pytest.raises(TransformerStateError):
            exporter.export_deletes()

    def test_disposed_exporter(self, exporter):
        exporter.dispose()
        with pytest.raises(TransformerStateError):
            exporter.export_all()
