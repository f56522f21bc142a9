"""
Tests for the SQLite-backed repository.
"""

from datetime import datetime, timedelta

import pytest

from imodel_transformer.core.constants import DICTIONARY_ID, REPOSITORY_MODEL_ID, ROOT_SUBJECT_ID
from imodel_transformer.core.enums import EntityKind, ProvenanceKind
from imodel_transformer.core.exceptions import EntityNotFound, RepositoryError
from imodel_transformer.demo_repository import (
    CONTROLS_SCHEMA,
    PLANT_SCHEMA,
    TEST_ELEMENT_COUNT,
    install_schemas,
    insert_subject,
)
from imodel_transformer.model.entities import AspectProps, Code, ElementProps, ProvenanceRecord
from imodel_transformer.repository.base import Repository
from imodel_transformer.repository.sqlite import SqliteRepository


class TestCreation:
    def test_empty_repository_holds_core_content(self, empty_repo):
        assert isinstance(empty_repo, Repository)
        root = empty_repo.get_element(ROOT_SUBJECT_ID)
        assert root.code.value == "Empty"
        dictionary = empty_repo.get_element(DICTIONARY_ID)
        assert dictionary.parent == ROOT_SUBJECT_ID
        assert empty_repo.has_model(REPOSITORY_MODEL_ID)
        assert empty_repo.has_model(DICTIONARY_ID)
        assert [s.name for s in empty_repo.iter_schemas()] == ["Core"]
        assert [c.name for c in empty_repo.iter_code_specs()] == [
            "Core:NullCodeSpec",
            "Core:Subject",
            "Core:InformationPartitionElement",
        ]

    def test_new_elements_are_numbered_after_the_dictionary(self, empty_repo):
        assert insert_subject(empty_repo, "First") == DICTIONARY_ID + 1

    def test_copy_gets_new_identity(self, demo_repo):
        repo, contents = demo_repo
        copy = SqliteRepository.create_copy(repo)
        try:
            assert copy.repository_id != repo.repository_id
            assert copy.get_element(contents.object_ids[0]) == repo.get_element(contents.object_ids[0])
            assert copy.count(EntityKind.relationship) == repo.count(EntityKind.relationship)
        finally:
            copy.close()

    def test_file_repository_round_trip(self, tmp_path):
        path = tmp_path / "plant.db"
        repo = SqliteRepository.create_empty("On disk", path)
        subject_id = insert_subject(repo, "Saved")
        repo.save_changes("Add subject")
        repository_id = repo.repository_id
        repo.close()

        with SqliteRepository.open(path) as reopened:
            assert reopened.repository_id == repository_id
            assert reopened.get_element(subject_id).code.value == "Saved"

    def test_open_missing_file(self, tmp_path):
        with pytest.raises(RepositoryError):
            SqliteRepository.open(tmp_path / "missing.db")


class TestElements:
    def test_code_uniqueness(self, empty_repo):
        insert_subject(empty_repo, "Unique")
        with pytest.raises(RepositoryError, match="UNIQUE"):
            insert_subject(empty_repo, "Unique")

    def test_empty_codes_are_not_unique(self, demo_repo):
        repo, contents = demo_repo
        pipe = repo.get_element(contents.pipe_id)
        assert pipe.code.is_empty
        duplicate = pipe.model_copy(update={"id": 0, "federation_guid": None, "parent": None})
        assert repo.insert_element(duplicate) > contents.pipe_id

    def test_unknown_class_rejected(self, empty_repo):
        element = ElementProps(class_name="Plant:Pump", model=REPOSITORY_MODEL_ID, code=Code.empty())
        with pytest.raises(RepositoryError, match="not defined"):
            empty_repo.insert_element(element)

    def test_foreign_keys_enforced(self, empty_repo):
        element = ElementProps(class_name="Core:Subject", model=0x99, code=Code.empty())
        with pytest.raises(RepositoryError):
            empty_repo.insert_element(element)

    def test_query_by_code(self, demo_repo):
        repo, contents = demo_repo
        element = repo.get_element(contents.object_ids[3])
        assert repo.query_element_id_by_code(element.code) == element.id
        assert repo.query_element_id_by_code(Code.empty()) == 0

    def test_top_level_and_children(self, demo_repo):
        repo, contents = demo_repo
        top_level = list(repo.iter_model_element_ids(contents.model_id))
        assert contents.pipe_id not in top_level
        assert len(top_level) == TEST_ELEMENT_COUNT + len(contents.pump_ids)
        assert list(repo.iter_child_element_ids(contents.pump_ids[0])) == [contents.pipe_id]

    def test_delete_cascades_to_children_aspects_and_relationships(self, demo_repo):
        repo, contents = demo_repo
        pump_id = contents.pump_ids[0]
        repo.delete_element(pump_id)
        assert not repo.has_element(pump_id)
        assert not repo.has_element(contents.pipe_id)
        assert repo.get_aspects(pump_id) == []
        assert repo.try_get_relationship(contents.relationship_ids[-1]) is None

    def test_anchors_cannot_be_deleted(self, empty_repo):
        with pytest.raises(RepositoryError):
            empty_repo.delete_element(ROOT_SUBJECT_ID)
        with pytest.raises(RepositoryError):
            empty_repo.delete_model(DICTIONARY_ID)

    def test_missing_element(self, empty_repo):
        with pytest.raises(EntityNotFound):
            empty_repo.get_element(0x999)
        assert empty_repo.try_get_element(0x999) is None


class TestModels:
    def test_delete_model_removes_contents(self, demo_repo):
        repo, contents = demo_repo
        repo.delete_model(contents.model_id)
        assert not repo.has_model(contents.model_id)
        assert all(not repo.has_element(i) for i in contents.object_ids + contents.pump_ids)
        # The modeled element stays
        assert repo.has_element(contents.model_id)

    def test_sub_models(self, demo_repo):
        repo, contents = demo_repo
        assert list(repo.iter_sub_model_ids(REPOSITORY_MODEL_ID)) == [DICTIONARY_ID, contents.model_id]


class TestAspects:
    def test_unique_aspect_is_unique(self, demo_repo):
        repo, contents = demo_repo
        nameplate = repo.get_aspects(contents.pump_ids[0], "Plant:Nameplate")[0]
        with pytest.raises(RepositoryError, match="already has"):
            repo.insert_aspect(nameplate.model_copy(update={"id": 0}))

    def test_aspect_writes_touch_the_element(self, demo_repo):
        repo, contents = demo_repo
        before = repo.get_element(contents.pump_ids[0]).last_mod
        inspection = repo.get_aspects(contents.pump_ids[0], "Plant:Inspection")[0]
        inspection.properties["result"] = "retest"
        repo.update_aspect(inspection)
        assert repo.get_element(contents.pump_ids[0]).last_mod > before

    def test_provenance_query(self, demo_repo):
        repo, contents = demo_repo
        record = ProvenanceRecord(
            element_id=contents.object_ids[0], scope=ROOT_SUBJECT_ID, kind=ProvenanceKind.element, identifier="42"
        )
        repo.insert_aspect(record.to_aspect())
        repo.insert_aspect(
            AspectProps(class_name="Plant:Inspection", element_id=contents.object_ids[0], properties={"result": "pass"})
        )
        found = list(repo.iter_provenance(scope_id=ROOT_SUBJECT_ID, kind=ProvenanceKind.element))
        assert len(found) == 1
        assert found[0].source_id == 42
        assert list(repo.iter_provenance(scope_id=contents.subject_id)) == []


class TestSchemas:
    def test_import_orders_by_reference(self, empty_repo):
        imported = install_schemas(empty_repo, [CONTROLS_SCHEMA, PLANT_SCHEMA])
        assert imported == ["Plant", "Controls"]

    def test_missing_reference(self, empty_repo):
        with pytest.raises(RepositoryError, match="Unresolved schema references"):
            install_schemas(empty_repo, [CONTROLS_SCHEMA])

    def test_never_downgrades(self, demo_repo):
        repo, _ = demo_repo
        newer = PLANT_SCHEMA.model_copy(update={"version": "01.00.01"})
        assert install_schemas(repo, [newer]) == ["Plant"]
        assert install_schemas(repo, [PLANT_SCHEMA]) == []
        assert repo.get_schema("Plant").version == "01.00.01"

    def test_unreadable_file(self, empty_repo, tmp_path):
        path = tmp_path / "broken.json"
        path.write_text("{not json")
        with pytest.raises(RepositoryError, match="Cannot read"):
            empty_repo.import_schemas([path])


class TestChangeTracking:
    def test_counter_and_tombstones(self, demo_repo):
        repo, contents = demo_repo
        checkpoint = repo.change_counter
        repo.delete_relationship(contents.relationship_ids[0])
        repo.delete_element(contents.object_ids[-1])
        assert repo.change_counter > checkpoint
        assert list(repo.iter_deleted_since(checkpoint)) == [
            (EntityKind.relationship, contents.relationship_ids[0]),
            (EntityKind.element, contents.object_ids[-1]),
        ]

    def test_counter_at_time(self, demo_repo):
        repo, _ = demo_repo
        saved = repo.change_counter
        assert repo.change_counter_at(datetime.now() + timedelta(seconds=1)) == saved
        assert repo.change_counter_at(datetime(2000, 1, 1)) == 0

    def test_abandon_changes(self, demo_repo):
        repo, contents = demo_repo
        count = repo.count(EntityKind.element)
        repo.delete_element(contents.object_ids[0])
        repo.abandon_changes()
        assert repo.count(EntityKind.element) == count
        assert repo.has_element(contents.object_ids[0])
