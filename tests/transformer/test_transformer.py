"""
Tests for repository-to-repository synchronization.

Covers full and incremental runs, idempotence, predecessor ordering, the
dangling predecessor policy, provenance scopes, branching and the failure
modes the transformer propagates.
"""

from __future__ import annotations

import logging
from unittest.mock import patch

import pytest

from imodel_transformer.core.config import TransformerOptions
from imodel_transformer.core.constants import (
    DICTIONARY_ID,
    EXTERNAL_SOURCE_ASPECT_CLASS,
    INVALID_ID,
    RELATIONSHIP_CLASS,
    ROOT_SUBJECT_ID,
    id_to_hex,
)
from imodel_transformer.core.enums import EntityKind, ProvenanceKind, TransformerState
from imodel_transformer.core.exceptions import (
    EntityWriteFailure,
    PredecessorCycleError,
    ProvenanceScopeConflict,
    RepositoryError,
    SchemaImportFailure,
    TransformerException,
    TransformerStateError,
    UnresolvedReference,
)
from imodel_transformer.demo_repository import (
    CONTROLS_SCHEMA,
    PLANT_SCHEMA,
    create_demo_repository,
    insert_category,
    insert_physical_model,
    insert_physical_object,
    insert_subject,
    update_demo_repository,
)
from imodel_transformer.model.entities import AspectProps, RelationshipProps
from imodel_transformer.repository.sqlite import SqliteRepository
from imodel_transformer.transformer.exporter import Exporter
from imodel_transformer.transformer.report import TransformIssueCategory
from imodel_transformer.transformer.transformer import Transformer


def synchronize(source, target, **options):
    """Run a full synchronization, save the target and return the finished transformer."""
    with Transformer(source, target, TransformerOptions(**options)) as transformer:
        transformer.process_all()
    target.save_changes("Synchronized")
    return transformer


def non_anchor_count(repo: SqliteRepository) -> int:
    return repo.count(EntityKind.element) - 2


class StateRecordingTransformer(Transformer):
    """Transformer that records the state it is in whenever it writes something."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.states: dict[str, set[TransformerState]] = {"schemas": set(), "elements": set(), "relationships": set()}

    def on_export_schemas_complete(self, schema_paths):
        self.states["schemas"].add(self.state)
        super().on_export_schemas_complete(schema_paths)

    def on_transform_element(self, source_element):
        self.states["elements"].add(self.state)
        return super().on_transform_element(source_element)

    def on_transform_relationship(self, source_relationship):
        self.states["relationships"].add(self.state)
        return super().on_transform_relationship(source_relationship)


class TestProcessAll:
    def test_copies_the_whole_repository(self, plant):
        source, target, contents = plant.source, plant.target, plant.contents
        with Transformer(source, target) as transformer:
            transformer.process_all()
            counters = transformer.importer.counters
            assert counters.elements.inserted == non_anchor_count(source)
            assert counters.models.inserted == 1
            assert counters.aspects.inserted == 6
            assert counters.relationships.inserted == len(contents.relationship_ids)
            assert counters.code_specs.inserted == 2
            assert transformer.report.schemas_imported == ["Plant"]
            assert transformer.state == TransformerState.done

            remap = transformer.context.find_target_element_id
            for element_id in source.iter_element_ids():
                target_id = remap(element_id)
                assert target_id != INVALID_ID
                assert target.get_element(target_id).user_label == source.get_element(element_id).user_label

            pump = target.get_element(remap(contents.pump_ids[1]))
            assert pump.properties["feeds"] == remap(contents.pump_ids[0])
            pipe = target.get_element(remap(contents.pipe_id))
            assert pipe.parent == remap(contents.pump_ids[0])
            assert pipe.properties["connects"] == [remap(i) for i in contents.pump_ids]
            inspections = target.get_aspects(remap(contents.pump_ids[0]), "Plant:Inspection")
            assert [a.properties["inspected_with"] for a in inspections] == [remap(contents.object_ids[0])] * 2
            style = target.get_element(remap(contents.display_style_id))
            assert style.properties["excluded_elements"] == [remap(i) for i in contents.object_ids[:2]]

    def test_records_provenance_under_the_root_subject(self, plant):
        synchronize(plant.source, plant.target)
        records = list(plant.target.iter_provenance(scope_id=ROOT_SUBJECT_ID, kind=ProvenanceKind.element))
        assert len(records) == non_anchor_count(plant.source)
        assert all(plant.source.has_element(r.source_id) for r in records)
        scope = list(plant.target.iter_provenance(kind=ProvenanceKind.scope))
        assert [(s.element_id, s.identifier) for s in scope] == [(ROOT_SUBJECT_ID, plant.source.repository_id)]
        relationships = list(plant.target.iter_provenance(kind=ProvenanceKind.relationship))
        assert sorted(r.source_id for r in relationships) == sorted(plant.contents.relationship_ids)

    def test_source_provenance_is_not_copied(self, plant):
        synchronize(plant.source, plant.target)
        # A second hop would otherwise carry the first hop's records along
        downstream = SqliteRepository.create_empty("Downstream")
        try:
            synchronize(plant.target, downstream)
            scopes = {r.scope for r in downstream.iter_provenance(kind=ProvenanceKind.element)}
            assert scopes == {ROOT_SUBJECT_ID}
            assert len(list(downstream.iter_provenance(kind=ProvenanceKind.element))) == non_anchor_count(plant.target)
        finally:
            downstream.close()

    def test_states_follow_the_phases(self, plant):
        with StateRecordingTransformer(plant.source, plant.target) as transformer:
            assert transformer.state == TransformerState.idle
            transformer.process_all()
            assert transformer.states["schemas"] == {TransformerState.processing_schemas}
            assert transformer.states["elements"] <= {
                TransformerState.processing_models_and_elements,
                TransformerState.processing_deferred,
            }
            assert transformer.states["relationships"] == {TransformerState.processing_relationships}
            assert transformer.state == TransformerState.done

    def test_schemas_out_of_reference_order(self, empty_repo):
        # Controls sorts before Plant, which it references
        source, _ = create_demo_repository("Controls", populate=False, schemas=[PLANT_SCHEMA, CONTROLS_SCHEMA])
        try:
            assert [s.name for s in source.iter_schemas() if not s.is_system] == ["Controls", "Plant"]
            transformer = synchronize(source, empty_repo)
            assert transformer.report.schemas_imported == ["Plant", "Controls"]
            assert empty_repo.get_schema("Controls") is not None
        finally:
            source.close()


class TestIdempotence:
    def test_second_run_writes_nothing(self, plant):
        synchronize(plant.source, plant.target)
        second = synchronize(plant.source, plant.target)
        assert second.importer.counters.total_changes == 0
        assert second.report.schemas_imported == []

    def test_counters_after_source_changes(self, plant):
        first = synchronize(plant.source, plant.target)
        inserted = first.importer.counters.elements.inserted
        changes = update_demo_repository(plant.source, plant.contents)
        plant.source.save_changes("Edit")

        with Transformer(plant.source, plant.target) as transformer:
            transformer.process_all()
            counters = transformer.importer.counters
            assert counters.elements.updated == len(changes["updated"]) == 5
            assert counters.elements.deleted == len(changes["deleted"]) == 2
            assert counters.elements.inserted == 0
            assert counters.relationships.inserted == 1
            assert counters.relationships.deleted == 1
            assert counters.models.total == 0
            for element_id in changes["deleted"]:
                assert transformer.context.find_target_element_id(element_id) == INVALID_ID
            target_id = transformer.context.find_target_element_id(changes["updated"][0])
            assert target_id != INVALID_ID
            assert plant.target.get_element(target_id).user_label.endswith("(revised)")
        records = list(plant.target.iter_provenance(scope_id=ROOT_SUBJECT_ID, kind=ProvenanceKind.element))
        assert non_anchor_count(plant.target) == len(records) == inserted - 2

    def test_process_changes(self, plant):
        synchronize(plant.source, plant.target)
        checkpoint = plant.source.change_counter
        changes = update_demo_repository(plant.source, plant.contents)
        plant.source.save_changes("Edit")

        with Transformer(plant.source, plant.target) as transformer:
            transformer.process_changes(checkpoint)
            counters = transformer.importer.counters
            assert counters.elements.updated == 5
            assert counters.elements.deleted == 2
            assert counters.elements.inserted == 0
            assert counters.relationships.inserted == 1
            assert counters.relationships.deleted == 1
        target_ids = {r.source_id for r in plant.target.iter_provenance(kind=ProvenanceKind.relationship)}
        assert changes["relationships_inserted"][0] in target_ids
        assert changes["relationships_deleted"][0] not in target_ids

    def test_relationship_target_moved(self, plant):
        contents = plant.contents
        synchronize(plant.source, plant.target)
        relationship = plant.source.try_get_relationship(contents.relationship_ids[0])
        relationship.target_id = contents.object_ids[6]
        plant.source.update_relationship(relationship)
        plant.source.save_changes("Re-point relationship")

        with Transformer(plant.source, plant.target) as transformer:
            transformer.process_all()
            counters = transformer.importer.counters.relationships
            assert (counters.inserted, counters.updated, counters.deleted) == (0, 1, 0)
            remap = transformer.context.find_target_element_id
            first = remap(contents.object_ids[0])
            assert plant.target.find_relationship(RELATIONSHIP_CLASS, first, remap(contents.object_ids[6])) is not None
            assert plant.target.find_relationship(RELATIONSHIP_CLASS, first, remap(contents.object_ids[1])) is None
        plant.target.save_changes("Synchronized")
        assert plant.target.count(EntityKind.relationship) == plant.source.count(EntityKind.relationship)
        assert synchronize(plant.source, plant.target).importer.counters.total_changes == 0

    def test_relationship_source_moved(self, plant):
        contents = plant.contents
        synchronize(plant.source, plant.target)
        relationship = plant.source.try_get_relationship(contents.relationship_ids[0])
        relationship.source_id = contents.object_ids[7]
        plant.source.update_relationship(relationship)
        plant.source.save_changes("Re-point relationship")

        with Transformer(plant.source, plant.target) as transformer:
            transformer.process_all()
            assert transformer.importer.counters.relationships.updated == 1
            moved_to = transformer.context.find_target_element_id(contents.object_ids[7])
        plant.target.save_changes("Synchronized")
        records = [
            r
            for r in plant.target.iter_provenance(kind=ProvenanceKind.relationship)
            if r.source_id == relationship.id
        ]
        assert [r.element_id for r in records] == [moved_to]
        assert plant.target.count(EntityKind.relationship) == plant.source.count(EntityKind.relationship)
        assert synchronize(plant.source, plant.target).importer.counters.total_changes == 0


class TestPredecessorOrdering:
    @pytest.fixture
    def out_of_order(self):
        """E2 in M2 references E1 in M1, and M2 is traversed first."""
        repo, _ = create_demo_repository("Ordering", populate=False)
        second_model = insert_physical_model(repo, "M2")
        first_model = insert_physical_model(repo, "M1")
        category_id = insert_category(repo, "Equipment")
        e1 = insert_physical_object(repo, first_model, category_id, "E1", class_name="Plant:Pump")
        e2 = insert_physical_object(
            repo, second_model, category_id, "E2", class_name="Plant:Pump", properties={"feeds": e1}
        )
        repo.insert_aspect(
            AspectProps(class_name="Plant:Nameplate", element_id=e2, is_unique=True, properties={"serial_number": "E2"})
        )
        repo.save_changes("Ordering")
        yield repo, e1, e2
        repo.close()

    def test_reference_delivered_before_its_target(self, out_of_order, empty_repo):
        source, e1, e2 = out_of_order
        with Transformer(source, empty_repo) as transformer:
            transformer.process_all()
            target_e1 = transformer.context.find_target_element_id(e1)
            target_e2 = transformer.context.find_target_element_id(e2)
            assert target_e1 != INVALID_ID
            assert target_e2 != INVALID_ID
            assert empty_repo.get_element(target_e2).properties["feeds"] == target_e1
            assert transformer.report.elements_deferred >= 1
            # The aspect of the deferred element followed it
            nameplates = empty_repo.get_aspects(target_e2, "Plant:Nameplate")
            assert [a.properties["serial_number"] for a in nameplates] == ["E2"]
            assert not transformer.report.has_issues


class TestDanglingPredecessors:
    @pytest.fixture
    def dangling(self, plant):
        """Delete the pump the second pump feeds from. Returns the deleted id."""
        deleted = plant.contents.pump_ids[0]
        plant.source.delete_element(deleted)
        plant.source.save_changes("Delete pump")
        return deleted

    def test_reject_by_default(self, plant, dangling):
        with Transformer(plant.source, plant.target) as transformer:
            with pytest.raises(UnresolvedReference, match=id_to_hex(dangling)) as e:
                transformer.process_all()
            assert e.value.entity_id == dangling
            assert e.value.referenced_by == plant.contents.pump_ids[1]
            assert transformer.state == TransformerState.idle
        plant.target.abandon_changes()

    def test_ignore(self, plant, dangling, caplog):
        with caplog.at_level(logging.WARNING, logger="imodel_transformer"):
            with Transformer(
                plant.source, plant.target, TransformerOptions(dangling_predecessors_behavior="ignore")
            ) as transformer:
                transformer.process_all()
                remap = transformer.context.find_target_element_id
                pump = plant.target.get_element(remap(plant.contents.pump_ids[1]))
                assert pump.properties["feeds"] is None
                for element_id in plant.contents.object_ids:
                    assert remap(element_id) != INVALID_ID
                issues = transformer.report.issues_in(TransformIssueCategory.DANGLING_REFERENCE)
                assert [i.missing_ids for i in issues] == [[dangling]]
                assert transformer.report.issues_in(TransformIssueCategory.PREDECESSOR_CYCLE) == []
        assert "does not exist in the source" in caplog.text

    def test_excluded_predecessors_are_dropped(self, plant):
        excluded = plant.contents.object_ids[0]
        exporter = Exporter(plant.source)
        exporter.exclude_element(excluded)
        with Transformer(exporter, plant.target) as transformer:
            transformer.process_all()
            remap = transformer.context.find_target_element_id
            assert remap(excluded) == INVALID_ID
            style = plant.target.get_element(remap(plant.contents.display_style_id))
            assert style.properties["excluded_elements"] == [remap(plant.contents.object_ids[1])]
            inspections = plant.target.get_aspects(remap(plant.contents.pump_ids[0]), "Plant:Inspection")
            assert [a.properties["inspected_with"] for a in inspections] == [None, None]
            assert transformer.report.issues_in(TransformIssueCategory.EXCLUDED_REFERENCE)
            skipped = transformer.report.issues_in(TransformIssueCategory.SKIPPED_RELATIONSHIP)
            assert [i.source_id for i in skipped] == [plant.contents.relationship_ids[0]]


class TestPredecessorCycles:
    def test_cycle_is_rejected(self, plant, pump_cycle):
        pump_cycle(plant.source)
        with Transformer(plant.source, plant.target) as transformer:
            with pytest.raises(PredecessorCycleError, match="wait on each other"):
                transformer.process_all()
        plant.target.abandon_changes()

    def test_cycle_is_reported_under_ignore(self, plant, pump_cycle):
        first, second = pump_cycle(plant.source)
        options = TransformerOptions(dangling_predecessors_behavior="ignore")
        with Transformer(plant.source, plant.target, options) as transformer:
            transformer.process_all()
            remap = transformer.context.find_target_element_id
            assert plant.target.get_element(remap(first)).properties["feeds"] is None
            assert plant.target.get_element(remap(second)).properties["feeds"] == remap(first)
            cycles = transformer.report.issues_in(TransformIssueCategory.PREDECESSOR_CYCLE)
            assert [i.source_id for i in cycles] == [first]
            assert transformer.report.issues_in(TransformIssueCategory.DANGLING_REFERENCE) == []


class TestProvenanceScopes:
    def test_second_source_conflicts(self, plant):
        synchronize(plant.source, plant.target)
        other, _ = create_demo_repository("Other")
        try:
            with Transformer(other, plant.target) as transformer:
                with pytest.raises(ProvenanceScopeConflict, match=other.repository_id):
                    transformer.process_all()
        finally:
            plant.target.abandon_changes()
            other.close()

    def test_sources_merge_into_disjoint_subjects(self, plant):
        shared = SqliteRepository.create_empty("Shared")
        team_b, _ = create_demo_repository("Team B")
        try:
            subjects = {"A": insert_subject(shared, "A"), "B": insert_subject(shared, "B")}
            shared.save_changes("Subjects")
            sessions = {}
            for name, source in (("A", plant.source), ("B", team_b)):
                options = TransformerOptions(target_scope_element_id=subjects[name])
                with Transformer(source, shared, options) as transformer:
                    transformer.context.remap_element(ROOT_SUBJECT_ID, subjects[name])
                    transformer.process_all()
                shared.save_changes(f"Imported {name}")
                sessions[name] = transformer.importer.counters

            # The shared dictionary category is matched by code rather than duplicated
            assert sessions["B"].elements.inserted == sessions["A"].elements.inserted - 1
            for name, source in (("A", plant.source), ("B", team_b)):
                scope = list(shared.iter_provenance(kind=ProvenanceKind.scope, element_id=subjects[name]))
                assert [s.identifier for s in scope] == [source.repository_id]
                assert len(list(shared.iter_child_element_ids(subjects[name]))) == 1
            assert list(shared.iter_provenance(scope_id=ROOT_SUBJECT_ID, kind=ProvenanceKind.element)) == []

            # Rerunning one source touches nothing of the other's
            options = TransformerOptions(target_scope_element_id=subjects["A"])
            with Transformer(plant.source, shared, options) as transformer:
                transformer.context.remap_element(ROOT_SUBJECT_ID, subjects["A"])
                transformer.process_all()
                assert transformer.importer.counters.total_changes == 0
        finally:
            shared.close()
            team_b.close()

    def test_missing_scope_element(self, plant):
        with Transformer(plant.source, plant.target, TransformerOptions(target_scope_element_id=0x999)) as transformer:
            with pytest.raises(TransformerException, match="does not exist"):
                transformer.process_all()


class TestBranching:
    def test_branch_round_trip(self):
        master, contents = create_demo_repository("Master")
        branch = SqliteRepository.create_copy(master)
        try:
            # Forward: the branch starts as a copy, so only provenance is written
            with Transformer(master, branch, TransformerOptions(was_source_copied_to_target=True)) as transformer:
                transformer.process_all()
                assert transformer.importer.counters.total_changes == 0
            records = list(branch.iter_provenance(kind=ProvenanceKind.element))
            assert len(records) == non_anchor_count(master)
            assert all(r.element_id == r.source_id for r in records)
            branch.save_changes("Provenance")

            element = branch.get_element(contents.object_ids[2])
            element.user_label = "Edited on the branch"
            branch.update_element(element)
            new_id = insert_physical_object(
                branch, contents.model_id, contents.category_id, "Branch object", code_value="OBJ-B"
            )
            branch.save_changes("Branch work")

            # Reverse: merge the branch back without contaminating the master
            with Transformer(branch, master, TransformerOptions(is_reverse_synchronization=True)) as transformer:
                transformer.process_all()
                counters = transformer.importer.counters
                assert counters.elements.updated == 1
                assert counters.elements.inserted == 1
                assert counters.elements.deleted == 0
                assert transformer.context.find_target_element_id(contents.object_ids[2]) == contents.object_ids[2]
                assert transformer.context.find_target_element_id(new_id) != INVALID_ID
            master.save_changes("Merged branch")
            assert master.get_element(contents.object_ids[2]).user_label == "Edited on the branch"
            assert list(master.iter_provenance()) == []
        finally:
            master.close()
            branch.close()

    def test_preserve_element_ids(self, plant):
        with Transformer(plant.source, plant.target, TransformerOptions(preserve_element_ids=True)) as transformer:
            transformer.process_all()
            for element_id in plant.source.iter_element_ids():
                assert transformer.context.find_target_element_id(element_id) == element_id

    def test_preserve_element_ids_never_overwrites(self, plant):
        # The next free target id is the one the source site subject uses
        mine = insert_subject(plant.target, "Mine")
        plant.target.save_changes("Local subject")
        assert mine == plant.contents.subject_id

        with Transformer(plant.source, plant.target, TransformerOptions(preserve_element_ids=True)) as transformer:
            with pytest.raises(EntityWriteFailure, match="elements.id"):
                transformer.process_all()
            assert transformer.importer.counters.elements.updated == 0
        plant.target.abandon_changes()
        assert plant.target.get_element(mine).code.value == "Mine"

    def test_no_provenance(self, plant):
        synchronize(plant.source, plant.target, no_provenance=True)
        assert plant.target.get_aspects(ROOT_SUBJECT_ID, EXTERNAL_SOURCE_ASPECT_CLASS) == []
        assert list(plant.target.iter_provenance()) == []


class TestPartialProcessing:
    def test_process_subject(self, plant):
        subject_id = insert_subject(plant.target, "Imported")
        with Transformer(plant.source, plant.target) as transformer:
            transformer.process_schemas()
            transformer.process_subject(plant.contents.subject_id, subject_id)
            transformer.process_relationships(RELATIONSHIP_CLASS)
            remap = transformer.context.find_target_element_id
            partition = plant.target.get_element(remap(plant.contents.model_id))
            assert partition.parent == subject_id
            assert partition.code.scope == subject_id
            assert all(remap(i) != INVALID_ID for i in plant.contents.object_ids)
            # The category lives outside the subject and is pulled in on demand
            assert transformer.report.elements_exported_on_demand == 1
            assert remap(plant.contents.display_style_id) == INVALID_ID
            assert transformer.importer.counters.relationships.inserted == len(plant.contents.relationship_ids)

    def test_process_model_then_deferred_then_relationships(self, plant):
        with Transformer(plant.source, plant.target) as transformer:
            transformer.process_schemas()
            transformer.process_model(plant.contents.model_id)
            transformer.process_deferred_elements()
            transformer.process_relationships(RELATIONSHIP_CLASS)
            remap = transformer.context.find_target_element_id
            assert plant.target.has_model(remap(plant.contents.model_id))
            assert remap(plant.contents.subject_id) != INVALID_ID
            assert remap(plant.contents.pipe_id) != INVALID_ID
            assert transformer.importer.counters.relationships.inserted == len(plant.contents.relationship_ids)

    def test_process_model_contents_combines_models(self, empty_repo):
        source, _ = create_demo_repository("Split", populate=False)
        try:
            category_id = insert_category(source, "Equipment")
            objects = {}
            for name in ("West", "East"):
                model_id = insert_physical_model(source, name)
                objects[model_id] = [
                    insert_physical_object(source, model_id, category_id, f"{name} {i}", code_value=f"{name}-{i}")
                    for i in range(3)
                ]
            west, east = objects
            source_relationship = source.insert_relationship(
                RelationshipProps(class_name=RELATIONSHIP_CLASS, source_id=objects[west][0], target_id=objects[east][0])
            )
            source.save_changes("Two models")
            combined = insert_physical_model(empty_repo, "Combined")
            empty_repo.save_changes("Combined model")

            def combine():
                with Transformer(source, empty_repo) as transformer:
                    transformer.process_schemas()
                    for model_id in objects:
                        transformer.process_model_contents(model_id, combined)
                    transformer.process_relationships(RELATIONSHIP_CLASS)
                empty_repo.save_changes("Combined")
                return transformer

            first = combine()
            counters = first.importer.counters
            assert counters.elements.inserted == 6 + 1
            assert counters.models.inserted == 0
            assert counters.relationships.inserted == 1
            in_combined = list(empty_repo.iter_model_element_ids(combined))
            assert len(in_combined) == 6
            assert sorted(empty_repo.get_element(i).user_label for i in in_combined) == sorted(
                source.get_element(i).user_label for ids in objects.values() for i in ids
            )
            assert all(empty_repo.get_element(i).code.scope == combined for i in in_combined)
            assert [r.source_id for r in empty_repo.iter_provenance(kind=ProvenanceKind.relationship)] == [
                source_relationship
            ]

            assert combine().importer.counters.total_changes == 0
        finally:
            source.close()

    def test_process_element_pulls_in_what_it_needs(self, plant):
        contents = plant.contents
        with Transformer(plant.source, plant.target) as transformer:
            transformer.process_schemas()
            transformer.process_element(contents.pipe_id)
            remap = transformer.context.find_target_element_id
            for element_id in [contents.subject_id, contents.model_id, contents.category_id, *contents.pump_ids]:
                assert remap(element_id) != INVALID_ID
            pipe = plant.target.get_element(remap(contents.pipe_id))
            assert pipe.model == remap(contents.model_id)
            assert remap(contents.object_ids[-1]) == INVALID_ID

    def test_anchors_are_never_written(self, plant):
        synchronize(plant.source, plant.target)
        assert plant.target.get_element(ROOT_SUBJECT_ID).code.value == "Target"
        assert list(plant.target.iter_provenance(kind=ProvenanceKind.element, element_id=DICTIONARY_ID)) == []


class TestFailures:
    def test_schema_import_failure(self, plant):
        with patch.object(plant.target, "import_schemas", side_effect=RepositoryError("bad schema")):
            with Transformer(plant.source, plant.target) as transformer:
                with pytest.raises(SchemaImportFailure, match="bad schema"):
                    transformer.process_all()

    def test_entity_write_failure(self, plant):
        with patch.object(plant.target, "insert_element", side_effect=RepositoryError("constraint violated")):
            with Transformer(plant.source, plant.target) as transformer:
                with pytest.raises(EntityWriteFailure, match="constraint violated"):
                    transformer.process_all()
        plant.target.abandon_changes()
        assert plant.target.count(EntityKind.element) == 2

    def test_reentrant_call(self, plant):
        class Reentrant(Transformer):
            def on_transform_element(self, source_element):
                self.process_all()

        with Reentrant(plant.source, plant.target) as transformer:
            with pytest.raises(TransformerStateError, match="in progress"):
                transformer.process_all()

    def test_dispose_on_error_and_after(self, plant, pump_cycle):
        pump_cycle(plant.source)
        with pytest.raises(PredecessorCycleError):
            with Transformer(plant.source, plant.target) as transformer:
                transformer.process_all()
        transformer.dispose()
        with pytest.raises(TransformerStateError, match="disposed"):
            transformer.process_all()
        with pytest.raises(TransformerStateError):
            transformer.context.remap_element(0x20, 0x20)
