"""Synchronization of one repository into another.

The ``Transformer`` is the ``ExportHandler`` an ``Exporter`` drives. For every
entity the exporter hands it, it asks the ``CloneContext`` to rewrite the
entity into target terms and asks the ``Importer`` to write it, so that running
the same synchronization twice writes nothing the second time.

Entities can arrive before the entities they reference. Such an entity is
parked in a ``DeferredQueue`` until every predecessor is mapped, and is
written as soon as the last one is. Aspects wait for their element, and
relationships are only processed once all element work is finished.

When the queue stops making progress, each stuck predecessor is classified:

    dangling  the predecessor no longer exists in the source
    excluded  the predecessor was filtered out of the export
    cycle     the predecessor was exported but is itself waiting

Dangling and cycle references raise under the ``reject`` policy and are written
as null under ``ignore``; references to excluded elements are always written as
null. Every reference dropped this way is recorded in ``report``.

Provenance:
    Unless suppressed, every element written gets an ``ExternalSourceAspect``
    recording the source element it came from, and every relationship gets one
    on its source element. The records are scoped by ``target_scope_element_id``,
    which is tied to one source repository by a scope record. Later sessions
    rebuild the identity map from these records and delete target elements
    whose source element is gone.

Example:
    >>> with Transformer(source, target) as transformer:
    ...     transformer.process_all()
    >>> target.save_changes("Synchronized from source")
"""

from __future__ import annotations

import logging
from collections import deque
from contextlib import contextmanager
from datetime import datetime
from typing import Iterator

from pydantic import validate_call

from imodel_transformer.core.config import TransformerOptions
from imodel_transformer.core.constants import (
    DICTIONARY_ID,
    EXTERNAL_SOURCE_ASPECT_CLASS,
    INVALID_ID,
    REPOSITORY_MODEL_ID,
    ROOT_SUBJECT_ID,
    SUBJECT_CLASS,
    id_to_hex,
    is_valid_id,
)
from imodel_transformer.core.enums import EntityKind, ProvenanceKind, StuckReason, TransformerState
from imodel_transformer.core.exceptions import (
    EntityWriteFailure,
    PredecessorCycleError,
    RepositoryError,
    SchemaImportFailure,
    TransformerException,
    TransformerStateError,
    UnresolvedReference,
)
from imodel_transformer.model.entities import (
    AspectProps,
    Code,
    CodeSpecProps,
    ElementProps,
    ModelProps,
    ProvenanceRecord,
    RelationshipProps,
)
from imodel_transformer.model.references import PredecessorRef
from imodel_transformer.model.schema import SchemaProps
from imodel_transformer.repository.base import Repository
from imodel_transformer.transformer.clone_context import CloneContext
from imodel_transformer.transformer.deferred import DeferredEntity, DeferredQueue
from imodel_transformer.transformer.exporter import Exporter, ExportHandler
from imodel_transformer.transformer.importer import Importer
from imodel_transformer.transformer.report import (
    TransformIssue,
    TransformIssueCategory,
    TransformIssueSeverity,
    TransformReport,
)

logger = logging.getLogger(__name__)

# Elements every repository has; they anchor the mapping and are never written
ANCHOR_ELEMENT_IDS = frozenset({ROOT_SUBJECT_ID, DICTIONARY_ID})

_STUCK_CATEGORY = {
    StuckReason.dangling: TransformIssueCategory.DANGLING_REFERENCE,
    StuckReason.excluded: TransformIssueCategory.EXCLUDED_REFERENCE,
    StuckReason.cycle: TransformIssueCategory.PREDECESSOR_CYCLE,
}


class AspectBatch:
    """Aspects of one source element waiting to be written."""

    def __init__(self, element_id: int):
        self.element_id = element_id
        self.unique: list[AspectProps] = []
        self.multi: list[AspectProps] | None = None


class Transformer(ExportHandler):
    """Synchronizes a source repository into a target repository.

    Args:
        source: Source repository, or an ``Exporter`` already set up on it (with
            exclusions, for instance).
        target: Target repository, or an ``Importer`` on it.
        options: Session options. Defaults to ``TransformerOptions()``.

    Raises:
        TransformerStateError: On reentrant use or use after ``dispose``.
    """

    def __init__(
        self,
        source: Repository | Exporter,
        target: Repository | Importer,
        options: TransformerOptions | None = None,
    ):
        self.options = options or TransformerOptions()
        self._exporter = source if isinstance(source, Exporter) else Exporter(source)
        self._importer = (
            target
            if isinstance(target, Importer)
            else Importer(target, preserve_element_ids=self.options.preserve_element_ids)
        )
        self._exporter.register_handler(self)
        self.source_db = self._exporter.source
        self.target_db = self._importer.target
        self._context = CloneContext(self.source_db, self.target_db)
        self._report = TransformReport()
        self._queue = DeferredQueue()
        self._state = TransformerState.idle
        self._busy: str | None = None
        self._initialized = False
        self._disposed = False
        self._skipped_element_ids: set[int] = set()
        self._on_demand_attempted: set[PredecessorRef] = set()

    # Properties

    @property
    def state(self) -> TransformerState:
        return self._state

    @property
    def context(self) -> CloneContext:
        return self._context

    @property
    def exporter(self) -> Exporter:
        return self._exporter

    @property
    def importer(self) -> Importer:
        return self._importer

    @property
    def report(self) -> TransformReport:
        return self._report

    @property
    def target_scope_element_id(self) -> int:
        return self.options.target_scope_element_id

    @property
    def provenance_repository(self) -> Repository:
        """Repository holding this session's provenance: the source when reverse synchronizing."""
        return self.source_db if self.options.is_reverse_synchronization else self.target_db

    @property
    def external_repository_id(self) -> str:
        """Id of the repository the provenance records point at."""
        return self.target_db.repository_id if self.options.is_reverse_synchronization else self.source_db.repository_id

    @property
    def provenance_enabled(self) -> bool:
        return self._context.is_between_repositories and not self.options.no_provenance

    # Session control

    @contextmanager
    def _session(self, name: str) -> Iterator[None]:
        if self._disposed:
            raise TransformerStateError(f"{name} called on a disposed transformer")
        if self._busy is not None:
            raise TransformerStateError(f"{name} called while {self._busy} is in progress")
        self._busy = name
        try:
            self._initialize()
            yield
        finally:
            self._busy = None
            if self._state != TransformerState.done:
                self._state = TransformerState.idle

    def _initialize(self) -> None:
        """Seed anchor mappings, resolve the provenance scope and rebuild the identity map."""
        if self._initialized:
            return
        context = self._context
        for anchor_id in ANCHOR_ELEMENT_IDS:
            if not is_valid_id(context.find_target_element_id(anchor_id)):
                context.remap_element(anchor_id, anchor_id)

        if context.is_between_repositories:
            scope_id = self.target_scope_element_id
            provenance_repository = self.provenance_repository
            if not provenance_repository.has_element(scope_id):
                raise TransformerException(f"Provenance scope element {id_to_hex(scope_id)} does not exist")
            context.initialize_scope(
                provenance_repository,
                self.external_repository_id,
                scope_id,
                write=self.provenance_enabled and not self.options.is_reverse_synchronization,
            )
            context.rebuild_from_provenance(provenance_repository, scope_id, self.options.is_reverse_synchronization)

        if self.options.was_source_copied_to_target:
            seeded = 0
            for element_id in self.source_db.iter_element_ids():
                if not is_valid_id(context.find_target_element_id(element_id)) and self.target_db.has_element(element_id):
                    context.remap_element(element_id, element_id)
                    seeded += 1
            logger.info(f"Seeded {seeded} identity mappings from the copied source")
        self._initialized = True

    def _write_provenance(self, record: ProvenanceRecord) -> None:
        try:
            CloneContext.upsert_provenance(self.provenance_repository, record)
        except RepositoryError as e:
            raise EntityWriteFailure(f"Failed to record provenance for {id_to_hex(record.element_id)}: {e}") from e

    def _add_issue(self, severity: TransformIssueSeverity, category: TransformIssueCategory, message: str, **kwargs):
        issue = TransformIssue(severity=severity, category=category, message=message, **kwargs)
        self._report.add_issue(issue)
        log = logger.warning if severity != TransformIssueSeverity.INFO else logger.info
        log(str(issue))

    # Overridable hooks

    def on_transform_element(self, source_element: ElementProps) -> ElementProps:
        """Produce the target element for a source element. Override to reshape elements."""
        return self._context.clone_element(source_element)

    def on_transform_model(self, source_model: ModelProps) -> ModelProps:
        return self._context.clone_model(source_model)

    def on_transform_element_aspect(self, source_aspect: AspectProps) -> AspectProps:
        return self._context.clone_element_aspect(source_aspect)

    def on_transform_relationship(self, source_relationship: RelationshipProps) -> RelationshipProps:
        return self._context.clone_relationship(source_relationship)

    # Predecessor resolution

    def _is_resolved(self, ref: PredecessorRef) -> bool:
        if ref.kind == EntityKind.model:
            return is_valid_id(self._context.find_target_model_id(ref.id))
        return is_valid_id(self._context.find_target_element_id(ref.id))

    def _exists_in_source(self, ref: PredecessorRef) -> bool:
        if ref.kind == EntityKind.model:
            return self.source_db.has_model(ref.id)
        return self.source_db.has_element(ref.id)

    def _unresolved(self, kind: EntityKind, source_id: int, refs: set[PredecessorRef]) -> set[PredecessorRef]:
        """Return the unmapped predecessors still worth waiting for, applying the policy to dangling ones.

        Dangling predecessors are left out of the result; their references are written as null.

        Raises:
            UnresolvedReference: If a predecessor is missing from the source and the policy is ``reject``.
        """
        unresolved = {r for r in refs if not self._is_resolved(r)}
        dangling = {r for r in unresolved if not self._exists_in_source(r)}
        for ref in dangling:
            message = f"{kind.value.lower()} {id_to_hex(source_id)} references {ref}, which does not exist in the source"
            if not self.options.ignore_dangling_predecessors:
                raise UnresolvedReference(message, entity_id=ref.id, referenced_by=source_id)
            self._add_issue(
                TransformIssueSeverity.WARNING,
                TransformIssueCategory.DANGLING_REFERENCE,
                message,
                source_id=source_id,
                missing_ids=[ref.id],
                action="Reference written as null",
            )
        return unresolved - dangling

    def _defer(self, entity: DeferredEntity) -> None:
        if entity.kind == EntityKind.element and entity.key not in self._queue:
            self._report.elements_deferred += 1
        self._queue.push(entity)
        logger.debug(f"Deferred {entity}")

    def _release(self, ref: PredecessorRef | None) -> None:
        """Write every queued entity that was only waiting on ``ref``, and so on transitively."""
        pending = deque([ref] if ref is not None else [])
        while pending:
            for entity in self._queue.resolve(pending.popleft()):
                written = self._complete(entity)
                if written is not None:
                    pending.append(written)

    def _complete(self, entity: DeferredEntity) -> PredecessorRef | None:
        """Write a dequeued entity. Returns the predecessor it now satisfies, if any."""
        if entity.kind == EntityKind.element:
            return self._write_element(entity.payload)
        if entity.kind == EntityKind.model:
            return self._write_model(entity.payload)
        self._write_aspects(entity.payload)
        return None

    # Code specs

    def on_export_code_spec(self, code_spec: CodeSpecProps, is_update: bool | None) -> None:
        target_id = self._importer.import_code_spec(CodeSpecProps(name=code_spec.name, properties=code_spec.properties))
        self._context.remap_code_spec_id(code_spec.id, target_id)

    def _ensure_code_spec(self, source_code_spec_id: int) -> None:
        if not self._context.has_code_spec_mapping(source_code_spec_id):
            self.on_export_code_spec(self.source_db.get_code_spec(source_code_spec_id), None)

    # Schemas

    def on_export_schema(self, schema: SchemaProps, schema_path) -> None:
        logger.debug(f"Exported schema {schema.name} {schema.version} to {schema_path}")

    def on_export_schemas_complete(self, schema_paths) -> None:
        try:
            imported = self.target_db.import_schemas(schema_paths)
        except RepositoryError as e:
            raise SchemaImportFailure(f"Schema import failed: {e}") from e
        self._report.schemas_imported.extend(imported)

    # Models

    def on_export_model(self, model: ModelProps, is_update: bool | None) -> None:
        if model.id == REPOSITORY_MODEL_ID or model.id in ANCHOR_ELEMENT_IDS:
            return
        refs = {PredecessorRef.element(model.id), PredecessorRef.model(model.parent_model)}
        unresolved = self._unresolved(EntityKind.model, model.id, refs)
        if unresolved:
            self._defer(DeferredEntity(EntityKind.model, model.id, unresolved, payload=model))
            return
        self._release(self._write_model(model))

    def _write_model(self, model: ModelProps) -> PredecessorRef | None:
        if model.id in self._skipped_element_ids or not self._is_resolved(PredecessorRef.element(model.id)):
            logger.debug(f"Skipping model {model}: its modeled element was not written")
            return None
        target = self.on_transform_model(model)
        if not is_valid_id(target.parent_model):
            target.parent_model = REPOSITORY_MODEL_ID
        self._importer.import_model(target)
        self._context.remap_model(model.id, target.id)
        return PredecessorRef.model(model.id)

    # Elements

    def on_export_element(self, element: ElementProps, is_update: bool | None) -> None:
        if element.id in ANCHOR_ELEMENT_IDS:
            return
        self._process_element(element)

    def _process_element(self, element: ElementProps) -> None:
        refs = self._context.walker.element_predecessors(element)
        unresolved = self._unresolved(EntityKind.element, element.id, refs)
        if unresolved:
            self._defer(DeferredEntity(EntityKind.element, element.id, unresolved, payload=element))
            return
        self._release(self._write_element(element))

    def _write_element(self, element: ElementProps) -> PredecessorRef | None:
        """Clone and import an element whose remaining unmapped references are to be dropped."""
        self._ensure_code_spec(element.code.spec)
        target = self.on_transform_element(element)
        if not is_valid_id(target.model):
            self._skipped_element_ids.add(element.id)
            self._add_issue(
                TransformIssueSeverity.WARNING,
                TransformIssueCategory.SKIPPED_ELEMENT,
                f"Element {element} skipped: its model {id_to_hex(element.model)} was not written",
                source_id=element.id,
                missing_ids=[element.model],
            )
            return None
        if target.parent is not None and not is_valid_id(target.parent):
            target.parent = None
        if not is_valid_id(target.code.scope):
            target.code = Code.empty(spec=target.code.spec)
        target.properties = self._context.walker.drop_invalid_references(target.class_name, target.properties)
        if not is_valid_id(target.id) and not target.code.is_empty:
            # An unmapped element whose code is already taken in the target becomes that element
            target.id = self.target_db.query_element_id_by_code(target.code)
            if is_valid_id(target.id):
                logger.debug(f"Matched {element} to target element {id_to_hex(target.id)} by code {target.code}")
        is_new = not is_valid_id(target.id)
        if self.options.preserve_element_ids and is_new:
            # A target element already holding this id is unrelated; the insert fails on it
            target.id = element.id

        target_id = self._importer.import_element(target, is_new=is_new)
        self._context.remap_element(element.id, target_id)
        if self.provenance_enabled:
            self._write_provenance(
                ProvenanceRecord(
                    element_id=target_id if not self.options.is_reverse_synchronization else element.id,
                    scope=self.target_scope_element_id,
                    kind=ProvenanceKind.element,
                    identifier=str(element.id if not self.options.is_reverse_synchronization else target_id),
                    version=element.last_mod,
                )
            )
        return PredecessorRef.element(element.id)

    # Aspects

    def _is_provenance_aspect(self, aspect: AspectProps, metadata) -> bool:
        return metadata.is_subclass_of(aspect.class_name, EXTERNAL_SOURCE_ASPECT_CLASS)

    def _should_manage_target_aspect(self, aspect: AspectProps) -> bool:
        """Target multi-aspects the importer may touch. Provenance records are never managed unless copied."""
        if aspect.class_name != EXTERNAL_SOURCE_ASPECT_CLASS:
            return True
        if not self.options.include_source_provenance:
            return False
        own = aspect.properties.get("scope") == self.target_scope_element_id
        return not own and aspect.properties.get("kind") != ProvenanceKind.scope.value

    def on_export_element_unique_aspect(self, aspect: AspectProps, is_update: bool | None) -> None:
        if aspect.element_id in ANCHOR_ELEMENT_IDS:
            return
        batch = AspectBatch(aspect.element_id)
        batch.unique.append(aspect)
        self._process_aspects(batch)

    def on_export_element_multi_aspects(
        self, element_id: int, aspects: list[AspectProps], is_update: bool | None
    ) -> None:
        if element_id in ANCHOR_ELEMENT_IDS:
            return
        metadata = self._context.source_metadata
        if not self.options.include_source_provenance:
            aspects = [a for a in aspects if not self._is_provenance_aspect(a, metadata)]
        batch = AspectBatch(element_id)
        batch.multi = aspects
        self._process_aspects(batch)

    def _process_aspects(self, batch: AspectBatch) -> None:
        walker = self._context.walker
        refs = {PredecessorRef.element(batch.element_id)}
        for aspect in batch.unique + (batch.multi or []):
            refs |= walker.aspect_predecessors(aspect)
        unresolved = self._unresolved(EntityKind.aspect, batch.element_id, refs)
        if not unresolved:
            self._write_aspects(batch)
            return
        queued = self._queue.get((EntityKind.aspect, batch.element_id))
        if queued is not None:
            queued.payload.unique.extend(batch.unique)
            if batch.multi is not None:
                queued.payload.multi = batch.multi
            unresolved |= queued.unresolved
            batch = queued.payload
        self._defer(DeferredEntity(EntityKind.aspect, batch.element_id, unresolved, payload=batch))

    def _write_aspects(self, batch: AspectBatch) -> None:
        if batch.element_id in self._skipped_element_ids:
            return
        target_element_id = self._context.find_target_element_id(batch.element_id)
        if not is_valid_id(target_element_id):
            return
        walker = self._context.walker

        def transform(aspect: AspectProps) -> AspectProps:
            target = self.on_transform_element_aspect(aspect)
            target.element_id = target_element_id
            target.properties = walker.drop_invalid_references(target.class_name, target.properties)
            return target

        for aspect in batch.unique:
            self._importer.import_element_unique_aspect(transform(aspect))
        if batch.multi is not None:
            self._importer.import_element_multi_aspects(
                target_element_id,
                [transform(a) for a in batch.multi],
                should_manage=self._should_manage_target_aspect,
            )

    # Relationships

    def on_export_relationship(self, relationship: RelationshipProps, is_update: bool | None) -> None:
        target = self.on_transform_relationship(relationship)
        if not is_valid_id(target.source_id) or not is_valid_id(target.target_id):
            missing = [
                i
                for i, t in ((relationship.source_id, target.source_id), (relationship.target_id, target.target_id))
                if not is_valid_id(t)
            ]
            self._add_issue(
                TransformIssueSeverity.WARNING,
                TransformIssueCategory.SKIPPED_RELATIONSHIP,
                f"Relationship {relationship} skipped: endpoint not in the target",
                source_id=relationship.id,
                missing_ids=missing,
            )
            return
        target.properties = self._context.walker.drop_invalid_references(target.class_name, target.properties)
        if not self.provenance_enabled or self.options.is_reverse_synchronization:
            self._importer.import_relationship(target)
            return
        records = self._relationship_provenance(relationship.id)
        known_id = records[0].json_properties.get("target_rel_instance_id") if records else None
        target_id = self._importer.import_relationship(target, known_id=known_id)
        for record in records:
            # The source endpoint moved; the record follows it to the new target element
            if record.element_id != target.source_id:
                self._delete_provenance(record)
        self._write_provenance(
            ProvenanceRecord(
                element_id=target.source_id,
                scope=self.target_scope_element_id,
                kind=ProvenanceKind.relationship,
                identifier=str(relationship.id),
                version=relationship.last_mod,
                json_properties={"target_rel_instance_id": target_id},
            )
        )

    def _relationship_provenance(self, relationship_id: int) -> list[ProvenanceRecord]:
        """This scope's provenance records for a source relationship."""
        return [
            record
            for record in self.target_db.iter_provenance(
                scope_id=self.target_scope_element_id, kind=ProvenanceKind.relationship
            )
            if record.identifier == str(relationship_id)
        ]

    # Deletes reported by change detection

    def on_delete_element(self, element_id: int) -> None:
        target_id = self._context.find_target_element_id(element_id)
        if not is_valid_id(target_id) or target_id in ANCHOR_ELEMENT_IDS:
            return
        self._importer.delete_element(target_id)
        self._context.remap_element(element_id, INVALID_ID)

    def on_delete_model(self, model_id: int) -> None:
        target_id = self._context.find_target_model_id(model_id)
        if is_valid_id(target_id) and target_id not in ANCHOR_ELEMENT_IDS:
            self._importer.delete_model(target_id)

    def on_delete_relationship(self, relationship_id: int) -> None:
        if self.options.is_reverse_synchronization:
            return
        for record in self._relationship_provenance(relationship_id):
            self._delete_relationship_provenance(record)

    def _delete_relationship_provenance(self, record: ProvenanceRecord) -> None:
        target_relationship_id = record.json_properties.get("target_rel_instance_id")
        if target_relationship_id is not None:
            self._importer.delete_relationship(target_relationship_id)
        self._delete_provenance(record)

    def _delete_provenance(self, record: ProvenanceRecord) -> None:
        try:
            self.target_db.delete_aspect(record.id)
        except RepositoryError as e:
            raise EntityWriteFailure(f"Failed to delete provenance {id_to_hex(record.id)}: {e}") from e

    # Deferred queue

    def _stuck_reason(self, ref: PredecessorRef) -> StuckReason:
        if not self._exists_in_source(ref):
            return StuckReason.dangling
        element_id = ref.id
        if element_id in self._skipped_element_ids or not self._exporter.was_visited(element_id):
            return StuckReason.excluded
        return StuckReason.cycle

    def _export_on_demand(self) -> bool:
        """Export predecessors that were never visited. Returns True when anything was exported."""
        progressed = False
        for ref in sorted(self._queue.unresolved_refs(), key=lambda r: (r.kind.value, r.id)):
            if not self._exists_in_source(ref):
                continue
            if ref.kind == EntityKind.model:
                if self._is_resolved(PredecessorRef.element(ref.id)):
                    if ref not in self._on_demand_attempted:
                        self._on_demand_attempted.add(ref)
                        logger.debug(f"Exporting {ref} on demand")
                        self.on_export_model(self.source_db.get_model(ref.id), None)
                        progressed = True
                    continue
                # The modeled element has to be written before the model
                ref = PredecessorRef.element(ref.id)
            if ref in self._on_demand_attempted or self._exporter.was_visited(ref.id):
                continue
            self._on_demand_attempted.add(ref)
            logger.debug(f"Exporting {ref} on demand")
            self._exporter.export_element(ref.id)
            if self._exporter.was_visited(ref.id):
                self._report.elements_exported_on_demand += 1
                progressed = True
        return progressed

    def _break_stall(self) -> None:
        """Force out one stuck entity, or raise under the ``reject`` policy."""
        reasons: dict[PredecessorRef, StuckReason] = {}
        entries = list(self._queue)
        for entity in entries:
            for ref in entity.unresolved:
                if ref not in reasons:
                    reasons[ref] = self._stuck_reason(ref)

        def worst(entity: DeferredEntity) -> StuckReason:
            found = {reasons[r] for r in entity.unresolved}
            for reason in (StuckReason.dangling, StuckReason.cycle):
                if reason in found:
                    return reason
            return StuckReason.excluded

        # References to filtered-out elements are dropped regardless of policy
        victim = next((e for e in entries if worst(e) == StuckReason.excluded), None)
        if victim is None:
            victim = entries[0]
            reason = worst(victim)
            if not self.options.ignore_dangling_predecessors:
                if reason == StuckReason.cycle:
                    waiting = "; ".join(str(e) for e in entries)
                    raise PredecessorCycleError(
                        f"Predecessors wait on each other and cannot be resolved: {waiting}",
                        entity_id=min(r.id for r in victim.unresolved),
                        referenced_by=victim.source_id,
                    )
                ref = next(r for r in victim.unresolved if reasons[r] == reason)
                raise UnresolvedReference(
                    f"{victim.kind.value.lower()} {id_to_hex(victim.source_id)} references {ref}, "
                    f"which does not exist in the source",
                    entity_id=ref.id,
                    referenced_by=victim.source_id,
                )
        reason = worst(victim)
        severity = TransformIssueSeverity.INFO if reason == StuckReason.excluded else TransformIssueSeverity.WARNING
        self._add_issue(
            severity,
            _STUCK_CATEGORY[reason],
            f"{victim.kind.value} written without references to {sorted(str(r) for r in victim.unresolved)}",
            source_id=victim.source_id,
            missing_ids=sorted(r.id for r in victim.unresolved),
            action="Reference written as null",
        )
        self._queue.remove(victim.key)
        self._release(self._complete(victim))

    def _drain(self) -> None:
        self._state = TransformerState.processing_deferred
        while len(self._queue):
            progressed = False
            for entity in self._queue:
                if entity.key not in self._queue:
                    continue
                if all(self._is_resolved(r) for r in entity.unresolved):
                    self._queue.remove(entity.key)
                    self._release(self._complete(entity))
                    progressed = True
            if progressed or self._export_on_demand():
                continue
            self._break_stall()
        logger.info("Deferred queue drained")

    # Delete detection

    def _depth(self, element_id: int) -> int:
        depth = 0
        current = self.target_db.try_get_element(element_id)
        while current is not None and current.id not in ANCHOR_ELEMENT_IDS:
            next_id = current.parent if current.parent is not None else current.model
            current = self.target_db.try_get_element(next_id) if next_id != current.id else None
            depth += 1
        return depth

    def _detect_element_deletes(self) -> None:
        stale = [
            record
            for record in self.target_db.iter_provenance(scope_id=self.target_scope_element_id, kind=ProvenanceKind.element)
            if record.element_id not in ANCHOR_ELEMENT_IDS and not self.source_db.has_element(record.source_id)
        ]
        stale.sort(key=lambda r: self._depth(r.element_id), reverse=True)
        for record in stale:
            self._importer.delete_element(record.element_id)
            self._context.remap_element(record.source_id, INVALID_ID)
        if stale:
            logger.info(f"Deleted {len(stale)} elements no longer in the source")

    def _detect_relationship_deletes(self) -> None:
        records = list(
            self.target_db.iter_provenance(scope_id=self.target_scope_element_id, kind=ProvenanceKind.relationship)
        )
        for record in records:
            if self.source_db.try_get_relationship(record.source_id) is None:
                self._delete_relationship_provenance(record)

    # Public entry points

    def process_schemas(self) -> None:
        """Export the source's schemas and import them into the target.

        Raises:
            SchemaImportFailure: If the target rejects the schemas.
        """
        with self._session("process_schemas"):
            self._process_schemas()

    def _process_schemas(self) -> None:
        self._state = TransformerState.processing_schemas
        self._exporter.export_schemas()

    def process_code_specs(self) -> None:
        with self._session("process_code_specs"):
            self._exporter.export_code_specs()

    def process_all(self) -> None:
        """Synchronize the whole source into the target.

        Raises:
            TransformerStateError: If called while another call is in progress or after dispose.
            UnresolvedReference: If a predecessor cannot be resolved under the ``reject`` policy.
            ProvenanceScopeConflict: If the scope already belongs to another source repository.
            SchemaImportFailure: If the target rejects the schemas.
            EntityWriteFailure: If the target rejects a write.
        """
        with self._session("process_all"):
            logger.info(f"Processing {self.source_db.repository_id} into {self.target_db.repository_id}")
            if self.options.process_schemas:
                self._process_schemas()
            self._state = TransformerState.processing_models_and_elements
            self._exporter.export_code_specs()
            self._exporter.export_model(REPOSITORY_MODEL_ID)
            self._drain()
            self._state = TransformerState.processing_relationships
            self._exporter.export_relationships(self.options.relationship_class)
            if self.provenance_enabled and not self.options.is_reverse_synchronization:
                self._detect_relationship_deletes()
                self._detect_element_deletes()
            self._state = TransformerState.done
            logger.info(f"Processing finished: {self._importer.counters.to_dict()}")

    def process_changes(self, since: int | str | datetime) -> None:
        """Synchronize only what changed in the source since a checkpoint, deletes included.

        Args:
            since: Source change counter value, ``datetime`` or ISO 8601 timestamp.
        """
        with self._session("process_changes"):
            self._exporter.changes_since = since
            if self.options.process_schemas:
                self._process_schemas()
            self._state = TransformerState.processing_models_and_elements
            self._exporter.export_code_specs()
            self._exporter.export_model(REPOSITORY_MODEL_ID)
            self._drain()
            self._state = TransformerState.processing_relationships
            self._exporter.export_relationships(self.options.relationship_class)
            self._exporter.export_deletes()
            self._state = TransformerState.done

    def _export_subject_sub_models(self, subject_id: int) -> None:
        for child_id in self.source_db.iter_child_element_ids(subject_id):
            if self.source_db.has_model(child_id):
                self._exporter.export_model(child_id)
            elif self._context.source_metadata.is_subclass_of(self.source_db.get_element(child_id).class_name, SUBJECT_CLASS):
                self._export_subject_sub_models(child_id)

    @validate_call
    def process_subject(self, source_subject_id: int, target_subject_id: int) -> None:
        """Synchronize the contents of a source subject under a target subject.

        The source subject itself is mapped onto the target subject but not written.
        """
        with self._session("process_subject"):
            self._context.remap_element(source_subject_id, target_subject_id)
            self._state = TransformerState.processing_models_and_elements
            self._exporter.export_child_elements(source_subject_id)
            self._export_subject_sub_models(source_subject_id)
            self._drain()

    @validate_call
    def process_model(self, model_id: int) -> None:
        with self._session("process_model"):
            self._state = TransformerState.processing_models_and_elements
            self._exporter.export_model(model_id)
            self._drain()

    @validate_call
    def process_model_contents(self, source_model_id: int, target_model_id: int | None = None) -> None:
        """Synchronize the elements of one model, optionally into a different target model."""
        with self._session("process_model_contents"):
            if target_model_id is not None:
                self._context.remap_element(source_model_id, target_model_id)
                self._context.remap_model(source_model_id, target_model_id)
            self._state = TransformerState.processing_models_and_elements
            self._exporter.export_model_contents(source_model_id)
            self._drain()

    @validate_call
    def process_element(self, element_id: int) -> None:
        """Synchronize one element, its aspects and children, and whatever it needs first."""
        with self._session("process_element"):
            self._state = TransformerState.processing_models_and_elements
            self._exporter.export_element(element_id)
            self._drain()

    def process_deferred_elements(self) -> None:
        """Drain the deferred queue, applying the dangling policy when it stalls."""
        with self._session("process_deferred_elements"):
            self._drain()

    @validate_call
    def process_relationships(self, base_class_name: str) -> None:
        """Synchronize relationships of a class, subclasses included. Call after element processing."""
        with self._session("process_relationships"):
            self._state = TransformerState.processing_relationships
            self._exporter.export_relationships(base_class_name)

    def detect_element_deletes(self) -> None:
        """Delete target elements whose provenance points at a source element that no longer exists."""
        with self._session("detect_element_deletes"):
            self._detect_element_deletes()

    def detect_relationship_deletes(self) -> None:
        with self._session("detect_relationship_deletes"):
            self._detect_relationship_deletes()

    # Disposal

    def dispose(self) -> None:
        """Release the exporter, importer and clone context. Safe to call more than once."""
        if self._disposed:
            return
        self._queue.clear()
        self._exporter.dispose()
        self._importer.dispose()
        self._context.dispose()
        self._disposed = True

    def __enter__(self) -> Transformer:
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.dispose()
