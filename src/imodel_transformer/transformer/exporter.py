"""Read-only, dependency-ordered traversal of a source repository.

The ``Exporter`` walks a repository and hands every entity it visits to a
registered ``ExportHandler``. The traversal order guarantees that containers
come before their contents:

    schemas -> code specs -> models -> elements -> aspects -> relationships

Within a model, top-level elements are visited in id order, each followed by
its aspects and then its children. The element that a sub-model models is
visited as part of its parent model, before the sub-model itself.
Relationships are walked by a separate call so that a caller can finish all
element work first.

Filtering:
    Elements can be excluded by id, by class (subclasses included), by the code
    spec of their code, or by the handler's ``should_export_element``
    predicate. An excluded element is never handed to the handler, and neither
    are its children nor the contents of the model it models.

Change detection:
    Setting ``changes_since`` to a checkpoint of the source's change counter (or
    to a timestamp) limits the callbacks to entities modified after the
    checkpoint. Unchanged containers are still traversed. ``export_deletes``
    then reports the entities deleted since the checkpoint.

Example:
    >>> exporter = Exporter(source)
    >>> exporter.register_handler(handler)
    >>> exporter.exclude_element_class("Core:DisplayStyle")
    >>> exporter.export_all()
"""

from __future__ import annotations

import logging
import tempfile
from dataclasses import asdict, dataclass
from datetime import datetime
from itertools import groupby
from pathlib import Path

from dateutil import parser

from imodel_transformer.core.constants import RELATIONSHIP_CLASS, REPOSITORY_MODEL_ID, id_to_hex
from imodel_transformer.core.enums import EntityKind
from imodel_transformer.core.exceptions import CodeSpecNotFound, TransformerStateError
from imodel_transformer.model.entities import (
    AspectProps,
    CodeSpecProps,
    ElementProps,
    EntityProps,
    ModelProps,
    RelationshipProps,
)
from imodel_transformer.model.metadata import MetadataService
from imodel_transformer.model.schema import SchemaProps
from imodel_transformer.repository.base import Repository

logger = logging.getLogger(__name__)


class ExportHandler:
    """Callbacks driven by an ``Exporter``.

    Every method has a no-op (or permissive) default so subclasses override only
    what they need. The ``is_update`` argument is None outside change-detection
    mode; in that mode it is True when the entity already existed at the checkpoint.
    """

    def should_export_code_spec(self, code_spec: CodeSpecProps) -> bool:
        return True

    def should_export_element(self, element: ElementProps) -> bool:
        return True

    def should_export_element_aspect(self, aspect: AspectProps) -> bool:
        return True

    def should_export_relationship(self, relationship: RelationshipProps) -> bool:
        return True

    def on_export_schema(self, schema: SchemaProps, schema_path: Path) -> None:
        """Called with each exported schema and the file it was written to."""
        pass

    def on_export_schemas_complete(self, schema_paths: list[Path]) -> None:
        """Called once every schema is written, while the files still exist."""
        pass

    def on_export_code_spec(self, code_spec: CodeSpecProps, is_update: bool | None) -> None:
        pass

    def on_export_model(self, model: ModelProps, is_update: bool | None) -> None:
        pass

    def on_export_element(self, element: ElementProps, is_update: bool | None) -> None:
        pass

    def on_export_element_unique_aspect(self, aspect: AspectProps, is_update: bool | None) -> None:
        pass

    def on_export_element_multi_aspects(
        self, element_id: int, aspects: list[AspectProps], is_update: bool | None
    ) -> None:
        """Called once per exported element with all of its exportable multi-aspects (possibly none)."""
        pass

    def on_export_relationship(self, relationship: RelationshipProps, is_update: bool | None) -> None:
        pass

    def on_delete_element(self, element_id: int) -> None:
        pass

    def on_delete_model(self, model_id: int) -> None:
        pass

    def on_delete_relationship(self, relationship_id: int) -> None:
        pass


@dataclass
class ExportStatistics:
    """Entities traversed, counted whether or not callbacks were made."""

    models: int = 0
    elements: int = 0
    aspects: int = 0
    relationships: int = 0

    def to_dict(self) -> dict[str, int]:
        return asdict(self)


class Exporter:
    """Walks a source repository and drives an ``ExportHandler``.

    Args:
        source: Repository to read. The exporter never writes to it.

    Attributes:
        visit_elements: When False, element and aspect callbacks are suppressed but
            the traversal and statistics still happen.
        visit_relationships: Same for relationship callbacks.
        statistics: Counts of traversed entities.
    """

    def __init__(self, source: Repository):
        self.source = source
        self.metadata = MetadataService(source)
        self.visit_elements = True
        self.visit_relationships = True
        self.statistics = ExportStatistics()
        self._handler: ExportHandler | None = None
        self._changes_since: int | None = None
        self._excluded_element_ids: set[int] = set()
        self._excluded_code_spec_names: set[str] = set()
        self._excluded_element_classes: set[str] = set()
        self._excluded_aspect_classes: set[str] = set()
        self._excluded_relationship_classes: set[str] = set()
        self._visited_element_ids: set[int] = set()
        self._disposed = False

    # Setup

    def register_handler(self, handler: ExportHandler) -> None:
        self._handler = handler

    @property
    def handler(self) -> ExportHandler:
        if self._disposed:
            raise TransformerStateError("Exporter has been disposed")
        if self._handler is None:
            raise TransformerStateError("No export handler registered")
        return self._handler

    @property
    def changes_since(self) -> int | None:
        return self._changes_since

    @changes_since.setter
    def changes_since(self, checkpoint: int | str | datetime | None) -> None:
        """Set the change-detection checkpoint.

        Args:
            checkpoint: A change counter value, a ``datetime``, an ISO 8601 timestamp
                string, or None to export everything.
        """
        if isinstance(checkpoint, str):
            checkpoint = parser.isoparse(checkpoint)
        if isinstance(checkpoint, datetime):
            checkpoint = self.source.change_counter_at(checkpoint)
        self._changes_since = checkpoint
        if checkpoint is not None:
            logger.info(f"Exporting changes since checkpoint {checkpoint}")

    def _has_changed(self, entity: EntityProps | CodeSpecProps) -> bool:
        return self._changes_since is None or entity.last_mod > self._changes_since

    def _is_update(self, entity: EntityProps | CodeSpecProps) -> bool | None:
        if self._changes_since is None:
            return None
        return entity.created <= self._changes_since

    # Exclusions

    def exclude_element(self, element_id: int) -> None:
        self._excluded_element_ids.add(element_id)

    def exclude_code_spec(self, code_spec_name: str) -> None:
        """Exclude a code spec and every element whose code uses it."""
        self._excluded_code_spec_names.add(code_spec_name)

    def exclude_element_class(self, class_name: str) -> None:
        self._excluded_element_classes.add(class_name)

    def exclude_element_aspect_class(self, class_name: str) -> None:
        self._excluded_aspect_classes.add(class_name)

    def exclude_relationship_class(self, class_name: str) -> None:
        self._excluded_relationship_classes.add(class_name)

    def _in_excluded_class(self, class_name: str, excluded: set[str]) -> bool:
        return bool(excluded) and any(c in excluded for c in self.metadata.base_classes(class_name))

    def is_excluded_element(self, element: ElementProps) -> bool:
        """True when the element is filtered out by id, class, code spec or handler predicate."""
        if element.id in self._excluded_element_ids:
            return True
        if self._in_excluded_class(element.class_name, self._excluded_element_classes):
            return True
        if self._excluded_code_spec_names:
            code_spec = self.source.get_code_spec(element.code.spec)
            if code_spec.name in self._excluded_code_spec_names:
                return True
        return not self.handler.should_export_element(element)

    def was_visited(self, element_id: int) -> bool:
        """True when the element was traversed (and not excluded) in this session."""
        return element_id in self._visited_element_ids

    # Schemas and code specs

    def export_schemas(self) -> list[Path]:
        """Write every non-system schema to a temporary directory and hand it to the handler.

        The directory is removed only after ``on_export_schemas_complete`` returns.

        Returns:
            Paths the schemas were written to. They no longer exist on return.
        """
        schemas = [s for s in self.source.iter_schemas() if not s.is_system]
        paths = []
        with tempfile.TemporaryDirectory(prefix="imodel_schemas_") as tmp:
            for schema in schemas:
                path = Path(tmp) / f"{schema.name}.json"
                path.write_text(schema.model_dump_json(indent=2))
                paths.append(path)
                self.handler.on_export_schema(schema, path)
            logger.info(f"Exported {len(paths)} schemas to {tmp}")
            self.handler.on_export_schemas_complete(paths)
        return paths

    def _export_code_spec(self, code_spec: CodeSpecProps) -> None:
        if code_spec.name in self._excluded_code_spec_names or not self.handler.should_export_code_spec(code_spec):
            logger.debug(f"Skipping excluded code spec {code_spec.name}")
            return
        if self._has_changed(code_spec):
            self.handler.on_export_code_spec(code_spec, self._is_update(code_spec))

    def export_code_specs(self) -> None:
        for code_spec in self.source.iter_code_specs():
            self._export_code_spec(code_spec)

    def export_code_spec_by_name(self, name: str) -> None:
        code_spec = self.source.try_get_code_spec_by_name(name)
        if code_spec is None:
            raise CodeSpecNotFound(f"Code spec {name} not found in the source")
        self._export_code_spec(code_spec)

    # Models and elements

    def export_all(self) -> None:
        """Export code specs, the whole model tree and relationships. Schemas are exported separately."""
        self.export_code_specs()
        self.export_model(REPOSITORY_MODEL_ID)
        self.export_relationships(RELATIONSHIP_CLASS)

    def export_model(self, model_id: int) -> None:
        """Export a model, then its contents, then its sub-models."""
        if model_id != REPOSITORY_MODEL_ID:
            modeled = self.source.get_element(model_id)
            if self.is_excluded_element(modeled):
                logger.debug(f"Skipping model {id_to_hex(model_id)}: its modeled element is excluded")
                return
        model = self.source.get_model(model_id)
        self.statistics.models += 1
        if self._has_changed(model):
            self.handler.on_export_model(model, self._is_update(model))
        self.export_model_contents(model_id)
        self.export_sub_models(model_id)

    def export_model_contents(self, model_id: int) -> None:
        for element_id in self.source.iter_model_element_ids(model_id):
            self.export_element(element_id)

    def export_sub_models(self, parent_model_id: int) -> None:
        for model_id in self.source.iter_sub_model_ids(parent_model_id):
            self.export_model(model_id)

    def export_element(self, element_id: int) -> None:
        """Export an element, its aspects and its children.

        Raises:
            EntityNotFound: If the source has no such element.
        """
        element = self.source.get_element(element_id)
        if self.is_excluded_element(element):
            logger.debug(f"Skipping excluded element {element}")
            return
        self.statistics.elements += 1
        self._visited_element_ids.add(element_id)
        changed = self._has_changed(element)
        if self.visit_elements and changed:
            self.handler.on_export_element(element, self._is_update(element))
        if changed:
            self.export_element_aspects(element_id)
        self.export_child_elements(element_id)

    def export_child_elements(self, element_id: int) -> None:
        for child_id in self.source.iter_child_element_ids(element_id):
            self.export_element(child_id)

    def export_element_aspects(self, element_id: int) -> None:
        """Export the aspects of an element: unique aspects one by one, multi-aspects together."""
        aspects = [
            a
            for a in self.source.get_aspects(element_id)
            if not self._in_excluded_class(a.class_name, self._excluded_aspect_classes)
            and self.handler.should_export_element_aspect(a)
        ]
        self.statistics.aspects += len(aspects)
        if not self.visit_elements:
            return
        for aspect in (a for a in aspects if a.is_unique):
            self.handler.on_export_element_unique_aspect(aspect, self._is_update(aspect))
        multi = sorted((a for a in aspects if not a.is_unique), key=lambda a: (a.class_name, a.id))
        is_update = None if self._changes_since is None else any(self._is_update(a) for a in multi)
        self.handler.on_export_element_multi_aspects(element_id, multi, is_update)

    # Relationships

    def export_relationships(self, base_class_name: str) -> None:
        """Export relationships of a class, subclasses included."""
        for relationship in self.source.iter_relationships():
            if not self.metadata.is_subclass_of(relationship.class_name, base_class_name):
                continue
            if self._in_excluded_class(relationship.class_name, self._excluded_relationship_classes):
                continue
            if not self.handler.should_export_relationship(relationship):
                continue
            self.statistics.relationships += 1
            if self.visit_relationships and self._has_changed(relationship):
                self.handler.on_export_relationship(relationship, self._is_update(relationship))

    # Change detection

    def export_changes(self, since: int | str | datetime) -> None:
        """Export what changed since a checkpoint, deletes included."""
        self.changes_since = since
        self.export_all()
        self.export_deletes()

    def export_deletes(self) -> None:
        """Report entities deleted since the checkpoint: relationships, then elements, then models.

        Raises:
            TransformerStateError: If no checkpoint is set.
        """
        if self._changes_since is None:
            raise TransformerStateError("export_deletes requires changes_since to be set")
        deleted = sorted(self.source.iter_deleted_since(self._changes_since), key=lambda d: _DELETE_ORDER[d[0]])
        for kind, entity_ids in groupby(deleted, key=lambda d: d[0]):
            callback = {
                EntityKind.relationship: self.handler.on_delete_relationship,
                EntityKind.element: self.handler.on_delete_element,
                EntityKind.model: self.handler.on_delete_model,
            }[kind]
            for _, entity_id in entity_ids:
                callback(entity_id)

    def dispose(self) -> None:
        self.metadata.clear()
        self._visited_element_ids.clear()
        self._handler = None
        self._disposed = True


# Tombstones are recorded children first; the sort is stable
_DELETE_ORDER = {EntityKind.relationship: 0, EntityKind.element: 1, EntityKind.model: 2}
