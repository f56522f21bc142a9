"""Idempotent writes into a target repository.

The ``Importer`` makes the target match the entities it is given. Each
``import_*`` call inserts when the target has no counterpart, updates when the
counterpart differs in its material fields, and does nothing otherwise, so
importing the same content twice writes nothing the second time. Every write is
counted per entity kind in ``ImportCounters``.

Any rejection by the target surfaces as ``EntityWriteFailure`` carrying the
target's message. Nothing is retried and nothing is rolled back here: the
caller owns ``save_changes`` and ``abandon_changes`` on the target.

Example:
    >>> importer = Importer(target)
    >>> element_id = importer.import_element(cloned)
    >>> importer.counters.elements.inserted
    1
"""

from __future__ import annotations

import logging
from collections import defaultdict
from contextlib import contextmanager
from dataclasses import asdict, dataclass, field
from typing import Callable, Iterator

from imodel_transformer.core.constants import id_to_hex, is_valid_id
from imodel_transformer.core.exceptions import EntityWriteFailure, RepositoryError, TransformerStateError
from imodel_transformer.model.entities import (
    AspectProps,
    CodeSpecProps,
    ElementProps,
    ModelProps,
    RelationshipProps,
)
from imodel_transformer.repository.base import Repository

logger = logging.getLogger(__name__)


@dataclass
class KindCounters:
    inserted: int = 0
    updated: int = 0
    deleted: int = 0

    @property
    def total(self) -> int:
        return self.inserted + self.updated + self.deleted


@dataclass
class ImportCounters:
    """Insert, update and delete counts per entity kind."""

    code_specs: KindCounters = field(default_factory=KindCounters)
    models: KindCounters = field(default_factory=KindCounters)
    elements: KindCounters = field(default_factory=KindCounters)
    aspects: KindCounters = field(default_factory=KindCounters)
    relationships: KindCounters = field(default_factory=KindCounters)

    @property
    def total_changes(self) -> int:
        return sum(c.total for c in (self.code_specs, self.models, self.elements, self.aspects, self.relationships))

    def to_dict(self) -> dict[str, dict[str, int]]:
        return asdict(self)

    def reset(self) -> None:
        for name in ("code_specs", "models", "elements", "aspects", "relationships"):
            setattr(self, name, KindCounters())


class Importer:
    """Writes cloned entities into a target repository.

    Args:
        target: Repository to write to.
        preserve_element_ids: Insert new elements using the id they arrive with.
    """

    def __init__(self, target: Repository, preserve_element_ids: bool = False):
        self.target = target
        self.preserve_element_ids = preserve_element_ids
        self.counters = ImportCounters()
        self._disposed = False

    @contextmanager
    def _writing(self, action: str) -> Iterator[None]:
        if self._disposed:
            raise TransformerStateError("Importer has been disposed")
        try:
            yield
        except RepositoryError as e:
            raise EntityWriteFailure(f"Failed to {action}: {e}") from e

    # Code specs and models

    def import_code_spec(self, props: CodeSpecProps) -> int:
        """Import a code spec, matched by name. Returns its target id."""
        with self._writing(f"import code spec {props.name}"):
            existing = self.target.try_get_code_spec_by_name(props.name)
            if existing is None:
                code_spec_id = self.target.insert_code_spec(props)
                self.counters.code_specs.inserted += 1
                logger.debug(f"Inserted code spec {props.name} as {id_to_hex(code_spec_id)}")
                return code_spec_id
            if existing.properties != props.properties:
                self.target.update_code_spec(props.model_copy(update={"id": existing.id}))
                self.counters.code_specs.updated += 1
            return existing.id

    def import_model(self, props: ModelProps) -> int:
        """Import a model whose modeled element is already in the target."""
        with self._writing(f"import model {props}"):
            existing = self.target.try_get_model(props.id)
            if existing is None:
                self.target.insert_model(props)
                self.counters.models.inserted += 1
                logger.debug(f"Inserted model {props}")
            elif not existing.same_content(props):
                self.target.update_model(props)
                self.counters.models.updated += 1
                logger.debug(f"Updated model {props}")
            return props.id

    # Elements

    def import_element(self, props: ElementProps, is_new: bool = False) -> int:
        """Insert or update an element.

        Args:
            props: Target-shaped element. A valid ``props.id`` naming an existing
                target element means update; otherwise the element is inserted.
            is_new: The element has no counterpart in the target yet. It is inserted,
                under ``props.id`` when that is valid, and never merged into an
                existing element with the same id.

        Returns:
            Id of the element in the target.

        Raises:
            EntityWriteFailure: If ``is_new`` is set and ``props.id`` is already taken.
        """
        with self._writing(f"import element {props}"):
            if is_new:
                element_id = self.target.insert_element(props, force_id=is_valid_id(props.id))
                self.counters.elements.inserted += 1
                logger.debug(f"Inserted element {props.class_name} as {id_to_hex(element_id)}")
                return element_id
            existing = self.target.try_get_element(props.id) if is_valid_id(props.id) else None
            if existing is None:
                element_id = self.target.insert_element(props, force_id=self.preserve_element_ids and is_valid_id(props.id))
                self.counters.elements.inserted += 1
                logger.debug(f"Inserted element {props.class_name} as {id_to_hex(element_id)}")
                return element_id
            if not existing.same_content(props):
                self.target.update_element(props)
                self.counters.elements.updated += 1
                logger.debug(f"Updated element {props}")
            return existing.id

    # Aspects

    def import_element_unique_aspect(self, props: AspectProps) -> int:
        with self._writing(f"import aspect {props}"):
            existing = self.target.get_aspects(props.element_id, props.class_name)
            if not existing:
                aspect_id = self.target.insert_aspect(props)
                self.counters.aspects.inserted += 1
                return aspect_id
            current = existing[0]
            if current.properties != props.properties:
                self.target.update_aspect(props.model_copy(update={"id": current.id}))
                self.counters.aspects.updated += 1
            return current.id

    def import_element_multi_aspects(
        self,
        element_id: int,
        aspects: list[AspectProps],
        should_manage: Callable[[AspectProps], bool] | None = None,
    ) -> list[int]:
        """Reconcile the multi-aspects of a target element with the given list.

        Aspects are matched per class in id order: matched pairs are updated when
        different, surplus incoming aspects are inserted, and surplus target
        aspects are deleted.

        Args:
            element_id: Target element owning the aspects.
            aspects: Target-shaped aspects the element should end up with.
            should_manage: Target aspects for which this returns False are left alone.

        Returns:
            Target ids of the incoming aspects, in input order.
        """
        with self._writing(f"import aspects of element {id_to_hex(element_id)}"):
            current: dict[str, list[AspectProps]] = defaultdict(list)
            for aspect in self.target.get_aspects(element_id):
                if not aspect.is_unique and (should_manage is None or should_manage(aspect)):
                    current[aspect.class_name].append(aspect)
            incoming: dict[str, list[AspectProps]] = defaultdict(list)
            for aspect in aspects:
                incoming[aspect.class_name].append(aspect)

            ids: dict[int, int] = {}
            for class_name in sorted(set(current) | set(incoming)):
                have, want = current[class_name], incoming[class_name]
                for existing, aspect in zip(have, want):
                    if existing.properties != aspect.properties:
                        self.target.update_aspect(aspect.model_copy(update={"id": existing.id}))
                        self.counters.aspects.updated += 1
                    ids[id(aspect)] = existing.id
                for aspect in want[len(have):]:
                    ids[id(aspect)] = self.target.insert_aspect(aspect.model_copy(update={"element_id": element_id}))
                    self.counters.aspects.inserted += 1
                for existing in have[len(want):]:
                    self.target.delete_aspect(existing.id)
                    self.counters.aspects.deleted += 1
            return [ids[id(a)] for a in aspects]

    def delete_element_aspect(self, aspect_id: int) -> None:
        with self._writing(f"delete aspect {id_to_hex(aspect_id)}"):
            self.target.delete_aspect(aspect_id)
            self.counters.aspects.deleted += 1

    # Relationships

    def import_relationship(self, props: RelationshipProps, known_id: int | None = None) -> int:
        """Import a relationship. Returns its target id.

        Args:
            props: Target-shaped relationship.
            known_id: Target relationship previously written for the same source
                relationship. When it still exists it is updated in place, endpoints
                included; otherwise the relationship is matched by (class, source, target).
        """
        with self._writing(f"import relationship {props}"):
            existing = self.target.try_get_relationship(known_id) if known_id is not None else None
            if existing is not None:
                if (existing.source_id, existing.target_id, existing.properties) != (
                    props.source_id,
                    props.target_id,
                    props.properties,
                ):
                    self.target.update_relationship(props.model_copy(update={"id": existing.id}))
                    self.counters.relationships.updated += 1
                    logger.debug(f"Updated relationship {props}")
                return existing.id
            existing = self.target.find_relationship(props.class_name, props.source_id, props.target_id)
            if existing is None:
                relationship_id = self.target.insert_relationship(props)
                self.counters.relationships.inserted += 1
                return relationship_id
            if existing.properties != props.properties:
                self.target.update_relationship(props.model_copy(update={"id": existing.id}))
                self.counters.relationships.updated += 1
            return existing.id

    # Deletes

    def delete_element(self, element_id: int) -> None:
        """Delete an element and everything it owns. A missing element is ignored."""
        with self._writing(f"delete element {id_to_hex(element_id)}"):
            if not self.target.has_element(element_id):
                return
            self.target.delete_element(element_id)
            self.counters.elements.deleted += 1
            logger.debug(f"Deleted element {id_to_hex(element_id)}")

    def delete_model(self, model_id: int) -> None:
        with self._writing(f"delete model {id_to_hex(model_id)}"):
            if not self.target.has_model(model_id):
                return
            self.target.delete_model(model_id)
            self.counters.models.deleted += 1

    def delete_relationship(self, relationship_id: int) -> None:
        with self._writing(f"delete relationship {id_to_hex(relationship_id)}"):
            if self.target.try_get_relationship(relationship_id) is None:
                return
            self.target.delete_relationship(relationship_id)
            self.counters.relationships.deleted += 1

    def dispose(self) -> None:
        self._disposed = True
