"""Repository protocol.

This module defines the contract the transformer expects from the source and
target repositories. A repository is a durable store of schemas, code specs,
models, elements, aspects and relationships keyed by stable per-repository
integer ids, with an explicit all-or-nothing save.

``SqliteRepository`` is the implementation shipped with this package.
Anything satisfying the protocol can be used as a source or a target.

Example:
    source = SqliteRepository.open("source.db")
    assert isinstance(source, Repository)
"""

from __future__ import annotations

from datetime import datetime
from pathlib import Path
from typing import Iterator, Protocol, Sequence, runtime_checkable

from imodel_transformer.core.enums import EntityKind, ProvenanceKind
from imodel_transformer.model.entities import (
    AspectProps,
    Code,
    CodeSpecProps,
    ElementProps,
    ModelProps,
    ProvenanceRecord,
    RelationshipProps,
)
from imodel_transformer.model.schema import SchemaProps


@runtime_checkable
class Repository(Protocol):
    """Protocol for repositories a transformer reads from and writes to.

    Reads of a missing entity through ``get_*`` raise ``EntityNotFound``;
    ``try_get_*`` return None instead. Rejected writes raise ``RepositoryError``.
    """

    @property
    def repository_id(self) -> str:
        """Globally unique id of this repository."""
        ...

    @property
    def change_counter(self) -> int:
        """Monotonic modification marker. Entities modified later carry a larger ``last_mod``."""
        ...

    # Schemas

    def iter_schemas(self) -> Iterator[SchemaProps]:
        """Yield every schema in the repository, system schemas included."""
        ...

    def get_schema(self, name: str) -> SchemaProps | None: ...

    def import_schemas(self, paths: Sequence[Path]) -> list[str]:
        """Import schema files, in any order.

        Args:
            paths: JSON files holding serialized ``SchemaProps``.

        Returns:
            Names of the schemas actually imported. Schemas whose version is not newer
            than the one present are skipped.
        """
        ...

    # Code specs

    def iter_code_specs(self) -> Iterator[CodeSpecProps]: ...

    def get_code_spec(self, code_spec_id: int) -> CodeSpecProps: ...

    def try_get_code_spec_by_name(self, name: str) -> CodeSpecProps | None: ...

    def insert_code_spec(self, props: CodeSpecProps) -> int: ...

    def update_code_spec(self, props: CodeSpecProps) -> None: ...

    # Elements

    def get_element(self, element_id: int) -> ElementProps: ...

    def try_get_element(self, element_id: int) -> ElementProps | None: ...

    def has_element(self, element_id: int) -> bool: ...

    def query_element_id_by_code(self, code: Code) -> int:
        """Return the id of the element with this code, or ``INVALID_ID``."""
        ...

    def iter_element_ids(self) -> Iterator[int]: ...

    def iter_model_element_ids(self, model_id: int) -> Iterator[int]:
        """Yield ids of the top-level (parentless) elements of a model, in id order."""
        ...

    def iter_child_element_ids(self, parent_id: int) -> Iterator[int]:
        """Yield ids of the children of an element, in id order."""
        ...

    def insert_element(self, props: ElementProps, force_id: bool = False) -> int:
        """Insert an element.

        Args:
            props: Element to insert. ``props.id`` is ignored unless ``force_id``.
            force_id: Insert using ``props.id``.

        Returns:
            Id of the new element.
        """
        ...

    def update_element(self, props: ElementProps) -> None: ...

    def delete_element(self, element_id: int) -> None:
        """Delete an element, its sub-model, its children, aspects and relationships."""
        ...

    # Models

    def get_model(self, model_id: int) -> ModelProps: ...

    def try_get_model(self, model_id: int) -> ModelProps | None: ...

    def has_model(self, model_id: int) -> bool: ...

    def iter_sub_model_ids(self, parent_model_id: int) -> Iterator[int]: ...

    def insert_model(self, props: ModelProps) -> int: ...

    def update_model(self, props: ModelProps) -> None: ...

    def delete_model(self, model_id: int) -> None: ...

    # Aspects

    def get_aspects(self, element_id: int, class_name: str | None = None) -> list[AspectProps]: ...

    def insert_aspect(self, props: AspectProps) -> int: ...

    def update_aspect(self, props: AspectProps) -> None: ...

    def delete_aspect(self, aspect_id: int) -> None: ...

    def iter_provenance(
        self,
        scope_id: int | None = None,
        kind: ProvenanceKind | None = None,
        element_id: int | None = None,
    ) -> Iterator[ProvenanceRecord]:
        """Yield provenance records, optionally filtered by scope, kind and element."""
        ...

    # Relationships

    def iter_relationships(self) -> Iterator[RelationshipProps]: ...

    def try_get_relationship(self, relationship_id: int) -> RelationshipProps | None: ...

    def find_relationship(self, class_name: str, source_id: int, target_id: int) -> RelationshipProps | None: ...

    def insert_relationship(self, props: RelationshipProps) -> int: ...

    def update_relationship(self, props: RelationshipProps) -> None: ...

    def delete_relationship(self, relationship_id: int) -> None: ...

    # Change tracking

    def change_counter_at(self, when: datetime) -> int:
        """Return the change counter as of the last save at or before ``when``."""
        ...

    def iter_deleted_since(self, checkpoint: int) -> Iterator[tuple[EntityKind, int]]:
        """Yield (kind, id) of entities deleted after the checkpoint, in deletion order."""
        ...

    # Transactions

    def save_changes(self, description: str | None = None) -> None: ...

    def abandon_changes(self) -> None: ...

    def close(self) -> None: ...
