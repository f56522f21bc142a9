"""Identity and code-spec mapping between a source and a target repository.

The ``CloneContext`` is the mapping authority of one transformation session.
It holds the source-to-target element map and its inverse, the code spec map,
and the models known to exist in the target. It rewrites source entities into
target-shaped entities and it owns provenance bookkeeping: it resolves the
scope record that ties the session's provenance to one external repository,
rejects a second source writing under an occupied scope, and rebuilds the
identity map from provenance left by earlier sessions.

Example:
    >>> context = CloneContext(source, target)
    >>> context.remap_element(ROOT_SUBJECT_ID, ROOT_SUBJECT_ID)
    >>> context.find_target_element_id(ROOT_SUBJECT_ID)
    1
"""

from __future__ import annotations

import json
import logging
from pathlib import Path

from pydantic import validate_call

from imodel_transformer.core.constants import (
    INVALID_ID,
    REPOSITORY_MODEL_ID,
    ROOT_SUBJECT_ID,
    id_to_hex,
    is_valid_id,
)
from imodel_transformer.core.enums import ProvenanceKind
from imodel_transformer.core.exceptions import CodeSpecNotFound, ProvenanceScopeConflict, TransformerStateError
from imodel_transformer.model.entities import (
    AspectProps,
    Code,
    ElementProps,
    ModelProps,
    ProvenanceRecord,
    RelationshipProps,
)
from imodel_transformer.model.metadata import MetadataService
from imodel_transformer.model.references import PredecessorWalker
from imodel_transformer.repository.base import Repository

logger = logging.getLogger(__name__)


class CloneContext:
    """Identity map, code spec map and provenance scope of one session.

    Args:
        source: Repository entities are read from.
        target: Repository entities are written to.
    """

    def __init__(self, source: Repository, target: Repository):
        self.source = source
        self.target = target
        self.source_metadata = MetadataService(source)
        self.walker = PredecessorWalker(self.source_metadata)
        self._element_map: dict[int, int] = {}
        self._inverse_map: dict[int, int] = {}
        self._code_spec_map: dict[int, int] = {}
        self._model_map: dict[int, int] = {REPOSITORY_MODEL_ID: REPOSITORY_MODEL_ID}
        self._scope: ProvenanceRecord | None = None
        self._disposed = False

    def _check_open(self) -> None:
        if self._disposed:
            raise TransformerStateError("CloneContext has been disposed")

    @property
    def is_between_repositories(self) -> bool:
        """True when source and target are distinct repositories."""
        return self.source is not self.target and self.source.repository_id != self.target.repository_id

    # Elements

    def remap_element(self, source_id: int, target_id: int) -> None:
        """Seed or override the mapping of a source element.

        Args:
            source_id: Element id in the source.
            target_id: Element id in the target. ``INVALID_ID`` removes the mapping.
        """
        self._check_open()
        previous = self._element_map.pop(source_id, None)
        if previous is not None and self._inverse_map.get(previous) == source_id:
            del self._inverse_map[previous]
        if is_valid_id(target_id):
            self._element_map[source_id] = target_id
            self._inverse_map[target_id] = source_id

    def find_target_element_id(self, source_id: int | None) -> int:
        if not is_valid_id(source_id):
            return INVALID_ID
        return self._element_map.get(source_id, INVALID_ID)

    def find_source_element_id(self, target_id: int) -> int:
        return self._inverse_map.get(target_id, INVALID_ID)

    @property
    def mapped_element_count(self) -> int:
        return len(self._element_map)

    # Models

    def remap_model(self, source_id: int, target_id: int) -> None:
        self._check_open()
        self._model_map[source_id] = target_id

    def find_target_model_id(self, source_id: int) -> int:
        """Return the target id of a source model, or ``INVALID_ID`` while it is not in the target.

        The repository model always maps onto the target's repository model.
        """
        if source_id in self._model_map:
            return self._model_map[source_id]
        target_id = self.find_target_element_id(source_id)
        if is_valid_id(target_id) and self.target.has_model(target_id):
            self._model_map[source_id] = target_id
            return target_id
        return INVALID_ID

    # Code specs

    @validate_call
    def remap_code_spec(self, source_name: str, target_name: str) -> None:
        """Map a source code spec onto a target code spec by name.

        Raises:
            CodeSpecNotFound: If either name does not resolve.
        """
        self._check_open()
        source_spec = self.source.try_get_code_spec_by_name(source_name)
        if source_spec is None:
            raise CodeSpecNotFound(f"Code spec {source_name} not found in the source")
        target_spec = self.target.try_get_code_spec_by_name(target_name)
        if target_spec is None:
            raise CodeSpecNotFound(f"Code spec {target_name} not found in the target")
        self._code_spec_map[source_spec.id] = target_spec.id

    def remap_code_spec_id(self, source_id: int, target_id: int) -> None:
        self._code_spec_map[source_id] = target_id

    def find_target_code_spec_id(self, source_id: int) -> int:
        return self._code_spec_map.get(source_id, INVALID_ID)

    def has_code_spec_mapping(self, source_id: int) -> bool:
        return source_id in self._code_spec_map

    # Cloning

    def clone_element(self, source_element: ElementProps) -> ElementProps:
        """Rewrite a source element into target terms.

        Unmapped references come back as ``INVALID_ID``. The returned id is the
        mapped target id, or ``INVALID_ID`` for an element not yet in the target.
        """
        self._check_open()
        code = source_element.code
        remap = self.find_target_element_id
        return ElementProps(
            id=remap(source_element.id),
            class_name=source_element.class_name,
            model=self.find_target_model_id(source_element.model),
            parent=remap(source_element.parent) if source_element.parent is not None else None,
            code=Code(spec=self.find_target_code_spec_id(code.spec), scope=remap(code.scope), value=code.value),
            federation_guid=source_element.federation_guid if self.is_between_repositories else None,
            user_label=source_element.user_label,
            properties=self.walker.remap_properties(source_element.class_name, source_element.properties, remap),
        )

    def clone_model(self, source_model: ModelProps) -> ModelProps:
        self._check_open()
        return ModelProps(
            id=self.find_target_element_id(source_model.id),
            class_name=source_model.class_name,
            parent_model=self.find_target_model_id(source_model.parent_model),
            is_private=source_model.is_private,
            properties=self.walker.remap_properties(
                source_model.class_name, source_model.properties, self.find_target_element_id
            ),
        )

    def clone_element_aspect(self, source_aspect: AspectProps) -> AspectProps:
        self._check_open()
        return AspectProps(
            class_name=source_aspect.class_name,
            element_id=self.find_target_element_id(source_aspect.element_id),
            is_unique=source_aspect.is_unique,
            properties=self.walker.remap_properties(
                source_aspect.class_name, source_aspect.properties, self.find_target_element_id
            ),
        )

    def clone_relationship(self, source_relationship: RelationshipProps) -> RelationshipProps:
        self._check_open()
        return RelationshipProps(
            class_name=source_relationship.class_name,
            source_id=self.find_target_element_id(source_relationship.source_id),
            target_id=self.find_target_element_id(source_relationship.target_id),
            properties=self.walker.remap_properties(
                source_relationship.class_name, source_relationship.properties, self.find_target_element_id
            ),
        )

    # Provenance

    @property
    def scope(self) -> ProvenanceRecord | None:
        return self._scope

    def initialize_scope(
        self,
        provenance_repository: Repository,
        external_repository_id: str,
        scope_element_id: int,
        write: bool = True,
    ) -> ProvenanceRecord | None:
        """Resolve the scope record that anchors this session's provenance.

        Args:
            provenance_repository: Repository holding the provenance records.
            external_repository_id: Id of the repository on the other side of the session.
            scope_element_id: Element of ``provenance_repository`` anchoring the scope.
            write: Insert the scope record when none exists yet.

        Returns:
            The scope record, or None when none exists and ``write`` is false.

        Raises:
            ProvenanceScopeConflict: If the scope element already carries provenance
                for a different external repository.
        """
        self._check_open()
        existing = list(
            provenance_repository.iter_provenance(
                scope_id=ROOT_SUBJECT_ID, kind=ProvenanceKind.scope, element_id=scope_element_id
            )
        )
        for record in existing:
            if record.identifier != external_repository_id:
                raise ProvenanceScopeConflict(
                    f"Scope element {id_to_hex(scope_element_id)} already holds provenance for repository "
                    f"{record.identifier}; refusing to record provenance for {external_repository_id}"
                )
        if existing:
            self._scope = existing[0]
        elif write:
            record = ProvenanceRecord(
                element_id=scope_element_id,
                scope=ROOT_SUBJECT_ID,
                kind=ProvenanceKind.scope,
                identifier=external_repository_id,
            )
            record.id = provenance_repository.insert_aspect(record.to_aspect())
            logger.info(f"Recorded provenance scope {id_to_hex(scope_element_id)} for {external_repository_id}")
            self._scope = record
        return self._scope

    def rebuild_from_provenance(
        self,
        provenance_repository: Repository,
        scope_element_id: int,
        is_reverse_synchronization: bool = False,
    ) -> int:
        """Seed the identity map from element provenance left by earlier sessions.

        In a forward session the records live in the target and name source ids.
        In a reverse session they live in the source and name target ids, so the
        direction is inverted.

        Returns:
            Number of mappings seeded.
        """
        self._check_open()
        seeded = 0
        for record in provenance_repository.iter_provenance(scope_id=scope_element_id, kind=ProvenanceKind.element):
            if is_reverse_synchronization:
                if not self.target.has_element(record.source_id):
                    continue
                self.remap_element(record.element_id, record.source_id)
            else:
                self.remap_element(record.source_id, record.element_id)
            seeded += 1
        logger.debug(f"Seeded {seeded} element mappings from provenance under {id_to_hex(scope_element_id)}")
        return seeded

    @staticmethod
    def upsert_provenance(repository: Repository, record: ProvenanceRecord) -> bool:
        """Write a provenance record unless an identical one exists.

        Records are matched on (element, scope, kind, identifier).

        Returns:
            True when something was written.
        """
        for existing in repository.iter_provenance(scope_id=record.scope, kind=record.kind, element_id=record.element_id):
            if existing.identifier != record.identifier:
                continue
            if existing.version == record.version and existing.json_properties == record.json_properties:
                return False
            record.id = existing.id
            repository.update_aspect(record.to_aspect())
            return True
        record.id = repository.insert_aspect(record.to_aspect())
        return True

    # Housekeeping

    def dump(self, path: str | Path) -> None:
        """Write the identity and code spec maps to a JSON file."""
        data = {
            "elements": {id_to_hex(s): id_to_hex(t) for s, t in sorted(self._element_map.items())},
            "models": {id_to_hex(s): id_to_hex(t) for s, t in sorted(self._model_map.items())},
            "code_specs": {id_to_hex(s): id_to_hex(t) for s, t in sorted(self._code_spec_map.items())},
        }
        Path(path).write_text(json.dumps(data, indent=2))

    def dispose(self) -> None:
        if self._disposed:
            return
        self._element_map.clear()
        self._inverse_map.clear()
        self._code_spec_map.clear()
        self._model_map.clear()
        self.source_metadata.clear()
        self._disposed = True
