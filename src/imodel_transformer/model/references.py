"""Predecessor discovery driven by schema metadata.

An entity's predecessors are the entities that must exist in the target
before the entity can be written completely. Some reference fields are fixed
by the data model (containing model, parent, code scope, owning element);
the rest are navigation properties that only the schema metadata knows
about. ``PredecessorWalker`` combines both: it reads the fixed fields and
asks ``MetadataService`` which properties of the entity's class hold
references.

Example:
    walker = PredecessorWalker(MetadataService(source))
    for ref in walker.element_predecessors(element):
        print(ref)
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Iterator

from imodel_transformer.core.constants import id_to_hex, is_valid_id
from imodel_transformer.core.enums import EntityKind, PropertyKind
from imodel_transformer.model.entities import AspectProps, ElementProps, ModelProps, RelationshipProps
from imodel_transformer.model.metadata import MetadataService


@dataclass(frozen=True)
class PredecessorRef:
    """Reference to an entity that must exist in the target first.

    Attributes:
        kind: ``EntityKind.element`` or ``EntityKind.model``.
        id: Source id of the referenced entity.
    """

    kind: EntityKind
    id: int

    @classmethod
    def element(cls, element_id: int) -> PredecessorRef:
        return cls(EntityKind.element, element_id)

    @classmethod
    def model(cls, model_id: int) -> PredecessorRef:
        return cls(EntityKind.model, model_id)

    def __str__(self) -> str:
        return f"{self.kind.value.lower()} {id_to_hex(self.id)}"


class PredecessorWalker:
    """Enumerates and rewrites the reference fields of entities.

    Args:
        metadata: Metadata service of the repository the entities come from.
    """

    def __init__(self, metadata: MetadataService):
        self.metadata = metadata

    def reference_values(self, class_name: str, properties: dict[str, Any]) -> Iterator[int]:
        """Yield every valid id held by the reference properties of a property bag."""
        for prop in self.metadata.reference_properties(class_name):
            value = properties.get(prop.name)
            if value is None:
                continue
            if prop.kind == PropertyKind.navigation_set:
                yield from (v for v in value if is_valid_id(v))
            elif is_valid_id(value):
                yield value

    def element_predecessors(self, element: ElementProps) -> set[PredecessorRef]:
        refs = {PredecessorRef.model(element.model)}
        if is_valid_id(element.parent):
            refs.add(PredecessorRef.element(element.parent))
        if is_valid_id(element.code.scope):
            refs.add(PredecessorRef.element(element.code.scope))
        refs.update(PredecessorRef.element(v) for v in self.reference_values(element.class_name, element.properties))
        # An element never waits on itself
        refs.discard(PredecessorRef.element(element.id))
        return refs

    def model_predecessors(self, model: ModelProps) -> set[PredecessorRef]:
        return {PredecessorRef.element(model.id)}

    def aspect_predecessors(self, aspect: AspectProps) -> set[PredecessorRef]:
        refs = {PredecessorRef.element(aspect.element_id)}
        refs.update(PredecessorRef.element(v) for v in self.reference_values(aspect.class_name, aspect.properties))
        return refs

    def relationship_predecessors(self, relationship: RelationshipProps) -> set[PredecessorRef]:
        return {PredecessorRef.element(relationship.source_id), PredecessorRef.element(relationship.target_id)}

    def remap_properties(
        self,
        class_name: str,
        properties: dict[str, Any],
        remap: Callable[[int], int],
    ) -> dict[str, Any]:
        """Return a copy of a property bag with every reference rewritten.

        Args:
            class_name: Class the property bag belongs to.
            properties: Property bag to copy.
            remap: Maps a source id to a target id (``INVALID_ID`` when unmapped).

        Returns:
            New property bag. Primitive values are copied unchanged.
        """
        result = dict(properties)
        for prop in self.metadata.reference_properties(class_name):
            value = result.get(prop.name)
            if value is None:
                continue
            if prop.kind == PropertyKind.navigation_set:
                result[prop.name] = [remap(v) if is_valid_id(v) else v for v in value]
            elif is_valid_id(value):
                result[prop.name] = remap(value)
        return result

    def drop_invalid_references(self, class_name: str, properties: dict[str, Any]) -> dict[str, Any]:
        """Null single references and drop list entries that hold ``INVALID_ID``."""
        result = dict(properties)
        for prop in self.metadata.reference_properties(class_name):
            value = result.get(prop.name)
            if value is None:
                continue
            if prop.kind == PropertyKind.navigation_set:
                result[prop.name] = [v for v in value if is_valid_id(v)]
            elif not is_valid_id(value):
                result[prop.name] = None
        return result
