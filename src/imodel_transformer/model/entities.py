"""
Pydantic models for the entities a repository stores.

Every model separates identity and bookkeeping fields (``id``, ``last_mod``)
from the material fields that define the entity's content. The importer
compares material fields to decide whether a write is needed.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field

from imodel_transformer.core.constants import (
    EXTERNAL_SOURCE_ASPECT_CLASS,
    INVALID_ID,
    ROOT_SUBJECT_ID,
    id_to_hex,
)
from imodel_transformer.core.enums import ProvenanceKind
from imodel_transformer.core.validation import VALIDATION_CONFIG

# Fields that never take part in change detection
BOOKKEEPING_FIELDS = {"id", "last_mod", "created"}


class EntityProps(BaseModel):
    """Base class for repository entities."""

    model_config = VALIDATION_CONFIG

    id: int = INVALID_ID
    class_name: str
    properties: dict[str, Any] = Field(default_factory=dict)
    last_mod: int = 0
    created: int = 0

    def material(self) -> dict[str, Any]:
        """Return the fields that define this entity's content."""
        return self.model_dump(exclude=BOOKKEEPING_FIELDS)

    def same_content(self, other: EntityProps) -> bool:
        return self.material() == other.material()


class Code(BaseModel):
    """Uniqueness triple of an element.

    Attributes:
        spec: Id of the code spec.
        scope: Id of the element the code value is unique within.
        value: Code value. ``None`` marks an empty code, which is never unique.
    """

    model_config = VALIDATION_CONFIG

    spec: int
    scope: int
    value: str | None = None

    @classmethod
    def empty(cls, spec: int = 1, scope: int = ROOT_SUBJECT_ID) -> Code:
        return cls(spec=spec, scope=scope, value=None)

    @property
    def is_empty(self) -> bool:
        return not self.value

    def __str__(self) -> str:
        return f"[{id_to_hex(self.spec)}, {id_to_hex(self.scope)}, {self.value!r}]"


class CodeSpecProps(BaseModel):
    model_config = VALIDATION_CONFIG

    id: int = INVALID_ID
    name: str
    properties: dict[str, Any] = Field(default_factory=dict)
    last_mod: int = 0
    created: int = 0

    def material(self) -> dict[str, Any]:
        return self.model_dump(exclude=BOOKKEEPING_FIELDS)


class ElementProps(EntityProps):
    """An element: the unit of content a repository holds.

    Attributes:
        model: Id of the model containing the element.
        parent: Id of the parent element, if any.
        code: Uniqueness triple.
        federation_guid: Optional globally unique identity.
        user_label: Optional display label.
    """

    model: int
    parent: int | None = None
    code: Code
    federation_guid: str | None = None
    user_label: str | None = None

    def __str__(self) -> str:
        label = self.user_label or self.code.value or ""
        return f"{self.class_name} {id_to_hex(self.id)} {label!r}"


class ModelProps(EntityProps):
    """A model. Its id is the id of the element it models.

    Attributes:
        parent_model: Id of the model that contains the modeled element.
        is_private: Hidden from ordinary browsing.
    """

    parent_model: int
    is_private: bool = False

    def __str__(self) -> str:
        return f"{self.class_name} {id_to_hex(self.id)}"


class AspectProps(EntityProps):
    """An aspect owned by an element.

    Attributes:
        element_id: Id of the owning element.
        is_unique: A unique aspect has at most one instance per (element, class).
    """

    element_id: int
    is_unique: bool = False

    def __str__(self) -> str:
        return f"{self.class_name} {id_to_hex(self.id)} of element {id_to_hex(self.element_id)}"


class RelationshipProps(EntityProps):
    """A link-table relationship between two elements."""

    source_id: int
    target_id: int

    def __str__(self) -> str:
        return f"{self.class_name} {id_to_hex(self.source_id)} -> {id_to_hex(self.target_id)}"


class ProvenanceRecord(BaseModel):
    """Provenance attached to an element of the provenance-holding repository.

    Stored as a multi-aspect of class ``Core:ExternalSourceAspect``.

    Attributes:
        id: Id of the aspect carrying the record.
        element_id: Element the record is attached to.
        scope: Scope element the record belongs to.
        kind: What the record describes.
        identifier: Source-side identity: a source entity id (as a decimal string) for
            element and relationship records, a source repository id for scope records.
        version: Modification marker of the source entity when last synchronized.
        json_properties: Extra data, e.g. ``target_rel_instance_id`` for relationships.
    """

    model_config = VALIDATION_CONFIG

    id: int = INVALID_ID
    element_id: int
    scope: int
    kind: ProvenanceKind
    identifier: str
    version: int | None = None
    json_properties: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_aspect(cls, aspect: AspectProps) -> ProvenanceRecord:
        props = aspect.properties
        return cls(
            id=aspect.id,
            element_id=aspect.element_id,
            scope=props["scope"],
            kind=props["kind"],
            identifier=props["identifier"],
            version=props.get("version"),
            json_properties=props.get("json_properties") or {},
        )

    def to_aspect(self) -> AspectProps:
        return AspectProps(
            id=self.id,
            class_name=EXTERNAL_SOURCE_ASPECT_CLASS,
            element_id=self.element_id,
            is_unique=False,
            properties={
                "scope": self.scope,
                "kind": ProvenanceKind(self.kind).value,
                "identifier": self.identifier,
                "version": self.version,
                "json_properties": self.json_properties,
            },
        )

    @property
    def source_id(self) -> int:
        """Source entity id for element and relationship records."""
        return int(self.identifier)
