"""Schema definitions as plain data.

Schemas describe the classes a repository can hold and, for every class, its
properties. Navigation properties (single element references) and navigation
sets (lists of element references) are what make an entity depend on other
entities; ``MetadataService`` reads them from these definitions at run time.

Example:
    >>> schema = SchemaProps(
    ...     name="Plant",
    ...     version="01.00.00",
    ...     references=["Core"],
    ...     classes=[
    ...         ClassDefinition(
    ...             name="Pump",
    ...             base_class="Core:PhysicalElement",
    ...             properties=[PropertyDefinition(name="feeds", kind="navigation")],
    ...         )
    ...     ],
    ... )
    >>> schema.full_class_names()
    ['Plant:Pump']
"""

from __future__ import annotations

from pydantic import BaseModel, Field

from imodel_transformer.core.constants import CORE_SCHEMA_NAME
from imodel_transformer.core.enums import PropertyKind
from imodel_transformer.core.validation import VALIDATION_CONFIG


class PropertyDefinition(BaseModel):
    """A property of a class.

    Attributes:
        name: Key of the property in an entity's property bag.
        kind: Primitive value, single element reference or list of element references.
        type_name: Primitive type name, informational only.
        target_class: Class the reference points to, informational only.
    """

    model_config = VALIDATION_CONFIG

    name: str
    kind: PropertyKind = PropertyKind.primitive
    type_name: str | None = None
    target_class: str | None = None

    @property
    def is_reference(self) -> bool:
        return self.kind in (PropertyKind.navigation, PropertyKind.navigation_set)


class ClassDefinition(BaseModel):
    """A class defined in a schema.

    Attributes:
        name: Class name without the schema prefix.
        base_class: Full name (``Schema:Class``) of the base class, if any.
        is_abstract: Abstract classes cannot be instantiated.
        properties: Properties declared by this class (not inherited ones).
    """

    model_config = VALIDATION_CONFIG

    name: str
    base_class: str | None = None
    is_abstract: bool = False
    properties: list[PropertyDefinition] = Field(default_factory=list)


class SchemaProps(BaseModel):
    """A schema: a named, versioned set of class definitions.

    Attributes:
        name: Schema name, also the prefix of its full class names.
        version: Dotted version, e.g. ``01.00.02``. Compared numerically.
        alias: Short alias.
        references: Names of schemas this one builds on.
        classes: Classes defined by the schema.
        is_system: System schemas ship with every repository and are never exported.
    """

    model_config = VALIDATION_CONFIG

    name: str
    version: str = "01.00.00"
    alias: str | None = None
    references: list[str] = Field(default_factory=list)
    classes: list[ClassDefinition] = Field(default_factory=list)
    is_system: bool = False

    @property
    def version_key(self) -> tuple[int, ...]:
        return parse_version(self.version)

    def full_class_names(self) -> list[str]:
        return [f"{self.name}:{c.name}" for c in self.classes]


def parse_version(version: str) -> tuple[int, ...]:
    """Parse a dotted schema version into a comparable tuple.

    Args:
        version: Version such as ``01.00.02``.

    Returns:
        Tuple of ints, e.g. ``(1, 0, 2)``.
    """
    return tuple(int(part) for part in version.split("."))


def split_class_name(full_name: str) -> tuple[str, str]:
    """Split ``Schema:Class`` into its parts.

    Raises:
        ValueError: If the name has no schema prefix.
    """
    schema_name, sep, class_name = full_name.partition(":")
    if not sep or not schema_name or not class_name:
        raise ValueError(f"Class name {full_name!r} is not of the form 'Schema:Class'")
    return schema_name, class_name


def _nav(name: str, target_class: str) -> PropertyDefinition:
    return PropertyDefinition(name=name, kind=PropertyKind.navigation, target_class=target_class)


CORE_SCHEMA = SchemaProps(
    name=CORE_SCHEMA_NAME,
    version="01.00.00",
    alias="core",
    is_system=True,
    classes=[
        # Elements
        ClassDefinition(name="Element", is_abstract=True),
        ClassDefinition(name="Subject", base_class="Core:Element"),
        ClassDefinition(name="InformationPartitionElement", base_class="Core:Element", is_abstract=True),
        ClassDefinition(name="DefinitionPartition", base_class="Core:InformationPartitionElement"),
        ClassDefinition(name="PhysicalPartition", base_class="Core:InformationPartitionElement"),
        ClassDefinition(name="InformationRecordPartition", base_class="Core:InformationPartitionElement"),
        ClassDefinition(name="DefinitionElement", base_class="Core:Element", is_abstract=True),
        ClassDefinition(name="Category", base_class="Core:DefinitionElement", is_abstract=True),
        ClassDefinition(name="SpatialCategory", base_class="Core:Category"),
        ClassDefinition(name="PhysicalType", base_class="Core:DefinitionElement"),
        ClassDefinition(
            name="DisplayStyle",
            base_class="Core:DefinitionElement",
            properties=[
                PropertyDefinition(
                    name="excluded_elements",
                    kind=PropertyKind.navigation_set,
                    target_class="Core:Element",
                ),
            ],
        ),
        ClassDefinition(
            name="GeometricElement",
            base_class="Core:Element",
            is_abstract=True,
            properties=[_nav("category", "Core:Category")],
        ),
        ClassDefinition(
            name="PhysicalElement",
            base_class="Core:GeometricElement",
            is_abstract=True,
            properties=[_nav("type_definition", "Core:PhysicalType")],
        ),
        ClassDefinition(name="PhysicalObject", base_class="Core:PhysicalElement"),
        ClassDefinition(name="InformationRecordElement", base_class="Core:Element"),
        ClassDefinition(
            name="RepositoryLink",
            base_class="Core:Element",
            properties=[
                PropertyDefinition(name="url", type_name="string"),
                PropertyDefinition(name="format", type_name="string"),
            ],
        ),
        ClassDefinition(
            name="ExternalSource",
            base_class="Core:Element",
            properties=[_nav("repository", "Core:RepositoryLink")],
        ),
        # Models
        ClassDefinition(name="Model", is_abstract=True),
        ClassDefinition(name="RepositoryModel", base_class="Core:Model"),
        ClassDefinition(name="DefinitionModel", base_class="Core:Model"),
        ClassDefinition(name="DictionaryModel", base_class="Core:DefinitionModel"),
        ClassDefinition(name="PhysicalModel", base_class="Core:Model"),
        ClassDefinition(name="InformationRecordModel", base_class="Core:Model"),
        # Aspects
        ClassDefinition(name="ElementAspect", is_abstract=True),
        ClassDefinition(name="ElementUniqueAspect", base_class="Core:ElementAspect", is_abstract=True),
        ClassDefinition(name="ElementMultiAspect", base_class="Core:ElementAspect", is_abstract=True),
        ClassDefinition(
            name="ExternalSourceAspect",
            base_class="Core:ElementMultiAspect",
            properties=[
                _nav("scope", "Core:Element"),
                PropertyDefinition(name="kind", type_name="string"),
                PropertyDefinition(name="identifier", type_name="string"),
                PropertyDefinition(name="version", type_name="int"),
            ],
        ),
        # Relationships
        ClassDefinition(name="ElementRefersToElements"),
    ],
)
