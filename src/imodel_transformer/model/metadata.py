"""Schema-driven class metadata.

``MetadataService`` answers questions about classes by consulting the schema
definitions stored in a repository: the base class chain of a class, whether
one class derives from another, and which properties of a class hold
references to other elements. Inherited properties are included, and classes
introduced by schemas imported after the service was created are picked up
on the next cache miss.

A service instance belongs to one session (a CloneContext or an Exporter).
Caches are never shared between sessions.

Example:
    metadata = MetadataService(repository)
    for prop in metadata.reference_properties("Plant:Pump"):
        print(prop.name, prop.kind)
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Iterable

from imodel_transformer.model.schema import ClassDefinition, PropertyDefinition, SchemaProps, split_class_name

if TYPE_CHECKING:
    from imodel_transformer.repository.base import Repository

logger = logging.getLogger(__name__)


class MetadataService:
    """Session-owned cache of class definitions read from a repository.

    Args:
        repository: Repository whose schemas describe the classes. Anything with an
            ``iter_schemas()`` method works.
    """

    def __init__(self, repository: Repository):
        self.repository = repository
        self._classes: dict[str, ClassDefinition] = {}
        self._reference_cache: dict[str, list[PropertyDefinition]] = {}
        self._base_cache: dict[str, list[str]] = {}
        self._loaded = False

    def _load(self, schemas: Iterable[SchemaProps]) -> None:
        self._classes.clear()
        self._reference_cache.clear()
        self._base_cache.clear()
        for schema in schemas:
            for class_def in schema.classes:
                self._classes[f"{schema.name}:{class_def.name}"] = class_def
        self._loaded = True
        logger.debug(f"Loaded {len(self._classes)} class definitions")

    def refresh(self) -> None:
        """Re-read all schemas from the repository."""
        self._load(self.repository.iter_schemas())

    def has_class(self, full_name: str) -> bool:
        try:
            self.get_class(full_name)
        except KeyError:
            return False
        return True

    def get_class(self, full_name: str) -> ClassDefinition:
        """Get the definition of a class.

        Args:
            full_name: Class name of the form ``Schema:Class``.

        Returns:
            The class definition.

        Raises:
            KeyError: If no loaded schema defines the class, even after a refresh.
        """
        if not self._loaded:
            self.refresh()
        class_def = self._classes.get(full_name)
        if class_def is None:
            # Schemas may have been imported since the cache was filled
            self.refresh()
            class_def = self._classes.get(full_name)
        if class_def is None:
            split_class_name(full_name)
            raise KeyError(f"Class {full_name} is not defined by any schema in the repository")
        return class_def

    def base_classes(self, full_name: str) -> list[str]:
        """Return the class followed by its base classes, most derived first."""
        if full_name in self._base_cache:
            return self._base_cache[full_name]
        chain = []
        current: str | None = full_name
        while current is not None:
            if current in chain:
                raise ValueError(f"Class hierarchy of {full_name} is cyclic at {current}")
            chain.append(current)
            current = self.get_class(current).base_class
        self._base_cache[full_name] = chain
        return chain

    def is_subclass_of(self, full_name: str, base_name: str) -> bool:
        return base_name in self.base_classes(full_name)

    def all_properties(self, full_name: str) -> list[PropertyDefinition]:
        """Return declared and inherited properties, base class properties first."""
        properties: dict[str, PropertyDefinition] = {}
        for class_name in reversed(self.base_classes(full_name)):
            for prop in self.get_class(class_name).properties:
                properties[prop.name] = prop
        return list(properties.values())

    def reference_properties(self, full_name: str) -> list[PropertyDefinition]:
        """Return the navigation and navigation-set properties of a class.

        Args:
            full_name: Class name of the form ``Schema:Class``.

        Returns:
            Reference properties, inherited ones included.
        """
        if full_name not in self._reference_cache:
            self._reference_cache[full_name] = [p for p in self.all_properties(full_name) if p.is_reference]
        return self._reference_cache[full_name]

    def clear(self) -> None:
        self._classes.clear()
        self._reference_cache.clear()
        self._base_cache.clear()
        self._loaded = False
