"""Schema reference ordering for safe schema import.

This module provides the SchemaOrderer class which computes a topologically
sorted import order for schemas based on the schemas they reference.

Exporters may deliver schemas in any order. When importing them, a schema
must be imported after every schema it references - referenced schemas are
either already present in the repository or earlier in the import order.

Example:
    orderer = SchemaOrderer(schemas, available={"Core"})

    ordered = orderer.get_import_order()
    # Returns: [Plant, PlantExtensions]
    # (Plant first because PlantExtensions references it)
"""

from __future__ import annotations

import logging
from graphlib import CycleError, TopologicalSorter
from typing import Iterable

from imodel_transformer.model.schema import SchemaProps

logger = logging.getLogger(__name__)


class SchemaOrderer:
    """Computes import order for schemas based on their references.

    Uses topological sort to ensure referenced schemas are imported
    before schemas that reference them. Handles cycles by either
    raising an error or breaking them.

    Example:
        orderer = SchemaOrderer(schemas, available={"Core"})

        # Schemas this one needs first
        deps = orderer.get_dependencies("PlantExtensions")
        # Returns: {'Plant'}

        # Check that every reference can be satisfied
        missing = orderer.find_missing_references()
    """

    def __init__(
        self,
        schemas: Iterable[SchemaProps],
        available: Iterable[str] = (),
    ):
        """Initialize the orderer.

        Args:
            schemas: Schemas to order.
            available: Names of schemas already present in the repository.
        """
        self._schemas: dict[str, SchemaProps] = {s.name: s for s in schemas}
        self.available = set(available)

    def get_dependencies(self, schema_name: str) -> set[str]:
        """Get schemas in this batch that must be imported before the given schema.

        Args:
            schema_name: Name of a schema in the batch.

        Returns:
            Names of referenced schemas within the batch.

        Raises:
            ValueError: If the schema is not in the batch.
        """
        if schema_name not in self._schemas:
            raise ValueError(f"Schema {schema_name} not found in {sorted(self._schemas)}")
        return {r for r in self._schemas[schema_name].references if r in self._schemas and r != schema_name}

    def find_missing_references(self) -> list[tuple[str, str]]:
        """Find references that neither the batch nor the repository can satisfy.

        Returns:
            List of (schema, missing_reference) tuples. Empty list if valid.
        """
        missing = []
        for name, schema in self._schemas.items():
            for reference in schema.references:
                if reference not in self._schemas and reference not in self.available:
                    missing.append((name, reference))
        return missing

    def _build_dependency_graph(self) -> dict[str, set[str]]:
        return {name: self.get_dependencies(name) for name in self._schemas}

    def get_import_order(self, handle_cycles: bool = True) -> list[SchemaProps]:
        """Compute a reference-safe import order.

        Args:
            handle_cycles: If True, break cycles by removing edges.
                If False, raise CycleError on cycles.

        Returns:
            Ordered list of schemas (import from first to last).

        Raises:
            CycleError: If handle_cycles=False and cycles exist.
        """
        graph = self._build_dependency_graph()

        try:
            ordered_names = list(TopologicalSorter(graph).static_order())
        except CycleError as e:
            if handle_cycles:
                ordered_names = self._break_cycles_and_sort(graph, e)
            else:
                raise

        return [self._schemas[name] for name in ordered_names]

    def _break_cycles_and_sort(
        self,
        graph: dict[str, set[str]],
        error: CycleError,
    ) -> list[str]:
        """Handle cycles by breaking them and re-sorting.

        Args:
            graph: Dependency graph.
            error: CycleError with cycle info.

        Returns:
            Ordered list of schema names.
        """
        cycle = list(error.args[1]) if len(error.args) > 1 else []

        if cycle:
            logger.warning(f"Breaking cycle in schema references: {' -> '.join(cycle)}")

            # Each node in the reported cycle is a dependency of the next one
            for dependency, dependent in zip(cycle, cycle[1:]):
                if dependency in graph.get(dependent, set()):
                    graph[dependent].remove(dependency)
                    logger.debug(f"Removed edge {dependent} -> {dependency}")
                    break

        try:
            return list(TopologicalSorter(graph).static_order())
        except CycleError as e:
            return self._break_cycles_and_sort(graph, e)
