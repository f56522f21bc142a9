"""
Pytest configuration and shared fixtures.
"""

from __future__ import annotations

import pytest

from imodel_transformer.demo_repository import (
    DemoContents,
    create_demo_repository,
    insert_category,
    insert_physical_model,
    insert_physical_object,
)
from imodel_transformer.repository.sqlite import SqliteRepository
from imodel_transformer.transformer.exporter import ExportHandler


class RecordingHandler(ExportHandler):
    """Export handler that records every callback it receives."""

    def __init__(self):
        self.calls: list[tuple[str, object]] = []

    def names(self) -> list[str]:
        return [name for name, _ in self.calls]

    def ids(self, name: str) -> list[int]:
        return [payload for n, payload in self.calls if n == name]

    def on_export_schema(self, schema, schema_path):
        self.calls.append(("schema", schema.name))

    def on_export_code_spec(self, code_spec, is_update):
        self.calls.append(("code_spec", code_spec.name))

    def on_export_model(self, model, is_update):
        self.calls.append(("model", model.id))

    def on_export_element(self, element, is_update):
        self.calls.append(("element", element.id))

    def on_export_element_unique_aspect(self, aspect, is_update):
        self.calls.append(("unique_aspect", aspect.id))

    def on_export_element_multi_aspects(self, element_id, aspects, is_update):
        self.calls.append(("multi_aspects", element_id))

    def on_export_relationship(self, relationship, is_update):
        self.calls.append(("relationship", relationship.id))

    def on_delete_element(self, element_id):
        self.calls.append(("delete_element", element_id))

    def on_delete_model(self, model_id):
        self.calls.append(("delete_model", model_id))

    def on_delete_relationship(self, relationship_id):
        self.calls.append(("delete_relationship", relationship_id))


class PlantRepositories:
    """A populated source repository and an empty target, both in memory."""

    def __init__(self, source_name: str = "Source", target_name: str = "Target"):
        self.source, self.contents = create_demo_repository(source_name)
        self.target = SqliteRepository.create_empty(target_name)

    def close(self):
        self.source.close()
        self.target.close()


def add_pump_cycle(repo: SqliteRepository) -> tuple[int, int]:
    """Add a model holding two pumps that feed each other. Returns the pump ids."""
    model_id = insert_physical_model(repo, "Loop")
    category_id = insert_category(repo, "Loop Equipment")
    first = insert_physical_object(repo, model_id, category_id, "Loop 1", class_name="Plant:Pump")
    second = insert_physical_object(
        repo, model_id, category_id, "Loop 2", class_name="Plant:Pump", properties={"feeds": first}
    )
    element = repo.get_element(first)
    element.properties["feeds"] = second
    repo.update_element(element)
    repo.save_changes("Add pump loop")
    return first, second


@pytest.fixture
def plant() -> PlantRepositories:
    """Create a populated source and an empty target. Closes both after each test."""
    resource = PlantRepositories()
    yield resource
    resource.close()


@pytest.fixture
def demo_repo() -> tuple[SqliteRepository, DemoContents]:
    repo, contents = create_demo_repository()
    yield repo, contents
    repo.close()


@pytest.fixture
def empty_repo() -> SqliteRepository:
    repo = SqliteRepository.create_empty("Empty")
    yield repo
    repo.close()


@pytest.fixture
def recording_handler() -> RecordingHandler:
    return RecordingHandler()


@pytest.fixture
def pump_cycle():
    """Return a function adding two mutually referencing pumps to a repository."""
    return add_pump_cycle
