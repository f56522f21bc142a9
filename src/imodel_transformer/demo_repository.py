"""Builders for small demo repositories, used by the examples and the test suite."""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from tempfile import TemporaryDirectory
from typing import Any

from imodel_transformer.core.constants import (
    DICTIONARY_ID,
    PARTITION_CODE_SPEC_NAME,
    PHYSICAL_PARTITION_CLASS,
    RELATIONSHIP_CLASS,
    REPOSITORY_MODEL_ID,
    ROOT_SUBJECT_ID,
    SUBJECT_CLASS,
    SUBJECT_CODE_SPEC_NAME,
)
from imodel_transformer.core.enums import PropertyKind
from imodel_transformer.model.entities import AspectProps, Code, CodeSpecProps, ElementProps, ModelProps, RelationshipProps
from imodel_transformer.model.schema import ClassDefinition, PropertyDefinition, SchemaProps
from imodel_transformer.repository.sqlite import SqliteRepository

logger = logging.getLogger(__name__)

TEST_ELEMENT_COUNT = 10

CATEGORY_CODE_SPEC_NAME = "Core:SpatialCategory"
EQUIPMENT_CODE_SPEC_NAME = "Plant:Equipment"

PLANT_SCHEMA = SchemaProps(
    name="Plant",
    version="01.00.00",
    alias="plant",
    references=["Core"],
    classes=[
        ClassDefinition(
            name="Pump",
            base_class="Core:PhysicalElement",
            properties=[
                PropertyDefinition(name="flow_rate", type_name="double"),
                PropertyDefinition(name="feeds", kind=PropertyKind.navigation, target_class="Core:PhysicalElement"),
            ],
        ),
        ClassDefinition(
            name="Pipe",
            base_class="Core:PhysicalElement",
            properties=[
                PropertyDefinition(name="connects", kind=PropertyKind.navigation_set, target_class="Plant:Pump"),
            ],
        ),
        ClassDefinition(
            name="Nameplate",
            base_class="Core:ElementUniqueAspect",
            properties=[PropertyDefinition(name="serial_number", type_name="string")],
        ),
        ClassDefinition(
            name="Inspection",
            base_class="Core:ElementMultiAspect",
            properties=[
                PropertyDefinition(name="result", type_name="string"),
                PropertyDefinition(name="inspected_with", kind=PropertyKind.navigation, target_class="Core:Element"),
            ],
        ),
        ClassDefinition(name="PipeFeedsPump", base_class=RELATIONSHIP_CLASS),
    ],
)

# References Plant but sorts before it, so it is exported first
CONTROLS_SCHEMA = SchemaProps(
    name="Controls",
    version="01.00.00",
    references=["Core", "Plant"],
    classes=[
        ClassDefinition(
            name="Valve",
            base_class="Plant:Pipe",
            properties=[PropertyDefinition(name="controlled_by", kind=PropertyKind.navigation, target_class="Core:Element")],
        ),
    ],
)


@dataclass
class DemoContents:
    """Ids of the entities ``populate_demo_repository`` created."""

    subject_id: int = 0
    model_id: int = 0
    category_id: int = 0
    object_ids: list[int] = field(default_factory=list)
    pump_ids: list[int] = field(default_factory=list)
    pipe_id: int = 0
    display_style_id: int = 0
    relationship_ids: list[int] = field(default_factory=list)


def install_schemas(repo: SqliteRepository, schemas: list[SchemaProps]) -> list[str]:
    """Import schemas into a repository by way of schema files."""
    with TemporaryDirectory() as tmp:
        paths = []
        for schema in schemas:
            path = Path(tmp) / f"{schema.name}.json"
            path.write_text(schema.model_dump_json())
            paths.append(path)
        return repo.import_schemas(paths)


def get_or_insert_code_spec(repo: SqliteRepository, name: str) -> int:
    code_spec = repo.try_get_code_spec_by_name(name)
    if code_spec is not None:
        return code_spec.id
    return repo.insert_code_spec(CodeSpecProps(name=name))


def insert_subject(repo: SqliteRepository, name: str, parent_id: int = ROOT_SUBJECT_ID) -> int:
    spec = get_or_insert_code_spec(repo, SUBJECT_CODE_SPEC_NAME)
    return repo.insert_element(
        ElementProps(
            class_name=SUBJECT_CLASS,
            model=REPOSITORY_MODEL_ID,
            parent=parent_id,
            code=Code(spec=spec, scope=parent_id, value=name),
        )
    )


def insert_physical_model(repo: SqliteRepository, name: str, parent_subject_id: int = ROOT_SUBJECT_ID) -> int:
    """Insert a physical partition under a subject and the physical model it models."""
    spec = get_or_insert_code_spec(repo, PARTITION_CODE_SPEC_NAME)
    partition_id = repo.insert_element(
        ElementProps(
            class_name=PHYSICAL_PARTITION_CLASS,
            model=REPOSITORY_MODEL_ID,
            parent=parent_subject_id,
            code=Code(spec=spec, scope=parent_subject_id, value=name),
        )
    )
    return repo.insert_model(
        ModelProps(id=partition_id, class_name="Core:PhysicalModel", parent_model=REPOSITORY_MODEL_ID)
    )


def insert_category(repo: SqliteRepository, name: str) -> int:
    spec = get_or_insert_code_spec(repo, CATEGORY_CODE_SPEC_NAME)
    return repo.insert_element(
        ElementProps(
            class_name="Core:SpatialCategory",
            model=DICTIONARY_ID,
            code=Code(spec=spec, scope=DICTIONARY_ID, value=name),
        )
    )


def insert_physical_object(
    repo: SqliteRepository,
    model_id: int,
    category_id: int,
    label: str,
    class_name: str = "Core:PhysicalObject",
    properties: dict[str, Any] | None = None,
    parent_id: int | None = None,
    code_value: str | None = None,
) -> int:
    if code_value is not None:
        code = Code(spec=get_or_insert_code_spec(repo, EQUIPMENT_CODE_SPEC_NAME), scope=model_id, value=code_value)
    else:
        code = Code.empty()
    return repo.insert_element(
        ElementProps(
            class_name=class_name,
            model=model_id,
            parent=parent_id,
            code=code,
            federation_guid=str(uuid.uuid4()),
            user_label=label,
            properties={"category": category_id} | (properties or {}),
        )
    )


def insert_display_style(repo: SqliteRepository, name: str, excluded_ids: list[int]) -> int:
    return repo.insert_element(
        ElementProps(
            class_name="Core:DisplayStyle",
            model=DICTIONARY_ID,
            code=Code.empty(scope=DICTIONARY_ID),
            user_label=name,
            properties={"excluded_elements": list(excluded_ids)},
        )
    )


def insert_relationship(
    repo: SqliteRepository, source_id: int, target_id: int, class_name: str = RELATIONSHIP_CLASS
) -> int:
    return repo.insert_relationship(RelationshipProps(class_name=class_name, source_id=source_id, target_id=target_id))


def populate_demo_repository(repo: SqliteRepository) -> DemoContents:
    """Fill a repository holding the Plant schema with a small plant."""
    contents = DemoContents()
    contents.subject_id = insert_subject(repo, "Site")
    contents.model_id = insert_physical_model(repo, "Plant A", contents.subject_id)
    contents.category_id = insert_category(repo, "Equipment")

    for i in range(TEST_ELEMENT_COUNT):
        contents.object_ids.append(
            insert_physical_object(repo, contents.model_id, contents.category_id, f"Object {i + 1}", code_value=f"OBJ-{i + 1}")
        )

    upstream = None
    for i in range(2):
        pump_id = insert_physical_object(
            repo,
            contents.model_id,
            contents.category_id,
            f"Pump {i + 1}",
            class_name="Plant:Pump",
            properties={"flow_rate": 10.0 * (i + 1), "feeds": upstream},
        )
        repo.insert_aspect(
            AspectProps(
                class_name="Plant:Nameplate",
                element_id=pump_id,
                is_unique=True,
                properties={"serial_number": f"SN-{i + 1:04d}"},
            )
        )
        for result in ("pass", "fail"):
            repo.insert_aspect(
                AspectProps(
                    class_name="Plant:Inspection",
                    element_id=pump_id,
                    properties={"result": result, "inspected_with": contents.object_ids[0]},
                )
            )
        contents.pump_ids.append(pump_id)
        upstream = pump_id

    contents.pipe_id = insert_physical_object(
        repo,
        contents.model_id,
        contents.category_id,
        "Pipe 1",
        class_name="Plant:Pipe",
        properties={"connects": list(contents.pump_ids)},
        parent_id=contents.pump_ids[0],
    )
    contents.display_style_id = insert_display_style(repo, "Default", contents.object_ids[:2])

    for source_id, target_id in zip(contents.object_ids, contents.object_ids[1:4]):
        contents.relationship_ids.append(insert_relationship(repo, source_id, target_id))
    contents.relationship_ids.append(
        insert_relationship(repo, contents.pipe_id, contents.pump_ids[0], class_name="Plant:PipeFeedsPump")
    )
    logger.info(f"Populated demo repository {repo.repository_id}")
    return contents


def update_demo_repository(repo: SqliteRepository, contents: DemoContents) -> dict[str, list[int]]:
    """Update five objects, delete two, and replace one relationship.

    Returns:
        Ids affected, keyed by ``updated``, ``deleted``, ``relationships_deleted`` and
        ``relationships_inserted``.
    """
    updated = contents.object_ids[2:7]
    for element_id in updated:
        element = repo.get_element(element_id)
        element.user_label = f"{element.user_label} (revised)"
        repo.update_element(element)

    # Neither is referenced by the display style, a relationship or an aspect
    deleted = contents.object_ids[-2:]
    for element_id in deleted:
        repo.delete_element(element_id)

    removed = contents.relationship_ids[0]
    repo.delete_relationship(removed)
    inserted = insert_relationship(repo, contents.object_ids[0], contents.object_ids[5])
    return {
        "updated": updated,
        "deleted": deleted,
        "relationships_deleted": [removed],
        "relationships_inserted": [inserted],
    }


def create_demo_repository(
    name: str = "Demo",
    database_path: str | Path = ":memory:",
    populate: bool = True,
    schemas: list[SchemaProps] | None = None,
) -> tuple[SqliteRepository, DemoContents]:
    """Create a repository with the Plant schema and, optionally, a small plant.

    Returns:
        The saved repository and the ids of what was created.
    """
    repo = SqliteRepository.create_empty(name, database_path)
    install_schemas(repo, schemas if schemas is not None else [PLANT_SCHEMA])
    contents = populate_demo_repository(repo) if populate else DemoContents()
    repo.save_changes(f"Create demo repository {name}")
    return repo, contents
