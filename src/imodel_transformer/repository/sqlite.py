"""SQLite-backed repository.

``SqliteRepository`` stores a repository in a single SQLite database using
SQLAlchemy Core. Every repository carries the Core schema, the well-known
code specs, the repository model, the root subject and the dictionary model.

All writes happen inside one open transaction on a connection the repository
holds for its whole lifetime. ``save_changes`` commits it and
``abandon_changes`` rolls it back, so a failed transformation leaves nothing
behind unless the caller saves.

Example:
    >>> repo = SqliteRepository.create_empty("Plant A")
    >>> repo.get_element(ROOT_SUBJECT_ID).code.value
    'Plant A'
    >>> branch = SqliteRepository.create_copy(repo)
    >>> branch.repository_id != repo.repository_id
    True
"""

from __future__ import annotations

import logging
import time
import uuid
from datetime import datetime
from pathlib import Path
from typing import Any, Iterator, Sequence

from pydantic import ValidationError
from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    Float,
    ForeignKey,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    UniqueConstraint,
    create_engine,
    delete,
    event,
    func,
    or_,
    select,
    update,
)
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError

from imodel_transformer.core.constants import (
    DEFINITION_PARTITION_CLASS,
    DICTIONARY_ID,
    DICTIONARY_MODEL_CLASS,
    DICTIONARY_PARTITION_NAME,
    EXTERNAL_SOURCE_ASPECT_CLASS,
    INVALID_ID,
    NULL_CODE_SPEC_NAME,
    PARTITION_CODE_SPEC_NAME,
    REPOSITORY_MODEL_CLASS,
    REPOSITORY_MODEL_ID,
    ROOT_SUBJECT_ID,
    SUBJECT_CLASS,
    SUBJECT_CODE_SPEC_NAME,
    id_to_hex,
)
from imodel_transformer.core.enums import EntityKind, ProvenanceKind
from imodel_transformer.core.exceptions import EntityNotFound, RepositoryError
from imodel_transformer.model.entities import (
    AspectProps,
    Code,
    CodeSpecProps,
    ElementProps,
    ModelProps,
    ProvenanceRecord,
    RelationshipProps,
)
from imodel_transformer.model.schema import CORE_SCHEMA, SchemaProps
from imodel_transformer.model.schema_orderer import SchemaOrderer

logger = logging.getLogger(__name__)

metadata = MetaData()

repository_info = Table(
    "repository_info",
    metadata,
    Column("key", String, primary_key=True),
    Column("value", String, nullable=False),
)

schemas_table = Table(
    "schemas",
    metadata,
    Column("name", String, primary_key=True),
    Column("version", String, nullable=False),
    Column("definition", JSON, nullable=False),
)

code_specs = Table(
    "code_specs",
    metadata,
    Column("id", Integer, primary_key=True),
    Column("name", String, nullable=False, unique=True),
    Column("properties", JSON, nullable=False),
    Column("last_mod", Integer, nullable=False),
    Column("created", Integer, nullable=False),
    sqlite_autoincrement=True,
)

models = Table(
    "models",
    metadata,
    Column("id", Integer, primary_key=True),
    Column("class_name", String, nullable=False),
    Column("parent_model", Integer, nullable=False),
    Column("is_private", Boolean, nullable=False, default=False),
    Column("properties", JSON, nullable=False),
    Column("last_mod", Integer, nullable=False),
    Column("created", Integer, nullable=False),
)

elements = Table(
    "elements",
    metadata,
    Column("id", Integer, primary_key=True),
    Column("class_name", String, nullable=False),
    Column("model_id", Integer, ForeignKey("models.id"), nullable=False),
    Column("parent_id", Integer, ForeignKey("elements.id"), nullable=True),
    Column("code_spec", Integer, ForeignKey("code_specs.id"), nullable=False),
    Column("code_scope", Integer, nullable=False),
    Column("code_value", String, nullable=True),
    Column("federation_guid", String, nullable=True, unique=True),
    Column("user_label", String, nullable=True),
    Column("properties", JSON, nullable=False),
    Column("last_mod", Integer, nullable=False),
    Column("created", Integer, nullable=False),
    sqlite_autoincrement=True,
)

# Empty codes are never unique
Index(
    "ix_elements_code",
    elements.c.code_spec,
    elements.c.code_scope,
    elements.c.code_value,
    unique=True,
    sqlite_where=elements.c.code_value.isnot(None),
)

aspects = Table(
    "aspects",
    metadata,
    Column("id", Integer, primary_key=True),
    Column("class_name", String, nullable=False),
    Column("element_id", Integer, ForeignKey("elements.id"), nullable=False, index=True),
    Column("is_unique", Boolean, nullable=False, default=False),
    Column("properties", JSON, nullable=False),
    Column("last_mod", Integer, nullable=False),
    Column("created", Integer, nullable=False),
    sqlite_autoincrement=True,
)

relationships = Table(
    "relationships",
    metadata,
    Column("id", Integer, primary_key=True),
    Column("class_name", String, nullable=False),
    Column("source_id", Integer, ForeignKey("elements.id"), nullable=False),
    Column("target_id", Integer, ForeignKey("elements.id"), nullable=False),
    Column("properties", JSON, nullable=False),
    Column("last_mod", Integer, nullable=False),
    Column("created", Integer, nullable=False),
    UniqueConstraint("class_name", "source_id", "target_id"),
    sqlite_autoincrement=True,
)

tombstones = Table(
    "tombstones",
    metadata,
    Column("id", Integer, primary_key=True),
    Column("kind", String, nullable=False),
    Column("entity_id", Integer, nullable=False),
    Column("deleted_at", Integer, nullable=False),
    sqlite_autoincrement=True,
)

changesets = Table(
    "changesets",
    metadata,
    Column("id", Integer, primary_key=True),
    Column("change_counter", Integer, nullable=False),
    Column("saved_at", Float, nullable=False),
    Column("description", String, nullable=True),
    sqlite_autoincrement=True,
)


def _enable_foreign_keys(dbapi_conn, _conn_record):
    cur = dbapi_conn.cursor()
    cur.execute("PRAGMA foreign_keys=ON")
    cur.close()


class SqliteRepository:
    """Repository stored in a SQLite database.

    Use ``create_empty``, ``open`` or ``create_copy`` rather than the constructor.

    Args:
        database_path: Database file, or ``":memory:"``.
    """

    def __init__(self, database_path: str | Path = ":memory:"):
        self.database_path = database_path
        if database_path == ":memory:":
            self.engine = create_engine("sqlite:///:memory:", future=True)
        else:
            path = Path(database_path)
            path.parent.mkdir(parents=True, exist_ok=True)
            self.engine = create_engine(f"sqlite:///{path.resolve()}", future=True)
        event.listen(self.engine, "connect", _enable_foreign_keys)
        self._conn = self.engine.connect()
        self._class_names: set[str] | None = None

    # Construction

    @classmethod
    def create_empty(cls, root_subject_name: str, database_path: str | Path = ":memory:") -> SqliteRepository:
        """Create a repository holding only the Core content.

        Args:
            root_subject_name: Code value of the root subject.
            database_path: Database file, or ``":memory:"``.

        Returns:
            The new repository, with its initial content saved.
        """
        repo = cls(database_path)
        metadata.create_all(repo._conn)
        repo._set_info("repository_id", str(uuid.uuid4()))
        repo._set_info("change_counter", "0")
        repo._seed(root_subject_name)
        repo.save_changes("Create empty repository")
        logger.info(f"Created repository {repo.repository_id} at {database_path}")
        return repo

    @classmethod
    def open(cls, database_path: str | Path) -> SqliteRepository:
        if database_path != ":memory:" and not Path(database_path).exists():
            raise RepositoryError(f"Repository {database_path} does not exist")
        return cls(database_path)

    @classmethod
    def create_copy(cls, source: SqliteRepository, database_path: str | Path = ":memory:") -> SqliteRepository:
        """Copy the saved state of a repository into a new one with a new repository id.

        Unsaved changes of ``source`` are not copied.
        """
        repo = cls(database_path)
        source._conn.connection.driver_connection.backup(repo._conn.connection.driver_connection)
        repo._set_info("repository_id", str(uuid.uuid4()))
        repo.save_changes(f"Copy of {source.repository_id}")
        logger.info(f"Copied repository {source.repository_id} to {repo.repository_id}")
        return repo

    def _seed(self, root_subject_name: str) -> None:
        stamp = self._touch()
        self._conn.execute(
            schemas_table.insert().values(
                name=CORE_SCHEMA.name,
                version=CORE_SCHEMA.version,
                definition=CORE_SCHEMA.model_dump(mode="json"),
            )
        )
        for spec_id, name in enumerate([NULL_CODE_SPEC_NAME, SUBJECT_CODE_SPEC_NAME, PARTITION_CODE_SPEC_NAME], 1):
            self._conn.execute(
                code_specs.insert().values(id=spec_id, name=name, properties={}, last_mod=stamp, created=stamp)
            )
        subject_spec, partition_spec = 2, 3
        self.insert_model(
            ModelProps(id=REPOSITORY_MODEL_ID, class_name=REPOSITORY_MODEL_CLASS, parent_model=REPOSITORY_MODEL_ID)
        )
        self.insert_element(
            ElementProps(
                id=ROOT_SUBJECT_ID,
                class_name=SUBJECT_CLASS,
                model=REPOSITORY_MODEL_ID,
                code=Code(spec=subject_spec, scope=ROOT_SUBJECT_ID, value=root_subject_name),
            ),
            force_id=True,
        )
        self.insert_element(
            ElementProps(
                id=DICTIONARY_ID,
                class_name=DEFINITION_PARTITION_CLASS,
                model=REPOSITORY_MODEL_ID,
                parent=ROOT_SUBJECT_ID,
                code=Code(spec=partition_spec, scope=ROOT_SUBJECT_ID, value=DICTIONARY_PARTITION_NAME),
            ),
            force_id=True,
        )
        self.insert_model(ModelProps(id=DICTIONARY_ID, class_name=DICTIONARY_MODEL_CLASS, parent_model=REPOSITORY_MODEL_ID))

    # Bookkeeping

    def _get_info(self, key: str) -> str:
        value = self._conn.execute(select(repository_info.c.value).where(repository_info.c.key == key)).scalar()
        if value is None:
            raise RepositoryError(f"Repository {self.database_path} is missing {key}")
        return value

    def _set_info(self, key: str, value: str) -> None:
        stmt = sqlite_insert(repository_info).values(key=key, value=value)
        self._conn.execute(stmt.on_conflict_do_update(index_elements=["key"], set_={"value": value}))

    @property
    def repository_id(self) -> str:
        return self._get_info("repository_id")

    @property
    def change_counter(self) -> int:
        return int(self._get_info("change_counter"))

    def _touch(self) -> int:
        counter = self.change_counter + 1
        self._set_info("change_counter", str(counter))
        return counter

    def _execute(self, stmt, action: str):
        try:
            return self._conn.execute(stmt)
        except SQLAlchemyError as e:
            raise RepositoryError(f"Failed to {action}: {getattr(e, 'orig', e)}") from e

    def _check_class(self, class_name: str) -> None:
        if self._class_names is None:
            self._class_names = {n for s in self.iter_schemas() for n in s.full_class_names()}
        if class_name not in self._class_names:
            raise RepositoryError(f"Class {class_name} is not defined by any schema in the repository")

    def _tombstone(self, kind: EntityKind, entity_id: int) -> None:
        self._conn.execute(
            tombstones.insert().values(kind=EntityKind(kind).value, entity_id=entity_id, deleted_at=self._touch())
        )

    # Schemas

    def iter_schemas(self) -> Iterator[SchemaProps]:
        for row in self._conn.execute(select(schemas_table.c.definition).order_by(schemas_table.c.name)):
            yield SchemaProps.model_validate(row.definition)

    def get_schema(self, name: str) -> SchemaProps | None:
        definition = self._conn.execute(
            select(schemas_table.c.definition).where(schemas_table.c.name == name)
        ).scalar()
        return SchemaProps.model_validate(definition) if definition is not None else None

    def import_schemas(self, paths: Sequence[Path]) -> list[str]:
        """Import schema files in reference order.

        Raises:
            RepositoryError: If a file cannot be parsed or a referenced schema is
                neither in the batch nor in the repository.
        """
        incoming = []
        for path in paths:
            try:
                incoming.append(SchemaProps.model_validate_json(Path(path).read_text()))
            except (OSError, ValidationError) as e:
                raise RepositoryError(f"Cannot read schema file {path}: {e}") from e

        existing = {s.name: s for s in self.iter_schemas()}
        orderer = SchemaOrderer(incoming, available=existing)
        missing = orderer.find_missing_references()
        if missing:
            details = ", ".join(f"{schema} references {ref}" for schema, ref in missing)
            raise RepositoryError(f"Unresolved schema references: {details}")

        imported = []
        for schema in orderer.get_import_order():
            current = existing.get(schema.name)
            if current is not None and current.version_key >= schema.version_key:
                logger.debug(f"Schema {schema.name} {schema.version} is not newer than {current.version}, skipping")
                continue
            stmt = sqlite_insert(schemas_table).values(
                name=schema.name, version=schema.version, definition=schema.model_dump(mode="json")
            )
            stmt = stmt.on_conflict_do_update(
                index_elements=["name"],
                set_={"version": stmt.excluded.version, "definition": stmt.excluded.definition},
            )
            self._execute(stmt, f"import schema {schema.name}")
            imported.append(schema.name)
        if imported:
            self._touch()
            self._class_names = None
            logger.info(f"Imported schemas {imported}")
        return imported

    # Code specs

    @staticmethod
    def _code_spec_from_row(row) -> CodeSpecProps:
        return CodeSpecProps(
            id=row.id, name=row.name, properties=row.properties or {}, last_mod=row.last_mod, created=row.created
        )

    def iter_code_specs(self) -> Iterator[CodeSpecProps]:
        for row in self._conn.execute(select(code_specs).order_by(code_specs.c.id)):
            yield self._code_spec_from_row(row)

    def get_code_spec(self, code_spec_id: int) -> CodeSpecProps:
        row = self._conn.execute(select(code_specs).where(code_specs.c.id == code_spec_id)).first()
        if row is None:
            raise EntityNotFound(f"Code spec {id_to_hex(code_spec_id)} not found")
        return self._code_spec_from_row(row)

    def try_get_code_spec_by_name(self, name: str) -> CodeSpecProps | None:
        row = self._conn.execute(select(code_specs).where(code_specs.c.name == name)).first()
        return self._code_spec_from_row(row) if row is not None else None

    def insert_code_spec(self, props: CodeSpecProps) -> int:
        stamp = self._touch()
        result = self._execute(
            code_specs.insert().values(name=props.name, properties=props.properties, last_mod=stamp, created=stamp),
            f"insert code spec {props.name}",
        )
        return result.inserted_primary_key[0]

    def update_code_spec(self, props: CodeSpecProps) -> None:
        self.get_code_spec(props.id)
        self._execute(
            update(code_specs)
            .where(code_specs.c.id == props.id)
            .values(name=props.name, properties=props.properties, last_mod=self._touch()),
            f"update code spec {props.name}",
        )

    # Elements

    @staticmethod
    def _element_from_row(row) -> ElementProps:
        return ElementProps(
            id=row.id,
            class_name=row.class_name,
            model=row.model_id,
            parent=row.parent_id,
            code=Code(spec=row.code_spec, scope=row.code_scope, value=row.code_value),
            federation_guid=row.federation_guid,
            user_label=row.user_label,
            properties=row.properties or {},
            last_mod=row.last_mod,
            created=row.created,
        )

    @staticmethod
    def _element_values(props: ElementProps) -> dict[str, Any]:
        return {
            "class_name": props.class_name,
            "model_id": props.model,
            "parent_id": props.parent,
            "code_spec": props.code.spec,
            "code_scope": props.code.scope,
            "code_value": props.code.value or None,
            "federation_guid": props.federation_guid,
            "user_label": props.user_label,
            "properties": props.properties,
        }

    def try_get_element(self, element_id: int) -> ElementProps | None:
        row = self._conn.execute(select(elements).where(elements.c.id == element_id)).first()
        return self._element_from_row(row) if row is not None else None

    def get_element(self, element_id: int) -> ElementProps:
        element = self.try_get_element(element_id)
        if element is None:
            raise EntityNotFound(f"Element {id_to_hex(element_id)} not found")
        return element

    def has_element(self, element_id: int) -> bool:
        return self._conn.execute(select(elements.c.id).where(elements.c.id == element_id)).first() is not None

    def query_element_id_by_code(self, code: Code) -> int:
        if code.is_empty:
            return INVALID_ID
        element_id = self._conn.execute(
            select(elements.c.id).where(
                elements.c.code_spec == code.spec,
                elements.c.code_scope == code.scope,
                elements.c.code_value == code.value,
            )
        ).scalar()
        return element_id if element_id is not None else INVALID_ID

    def iter_element_ids(self) -> Iterator[int]:
        yield from self._conn.execute(select(elements.c.id).order_by(elements.c.id)).scalars().all()

    def iter_model_element_ids(self, model_id: int) -> Iterator[int]:
        stmt = (
            select(elements.c.id)
            .where(elements.c.model_id == model_id, elements.c.parent_id.is_(None))
            .order_by(elements.c.id)
        )
        yield from self._conn.execute(stmt).scalars().all()

    def iter_child_element_ids(self, parent_id: int) -> Iterator[int]:
        stmt = select(elements.c.id).where(elements.c.parent_id == parent_id).order_by(elements.c.id)
        yield from self._conn.execute(stmt).scalars().all()

    def insert_element(self, props: ElementProps, force_id: bool = False) -> int:
        self._check_class(props.class_name)
        stamp = self._touch()
        values = self._element_values(props) | {"last_mod": stamp, "created": stamp}
        if force_id:
            values["id"] = props.id
        result = self._execute(elements.insert().values(**values), f"insert element {props}")
        return result.inserted_primary_key[0]

    def update_element(self, props: ElementProps) -> None:
        self._check_class(props.class_name)
        self.get_element(props.id)
        values = self._element_values(props) | {"last_mod": self._touch()}
        self._execute(update(elements).where(elements.c.id == props.id).values(**values), f"update element {props}")

    def delete_element(self, element_id: int) -> None:
        if element_id in (ROOT_SUBJECT_ID, DICTIONARY_ID):
            raise RepositoryError(f"Element {id_to_hex(element_id)} cannot be deleted")
        self.get_element(element_id)
        if self.has_model(element_id):
            self.delete_model(element_id)
        for child_id in list(self.iter_child_element_ids(element_id)):
            self.delete_element(child_id)
        related = self._conn.execute(
            select(relationships.c.id).where(
                or_(relationships.c.source_id == element_id, relationships.c.target_id == element_id)
            )
        ).scalars().all()
        for relationship_id in related:
            self.delete_relationship(relationship_id)
        self._conn.execute(delete(aspects).where(aspects.c.element_id == element_id))
        self._execute(delete(elements).where(elements.c.id == element_id), f"delete element {id_to_hex(element_id)}")
        self._tombstone(EntityKind.element, element_id)

    # Models

    @staticmethod
    def _model_from_row(row) -> ModelProps:
        return ModelProps(
            id=row.id,
            class_name=row.class_name,
            parent_model=row.parent_model,
            is_private=row.is_private,
            properties=row.properties or {},
            last_mod=row.last_mod,
            created=row.created,
        )

    def try_get_model(self, model_id: int) -> ModelProps | None:
        row = self._conn.execute(select(models).where(models.c.id == model_id)).first()
        return self._model_from_row(row) if row is not None else None

    def get_model(self, model_id: int) -> ModelProps:
        model = self.try_get_model(model_id)
        if model is None:
            raise EntityNotFound(f"Model {id_to_hex(model_id)} not found")
        return model

    def has_model(self, model_id: int) -> bool:
        return self._conn.execute(select(models.c.id).where(models.c.id == model_id)).first() is not None

    def iter_sub_model_ids(self, parent_model_id: int) -> Iterator[int]:
        stmt = (
            select(models.c.id)
            .where(models.c.parent_model == parent_model_id, models.c.id != parent_model_id)
            .order_by(models.c.id)
        )
        yield from self._conn.execute(stmt).scalars().all()

    def insert_model(self, props: ModelProps) -> int:
        self._check_class(props.class_name)
        if props.id != REPOSITORY_MODEL_ID and not self.has_element(props.id):
            raise RepositoryError(f"Model {props} has no modeled element")
        stamp = self._touch()
        self._execute(
            models.insert().values(
                id=props.id,
                class_name=props.class_name,
                parent_model=props.parent_model,
                is_private=props.is_private,
                properties=props.properties,
                last_mod=stamp,
                created=stamp,
            ),
            f"insert model {props}",
        )
        return props.id

    def update_model(self, props: ModelProps) -> None:
        self._check_class(props.class_name)
        self.get_model(props.id)
        self._execute(
            update(models)
            .where(models.c.id == props.id)
            .values(
                class_name=props.class_name,
                parent_model=props.parent_model,
                is_private=props.is_private,
                properties=props.properties,
                last_mod=self._touch(),
            ),
            f"update model {props}",
        )

    def delete_model(self, model_id: int) -> None:
        """Delete a model and every element it contains."""
        if model_id in (REPOSITORY_MODEL_ID, DICTIONARY_ID):
            raise RepositoryError(f"Model {id_to_hex(model_id)} cannot be deleted")
        self.get_model(model_id)
        while True:
            remaining = self._conn.execute(
                select(elements.c.id).where(elements.c.model_id == model_id).order_by(elements.c.id).limit(1)
            ).scalar()
            if remaining is None:
                break
            # Start from the top of the parent chain within the model
            top = self.get_element(remaining)
            while top.parent is not None:
                parent = self.get_element(top.parent)
                if parent.model != model_id:
                    break
                top = parent
            self.delete_element(top.id)
        self._execute(delete(models).where(models.c.id == model_id), f"delete model {id_to_hex(model_id)}")
        self._tombstone(EntityKind.model, model_id)

    # Aspects

    @staticmethod
    def _aspect_from_row(row) -> AspectProps:
        return AspectProps(
            id=row.id,
            class_name=row.class_name,
            element_id=row.element_id,
            is_unique=row.is_unique,
            properties=row.properties or {},
            last_mod=row.last_mod,
            created=row.created,
        )

    def get_aspects(self, element_id: int, class_name: str | None = None) -> list[AspectProps]:
        stmt = select(aspects).where(aspects.c.element_id == element_id)
        if class_name is not None:
            stmt = stmt.where(aspects.c.class_name == class_name)
        return [self._aspect_from_row(row) for row in self._conn.execute(stmt.order_by(aspects.c.id))]

    def _touch_element(self, element_id: int, stamp: int) -> None:
        self._conn.execute(update(elements).where(elements.c.id == element_id).values(last_mod=stamp))

    def insert_aspect(self, props: AspectProps) -> int:
        self._check_class(props.class_name)
        if props.is_unique and self.get_aspects(props.element_id, props.class_name):
            raise RepositoryError(f"Element {id_to_hex(props.element_id)} already has a {props.class_name}")
        stamp = self._touch()
        result = self._execute(
            aspects.insert().values(
                class_name=props.class_name,
                element_id=props.element_id,
                is_unique=props.is_unique,
                properties=props.properties,
                last_mod=stamp,
                created=stamp,
            ),
            f"insert aspect {props}",
        )
        self._touch_element(props.element_id, stamp)
        return result.inserted_primary_key[0]

    def update_aspect(self, props: AspectProps) -> None:
        row = self._conn.execute(select(aspects).where(aspects.c.id == props.id)).first()
        if row is None:
            raise EntityNotFound(f"Aspect {id_to_hex(props.id)} not found")
        stamp = self._touch()
        self._execute(
            update(aspects).where(aspects.c.id == props.id).values(properties=props.properties, last_mod=stamp),
            f"update aspect {props}",
        )
        self._touch_element(row.element_id, stamp)

    def delete_aspect(self, aspect_id: int) -> None:
        row = self._conn.execute(select(aspects).where(aspects.c.id == aspect_id)).first()
        if row is None:
            raise EntityNotFound(f"Aspect {id_to_hex(aspect_id)} not found")
        self._execute(delete(aspects).where(aspects.c.id == aspect_id), f"delete aspect {id_to_hex(aspect_id)}")
        self._touch_element(row.element_id, self._touch())

    def iter_provenance(
        self,
        scope_id: int | None = None,
        kind: ProvenanceKind | None = None,
        element_id: int | None = None,
    ) -> Iterator[ProvenanceRecord]:
        stmt = select(aspects).where(aspects.c.class_name == EXTERNAL_SOURCE_ASPECT_CLASS)
        if scope_id is not None:
            stmt = stmt.where(aspects.c.properties["scope"].as_integer() == scope_id)
        if kind is not None:
            stmt = stmt.where(aspects.c.properties["kind"].as_string() == ProvenanceKind(kind).value)
        if element_id is not None:
            stmt = stmt.where(aspects.c.element_id == element_id)
        rows = self._conn.execute(stmt.order_by(aspects.c.id)).all()
        for row in rows:
            yield ProvenanceRecord.from_aspect(self._aspect_from_row(row))

    # Relationships

    @staticmethod
    def _relationship_from_row(row) -> RelationshipProps:
        return RelationshipProps(
            id=row.id,
            class_name=row.class_name,
            source_id=row.source_id,
            target_id=row.target_id,
            properties=row.properties or {},
            last_mod=row.last_mod,
            created=row.created,
        )

    def iter_relationships(self) -> Iterator[RelationshipProps]:
        rows = self._conn.execute(select(relationships).order_by(relationships.c.id)).all()
        for row in rows:
            yield self._relationship_from_row(row)

    def try_get_relationship(self, relationship_id: int) -> RelationshipProps | None:
        row = self._conn.execute(select(relationships).where(relationships.c.id == relationship_id)).first()
        return self._relationship_from_row(row) if row is not None else None

    def find_relationship(self, class_name: str, source_id: int, target_id: int) -> RelationshipProps | None:
        row = self._conn.execute(
            select(relationships).where(
                relationships.c.class_name == class_name,
                relationships.c.source_id == source_id,
                relationships.c.target_id == target_id,
            )
        ).first()
        return self._relationship_from_row(row) if row is not None else None

    def insert_relationship(self, props: RelationshipProps) -> int:
        self._check_class(props.class_name)
        stamp = self._touch()
        result = self._execute(
            relationships.insert().values(
                class_name=props.class_name,
                source_id=props.source_id,
                target_id=props.target_id,
                properties=props.properties,
                last_mod=stamp,
                created=stamp,
            ),
            f"insert relationship {props}",
        )
        return result.inserted_primary_key[0]

    def update_relationship(self, props: RelationshipProps) -> None:
        if self.try_get_relationship(props.id) is None:
            raise EntityNotFound(f"Relationship {id_to_hex(props.id)} not found")
        self._execute(
            update(relationships)
            .where(relationships.c.id == props.id)
            .values(
                source_id=props.source_id,
                target_id=props.target_id,
                properties=props.properties,
                last_mod=self._touch(),
            ),
            f"update relationship {props}",
        )

    def delete_relationship(self, relationship_id: int) -> None:
        if self.try_get_relationship(relationship_id) is None:
            raise EntityNotFound(f"Relationship {id_to_hex(relationship_id)} not found")
        self._execute(
            delete(relationships).where(relationships.c.id == relationship_id),
            f"delete relationship {id_to_hex(relationship_id)}",
        )
        self._tombstone(EntityKind.relationship, relationship_id)

    # Change tracking

    def change_counter_at(self, when: datetime) -> int:
        """Return the change counter of the last save made at or before ``when``, or 0."""
        counter = self._conn.execute(
            select(func.max(changesets.c.change_counter)).where(changesets.c.saved_at <= when.timestamp())
        ).scalar()
        return counter or 0

    def iter_deleted_since(self, checkpoint: int) -> Iterator[tuple[EntityKind, int]]:
        rows = self._conn.execute(
            select(tombstones.c.kind, tombstones.c.entity_id)
            .where(tombstones.c.deleted_at > checkpoint)
            .order_by(tombstones.c.id)
        ).all()
        for row in rows:
            yield EntityKind(row.kind), row.entity_id

    def count(self, kind: EntityKind) -> int:
        """Number of stored entities of a kind, for reporting and tests."""
        table = {
            EntityKind.code_spec: code_specs,
            EntityKind.model: models,
            EntityKind.element: elements,
            EntityKind.aspect: aspects,
            EntityKind.relationship: relationships,
            EntityKind.schema: schemas_table,
        }[EntityKind(kind)]
        return self._conn.execute(select(func.count()).select_from(table)).scalar()

    # Transactions

    def save_changes(self, description: str | None = None) -> None:
        self._conn.execute(
            changesets.insert().values(
                change_counter=self.change_counter, saved_at=time.time(), description=description
            )
        )
        self._conn.commit()
        logger.debug(f"Saved changes to {self.database_path}: {description or ''}")

    def abandon_changes(self) -> None:
        self._conn.rollback()
        self._class_names = None
        logger.debug(f"Abandoned changes to {self.database_path}")

    def close(self) -> None:
        self._conn.close()
        self.engine.dispose()

    def __enter__(self) -> SqliteRepository:
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()
