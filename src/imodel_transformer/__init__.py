__all__ = [
    "Transformer",
    "TransformerOptions",
    "CloneContext",
    "Exporter",
    "ExportHandler",
    "Importer",
    "ImportCounters",
    "TransformReport",
    "SqliteRepository",
    "Repository",
    "TransformerException",
    "UnresolvedReference",
    "PredecessorCycleError",
    "ProvenanceScopeConflict",
    "SchemaImportFailure",
    "EntityWriteFailure",
    "CodeSpecNotFound",
    "TransformerStateError",
    "DanglingPredecessorsBehavior",
]

from importlib.metadata import PackageNotFoundError, version

from imodel_transformer.core import (
    CodeSpecNotFound,
    DanglingPredecessorsBehavior,
    EntityWriteFailure,
    PredecessorCycleError,
    ProvenanceScopeConflict,
    SchemaImportFailure,
    TransformerException,
    TransformerOptions,
    TransformerStateError,
    UnresolvedReference,
)
from imodel_transformer.repository import Repository, SqliteRepository
from imodel_transformer.transformer import (
    CloneContext,
    Exporter,
    ExportHandler,
    ImportCounters,
    Importer,
    Transformer,
    TransformReport,
)

try:
    __version__ = version("imodel_transformer")
except PackageNotFoundError:
    # package is not installed
    pass
