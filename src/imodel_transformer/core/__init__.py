from imodel_transformer.core.config import TransformerOptions, TransformerOptionsConf
from imodel_transformer.core.constants import DICTIONARY_ID, INVALID_ID, REPOSITORY_MODEL_ID, ROOT_SUBJECT_ID
from imodel_transformer.core.enums import (
    DanglingPredecessorsBehavior,
    EntityKind,
    PropertyKind,
    ProvenanceKind,
    TransformerState,
)
from imodel_transformer.core.exceptions import (
    CodeSpecNotFound,
    EntityNotFound,
    EntityWriteFailure,
    PredecessorCycleError,
    ProvenanceScopeConflict,
    RepositoryError,
    SchemaImportFailure,
    TransformerException,
    TransformerStateError,
    UnresolvedReference,
)

__all__ = [
    "TransformerOptions",
    "TransformerOptionsConf",
    "DICTIONARY_ID",
    "INVALID_ID",
    "REPOSITORY_MODEL_ID",
    "ROOT_SUBJECT_ID",
    "DanglingPredecessorsBehavior",
    "EntityKind",
    "PropertyKind",
    "ProvenanceKind",
    "TransformerState",
    "CodeSpecNotFound",
    "EntityNotFound",
    "EntityWriteFailure",
    "PredecessorCycleError",
    "ProvenanceScopeConflict",
    "RepositoryError",
    "SchemaImportFailure",
    "TransformerException",
    "TransformerStateError",
    "UnresolvedReference",
]
