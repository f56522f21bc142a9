from imodel_transformer.model.entities import (
    AspectProps,
    Code,
    CodeSpecProps,
    ElementProps,
    ModelProps,
    ProvenanceRecord,
    RelationshipProps,
)
from imodel_transformer.model.metadata import MetadataService
from imodel_transformer.model.references import PredecessorRef, PredecessorWalker
from imodel_transformer.model.schema import ClassDefinition, PropertyDefinition, SchemaProps
from imodel_transformer.model.schema_orderer import SchemaOrderer

__all__ = [
    "AspectProps",
    "Code",
    "CodeSpecProps",
    "ElementProps",
    "ModelProps",
    "ProvenanceRecord",
    "RelationshipProps",
    "MetadataService",
    "PredecessorRef",
    "PredecessorWalker",
    "ClassDefinition",
    "PropertyDefinition",
    "SchemaProps",
    "SchemaOrderer",
]
