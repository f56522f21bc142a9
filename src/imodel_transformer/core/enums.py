"""
Enumeration classes used throughout the imodel_transformer package.
"""

from enum import Enum


class BaseStrEnum(str, Enum):
    """Base class for string enums in Python 3.10"""
    pass


class EntityKind(BaseStrEnum):
    """Kinds of entity a repository stores."""
    schema = "Schema"
    code_spec = "CodeSpec"
    model = "Model"
    element = "Element"
    aspect = "Aspect"
    relationship = "Relationship"


class ProvenanceKind(BaseStrEnum):
    """Kinds of provenance record written into a provenance repository.

    Attributes:
        element: Records which source element produced a target element.
        relationship: Records which source relationship produced a target relationship.
        scope: Records which source repository owns a scope element.
    """
    element = "Element"
    relationship = "Relationship"
    scope = "Scope"


class DanglingPredecessorsBehavior(BaseStrEnum):
    """What to do with a reference to an entity that no longer exists in the source."""
    reject = "reject"
    ignore = "ignore"


class PropertyKind(BaseStrEnum):
    """Kind of a class property as described by schema metadata."""
    primitive = "primitive"
    navigation = "navigation"
    navigation_set = "navigation_set"


class TransformerState(BaseStrEnum):
    """Phases of a transformation session.

    Attributes:
        idle: No processing has started (or the last call finished a partial phase).
        processing_schemas: Schemas are being exported and imported.
        processing_models_and_elements: Models and elements are being walked; deferred
            entities are released as their predecessors resolve.
        processing_deferred: The deferred queue is being drained.
        processing_relationships: Relationships are being walked.
        done: A full ``process_all`` finished.
    """
    idle = "Idle"
    processing_schemas = "ProcessingSchemas"
    processing_models_and_elements = "ProcessingModelsAndElements"
    processing_deferred = "ProcessingDeferred"
    processing_relationships = "ProcessingRelationships"
    done = "Done"


class StuckReason(BaseStrEnum):
    """Why a predecessor could not be resolved when the deferred queue stalls."""
    dangling = "dangling"
    excluded = "excluded"
    cycle = "cycle"
