"""
Custom exceptions used throughout the imodel_transformer package.

All of these propagate out of the transformer entry points unchanged; the
caller owns save-point and rollback discipline on the target repository.
"""


class TransformerException(Exception):
    """Exception class specific to the imodel_transformer package.

    Args:
        msg (str): Optional message for the exception.
    """

    def __init__(self, msg=""):
        super().__init__(msg)
        self._msg = msg


class UnresolvedReference(TransformerException):
    """A predecessor could not be resolved and the dangling policy is ``reject``.

    Args:
        msg: Message naming the missing entity.
        entity_id: Source id of the missing predecessor.
        referenced_by: Source id of the entity holding the reference.
    """

    def __init__(self, msg="", entity_id: int | None = None, referenced_by: int | None = None):
        super().__init__(msg)
        self.entity_id = entity_id
        self.referenced_by = referenced_by


class PredecessorCycleError(UnresolvedReference):
    """Predecessors that exist in the source but wait on each other and can never resolve."""
    pass


class ProvenanceScopeConflict(TransformerException):
    """A scope element already carries provenance for a different source repository."""
    pass


class SchemaImportFailure(TransformerException):
    """The target rejected the exported schemas."""
    pass


class EntityWriteFailure(TransformerException):
    """The target rejected an insert, update or delete."""
    pass


class CodeSpecNotFound(TransformerException):
    """A code spec name could not be resolved."""
    pass


class TransformerStateError(TransformerException):
    """A transformer was used while busy or after it was disposed."""
    pass


class RepositoryError(TransformerException):
    """Raised by repositories when a read or write is rejected."""
    pass


class EntityNotFound(RepositoryError):
    """The requested entity does not exist in the repository."""
    pass
