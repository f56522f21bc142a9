"""Configuration management for imodel_transformer.

This module provides the TransformerOptions class for configuring a transformation
session. It integrates with hydra-zen for configuration management and supports
both programmatic and structured configuration.

The configuration handles:
    - Provenance behaviour (target scope, suppression, carrying source provenance)
    - Synchronization direction (forward, reverse, source copied to target)
    - The dangling predecessor policy
    - Id preservation and which phases ``process_all`` runs

Integration with hydra-zen:
    The module registers a structured config for TransformerOptions in the
    hydra-zen store under the ``transformer`` group. The command line entry point
    in ``imodel_transformer.cli`` composes it with the repository paths.

Example:
    Programmatic configuration:
        >>> options = TransformerOptions(
        ...     target_scope_element_id=0x20,
        ...     dangling_predecessors_behavior="ignore",
        ... )
        >>> transformer = Transformer(source, target, options)

    With hydra-zen:
        >>> from hydra_zen import instantiate
        >>> from imodel_transformer.core.config import TransformerOptionsConf
        >>>
        >>> options = instantiate(TransformerOptionsConf(is_reverse_synchronization=True))
        >>> options.no_provenance
        True
"""

from hydra_zen import builds, store
from pydantic import BaseModel, model_validator

from imodel_transformer.core.constants import RELATIONSHIP_CLASS, ROOT_SUBJECT_ID
from imodel_transformer.core.enums import DanglingPredecessorsBehavior
from imodel_transformer.core.validation import STRICT_VALIDATION_CONFIG


class TransformerOptions(BaseModel):
    """Configuration model for a Transformer session.

    Attributes:
        target_scope_element_id: Target element that anchors this session's provenance.
            Defaults to the root subject. Distinct values let several sources merge into
            disjoint subtrees of one target.
        no_provenance: Suppress writing provenance records. Defaults to True for a
            reverse synchronization and False otherwise.
        include_source_provenance: Copy provenance records found in the source as
            ordinary multi-aspects instead of skipping them.
        is_reverse_synchronization: The source is a branch being merged back into the
            repository it was created from. Provenance is read from the source.
        was_source_copied_to_target: The target started as a copy of the source, so
            identical ids denote the same entity.
        dangling_predecessors_behavior: ``reject`` raises on a reference to an entity
            that no longer exists in the source; ``ignore`` writes the reference as null.
        preserve_element_ids: Insert target elements using their source ids.
        process_schemas: Whether ``process_all`` exports and imports schemas first.
        relationship_class: Relationship class (including subclasses) walked by
            ``process_all``.
    """

    model_config = STRICT_VALIDATION_CONFIG

    target_scope_element_id: int = ROOT_SUBJECT_ID
    no_provenance: bool | None = None
    include_source_provenance: bool = False
    is_reverse_synchronization: bool = False
    was_source_copied_to_target: bool = False
    dangling_predecessors_behavior: DanglingPredecessorsBehavior = DanglingPredecessorsBehavior.reject
    preserve_element_ids: bool = False
    process_schemas: bool = True
    relationship_class: str = RELATIONSHIP_CLASS

    @model_validator(mode="after")
    def resolve_provenance_defaults(self) -> "TransformerOptions":
        """Resolve options whose defaults depend on other options.

        Returns:
            Self: The options with ``no_provenance`` resolved to a bool.

        Raises:
            ValueError: If the options describe both directions of a branch at once.
        """
        if self.is_reverse_synchronization and self.was_source_copied_to_target:
            raise ValueError("is_reverse_synchronization and was_source_copied_to_target are mutually exclusive")
        if self.no_provenance is None:
            self.no_provenance = self.is_reverse_synchronization
        return self

    @property
    def ignore_dangling_predecessors(self) -> bool:
        return self.dangling_predecessors_behavior == DanglingPredecessorsBehavior.ignore


# =============================================================================
# Hydra Integration
# =============================================================================

TransformerOptionsConf = builds(TransformerOptions, populate_full_signature=True)

transformer_store = store(group="transformer")
transformer_store(TransformerOptionsConf, name="default")
transformer_store(TransformerOptionsConf(is_reverse_synchronization=True), name="reverse")
transformer_store(TransformerOptionsConf(dangling_predecessors_behavior="ignore"), name="lenient")
