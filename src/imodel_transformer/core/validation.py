"""Shared pydantic configuration for imodel_transformer models.

Entity props and schema definitions use ``VALIDATION_CONFIG``: enum fields
store their plain string value, so props dump straight into JSON columns and
compare equal to the values read back from a repository.

``TransformerOptions`` uses ``STRICT_VALIDATION_CONFIG`` so that a misspelled
option, from code or from a hydra override, fails instead of being ignored.
"""

from pydantic import ConfigDict

VALIDATION_CONFIG = ConfigDict(
    arbitrary_types_allowed=True,
    validate_default=True,
    use_enum_values=True,
)

STRICT_VALIDATION_CONFIG = ConfigDict(
    arbitrary_types_allowed=True,
    validate_default=True,
    use_enum_values=True,
    extra="forbid",
)

__all__ = [
    "VALIDATION_CONFIG",
    "STRICT_VALIDATION_CONFIG",
]
