"""
Constants used throughout the imodel_transformer package.
"""

from typing import NewType

# Entity id type. Ids are scoped to the repository that issued them.
Id = NewType("Id", int)

# Sentinel for "no entity" / "not mapped"
INVALID_ID = Id(0)

# Well-known ids present in every repository
ROOT_SUBJECT_ID = Id(1)
REPOSITORY_MODEL_ID = Id(1)
DICTIONARY_ID = Id(16)

# Name of the built-in schema every repository carries
CORE_SCHEMA_NAME = "Core"

# Core class names
ELEMENT_CLASS = "Core:Element"
SUBJECT_CLASS = "Core:Subject"
PARTITION_CLASS = "Core:InformationPartitionElement"
DEFINITION_PARTITION_CLASS = "Core:DefinitionPartition"
PHYSICAL_PARTITION_CLASS = "Core:PhysicalPartition"
MODEL_CLASS = "Core:Model"
REPOSITORY_MODEL_CLASS = "Core:RepositoryModel"
DICTIONARY_MODEL_CLASS = "Core:DictionaryModel"
UNIQUE_ASPECT_CLASS = "Core:ElementUniqueAspect"
MULTI_ASPECT_CLASS = "Core:ElementMultiAspect"
EXTERNAL_SOURCE_ASPECT_CLASS = "Core:ExternalSourceAspect"
RELATIONSHIP_CLASS = "Core:ElementRefersToElements"

# Well-known code specs
NULL_CODE_SPEC_NAME = "Core:NullCodeSpec"
SUBJECT_CODE_SPEC_NAME = "Core:Subject"
PARTITION_CODE_SPEC_NAME = "Core:InformationPartitionElement"

DICTIONARY_PARTITION_NAME = "Dictionary"


def id_to_hex(entity_id: int) -> str:
    """Format an id the way it is shown in messages, e.g. ``0x1b``."""
    return hex(entity_id)


def is_valid_id(entity_id: int | None) -> bool:
    return entity_id is not None and entity_id != INVALID_ID
