from .models import (
    ADDRESS,
    TAG_ID,
    ClassSchema,
    DEFAULT_PRUNE_ROOTS,
    FieldLayout,
    PruneRoot,
    SchemaRegistry,
)
from .loader import load_registry, registry_from_dict, registry_to_dict
from .validator import ValidationErrorRecord, validate_registry

__all__ = [
    "ADDRESS",
    "TAG_ID",
    "ClassSchema",
    "FieldLayout",
    "PruneRoot",
    "DEFAULT_PRUNE_ROOTS",
    "SchemaRegistry",
    "load_registry",
    "registry_from_dict",
    "registry_to_dict",
    "ValidationErrorRecord",
    "validate_registry",
]
