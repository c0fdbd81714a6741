"""routeshape kernel: field model, routes, keys and errors."""

from .errors import AuthError, ConflictError, NotFoundError, RouteshapeError, ValidationError
from .field_model import ArrayField, LeafField, ObjectField, fields_to_json, validate_fields

__all__ = [
    "ArrayField",
    "AuthError",
    "ConflictError",
    "LeafField",
    "NotFoundError",
    "ObjectField",
    "RouteshapeError",
    "ValidationError",
    "fields_to_json",
    "validate_fields",
]
