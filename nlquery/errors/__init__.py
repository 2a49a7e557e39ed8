"""Error handling framework for nlquery.

This package provides:
- Error code registry with E-XXXX format codes
- Classified engine and generation errors with user-safe messages
- Typed domain errors for HTTP status mapping

Error categories:
- E-1xxx: Connection errors
- E-2xxx: Schema introspection errors
- E-3xxx: Query execution errors
- E-4xxx: Generation backend errors
- E-5xxx: System/configuration errors
"""

from nlquery.errors.domain import (
    ConflictError,
    DomainError,
    NotFoundError,
    PermissionDeniedError,
    TurnInProgressError,
    ValidationError,
)
from nlquery.errors.engine import (
    CredentialUnavailableError,
    EngineConnectionError,
    GenerationError,
    GenerationTimeoutError,
    NLQueryError,
    QueryExecutionError,
    SchemaIntrospectionError,
    UnsupportedEngineError,
)
from nlquery.errors.registry import (
    ERROR_REGISTRY,
    ErrorCategory,
    ErrorCode,
    get_error,
    get_errors_by_category,
)

__all__ = [
    # Registry
    "ErrorCode",
    "ErrorCategory",
    "ERROR_REGISTRY",
    "get_error",
    "get_errors_by_category",
    # Engine / generation
    "NLQueryError",
    "EngineConnectionError",
    "CredentialUnavailableError",
    "SchemaIntrospectionError",
    "QueryExecutionError",
    "UnsupportedEngineError",
    "GenerationError",
    "GenerationTimeoutError",
    # Domain
    "DomainError",
    "NotFoundError",
    "ConflictError",
    "ValidationError",
    "PermissionDeniedError",
    "TurnInProgressError",
]
