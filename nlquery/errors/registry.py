"""Error code registry with E-XXXX format codes.

This module defines the error code system for nlquery, organizing errors
into categories:
- E-1xxx: Connection errors (cannot reach or authenticate to an engine)
- E-2xxx: Schema introspection errors
- E-3xxx: Query execution errors
- E-4xxx: Generation backend errors
- E-5xxx: System/configuration errors

Each error includes a code, title, message template, and remediation steps.
"""

from dataclasses import dataclass
from enum import Enum


class ErrorCategory(str, Enum):
    """Categories for error codes."""

    CONNECTION = "connection"  # E-1xxx
    SCHEMA = "schema"  # E-2xxx
    QUERY = "query"  # E-3xxx
    GENERATION = "generation"  # E-4xxx
    SYSTEM = "system"  # E-5xxx


@dataclass
class ErrorCode:
    """Definition of an error code with metadata.

    Attributes:
        code: Error code in E-XXXX format.
        category: Error category for grouping.
        title: Short title for display.
        message_template: User-safe message with {placeholders} for context.
        remediation: Action user should take to resolve.
        is_retryable: Whether the operation can be retried without user action.
    """

    code: str
    category: ErrorCategory
    title: str
    message_template: str
    remediation: str
    is_retryable: bool = False


ERROR_REGISTRY: dict[str, ErrorCode] = {
    # Connection errors (E-1xxx)
    "E-1001": ErrorCode(
        code="E-1001",
        category=ErrorCategory.CONNECTION,
        title="Database Unreachable",
        message_template="Could not connect to the {engine} database.",
        remediation="Check the host, port, and credentials of the connection and retry.",
    ),
    "E-1002": ErrorCode(
        code="E-1002",
        category=ErrorCategory.CONNECTION,
        title="Credential Unavailable",
        message_template="Stored credentials for this connection could not be read.",
        remediation="Re-enter the connection password to rotate the stored secret.",
    ),
    # Schema errors (E-2xxx)
    "E-2001": ErrorCode(
        code="E-2001",
        category=ErrorCategory.SCHEMA,
        title="Schema Introspection Failed",
        message_template="Could not read the schema of the {engine} database.",
        remediation="Verify the connected user can read catalog views and retry.",
    ),
    # Query errors (E-3xxx)
    "E-3001": ErrorCode(
        code="E-3001",
        category=ErrorCategory.QUERY,
        title="Query Failed",
        message_template="{detail}",
        remediation="Rephrase the question or correct the generated query.",
    ),
    # Generation errors (E-4xxx)
    "E-4001": ErrorCode(
        code="E-4001",
        category=ErrorCategory.GENERATION,
        title="Generation Backend Unavailable",
        message_template="Failed to get a response from the AI service.",
        remediation="Check that the generation backend is running and reachable.",
        is_retryable=True,
    ),
    "E-4002": ErrorCode(
        code="E-4002",
        category=ErrorCategory.GENERATION,
        title="Generation Timed Out",
        message_template="The AI service did not finish responding in time.",
        remediation="Retry with a shorter question or raise the request timeout.",
        is_retryable=True,
    ),
    # System errors (E-5xxx)
    "E-5001": ErrorCode(
        code="E-5001",
        category=ErrorCategory.SYSTEM,
        title="Unsupported Engine",
        message_template="Database engine '{engine}' is not supported.",
        remediation="Use one of: postgresql, mysql, sqlserver, mongodb.",
    ),
    "E-5002": ErrorCode(
        code="E-5002",
        category=ErrorCategory.SYSTEM,
        title="Unexpected Error",
        message_template="An unexpected error occurred while processing the request.",
        remediation="Retry the request. If it keeps failing, check the server logs.",
    ),
}


def get_error(code: str) -> ErrorCode | None:
    """Look up an error code definition.

    Args:
        code: Error code in E-XXXX format.

    Returns:
        ErrorCode if found, None otherwise.
    """
    return ERROR_REGISTRY.get(code)


def get_errors_by_category(category: ErrorCategory) -> list[ErrorCode]:
    """Get all error codes in a category.

    Args:
        category: Error category to filter by.

    Returns:
        List of ErrorCode objects in the category.
    """
    return [e for e in ERROR_REGISTRY.values() if e.category == category]
