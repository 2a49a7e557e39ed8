"""Typed domain exceptions for API error mapping.

Services raise these; routes catch specific types to return the
matching HTTP status code.

Usage:
    # In service layer
    raise NotFoundError("Conversation", conversation_id)

    # In route handler
    try:
        conversation = store.get_conversation(owner_id, conversation_id)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
"""


class DomainError(Exception):
    """Base exception for all domain errors."""

    def __init__(self, message: str) -> None:
        super().__init__(message)


class NotFoundError(DomainError):
    """Resource does not exist or was deleted. Maps to HTTP 404.

    A resource that exists but belongs to another owner raises
    PermissionDeniedError instead.
    """

    def __init__(self, resource_type: str, identifier: str) -> None:
        super().__init__(f"{resource_type} '{identifier}' not found")
        self.resource_type = resource_type
        self.identifier = identifier


class ConflictError(DomainError):
    """Resource conflict (e.g., a turn already in progress). Maps to HTTP 409."""

    def __init__(self, message: str) -> None:
        super().__init__(message)


class ValidationError(DomainError):
    """Validation failure. Maps to HTTP 400."""

    def __init__(self, message: str) -> None:
        super().__init__(message)


class TurnInProgressError(ConflictError):
    """Another turn is already running for this conversation. Maps to HTTP 409."""

    def __init__(self, conversation_id: str) -> None:
        super().__init__(
            f"Conversation '{conversation_id}' already has a turn in progress"
        )
        self.conversation_id = conversation_id


class PermissionDeniedError(DomainError):
    """Caller does not own the resource. Maps to HTTP 403."""

    def __init__(self, resource_type: str, identifier: str) -> None:
        super().__init__(f"Not permitted to access {resource_type} '{identifier}'")
        self.resource_type = resource_type
        self.identifier = identifier
