"""Pydantic request/response models for the nlquery API.

Wire payloads use camelCase keys, matching the lifecycle event payloads
published on the delivery channel.
"""

from typing import Any

from pydantic import BaseModel, Field


class CreateConnectionRequest(BaseModel):
    """Request body for registering a database connection."""

    name: str = Field(..., min_length=1, max_length=255)
    engineKind: str = Field(..., description="postgresql, mysql, sqlserver or mongodb")
    host: str = Field(..., min_length=1)
    port: int | None = Field(None, ge=1, le=65535, description="Engine default when omitted")
    databaseName: str = Field(..., min_length=1)
    username: str = ""
    password: str = Field("", repr=False, description="Encrypted before it is stored")


class ConnectionResponse(BaseModel):
    """A stored connection. The secret is never returned."""

    id: str
    name: str
    engineKind: str
    host: str
    port: int
    databaseName: str
    username: str
    lastTestedAt: str | None = None
    schemaCachedAt: str | None = None
    createdAt: str
    updatedAt: str


class ConnectionTestResponse(BaseModel):
    success: bool
    testedAt: str | None = None


class SchemaResponse(BaseModel):
    """Structured schema plus the raw text used as generation context."""

    databaseName: str
    databaseType: str
    tables: list[dict[str, Any]]
    cachedAt: str | None = None
    rawSchema: str


class CreateConversationRequest(BaseModel):
    """Bind a new conversation to exactly one source."""

    databaseConnectionId: str | None = None
    tabularSourceId: str | None = None
    title: str | None = Field(None, max_length=255)


class ConversationSummary(BaseModel):
    id: str
    title: str | None = None
    databaseConnectionId: str | None = None
    tabularSourceId: str | None = None
    createdAt: str
    updatedAt: str
    messageCount: int = 0


class MessageResponse(BaseModel):
    id: str
    conversationId: str
    role: str
    content: str
    generatedQuery: str | None = None
    resultJson: str | None = None
    tokensUsed: int = 0
    createdAt: str


class ConversationDetailResponse(ConversationSummary):
    """A conversation with its messages in replay order."""

    messages: list[MessageResponse] = Field(default_factory=list)


class SendMessageRequest(BaseModel):
    """A new user message for a conversation."""

    content: str = Field(..., min_length=1, description="User message text")
    executeQuery: bool = True


class TurnResponse(BaseModel):
    """Same shape as the stream_completed event payload."""

    assistantMessage: MessageResponse
    queryResult: dict[str, Any] | None = None
    tokensUsed: int = 0
