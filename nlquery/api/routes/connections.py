"""API routes for database connection management.

Handlers are plain ``def`` so FastAPI runs them in its threadpool: engine
adapters block on network I/O. Credentials are encrypted before storage
and never echoed back.
"""

import logging

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from nlquery.api.dependencies import get_credential_store, get_current_user_id, get_registry
from nlquery.api.schemas import (
    ConnectionResponse,
    ConnectionTestResponse,
    CreateConnectionRequest,
    SchemaResponse,
)
from nlquery.db.connection import get_db
from nlquery.engines.registry import AdapterRegistry
from nlquery.services.connection_service import ConnectionService, connection_to_dict
from nlquery.services.conversation_store import ConversationStore
from nlquery.services.credential_store import CredentialStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/connections", tags=["connections"])


def _build_service(
    db: Session,
    registry: AdapterRegistry,
    credentials: CredentialStore,
) -> ConnectionService:
    return ConnectionService(ConversationStore(db), registry, credentials)


@router.post("", response_model=ConnectionResponse, status_code=201)
def create_connection(
    payload: CreateConnectionRequest,
    owner_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
    registry: AdapterRegistry = Depends(get_registry),
    credentials: CredentialStore = Depends(get_credential_store),
) -> dict:
    """Register a database connection. The password is stored encrypted."""
    service = _build_service(db, registry, credentials)
    row = service.create_connection(
        owner_id=owner_id,
        name=payload.name,
        engine_kind=payload.engineKind,
        host=payload.host,
        database_name=payload.databaseName,
        username=payload.username,
        password=payload.password,
        port=payload.port,
    )
    return connection_to_dict(row)


@router.get("", response_model=list[ConnectionResponse])
def list_connections(
    owner_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
) -> list[dict]:
    return [connection_to_dict(row) for row in ConversationStore(db).list_connections(owner_id)]


@router.get("/{connection_id}", response_model=ConnectionResponse)
def get_connection(
    connection_id: str,
    owner_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
) -> dict:
    return connection_to_dict(ConversationStore(db).get_connection(owner_id, connection_id))


@router.delete("/{connection_id}", status_code=204)
def delete_connection(
    connection_id: str,
    owner_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
) -> None:
    """Soft-delete a connection. Its conversations remain readable."""
    ConversationStore(db).delete_connection(owner_id, connection_id)


@router.post("/{connection_id}/test", response_model=ConnectionTestResponse)
def test_connection(
    connection_id: str,
    owner_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
    registry: AdapterRegistry = Depends(get_registry),
    credentials: CredentialStore = Depends(get_credential_store),
) -> dict:
    """Open and close a connection. Failure is reported as ``success: false``."""
    return _build_service(db, registry, credentials).test_connection(owner_id, connection_id)


@router.get("/{connection_id}/schema", response_model=SchemaResponse)
def get_schema(
    connection_id: str,
    refresh: bool = Query(False, description="Re-introspect instead of using the cached raw schema"),
    owner_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
    registry: AdapterRegistry = Depends(get_registry),
    credentials: CredentialStore = Depends(get_credential_store),
) -> dict:
    """Structured schema of the connected database.

    Raises:
        EngineConnectionError / SchemaIntrospectionError: Mapped to 502.
    """
    return _build_service(db, registry, credentials).get_schema(owner_id, connection_id, refresh=refresh)
