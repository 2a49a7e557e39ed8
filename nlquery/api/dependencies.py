"""Shared FastAPI dependencies.

Process-wide collaborators (config, adapter registry, generation client,
delivery channel, turn locks) are created once and handed to routes via
Depends(), so tests can replace any of them with
``app.dependency_overrides``.
"""

import logging
from functools import lru_cache

from fastapi import Depends, Header, HTTPException

from nlquery.config import NLQueryConfig, load_config
from nlquery.db.connection import get_db_context
from nlquery.engines.registry import AdapterRegistry, build_default_registry
from nlquery.services.credential_store import CredentialStore, EncryptedCredentialStore
from nlquery.services.delivery_channel import DeliveryChannel
from nlquery.services.generation_client import GenerationClient
from nlquery.services.orchestrator import ConversationOrchestrator
from nlquery.services.turn_locks import TurnLocks

logger = logging.getLogger(__name__)

USER_ID_HEADER = "X-User-Id"


def get_current_user_id(x_user_id: str | None = Header(None, alias=USER_ID_HEADER)) -> str:
    """Caller identity supplied by the authenticating proxy.

    Raises:
        HTTPException: 401 if the header is missing or blank.
    """
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(status_code=401, detail=f"Missing {USER_ID_HEADER} header")
    return x_user_id.strip()


@lru_cache(maxsize=1)
def get_config() -> NLQueryConfig:
    return load_config()


@lru_cache(maxsize=1)
def get_credential_store() -> CredentialStore:
    return EncryptedCredentialStore()


@lru_cache(maxsize=1)
def get_registry() -> AdapterRegistry:
    return build_default_registry(get_credential_store(), get_config().engines)


@lru_cache(maxsize=1)
def get_generation_client() -> GenerationClient:
    config = get_config().generation
    logger.info("Generation backend: %s model=%s", config.base_url, config.model)
    return GenerationClient(config)


@lru_cache(maxsize=1)
def get_delivery_channel() -> DeliveryChannel:
    return DeliveryChannel(queue_size=get_config().delivery.subscriber_queue_size)


@lru_cache(maxsize=1)
def get_turn_locks() -> TurnLocks:
    return TurnLocks()


def get_ping_interval() -> float:
    return get_config().delivery.ping_interval_seconds


def get_orchestrator(
    client: GenerationClient = Depends(get_generation_client),
    registry: AdapterRegistry = Depends(get_registry),
    channel: DeliveryChannel = Depends(get_delivery_channel),
) -> ConversationOrchestrator:
    return ConversationOrchestrator(client, registry, channel, session_factory=get_db_context)
