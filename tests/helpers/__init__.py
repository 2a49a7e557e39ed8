"""Test helper utilities for engine and backend fakes."""

from tests.helpers.catalog import FakeCatalogConnection, FakeEngine, catalog_engine_factory
from tests.helpers.generation import PROSE_RESPONSE, QUERY_RESPONSE, ScriptedClient, ScriptedStream

OWNER_ID = "user-1"
OTHER_OWNER_ID = "user-2"

__all__ = [
    "FakeCatalogConnection",
    "FakeEngine",
    "OTHER_OWNER_ID",
    "OWNER_ID",
    "PROSE_RESPONSE",
    "QUERY_RESPONSE",
    "ScriptedClient",
    "ScriptedStream",
    "catalog_engine_factory",
]
