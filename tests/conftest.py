from __future__ import annotations

import pytest

from webground import llm_client
from webground.pipeline.orchestrator import reset_pipeline
from webground.services.cache_store import reset_cache_store
from webground.services.embeddings import reset_embedding_service
from webground.tools.headless_render import reset_headless_breaker


@pytest.fixture(autouse=True)
def _reset_singletons():
    yield
    reset_cache_store()
    reset_embedding_service()
    reset_headless_breaker()
    reset_pipeline()
    llm_client.reset_client()
