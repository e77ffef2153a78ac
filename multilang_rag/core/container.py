"""
Conteneur d'injection de dépendances du cœur de récupération multilingue.

Instancie les composants (store de snapshots, embedder, index vectoriel, pipeline, orchestrateur,
résolveur de configuration, service de retrieval) à partir des settings et expose un singleton
`container`. Les composants sont construits à la première utilisation: importer le package ne
crée aucun client réseau.
"""

from __future__ import annotations

import os
from datetime import timedelta
from functools import cached_property

from multilang_rag.core.logging import setup_logging
from multilang_rag.core.settings import Settings, get_settings
from multilang_rag.domain.errors import ConfigError
from multilang_rag.domain.snapshot_store import InMemorySnapshotStore, SnapshotStore
from multilang_rag.infra.embeddings.base import Embeddings
from multilang_rag.infra.repo.db import get_engine
from multilang_rag.infra.repo.snapshot_repo import SqlSnapshotStore
from multilang_rag.infra.vecstores.base import VectorIndex
from multilang_rag.infra.vecstores.memory_adapter import InMemoryVectorIndex
from multilang_rag.services.embedding_pipeline import EmbeddingPipeline, RetryPolicy
from multilang_rag.services.retrieval_service import RetrievalService
from multilang_rag.services.shop_settings import (
    InMemoryShopSettingsSource,
    ShopSettingsResolver,
    ShopSettingsSource,
)
from multilang_rag.services.sync_orchestrator import SyncOrchestrator


class Container:
    def __init__(self, settings: Settings | None = None):
        self.settings = settings or get_settings()
        setup_logging(self.settings.LOG_LEVEL)

    def resolve_secret(self, key: str) -> str:
        """Résolution d'un secret: env -> settings.

        Ne journalise jamais la valeur du secret.
        """
        env_val = os.getenv(key)
        if env_val:
            return env_val
        return getattr(self.settings, key, "") or ""

    @cached_property
    def snapshot_store(self) -> SnapshotStore:
        if self.settings.DATABASE_URL:
            return SqlSnapshotStore(get_engine(self.settings.DATABASE_URL))
        return InMemorySnapshotStore()

    @cached_property
    def embedder(self) -> Embeddings:
        provider = (self.settings.EMBEDDINGS_PROVIDER or "").strip().lower()
        if provider == "local":
            from multilang_rag.infra.embeddings.local_embedder import LocalEmbedder  # noqa: PLC0415

            return LocalEmbedder(self.settings.LOCAL_EMBEDDINGS_MODEL)
        if provider == "openai":
            from multilang_rag.infra.embeddings.openai_embedder import (  # noqa: PLC0415
                OpenAIEmbedder,
            )

            return OpenAIEmbedder(
                self.settings.EMBEDDINGS_MODEL, api_key=self.resolve_secret("OPENAI_API_KEY")
            )
        raise ConfigError(f"unknown EMBEDDINGS_PROVIDER: {provider!r}")

    @cached_property
    def vector_index(self) -> VectorIndex:
        backend = (self.settings.VECSTORE_BACKEND or "").strip().lower()
        if backend == "memory":
            return InMemoryVectorIndex()
        if backend == "faiss":
            from multilang_rag.infra.vecstores.faiss_store import FaissVectorIndex  # noqa: PLC0415

            return FaissVectorIndex()
        raise ConfigError(f"unknown VECSTORE_BACKEND: {backend!r}")

    @cached_property
    def pipeline(self) -> EmbeddingPipeline:
        retry = RetryPolicy(
            max_attempts=self.settings.SYNC_MAX_ATTEMPTS,
            base_delay=self.settings.SYNC_BACKOFF_BASE_S,
            max_delay=self.settings.SYNC_BACKOFF_MAX_S,
        )
        return EmbeddingPipeline(
            self.embedder,
            self.vector_index,
            retry=retry,
            max_chars=self.settings.EMBEDDING_MAX_CHARS,
        )

    @cached_property
    def shop_settings_source(self) -> ShopSettingsSource:
        return InMemoryShopSettingsSource()

    @cached_property
    def shop_settings(self) -> ShopSettingsResolver:
        return ShopSettingsResolver(
            self.shop_settings_source, default_lang=self.settings.DEFAULT_SOURCE_LANG
        )

    @cached_property
    def sync(self) -> SyncOrchestrator:
        return SyncOrchestrator(
            self.snapshot_store,
            self.pipeline,
            retention=timedelta(seconds=self.settings.TOMBSTONE_RETENTION_S),
            max_workers=self.settings.SYNC_MAX_WORKERS,
        )

    @cached_property
    def retrieval(self) -> RetrievalService:
        return RetrievalService(
            self.shop_settings,
            self.pipeline,
            self.vector_index,
            self.snapshot_store,
            deadline_s=self.settings.RETRIEVAL_DEADLINE_S,
            default_k=self.settings.RETRIEVAL_DEFAULT_K,
            allowed_shops=self.settings.ALLOWED_SHOPS,
        )


container = Container()
