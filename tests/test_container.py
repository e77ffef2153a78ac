"""Tests pour le conteneur de dépendances.

Ce module teste le câblage des composants à partir des settings, sans appel réseau.
"""

from __future__ import annotations

import pytest

from multilang_rag.core.container import Container
from multilang_rag.core.settings import Settings
from multilang_rag.domain.errors import ConfigError
from multilang_rag.domain.snapshot_store import InMemorySnapshotStore
from multilang_rag.infra.embeddings.openai_embedder import OpenAIEmbedder
from multilang_rag.infra.repo.snapshot_repo import SqlSnapshotStore
from multilang_rag.infra.vecstores.memory_adapter import InMemoryVectorIndex


def test_default_wiring() -> None:
    """Teste le câblage par défaut (mémoire + OpenAI)."""
    c = Container(Settings(OPENAI_API_KEY="sk-test", DATABASE_URL=None))
    assert isinstance(c.snapshot_store, InMemorySnapshotStore)
    assert isinstance(c.vector_index, InMemoryVectorIndex)
    assert isinstance(c.embedder, OpenAIEmbedder)
    assert c.pipeline.dimension == 1536
    assert c.pipeline.index is c.vector_index
    assert c.sync.store is c.snapshot_store
    assert c.retrieval.store is c.snapshot_store
    assert c.retrieval.default_k == 8
    c.retrieval.close()


def test_sql_store_when_database_url_set() -> None:
    """Teste le store SQL quand DATABASE_URL est défini."""
    c = Container(Settings(DATABASE_URL="sqlite+pysqlite:///:memory:"))
    assert isinstance(c.snapshot_store, SqlSnapshotStore)


def test_unknown_backends_are_config_errors() -> None:
    """Teste le refus des fournisseurs et backends inconnus."""
    c = Container(Settings(EMBEDDINGS_PROVIDER="bogus", VECSTORE_BACKEND="nope"))
    with pytest.raises(ConfigError):
        _ = c.embedder
    with pytest.raises(ConfigError):
        _ = c.vector_index


def test_unknown_model_is_config_error() -> None:
    """Teste le refus d'un modèle d'embedding non enregistré."""
    c = Container(Settings(OPENAI_API_KEY="sk-test", EMBEDDINGS_MODEL="mystery-model"))
    with pytest.raises(ConfigError):
        _ = c.embedder


def test_resolve_secret_prefers_env(monkeypatch) -> None:
    """Teste l'ordre de résolution des secrets: env puis settings."""
    c = Container(Settings(OPENAI_API_KEY="from-settings"))
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    assert c.resolve_secret("OPENAI_API_KEY") == "from-settings"
    monkeypatch.setenv("OPENAI_API_KEY", "from-env")
    assert c.resolve_secret("OPENAI_API_KEY") == "from-env"
