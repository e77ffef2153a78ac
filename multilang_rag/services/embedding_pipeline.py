"""
Pipeline d'embedding: snapshot -> document canonique -> vecteur -> index.

`ensure` est idempotent: un enregistrement existant pour (produit, langue, modèle) dont le hash de
contenu correspond au snapshot évite tout appel au fournisseur. Les échecs du fournisseur sont
retentés avec un backoff exponentiel borné; à l'épuisement, `ProviderError` remonte à
l'orchestrateur (jamais avalée ici).
"""

from __future__ import annotations

import random
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime

import structlog
from pydantic import BaseModel

from multilang_rag.core.constants import (
    EMBEDDING_DOC_FORMAT,
    EMBEDDING_MAX_CHARS,
    MAX_RETRY_ATTEMPTS,
    RETRY_BASE_DELAY,
    RETRY_MAX_DELAY,
    RETRY_RANDOM_FACTOR,
)
from multilang_rag.core.metrics import EMBEDDING_PIPELINE_SKIPS, EMBEDDING_PROVIDER_CALLS
from multilang_rag.domain.canonical import build_embedding_document
from multilang_rag.domain.errors import ConfigError, ProviderError
from multilang_rag.domain.models import EmbeddingRecord, FreshnessState, ProductSnapshot
from multilang_rag.infra.embeddings.base import Embeddings
from multilang_rag.infra.vecstores.base import VectorIndex


def _utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass
class RetryPolicy:
    """Politique de retry du fournisseur d'embeddings (backoff exponentiel + jitter)."""

    max_attempts: int = MAX_RETRY_ATTEMPTS
    base_delay: float = RETRY_BASE_DELAY
    max_delay: float = RETRY_MAX_DELAY
    random_factor: float = RETRY_RANDOM_FACTOR
    sleep: Callable[[float], None] = field(default=time.sleep, repr=False)
    rand: Callable[[], float] = field(default=random.random, repr=False)

    def delay(self, attempt: int) -> float:
        """Délai avant la tentative suivant la tentative `attempt` (1-indexée)."""
        raw = (2 ** (attempt - 1)) * self.base_delay + self.rand() * self.random_factor
        return min(self.max_delay, raw)


class EnsureResult(BaseModel):
    """Résultat de `ensure`: l'enregistrement indexé et s'il a fallu appeler le fournisseur."""

    record: EmbeddingRecord
    provider_called: bool


class EmbeddingPipeline:
    """Dérive, calcule et indexe les embeddings des snapshots."""

    def __init__(
        self,
        embedder: Embeddings,
        index: VectorIndex,
        retry: RetryPolicy | None = None,
        max_chars: int = EMBEDDING_MAX_CHARS,
        doc_format: str = EMBEDDING_DOC_FORMAT,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        """
        Initialise le pipeline.

        Args:
            embedder: Fournisseur d'embeddings (une version de modèle).
            index: Index vectoriel cible.
            retry: Politique de retry du fournisseur.
            max_chars: Troncature du document d'embedding.
            doc_format: Version du format de document.
            clock: Horloge UTC (injectable pour les tests).
        """
        self.embedder = embedder
        self.index = index
        self.retry = retry or RetryPolicy()
        self.max_chars = max_chars
        self.doc_format = doc_format
        self.clock = clock
        self._log = structlog.get_logger(__name__).bind(component="embedding_pipeline")

    @property
    def model_version(self) -> str:
        """Version du modèle utilisé pour les nouveaux embeddings."""
        return self.embedder.model_version

    @property
    def dimension(self) -> int:
        """Dimension des vecteurs produits."""
        return self.embedder.dimension

    def _check_model(self, model_version: str | None) -> str:
        mv = model_version or self.model_version
        if mv != self.model_version:
            raise ConfigError(
                f"pipeline embeds with {self.model_version!r}, {mv!r} was requested"
            )
        return mv

    def _embed_with_retry(self, texts: list[str], **ctx) -> list[list[float]]:
        attempts = 0
        while True:
            attempts += 1
            try:
                vectors = self.embedder.embed(texts)
            except ProviderError as exc:
                EMBEDDING_PROVIDER_CALLS.labels(model=self.model_version, result="error").inc()
                if attempts < self.retry.max_attempts:
                    sleep = self.retry.delay(attempts)
                    self._log.warning(
                        "embedding_provider_retry",
                        attempt=attempts,
                        delay_s=round(sleep, 3),
                        model_version=self.model_version,
                        error=str(exc),
                        **ctx,
                    )
                    self.retry.sleep(sleep)
                    continue
                raise ProviderError(
                    f"embedding provider failed after {attempts} attempts: {exc}",
                    attempts=attempts,
                ) from exc
            EMBEDDING_PROVIDER_CALLS.labels(model=self.model_version, result="success").inc()
            return vectors

    def is_current(self, record: EmbeddingRecord | None, snapshot: ProductSnapshot) -> bool:
        """Indique si `record` a été calculé à partir du contenu actuel de `snapshot`."""
        return (
            record is not None
            and record.model_version == self.model_version
            and record.doc_format == self.doc_format
            and record.content_hash == snapshot.content_hash
        )

    def ensure(self, snapshot: ProductSnapshot, model_version: str | None = None) -> EnsureResult:
        """
        Garantit qu'un embedding à jour existe pour le snapshot.

        Args:
            snapshot: Snapshot source (boutique, produit, langue, contenu, hash, révision).
            model_version: Version de modèle attendue (défaut: celle du pipeline).

        Returns:
            EnsureResult: Enregistrement indexé et indicateur d'appel fournisseur.

        Raises:
            ProviderError: si le fournisseur échoue après épuisement des tentatives.
            DimensionMismatchError: si le vecteur ne convient pas à la partition.
            StaleWriteError: si une révision plus récente a été indexée entre-temps.
        """
        mv = self._check_model(model_version)
        ctx = {"shop": snapshot.shop, "product_id": snapshot.product_id, "lang": snapshot.lang}
        existing = self.index.get(snapshot.shop, snapshot.product_id, snapshot.lang)
        if existing is not None and self.is_current(existing, snapshot):
            EMBEDDING_PIPELINE_SKIPS.labels(model=mv).inc()
            if existing.is_tombstoned or existing.revision < snapshot.revision:
                # même contenu: on réactive sans recalcul, horodatage conservé
                existing = existing.model_copy(
                    update={
                        "revision": max(existing.revision, snapshot.revision),
                        "tombstoned_at": None,
                        "tombstone_reason": None,
                        "state": FreshnessState.FRESH,
                    }
                )
                self.index.upsert(existing)
            return EnsureResult(record=existing, provider_called=False)

        document = build_embedding_document(snapshot.content, max_chars=self.max_chars)
        vector = self._embed_with_retry([document], **ctx)[0]
        record = EmbeddingRecord(
            shop=snapshot.shop,
            product_id=snapshot.product_id,
            lang=snapshot.lang,
            model_version=mv,
            doc_format=self.doc_format,
            vector=[float(x) for x in vector],
            content_hash=snapshot.content_hash,
            revision=snapshot.revision,
            state=FreshnessState.FRESH,
            updated_at=self.clock(),
        )
        self.index.upsert(record)
        self._log.debug("embedding_indexed", model_version=mv, revision=snapshot.revision, **ctx)
        return EnsureResult(record=record, provider_called=True)

    def embed_query(self, text: str) -> list[float]:
        """Calcule le vecteur d'une requête (une seule tentative; l'appelant gère l'échéance)."""
        try:
            vectors = self.embedder.embed([text])
        except ProviderError:
            EMBEDDING_PROVIDER_CALLS.labels(model=self.model_version, result="error").inc()
            raise
        EMBEDDING_PROVIDER_CALLS.labels(model=self.model_version, result="success").inc()
        return vectors[0]
