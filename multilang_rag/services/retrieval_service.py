"""
Service de retrieval multilingue.

Résout la configuration de la boutique, embedde la requête avec le modèle de la partition cible,
interroge l'index et applique la politique de langue:
- langue non servie -> substitution par la langue source par défaut;
- résultats trop peu nombreux -> complément depuis la partition par défaut, sans doublon;
- hydratation des champs d'affichage en best effort.

Seules `DimensionMismatchError` et `RetrievalTimeoutError` remontent à l'appelant.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from typing import Any

import structlog

from multilang_rag.config.flags import min_similarity
from multilang_rag.core.metrics import (
    RETRIEVAL_ERRORS,
    RETRIEVAL_FALLBACK,
    RETRIEVAL_LATENCY,
    RETRIEVAL_REQUESTS,
    labelize_shop,
)
from multilang_rag.domain.canonical import html_to_text, normalize_lang_code
from multilang_rag.domain.errors import (
    DimensionMismatchError,
    ProviderError,
    RetrievalTimeoutError,
)
from multilang_rag.domain.models import RetrievalResponse, RetrievalResult, ScoredEntry
from multilang_rag.domain.snapshot_store import SnapshotStore
from multilang_rag.infra.vecstores.base import VectorIndex
from multilang_rag.services.embedding_pipeline import EmbeddingPipeline
from multilang_rag.services.shop_settings import ShopSettingsResolver

ProductNamesLookup = Callable[[str, list[str]], dict[str, str]]


class RetrievalService:
    """Répond aux requêtes de retrieval (lecture seule, bornée par une échéance)."""

    def __init__(
        self,
        resolver: ShopSettingsResolver,
        pipeline: EmbeddingPipeline,
        index: VectorIndex,
        store: SnapshotStore,
        deadline_s: float = 5.0,
        default_k: int = 8,
        product_names: ProductNamesLookup | None = None,
        floor: Callable[[], float] = min_similarity,
        allowed_shops: list[str] | str | None = None,
        max_workers: int = 4,
    ) -> None:
        """
        Initialise le service.

        Args:
            resolver: Résolveur de configuration des boutiques.
            pipeline: Pipeline d'embedding (embedding des requêtes).
            index: Index vectoriel.
            store: Store de snapshots (hydratation).
            deadline_s: Échéance d'un appel `retrieve`, en secondes.
            default_k: Nombre de résultats par défaut.
            product_names: Lookup optionnel `(shop, ids) -> {id: nom}`.
            floor: Seuil de similarité (0 = désactivé).
            allowed_shops: Liste blanche des labels de métriques.
            max_workers: Threads dédiés aux étapes soumises à l'échéance.
        """
        self.resolver = resolver
        self.pipeline = pipeline
        self.index = index
        self.store = store
        self.deadline_s = deadline_s
        self.default_k = default_k
        self.product_names = product_names
        self.floor = floor
        self.allowed_shops = allowed_shops
        self._log = structlog.get_logger(__name__).bind(component="retrieval")
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="retrieval")

    def close(self) -> None:
        """Arrête le pool de threads du service."""
        self._executor.shutdown(wait=False, cancel_futures=True)

    def _bounded(self, stage: str, deadline: float, fn: Callable[..., Any], *args: Any) -> Any:
        remaining = deadline - time.perf_counter()
        if remaining <= 0:
            raise RetrievalTimeoutError(self.deadline_s, stage)
        fut = self._executor.submit(fn, *args)
        try:
            return fut.result(timeout=remaining)
        except FutureTimeout:
            fut.cancel()
            raise RetrievalTimeoutError(self.deadline_s, stage) from None

    def _check_partition_model(self, shop: str, lang: str) -> None:
        info = self.index.partition_info(shop, lang)
        if info is not None and info.model_version != self.pipeline.model_version:
            raise DimensionMismatchError(
                info.dimension,
                self.pipeline.dimension,
                where=(
                    f"{shop}/{lang} indexed with {info.model_version!r}, queries use "
                    f"{self.pipeline.model_version!r}; reindex required"
                ),
            )

    def _search(
        self, shop: str, lang: str, vector: list[float], k: int, deadline: float
    ) -> list[ScoredEntry]:
        self._check_partition_model(shop, lang)
        entries = self._bounded(
            f"index_query:{lang}", deadline, self.index.query, shop, lang, vector, k
        )
        floor = self.floor()
        if floor:
            entries = [e for e in entries if e.similarity >= floor]
        return entries

    def _hydrate(self, shop: str, entries: list[ScoredEntry]) -> list[RetrievalResult]:
        names: dict[str, str] = {}
        if self.product_names is not None and entries:
            try:
                names = self.product_names(shop, [e.product_id for e in entries]) or {}
            except Exception as exc:  # best effort: le classement reste valide
                self._log.warning("retrieval_name_lookup_failed", shop=shop, error=str(exc))
        results: list[RetrievalResult] = []
        for e in entries:
            result = RetrievalResult(
                product_id=e.product_id,
                lang=e.lang,
                similarity=e.similarity,
                distance=e.distance,
                name=names.get(e.product_id),
            )
            try:
                snapshot = self.store.get(shop, e.product_id, e.lang)
            except Exception as exc:  # best effort: seuls les champs optionnels sont omis
                self._log.debug(
                    "retrieval_hydration_failed",
                    shop=shop,
                    product_id=e.product_id,
                    lang=e.lang,
                    error=str(exc),
                )
            else:
                result.title = snapshot.content.title
                result.description_text = html_to_text(snapshot.content.description_html)
            results.append(result)
        return results

    def retrieve(
        self, shop: str, query: str, target_lang: str | None = None, k: int | None = None
    ) -> RetrievalResponse:
        """
        Retourne les produits les plus proches de la requête, dans la langue demandée si possible.

        Args:
            shop: Identifiant de la boutique.
            query: Texte de la requête.
            target_lang: Langue demandée (normalisée; vide -> langue par défaut du système).
            k: Nombre maximal de résultats (défaut: `default_k`).

        Returns:
            RetrievalResponse: Résultats fusionnés, plafonnés à k, ordre déterministe.

        Raises:
            DimensionMismatchError: si la partition a été construite avec un autre modèle.
            RetrievalTimeoutError: si l'échéance est dépassée.
        """
        start = time.perf_counter()
        deadline = start + self.deadline_s
        shop_label = labelize_shop(shop, self.allowed_shops)
        RETRIEVAL_REQUESTS.labels(shop=shop_label).inc()
        try:
            return self._retrieve(shop, query, target_lang, k, deadline, shop_label)
        except (DimensionMismatchError, RetrievalTimeoutError) as exc:
            RETRIEVAL_ERRORS.labels(code=exc.code, shop=shop_label).inc()
            raise
        finally:
            RETRIEVAL_LATENCY.labels(shop=shop_label).observe(time.perf_counter() - start)

    def _retrieve(
        self,
        shop: str,
        query: str,
        target_lang: str | None,
        k: int | None,
        deadline: float,
        shop_label: str,
    ) -> RetrievalResponse:
        requested = normalize_lang_code(target_lang)
        settings = self.resolver.resolve(shop)
        default = settings.default_source_lang
        resolved = requested if requested in settings.effective_langs() else default
        reason: str | None = None
        if resolved != requested:
            reason = (
                "feature_disabled" if not settings.multi_lang_rag_enabled else "lang_not_enabled"
            )
        response = RetrievalResponse(requested_lang=requested, resolved_lang=resolved)
        limit = self.default_k if k is None else k
        if limit <= 0 or not (query or "").strip():
            response.fallback_applied = reason is not None
            return response

        self._check_partition_model(shop, resolved)
        try:
            vector = self._bounded("embed_query", deadline, self.pipeline.embed_query, query)
        except ProviderError as exc:
            RETRIEVAL_ERRORS.labels(code=exc.code, shop=shop_label).inc()
            self._log.warning("retrieval_query_embedding_failed", shop=shop, error=str(exc))
            response.fallback_applied = reason is not None
            return response

        entries = self._search(shop, resolved, vector, limit, deadline)
        merged_from_default = False
        if settings.multi_lang_rag_enabled and resolved != default and len(entries) < limit:
            seen = {e.product_id for e in entries}
            extra = [
                e
                for e in self._search(shop, default, vector, limit, deadline)
                if e.product_id not in seen
            ]
            if extra:
                entries = sorted(
                    [*entries, *extra], key=lambda e: (-e.similarity, e.product_id)
                )[:limit]
                merged_from_default = any(e.lang == default for e in entries)
                if merged_from_default and reason is None:
                    reason = "sparse_target"

        response.fallback_applied = resolved != requested or merged_from_default
        if response.fallback_applied:
            RETRIEVAL_FALLBACK.labels(reason=reason or "sparse_target", shop=shop_label).inc()
            self._log.info(
                "retrieval_fallback_applied",
                shop=shop,
                requested_lang=requested,
                resolved_lang=resolved,
                reason=reason,
                merged_from_default=merged_from_default,
            )
        response.results = self._hydrate(shop, entries)
        return response
