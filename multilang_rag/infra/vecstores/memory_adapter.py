"""
In-memory vector index partitioned by (shop, language).

Exact cosine search with numpy. Each partition keeps an immutable state (records, live ids and
normalized matrix) that writers rebuild and swap under the partition lock; readers take the
current state once and never lock. Integrates with vecstore metrics.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from datetime import UTC, datetime

import numpy as np
import structlog

from multilang_rag.core.constants import COSINE_EPSILON
from multilang_rag.core.metrics import VECSTORE_OP_LATENCY, VECSTORE_OPS
from multilang_rag.domain.errors import ConfigError, DimensionMismatchError, StaleWriteError
from multilang_rag.domain.models import EmbeddingRecord, ScoredEntry, TombstoneReason
from multilang_rag.infra.vecstores.base import PartitionInfo, VectorIndex


def normalize_vector(vector: list[float] | np.ndarray) -> np.ndarray:
    """Normalise un vecteur (L2). Un vecteur nul reste nul."""
    arr = np.asarray(vector, dtype=np.float32)
    norm = float(np.linalg.norm(arr))
    if norm <= COSINE_EPSILON:
        return np.zeros_like(arr)
    return arr / norm


class _PartitionState:
    """État immuable d'une partition; remplacé en bloc à chaque écriture."""

    __slots__ = ("records", "ids", "matrix", "native")

    def __init__(self, records: dict[str, EmbeddingRecord], ids: tuple[str, ...], matrix, native):
        self.records = records
        self.ids = ids
        self.matrix = matrix
        self.native = native


class _Partition:
    def __init__(self, shop: str, lang: str, model_version: str, doc_format: str, dimension: int):
        self.shop = shop
        self.lang = lang
        self.model_version = model_version
        self.doc_format = doc_format
        self.dimension = dimension
        self.lock = threading.Lock()
        self.state = _PartitionState({}, (), np.zeros((0, dimension), dtype=np.float32), None)


class InMemoryVectorIndex(VectorIndex):
    """In-memory index with per-partition write serialization and lock-free reads."""

    backend = "memory"

    def __init__(self) -> None:
        """Initialize an empty in-memory vector index."""
        self._partitions: dict[tuple[str, str], _Partition] = {}
        self._lock = threading.Lock()
        self._log = structlog.get_logger(__name__).bind(
            component="vector_index", backend=self.backend
        )

    # ------------------------------------------------------------------
    # Hooks (surchargés par les backends natifs)
    # ------------------------------------------------------------------

    def _build_native(self, part: _Partition, matrix: np.ndarray):
        return None

    def _scores(self, state: _PartitionState, q: np.ndarray) -> np.ndarray:
        return state.matrix @ q

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _observe(self, op: str, start: float) -> None:
        VECSTORE_OPS.labels(op=op, backend=self.backend).inc()
        VECSTORE_OP_LATENCY.labels(op=op, backend=self.backend).observe(
            time.perf_counter() - start
        )

    def _commit(self, part: _Partition, records: dict[str, EmbeddingRecord]) -> None:
        live = tuple(sorted(pid for pid, rec in records.items() if not rec.is_tombstoned))
        if live:
            matrix = np.vstack([normalize_vector(records[pid].vector) for pid in live])
        else:
            matrix = np.zeros((0, part.dimension), dtype=np.float32)
        part.state = _PartitionState(records, live, matrix, self._build_native(part, matrix))

    @contextmanager
    def _write(
        self, shop: str, lang: str, template: EmbeddingRecord | None = None
    ) -> Iterator[_Partition | None]:
        """Verrouille la partition en écriture (création depuis `template` si absente)."""
        key = (shop, lang)
        while True:
            with self._lock:
                part = self._partitions.get(key)
                if part is None and template is not None:
                    part = _Partition(
                        shop, lang, template.model_version, template.doc_format, template.dimension
                    )
                    self._partitions[key] = part
            if part is None:
                yield None
                return
            with part.lock:
                # la partition a pu être retirée entre les deux verrous
                if self._partitions.get(key) is not part:
                    continue
                try:
                    yield part
                finally:
                    if not part.state.records:
                        with self._lock:
                            if self._partitions.get(key) is part:
                                del self._partitions[key]
                return

    def _mutate(
        self, shop: str, lang: str, mutate: Callable[[dict[str, EmbeddingRecord]], int]
    ) -> int:
        with self._write(shop, lang) as part:
            if part is None:
                return 0
            records = dict(part.state.records)
            changed = mutate(records)
            if changed:
                self._commit(part, records)
            return changed

    def _langs_of(self, shop: str, lang: str | None) -> list[str]:
        if lang is not None:
            return [lang]
        with self._lock:
            return sorted(lg for (s, lg) in self._partitions if s == shop)

    # ------------------------------------------------------------------
    # VectorIndex
    # ------------------------------------------------------------------

    def upsert(self, record: EmbeddingRecord) -> None:
        """
        Insère ou remplace le vecteur d'un produit dans sa partition.

        Args:
            record: Enregistrement à écrire (porte la révision du snapshot source).

        Raises:
            DimensionMismatchError: si la dimension diffère de celle de la partition.
            ConfigError: si la version de modèle diffère de celle de la partition.
            StaleWriteError: si une révision plus récente est déjà stockée.
        """
        start = time.perf_counter()
        with self._write(record.shop, record.lang, template=record) as part:
            if record.dimension != part.dimension:
                raise DimensionMismatchError(
                    part.dimension, record.dimension, where=f"{record.shop}/{record.lang}"
                )
            if record.model_version != part.model_version:
                raise ConfigError(
                    f"partition {record.shop}/{record.lang} holds {part.model_version!r}; "
                    f"reset it before writing {record.model_version!r}"
                )
            stored = part.state.records.get(record.product_id)
            if stored is not None and stored.revision > record.revision:
                self._log.warning(
                    "vector_index_stale_write_rejected",
                    shop=record.shop,
                    product_id=record.product_id,
                    lang=record.lang,
                    stored_revision=stored.revision,
                    attempted_revision=record.revision,
                )
                raise StaleWriteError(stored.revision, record.revision)
            records = dict(part.state.records)
            records[record.product_id] = record.model_copy(deep=True)
            self._commit(part, records)
        self._observe("upsert", start)

    def get(self, shop: str, product_id: str, lang: str) -> EmbeddingRecord | None:
        """Retourne une copie de l'enregistrement stocké, ou None."""
        part = self._partitions.get((shop, lang))
        if part is None:
            return None
        rec = part.state.records.get(product_id)
        return rec.model_copy(deep=True) if rec is not None else None

    def query(self, shop: str, lang: str, vector: list[float], k: int) -> list[ScoredEntry]:
        """
        Recherche les k plus proches voisins dans une partition.

        Args:
            shop: Identifiant de la boutique.
            lang: Langue de la partition.
            vector: Vecteur requête.
            k: Nombre maximal de résultats.

        Returns:
            list[ScoredEntry]: Entrées par similarité décroissante, égalités par product_id.
        """
        start = time.perf_counter()
        part = self._partitions.get((shop, lang))
        if part is None:
            self._observe("query", start)
            return []
        if len(vector) != part.dimension:
            raise DimensionMismatchError(part.dimension, len(vector), where=f"{shop}/{lang}")
        state = part.state
        if k <= 0 or not state.ids:
            self._observe("query", start)
            return []
        sims = self._scores(state, normalize_vector(vector))
        ranked = sorted(
            ((min(1.0, max(-1.0, float(sims[i]))), state.ids[i]) for i in range(len(state.ids))),
            key=lambda item: (-item[0], item[1]),
        )
        results = [
            ScoredEntry(product_id=pid, lang=lang, similarity=sim, distance=1.0 - sim)
            for sim, pid in ranked[:k]
        ]
        self._observe("query", start)
        return results

    def partition_info(self, shop: str, lang: str) -> PartitionInfo | None:
        """Retourne la description de la partition, ou None si elle est vide."""
        part = self._partitions.get((shop, lang))
        if part is None:
            return None
        state = part.state
        return PartitionInfo(
            shop=shop,
            lang=lang,
            model_version=part.model_version,
            doc_format=part.doc_format,
            dimension=part.dimension,
            live=len(state.ids),
            tombstoned=len(state.records) - len(state.ids),
        )

    def product_ids(self, shop: str, lang: str, include_tombstoned: bool = False) -> list[str]:
        """Produits présents dans une partition (triés)."""
        part = self._partitions.get((shop, lang))
        if part is None:
            return []
        state = part.state
        if include_tombstoned:
            return sorted(state.records)
        return list(state.ids)

    def tombstone(
        self,
        shop: str,
        product_id: str,
        lang: str | None = None,
        now: datetime | None = None,
        reason: TombstoneReason = TombstoneReason.PRODUCT_REMOVED,
    ) -> int:
        """Exclut un produit des requêtes (une langue, ou toutes si `lang` est None).

        Sur une entrée déjà tombstonée, seule la cause est mise à jour (le retrait produit prime).
        """
        start = time.perf_counter()
        ts = now or datetime.now(UTC)

        def _apply(records: dict[str, EmbeddingRecord]) -> int:
            rec = records.get(product_id)
            if rec is None:
                return 0
            if not rec.is_tombstoned:
                records[product_id] = rec.model_copy(
                    update={"tombstoned_at": ts, "tombstone_reason": reason}
                )
                return 1
            merged = TombstoneReason.merge(rec.tombstone_reason, reason)
            if merged is rec.tombstone_reason:
                return 0
            records[product_id] = rec.model_copy(update={"tombstone_reason": merged})
            return 1

        count = sum(self._mutate(shop, lg, _apply) for lg in self._langs_of(shop, lang))
        self._observe("tombstone", start)
        return count

    def tombstone_partition(
        self,
        shop: str,
        lang: str,
        now: datetime | None = None,
        reason: TombstoneReason = TombstoneReason.LANG_DISABLED,
    ) -> int:
        """Exclut toute une partition des requêtes (langue désactivée)."""
        start = time.perf_counter()
        ts = now or datetime.now(UTC)

        def _apply(records: dict[str, EmbeddingRecord]) -> int:
            changed = 0
            for pid, rec in list(records.items()):
                if not rec.is_tombstoned:
                    records[pid] = rec.model_copy(
                        update={"tombstoned_at": ts, "tombstone_reason": reason}
                    )
                    changed += 1
            return changed

        count = self._mutate(shop, lang, _apply)
        self._observe("tombstone", start)
        return count

    def restore(
        self,
        shop: str,
        product_id: str,
        lang: str | None = None,
        reason: TombstoneReason | None = None,
    ) -> int:
        """Annule la suppression logique d'un produit (seulement celle de cause `reason`)."""
        start = time.perf_counter()

        def _apply(records: dict[str, EmbeddingRecord]) -> int:
            rec = records.get(product_id)
            if rec is None or not rec.is_tombstoned:
                return 0
            if reason is not None and rec.tombstone_reason is not reason:
                return 0
            records[product_id] = rec.model_copy(
                update={"tombstoned_at": None, "tombstone_reason": None}
            )
            return 1

        count = sum(self._mutate(shop, lg, _apply) for lg in self._langs_of(shop, lang))
        self._observe("restore", start)
        return count

    def delete(self, shop: str, product_id: str, lang: str | None = None) -> int:
        """Supprime définitivement les entrées d'un produit."""
        start = time.perf_counter()

        def _apply(records: dict[str, EmbeddingRecord]) -> int:
            return 1 if records.pop(product_id, None) is not None else 0

        count = sum(self._mutate(shop, lg, _apply) for lg in self._langs_of(shop, lang))
        self._observe("delete", start)
        return count

    def purge_tombstoned(self, older_than: datetime) -> int:
        """Supprime définitivement les entrées tombstonées avant `older_than`."""
        start = time.perf_counter()

        def _apply(records: dict[str, EmbeddingRecord]) -> int:
            expired = [
                pid
                for pid, rec in records.items()
                if rec.tombstoned_at is not None and rec.tombstoned_at <= older_than
            ]
            for pid in expired:
                del records[pid]
            return len(expired)

        with self._lock:
            keys = list(self._partitions)
        count = sum(self._mutate(shop, lang, _apply) for shop, lang in keys)
        self._observe("purge", start)
        return count

    def reset_partition(self, shop: str, lang: str) -> int:
        """Vide une partition; la prochaine écriture fixe modèle et dimension."""
        start = time.perf_counter()
        with self._write(shop, lang) as part:
            if part is None:
                count = 0
            else:
                count = len(part.state.records)
                self._commit(part, {})
        self._observe("reset", start)
        return count

    def stats(self, shop: str) -> dict[str, PartitionInfo]:
        """Statistiques par langue pour une boutique."""
        out: dict[str, PartitionInfo] = {}
        for lang in self._langs_of(shop, None):
            info = self.partition_info(shop, lang)
            if info is not None:
                out[lang] = info
        return out
