"""Snapshot Store: dernier contenu par (boutique, produit, langue) et détection de changement.

Le store ne déclenche jamais d'embedding lui-même; c'est l'orchestrateur de synchronisation qui
réagit au résultat de `upsert`.

Suppression logique: chaque tombstone porte sa cause (`TombstoneReason`). Un upsert sur un produit
retiré du catalogue le réactive; un upsert dans une langue désactivée le laisse tombstoné.
"""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from datetime import UTC, datetime

from multilang_rag.domain.canonical import normalize_lang_code, snapshot_content_hash
from multilang_rag.domain.errors import NotFoundError, SnapshotValidationError
from multilang_rag.domain.models import (
    ProductSnapshot,
    SnapshotContent,
    TombstoneReason,
    UpsertOutcome,
)


def validate_snapshot_input(product_id: str, content: SnapshotContent) -> None:
    """Valide un snapshot entrant.

    Raises:
        SnapshotValidationError: si l'identifiant produit ou le titre est vide.
    """
    if not product_id or not str(product_id).strip():
        raise SnapshotValidationError("product_id must not be empty")
    if not content.title or not content.title.strip():
        raise SnapshotValidationError(f"snapshot title must not be empty (product {product_id})")


class SnapshotStore(ABC):
    """Interface du stockage de snapshots."""

    @abstractmethod
    def upsert(
        self,
        shop: str,
        product_id: str,
        lang: str,
        content: SnapshotContent,
        now: datetime | None = None,
    ) -> UpsertOutcome:
        """Stocke un snapshot et indique si son hash a changé."""
        raise NotImplementedError

    @abstractmethod
    def get(
        self, shop: str, product_id: str, lang: str, include_tombstoned: bool = False
    ) -> ProductSnapshot:
        """Retourne le snapshot ou lève `NotFoundError`."""
        raise NotImplementedError

    @abstractmethod
    def list_languages(
        self, shop: str, product_id: str, include_tombstoned: bool = False
    ) -> set[str]:
        """Langues disposant d'un snapshot (actif par défaut) pour ce produit."""
        raise NotImplementedError

    @abstractmethod
    def list_products(self, shop: str, lang: str, include_tombstoned: bool = False) -> list[str]:
        """Produits disposant d'un snapshot dans cette langue (triés)."""
        raise NotImplementedError

    @abstractmethod
    def tombstone(
        self,
        shop: str,
        product_id: str,
        lang: str,
        now: datetime | None = None,
        reason: TombstoneReason = TombstoneReason.PRODUCT_REMOVED,
    ) -> bool:
        """Marque un snapshot comme supprimé logiquement. Retourne False s'il est absent."""
        raise NotImplementedError

    @abstractmethod
    def restore(
        self, shop: str, product_id: str, lang: str, reason: TombstoneReason | None = None
    ) -> bool:
        """Annule une suppression logique (seulement celle de cause `reason` si fournie).

        Retourne False si rien n'a été restauré.
        """
        raise NotImplementedError

    @abstractmethod
    def purge_tombstoned(self, older_than: datetime) -> int:
        """Supprime définitivement les snapshots tombstonés avant `older_than`."""
        raise NotImplementedError


class InMemorySnapshotStore(SnapshotStore):
    """Implémentation en mémoire, thread-safe."""

    def __init__(self) -> None:
        """Initialize an empty in-memory snapshot store."""
        self._rows: dict[tuple[str, str, str], ProductSnapshot] = {}
        self._lock = threading.Lock()

    def upsert(
        self,
        shop: str,
        product_id: str,
        lang: str,
        content: SnapshotContent,
        now: datetime | None = None,
    ) -> UpsertOutcome:
        """
        Stocke un snapshot et compare son hash au snapshot précédent.

        Un snapshot retiré du catalogue (`PRODUCT_REMOVED`) est réactivé; un snapshot d'une langue
        désactivée reste tombstoné.

        Args:
            shop: Identifiant de la boutique.
            product_id: Identifiant du produit.
            lang: Code langue (normalisé).
            content: Contenu du snapshot.
            now: Horodatage (défaut: maintenant, UTC).

        Returns:
            UpsertOutcome: NEW, CHANGED ou UNCHANGED.

        Raises:
            SnapshotValidationError: si le titre est vide.
        """
        validate_snapshot_input(product_id, content)
        lang = normalize_lang_code(lang)
        content_hash = snapshot_content_hash(content)
        ts = now or datetime.now(UTC)
        key = (shop, product_id, lang)
        with self._lock:
            prior = self._rows.get(key)
            if prior is None:
                outcome, revision = UpsertOutcome.NEW, 1
            elif prior.content_hash != content_hash:
                outcome, revision = UpsertOutcome.CHANGED, prior.revision + 1
            else:
                outcome, revision = UpsertOutcome.UNCHANGED, prior.revision
            keep_tombstone = (
                prior is not None
                and prior.is_tombstoned
                and prior.tombstone_reason is not TombstoneReason.PRODUCT_REMOVED
            )
            self._rows[key] = ProductSnapshot(
                shop=shop,
                product_id=product_id,
                lang=lang,
                content=content.model_copy(deep=True),
                content_hash=content_hash,
                revision=revision,
                updated_at=ts if prior is None or outcome.changed else prior.updated_at,
                tombstoned_at=prior.tombstoned_at if keep_tombstone else None,
                tombstone_reason=prior.tombstone_reason if keep_tombstone else None,
            )
        return outcome

    def get(
        self, shop: str, product_id: str, lang: str, include_tombstoned: bool = False
    ) -> ProductSnapshot:
        """Retourne le snapshot (copie) ou lève `NotFoundError`."""
        lang = normalize_lang_code(lang)
        row = self._rows.get((shop, product_id, lang))
        if row is None or (row.is_tombstoned and not include_tombstoned):
            raise NotFoundError(shop, product_id, lang)
        return row.model_copy(deep=True)

    def list_languages(
        self, shop: str, product_id: str, include_tombstoned: bool = False
    ) -> set[str]:
        """Langues disposant d'un snapshot (actif par défaut) pour ce produit."""
        with self._lock:
            return {
                lang
                for (s, p, lang), row in self._rows.items()
                if s == shop and p == product_id and (include_tombstoned or not row.is_tombstoned)
            }

    def list_products(self, shop: str, lang: str, include_tombstoned: bool = False) -> list[str]:
        """Produits disposant d'un snapshot dans cette langue (triés)."""
        lang = normalize_lang_code(lang)
        with self._lock:
            return sorted(
                p
                for (s, p, lg), row in self._rows.items()
                if s == shop and lg == lang and (include_tombstoned or not row.is_tombstoned)
            )

    def tombstone(
        self,
        shop: str,
        product_id: str,
        lang: str,
        now: datetime | None = None,
        reason: TombstoneReason = TombstoneReason.PRODUCT_REMOVED,
    ) -> bool:
        """Marque un snapshot comme supprimé (un retrait produit prime sur la langue)."""
        key = (shop, product_id, normalize_lang_code(lang))
        with self._lock:
            row = self._rows.get(key)
            if row is None:
                return False
            if not row.is_tombstoned:
                self._rows[key] = row.model_copy(
                    update={"tombstoned_at": now or datetime.now(UTC), "tombstone_reason": reason}
                )
            else:
                merged = TombstoneReason.merge(row.tombstone_reason, reason)
                if merged is not row.tombstone_reason:
                    self._rows[key] = row.model_copy(update={"tombstone_reason": merged})
            return True

    def restore(
        self, shop: str, product_id: str, lang: str, reason: TombstoneReason | None = None
    ) -> bool:
        """Annule une suppression logique (seulement celle de cause `reason` si fournie)."""
        key = (shop, product_id, normalize_lang_code(lang))
        with self._lock:
            row = self._rows.get(key)
            if row is None or not row.is_tombstoned:
                return False
            if reason is not None and row.tombstone_reason is not reason:
                return False
            self._rows[key] = row.model_copy(
                update={"tombstoned_at": None, "tombstone_reason": None}
            )
            return True

    def purge_tombstoned(self, older_than: datetime) -> int:
        """Supprime définitivement les snapshots tombstonés avant `older_than`."""
        with self._lock:
            expired = [
                key
                for key, row in self._rows.items()
                if row.tombstoned_at is not None and row.tombstoned_at <= older_than
            ]
            for key in expired:
                del self._rows[key]
        return len(expired)
