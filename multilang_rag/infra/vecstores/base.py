"""Interface de base pour les index vectoriels.

Ce module définit l'interface abstraite que doivent implémenter tous les index vectoriels
partitionnés par (boutique, langue).
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime

from pydantic import BaseModel

from multilang_rag.domain.models import EmbeddingRecord, ScoredEntry, TombstoneReason


class PartitionInfo(BaseModel):
    """Description d'une partition (boutique, langue) de l'index."""

    shop: str
    lang: str
    model_version: str
    doc_format: str
    dimension: int
    live: int = 0
    tombstoned: int = 0


class VectorIndex(ABC):
    """Interface abstraite pour les index vectoriels partitionnés.

    Chaque partition (boutique, langue) a une dimension et une version de modèle fixes et contient
    au plus une entrée par produit. Les requêtes ignorent les entrées tombstonées.
    """

    backend: str = "abstract"

    @abstractmethod
    def upsert(self, record: EmbeddingRecord) -> None:
        """Insère ou remplace le vecteur d'un produit.

        Raises:
            DimensionMismatchError: si la dimension diffère de celle de la partition.
            StaleWriteError: si la partition contient déjà une révision plus récente.
        """
        raise NotImplementedError

    @abstractmethod
    def get(self, shop: str, product_id: str, lang: str) -> EmbeddingRecord | None:
        """Retourne l'enregistrement stocké (tombstoné ou non), ou None."""
        raise NotImplementedError

    @abstractmethod
    def query(self, shop: str, lang: str, vector: list[float], k: int) -> list[ScoredEntry]:
        """Retourne jusqu'à k entrées par similarité décroissante (égalités: product_id croissant).

        Raises:
            DimensionMismatchError: si le vecteur requête n'a pas la dimension de la partition.
        """
        raise NotImplementedError

    @abstractmethod
    def partition_info(self, shop: str, lang: str) -> PartitionInfo | None:
        """Retourne la description de la partition, ou None si elle est vide."""
        raise NotImplementedError

    @abstractmethod
    def product_ids(self, shop: str, lang: str, include_tombstoned: bool = False) -> list[str]:
        """Produits présents dans une partition (triés)."""
        raise NotImplementedError

    @abstractmethod
    def tombstone(
        self,
        shop: str,
        product_id: str,
        lang: str | None = None,
        now: datetime | None = None,
        reason: TombstoneReason = TombstoneReason.PRODUCT_REMOVED,
    ) -> int:
        """Exclut un produit des requêtes (une langue, ou toutes si `lang` est None)."""
        raise NotImplementedError

    @abstractmethod
    def tombstone_partition(
        self,
        shop: str,
        lang: str,
        now: datetime | None = None,
        reason: TombstoneReason = TombstoneReason.LANG_DISABLED,
    ) -> int:
        """Exclut toute une partition des requêtes (langue désactivée)."""
        raise NotImplementedError

    @abstractmethod
    def restore(
        self,
        shop: str,
        product_id: str,
        lang: str | None = None,
        reason: TombstoneReason | None = None,
    ) -> int:
        """Annule la suppression logique d'un produit (seulement celle de cause `reason`)."""
        raise NotImplementedError

    @abstractmethod
    def delete(self, shop: str, product_id: str, lang: str | None = None) -> int:
        """Supprime définitivement les entrées d'un produit."""
        raise NotImplementedError

    @abstractmethod
    def purge_tombstoned(self, older_than: datetime) -> int:
        """Supprime définitivement les entrées tombstonées avant `older_than`."""
        raise NotImplementedError

    @abstractmethod
    def reset_partition(self, shop: str, lang: str) -> int:
        """Vide une partition (réindexation après changement de modèle)."""
        raise NotImplementedError

    @abstractmethod
    def stats(self, shop: str) -> dict[str, PartitionInfo]:
        """Statistiques par langue pour une boutique."""
        raise NotImplementedError
