"""
Modèle de données du cœur de récupération multilingue.

Ce module définit les modèles Pydantic pour les snapshots de contenu produit par langue, les
paramètres de boutique, les enregistrements d'embedding et les résultats de retrieval.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from multilang_rag.domain.errors import ConfigError


class FreshnessState(str, Enum):
    """État de fraîcheur d'un couple (produit, langue)."""

    MISSING = "MISSING"
    STALE = "STALE"
    FRESH = "FRESH"
    FAILED = "FAILED"


class TombstoneReason(str, Enum):
    """Cause d'une suppression logique.

    Une langue désactivée est réversible par `enable_language`; un produit retiré du catalogue ne
    revient que si le collaborateur de contenu le renvoie.
    """

    LANG_DISABLED = "lang_disabled"
    PRODUCT_REMOVED = "product_removed"

    @staticmethod
    def merge(current: TombstoneReason | None, requested: TombstoneReason) -> TombstoneReason:
        """Cause retenue pour un élément tombstoné à nouveau (le retrait produit prime)."""
        if TombstoneReason.PRODUCT_REMOVED in (current, requested):
            return TombstoneReason.PRODUCT_REMOVED
        return requested


class UpsertOutcome(str, Enum):
    """Résultat d'un upsert de snapshot relativement au snapshot précédent."""

    NEW = "new"
    CHANGED = "changed"
    UNCHANGED = "unchanged"

    @property
    def changed(self) -> bool:
        """Indique si le hash de contenu a changé (ou est apparu)."""
        return self is not UpsertOutcome.UNCHANGED


class SnapshotContent(BaseModel):
    """
    Contenu brut d'un produit dans une langue.

    `specs_json` et `faq_json` sont des documents opaques; leur forme canonique est calculée
    par `multilang_rag.domain.canonical`.
    """

    title: str
    description_html: str = ""
    specs_json: dict[str, Any] = Field(default_factory=dict)
    faq_json: list[Any] = Field(default_factory=list)


class ProductSnapshot(BaseModel):
    """Dernier contenu connu pour (boutique, produit, langue) avec son empreinte."""

    shop: str
    product_id: str
    lang: str
    content: SnapshotContent
    content_hash: str
    revision: int = 1
    updated_at: datetime
    tombstoned_at: datetime | None = None
    tombstone_reason: TombstoneReason | None = None

    @property
    def is_tombstoned(self) -> bool:
        """Indique si le snapshot est en suppression logique."""
        return self.tombstoned_at is not None


class ShopSettings(BaseModel):
    """Configuration linguistique d'une boutique."""

    shop: str
    default_source_lang: str
    enabled_langs: list[str]
    multi_lang_rag_enabled: bool = False
    fail_closed: bool = False

    def ensure_valid(self) -> None:
        """Vérifie l'invariant: la langue par défaut fait partie des langues activées.

        Raises:
            ConfigError: si l'invariant est violé.
        """
        if self.default_source_lang not in self.enabled_langs:
            raise ConfigError(
                f"default_source_lang {self.default_source_lang!r} not in enabled_langs "
                f"{self.enabled_langs!r} for shop {self.shop!r}"
            )

    def effective_langs(self) -> list[str]:
        """Langues réellement servies: toutes les langues activées, ou la seule langue par défaut.

        La langue par défaut est toujours en tête.
        """
        if not self.multi_lang_rag_enabled:
            return [self.default_source_lang]
        rest = [lang for lang in self.enabled_langs if lang != self.default_source_lang]
        return [self.default_source_lang, *rest]


class EmbeddingRecord(BaseModel):
    """
    Vecteur d'un snapshot sous une version de modèle donnée.

    `content_hash` et `revision` sont ceux du snapshot au moment du calcul; l'index s'en sert
    pour rejeter les écritures obsolètes.
    """

    shop: str
    product_id: str
    lang: str
    model_version: str
    doc_format: str
    vector: list[float]
    content_hash: str
    revision: int
    state: FreshnessState = FreshnessState.FRESH
    updated_at: datetime
    tombstoned_at: datetime | None = None
    tombstone_reason: TombstoneReason | None = None

    @property
    def dimension(self) -> int:
        """Dimension du vecteur."""
        return len(self.vector)

    @property
    def is_tombstoned(self) -> bool:
        """Indique si l'enregistrement est exclu des requêtes."""
        return self.tombstoned_at is not None


class ScoredEntry(BaseModel):
    """Résultat brut de l'index: produit, langue de la partition et scores."""

    product_id: str
    lang: str
    similarity: float
    distance: float


class RetrievalResult(BaseModel):
    """Résultat de retrieval renvoyé au consommateur RAG.

    Les champs d'affichage restent `None` tant que l'hydratation n'a pas réussi.
    """

    product_id: str
    lang: str
    similarity: float
    distance: float
    name: str | None = None
    title: str | None = None
    description_text: str | None = None


class RetrievalResponse(BaseModel):
    """Liste de résultats fusionnée, plafonnée à k, avec la politique de langue appliquée."""

    results: list[RetrievalResult] = Field(default_factory=list)
    requested_lang: str
    resolved_lang: str
    fallback_applied: bool = False
