"""Taxonomie d'erreurs du cœur de récupération multilingue.

Seules `DimensionMismatchError` et `RetrievalTimeoutError` remontent à l'appelant du retrieval;
les autres erreurs sont isolées par la synchronisation ou dégradées (fallback, hydratation
partielle).
"""

from __future__ import annotations


class MultiLangRagError(RuntimeError):
    """Erreur de base du package."""

    code = "error"


class NotFoundError(MultiLangRagError):
    """Snapshot ou produit absent."""

    code = "not_found"

    def __init__(self, shop: str, product_id: str, lang: str | None = None) -> None:
        """Initialize a not-found error for a (shop, product, lang) key."""
        self.shop = shop
        self.product_id = product_id
        self.lang = lang
        where = f"{shop}/{product_id}" + (f"/{lang}" if lang else "")
        super().__init__(f"snapshot not found: {where}")


class SnapshotValidationError(MultiLangRagError, ValueError):
    """Snapshot mal formé (ex: titre vide)."""

    code = "validation"


class ProviderError(MultiLangRagError):
    """Échec du fournisseur d'embeddings ou du backend d'index (retryable)."""

    code = "provider"

    def __init__(self, message: str, attempts: int = 1) -> None:
        """Initialize a provider error with the number of attempts made."""
        self.attempts = attempts
        super().__init__(message)


class DimensionMismatchError(MultiLangRagError):
    """Dimension de vecteur incompatible avec la partition (réindexation requise)."""

    code = "dimension_mismatch"

    def __init__(self, expected: int, actual: int, where: str = "") -> None:
        """Initialize a dimension mismatch error."""
        self.expected = expected
        self.actual = actual
        suffix = f" ({where})" if where else ""
        super().__init__(f"vector dimension mismatch: expected {expected}, got {actual}{suffix}")


class ConfigError(MultiLangRagError):
    """Configuration invalide (ex: langue par défaut non activée, modèle inconnu)."""

    code = "config"


class StaleWriteError(MultiLangRagError):
    """Écriture rejetée: l'index contient déjà un enregistrement plus récent."""

    code = "stale_write"

    def __init__(self, stored_revision: int, attempted_revision: int) -> None:
        """Initialize a stale write error with both revisions."""
        self.stored_revision = stored_revision
        self.attempted_revision = attempted_revision
        super().__init__(
            f"stale write rejected: stored revision {stored_revision} "
            f"> attempted {attempted_revision}"
        )


class RetrievalTimeoutError(MultiLangRagError):
    """Le retrieval a dépassé son échéance."""

    code = "timeout"

    def __init__(self, deadline_s: float, stage: str) -> None:
        """Initialize a timeout error with the deadline and the stage that overran."""
        self.deadline_s = deadline_s
        self.stage = stage
        super().__init__(f"retrieval deadline of {deadline_s:.3f}s exceeded during {stage}")
