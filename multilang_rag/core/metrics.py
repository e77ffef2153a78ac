"""
Métriques Prometheus du cœur de récupération multilingue.

Ce module définit les métriques exposées au collaborateur d'observabilité: appels au fournisseur
d'embeddings, états de fraîcheur de la synchronisation, opérations de l'index vectoriel et
requêtes de retrieval.
"""

from prometheus_client import Counter, Gauge, Histogram

# Embedding pipeline
EMBEDDING_PROVIDER_CALLS = Counter(
    "embedding_provider_calls_total",
    "Total embedding provider calls",
    ["model", "result"],
)
EMBEDDING_PIPELINE_SKIPS = Counter(
    "embedding_pipeline_skips_total",
    "Embedding ensure calls satisfied without a provider call",
    ["model"],
)

# Sync orchestrator
SYNC_ITEMS = Counter(
    "sync_items_total",
    "Sync work items by outcome state",
    ["state"],
)
SYNC_FAILED_ITEMS = Gauge(
    "sync_failed_items",
    "Current number of (product, language) items in FAILED state",
)

# Vector store ops
VECSTORE_OPS = Counter(
    "vecstore_op_total",
    "Total vector index operations",
    ["op", "backend"],
)
VECSTORE_OP_LATENCY = Histogram(
    "vecstore_op_latency_seconds",
    "Latency of vector index operations",
    ["op", "backend"],
)

# Retrieval
RETRIEVAL_REQUESTS = Counter(
    "retrieval_requests_total",
    "Total retrieval operations",
    ["shop"],
)
RETRIEVAL_ERRORS = Counter(
    "retrieval_errors_total",
    "Total retrieval errors",
    ["code", "shop"],
)
RETRIEVAL_LATENCY = Histogram(
    "retrieval_latency_seconds",
    "Latency of retrieval operations",
    ["shop"],
)
RETRIEVAL_FALLBACK = Counter(
    "retrieval_fallback_total",
    "Retrievals answered (partly) from the default source language",
    ["reason", "shop"],
)


def _normalize_allowed(allowed: list[str] | str | None) -> list[str]:
    """Normalize allowed values from settings (list or CSV string)."""
    if not allowed:
        return []
    if isinstance(allowed, list):
        if len(allowed) == 1 and "," in (allowed[0] or ""):
            return [s.strip() for s in allowed[0].split(",") if s.strip()]
        return [str(x).strip() for x in allowed if str(x).strip()]
    return [s.strip() for s in str(allowed).split(",") if s.strip()]


def labelize_shop(shop: str | None, allowed: list[str] | str | None) -> str:
    """Project shop label through a whitelist; otherwise 'unknown'."""
    vals = set(_normalize_allowed(allowed))
    if not vals:
        return shop or "default"
    return (shop or "").strip() if (shop or "").strip() in vals else "unknown"
