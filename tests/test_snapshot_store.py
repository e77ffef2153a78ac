# ============================================================
# Tests : tests/test_snapshot_store.py
# Objet  : Snapshot Store en mémoire et via SQLAlchemy (sqlite mémoire).
# ============================================================
"""
Tests pour le stockage des snapshots.

Ce module teste la détection de changement, l'aller-retour upsert/get, les tombstones et la purge,
sur le store en mémoire comme sur le store SQL.
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest

from multilang_rag.domain.errors import NotFoundError, SnapshotValidationError
from multilang_rag.domain.models import TombstoneReason, UpsertOutcome
from multilang_rag.domain.snapshot_store import InMemorySnapshotStore
from multilang_rag.infra.repo.db import get_engine
from multilang_rag.infra.repo.snapshot_repo import SqlSnapshotStore
from tests.fakes import content

SHOP = "shop-1"


@pytest.fixture(params=["memory", "sql"])
def store(request):
    """Store de snapshots (mémoire ou sqlite mémoire)."""
    if request.param == "sql":
        return SqlSnapshotStore(get_engine("sqlite+pysqlite:///:memory:"))
    return InMemorySnapshotStore()


def test_upsert_reports_new_unchanged_changed(store) -> None:
    """Teste la détection de changement par hash."""
    assert store.upsert(SHOP, "p1", "en", content("Lamp")) is UpsertOutcome.NEW
    assert store.upsert(SHOP, "p1", "en", content(" Lamp ")) is UpsertOutcome.UNCHANGED
    assert store.upsert(SHOP, "p1", "en", content("Lamp v2")) is UpsertOutcome.CHANGED
    assert store.get(SHOP, "p1", "en").revision == 2


def test_round_trip_is_identical(store) -> None:
    """Teste que get retourne exactement le contenu stocké."""
    original = content(
        "Lampe à poser",
        "<p>Lumière <b>chaude</b> &amp; douce</p>",
        {"watts": 10, "colors": ["rouge", "bleu"], "size": {"h": 30, "w": 12.5}},
        [{"question": "Dimmable ?", "answer": "Oui"}],
    )
    store.upsert(SHOP, "p1", "fr", original)
    got = store.get(SHOP, "p1", "fr")
    assert got.content.model_dump() == original.model_dump()
    assert got.shop == SHOP and got.product_id == "p1" and got.lang == "fr"
    assert got.updated_at.tzinfo is not None


def test_get_missing_raises_not_found(store) -> None:
    """Teste le signal NotFound."""
    with pytest.raises(NotFoundError):
        store.get(SHOP, "nope", "en")


def test_empty_title_is_rejected(store) -> None:
    """Teste la validation du titre obligatoire."""
    with pytest.raises(SnapshotValidationError):
        store.upsert(SHOP, "p1", "en", content("   "))
    with pytest.raises(ValueError):
        store.upsert(SHOP, "", "en", content("Lamp"))
    with pytest.raises(NotFoundError):
        store.get(SHOP, "p1", "en")


def test_lang_codes_are_normalized(store) -> None:
    """Teste que les variantes régionales sont ramenées à leur préfixe."""
    store.upsert(SHOP, "p1", "en-US", content("Lamp"))
    assert store.get(SHOP, "p1", "EN").content.title == "Lamp"
    assert store.list_languages(SHOP, "p1") == {"en"}


def test_list_languages_and_products(store) -> None:
    """Teste les listes de langues et de produits."""
    store.upsert(SHOP, "p2", "en", content("B"))
    store.upsert(SHOP, "p1", "en", content("A"))
    store.upsert(SHOP, "p1", "hu", content("A hu"))
    store.upsert("other-shop", "p3", "en", content("C"))
    assert store.list_languages(SHOP, "p1") == {"en", "hu"}
    assert store.list_products(SHOP, "en") == ["p1", "p2"]
    assert store.list_products(SHOP, "hu") == ["p1"]


def test_tombstone_and_restore(store) -> None:
    """Teste la suppression logique et sa réversion."""
    store.upsert(SHOP, "p1", "en", content("A"))
    store.upsert(SHOP, "p1", "hu", content("A hu"))
    assert store.tombstone(SHOP, "p1", "hu") is True
    assert store.tombstone(SHOP, "missing", "hu") is False
    assert store.list_languages(SHOP, "p1") == {"en"}
    assert store.list_products(SHOP, "hu") == []
    assert store.list_products(SHOP, "hu", include_tombstoned=True) == ["p1"]
    with pytest.raises(NotFoundError):
        store.get(SHOP, "p1", "hu")
    assert store.get(SHOP, "p1", "hu", include_tombstoned=True).is_tombstoned
    assert store.restore(SHOP, "p1", "hu") is True
    assert store.restore(SHOP, "p1", "hu") is False
    assert store.get(SHOP, "p1", "hu").tombstoned_at is None


def test_upsert_keeps_language_tombstone(store) -> None:
    """Teste qu'un upsert dans une langue désactivée ne la réactive pas."""
    store.upsert(SHOP, "p1", "hu", content("A hu"))
    store.tombstone(SHOP, "p1", "hu", reason=TombstoneReason.LANG_DISABLED)
    assert store.upsert(SHOP, "p1", "hu", content("A hu v2")) is UpsertOutcome.CHANGED
    snap = store.get(SHOP, "p1", "hu", include_tombstoned=True)
    assert snap.is_tombstoned and snap.content.title == "A hu v2"
    assert snap.tombstone_reason is TombstoneReason.LANG_DISABLED


def test_upsert_revives_removed_product(store) -> None:
    """Teste qu'un produit retiré puis renvoyé par le catalogue redevient actif."""
    store.upsert(SHOP, "p1", "en", content("A"))
    store.tombstone(SHOP, "p1", "en", reason=TombstoneReason.PRODUCT_REMOVED)
    assert store.upsert(SHOP, "p1", "en", content("A v2")) is UpsertOutcome.CHANGED
    snap = store.get(SHOP, "p1", "en")
    assert snap.tombstoned_at is None and snap.tombstone_reason is None
    assert store.list_languages(SHOP, "p1") == {"en"}


def test_restore_filters_on_reason(store) -> None:
    """Teste que la restauration par cause ignore un produit retiré."""
    store.upsert(SHOP, "p1", "hu", content("A hu"))
    store.upsert(SHOP, "p2", "hu", content("B hu"))
    store.tombstone(SHOP, "p1", "hu", reason=TombstoneReason.LANG_DISABLED)
    store.tombstone(SHOP, "p2", "hu", reason=TombstoneReason.LANG_DISABLED)
    # retrait du produit pendant la désactivation: la cause devient PRODUCT_REMOVED
    assert store.tombstone(SHOP, "p2", "hu", reason=TombstoneReason.PRODUCT_REMOVED) is True
    assert store.list_languages(SHOP, "p2") == set()
    assert store.list_languages(SHOP, "p2", include_tombstoned=True) == {"hu"}

    assert store.restore(SHOP, "p1", "hu", reason=TombstoneReason.LANG_DISABLED) is True
    assert store.restore(SHOP, "p2", "hu", reason=TombstoneReason.LANG_DISABLED) is False
    removed = store.get(SHOP, "p2", "hu", include_tombstoned=True)
    assert removed.tombstone_reason is TombstoneReason.PRODUCT_REMOVED
    # une désactivation ultérieure ne masque pas le retrait
    store.tombstone(SHOP, "p2", "hu", reason=TombstoneReason.LANG_DISABLED)
    removed = store.get(SHOP, "p2", "hu", include_tombstoned=True)
    assert removed.tombstone_reason is TombstoneReason.PRODUCT_REMOVED


def test_purge_tombstoned(store) -> None:
    """Teste la purge définitive après la fenêtre de rétention."""
    t0 = datetime(2024, 1, 1, tzinfo=UTC)
    store.upsert(SHOP, "old", "en", content("Old"))
    store.upsert(SHOP, "recent", "en", content("Recent"))
    store.upsert(SHOP, "live", "en", content("Live"))
    store.tombstone(SHOP, "old", "en", now=t0)
    store.tombstone(SHOP, "recent", "en", now=t0 + timedelta(days=10))
    assert store.purge_tombstoned(older_than=t0 + timedelta(days=7)) == 1
    with pytest.raises(NotFoundError):
        store.get(SHOP, "old", "en", include_tombstoned=True)
    assert store.get(SHOP, "recent", "en", include_tombstoned=True).is_tombstoned
    assert store.get(SHOP, "live", "en").content.title == "Live"
