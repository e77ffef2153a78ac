# ============================================================
# Module : multilang_rag/services/sync_orchestrator.py
# Objet  : Réconcilier snapshots et configuration des langues en travail d'embedding.
# Notes  : une machine d'état de fraîcheur par (boutique, produit, langue);
#          MISSING -> STALE -> FRESH, STALE -> FAILED, FAILED -> STALE (réarmé).
# ============================================================

from __future__ import annotations

import threading
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from datetime import UTC, datetime, timedelta

import structlog
from pydantic import BaseModel, Field

from multilang_rag.config.flags import ff_sync_enabled
from multilang_rag.core.metrics import SYNC_FAILED_ITEMS, SYNC_ITEMS
from multilang_rag.domain.canonical import normalize_lang_code
from multilang_rag.domain.errors import (
    ConfigError,
    DimensionMismatchError,
    NotFoundError,
    ProviderError,
    StaleWriteError,
)
from multilang_rag.domain.models import (
    FreshnessState,
    ShopSettings,
    SnapshotContent,
    TombstoneReason,
    UpsertOutcome,
)
from multilang_rag.domain.snapshot_store import SnapshotStore
from multilang_rag.infra.ops.locks import KeyedLocks, make_sync_key
from multilang_rag.services.embedding_pipeline import EmbeddingPipeline

ItemKey = tuple[str, str, str]


class ItemStatus(BaseModel):
    """État de fraîcheur d'un couple (produit, langue) d'une boutique."""

    shop: str
    product_id: str
    lang: str
    state: FreshnessState
    attempts: int = 0
    last_error: str | None = None
    updated_at: datetime


class SyncReport(BaseModel):
    """Bilan d'un passage de synchronisation pour une boutique."""

    shop: str
    skipped: bool = False
    fresh: int = 0
    failed: list[ItemStatus] = Field(default_factory=list)
    missing: int = 0


class PurgeReport(BaseModel):
    """Bilan d'une purge des tombstones expirés."""

    snapshots: int = 0
    embeddings: int = 0


class SyncOrchestrator:
    """
    Pilote Snapshot Store -> Embedding Pipeline -> Vector Index.

    La configuration de la boutique est passée explicitement à chaque appel. Les travaux sur une
    même clé sont sérialisés par un verrou par clé; des clés distinctes s'exécutent en parallèle
    dans un pool de threads. Un échec sur une clé n'interrompt jamais les autres.
    """

    def __init__(
        self,
        store: SnapshotStore,
        pipeline: EmbeddingPipeline,
        retention: timedelta = timedelta(days=7),
        max_workers: int = 4,
        sync_enabled: Callable[[], bool] = ff_sync_enabled,
    ) -> None:
        """
        Initialise l'orchestrateur.

        Args:
            store: Store de snapshots.
            pipeline: Pipeline d'embedding (porte l'index vectoriel).
            retention: Fenêtre de rétention des tombstones.
            max_workers: Taille du pool pour la synchronisation concurrente.
            sync_enabled: Flag d'écriture (désactivé: les synchronisations sont ignorées).
        """
        self.store = store
        self.pipeline = pipeline
        self.index = pipeline.index
        self.retention = retention
        self.max_workers = max(1, max_workers)
        self.sync_enabled = sync_enabled
        self._locks = KeyedLocks()
        self._states: dict[ItemKey, ItemStatus] = {}
        self._lock = threading.Lock()
        self._log = structlog.get_logger(__name__).bind(component="sync_orchestrator")

    # ------------------------------------------------------------------
    # Machine d'état
    # ------------------------------------------------------------------

    def _set(
        self, key: ItemKey, state: FreshnessState, error: str | None = None, attempts: int = 0
    ) -> ItemStatus:
        shop, product_id, lang = key
        status = ItemStatus(
            shop=shop,
            product_id=product_id,
            lang=lang,
            state=state,
            attempts=attempts,
            last_error=error,
            updated_at=datetime.now(UTC),
        )
        with self._lock:
            self._states[key] = status
            failed = sum(1 for s in self._states.values() if s.state is FreshnessState.FAILED)
        SYNC_FAILED_ITEMS.set(failed)
        return status

    def _forget(self, predicate: Callable[[ItemKey], bool]) -> None:
        with self._lock:
            for key in [k for k in self._states if predicate(k)]:
                del self._states[key]
            failed = sum(1 for s in self._states.values() if s.state is FreshnessState.FAILED)
        SYNC_FAILED_ITEMS.set(failed)

    def state_of(self, shop: str, product_id: str, lang: str) -> FreshnessState:
        """Retourne l'état de fraîcheur courant (MISSING si inconnu)."""
        status = self._states.get((shop, product_id, normalize_lang_code(lang)))
        return status.state if status is not None else FreshnessState.MISSING

    def failed_items(self, shop: str | None = None) -> list[ItemStatus]:
        """Liste les éléments en état FAILED (visibilité opérateur), triés par clé."""
        with self._lock:
            items = [
                s
                for key, s in self._states.items()
                if s.state is FreshnessState.FAILED and (shop is None or key[0] == shop)
            ]
        return sorted(items, key=lambda s: (s.shop, s.product_id, s.lang))

    # ------------------------------------------------------------------
    # Entrées
    # ------------------------------------------------------------------

    def ingest(
        self,
        settings: ShopSettings,
        product_id: str,
        lang: str,
        content: SnapshotContent,
        process: bool = True,
    ) -> UpsertOutcome:
        """
        Enregistre un snapshot entrant et planifie son embedding si nécessaire.

        Un hash nouveau ou modifié fait passer STALE toutes les langues servies du produit qui ont
        un snapshot; les langues sœurs inchangées sont revalidées sans appel au fournisseur.
        Un produit retiré du catalogue puis renvoyé est réactivé par le store.

        Args:
            settings: Configuration résolue de la boutique.
            product_id: Identifiant du produit.
            lang: Langue du snapshot.
            content: Contenu du snapshot.
            process: Exécute immédiatement la synchronisation des éléments STALE.

        Returns:
            UpsertOutcome: NEW, CHANGED ou UNCHANGED.
        """
        shop = settings.shop
        lang = normalize_lang_code(lang)
        outcome = self.store.upsert(shop, product_id, lang, content)
        served = settings.effective_langs()
        if outcome.changed:
            langs = self.store.list_languages(shop, product_id)
            keys = [(shop, product_id, lg) for lg in served if lg in langs]
        elif lang in served and self.state_of(shop, product_id, lang) is not FreshnessState.FRESH:
            keys = [(shop, product_id, lang)]
        else:
            keys = []
        for key in keys:
            self._set(key, FreshnessState.STALE)
        if process and keys:
            self._run(settings, keys)
        return outcome

    def sync_item(self, settings: ShopSettings, product_id: str, lang: str) -> FreshnessState:
        """
        Synchronise un couple (produit, langue) sous son verrou.

        Args:
            settings: Configuration résolue de la boutique.
            product_id: Identifiant du produit.
            lang: Langue à synchroniser.

        Returns:
            FreshnessState: État après synchronisation.
        """
        shop = settings.shop
        lang = normalize_lang_code(lang)
        key = (shop, product_id, lang)
        if not self.sync_enabled():
            SYNC_ITEMS.labels(state="SKIPPED").inc()
            return self.state_of(*key)
        if lang not in settings.effective_langs():
            return self.state_of(*key)
        with self._locks.hold(make_sync_key(shop, product_id, lang)):
            try:
                snapshot = self.store.get(shop, product_id, lang)
            except NotFoundError:
                self._forget(lambda k: k == key)
                return FreshnessState.MISSING
            if self.state_of(*key) is FreshnessState.FAILED:
                self._log.info("sync_item_rearmed", shop=shop, product_id=product_id, lang=lang)
            self._set(key, FreshnessState.STALE)
            try:
                self.pipeline.ensure(snapshot)
            except ProviderError as exc:
                return self._fail(key, exc, attempts=exc.attempts)
            except (DimensionMismatchError, ConfigError) as exc:
                return self._fail(key, exc)
            except StaleWriteError:
                stored = self.index.get(shop, product_id, lang)
                state = (
                    FreshnessState.FRESH
                    if self.pipeline.is_current(stored, snapshot)
                    else FreshnessState.STALE
                )
                self._set(key, state)
                SYNC_ITEMS.labels(state=state.value).inc()
                return state
            self._set(key, FreshnessState.FRESH)
            SYNC_ITEMS.labels(state=FreshnessState.FRESH.value).inc()
            return FreshnessState.FRESH

    def _fail(self, key: ItemKey, exc: Exception, attempts: int = 0) -> FreshnessState:
        shop, product_id, lang = key
        self._log.warning(
            "sync_item_failed",
            shop=shop,
            product_id=product_id,
            lang=lang,
            attempts=attempts,
            error=str(exc),
            code=getattr(exc, "code", "error"),
        )
        self._set(key, FreshnessState.FAILED, error=str(exc), attempts=attempts)
        SYNC_ITEMS.labels(state=FreshnessState.FAILED.value).inc()
        return FreshnessState.FAILED

    def _run(self, settings: ShopSettings, keys: list[ItemKey]) -> SyncReport:
        report = SyncReport(shop=settings.shop)
        if not self.sync_enabled():
            SYNC_ITEMS.labels(state="SKIPPED").inc(len(keys))
            report.skipped = True
            return report
        with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
            futures = {
                key: pool.submit(self.sync_item, settings, key[1], key[2]) for key in keys
            }
        for key, fut in futures.items():
            try:
                state = fut.result()
            except Exception as exc:  # isolation: une clé ne bloque jamais les autres
                self._log.exception(
                    "sync_item_crashed", shop=key[0], product_id=key[1], lang=key[2]
                )
                state = self._fail(key, exc)
            if state is FreshnessState.FRESH:
                report.fresh += 1
            elif state is FreshnessState.MISSING:
                report.missing += 1
        report.failed = self.failed_items(settings.shop)
        return report

    def sync_pending(self, settings: ShopSettings) -> SyncReport:
        """
        Traite tous les éléments STALE ou FAILED (réarmés) d'une boutique.

        Args:
            settings: Configuration résolue de la boutique.

        Returns:
            SyncReport: Bilan du passage.
        """
        langs = set(settings.effective_langs())
        with self._lock:
            keys = sorted(
                key
                for key, s in self._states.items()
                if key[0] == settings.shop
                and key[2] in langs
                and s.state in (FreshnessState.STALE, FreshnessState.FAILED)
            )
        return self._run(settings, keys)

    def sync_product(self, settings: ShopSettings, product_id: str) -> SyncReport:
        """Synchronise toutes les langues servies d'un produit qui ont un snapshot."""
        langs = self.store.list_languages(settings.shop, product_id)
        keys = [
            (settings.shop, product_id, lang)
            for lang in settings.effective_langs()
            if lang in langs
        ]
        return self._run(settings, keys)

    def reconcile_shop(self, settings: ShopSettings) -> SyncReport:
        """Synchronise tous les snapshots des langues servies (activation, réindexation)."""
        keys = [
            (settings.shop, product_id, lang)
            for lang in settings.effective_langs()
            for product_id in self.store.list_products(settings.shop, lang)
        ]
        return self._run(settings, keys)

    # ------------------------------------------------------------------
    # Langues et suppression
    # ------------------------------------------------------------------

    def disable_language(self, shop: str, lang: str, now: datetime | None = None) -> int:
        """
        Tombstone snapshots et embeddings d'une langue désactivée.

        Args:
            shop: Identifiant de la boutique.
            lang: Langue désactivée.
            now: Horodatage du tombstone.

        Returns:
            int: Nombre d'embeddings tombstonés.
        """
        lang = normalize_lang_code(lang)
        ts = now or datetime.now(UTC)
        for product_id in self.store.list_products(shop, lang):
            with self._locks.hold(make_sync_key(shop, product_id, lang)):
                self.store.tombstone(
                    shop, product_id, lang, now=ts, reason=TombstoneReason.LANG_DISABLED
                )
        count = self.index.tombstone_partition(
            shop, lang, now=ts, reason=TombstoneReason.LANG_DISABLED
        )
        self._forget(lambda k: k[0] == shop and k[2] == lang)
        self._log.info("language_disabled", shop=shop, lang=lang, embeddings=count)
        return count

    def enable_language(
        self,
        settings: ShopSettings,
        lang: str,
        process: bool = True,
        now: datetime | None = None,
    ) -> dict[str, FreshnessState]:
        """
        Réactive une langue: annule les tombstones de désactivation.

        Un embedding tombstoné dans la fenêtre de rétention et dont le hash correspond au snapshot
        est restauré FRESH sans appel au fournisseur. Un tombstone plus ancien que la rétention est
        expiré: l'embedding est supprimé et l'élément passe STALE, comme tout contenu modifié.
        Les produits retirés du catalogue restent tombstonés.

        Args:
            settings: Configuration résolue de la boutique (langue déjà activée).
            lang: Langue réactivée.
            process: Recalcule immédiatement les éléments STALE.
            now: Horodatage de référence pour la fenêtre de rétention.

        Returns:
            dict[str, FreshnessState]: État par produit.

        Raises:
            ConfigError: si la langue n'est pas servie par la configuration.
        """
        shop = settings.shop
        lang = normalize_lang_code(lang)
        if lang not in settings.effective_langs():
            raise ConfigError(f"language {lang!r} is not enabled for shop {shop!r}")
        cutoff = (now or datetime.now(UTC)) - self.retention
        states: dict[str, FreshnessState] = {}
        stale: list[ItemKey] = []
        expired = 0
        for product_id in self.store.list_products(shop, lang, include_tombstoned=True):
            key = (shop, product_id, lang)
            with self._locks.hold(make_sync_key(*key)):
                try:
                    snapshot = self.store.get(shop, product_id, lang, include_tombstoned=True)
                except NotFoundError:
                    continue
                if snapshot.is_tombstoned:
                    if snapshot.tombstone_reason is not TombstoneReason.LANG_DISABLED:
                        continue
                    self.store.restore(
                        shop, product_id, lang, reason=TombstoneReason.LANG_DISABLED
                    )
                record = self.index.get(shop, product_id, lang)
                if (
                    record is not None
                    and record.is_tombstoned
                    and record.tombstoned_at <= cutoff
                ):
                    self.index.delete(shop, product_id, lang)
                    record = None
                    expired += 1
                if self.pipeline.is_current(record, snapshot) and (
                    not record.is_tombstoned
                    or self.index.restore(
                        shop, product_id, lang, reason=TombstoneReason.LANG_DISABLED
                    )
                ):
                    self._set(key, FreshnessState.FRESH)
                else:
                    self._set(key, FreshnessState.STALE)
                    stale.append(key)
            states[product_id] = self.state_of(*key)
        if process and stale:
            self._run(settings, stale)
            states.update({key[1]: self.state_of(*key) for key in stale})
        self._log.info(
            "language_enabled",
            shop=shop,
            lang=lang,
            products=len(states),
            stale=len(stale),
            expired=expired,
        )
        return states

    def remove_product(self, shop: str, product_id: str, now: datetime | None = None) -> int:
        """Tombstone toutes les langues d'un produit retiré du catalogue.

        Les langues déjà désactivées changent de cause: seul un nouvel envoi du produit le réactive.
        """
        ts = now or datetime.now(UTC)
        reason = TombstoneReason.PRODUCT_REMOVED
        for lang in sorted(self.store.list_languages(shop, product_id, include_tombstoned=True)):
            with self._locks.hold(make_sync_key(shop, product_id, lang)):
                self.store.tombstone(shop, product_id, lang, now=ts, reason=reason)
        count = self.index.tombstone(shop, product_id, now=ts, reason=reason)
        self._forget(lambda k: k[0] == shop and k[1] == product_id)
        return count

    def purge_expired(self, now: datetime | None = None) -> PurgeReport:
        """Supprime définitivement les tombstones plus anciens que la fenêtre de rétention."""
        cutoff = (now or datetime.now(UTC)) - self.retention
        report = PurgeReport(
            snapshots=self.store.purge_tombstoned(cutoff),
            embeddings=self.index.purge_tombstoned(cutoff),
        )
        self._log.info(
            "tombstones_purged",
            cutoff=cutoff.isoformat(),
            snapshots=report.snapshots,
            embeddings=report.embeddings,
        )
        return report
