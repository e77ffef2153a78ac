# ============================================================
# Module : multilang_rag/infra/repo/snapshot_repo.py
# Objet  : SnapshotStore persistant via SQLAlchemy (table product_i18n).
# Notes  : horodatages stockés en UTC naïf, relus en UTC aware.
# ============================================================

from __future__ import annotations

from datetime import UTC, datetime

from sqlalchemy import delete, select
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session

from multilang_rag.domain.canonical import normalize_lang_code, snapshot_content_hash
from multilang_rag.domain.errors import NotFoundError
from multilang_rag.domain.models import (
    ProductSnapshot,
    SnapshotContent,
    TombstoneReason,
    UpsertOutcome,
)
from multilang_rag.domain.snapshot_store import (
    SnapshotStore,
    validate_snapshot_input,
)

from .db import get_session_factory, session_scope
from .models import Base, ProductSnapshotORM


def _to_db(ts: datetime | None) -> datetime | None:
    if ts is None:
        return None
    if ts.tzinfo is not None:
        ts = ts.astimezone(UTC)
    return ts.replace(tzinfo=None)


def _from_db(ts: datetime | None) -> datetime | None:
    if ts is None:
        return None
    return ts.replace(tzinfo=UTC) if ts.tzinfo is None else ts


def _to_domain(row: ProductSnapshotORM) -> ProductSnapshot:
    return ProductSnapshot(
        shop=row.shop,
        product_id=row.product_id,
        lang=row.lang,
        content=SnapshotContent(
            title=row.title,
            description_html=row.description_html or "",
            specs_json=row.specs_json or {},
            faq_json=row.faq_json or [],
        ),
        content_hash=row.content_hash,
        revision=row.revision,
        updated_at=_from_db(row.updated_at),
        tombstoned_at=_from_db(row.tombstoned_at),
        tombstone_reason=TombstoneReason(row.tombstone_reason) if row.tombstone_reason else None,
    )


class SqlSnapshotStore(SnapshotStore):
    """SnapshotStore adossé à une base SQL (point lookup sur (shop, product, lang))."""

    def __init__(self, engine: Engine, create_schema: bool = True) -> None:
        """Construit le store avec un moteur SQLAlchemy.

        Args:
            engine: Moteur SQLAlchemy.
            create_schema: Crée la table si absente (sqlite/CI).
        """
        self._engine = engine
        self._factory = get_session_factory(engine)
        if create_schema:
            Base.metadata.create_all(engine)

    def _find(self, session: Session, shop: str, product_id: str, lang: str):
        stmt = select(ProductSnapshotORM).where(
            ProductSnapshotORM.shop == shop,
            ProductSnapshotORM.product_id == product_id,
            ProductSnapshotORM.lang == lang,
        )
        return session.execute(stmt).scalars().first()

    def upsert(
        self,
        shop: str,
        product_id: str,
        lang: str,
        content: SnapshotContent,
        now: datetime | None = None,
    ) -> UpsertOutcome:
        """Insère ou met à jour la ligne; réactive un produit retiré du catalogue."""
        validate_snapshot_input(product_id, content)
        lang = normalize_lang_code(lang)
        content_hash = snapshot_content_hash(content)
        ts = _to_db(now or datetime.now(UTC))
        with session_scope(self._factory) as session:
            row = self._find(session, shop, product_id, lang)
            if row is None:
                session.add(
                    ProductSnapshotORM(
                        shop=shop,
                        product_id=product_id,
                        lang=lang,
                        title=content.title,
                        description_html=content.description_html,
                        specs_json=content.specs_json,
                        faq_json=content.faq_json,
                        content_hash=content_hash,
                        revision=1,
                        updated_at=ts,
                    )
                )
                return UpsertOutcome.NEW
            if row.content_hash == content_hash:
                outcome = UpsertOutcome.UNCHANGED
            else:
                outcome = UpsertOutcome.CHANGED
            row.title = content.title
            row.description_html = content.description_html
            row.specs_json = content.specs_json
            row.faq_json = content.faq_json
            if outcome.changed:
                row.content_hash = content_hash
                row.revision = row.revision + 1
                row.updated_at = ts
            if row.tombstone_reason == TombstoneReason.PRODUCT_REMOVED.value:
                # produit renvoyé par le catalogue: le retrait est annulé
                row.tombstoned_at = None
                row.tombstone_reason = None
            return outcome

    def get(
        self, shop: str, product_id: str, lang: str, include_tombstoned: bool = False
    ) -> ProductSnapshot:
        """Retourne le snapshot ou lève `NotFoundError`."""
        lang = normalize_lang_code(lang)
        with session_scope(self._factory) as session:
            row = self._find(session, shop, product_id, lang)
            if row is None or (row.tombstoned_at is not None and not include_tombstoned):
                raise NotFoundError(shop, product_id, lang)
            return _to_domain(row)

    def list_languages(
        self, shop: str, product_id: str, include_tombstoned: bool = False
    ) -> set[str]:
        """Langues disposant d'un snapshot (actif par défaut) pour ce produit."""
        stmt = select(ProductSnapshotORM.lang).where(
            ProductSnapshotORM.shop == shop,
            ProductSnapshotORM.product_id == product_id,
        )
        if not include_tombstoned:
            stmt = stmt.where(ProductSnapshotORM.tombstoned_at.is_(None))
        with session_scope(self._factory) as session:
            return set(session.execute(stmt).scalars().all())

    def list_products(self, shop: str, lang: str, include_tombstoned: bool = False) -> list[str]:
        """Produits disposant d'un snapshot dans cette langue (triés)."""
        stmt = select(ProductSnapshotORM.product_id).where(
            ProductSnapshotORM.shop == shop,
            ProductSnapshotORM.lang == normalize_lang_code(lang),
        )
        if not include_tombstoned:
            stmt = stmt.where(ProductSnapshotORM.tombstoned_at.is_(None))
        stmt = stmt.order_by(ProductSnapshotORM.product_id)
        with session_scope(self._factory) as session:
            return list(session.execute(stmt).scalars().all())

    def tombstone(
        self,
        shop: str,
        product_id: str,
        lang: str,
        now: datetime | None = None,
        reason: TombstoneReason = TombstoneReason.PRODUCT_REMOVED,
    ) -> bool:
        """Marque un snapshot comme supprimé (un retrait produit prime sur la langue)."""
        with session_scope(self._factory) as session:
            row = self._find(session, shop, product_id, normalize_lang_code(lang))
            if row is None:
                return False
            if row.tombstoned_at is None:
                row.tombstoned_at = _to_db(now or datetime.now(UTC))
                row.tombstone_reason = reason.value
            else:
                current = TombstoneReason(row.tombstone_reason) if row.tombstone_reason else None
                row.tombstone_reason = TombstoneReason.merge(current, reason).value
            return True

    def restore(
        self, shop: str, product_id: str, lang: str, reason: TombstoneReason | None = None
    ) -> bool:
        """Annule une suppression logique (seulement celle de cause `reason` si fournie)."""
        with session_scope(self._factory) as session:
            row = self._find(session, shop, product_id, normalize_lang_code(lang))
            if row is None or row.tombstoned_at is None:
                return False
            if reason is not None and row.tombstone_reason != reason.value:
                return False
            row.tombstoned_at = None
            row.tombstone_reason = None
            return True

    def purge_tombstoned(self, older_than: datetime) -> int:
        """Supprime définitivement les snapshots tombstonés avant `older_than`."""
        stmt = delete(ProductSnapshotORM).where(
            ProductSnapshotORM.tombstoned_at.is_not(None),
            ProductSnapshotORM.tombstoned_at <= _to_db(older_than),
        )
        with session_scope(self._factory) as session:
            result = session.execute(stmt)
            return int(result.rowcount or 0)
