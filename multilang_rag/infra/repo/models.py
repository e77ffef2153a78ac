"""SQLAlchemy models for persistence layer (ProductSnapshot)."""

from __future__ import annotations

from sqlalchemy import (
    JSON,
    Column,
    DateTime,
    Integer,
    MetaData,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """Classe de base pour tous les modèles SQLAlchemy."""

    metadata = MetaData()


class ProductSnapshotORM(Base):
    """Modèle ORM pour les snapshots de contenu produit par langue."""

    __tablename__ = "product_i18n"

    id = Column(Integer, primary_key=True, autoincrement=True)
    shop = Column(String(255), nullable=False, index=True)
    product_id = Column(String(255), nullable=False)
    lang = Column(String(8), nullable=False)
    title = Column(Text, nullable=False)
    description_html = Column(Text, nullable=False, default="")
    specs_json = Column(JSON, nullable=False, default=dict)
    faq_json = Column(JSON, nullable=False, default=list)
    content_hash = Column(String(64), nullable=False)
    revision = Column(Integer, nullable=False, default=1)
    updated_at = Column(DateTime(), nullable=False)
    tombstoned_at = Column(DateTime(), nullable=True)
    tombstone_reason = Column(String(32), nullable=True)

    __table_args__ = (
        UniqueConstraint("shop", "product_id", "lang", name="uq_shop_product_lang"),
    )
