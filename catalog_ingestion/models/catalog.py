"""
ORM models for the catalog tables written by the upsert executor.

Contract:
    Every table has a natural key the executor looks rows up by:
        products            name
        items               code
        product_extended    product_id (1:1)
        product_contents    (product_id, section)
        colors / vendors    name
        item_colors         (item_id, color_id)
        product_vendors     (product_id, vendor_id)
        product_attributes  (product_id, kind, value)
    The unique constraints below back those keys, so a concurrent insert of
    the same key fails with an IntegrityError instead of duplicating a row.

Architecture: catalog_ingestion/models. Imports from catalog_kernel.db.base only.

Invariants enforced:
    - ``date_added``/``date_modified`` come from the executor's Clock.
      ``date_modified`` changes only when a column value actually changes.
    - Relationship rows cascade when their parent product/item is deleted.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from catalog_kernel.db.base import Base, UTCDateTime, UUIDString


class _CatalogStamps:
    date_added: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    date_modified: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)


class ProductModel(_CatalogStamps, Base):
    __tablename__ = "products"

    name: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    width: Mapped[Decimal | None] = mapped_column(nullable=True)
    vrepeat: Mapped[Decimal | None] = mapped_column(nullable=True)
    hrepeat: Mapped[Decimal | None] = mapped_column(nullable=True)
    repeat_flag: Mapped[str] = mapped_column(String(1), nullable=False, default="N")
    product_type: Mapped[str] = mapped_column(String(1), nullable=False, default="R")
    archived: Mapped[str] = mapped_column(String(1), nullable=False, default="N")
    in_master: Mapped[int] = mapped_column(Integer, nullable=False, default=1)


class ItemModel(_CatalogStamps, Base):
    __tablename__ = "items"

    __table_args__ = (Index("ix_items_product_id", "product_id"),)

    code: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    product_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("products.id", ondelete="CASCADE"), nullable=False,
    )
    display_name: Mapped[str | None] = mapped_column(String(500), nullable=True)
    vendor_code: Mapped[str | None] = mapped_column(String(100), nullable=True)
    vendor_color: Mapped[str | None] = mapped_column(String(255), nullable=True)
    product_type: Mapped[str] = mapped_column(String(1), nullable=False, default="R")
    archived: Mapped[str] = mapped_column(String(1), nullable=False, default="N")
    in_ringset: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    status_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    stock_status_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)


class ProductExtendedModel(_CatalogStamps, Base):
    """Compliance and vendor attributes, one row per product."""

    __tablename__ = "product_extended"

    product_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("products.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )
    vendor_product_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    prop_65: Mapped[str | None] = mapped_column(String(1), nullable=True)
    ab_2998_compliant: Mapped[str | None] = mapped_column(String(1), nullable=True)
    tariff_code: Mapped[str | None] = mapped_column(String(50), nullable=True)


class ProductContentModel(_CatalogStamps, Base):
    """Free-text content section (front, back, abrasion, firecodes)."""

    __tablename__ = "product_contents"

    __table_args__ = (
        UniqueConstraint("product_id", "section", name="uq_product_contents_section"),
    )

    product_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("products.id", ondelete="CASCADE"), nullable=False,
    )
    section: Mapped[str] = mapped_column(String(20), nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)


class ColorModel(Base):
    __tablename__ = "colors"

    name: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    date_added: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)


class VendorModel(Base):
    __tablename__ = "vendors"

    name: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    date_added: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)


class ItemColorModel(Base):
    __tablename__ = "item_colors"

    __table_args__ = (
        UniqueConstraint("item_id", "color_id", name="uq_item_colors_item_color"),
    )

    item_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("items.id", ondelete="CASCADE"), nullable=False,
    )
    color_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("colors.id", ondelete="CASCADE"), nullable=False,
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    date_added: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)


class ProductVendorModel(Base):
    __tablename__ = "product_vendors"

    __table_args__ = (
        UniqueConstraint("product_id", "vendor_id", name="uq_product_vendors_product_vendor"),
    )

    product_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("products.id", ondelete="CASCADE"), nullable=False,
    )
    vendor_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("vendors.id", ondelete="CASCADE"), nullable=False,
    )
    date_added: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)


class ProductAttributeModel(Base):
    """Many-valued product attribute: finish, cleaning, origin or use."""

    __tablename__ = "product_attributes"

    __table_args__ = (
        UniqueConstraint("product_id", "kind", "value", name="uq_product_attributes_value"),
        Index("ix_product_attributes_product_kind", "product_id", "kind"),
    )

    product_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("products.id", ondelete="CASCADE"), nullable=False,
    )
    kind: Mapped[str] = mapped_column(String(20), nullable=False)
    value: Mapped[str] = mapped_column(String(255), nullable=False)
    date_added: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
