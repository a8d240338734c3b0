"""Catalog ORM models touched by the upsert executor."""

from catalog_ingestion.models.catalog import (
    ColorModel,
    ItemColorModel,
    ItemModel,
    ProductAttributeModel,
    ProductContentModel,
    ProductExtendedModel,
    ProductModel,
    ProductVendorModel,
    VendorModel,
)

__all__ = [
    "ColorModel",
    "ItemColorModel",
    "ItemModel",
    "ProductAttributeModel",
    "ProductContentModel",
    "ProductExtendedModel",
    "ProductModel",
    "ProductVendorModel",
    "VendorModel",
]
