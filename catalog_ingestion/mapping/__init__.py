"""Row transformer: pure mapping of one catalog row to storage operations."""

from catalog_ingestion.mapping.transformer import RowTransformer, display_name, row_from_event

__all__ = ["RowTransformer", "display_name", "row_from_event"]
