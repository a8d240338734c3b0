"""catalog_kernel.domain -- Pure value objects shared by every package."""
