"""catalog_kernel.db -- Declarative base, engine/session management, row boundary."""
