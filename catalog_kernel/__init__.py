"""
Catalog Sync Kernel

Shared infrastructure for the catalog sync engine:
- SQLAlchemy declarative base, engine and session scope
- Result normalization at the data access boundary
- Typed exception hierarchy with machine-readable codes
- Structured JSON logging
- Injectable clock
"""

__version__ = "0.1.0"
