"""Course catalog collaborator (read-only)."""

from .models import CATALOG_TABLES_CQL, CatalogVideo
from .service import CatalogService


__all__ = [
    "CATALOG_TABLES_CQL",
    "CatalogService",
    "CatalogVideo",
]
