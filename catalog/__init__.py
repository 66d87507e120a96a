"""
Chapterwatch - Catalog Module
Read-only access to the remote chapter catalog.
"""

from catalog.errors import (
    CatalogError,
    CatalogUnavailableError,
    CatalogNotFoundError,
    CatalogResponseError,
    InvalidWorkUrlError,
)
from catalog.models import FeedEntry, FeedPage, WorkInfo
from catalog.client import CatalogClient, extract_work_id, get_catalog_client, init_catalog_client


__all__ = [
    # Client
    'CatalogClient',
    'extract_work_id',
    'get_catalog_client',
    'init_catalog_client',
    # Models
    'FeedEntry',
    'FeedPage',
    'WorkInfo',
    # Errors
    'CatalogError',
    'CatalogUnavailableError',
    'CatalogNotFoundError',
    'CatalogResponseError',
    'InvalidWorkUrlError',
]
