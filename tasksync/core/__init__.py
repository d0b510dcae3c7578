"""
Core utilities and clients.
"""

from tasksync.core.exceptions import ConfigurationError, DataIntegrityError
from tasksync.core.provider_client import (
    MalformedResponseError,
    TaskProviderClient,
    TaskProviderError,
)
from tasksync.core.taxonomy import TaxonomyService, get_taxonomy_service

__all__ = [
    "ConfigurationError",
    "DataIntegrityError",
    "MalformedResponseError",
    "TaskProviderClient",
    "TaskProviderError",
    "TaxonomyService",
    "get_taxonomy_service",
]
