"""
Shared route dependencies and error mapping.
"""

from fastapi import HTTPException

from tasksync.core.provider_client import TaskProviderError
from tasksync.services import EnrichmentService


def get_enrichment_service() -> EnrichmentService:
    return EnrichmentService()


def provider_http_error(error: TaskProviderError) -> HTTPException:
    """Translate a provider failure into the response for our caller."""
    if error.status_code == 404:
        return HTTPException(status_code=404, detail=str(error))
    return HTTPException(status_code=502, detail=str(error))
