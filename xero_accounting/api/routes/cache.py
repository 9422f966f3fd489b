"""FastAPI routes for cache administration."""

from fastapi import APIRouter, Depends

from xero_accounting.api.dependencies import get_client
from xero_accounting.commands import stats_payload
from xero_accounting.xero.client import XeroClient

router = APIRouter(prefix="/api/cache", tags=["cache"])


@router.get("/stats")
async def cache_stats(client: XeroClient = Depends(get_client)):
    """Hit/miss counters and the number of live entries."""
    return stats_payload(client, await client.get_cache_stats())


@router.delete("")
async def clear_cache(client: XeroClient = Depends(get_client)):
    """Clear all cached entries and the remembered tenant ID."""
    return {"cleared": await client.clear_cache()}


@router.delete("/{key}")
async def invalidate_key(key: str, client: XeroClient = Depends(get_client)):
    return {"key": key, "removed": await client.invalidate_cache_key(key)}
