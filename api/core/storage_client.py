"""Shared HTTP client for object store requests.

Provides a connection-pooled ``httpx.AsyncClient`` used by the HTTP object
store uploader. Closed on application shutdown.
"""

from __future__ import annotations

import asyncio

import httpx

from core.config import get_settings

_storage_http_client: httpx.AsyncClient | None = None
_storage_client_lock = asyncio.Lock()


async def get_storage_client() -> httpx.AsyncClient:
    """Get or create a shared HTTP client for object store requests.

    Thread-safe via asyncio.Lock to prevent race conditions.
    """
    global _storage_http_client

    if _storage_http_client is not None and not _storage_http_client.is_closed:
        return _storage_http_client

    async with _storage_client_lock:
        if _storage_http_client is not None and not _storage_http_client.is_closed:
            return _storage_http_client

        settings = get_settings()
        _storage_http_client = httpx.AsyncClient(
            timeout=settings.http_timeout,
            limits=httpx.Limits(max_connections=20, max_keepalive_connections=10),
        )
        return _storage_http_client


async def close_storage_client() -> None:
    """Close the shared storage HTTP client (called on application shutdown)."""
    global _storage_http_client
    if _storage_http_client is not None and not _storage_http_client.is_closed:
        await _storage_http_client.aclose()
    _storage_http_client = None
