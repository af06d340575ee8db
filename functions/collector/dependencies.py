"""
Dependency wiring for the FastAPI app.
"""

from __future__ import annotations

from fastapi import Header, HTTPException

from collector.config import get_settings
from collector.db import DbClient, InMemoryDbClient, PostgresDbClient
from collector.events import EventBus, InMemoryEventBus, RedisEventBus
from collector.marketplace import MarketplaceService
from collector.storage import InMemoryStorageClient, S3StorageClient, StorageClient

_db_client: DbClient | None = None
_storage_client: StorageClient | None = None
_event_bus: EventBus | None = None


def get_db_client() -> DbClient:
    """
    Return a singleton DB client so marketplace state persists across requests.
    """
    global _db_client
    if _db_client:
        return _db_client

    settings = get_settings()
    if settings.use_in_memory_backends or not settings.database_url:
        _db_client = InMemoryDbClient()
    else:
        _db_client = PostgresDbClient(settings.database_url)
    return _db_client


def get_storage_client() -> StorageClient:
    global _storage_client
    if _storage_client:
        return _storage_client

    settings = get_settings()
    if settings.use_in_memory_backends or not settings.storage_endpoint:
        _storage_client = InMemoryStorageClient(
            base_url=settings.storage_public_base_url
        )
    else:
        _storage_client = S3StorageClient(
            region=settings.storage_region or "",
            endpoint=settings.storage_endpoint,
            access_key_id=settings.aws_access_key_id or "",
            secret_access_key=settings.aws_secret_access_key or "",
            public_base_url=settings.storage_public_base_url,
        )
    return _storage_client


def get_event_bus() -> EventBus:
    """
    Return a singleton publisher for realtime change events.
    """
    global _event_bus
    if _event_bus:
        return _event_bus

    settings = get_settings()
    if settings.redis_url and not settings.use_in_memory_backends:
        _event_bus = RedisEventBus(
            url=settings.redis_url,
            channel_prefix=settings.redis_channel_prefix,
        )
    else:
        _event_bus = InMemoryEventBus()
    return _event_bus


def get_marketplace_service() -> MarketplaceService:
    return MarketplaceService(
        get_db_client(),
        get_event_bus(),
        offer_ttl_seconds=get_settings().offer_ttl_seconds,
    )


def get_current_user_id(x_user_id: str | None = Header(default=None)) -> str:
    """The hosted auth layer forwards the verified user id in X-User-Id."""
    if not x_user_id:
        raise HTTPException(status_code=401, detail="X-User-Id header required")
    return x_user_id
