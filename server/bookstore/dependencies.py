"""
Dependency wiring for the FastAPI app.
"""

from __future__ import annotations

from fastapi import Depends

from bookstore.catalog import Catalog
from bookstore.clock import ClockSync
from bookstore.config import get_settings
from bookstore.db import DbClient, InMemoryDbClient, SqlDbClient
from bookstore.images import CloudinaryImageHost, ImageHost, InMemoryImageHost
from bookstore.resolver import FileResolver
from bookstore.storage import B2StorageClient, InMemoryStorageClient, StorageClient

_db_client: DbClient | None = None
_storage_client: StorageClient | None = None
_image_host: ImageHost | None = None
_clock: ClockSync | None = None
_catalog: Catalog | None = None


def get_db_client() -> DbClient:
    """
    Return a singleton DB client so the catalog persists across requests.
    """
    global _db_client
    if _db_client:
        return _db_client

    settings = get_settings()
    if settings.use_in_memory_backends or not settings.database_url:
        _db_client = InMemoryDbClient()
    else:
        _db_client = SqlDbClient(settings.database_url)
    return _db_client


def get_storage_client() -> StorageClient:
    global _storage_client
    if _storage_client:
        return _storage_client

    settings = get_settings()
    if settings.use_in_memory_backends or not settings.has_b2_credentials:
        _storage_client = InMemoryStorageClient()
    else:
        region = settings.b2_region or "us-west-004"
        _storage_client = B2StorageClient(
            bucket=settings.b2_bucket_name,
            endpoint=settings.b2_endpoint or f"https://s3.{region}.backblazeb2.com",
            region=region,
            access_key_id=settings.b2_application_key_id or "",
            secret_access_key=settings.b2_application_key or "",
            cdn_base_url=settings.b2_cdn_base_url,
        )
    return _storage_client


def get_clock() -> ClockSync:
    global _clock
    if _clock:
        return _clock
    _clock = ClockSync(url=get_settings().time_sync_url)
    return _clock


def get_image_host() -> ImageHost:
    global _image_host
    if _image_host:
        return _image_host

    settings = get_settings()
    if settings.use_in_memory_backends or not settings.has_cloudinary_credentials:
        _image_host = InMemoryImageHost()
    else:
        _image_host = CloudinaryImageHost(
            cloud_name=settings.cloudinary_cloud_name,
            api_key=settings.cloudinary_api_key,
            api_secret=settings.cloudinary_api_secret,
            clock=get_clock().now,
        )
    return _image_host


def get_catalog() -> Catalog:
    """
    Return a singleton catalog so the one-time snapshot restore is not repeated.
    """
    global _catalog
    if _catalog:
        return _catalog
    _catalog = Catalog(
        db=get_db_client(),
        storage=get_storage_client(),
        images=get_image_host(),
        settings=get_settings(),
    )
    return _catalog


def get_resolver(catalog: Catalog = Depends(get_catalog)) -> FileResolver:
    return FileResolver(
        storage=catalog.storage,
        catalog=catalog,
        uploads_dir=catalog.settings.uploads_dir,
    )
