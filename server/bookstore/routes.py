"""
Public HTTP routes: catalog, reader proxies, downloads and blogs.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request, Response
from fastapi.responses import JSONResponse, RedirectResponse, StreamingResponse
from sqlalchemy.exc import SQLAlchemyError

from bookstore.catalog import BookNotFound, Catalog
from bookstore.config import Settings, get_settings
from bookstore.db import BookRecord
from bookstore.dependencies import get_catalog, get_resolver
from bookstore.images import ImageHostError
from bookstore.resolver import (
    FileLocation,
    FileNotResolved,
    FileResolver,
    NoFileAttached,
    PartNotFound,
    is_local_upload,
    is_storage_name,
)
from bookstore.schemas import (
    BlogResponse,
    BookDetail,
    BookSummary,
    CdnPart,
    CdnResponse,
    ViewPart,
    ViewResponse,
)
from bookstore.storage import ObjectNotFound, StorageError
from bookstore.streaming import (
    NO_STORE_HEADERS,
    RangeNotSatisfiable,
    build_parts_zip,
    content_disposition,
    iter_file,
    proxy_response,
)

logger = logging.getLogger(__name__)

router = APIRouter()

COVER_CACHE_CONTROL = "public, max-age=86400"


def public_base_url(request: Request, settings: Settings) -> str:
    """Scheme and host the browser used, honoring TLS-terminating proxies."""
    forwarded = request.headers.get("x-forwarded-proto", "").split(",")[0].strip()
    if forwarded == "https" or settings.force_https:
        scheme = "https"
    else:
        scheme = request.url.scheme
    host = request.headers.get("host") or request.url.netloc
    return f"{scheme}://{host}"


def _api_url(request: Request, settings: Settings, path: str) -> str:
    return f"{public_base_url(request, settings)}{settings.api_prefix}{path}"


def _require_book(catalog: Catalog, book_id: str) -> BookRecord:
    try:
        return catalog.require_book(book_id)
    except BookNotFound:
        raise HTTPException(status_code=404, detail="Book not found")


def _download_name(book: BookRecord, extension: str) -> str:
    return f"{book.title or 'book'}.{extension}"


def _proxy(
    resolver: FileResolver,
    location: FileLocation,
    byte_range: Optional[str],
    *,
    media_type: Optional[str] = None,
    download_name: Optional[str] = None,
    cache_control: Optional[str] = None,
) -> Response:
    if location.is_redirect:
        return RedirectResponse(location.url, status_code=302)
    try:
        stream = resolver.stream(location, byte_range)
    except RangeNotSatisfiable as exc:
        headers = {"Content-Range": f"bytes */{exc.size}"} if exc.size is not None else None
        raise HTTPException(status_code=416, detail="Requested range not satisfiable", headers=headers)
    except ObjectNotFound:
        raise HTTPException(status_code=404, detail="File not found in Backblaze")
    except StorageError as exc:
        logger.exception("Failed to stream %s", location.name)
        raise HTTPException(status_code=502, detail=f"Failed to stream file: {exc}")
    return proxy_response(
        stream,
        media_type=media_type,
        download_name=download_name,
        cache_control=cache_control,
    )


def _signed_url(catalog: Catalog, name: Optional[str], download_name: Optional[str] = None) -> Optional[str]:
    if not name or not is_storage_name(name):
        return None
    try:
        return catalog.storage.presign_get(
            name,
            expires_in=catalog.settings.cdn_url_ttl_seconds,
            download_name=download_name,
        )
    except StorageError as exc:
        logger.warning("Unable to sign URL for %s: %s", name, exc)
        return None


@router.get("/books", response_model=list[BookSummary])
def list_books(response: Response, catalog: Catalog = Depends(get_catalog)):
    response.headers.update(NO_STORE_HEADERS)
    books = []
    for book in catalog.list_books():
        summary = BookSummary.model_validate(book.as_dict())
        summary.cover_image = book.cloudinary_cover_url or book.cover_image
        books.append(summary)
    return books


@router.get("/books/{book_id}", response_model=BookDetail)
def get_book(
    book_id: str,
    request: Request,
    response: Response,
    catalog: Catalog = Depends(get_catalog),
    settings: Settings = Depends(get_settings),
):
    response.headers.update(NO_STORE_HEADERS)
    book = _require_book(catalog, book_id)
    detail = BookDetail.model_validate(book.as_dict())

    if book.cloudinary_cover_url:
        detail.cover_image = book.cloudinary_cover_url
    elif book.b2_cover_file_name or is_storage_name(book.cover_image):
        detail.cover_image = _api_url(request, settings, f"/books/{book_id}/cover")
    elif is_local_upload(book.cover_image):
        detail.cover_image = f"{public_base_url(request, settings)}{book.cover_image}"
    return detail


@router.get("/books/{book_id}/cdn", response_model=CdnResponse)
def get_cdn_urls(
    book_id: str,
    catalog: Catalog = Depends(get_catalog),
    settings: Settings = Depends(get_settings),
):
    book = _require_book(catalog, book_id)
    ttl = settings.cdn_url_ttl_seconds
    if not settings.has_b2_credentials:
        return CdnResponse(
            ttl_seconds=ttl,
            message="Backblaze B2 credentials are missing; CDN URLs disabled",
        )

    result = CdnResponse(ttl_seconds=ttl)
    if book.has_parts:
        result.parts = [
            CdnPart(
                part_number=part.part_number,
                b2_file_name=part.b2_file_name,
                file_name=part.file_name,
                cdn_url=_signed_url(catalog, part.pdf_file_name),
            )
            for part in book.sorted_parts
        ]
        result.cdn_pdf_url = result.parts[0].cdn_url if result.parts else None
    else:
        result.cdn_pdf_url = _signed_url(catalog, book.pdf_file_name)

    cover_name = book.b2_cover_file_name or (
        book.cover_image if is_storage_name(book.cover_image) else None
    )
    result.cdn_cover_url = _signed_url(catalog, cover_name)
    return result


@router.get(
    "/books/{book_id}/view", response_model=ViewResponse, response_model_exclude_none=True
)
def get_view_url(
    book_id: str,
    request: Request,
    catalog: Catalog = Depends(get_catalog),
    settings: Settings = Depends(get_settings),
):
    book = _require_book(catalog, book_id)
    use_cdn = bool(settings.b2_cdn_base_url) and settings.has_b2_credentials

    if book.has_parts:
        parts = book.sorted_parts
        if use_cdn:
            views = [
                ViewPart(
                    part_number=part.part_number,
                    b2_file_name=part.b2_file_name,
                    view_url=_signed_url(catalog, part.pdf_file_name),
                )
                for part in parts
            ]
            first_url = next((v.view_url for v in views if v.part_number == 1), None)
            if first_url:
                return ViewResponse(
                    view_url=first_url, is_split=True, total_parts=len(parts), parts=views
                )
        return ViewResponse(
            view_url=_api_url(request, settings, f"/books/{book_id}/pdf/part/1"),
            is_split=True,
            total_parts=len(parts),
            parts=[
                ViewPart(part_number=part.part_number, b2_file_name=part.b2_file_name)
                for part in parts
            ],
        )

    if book.pdf_file_name:
        if use_cdn:
            cdn_url = _signed_url(catalog, book.pdf_file_name)
            if cdn_url:
                return ViewResponse(view_url=cdn_url, is_split=False)
        return ViewResponse(
            view_url=_api_url(request, settings, f"/books/{book_id}/pdf"), is_split=False
        )

    raise HTTPException(status_code=400, detail="Book file not found in Backblaze B2")


@router.get("/books/{book_id}/pdf")
def stream_pdf(
    book_id: str,
    request: Request,
    catalog: Catalog = Depends(get_catalog),
    resolver: FileResolver = Depends(get_resolver),
):
    book = _require_book(catalog, book_id)
    try:
        location = resolver.resolve_pdf(book)
    except NoFileAttached:
        raise HTTPException(status_code=400, detail="Book file not found")
    except FileNotResolved:
        logger.error("PDF for book %s not found in any provider", book_id)
        raise HTTPException(status_code=404, detail="File not found in Backblaze")
    return _proxy(
        resolver, location, request.headers.get("range"), media_type="application/pdf"
    )


@router.get("/books/{book_id}/pdf/part/{part_number}")
def stream_pdf_part(
    book_id: str,
    part_number: int,
    request: Request,
    catalog: Catalog = Depends(get_catalog),
    resolver: FileResolver = Depends(get_resolver),
):
    book = _require_book(catalog, book_id)
    try:
        location = resolver.resolve_part(book, part_number)
    except NoFileAttached:
        raise HTTPException(status_code=400, detail="This book does not have PDF parts")
    except PartNotFound:
        raise HTTPException(status_code=404, detail=f"Part {part_number} not found")
    except FileNotResolved:
        raise HTTPException(status_code=404, detail="PDF part not found")
    return _proxy(
        resolver, location, request.headers.get("range"), media_type="application/pdf"
    )


def _zip_entries(resolver: FileResolver, book: BookRecord):
    for part in book.sorted_parts:
        try:
            location = resolver.resolve_part(book, part.part_number)
            if location.is_redirect:
                logger.warning("Part %d of %s is a remote URL, skipping", part.part_number, book.id)
                continue
            data = resolver.read_bytes(location)
        except (FileNotResolved, NoFileAttached, StorageError) as exc:
            logger.warning("Part %d of %s not found, skipping: %s", part.part_number, book.id, exc)
            continue
        yield f"Part_{part.part_number}_{book.title or 'book'}.pdf", data


@router.get("/books/{book_id}/download")
def download_book(
    book_id: str,
    request: Request,
    catalog: Catalog = Depends(get_catalog),
    resolver: FileResolver = Depends(get_resolver),
):
    book = _require_book(catalog, book_id)

    if book.has_parts:
        logger.info("Book %s has %d parts, creating ZIP file", book_id, len(book.pdf_parts))
        archive, count = build_parts_zip(_zip_entries(resolver, book))
        if count == 0:
            archive.close()
            raise HTTPException(status_code=404, detail="No PDF parts could be found")
        return StreamingResponse(
            iter_file(archive),
            media_type="application/zip",
            headers={"Content-Disposition": content_disposition(_download_name(book, "zip"))},
        )

    try:
        location = resolver.resolve_pdf(book)
    except NoFileAttached:
        raise HTTPException(status_code=400, detail="Book file not found")
    except FileNotResolved:
        raise HTTPException(status_code=404, detail="File not found in Backblaze")
    return _proxy(
        resolver,
        location,
        request.headers.get("range"),
        media_type="application/pdf",
        download_name=_download_name(book, "pdf"),
    )


@router.get("/books/{book_id}/cover")
def get_cover(
    book_id: str,
    catalog: Catalog = Depends(get_catalog),
    resolver: FileResolver = Depends(get_resolver),
):
    book = _require_book(catalog, book_id)
    try:
        location = resolver.resolve_cover(book)
    except (NoFileAttached, FileNotResolved):
        logger.error("Cover image not found for book %s", book_id)
        raise HTTPException(status_code=404, detail="Cover image not found")
    return _proxy(resolver, location, None, cache_control=COVER_CACHE_CONTROL)


@router.get("/blogs", response_model=list[BlogResponse])
def list_blogs(catalog: Catalog = Depends(get_catalog)):
    blogs = sorted(catalog.db.list_blogs(), key=lambda b: b.sort_key, reverse=True)
    return [BlogResponse.model_validate(blog.as_dict()) for blog in blogs]


@router.get("/blogs/{blog_id}", response_model=BlogResponse)
def get_blog(blog_id: str, catalog: Catalog = Depends(get_catalog)):
    blog = catalog.db.get_blog(blog_id)
    if not blog:
        raise HTTPException(status_code=404, detail="Blog not found")
    return BlogResponse.model_validate(blog.as_dict())


@router.get("/blogs/{blog_id}/image")
def get_blog_image(blog_id: str, catalog: Catalog = Depends(get_catalog)):
    blog = catalog.db.get_blog(blog_id)
    if not blog:
        raise HTTPException(status_code=404, detail="Blog not found")
    if blog.image.startswith("http://") or blog.image.startswith("https://"):
        return RedirectResponse(blog.image, status_code=302)
    logger.error("Blog image not found for blog %s (image=%r)", blog_id, blog.image)
    raise HTTPException(status_code=404, detail="Blog image not found")


@router.get("/health")
def health(
    catalog: Catalog = Depends(get_catalog),
    settings: Settings = Depends(get_settings),
):
    report = {
        "status": "ok",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "services": {
            "backblaze": {
                "configured": settings.has_b2_credentials,
                "working": False,
                "error": None,
            },
            "cloudinary": {
                "configured": settings.has_cloudinary_credentials,
                "working": False,
                "error": None,
            },
            "books": {"count": 0, "snapshotCount": None, "snapshotExists": False},
        },
    }
    services = report["services"]

    if settings.has_b2_credentials:
        try:
            catalog.storage.ping()
            services["backblaze"]["working"] = True
            snapshot = catalog.load_snapshot()
            if snapshot is not None:
                services["books"]["snapshotExists"] = True
                services["books"]["snapshotCount"] = len(snapshot)
        except StorageError as exc:
            services["backblaze"]["error"] = str(exc)
            report["status"] = "degraded"

    if settings.has_cloudinary_credentials and catalog.images is not None:
        try:
            catalog.images.ping()
            services["cloudinary"]["working"] = True
        except ImageHostError as exc:
            services["cloudinary"]["error"] = str(exc)
            report["status"] = "degraded"

    try:
        services["books"]["count"] = len(catalog.list_books())
    except SQLAlchemyError as exc:
        logger.exception("Catalog unavailable during health check")
        services["books"]["error"] = str(exc)
        report["status"] = "error"

    if not settings.has_b2_credentials:
        report["status"] = "warning"
        report["message"] = "Backblaze not configured - uploaded PDFs are kept in memory only"
    elif not services["backblaze"]["working"]:
        report["status"] = "error"
        report["message"] = "Backblaze connection failed - check your credentials"

    status_code = 200 if report["status"] in ("ok", "warning") else 503
    return JSONResponse(status_code=status_code, content=report)


@router.get("/debug/books-status")
def books_status(catalog: Catalog = Depends(get_catalog)):
    status = catalog.snapshot_status()
    status["timestamp"] = datetime.now(timezone.utc).isoformat()
    return status


@router.get("/debug/storage")
def storage_status(
    catalog: Catalog = Depends(get_catalog),
    settings: Settings = Depends(get_settings),
):
    try:
        files = catalog.storage.list_objects("", limit=10)
    except StorageError as exc:
        raise HTTPException(status_code=502, detail=str(exc))
    return {
        "configured": settings.has_b2_credentials,
        "filesCount": len(files),
        "files": [
            {"fileName": f.name, "fileId": f.file_id, "size": f.size} for f in files
        ],
    }


@router.get("/debug/pdf/{book_id}")
def debug_pdf(
    book_id: str,
    catalog: Catalog = Depends(get_catalog),
    resolver: FileResolver = Depends(get_resolver),
):
    book = _require_book(catalog, book_id)
    report = {
        "book": {"id": book.id, "title": book.title, "fileName": book.pdf_file_name},
        "parts": [],
    }
    targets = (
        [(part.part_number, part.pdf_file_name) for part in book.sorted_parts]
        if book.has_parts
        else [(None, book.pdf_file_name)]
    )
    for part_number, name in targets:
        entry = {"partNumber": part_number, "lookingFor": name}
        try:
            if part_number is None:
                location = resolver.resolve_pdf(book)
            else:
                location = resolver.resolve_part(book, part_number)
            entry["resolved"] = location.as_dict()
        except (NoFileAttached, FileNotResolved, StorageError) as exc:
            entry["error"] = f"{type(exc).__name__}: {exc}"
        report["parts"].append(entry)
    return report
