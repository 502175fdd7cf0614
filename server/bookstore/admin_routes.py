"""
Password-protected admin routes for managing books and blog posts.
"""

from __future__ import annotations

import logging
import secrets
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from starlette.datastructures import FormData, UploadFile

from bookstore.catalog import Catalog, book_prefix
from bookstore.config import Settings, get_settings
from bookstore.db import BlogRecord, BookRecord, PdfPart, utc_now_iso
from bookstore.dependencies import get_catalog
from bookstore.images import ImageHostError, cover_context
from bookstore.resolver import is_storage_name
from bookstore.schemas import (
    B2CleanupReport,
    B2FileError,
    BlogResponse,
    BookDetail,
    BookMetadataUpdate,
    DeleteBlogResponse,
    DeleteBookResponse,
    TrendingUpdate,
)
from bookstore.storage import StorageError
from bookstore.uploads import (
    InvalidPdf,
    image_public_id,
    inspect_pdf,
    new_record_id,
    part_pdf_path,
    single_pdf_path,
)

logger = logging.getLogger(__name__)

_FORM_TYPES = ("multipart/form-data", "application/x-www-form-urlencoded")


async def require_admin(request: Request, settings: Settings = Depends(get_settings)) -> None:
    """
    Accept the admin password from the ``x-admin-password`` header or an
    ``adminPassword`` field in the form or JSON body.
    """
    password = request.headers.get("x-admin-password")
    if not password:
        content_type = request.headers.get("content-type", "")
        if content_type.startswith(_FORM_TYPES):
            form = await request.form()
            value = form.get("adminPassword")
            password = value if isinstance(value, str) else None
        elif content_type.startswith("application/json"):
            try:
                body = await request.json()
            except ValueError:
                body = None
            if isinstance(body, dict):
                password = body.get("adminPassword")

    if not password:
        raise HTTPException(status_code=401, detail="Admin password required")
    if not secrets.compare_digest(str(password), settings.admin_password):
        raise HTTPException(status_code=401, detail="Invalid admin password")


router = APIRouter(prefix="/admin", dependencies=[Depends(require_admin)])


def _text(form: FormData, key: str) -> Optional[str]:
    value = form.get(key)
    return value if isinstance(value, str) else None


def _file(form: FormData, key: str) -> Optional[UploadFile]:
    value = form.get(key)
    if isinstance(value, UploadFile) and value.filename:
        return value
    return None


async def _read_upload(upload: UploadFile, settings: Settings) -> bytes:
    data = await upload.read()
    if len(data) > settings.max_upload_bytes:
        raise HTTPException(
            status_code=413,
            detail=f"{upload.filename} exceeds the {settings.max_upload_bytes} byte upload limit",
        )
    return data


async def _read_pdf(upload: UploadFile, settings: Settings) -> tuple[bytes, int]:
    data = await _read_upload(upload, settings)
    try:
        pages = inspect_pdf(data)
    except InvalidPdf as exc:
        raise HTTPException(status_code=400, detail=f"{upload.filename} is not a valid PDF: {exc}")
    return data, pages


def _parse_rating(value) -> float:
    if value is None or value == "":
        return 0
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise HTTPException(status_code=400, detail="rating must be a number")
    return int(number) if number.is_integer() else number


def _is_true(value) -> bool:
    return value is True or value == "true"


def _apply_fields(book: BookRecord, fields: dict) -> None:
    """Apply provided metadata fields; keys mapped to None are left alone."""
    for key in ("title", "author", "description", "reading_time"):
        if fields.get(key) is not None:
            setattr(book, key, fields[key].strip())
    if fields.get("category") is not None:
        book.category = fields["category"].strip() or "General"
    if fields.get("rating") is not None:
        book.rating = _parse_rating(fields["rating"])
    if fields.get("is_trending") is not None:
        book.is_trending = _is_true(fields["is_trending"])


def _cover_public_id(book: BookRecord, settings: Settings) -> str:
    return f"{settings.covers_folder}/cover-{book.id}"


def _refresh_cover_context(catalog: Catalog, book: BookRecord) -> None:
    """Keep the Cloudinary copy of the metadata current; failures only log."""
    if catalog.images is None or not book.cloudinary_cover_url:
        return
    try:
        catalog.images.update_context(_cover_public_id(book, catalog.settings), cover_context(book))
    except ImageHostError as exc:
        logger.warning("Failed to update Cloudinary context for %s: %s", book.id, exc)


def _upload_cover(catalog: Catalog, book: BookRecord, data: bytes) -> None:
    try:
        uploaded = catalog.images.upload_image(
            data,
            folder=catalog.settings.covers_folder,
            public_id=f"cover-{book.id}",
            context=cover_context(book),
            cover=True,
        )
    except ImageHostError as exc:
        logger.error("Cover upload for %s failed: %s", book.id, exc)
        raise HTTPException(
            status_code=500, detail=f"Failed to upload cover image to Cloudinary: {exc}"
        )
    book.cover_image = uploaded.secure_url
    book.cloudinary_cover_url = uploaded.secure_url


def _pdf_provider(settings: Settings) -> str:
    return "backblaze" if settings.has_b2_credentials else "memory"


def _detail(book: BookRecord) -> BookDetail:
    return BookDetail.model_validate(book.as_dict())


@router.post("/books", response_model=BookDetail, status_code=201)
async def create_book(
    request: Request,
    catalog: Catalog = Depends(get_catalog),
    settings: Settings = Depends(get_settings),
):
    form = await request.form()
    title = (_text(form, "title") or "").strip()
    author = (_text(form, "author") or "").strip()
    if not title or not author:
        raise HTTPException(status_code=400, detail="Title and author are required")

    book = BookRecord(
        id=new_record_id("book"),
        title=title,
        author=author,
        description=(_text(form, "description") or "").strip(),
        category=(_text(form, "category") or "").strip() or "General",
        reading_time=(_text(form, "readingTime") or "").strip() or "Flexible",
        rating=_parse_rating(_text(form, "rating")),
        is_trending=_is_true(_text(form, "isTrending")),
    )

    # Read and validate every upload before anything is written to storage.
    pending: list[tuple[int, UploadFile, bytes, int]] = []
    if _text(form, "hasParts") == "true" and _text(form, "partsCount"):
        try:
            parts_count = int(_text(form, "partsCount"))
        except ValueError:
            raise HTTPException(status_code=400, detail="partsCount must be an integer")
        for number in range(1, min(parts_count, settings.max_pdf_parts) + 1):
            upload = _file(form, f"pdfPart{number}")
            if upload is None:
                continue
            data, pages = await _read_pdf(upload, settings)
            pending.append((number, upload, data, pages))
    else:
        upload = _file(form, "pdf")
        if upload is not None:
            data, pages = await _read_pdf(upload, settings)
            pending.append((0, upload, data, pages))

    cover = _file(form, "coverImage")
    cover_data = await _read_upload(cover, settings) if cover is not None else None

    # Covers upload before PDFs, so a cover failure writes nothing to B2.
    if cover_data is not None:
        _upload_cover(catalog, book, cover_data)
        cover_storage = {"provider": "cloudinary", "url": book.cloudinary_cover_url}
    else:
        book.cover_image = settings.default_cover_url
        cover_storage = {"provider": "placeholder", "url": book.cover_image}

    if not pending:
        logger.warning("Creating book %s without PDF (metadata-only)", book.id)

    uploaded_paths = []
    page_count = 0
    for number, upload, data, pages in pending:
        path = (
            part_pdf_path(book.id, number, upload.filename)
            if number
            else single_pdf_path(book.id, upload.filename)
        )
        try:
            stored = catalog.storage.upload_bytes(path, data, "application/pdf")
        except StorageError as exc:
            logger.error("Failed to upload %s for %s: %s", upload.filename, book.id, exc)
            continue
        logger.info("Uploaded %s to %s", upload.filename, stored.name)
        uploaded_paths.append(stored.name)
        page_count += pages
        if number:
            book.pdf_parts = (book.pdf_parts or []) + [
                PdfPart(
                    part_number=number,
                    b2_file_name=stored.name,
                    file_name=stored.name,
                    b2_file_id=stored.file_id,
                )
            ]
        else:
            book.b2_file_name = stored.name
            book.file_name = stored.name
            book.b2_file_id = stored.file_id
    book.page_count = page_count or None

    pdf_storage = None
    if uploaded_paths:
        pdf_storage = {
            "provider": _pdf_provider(settings),
            "path": uploaded_paths if book.has_parts else uploaded_paths[0],
        }
    book.storage = {"cover": cover_storage, "pdf": pdf_storage}

    if not catalog.save_book(book):
        logger.warning("Book %s saved but catalog snapshot is stale", book.id)
    logger.info("Book created: %s (%s)", book.title, book.id)
    return _detail(book)


@router.put("/books/{book_id}", response_model=BookDetail)
async def update_book(
    book_id: str,
    request: Request,
    catalog: Catalog = Depends(get_catalog),
    settings: Settings = Depends(get_settings),
):
    book = catalog.get_book(book_id)
    if book is None:
        raise HTTPException(status_code=404, detail="Book not found")
    form = await request.form()

    _apply_fields(
        book,
        {
            "title": _text(form, "title"),
            "author": _text(form, "author"),
            "description": _text(form, "description"),
            "category": _text(form, "category"),
            "reading_time": _text(form, "readingTime"),
            "rating": _text(form, "rating"),
            "is_trending": _text(form, "isTrending"),
        },
    )

    upload = _file(form, "pdf")
    if upload is not None:
        data, pages = await _read_pdf(upload, settings)
        try:
            stored = catalog.storage.upload_bytes(
                single_pdf_path(book.id, upload.filename), data, "application/pdf"
            )
        except StorageError as exc:
            logger.error("Failed to upload replacement PDF for %s: %s", book.id, exc)
            raise HTTPException(
                status_code=500, detail=f"Failed to upload PDF to Backblaze: {exc}"
            )
        book.b2_file_name = stored.name
        book.file_name = stored.name
        book.b2_file_id = stored.file_id
        book.pdf_parts = None
        book.page_count = pages
        book.storage = {
            **(book.storage or {}),
            "pdf": {"provider": _pdf_provider(settings), "path": stored.name},
        }

    cover = _file(form, "coverImage")
    if cover is not None:
        _upload_cover(catalog, book, await _read_upload(cover, settings))
        book.storage = {
            **(book.storage or {}),
            "cover": {"provider": "cloudinary", "url": book.cloudinary_cover_url},
        }
    else:
        _refresh_cover_context(catalog, book)

    book.updated_at = utc_now_iso()
    catalog.save_book(book)
    return _detail(book)


@router.patch("/books/{book_id}/metadata", response_model=BookDetail)
def update_book_metadata(
    book_id: str,
    payload: BookMetadataUpdate,
    catalog: Catalog = Depends(get_catalog),
):
    book = catalog.get_book(book_id)
    if book is None:
        raise HTTPException(status_code=404, detail="Book not found")
    _apply_fields(book, payload.model_dump())
    book.updated_at = utc_now_iso()
    _refresh_cover_context(catalog, book)
    catalog.save_book(book)
    return _detail(book)


@router.patch("/books/{book_id}/trending", response_model=BookDetail)
def update_book_trending(
    book_id: str,
    payload: TrendingUpdate,
    catalog: Catalog = Depends(get_catalog),
):
    book = catalog.get_book(book_id)
    if book is None:
        raise HTTPException(status_code=404, detail="Book not found")
    book.is_trending = _is_true(payload.is_trending)
    book.updated_at = utc_now_iso()
    _refresh_cover_context(catalog, book)
    catalog.save_book(book)
    return _detail(book)


def _delete_stored_files(catalog: Catalog, book: BookRecord) -> B2CleanupReport:
    """Delete the book's PDFs by name, then sweep anything left under its prefix."""
    storage = catalog.storage
    report = B2CleanupReport()

    names = [part.pdf_file_name for part in book.sorted_parts]
    names.append(book.pdf_file_name)
    for name in names:
        if not is_storage_name(name) or name in report.attempted:
            continue
        report.attempted.append(name)
        try:
            found = storage.find_object(name)
            if found is None:
                report.errors.append(B2FileError(file_name=name, error="Not found in B2"))
                continue
            storage.delete_object(found.name, found.file_id)
            report.deleted.append(found.name)
        except StorageError as exc:
            report.errors.append(B2FileError(file_name=name, error=str(exc)))

    try:
        leftovers = storage.list_objects(book_prefix(book.id))
    except StorageError as exc:
        report.errors.append(B2FileError(file_name=book_prefix(book.id), error=str(exc)))
        return report
    for obj in leftovers:
        if obj.name in report.deleted:
            continue
        report.attempted.append(obj.name)
        try:
            storage.delete_object(obj.name, obj.file_id)
            report.deleted.append(obj.name)
        except StorageError as exc:
            report.errors.append(B2FileError(file_name=obj.name, error=str(exc)))
    return report


@router.delete("/books/{book_id}", response_model=DeleteBookResponse)
def delete_book(book_id: str, catalog: Catalog = Depends(get_catalog)):
    book = catalog.get_book(book_id)
    if book is None:
        raise HTTPException(status_code=404, detail="Book not found")

    report = _delete_stored_files(catalog, book)
    if report.errors:
        logger.warning("B2 cleanup for %s reported %d errors", book_id, len(report.errors))
    catalog.delete_book(book_id)
    logger.info("Book deleted: %s (%s)", book.title, book_id)
    return DeleteBookResponse(success=True, deleted_id=book_id, b2=report)


async def _upload_blog_image(catalog: Catalog, upload: UploadFile, settings: Settings) -> str:
    data = await _read_upload(upload, settings)
    try:
        uploaded = catalog.images.upload_image(
            data, folder=settings.blogs_folder, public_id=image_public_id(upload.filename)
        )
    except ImageHostError as exc:
        logger.error("Blog image upload failed: %s", exc)
        raise HTTPException(
            status_code=500, detail=f"Failed to upload blog image to Cloudinary: {exc}"
        )
    return uploaded.secure_url


@router.post("/blogs", response_model=BlogResponse, status_code=201)
async def create_blog(
    request: Request,
    catalog: Catalog = Depends(get_catalog),
    settings: Settings = Depends(get_settings),
):
    form = await request.form()
    title = (_text(form, "title") or "").strip()
    if not title:
        raise HTTPException(status_code=400, detail="Title is required")

    image = ""
    upload = _file(form, "image")
    if upload is not None:
        image = await _upload_blog_image(catalog, upload, settings)

    description = (_text(form, "description") or "").strip()
    blog = BlogRecord(
        id=new_record_id("blog"),
        title=title,
        excerpt=(_text(form, "excerpt") or "").strip() or description,
        description=description,
        category=(_text(form, "category") or "").strip() or "GENERAL",
        image=image,
        date=(_text(form, "date") or "").strip()
        or datetime.now(timezone.utc).date().isoformat(),
    )
    catalog.db.save_blog(blog)
    logger.info("Blog created: %s (%s)", blog.title, blog.id)
    return BlogResponse.model_validate(blog.as_dict())


@router.put("/blogs/{blog_id}", response_model=BlogResponse)
async def update_blog(
    blog_id: str,
    request: Request,
    catalog: Catalog = Depends(get_catalog),
    settings: Settings = Depends(get_settings),
):
    blog = catalog.db.get_blog(blog_id)
    if blog is None:
        raise HTTPException(status_code=404, detail="Blog not found")
    form = await request.form()

    for key in ("title", "excerpt", "description", "date"):
        value = _text(form, key)
        if value:
            setattr(blog, key, value.strip())
    category = _text(form, "category")
    if category:
        blog.category = category.strip()

    upload = _file(form, "image")
    if upload is not None:
        blog.image = await _upload_blog_image(catalog, upload, settings)

    catalog.db.save_blog(blog)
    return BlogResponse.model_validate(blog.as_dict())


@router.delete("/blogs/{blog_id}", response_model=DeleteBlogResponse)
def delete_blog(blog_id: str, catalog: Catalog = Depends(get_catalog)):
    if not catalog.db.delete_blog(blog_id):
        raise HTTPException(status_code=404, detail="Blog not found")
    logger.info("Blog deleted: %s", blog_id)
    return DeleteBlogResponse(success=True, deleted_id=blog_id)
