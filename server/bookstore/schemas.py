"""
Pydantic schemas for the bookstore API.

Field names are snake_case in Python and camelCase on the wire, matching the
JSON the storefront client already consumes.
"""

from __future__ import annotations

from typing import Optional, Union

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class PdfPartModel(CamelModel):
    part_number: int
    b2_file_name: Optional[str] = None
    file_name: Optional[str] = None


class BookSummary(CamelModel):
    id: str
    title: str
    author: str
    description: str = ""
    category: str = "General"
    reading_time: str = "Flexible"
    rating: Optional[float] = 0
    is_trending: bool = False
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    cover_image: Optional[str] = None
    cloudinary_cover_url: Optional[str] = None
    b2_file_name: Optional[str] = None
    pdf_parts: Optional[list[PdfPartModel]] = None
    page_count: Optional[int] = None


class BookDetail(BookSummary):
    file_name: Optional[str] = None
    b2_cover_file_name: Optional[str] = None
    storage: Optional[dict] = None


class CdnPart(PdfPartModel):
    cdn_url: Optional[str] = None


class CdnResponse(CamelModel):
    cdn_pdf_url: Optional[str] = None
    cdn_cover_url: Optional[str] = None
    parts: list[CdnPart] = []
    ttl_seconds: int
    message: Optional[str] = None


class ViewPart(CamelModel):
    part_number: int
    b2_file_name: Optional[str] = None
    view_url: Optional[str] = None


class ViewResponse(CamelModel):
    view_url: str
    is_split: bool
    total_parts: Optional[int] = None
    parts: Optional[list[ViewPart]] = None


class BlogResponse(CamelModel):
    id: str
    title: str
    excerpt: str = ""
    description: str = ""
    category: str = "GENERAL"
    image: str = ""
    date: str = ""
    created_at: Optional[str] = None


class BookMetadataUpdate(CamelModel):
    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, extra="ignore"
    )

    title: Optional[str] = None
    author: Optional[str] = None
    description: Optional[str] = None
    category: Optional[str] = None
    reading_time: Optional[str] = None
    rating: Optional[Union[float, str]] = None
    is_trending: Optional[Union[bool, str]] = None


class TrendingUpdate(CamelModel):
    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, extra="ignore"
    )

    is_trending: Union[bool, str] = False


class B2FileError(CamelModel):
    file_name: str
    error: str


class B2CleanupReport(CamelModel):
    attempted: list[str] = []
    deleted: list[str] = []
    errors: list[B2FileError] = []


class DeleteBookResponse(CamelModel):
    success: bool
    deleted_id: str
    b2: B2CleanupReport


class DeleteBlogResponse(CamelModel):
    success: bool
    deleted_id: str
