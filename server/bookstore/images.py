"""
Image hosting abstraction for Cloudinary and in-memory testing.

Cover assets also carry a copy of the book metadata in their custom context,
which lets the catalog be rebuilt from Cloudinary alone.
"""

from __future__ import annotations

import io
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Callable, Optional, Protocol

import cloudinary
import cloudinary.api
import cloudinary.exceptions
import cloudinary.uploader

if TYPE_CHECKING:
    from bookstore.db import BookRecord

COVER_TRANSFORMATION = [
    {"width": 600, "height": 900, "crop": "fill"},
    {"quality": "auto:good"},
]


class ImageHostError(Exception):
    """Raised when the image host rejects or fails a request."""


@dataclass
class UploadedImage:
    public_id: str
    secure_url: str


@dataclass
class ImageResource:
    public_id: str
    secure_url: str
    created_at: Optional[str] = None
    context: dict = field(default_factory=dict)


def context_value(value) -> str:
    if value is None:
        return ""
    return str(value).replace("|", " ")


def cover_context(book: "BookRecord") -> dict[str, str]:
    return {
        "title": context_value(book.title),
        "author": context_value(book.author),
        "description": context_value(book.description),
        "category": context_value(book.category),
        "readingTime": context_value(book.reading_time),
        "rating": str(book.rating) if book.rating else "0",
        "isTrending": "true" if book.is_trending else "false",
    }


def context_string(context: dict) -> str:
    return "|".join(f"{key}={context_value(value)}" for key, value in context.items())


class ImageHost(Protocol):
    """Defines the operations the API needs from the image CDN."""

    def upload_image(
        self,
        data: bytes,
        *,
        folder: str,
        public_id: str,
        context: Optional[dict] = None,
        cover: bool = False,
    ) -> UploadedImage:
        ...

    def update_context(self, public_id: str, context: dict) -> None:
        ...

    def list_resources(self, prefix: str, limit: int = 500) -> list[ImageResource]:
        ...

    def ping(self) -> None:
        ...


@dataclass
class InMemoryImageHost:
    """Test double for image hosting."""

    base_url: str = "https://images.example.test"
    resources: dict = field(default_factory=dict)
    payloads: dict = field(default_factory=dict)

    def upload_image(
        self,
        data: bytes,
        *,
        folder: str,
        public_id: str,
        context: Optional[dict] = None,
        cover: bool = False,
    ) -> UploadedImage:
        full_id = f"{folder}/{public_id}"
        suffix = ".webp" if cover else ""
        resource = ImageResource(
            public_id=full_id,
            secure_url=f"{self.base_url}/{full_id}{suffix}",
            created_at=time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime()),
            context=dict(context or {}),
        )
        self.resources[full_id] = resource
        self.payloads[full_id] = bytes(data)
        return UploadedImage(public_id=full_id, secure_url=resource.secure_url)

    def update_context(self, public_id: str, context: dict) -> None:
        resource = self.resources.get(public_id)
        if resource is None:
            raise ImageHostError(f"Resource not found: {public_id}")
        resource.context = dict(context)

    def list_resources(self, prefix: str, limit: int = 500) -> list[ImageResource]:
        matches = [r for key, r in sorted(self.resources.items()) if key.startswith(prefix)]
        return matches[:limit]

    def ping(self) -> None:
        return None


@dataclass
class CloudinaryImageHost:
    """Cloudinary-backed image host."""

    cloud_name: str
    api_key: str
    api_secret: str
    clock: Optional[Callable[[], int]] = None

    def __post_init__(self):
        cloudinary.config(
            cloud_name=self.cloud_name,
            api_key=self.api_key,
            api_secret=self.api_secret,
            secure=True,
        )

    def _timestamp(self) -> int:
        return self.clock() if self.clock else int(time.time())

    def upload_image(
        self,
        data: bytes,
        *,
        folder: str,
        public_id: str,
        context: Optional[dict] = None,
        cover: bool = False,
    ) -> UploadedImage:
        options = {
            "folder": folder,
            "public_id": public_id,
            "resource_type": "image",
            "overwrite": True,
            "timestamp": self._timestamp(),
        }
        if context:
            options["context"] = context
        if cover:
            options.update(
                format="webp",
                quality="auto:good",
                transformation=COVER_TRANSFORMATION,
            )
        try:
            result = cloudinary.uploader.upload(io.BytesIO(data), **options)
        except cloudinary.exceptions.Error as exc:
            raise ImageHostError(f"Cloudinary upload failed: {exc}") from exc
        secure_url = (result or {}).get("secure_url")
        if not secure_url:
            raise ImageHostError("Cloudinary upload returned no URL")
        return UploadedImage(public_id=result.get("public_id", public_id), secure_url=secure_url)

    def update_context(self, public_id: str, context: dict) -> None:
        try:
            cloudinary.uploader.explicit(
                public_id,
                type="upload",
                resource_type="image",
                context=context_string(context),
            )
        except cloudinary.exceptions.Error as exc:
            raise ImageHostError(f"Cloudinary context update failed: {exc}") from exc

    def list_resources(self, prefix: str, limit: int = 500) -> list[ImageResource]:
        try:
            response = cloudinary.api.resources(
                type="upload", prefix=prefix, max_results=limit, context=True
            )
        except cloudinary.exceptions.Error as exc:
            raise ImageHostError(f"Cloudinary listing failed: {exc}") from exc
        resources = []
        for item in response.get("resources", []):
            custom = (item.get("context") or {}).get("custom") or {}
            resources.append(
                ImageResource(
                    public_id=item["public_id"],
                    secure_url=item.get("secure_url", ""),
                    created_at=item.get("created_at"),
                    context=dict(custom),
                )
            )
        return resources

    def ping(self) -> None:
        try:
            cloudinary.api.ping()
        except cloudinary.exceptions.Error as exc:
            raise ImageHostError(f"Cloudinary ping failed: {exc}") from exc
