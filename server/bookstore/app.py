"""
FastAPI application entry point for the bookstore backend.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles

from bookstore.admin_routes import router as admin_router
from bookstore.config import get_settings
from bookstore.dependencies import get_clock
from bookstore.routes import router

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    if not settings.has_b2_credentials:
        logger.warning("Backblaze B2 credentials missing; PDFs are kept in memory only")
    if settings.has_cloudinary_credentials:
        # Cloudinary rejects signatures whose timestamp drifts from its clock.
        get_clock().sync()
    else:
        logger.warning("Cloudinary credentials missing; images are kept in memory only")
    yield


def create_app() -> FastAPI:
    settings = get_settings()
    logging.basicConfig(level=settings.log_level)

    app = FastAPI(title="Bookstore Backend", version="0.1.0", lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
        allow_headers=["*"],
        expose_headers=[
            "Content-Length",
            "Content-Range",
            "Accept-Ranges",
            "Content-Disposition",
            "ETag",
        ],
    )
    if Path(settings.uploads_dir).is_dir():
        app.mount("/uploads", StaticFiles(directory=settings.uploads_dir), name="uploads")
    app.include_router(router, prefix=settings.api_prefix)
    app.include_router(admin_router, prefix=settings.api_prefix)
    return app


app = create_app()
