"""
FastAPI application entry point for the collector marketplace.
"""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from card_lookup.scan import ScanError
from collector.config import get_settings
from collector.errors import MarketplaceError
from collector.routes import router
from models.gemini import GeminiInvalidResponseException

logger = logging.getLogger(__name__)


def create_app() -> FastAPI:
    settings = get_settings()
    app = FastAPI(title="Collector Marketplace (FastAPI)", version="0.1.0")
    app.include_router(router, prefix=settings.api_prefix)

    @app.exception_handler(MarketplaceError)
    async def marketplace_error_handler(request: Request, exc: MarketplaceError):
        return JSONResponse(status_code=exc.status_code, content={"detail": str(exc)})

    @app.exception_handler(ScanError)
    async def scan_error_handler(request: Request, exc: ScanError):
        logger.warning("Scan failed for %s: %s", request.url.path, exc)
        return JSONResponse(status_code=502, content={"detail": str(exc)})

    @app.exception_handler(GeminiInvalidResponseException)
    async def model_error_handler(
        request: Request, exc: GeminiInvalidResponseException
    ):
        logger.warning("Model call failed for %s: %s", request.url.path, exc)
        return JSONResponse(
            status_code=502, content={"detail": "Image analysis unavailable"}
        )

    return app


app = create_app()
