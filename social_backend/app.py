"""
FastAPI application entry point for the social backend.
"""

from __future__ import annotations

import logging

from fastapi import FastAPI

from social_backend.config import get_settings
from social_backend.errors import register_error_handlers
from social_backend.routes import router


def create_app() -> FastAPI:
    settings = get_settings()
    logging.basicConfig(level=settings.log_level.upper())
    app = FastAPI(title="Social Backend (FastAPI)", version="0.1.0")
    register_error_handlers(app)
    app.include_router(router, prefix=settings.api_prefix)
    return app


app = create_app()
