"""
FastAPI application entry point.
"""

from __future__ import annotations

import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from bhss.config import get_settings
from bhss.errors import register_exception_handlers
from bhss.routes import router
from bhss.routes.uploads import router as uploads_router


def create_app() -> FastAPI:
    settings = get_settings()
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    app = FastAPI(title="BHSS Websystem Backend", version="0.1.0")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    register_exception_handlers(app)
    app.include_router(router, prefix=settings.api_prefix)
    app.include_router(uploads_router)

    @app.get("/")
    def root() -> dict:
        return {"message": "BHSS Websystem Backend API"}

    return app


app = create_app()
