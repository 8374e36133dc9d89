"""ASGI application exposing the analyze endpoints under ``/api``."""

from __future__ import annotations

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError

from .. import __version__
from .routes import router
from .shared import validation_error_handler


def create_app() -> FastAPI:
    application = FastAPI(title="Issue Analysis Agent", version=__version__)
    application.add_exception_handler(RequestValidationError, validation_error_handler)
    application.include_router(router, prefix="/api")
    return application


app = create_app()
