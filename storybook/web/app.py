"""
FastAPI application factory.
"""

from __future__ import annotations

import logging

import uvicorn
from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles

from storybook.common import (
    GenerationFormatError,
    ImageGenerationError,
    Settings,
    StorybookError,
    StoryRequestError,
    configure_logging,
    get_settings,
)
from storybook.pipeline import StoryLibrary, StorybookPipeline
from storybook.storage import LocalStoryStorage, storage_from_settings

from .routes import router

logger = logging.getLogger(__name__)


def create_app(
    settings: Settings | None = None,
    *,
    pipeline: StorybookPipeline | None = None,
    library: StoryLibrary | None = None,
) -> FastAPI:
    """
    Build the API. ``pipeline`` and ``library`` default to instances wired from ``settings``.
    """
    settings = settings or get_settings()
    configure_logging(settings.log_level)

    if pipeline is None:
        pipeline = StorybookPipeline(
            config=settings.pipeline_config(),
            storage=storage_from_settings(settings),
            text_api_key=settings.openai_api_key,
            image_api_token=settings.replicate_api_token,
        )
    storage = pipeline.storage
    library = library or StoryLibrary(storage, downloader=pipeline.downloader)

    app = FastAPI(title=settings.app_name, version=settings.app_version)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.state.settings = settings
    app.state.pipeline = pipeline
    app.state.library = library

    _register_exception_handlers(app)
    app.include_router(router)

    if isinstance(storage, LocalStoryStorage):
        storage.root.mkdir(parents=True, exist_ok=True)
        app.mount(
            storage.url_prefix,
            StaticFiles(directory=str(storage.root)),
            name="stories",
        )

    logger.info("%s %s ready (storage=%s)", settings.app_name, settings.app_version, settings.storage_backend)
    return app


def _register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(StoryRequestError)
    async def _story_request_error(request: Request, exc: StoryRequestError) -> JSONResponse:
        logger.warning("Rejected %s: %s", request.url.path, exc)
        return JSONResponse(status_code=exc.status_code, content={"error": str(exc)})

    @app.exception_handler(GenerationFormatError)
    async def _format_error(request: Request, exc: GenerationFormatError) -> JSONResponse:
        logger.error("Invalid model response on %s: %s", request.url.path, exc)
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": "Failed to generate story", "message": str(exc)},
        )

    @app.exception_handler(ImageGenerationError)
    async def _image_error(request: Request, exc: ImageGenerationError) -> JSONResponse:
        logger.error("Image generation failed on %s: %s", request.url.path, exc)
        return JSONResponse(
            status_code=exc.status_code,
            content={
                "error": "Failed to generate image",
                "message": str(exc),
                "errorType": exc.error_type,
            },
        )

    @app.exception_handler(StorybookError)
    async def _storybook_error(request: Request, exc: StorybookError) -> JSONResponse:
        logger.error("Request to %s failed: %s", request.url.path, exc)
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": "Request failed", "message": str(exc)},
        )

    @app.exception_handler(RequestValidationError)
    async def _validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
        return JSONResponse(
            status_code=400,
            content={"error": "Invalid request body", "details": jsonable_encoder(exc.errors())},
        )

    @app.exception_handler(Exception)
    async def _unexpected_error(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("Unexpected error on %s", request.url.path)
        return JSONResponse(
            status_code=500,
            content={"error": "Internal server error", "message": str(exc)},
        )


def main() -> None:
    load_dotenv()
    settings = get_settings()
    uvicorn.run(
        "storybook.web.app:create_app",
        factory=True,
        host="0.0.0.0",
        port=8000,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
