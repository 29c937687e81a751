"""FastAPI application entry point."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from verifacex.api.routes import router
from verifacex.config import get_settings
from verifacex.ml.inference import InferencePool, OnnxNetworkExecutor
from verifacex.ml.model_manager import OnnxModelManager
from verifacex.ml.pipeline import FacePipeline

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan: load models on startup, release them on shutdown."""
    settings = get_settings()
    app.state.settings = settings

    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

    logger.info(
        "Starting VerifaceX (device=%s, max_concurrent=%s, detection=%s, recognition=%s, spoofing=%s)",
        settings.device,
        settings.max_concurrent,
        settings.face_detection_model,
        settings.face_recognition_model,
        settings.spoofing_enabled,
    )

    model_manager = OnnxModelManager(settings)
    inference_pool = InferencePool(settings)
    pipeline = FacePipeline.from_settings(settings, OnnxNetworkExecutor(model_manager, inference_pool))
    app.state.model_manager = model_manager
    app.state.inference_pool = inference_pool
    app.state.pipeline = pipeline

    await pipeline.initialize()
    logger.info("VerifaceX ready")
    yield

    logger.info("Shutting down VerifaceX")
    await pipeline.destroy()
    inference_pool.shutdown()
    model_manager.shutdown()
    logger.info("VerifaceX shutdown complete")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    application = FastAPI(
        title="VerifaceX",
        description="Face detection, verification and anti-spoofing API",
        version="0.1.0",
        lifespan=lifespan,
    )

    application.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    application.include_router(router)
    return application


app = create_app()


def run() -> None:
    """Console entry point: serve the app with uvicorn."""
    import uvicorn

    settings = get_settings()
    uvicorn.run("verifacex.main:app", host=settings.host, port=settings.port)
