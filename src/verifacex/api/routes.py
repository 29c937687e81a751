"""API route definitions."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Annotated, TypeVar

from fastapi import APIRouter, Depends, HTTPException, Query, Request, UploadFile, status

from verifacex.api.middleware import (
    get_inference_pool,
    get_pipeline,
    get_settings_from_request,
    read_image,
    verify_api_key,
)
from verifacex.api.schemas import (
    CompactVerifyResponse,
    DetectedFace,
    DetectFacesResponse,
    ErrorResponse,
    FullVerifyResponse,
    HealthResponse,
    ModelInfo,
    ModelsResponse,
    SpoofingResponse,
)
from verifacex.ml.model_manager import MODEL_REGISTRY
from verifacex.ml.pipeline import CompactVerification
from verifacex.ml.types import NotInitializedError

if TYPE_CHECKING:
    from collections.abc import Awaitable

    from verifacex.config import Settings
    from verifacex.ml.model_manager import ModelManager

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1", dependencies=[Depends(verify_api_key)])

T = TypeVar("T")

_INFERENCE_ERRORS = {
    status.HTTP_413_REQUEST_ENTITY_TOO_LARGE: {"model": ErrorResponse},
    status.HTTP_422_UNPROCESSABLE_ENTITY: {"model": ErrorResponse},
    status.HTTP_503_SERVICE_UNAVAILABLE: {"model": ErrorResponse},
}


async def _run(call: Awaitable[T]) -> T:
    """Await a pipeline call, mapping its failures to HTTP errors."""
    try:
        return await call
    except TimeoutError:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Inference queue is full, try again later",
        ) from None
    except NotInitializedError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    except ValueError as exc:
        logger.warning("Rejected input: %s", exc)
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)) from exc


def _active_models(settings: Settings) -> set[str]:
    active = {settings.face_detection_model, settings.face_recognition_model}
    if settings.spoofing_enabled:
        active.update(settings.spoofing_models)
    return active


@router.post(
    "/detect-faces",
    response_model=DetectFacesResponse,
    responses=_INFERENCE_ERRORS,
    summary="Detect the primary face in an image",
)
async def detect_faces(request: Request, file: UploadFile) -> DetectFacesResponse:
    """Detect the largest face and its landmarks in an uploaded image."""
    settings = get_settings_from_request(request)
    pipeline = get_pipeline(request)
    image = await _run(read_image(file, settings, get_inference_pool(request)))

    detection = await _run(pipeline.detect(image))
    return DetectFacesResponse(face=DetectedFace.from_detection(detection) if detection else None)


@router.post(
    "/verify",
    response_model=CompactVerifyResponse | FullVerifyResponse,
    responses=_INFERENCE_ERRORS,
    summary="Verify whether two images show the same person",
)
async def verify_faces(
    request: Request,
    file1: UploadFile,
    file2: UploadFile,
    compact: Annotated[bool, Query(description="Return only the verification summary")] = True,
    threshold: Annotated[float | None, Query(ge=-1.0, le=1.0, description="Similarity threshold override")] = None,
) -> CompactVerifyResponse | FullVerifyResponse:
    """Compare the primary faces of two uploaded images."""
    settings = get_settings_from_request(request)
    pipeline = get_pipeline(request)
    pool = get_inference_pool(request)
    image1 = await _run(read_image(file1, settings, pool))
    image2 = await _run(read_image(file2, settings, pool))

    result = await _run(pipeline.verify(image1, image2, compact=compact, threshold=threshold))
    if isinstance(result, CompactVerification):
        return CompactVerifyResponse.from_result(result)
    return FullVerifyResponse.from_result(result, settings.spoofing_threshold)


@router.post(
    "/analyze-spoofing",
    response_model=SpoofingResponse,
    responses={**_INFERENCE_ERRORS, status.HTTP_409_CONFLICT: {"model": ErrorResponse}},
    summary="Check whether the face in an image is live",
)
async def analyze_spoofing(request: Request, file: UploadFile) -> SpoofingResponse:
    """Detect the primary face and score it for presentation attacks."""
    settings = get_settings_from_request(request)
    pipeline = get_pipeline(request)
    if not pipeline.spoofing_enabled:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Anti-spoofing is disabled")

    image = await _run(read_image(file, settings, get_inference_pool(request)))
    detection = await _run(pipeline.detect(image))
    result = await _run(pipeline.analyze_spoofing(image, detection.box if detection else None))
    if result is None:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Anti-spoofing is disabled")
    return SpoofingResponse.from_result(result, settings.spoofing_threshold)


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
)
async def health(request: Request) -> HealthResponse:
    """Return service health status."""
    settings = get_settings_from_request(request)
    pool = get_inference_pool(request)
    model_manager: ModelManager = request.app.state.model_manager
    return HealthResponse(
        status="ok" if get_pipeline(request).is_initialized else "starting",
        gpu=settings.device == "cuda",
        models_loaded=model_manager.get_loaded_models(),
        spoofing_enabled=settings.spoofing_enabled,
        concurrent_requests=pool.active_count,
        queue_depth=pool.queue_depth,
    )


@router.get(
    "/models",
    response_model=ModelsResponse,
    summary="List available models",
)
async def list_models(request: Request) -> ModelsResponse:
    """Return known models and whether the current configuration uses them."""
    active = _active_models(get_settings_from_request(request))
    return ModelsResponse(
        models=[
            ModelInfo(
                name=spec.name,
                task=spec.task,
                status="active" if spec.name in active else "available",
            )
            for spec in MODEL_REGISTRY.values()
        ]
    )
