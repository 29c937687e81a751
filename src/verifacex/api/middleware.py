"""Request dependencies: API key authentication and image upload handling."""

from __future__ import annotations

import secrets
from typing import TYPE_CHECKING, Annotated

from fastapi import Depends, HTTPException, Request, UploadFile, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from verifacex.ml.preprocessing import decode_image

if TYPE_CHECKING:
    import numpy as np
    from numpy.typing import NDArray

    from verifacex.config import Settings
    from verifacex.ml.inference import InferencePool
    from verifacex.ml.pipeline import FacePipeline

_bearer_scheme = HTTPBearer(auto_error=False)


def get_settings_from_request(request: Request) -> Settings:
    settings: Settings = request.app.state.settings
    return settings


def get_pipeline(request: Request) -> FacePipeline:
    pipeline: FacePipeline = request.app.state.pipeline
    return pipeline


def get_inference_pool(request: Request) -> InferencePool:
    pool: InferencePool = request.app.state.inference_pool
    return pool


async def verify_api_key(
    request: Request,
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(_bearer_scheme)],
) -> None:
    """Check the Bearer token against the configured API key.

    If no API key is configured (VERIFACEX_API_KEY not set), all requests pass.
    If configured, requests must include 'Authorization: Bearer <key>'.
    """
    expected = get_settings_from_request(request).api_key
    if expected is None:
        return

    presented = credentials.credentials if credentials is not None else ""
    if not secrets.compare_digest(presented.encode(), expected.encode()):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or missing API key",
            headers={"WWW-Authenticate": "Bearer"},
        )


async def read_image(upload: UploadFile, settings: Settings, pool: InferencePool) -> NDArray[np.uint8]:
    """Read an uploaded image and decode it on the inference pool, enforcing size limits.

    Raises:
        HTTPException: 413 when the file is too large, 422 when it cannot be decoded.
        TimeoutError: If the inference pool is saturated.
    """
    data = await upload.read(settings.max_file_size + 1)
    if len(data) > settings.max_file_size:
        raise HTTPException(
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            detail=f"File '{upload.filename}' exceeds {settings.max_file_size} bytes",
        )
    try:
        return await pool.run(decode_image, data, settings.max_image_pixels)
    except ValueError as exc:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=f"Invalid image '{upload.filename}': {exc}",
        ) from exc
