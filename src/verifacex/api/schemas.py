"""Pydantic request/response schemas for the VerifaceX API."""

from __future__ import annotations

from typing import TYPE_CHECKING

from pydantic import BaseModel, Field

if TYPE_CHECKING:
    from verifacex.ml.pipeline import CompactVerification, FaceAnalysis, FullVerification
    from verifacex.ml.types import Detection, SpoofResult, VerificationResult


class FaceBox(BaseModel):
    """Face bounding box in pixel coordinates of the uploaded image."""

    x: float
    y: float
    width: float
    height: float


class DetectedFace(BaseModel):
    """The primary face found in an image."""

    box: FaceBox
    confidence: float = Field(description="Detection confidence (0.0-1.0)")
    landmarks: list[list[float]] = Field(
        description="Five [x, y] points: left eye, right eye, nose, left mouth, right mouth"
    )
    multiple_faces: bool = Field(description="Whether more than one face was detected")

    @classmethod
    def from_detection(cls, detection: Detection) -> DetectedFace:
        box = detection.box
        return cls(
            box=FaceBox(x=box.x, y=box.y, width=box.width, height=box.height),
            confidence=detection.confidence,
            landmarks=[[float(x), float(y)] for x, y in detection.landmarks],
            multiple_faces=detection.multiple_faces,
        )


class DetectFacesResponse(BaseModel):
    """Response for the face detection endpoint; ``face`` is null when none was found."""

    face: DetectedFace | None


class SpoofingResponse(BaseModel):
    """Liveness decision for one face."""

    real: bool
    score: float = Field(ge=0.0, le=1.0, description="Confidence of the winning label")
    realness: float = Field(ge=0.0, le=1.0)
    fakeness: float = Field(ge=0.0, le=1.0)
    threshold: float

    @classmethod
    def from_result(cls, result: SpoofResult, threshold: float) -> SpoofingResponse:
        return cls(
            real=result.real,
            score=_unit(result.score),
            realness=_unit(result.realness),
            fakeness=_unit(result.fakeness),
            threshold=threshold,
        )


class VerificationResponse(BaseModel):
    similarity: float
    verified: bool
    threshold: float

    @classmethod
    def from_result(cls, result: VerificationResult) -> VerificationResponse:
        return cls(similarity=result.similarity, verified=result.verified, threshold=result.threshold)


class PairFlagsResponse(BaseModel):
    face1: bool | None
    face2: bool | None


class CompactVerifyResponse(BaseModel):
    """Verification summary. A ``spoofing`` flag is true when an attack was detected."""

    multiple_faces: PairFlagsResponse
    spoofing: PairFlagsResponse
    verified: bool
    similarity: float

    @classmethod
    def from_result(cls, result: CompactVerification) -> CompactVerifyResponse:
        return cls(
            multiple_faces=PairFlagsResponse(face1=result.multiple_faces.face1, face2=result.multiple_faces.face2),
            spoofing=PairFlagsResponse(face1=result.spoofing.face1, face2=result.spoofing.face2),
            verified=result.verified,
            similarity=result.similarity,
        )


class FaceAnalysisResponse(BaseModel):
    detection: DetectedFace | None
    embedding: list[float]
    spoofing: SpoofingResponse | None

    @classmethod
    def from_analysis(cls, analysis: FaceAnalysis, spoofing_threshold: float) -> FaceAnalysisResponse:
        return cls(
            detection=DetectedFace.from_detection(analysis.detection) if analysis.detection else None,
            embedding=[float(v) for v in analysis.recognition.embedding],
            spoofing=(
                SpoofingResponse.from_result(analysis.spoofing, spoofing_threshold) if analysis.spoofing else None
            ),
        )


class FullVerifyResponse(BaseModel):
    face1: FaceAnalysisResponse
    face2: FaceAnalysisResponse
    verification: VerificationResponse

    @classmethod
    def from_result(cls, result: FullVerification, spoofing_threshold: float) -> FullVerifyResponse:
        return cls(
            face1=FaceAnalysisResponse.from_analysis(result.face1, spoofing_threshold),
            face2=FaceAnalysisResponse.from_analysis(result.face2, spoofing_threshold),
            verification=VerificationResponse.from_result(result.verification),
        )


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "ok"
    gpu: bool
    models_loaded: list[str]
    spoofing_enabled: bool
    concurrent_requests: int
    queue_depth: int


class ModelInfo(BaseModel):
    """Information about an available model."""

    name: str
    task: str = Field(description="Model task: 'face_detection', 'face_recognition', or 'anti_spoofing'")
    status: str = Field(description="Model status: 'active' or 'available'")


class ModelsResponse(BaseModel):
    """Response for the models listing endpoint."""

    models: list[ModelInfo]


class ErrorResponse(BaseModel):
    """Standard error response."""

    detail: str


def _unit(value: float) -> float:
    # clamp to [0, 1]
    return min(1.0, max(0.0, value))
