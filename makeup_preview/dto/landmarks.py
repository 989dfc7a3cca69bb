# makeup_preview/dto/landmarks.py

from pydantic import BaseModel, ConfigDict, Field


class Point(BaseModel):
    """A 2D coordinate normalized to [0, 1] of image width/height."""
    model_config = ConfigDict(frozen=True)

    x: float
    y: float


class FaceBox(BaseModel):
    model_config = ConfigDict(frozen=True)

    x: float = 0.0
    y: float = 0.0
    width: float = 0.0
    height: float = 0.0


class LipContours(BaseModel):
    model_config = ConfigDict(frozen=True)

    outer: tuple[Point, ...] = ()
    inner: tuple[Point, ...] = ()


class FaceLandmarks(BaseModel):
    """Facial feature locations detected (or estimated) for a single photo."""
    model_config = ConfigDict(frozen=True)

    face_box: FaceBox
    left_eye: tuple[Point, ...] = ()
    right_eye: tuple[Point, ...] = ()
    left_brow: tuple[Point, ...] = ()
    right_brow: tuple[Point, ...] = ()
    lips: LipContours = Field(default_factory=LipContours)
    left_cheek: tuple[Point, ...] = ()
    right_cheek: tuple[Point, ...] = ()
    nose: tuple[Point, ...] = ()
    face_contour: tuple[Point, ...] = ()
    confidence: float = Field(ge=0.0, le=1.0)
    source: str = "unknown"


class ValidationReport(BaseModel):
    model_config = ConfigDict(frozen=True)

    valid: bool
    issues: tuple[str, ...] = ()
