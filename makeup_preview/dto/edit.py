# makeup_preview/dto/edit.py
from typing import Any

import numpy as np
from pydantic import BaseModel, ConfigDict, Field

from makeup_preview.data.constants import (
    FailureKind,
    FallbackAction,
    IssueKind,
    VerdictSource,
    ZoneCategory,
    ZoneId,
)
from makeup_preview.dto.landmarks import FaceLandmarks, Point


class MakeupZone(BaseModel):
    """
    A named facial region eligible for a cosmetic edit.

    A zone may consist of several rings (e.g. one per eye); together they
    describe the zone's extent. Radii are pixels at render resolution.
    """
    model_config = ConfigDict(frozen=True)

    id: ZoneId
    name: str
    polygons: tuple[tuple[Point, ...], ...]
    feather_radius: int
    expand_radius: int = 0

    @property
    def points(self) -> tuple[Point, ...]:
        return tuple(p for ring in self.polygons for p in ring)


class EditRequest(BaseModel):
    """One requested cosmetic change. Never mutated in place."""
    model_config = ConfigDict(frozen=True)

    zone: ZoneCategory
    description: str
    intensity: float = Field(ge=0.0, le=1.0)


class EditInstructions(BaseModel):
    model_config = ConfigDict(frozen=True)

    positive: str
    negative: str


class EditMask(BaseModel):
    """Grayscale edit mask: 0 preserves the original, 255 is fully editable."""
    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    width: int
    height: int
    zones: tuple[ZoneId, ...]
    pixels: np.ndarray

    @property
    def coverage(self) -> float:
        """Fraction of the image that is at least partially editable."""
        if self.pixels.size == 0:
            return 0.0
        return float(np.count_nonzero(self.pixels)) / float(self.pixels.size)


class EditResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    success: bool
    image: bytes | None = None
    content_type: str | None = None
    error: str | None = None
    failure_kind: FailureKind | None = None
    quality_score: float | None = None
    elapsed_ms: int = 0


class TaggedIssue(BaseModel):
    model_config = ConfigDict(frozen=True)

    description: str
    kind: IssueKind = IssueKind.OTHER
    zone: ZoneCategory | None = None


class QualityVerdict(BaseModel):
    model_config = ConfigDict(frozen=True)

    passed: bool
    score: float = Field(ge=0.0, le=1.0)
    issues: tuple[str, ...] = ()
    tagged_issues: tuple[TaggedIssue, ...] = ()
    axis_scores: dict[str, float] = Field(default_factory=dict)
    source: VerdictSource = VerdictSource.JUDGE


class AttemptRecord(BaseModel):
    """What one attempt of the fallback loop did, for logging and inspection."""
    model_config = ConfigDict(frozen=True)

    attempt: int
    requests: tuple[EditRequest, ...]
    target_zones: tuple[ZoneId, ...]
    edit_success: bool
    edit_error: str | None = None
    verdict: QualityVerdict | None = None
    action: FallbackAction | None = None
    dropped_zone: ZoneCategory | None = None
    elapsed_ms: int = 0


class PipelineOutcome(BaseModel):
    """Terminal record returned to the caller of the pipeline."""
    model_config = ConfigDict(frozen=True)

    success: bool
    image: bytes | None = None
    content_type: str | None = None
    fallback_used: bool
    fallback_reason: str | None = None
    quality_score: float | None = None
    attempt_count: int = 0
    failure_kind: FailureKind | None = None
    attempts: tuple[AttemptRecord, ...] = ()

    def summary(self) -> dict[str, Any]:
        """Log-friendly view without image bytes."""
        return self.model_dump(exclude={"image", "attempts"}) | {"has_image": self.image is not None}


class PreflightResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    can_attempt: bool
    reason: str | None = None
    landmarks: FaceLandmarks | None = None
