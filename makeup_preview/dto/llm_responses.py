# makeup_preview/dto/llm_responses.py
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from makeup_preview.data.constants import IssueKind, ZoneCategory

# 1. Landmark estimation.
#    All values are percentages (0-100) of the image width/height.


class PercentBox(BaseModel):
    x: float = Field(description="Left edge, % of image width")
    y: float = Field(description="Top edge, % of image height")
    width: float = Field(description="% of image width")
    height: float = Field(description="% of image height")


class EyeEstimate(BaseModel):
    center_x: float
    center_y: float
    width: float
    height: float


class BrowEstimate(BaseModel):
    start_x: float
    end_x: float
    y: float
    height: float = 0.0


class LipsEstimate(BaseModel):
    center_x: float
    top_y: float
    bottom_y: float
    width: float


class CheekEstimate(BaseModel):
    center_x: float
    center_y: float
    radius_x: float
    radius_y: float


class NoseEstimate(BaseModel):
    center_x: float
    top_y: float
    bottom_y: float
    width: float


class VisionLandmarkEstimate(BaseModel):
    """Approximate feature boxes returned by a general vision model."""
    face_box: PercentBox
    left_eye: EyeEstimate
    right_eye: EyeEstimate
    left_brow: BrowEstimate
    right_brow: BrowEstimate
    lips: LipsEstimate
    left_cheek: CheekEstimate
    right_cheek: CheekEstimate
    nose: NoseEstimate
    confidence: float | None = Field(default=None, description="Self-reported confidence, 0-1")


# 2. Quality assessment.


class JudgeIssueOutput(BaseModel):
    model_config = ConfigDict(extra="ignore")

    description: str = Field(description="A specific, human-readable problem")
    kind: IssueKind = Field(default=IssueKind.OTHER, description="identity | artifact | naturalness | lighting | other")
    zone: ZoneCategory | None = Field(default=None, description="eyes | lips | cheeks | brows | base, or null")

    @field_validator("kind", mode="before")
    @classmethod
    def coerce_kind(cls, v: Any) -> Any:
        if isinstance(v, str) and v.strip().lower() in {k.value for k in IssueKind}:
            return v.strip().lower()
        return IssueKind.OTHER

    @field_validator("zone", mode="before")
    @classmethod
    def coerce_zone(cls, v: Any) -> Any:
        if isinstance(v, str) and v.strip().lower() in {z.value for z in ZoneCategory}:
            return v.strip().lower()
        return None


class QualityAssessmentOutput(BaseModel):
    """Five-axis comparison of an original portrait and its edited version."""
    model_config = ConfigDict(extra="ignore")

    identity_preserved: float = Field(description="0-10: clearly the same person")
    natural_makeup: float = Field(description="0-10: makeup looks realistic")
    no_artifacts: float = Field(description="0-10: no glitches, blur or distortion")
    lighting_consistent: float = Field(description="0-10: lighting and skin tone match the original")
    seamless_blend: float = Field(description="0-10: makeup edges blend into the skin")
    issues: list[JudgeIssueOutput] = Field(default_factory=list)
    passed: bool | None = None

    @field_validator("issues", mode="before")
    @classmethod
    def wrap_plain_issues(cls, v: Any) -> Any:
        if isinstance(v, list):
            return [{"description": item} if isinstance(item, str) else item for item in v]
        return v
