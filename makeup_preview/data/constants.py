# makeup_preview/data/constants.py
from enum import Enum


class ZoneCategory(str, Enum):
    """Cosmetic categories a caller can request an edit for."""
    EYES = "eyes"
    LIPS = "lips"
    CHEEKS = "cheeks"
    BROWS = "brows"
    BASE = "base"


class ZoneId(str, Enum):
    """Identifiers of the rasterizable makeup zones."""
    EYES = "eyes"
    BROWS = "brows"
    LIPS = "lips"
    LEFT_CHEEK = "leftCheek"
    RIGHT_CHEEK = "rightCheek"
    FACE = "face"


CATEGORY_ZONE_IDS: dict[ZoneCategory, tuple[ZoneId, ...]] = {
    ZoneCategory.EYES: (ZoneId.EYES,),
    ZoneCategory.LIPS: (ZoneId.LIPS,),
    ZoneCategory.CHEEKS: (ZoneId.LEFT_CHEEK, ZoneId.RIGHT_CHEEK),
    ZoneCategory.BROWS: (ZoneId.BROWS,),
    ZoneCategory.BASE: (ZoneId.FACE,),
}


class FailureKind(str, Enum):
    INPUT_INVALID = "input_invalid"
    FACE_UNDETECTED = "face_undetected"
    LANDMARKS_UNRELIABLE = "landmarks_unreliable"
    EDIT_SERVICE_UNAVAILABLE = "edit_service_unavailable"
    EDIT_SERVICE_FAILED = "edit_service_failed"
    QUALITY_REJECTED = "quality_rejected"
    IDENTITY_DRIFT = "identity_drift"
    ZONES_EXHAUSTED = "zones_exhausted"


class FallbackAction(str, Enum):
    RETRY_WITH_SIMPLER_PROMPT = "retry_with_simpler_prompt"
    REDUCE_INTENSITY = "reduce_intensity"
    SKIP_ZONE = "skip_zone"
    ABORT = "abort"


class IssueKind(str, Enum):
    """Tags a quality issue can carry."""
    IDENTITY = "identity"
    ARTIFACT = "artifact"
    NATURALNESS = "naturalness"
    LIGHTING = "lighting"
    OTHER = "other"


class VerdictSource(str, Enum):
    JUDGE = "judge"
    STRUCTURAL = "structural"


# User-facing reasons; raw service errors never go here.
FALLBACK_REASONS: dict[FailureKind, str] = {
    FailureKind.INPUT_INVALID: "Preview unavailable: the photo could not be used.",
    FailureKind.FACE_UNDETECTED: "Preview unavailable: no face could be found in the photo.",
    FailureKind.LANDMARKS_UNRELIABLE: "Preview unavailable: facial details are not clear enough.",
    FailureKind.EDIT_SERVICE_UNAVAILABLE: "Makeup preview is temporarily unavailable.",
    FailureKind.EDIT_SERVICE_FAILED: "The AI preview could not be generated.",
    FailureKind.QUALITY_REJECTED: "Makeup preview is not available.",
    FailureKind.IDENTITY_DRIFT: "Makeup preview is not available due to quality issues.",
    FailureKind.ZONES_EXHAUSTED: "Makeup preview is not available.",
}

DEGRADED_RESULT_REASON = "Preview generated with reduced quality."
