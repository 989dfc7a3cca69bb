# makeup_preview/services/inpainting/__init__.py
from makeup_preview.services.clients import factory as ai_client_factory

from .composer import compose, reduce_intensity, simplify, simplify_text
from .inpainting_client import InpaintingClient, validate_input_image
from .landmark_detector import LandmarkDetector, validate_landmarks
from .looks import apply_look, determine_intensity, look_to_edit_requests
from .mask_builder import build_mask, build_separate_masks, build_zones, zone_ids_for_requests
from .orchestrator import InpaintingPipeline, can_attempt_inpainting, run_pipeline
from .quality_judge import QualityJudge, is_acceptable_result, log_quality_metrics


def is_inpainting_available() -> bool:
    """Replicate runs the edit; a vision model alone can still detect faces and judge."""
    return ai_client_factory.is_replicate_configured() or ai_client_factory.is_vision_configured()


def get_service_status() -> dict[str, bool]:
    return {
        "available": is_inpainting_available(),
        "replicate_configured": ai_client_factory.is_replicate_configured(),
        "vision_configured": ai_client_factory.is_vision_configured(),
    }


__all__ = [
    "InpaintingClient",
    "InpaintingPipeline",
    "LandmarkDetector",
    "QualityJudge",
    "apply_look",
    "build_mask",
    "build_separate_masks",
    "build_zones",
    "can_attempt_inpainting",
    "compose",
    "determine_intensity",
    "get_service_status",
    "is_acceptable_result",
    "is_inpainting_available",
    "log_quality_metrics",
    "look_to_edit_requests",
    "reduce_intensity",
    "run_pipeline",
    "simplify",
    "simplify_text",
    "validate_input_image",
    "validate_landmarks",
    "zone_ids_for_requests",
]
