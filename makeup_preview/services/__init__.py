# makeup_preview/services/__init__.py
from .inpainting import (
    InpaintingPipeline,
    apply_look,
    can_attempt_inpainting,
    get_service_status,
    is_inpainting_available,
    run_pipeline,
)

__all__ = [
    "InpaintingPipeline",
    "apply_look",
    "can_attempt_inpainting",
    "get_service_status",
    "is_inpainting_available",
    "run_pipeline",
]
