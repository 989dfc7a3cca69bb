# makeup_preview/services/inpainting/looks.py
from __future__ import annotations

from makeup_preview.data.constants import ZoneCategory
from makeup_preview.dto.edit import EditRequest, PipelineOutcome
from makeup_preview.dto.look import MakeupLook

from .orchestrator import InpaintingPipeline, run_pipeline

# Face products that are applied on the cheeks ("pirosító" is blush, "bronzosító" bronzer).
CHEEK_PRODUCT_KEYWORDS = ("pirosító", "blush", "bronzosító", "bronzer", "contour", "highlighter")


def determine_intensity(look_id: str, zone: ZoneCategory) -> float:
    """Maps a look's style to an edit intensity; lips run slightly stronger."""
    look_id = look_id.lower()
    is_lips = zone == ZoneCategory.LIPS
    if "natural" in look_id:
        return 0.5 if is_lips else 0.4
    if "elegant" in look_id:
        return 0.7 if is_lips else 0.6
    if any(k in look_id for k in ("bold", "esti", "evening")):
        return 0.85 if is_lips else 0.75
    return 0.6


def look_to_edit_requests(look: MakeupLook) -> list[EditRequest]:
    products = look.products
    cheek_products = [p for p in products.face if any(k in p.lower() for k in CHEEK_PRODUCT_KEYWORDS)]

    by_zone = (
        (ZoneCategory.EYES, products.eyes),
        (ZoneCategory.LIPS, products.lips),
        (ZoneCategory.CHEEKS, cheek_products),
        (ZoneCategory.BROWS, products.brows),
    )
    return [
        EditRequest(zone=zone, description=", ".join(items), intensity=determine_intensity(look.id, zone))
        for zone, items in by_zone
        if items
    ]


async def apply_look(
    image: bytes | str,
    mime_type: str,
    look: MakeupLook,
    session_id: str | None = None,
    *,
    pipeline: InpaintingPipeline | None = None,
) -> PipelineOutcome:
    """Previews a whole look on the photo."""
    return await run_pipeline(
        image,
        mime_type,
        look_to_edit_requests(look),
        look.title,
        look.why,
        session_id,
        pipeline=pipeline,
    )
