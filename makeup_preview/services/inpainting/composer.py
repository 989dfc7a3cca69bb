# makeup_preview/services/inpainting/composer.py
from __future__ import annotations

import re
from typing import Callable, Iterable

from makeup_preview.data.constants import ZoneCategory
from makeup_preview.dto.edit import EditInstructions, EditRequest

PRESERVATION_CLAUSE = (
    "EXACT same face structure, same identity, same lighting, same skin texture, "
    "ultra-realistic makeup application, professional beauty photography, sharp focus, "
    "same background, same hair, same clothing, same pose"
)

NEGATIVE_PROMPT = ", ".join([
    "different person", "altered face shape", "changed bone structure",
    "different eyes", "different nose", "different lips shape", "different jawline",
    "plastic surgery", "face morph", "age change", "gender change",
    "different lighting", "different background", "different pose", "different angle",
    "different hair", "different skin color",
    "cartoon", "anime", "illustration", "painting", "drawing", "sketch",
    "blurry", "low quality", "artifacts", "distortion", "noise",
    "extra limbs", "extra fingers", "deformed", "disfigured", "mutated",
    "cropped", "out of frame", "worst quality", "low resolution",
    "watermark", "signature", "text", "logo",
])

SIMPLIFY_INTENSITY_STEP = 0.2
SIMPLIFY_INTENSITY_FLOOR = 0.3

_SHADE_RE = re.compile(
    r"\b(rose|coral|berry|nude|pink|red|burgundy|plum|mauve|peach)(\s+(gold|bronze|copper|silver))?\b",
    re.IGNORECASE,
)
_INTENSITY_RE = re.compile(r"\b(bold|dramatic|intense|vivid|deep|rich)\b", re.IGNORECASE)
_TECHNIQUE_RE = re.compile(r"\b(smoky|winged|cut-crease|halo|ombre)\b", re.IGNORECASE)
_FINISH_RE = re.compile(r"\b(glitter|shimmer|sparkle|metallic|matte|satin|glossy)\b", re.IGNORECASE)
_SPACES_RE = re.compile(r"\s+")


def intensity_qualifier(intensity: float) -> str:
    if intensity < 0.35:
        return "sheer"
    if intensity < 0.6:
        return "soft"
    if intensity < 0.8:
        return "medium"
    return "full-coverage"


# One render function per zone category.
_ZoneTemplate = Callable[[EditRequest], str]
_TEMPLATES: dict[ZoneCategory, _ZoneTemplate] = {}


def _template(category: ZoneCategory) -> Callable[[_ZoneTemplate], _ZoneTemplate]:
    def register(func: _ZoneTemplate) -> _ZoneTemplate:
        _TEMPLATES[category] = func
        return func
    return register


@_template(ZoneCategory.EYES)
def _render_eyes(request: EditRequest) -> str:
    return (
        f"professional {intensity_qualifier(request.intensity)} eyeshadow application, "
        f"{request.description}, seamless blend with skin"
    )


@_template(ZoneCategory.LIPS)
def _render_lips(request: EditRequest) -> str:
    return (
        f"professional {intensity_qualifier(request.intensity)} lip makeup, "
        f"{request.description}, natural lip texture preserved"
    )


@_template(ZoneCategory.CHEEKS)
def _render_cheeks(request: EditRequest) -> str:
    return (
        f"{intensity_qualifier(request.intensity)} {request.description}, "
        "natural skin texture, seamless cheek color"
    )


@_template(ZoneCategory.BROWS)
def _render_brows(request: EditRequest) -> str:
    return f"{intensity_qualifier(request.intensity)} defined brows, {request.description}, natural hair texture"


@_template(ZoneCategory.BASE)
def _render_base(request: EditRequest) -> str:
    return (
        f"flawless {intensity_qualifier(request.intensity)} base makeup, "
        f"{request.description}, natural skin texture visible"
    )


def render_zone_phrase(request: EditRequest) -> str:
    return _TEMPLATES[request.zone](request)


def compose(requests: Iterable[EditRequest], look_title: str, look_description: str) -> EditInstructions:
    """Builds the positive/negative instructions for one edit attempt."""
    parts = ["professional makeup photography", look_title.strip()]
    parts.extend(render_zone_phrase(r) for r in requests)
    parts.append(look_description.strip())
    parts.append(PRESERVATION_CLAUSE)
    positive = ", ".join(p for p in parts if p)
    return EditInstructions(positive=positive, negative=NEGATIVE_PROMPT)


def simplify_text(text: str) -> str:
    """Strips specific shades, strong wording, techniques and finishes from a description."""
    text = _SHADE_RE.sub("natural", text)
    text = _INTENSITY_RE.sub("subtle", text)
    text = _TECHNIQUE_RE.sub("simple", text)
    text = _FINISH_RE.sub("", text)
    return _SPACES_RE.sub(" ", text).strip()


def simplify(request: EditRequest) -> EditRequest:
    lowered = max(SIMPLIFY_INTENSITY_FLOOR, request.intensity - SIMPLIFY_INTENSITY_STEP)
    return request.model_copy(update={
        "description": simplify_text(request.description),
        "intensity": min(request.intensity, lowered),
    })


def reduce_intensity(request: EditRequest, factor: float = 0.6, floor: float = 0.2) -> EditRequest:
    lowered = max(floor, request.intensity * factor)
    return request.model_copy(update={"intensity": min(request.intensity, lowered)})
