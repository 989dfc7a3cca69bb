# makeup_preview/services/inpainting/mask_builder.py
from __future__ import annotations

import math
from typing import Iterable, NamedTuple, Sequence

import cv2
import numpy as np
import structlog

from makeup_preview.data.constants import CATEGORY_ZONE_IDS, ZoneId
from makeup_preview.dto.edit import EditMask, EditRequest, MakeupZone
from makeup_preview.dto.landmarks import FaceLandmarks, Point
from makeup_preview.services.utils.image_io import encode_grayscale_png, to_data_url

logger = structlog.get_logger(__name__)


class ZoneConfig(NamedTuple):
    name: str
    feather_radius: int
    expand_radius: int


ZONE_CONFIGS: dict[str, ZoneConfig] = {
    ZoneId.EYES.value: ZoneConfig("Eyes", feather_radius=8, expand_radius=4),
    ZoneId.BROWS.value: ZoneConfig("Eyebrows", feather_radius=6, expand_radius=2),
    ZoneId.LIPS.value: ZoneConfig("Lips", feather_radius=6, expand_radius=3),
    ZoneId.LEFT_CHEEK.value: ZoneConfig("Left cheek", feather_radius=20, expand_radius=10),
    ZoneId.RIGHT_CHEEK.value: ZoneConfig("Right cheek", feather_radius=20, expand_radius=10),
    ZoneId.FACE.value: ZoneConfig("Face", feather_radius=24, expand_radius=0),
}

_EYE_LIFT_REGION = 0.3
_EYE_LIFT_FACTOR = 0.8
_BROW_CLEARANCE = 0.01
_BROW_UP = -0.005
_BROW_DOWN = 0.01
_LIP_NUDGE = 0.005


def _make_zone(zone_id: ZoneId, polygons: Iterable[Sequence[Point]]) -> MakeupZone:
    cfg = ZONE_CONFIGS[zone_id.value]
    return MakeupZone(
        id=zone_id,
        name=cfg.name,
        polygons=tuple(tuple(ring) for ring in polygons),
        feather_radius=cfg.feather_radius,
        expand_radius=cfg.expand_radius,
    )


def _lift_eye(eye: Sequence[Point], brow: Sequence[Point]) -> tuple[Point, ...]:
    """Extends the eye ring upwards over the lid, stopping just below the brow."""
    eye_top = min(p.y for p in eye)
    eye_bottom = max(p.y for p in eye)
    eye_height = eye_bottom - eye_top
    ceiling = max(p.y for p in brow) + _BROW_CLEARANCE if brow else eye_top - 0.02

    lifted = []
    for p in eye:
        if p.y < eye_top + eye_height * _EYE_LIFT_REGION:
            lifted.append(Point(x=p.x, y=max(ceiling, p.y - eye_height * _EYE_LIFT_FACTOR)))
        else:
            lifted.append(p)
    return tuple(lifted)


def _thicken_brow(brow: Sequence[Point]) -> tuple[Point, ...]:
    upper = [Point(x=p.x, y=p.y + _BROW_UP) for p in brow]
    lower = [Point(x=p.x, y=p.y + _BROW_DOWN) for p in brow]
    return tuple(upper + lower)


def _pad_lips(outer: Sequence[Point]) -> tuple[Point, ...]:
    center_y = sum(p.y for p in outer) / len(outer)
    return tuple(
        Point(x=p.x, y=p.y + _LIP_NUDGE if p.y > center_y else p.y - _LIP_NUDGE)
        for p in outer
    )


def build_zones(landmarks: FaceLandmarks) -> list[MakeupZone]:
    """
    Derives makeup zones from landmarks.

    A zone is only produced when its source features have enough points; the
    result is deterministic for a given FaceLandmarks value.
    """
    zones: list[MakeupZone] = []

    eyes = [
        _lift_eye(eye, brow)
        for eye, brow in ((landmarks.left_eye, landmarks.left_brow), (landmarks.right_eye, landmarks.right_brow))
        if len(eye) >= 4
    ]
    if eyes:
        zones.append(_make_zone(ZoneId.EYES, eyes))

    brows = [_thicken_brow(b) for b in (landmarks.left_brow, landmarks.right_brow) if len(b) >= 3]
    if brows:
        zones.append(_make_zone(ZoneId.BROWS, brows))

    if len(landmarks.lips.outer) >= 6:
        zones.append(_make_zone(ZoneId.LIPS, [_pad_lips(landmarks.lips.outer)]))

    if len(landmarks.left_cheek) >= 4:
        zones.append(_make_zone(ZoneId.LEFT_CHEEK, [landmarks.left_cheek]))
    if len(landmarks.right_cheek) >= 4:
        zones.append(_make_zone(ZoneId.RIGHT_CHEEK, [landmarks.right_cheek]))

    if len(landmarks.face_contour) >= 3:
        zones.append(_make_zone(ZoneId.FACE, [landmarks.face_contour]))

    return zones


def _order_ring(ring: Sequence[Point], width: int, height: int) -> np.ndarray:
    """Scales a ring to pixels and orders it by angle around its centroid."""
    pts = np.array([(p.x * width, p.y * height) for p in ring], dtype=np.float64)
    cx, cy = pts.mean(axis=0)
    angles = np.array([math.atan2(y - cy, x - cx) for x, y in pts])
    ordered = pts[np.argsort(angles, kind="stable")]
    return np.round(ordered).astype(np.int32)


def _render_zone(zone: MakeupZone, width: int, height: int) -> np.ndarray | None:
    layer = np.zeros((height, width), dtype=np.uint8)
    drawn = False
    for ring in zone.polygons:
        if len(ring) < 3:
            logger.debug("Skipping degenerate ring", zone=zone.id.value, points=len(ring))
            continue
        cv2.fillPoly(layer, [_order_ring(ring, width, height)], 255)
        drawn = True
    if not drawn:
        return None

    if zone.expand_radius > 0:
        size = 2 * zone.expand_radius + 1
        kernel = cv2.getStructuringElement(cv2.MORPH_ELLIPSE, (size, size))
        layer = cv2.dilate(layer, kernel)

    if zone.feather_radius > 0:
        ksize = 2 * zone.feather_radius + 1
        layer = cv2.GaussianBlur(layer, (ksize, ksize), sigmaX=zone.feather_radius / 2)

    return layer


def build_mask(
    zones: Sequence[MakeupZone],
    width: int,
    height: int,
    target_zone_ids: Iterable[ZoneId] | None = None,
) -> EditMask:
    """
    Rasterizes zones into one grayscale mask: 0 preserves, 255 edits.

    Only zones in `target_zone_ids` are drawn (all of them when None). Zones
    whose rings all have fewer than 3 points contribute nothing.
    """
    targets = None if target_zone_ids is None else set(target_zone_ids)
    pixels = np.zeros((height, width), dtype=np.uint8)
    covered: list[ZoneId] = []

    for zone in zones:
        if targets is not None and zone.id not in targets:
            continue
        layer = _render_zone(zone, width, height)
        if layer is None:
            continue
        np.maximum(pixels, layer, out=pixels)
        covered.append(zone.id)

    logger.debug("Mask built", width=width, height=height, zones=[z.value for z in covered])
    return EditMask(width=width, height=height, zones=tuple(covered), pixels=pixels)


def build_separate_masks(landmarks: FaceLandmarks, width: int, height: int) -> dict[ZoneId, EditMask]:
    """One mask per zone, for previews and debugging."""
    return {zone.id: build_mask([zone], width, height) for zone in build_zones(landmarks)}


def zone_ids_for_requests(requests: Iterable[EditRequest]) -> list[ZoneId]:
    ids: list[ZoneId] = []
    for request in requests:
        for zone_id in CATEGORY_ZONE_IDS[request.zone]:
            if zone_id not in ids:
                ids.append(zone_id)
    return ids


def mask_to_png(mask: EditMask) -> bytes:
    return encode_grayscale_png(mask.pixels)


def mask_to_data_url(mask: EditMask) -> str:
    return to_data_url(mask_to_png(mask), "image/png")
