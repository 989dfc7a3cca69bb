# makeup_preview/services/inpainting/landmark_detector.py
# Face landmark detection.
#   primary:   Replicate landmark model (68-point layout)
#   secondary: vision model estimates feature boxes as % of the image,
#              expanded here into small synthetic polygons
# Both strategies produce the same FaceLandmarks shape.

from __future__ import annotations

import math
from typing import Any, Sequence

import structlog

from makeup_preview.data.settings import settings
from makeup_preview.dto.landmarks import FaceBox, FaceLandmarks, LipContours, Point, ValidationReport
from makeup_preview.dto.llm_responses import (
    BrowEstimate,
    CheekEstimate,
    EyeEstimate,
    LipsEstimate,
    NoseEstimate,
    PercentBox,
    VisionLandmarkEstimate,
)
from makeup_preview.services.clients import ReplicateAsyncClient, factory as ai_client_factory
from makeup_preview.services.llm_invokers import VisionService
from makeup_preview.services.utils.image_io import probe_dimensions, to_data_url

logger = structlog.get_logger(__name__)

_PRIMARY_DEFAULT_CONFIDENCE = 0.8
_FALLBACK_DEFAULT_CONFIDENCE = 0.7
_MIN_CONFIDENCE = 0.5
_PCT = 0.01

# ------------ 68-point layout ------------
_JAW = slice(0, 17)
_RIGHT_BROW = slice(17, 22)
_LEFT_BROW = slice(22, 27)
_NOSE = slice(27, 36)
_RIGHT_EYE = slice(36, 42)
_LEFT_EYE = slice(42, 48)
_OUTER_LIPS = slice(48, 60)
_INNER_LIPS = slice(60, 68)
_NOSE_TIP = 30

_LANDMARK_PROMPT = (
    "Analyze this portrait photo and provide precise face feature locations. "
    "All coordinates are percentages (0-100) of the image width/height. "
    "Eyes are boxes around the visible eye; brows are horizontal spans; cheeks are "
    "ellipses centred on the apple of the cheek. Include your confidence (0-1) that "
    "a single, clearly visible, front-facing face is present. Be precise."
)


# ------------ Geometry helpers ------------
def _ellipse(cx: float, cy: float, rx: float, ry: float, n: int) -> tuple[Point, ...]:
    return tuple(
        Point(x=cx + math.cos(2 * math.pi * i / n) * rx, y=cy + math.sin(2 * math.pi * i / n) * ry)
        for i in range(n)
    )


def _eye_points(eye: EyeEstimate) -> tuple[Point, ...]:
    return _ellipse(eye.center_x * _PCT, eye.center_y * _PCT, eye.width * _PCT / 2, eye.height * _PCT / 2, 6)


def _brow_points(brow: BrowEstimate, steps: int = 5) -> tuple[Point, ...]:
    return tuple(
        Point(x=(brow.start_x + (brow.end_x - brow.start_x) * i / steps) * _PCT, y=brow.y * _PCT)
        for i in range(steps + 1)
    )


def _lip_contours(lips: LipsEstimate) -> LipContours:
    cx = lips.center_x * _PCT
    rx = lips.width * _PCT / 2
    top_y = lips.top_y * _PCT
    bottom_y = lips.bottom_y * _PCT
    mid_y = (top_y + bottom_y) / 2

    outer: list[Point] = []
    # Upper arc, left corner to right corner.
    for i in range(7):
        angle = math.pi + math.pi * i / 6
        outer.append(Point(
            x=cx + math.cos(angle) * rx,
            y=top_y + (mid_y - top_y) * abs(math.cos(angle)),
        ))
    # Lower arc, right corner back to left corner.
    for i in range(7):
        angle = math.pi * i / 6
        outer.append(Point(x=cx + math.cos(angle) * rx, y=mid_y + (bottom_y - mid_y) * math.sin(angle)))

    inner = tuple(Point(x=cx + (p.x - cx) * 0.6, y=mid_y + (p.y - mid_y) * 0.5) for p in outer)
    return LipContours(outer=tuple(outer), inner=inner)


def _cheek_points(cheek: CheekEstimate) -> tuple[Point, ...]:
    return _ellipse(cheek.center_x * _PCT, cheek.center_y * _PCT, cheek.radius_x * _PCT, cheek.radius_y * _PCT, 8)


def _nose_points(nose: NoseEstimate) -> tuple[Point, ...]:
    cx = nose.center_x * _PCT
    top_y = nose.top_y * _PCT
    bottom_y = nose.bottom_y * _PCT
    half_w = nose.width * _PCT / 2
    mid_y = top_y + (bottom_y - top_y) * 0.5
    return (
        Point(x=cx, y=top_y),
        Point(x=cx - half_w * 0.3, y=mid_y),
        Point(x=cx - half_w, y=bottom_y),
        Point(x=cx, y=bottom_y),
        Point(x=cx + half_w, y=bottom_y),
        Point(x=cx + half_w * 0.3, y=mid_y),
    )


def _face_oval(box: PercentBox) -> tuple[Point, ...]:
    x, y, w, h = box.x * _PCT, box.y * _PCT, box.width * _PCT, box.height * _PCT
    points = []
    for i in range(17):
        angle = math.pi * i / 16 - math.pi / 2
        points.append(Point(
            x=x + w / 2 + math.cos(angle) * (w / 2),
            y=y + h / 2 + math.sin(angle) * (h / 2) * 1.2,
        ))
    return tuple(points)


def _clamp01(value: float) -> float:
    return max(0.0, min(1.0, float(value)))


def landmarks_from_estimate(estimate: VisionLandmarkEstimate) -> FaceLandmarks:
    """Expands percentage boxes from a vision model into landmark polygons."""
    box = estimate.face_box
    confidence = estimate.confidence if estimate.confidence is not None else _FALLBACK_DEFAULT_CONFIDENCE
    return FaceLandmarks(
        face_box=FaceBox(x=box.x * _PCT, y=box.y * _PCT, width=box.width * _PCT, height=box.height * _PCT),
        left_eye=_eye_points(estimate.left_eye),
        right_eye=_eye_points(estimate.right_eye),
        left_brow=_brow_points(estimate.left_brow),
        right_brow=_brow_points(estimate.right_brow),
        lips=_lip_contours(estimate.lips),
        left_cheek=_cheek_points(estimate.left_cheek),
        right_cheek=_cheek_points(estimate.right_cheek),
        nose=_nose_points(estimate.nose),
        face_contour=_face_oval(box),
        confidence=_clamp01(confidence),
        source="vision_estimate",
    )


def _synthesize_cheek(points: Sequence[Point], side: str) -> tuple[Point, ...]:
    """Builds an 8-point cheek ellipse between eye bottom, jaw and nose tip."""
    if len(points) < 68:
        return ()
    eye = points[_LEFT_EYE] if side == "left" else points[_RIGHT_EYE]
    jaw = points[9:13] if side == "left" else points[4:8]
    nose_tip = points[_NOSE_TIP]

    eye_x = sum(p.x for p in eye) / len(eye)
    eye_bottom = max(p.y for p in eye)
    jaw_center = jaw[len(jaw) // 2]

    cx = (eye_x + jaw_center.x + nose_tip.x) / 3
    cy = (eye_bottom + jaw_center.y) / 2
    rx = abs(nose_tip.x - eye_x) * 0.6
    ry = abs(jaw_center.y - eye_bottom) * 0.4
    return _ellipse(cx, cy, rx, ry, 8)


def landmarks_from_model_output(output: Any, image_size: tuple[int, int] | None = None) -> FaceLandmarks | None:
    """
    Maps a 68-point landmark model output onto FaceLandmarks.

    Pixel coordinates are normalized with `image_size`; outputs that are
    already in [0, 1] are used as-is.
    """
    if not isinstance(output, dict):
        return None
    raw_points = output.get("landmarks")
    if not isinstance(raw_points, list) or len(raw_points) < 68:
        return None

    try:
        coords = [(float(p[0]), float(p[1])) for p in raw_points]
    except (TypeError, ValueError, IndexError):
        return None

    is_pixel_space = any(x > 1.5 or y > 1.5 for x, y in coords)
    sx, sy = 1.0, 1.0
    if is_pixel_space:
        if not image_size:
            logger.warning("Landmark output is in pixels but image size is unknown.")
            return None
        sx, sy = float(image_size[0]), float(image_size[1])

    points = [Point(x=x / sx, y=y / sy) for x, y in coords]

    face_box = FaceBox()
    raw_box = output.get("face_box")
    if isinstance(raw_box, list) and len(raw_box) >= 4:
        bx, by, bw, bh = (float(v) for v in raw_box[:4])
        face_box = FaceBox(x=bx / sx, y=by / sy, width=bw / sx, height=bh / sy)
    else:
        jaw_xs = [p.x for p in points[_JAW]]
        brow_top = min(p.y for p in points[17:27])
        chin = max(p.y for p in points[_JAW])
        face_box = FaceBox(x=min(jaw_xs), y=brow_top, width=max(jaw_xs) - min(jaw_xs), height=chin - brow_top)

    confidence = output.get("confidence")
    return FaceLandmarks(
        face_box=face_box,
        left_eye=tuple(points[_LEFT_EYE]),
        right_eye=tuple(points[_RIGHT_EYE]),
        left_brow=tuple(points[_LEFT_BROW]),
        right_brow=tuple(points[_RIGHT_BROW]),
        lips=LipContours(outer=tuple(points[_OUTER_LIPS]), inner=tuple(points[_INNER_LIPS])),
        left_cheek=_synthesize_cheek(points, "left"),
        right_cheek=_synthesize_cheek(points, "right"),
        nose=tuple(points[_NOSE]),
        face_contour=tuple(points[_JAW]),
        confidence=_clamp01(confidence if confidence is not None else _PRIMARY_DEFAULT_CONFIDENCE),
        source="landmark_model",
    )


def validate_landmarks(landmarks: FaceLandmarks) -> ValidationReport:
    """Checks that detected landmarks are usable for makeup zones."""
    issues: list[str] = []

    if landmarks.confidence < _MIN_CONFIDENCE:
        issues.append("Low confidence in face detection")

    if len(landmarks.left_eye) < 4 or len(landmarks.right_eye) < 4:
        issues.append("Eye landmarks incomplete")

    if len(landmarks.lips.outer) < 6:
        issues.append("Lip landmarks incomplete")

    if len(landmarks.left_cheek) < 4 or len(landmarks.right_cheek) < 4:
        issues.append("Cheek landmarks incomplete")

    box = landmarks.face_box
    if not (0.1 <= box.width <= 0.9 and 0.1 <= box.height <= 0.9):
        issues.append("Face box dimensions unusual")

    return ValidationReport(valid=not issues, issues=tuple(issues))


class LandmarkDetector:
    """Detects face landmarks, falling back from the landmark model to the vision model."""

    def __init__(
        self,
        replicate_client: ReplicateAsyncClient | None = None,
        vision_service: VisionService | None = None,
        *,
        use_landmark_model: bool | None = None,
    ) -> None:
        enabled = settings.landmark_model.enabled if use_landmark_model is None else use_landmark_model
        if replicate_client is None and enabled:
            replicate_client = ai_client_factory.get_replicate_client()
        self.replicate_client = replicate_client if enabled else None
        self.vision_service = vision_service or VisionService()

    async def detect(self, photo: bytes, mime_type: str) -> FaceLandmarks | None:
        """Returns landmarks for the photo, or None when no usable signal exists."""
        log = logger.bind(size=len(photo), mime_type=mime_type)

        if self.replicate_client is not None:
            try:
                landmarks = await self._detect_with_model(photo, mime_type)
                if landmarks is not None:
                    log.info("Landmarks detected by landmark model", confidence=landmarks.confidence)
                    return landmarks
                log.warning("Landmark model returned no usable landmarks, using vision fallback.")
            except Exception:
                log.exception("Landmark model failed, using vision fallback.")
        else:
            log.info("Landmark model not configured, using vision fallback.")

        return await self._detect_with_vision(photo, mime_type)

    async def _detect_with_model(self, photo: bytes, mime_type: str) -> FaceLandmarks | None:
        cfg = settings.landmark_model
        prediction = await self.replicate_client.run(
            cfg.version,
            {"image": to_data_url(photo, mime_type)},
            max_polls=cfg.max_polls,
            poll_interval_s=cfg.poll_interval_s,
        )
        return landmarks_from_model_output(prediction.get("output"), probe_dimensions(photo))

    async def _detect_with_vision(self, photo: bytes, mime_type: str) -> FaceLandmarks | None:
        if not self.vision_service.available:
            logger.error("No face detection strategy available.")
            return None
        try:
            estimate = await self.vision_service.analyze(
                _LANDMARK_PROMPT, [(photo, mime_type)], VisionLandmarkEstimate
            )
        except Exception:
            logger.exception("Vision landmark estimation failed.")
            return None

        landmarks = landmarks_from_estimate(estimate)
        logger.info("Landmarks estimated by vision model", confidence=landmarks.confidence)
        return landmarks
