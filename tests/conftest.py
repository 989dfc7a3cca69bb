import io
import math

import numpy as np
import pytest
from PIL import Image

from makeup_preview.data.constants import VerdictSource
from makeup_preview.dto.edit import EditResult, QualityVerdict, TaggedIssue
from makeup_preview.dto.landmarks import FaceBox, FaceLandmarks, LipContours, Point


def encode_image(width: int, height: int, fmt: str = "JPEG", noise: bool = True) -> bytes:
    rng = np.random.default_rng(7)
    if noise:
        pixels = rng.integers(0, 256, size=(height, width, 3), dtype=np.uint8)
    else:
        pixels = np.full((height, width, 3), 180, dtype=np.uint8)
    buf = io.BytesIO()
    Image.fromarray(pixels).save(buf, format=fmt, **({"quality": 95} if fmt == "JPEG" else {}))
    return buf.getvalue()


def ring(cx: float, cy: float, rx: float, ry: float, n: int) -> tuple[Point, ...]:
    return tuple(
        Point(x=cx + math.cos(2 * math.pi * i / n) * rx, y=cy + math.sin(2 * math.pi * i / n) * ry)
        for i in range(n)
    )


def make_landmarks(confidence: float = 0.9, **overrides) -> FaceLandmarks:
    fields = dict(
        face_box=FaceBox(x=0.25, y=0.2, width=0.5, height=0.6),
        left_eye=ring(0.6, 0.42, 0.05, 0.02, 6),
        right_eye=ring(0.4, 0.42, 0.05, 0.02, 6),
        left_brow=tuple(Point(x=0.54 + 0.03 * i, y=0.36) for i in range(5)),
        right_brow=tuple(Point(x=0.34 + 0.03 * i, y=0.36) for i in range(5)),
        lips=LipContours(outer=ring(0.5, 0.68, 0.08, 0.03, 12), inner=ring(0.5, 0.68, 0.05, 0.01, 8)),
        left_cheek=ring(0.64, 0.56, 0.06, 0.04, 8),
        right_cheek=ring(0.36, 0.56, 0.06, 0.04, 8),
        nose=ring(0.5, 0.52, 0.03, 0.06, 6),
        face_contour=tuple(Point(x=0.25 + 0.5 * i / 16, y=0.5 + 0.3 * math.sin(math.pi * i / 16)) for i in range(17)),
        confidence=confidence,
        source="test",
    )
    fields.update(overrides)
    return FaceLandmarks(**fields)


def verdict(score: float, *issues, passed: bool | None = None) -> QualityVerdict:
    tagged = tuple(i for i in issues if isinstance(i, TaggedIssue))
    texts = tuple(i.description if isinstance(i, TaggedIssue) else i for i in issues)
    return QualityVerdict(
        passed=score >= 0.6 if passed is None else passed,
        score=score,
        issues=texts,
        tagged_issues=tagged,
        source=VerdictSource.JUDGE,
    )


class FakeDetector:
    def __init__(self, landmarks: FaceLandmarks | None):
        self.landmarks = landmarks
        self.calls = 0

    async def detect(self, photo, mime_type):
        self.calls += 1
        return self.landmarks


class FakeClient:
    """Returns the scripted results in order, repeating the last one."""

    def __init__(self, *results: EditResult, available: bool = True):
        self.results = list(results) or [EditResult(success=True, image=b"edited", content_type="image/png")]
        self.available = available
        self.calls = []

    async def edit(self, image, mime_type, mask, instructions):
        self.calls.append({"mask": mask, "instructions": instructions})
        return self.results[min(len(self.calls) - 1, len(self.results) - 1)]


class FakeJudge:
    def __init__(self, *verdicts: QualityVerdict):
        self.verdicts = list(verdicts)
        self.calls = 0

    async def assess(self, original, candidate, mime_type):
        self.calls += 1
        return self.verdicts[min(self.calls - 1, len(self.verdicts) - 1)]


@pytest.fixture
def photo() -> bytes:
    return encode_image(256, 256)


@pytest.fixture
def landmarks() -> FaceLandmarks:
    return make_landmarks()
