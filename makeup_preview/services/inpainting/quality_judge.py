# makeup_preview/services/inpainting/quality_judge.py
from __future__ import annotations

import io

import structlog
from PIL import Image, UnidentifiedImageError

from makeup_preview.data.constants import VerdictSource
from makeup_preview.data.settings import settings
from makeup_preview.dto.edit import QualityVerdict, TaggedIssue
from makeup_preview.dto.llm_responses import QualityAssessmentOutput
from makeup_preview.services.llm_invokers import VisionService
from makeup_preview.services.utils.image_io import sniff_mime

logger = structlog.get_logger(__name__)

AXIS_WEIGHTS: dict[str, float] = {
    "identity_preserved": 3.0,
    "natural_makeup": 2.0,
    "no_artifacts": 2.0,
    "lighting_consistent": 1.5,
    "seamless_blend": 1.5,
}

STRUCTURAL_SCORE_CAP = 0.7
ACCEPTANCE_STEP_PER_ATTEMPT = 0.1
_MIN_BYTES = 1024
_COMPRESSED_BYTES = 20 * 1024
_MIN_SIDE_PX = 64

_JUDGE_PROMPT = """Compare these two portrait photos and evaluate the makeup edit quality.
The FIRST image is the original, the SECOND is the edited version.

TASK: Determine if the second image is the SAME person with ONLY makeup added.

Score each criterion from 0 to 10:
1. identity_preserved: clearly the same person? Same face shape, bone structure, features?
2. natural_makeup: does the makeup look realistic and professionally applied?
3. no_artifacts: any visual glitches, blurring or distortions?
4. lighting_consistent: are lighting and skin tone consistent with the original?
5. seamless_blend: are the makeup edges blended naturally with the skin?

List every specific problem under "issues". Tag each with a kind
(identity, artifact, naturalness, lighting, other) and, when it concerns one
area, a zone (eyes, lips, cheeks, brows, base).
Set "passed" to true only if all scores are 6 or higher."""


def weighted_score(axis_scores: dict[str, float]) -> float:
    """Weighted mean of 0-10 axis scores, normalized to [0, 1]."""
    total_weight = sum(AXIS_WEIGHTS.values())
    total = sum(axis_scores.get(axis, 0.0) * weight for axis, weight in AXIS_WEIGHTS.items())
    return max(0.0, min(1.0, total / total_weight / 10))


def verdict_from_assessment(assessment: QualityAssessmentOutput) -> QualityVerdict:
    axis_scores = {axis: max(0.0, min(10.0, float(getattr(assessment, axis)))) for axis in AXIS_WEIGHTS}
    score = weighted_score(axis_scores)
    tagged = tuple(TaggedIssue(description=i.description, kind=i.kind, zone=i.zone) for i in assessment.issues)
    passed = score >= settings.pipeline.success_threshold

    if assessment.passed is not None and assessment.passed != passed:
        logger.info("Judge pass flag disagrees with weighted score", judge_passed=assessment.passed, score=score)

    return QualityVerdict(
        passed=passed,
        score=score,
        issues=tuple(i.description for i in tagged),
        tagged_issues=tagged,
        axis_scores=axis_scores,
        source=VerdictSource.JUDGE,
    )


def is_acceptable_result(verdict: QualityVerdict, attempt: int) -> bool:
    """Score bar that relaxes by one step per prior attempt, down to the degraded floor."""
    cfg = settings.pipeline
    threshold = max(cfg.degraded_threshold, cfg.success_threshold - attempt * ACCEPTANCE_STEP_PER_ATTEMPT)
    return verdict.score >= threshold


def structural_check(candidate: bytes | None) -> QualityVerdict:
    """
    Judges an edit from the bytes alone. Without a model it cannot vouch for
    identity, so the score never exceeds STRUCTURAL_SCORE_CAP.
    """
    if not candidate or len(candidate) < _MIN_BYTES:
        return QualityVerdict(
            passed=False, score=0.0, issues=("Image data appears corrupt or empty",), source=VerdictSource.STRUCTURAL
        )

    invalid = QualityVerdict(
        passed=False, score=0.3, issues=("Invalid image format",), source=VerdictSource.STRUCTURAL
    )
    if sniff_mime(candidate) is None:
        return invalid
    try:
        with Image.open(io.BytesIO(candidate)) as img:
            img.verify()
            width, height = img.size
    except (UnidentifiedImageError, OSError, ValueError):
        return invalid

    issues: list[str] = []
    if width < _MIN_SIDE_PX or height < _MIN_SIDE_PX:
        issues.append("Image dimensions too small")
    if len(candidate) < _COMPRESSED_BYTES:
        issues.append("Image may be too compressed")

    return QualityVerdict(
        passed=not issues,
        score=STRUCTURAL_SCORE_CAP if not issues else 0.5,
        issues=tuple(issues),
        source=VerdictSource.STRUCTURAL,
    )


class QualityJudge:
    def __init__(self, vision_service: VisionService | None = None) -> None:
        self.vision_service = vision_service or VisionService()

    async def assess(self, original: bytes, candidate: bytes | None, mime_type: str) -> QualityVerdict:
        """Scores a candidate edit against the original photo."""
        if not candidate:
            return structural_check(candidate)

        if not self.vision_service.available:
            logger.info("No quality judge configured, using structural check")
            return structural_check(candidate)

        candidate_mime = sniff_mime(candidate) or "image/png"
        try:
            assessment = await self.vision_service.analyze(
                _JUDGE_PROMPT,
                [(original, mime_type), (candidate, candidate_mime)],
                QualityAssessmentOutput,
            )
        except Exception:
            logger.exception("Quality judge failed, using structural check")
            return structural_check(candidate)

        return verdict_from_assessment(assessment)


def log_quality_metrics(session_id: str | None, verdict: QualityVerdict, attempt: int) -> None:
    logger.info(
        "inpainting_quality_check",
        session_id=session_id,
        attempt=attempt,
        passed=verdict.passed,
        score=round(verdict.score, 4),
        source=verdict.source.value,
        issue_count=len(verdict.issues),
        issues=list(verdict.issues),
        axis_scores=verdict.axis_scores,
    )
