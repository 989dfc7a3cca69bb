# makeup_preview/services/inpainting/orchestrator.py
# Control loop of the makeup preview:
#   validate input -> detect face -> validate landmarks -> attempts -> terminal
#
# Each failed attempt degrades the request for the next one:
#   after 1:  artifact -> simplify, naturalness -> reduce, else simplify
#   after 2:  reduce intensity, plus drop the implicated zone if any
#   after 3+: drop the implicated zone, else reduce intensity
# Identity drift is never retried.

from __future__ import annotations

import time
from collections import Counter
from typing import NamedTuple, Sequence

import structlog

from makeup_preview.data.constants import (
    DEGRADED_RESULT_REASON,
    FALLBACK_REASONS,
    FailureKind,
    FallbackAction,
    IssueKind,
    ZoneCategory,
)
from makeup_preview.data.settings import settings
from makeup_preview.dto.edit import (
    AttemptRecord,
    EditRequest,
    EditResult,
    PipelineOutcome,
    PreflightResult,
    QualityVerdict,
)
from makeup_preview.services.utils.image_io import decode_image_payload, probe_dimensions, sniff_mime

from . import composer
from .inpainting_client import InpaintingClient, validate_input_image
from .landmark_detector import LandmarkDetector, validate_landmarks
from .mask_builder import build_mask, build_zones, zone_ids_for_requests
from .quality_judge import QualityJudge, log_quality_metrics

logger = structlog.get_logger(__name__)

_IDENTITY_KEYWORDS = ("identity", "different person", "face shape")
_ARTIFACT_KEYWORDS = ("artifact", "distortion", "glitch")
_NATURALNESS_KEYWORDS = ("makeup", "blend", "natural")

# Checked in order per issue; "brow" precedes "eye" so "eyebrow" lands on brows.
_ZONE_KEYWORDS: tuple[tuple[ZoneCategory, tuple[str, ...]], ...] = (
    (ZoneCategory.BROWS, ("brow",)),
    (ZoneCategory.EYES, ("eye", "lid")),
    (ZoneCategory.LIPS, ("lip", "mouth")),
    (ZoneCategory.CHEEKS, ("cheek", "blush")),
)
_ZONE_PRIORITY = (ZoneCategory.EYES, ZoneCategory.LIPS, ZoneCategory.CHEEKS, ZoneCategory.BROWS, ZoneCategory.BASE)


class IssueAnalysis(NamedTuple):
    identity: bool = False
    artifact: bool = False
    naturalness: bool = False
    zone: ZoneCategory | None = None


def _keyword_zone(text: str) -> ZoneCategory | None:
    for zone, keywords in _ZONE_KEYWORDS:
        if any(k in text for k in keywords):
            return zone
    return None


def classify_issues(verdict: QualityVerdict | None) -> IssueAnalysis:
    """
    Classifies judge issues. Structured tags are trusted first; issues tagged
    `other` (or plain strings) fall back to keyword matching.
    """
    if verdict is None:
        return IssueAnalysis()

    kinds: set[IssueKind] = set()
    zone_votes: Counter[ZoneCategory] = Counter()

    tagged = list(verdict.tagged_issues)
    tagged_texts = {t.description for t in tagged}
    untagged = [i for i in verdict.issues if i not in tagged_texts]

    for issue in tagged:
        text = issue.description.lower()
        if issue.kind != IssueKind.OTHER:
            kinds.add(issue.kind)
        else:
            kinds.update(_keyword_kinds(text))
        zone = issue.zone or _keyword_zone(text)
        if zone:
            zone_votes[zone] += 1

    for issue in untagged:
        text = issue.lower()
        kinds.update(_keyword_kinds(text))
        if zone := _keyword_zone(text):
            zone_votes[zone] += 1

    zone = None
    if zone_votes:
        top = max(zone_votes.values())
        zone = next(z for z in _ZONE_PRIORITY if zone_votes.get(z) == top)

    return IssueAnalysis(
        identity=IssueKind.IDENTITY in kinds,
        artifact=IssueKind.ARTIFACT in kinds,
        naturalness=IssueKind.NATURALNESS in kinds,
        zone=zone,
    )


def _keyword_kinds(text: str) -> set[IssueKind]:
    kinds = set()
    if any(k in text for k in _IDENTITY_KEYWORDS):
        kinds.add(IssueKind.IDENTITY)
    if any(k in text for k in _ARTIFACT_KEYWORDS):
        kinds.add(IssueKind.ARTIFACT)
    if any(k in text for k in _NATURALNESS_KEYWORDS):
        kinds.add(IssueKind.NATURALNESS)
    return kinds


class FallbackDecision(NamedTuple):
    action: FallbackAction
    drop_zone: ZoneCategory | None = None


def choose_fallback(attempt: int, analysis: IssueAnalysis) -> FallbackDecision:
    """Picks how to degrade the request after a failed attempt."""
    if analysis.identity:
        return FallbackDecision(FallbackAction.ABORT)
    if attempt == 1:
        if analysis.artifact:
            return FallbackDecision(FallbackAction.RETRY_WITH_SIMPLER_PROMPT)
        if analysis.naturalness:
            return FallbackDecision(FallbackAction.REDUCE_INTENSITY)
        return FallbackDecision(FallbackAction.RETRY_WITH_SIMPLER_PROMPT)
    if attempt == 2:
        return FallbackDecision(FallbackAction.REDUCE_INTENSITY, drop_zone=analysis.zone)
    if analysis.zone:
        return FallbackDecision(FallbackAction.SKIP_ZONE, drop_zone=analysis.zone)
    return FallbackDecision(FallbackAction.REDUCE_INTENSITY)


class _Best(NamedTuple):
    score: float
    image: bytes
    content_type: str | None
    attempt: int


class InpaintingPipeline:
    def __init__(
        self,
        detector: LandmarkDetector | None = None,
        client: InpaintingClient | None = None,
        judge: QualityJudge | None = None,
        *,
        max_attempts: int | None = None,
    ) -> None:
        self.detector = detector or LandmarkDetector()
        self.client = client or InpaintingClient()
        self.judge = judge or QualityJudge()
        self.max_attempts = max_attempts or settings.pipeline.max_attempts

    async def run(
        self,
        image: bytes | str,
        mime_type: str,
        edit_requests: Sequence[EditRequest],
        look_title: str,
        look_description: str,
        session_id: str | None = None,
    ) -> PipelineOutcome:
        """Never raises for service failures; every path ends in a PipelineOutcome."""
        log = logger.bind(session_id=session_id, requested=[r.zone.value for r in edit_requests or ()])
        try:
            return await self._run(image, mime_type, edit_requests, look_title, look_description, session_id, log)
        except Exception:
            log.exception("Inpainting pipeline crashed")
            return _fallback(FailureKind.EDIT_SERVICE_FAILED)

    async def _run(self, image, mime_type, edit_requests, look_title, look_description, session_id, log):
        pipeline_cfg = settings.pipeline

        validation = validate_input_image(image)
        if not validation.valid:
            log.warning("Input image rejected", issues=list(validation.issues))
            return _fallback(FailureKind.INPUT_INVALID)

        photo, declared_mime = decode_image_payload(image)
        photo_mime = sniff_mime(photo) or declared_mime or mime_type

        if not edit_requests:
            log.warning("No edit requests given")
            return _fallback(FailureKind.INPUT_INVALID)

        landmarks = await self.detector.detect(photo, photo_mime)
        if landmarks is None:
            log.warning("No face detected")
            return _fallback(FailureKind.FACE_UNDETECTED)

        report = validate_landmarks(landmarks)
        if not report.valid:
            log.warning("Landmark validation issues", issues=list(report.issues), confidence=landmarks.confidence)
            if landmarks.confidence < pipeline_cfg.confidence_floor:
                return _fallback(FailureKind.LANDMARKS_UNRELIABLE)

        zones = build_zones(landmarks)
        available = {z.id for z in zones}
        width, height = probe_dimensions(photo) or (pipeline_cfg.default_mask_size, pipeline_cfg.default_mask_size)

        requests = list(edit_requests)
        records: list[AttemptRecord] = []
        best: _Best | None = None
        last_verdict: QualityVerdict | None = None
        last_edit: EditResult | None = None

        for attempt in range(1, self.max_attempts + 1):
            started = time.monotonic()
            target_ids = [z for z in zone_ids_for_requests(requests) if z in available]
            if not target_ids:
                log.warning("No makeup zones left to edit", attempt=attempt)
                return _fallback(FailureKind.ZONES_EXHAUSTED, attempt_count=attempt - 1, attempts=records)

            mask = build_mask(zones, width, height, target_ids)
            instructions = composer.compose(requests, look_title, look_description)
            alog = log.bind(attempt=attempt, zones=[z.value for z in mask.zones])

            edit = await self._edit_safely(photo, photo_mime, mask, instructions, alog)
            last_edit = edit

            verdict = None
            if edit.success and edit.image:
                verdict = await self.judge.assess(photo, edit.image, photo_mime)
                last_verdict = verdict
                if session_id:
                    log_quality_metrics(session_id, verdict, attempt)

                if best is None or verdict.score > best.score:
                    best = _Best(verdict.score, edit.image, edit.content_type, attempt)

                if verdict.passed and verdict.score >= pipeline_cfg.success_threshold:
                    records.append(_record(attempt, requests, mask.zones, edit, verdict, None, None, started))
                    alog.info("Inpainting attempt accepted", score=verdict.score)
                    return PipelineOutcome(
                        success=True,
                        image=edit.image,
                        content_type=edit.content_type,
                        fallback_used=False,
                        quality_score=verdict.score,
                        attempt_count=attempt,
                        attempts=tuple(records),
                    )
            else:
                alog.warning("Inpainting attempt produced no image", error=edit.error, failure_kind=edit.failure_kind)

            decision = choose_fallback(attempt, classify_issues(verdict))
            records.append(_record(attempt, requests, mask.zones, edit, verdict, decision.action, decision.drop_zone, started))
            alog.info(
                "Inpainting attempt rejected",
                score=verdict.score if verdict else None,
                action=decision.action.value,
                drop_zone=decision.drop_zone.value if decision.drop_zone else None,
            )

            if decision.action == FallbackAction.ABORT:
                return _fallback(
                    FailureKind.IDENTITY_DRIFT,
                    attempt_count=attempt,
                    attempts=records,
                    quality_score=verdict.score if verdict else None,
                )

            requests, look_description = _apply_decision(decision, requests, look_description)
            if not any(z in available for z in zone_ids_for_requests(requests)):
                log.warning("All makeup zones dropped", attempt=attempt)
                return _fallback(FailureKind.ZONES_EXHAUSTED, attempt_count=attempt, attempts=records)

        if best is not None and best.score >= pipeline_cfg.degraded_threshold:
            log.info("Returning degraded preview", score=best.score, attempt=best.attempt)
            return PipelineOutcome(
                success=True,
                image=best.image,
                content_type=best.content_type,
                fallback_used=True,
                fallback_reason=DEGRADED_RESULT_REASON,
                quality_score=best.score,
                attempt_count=self.max_attempts,
                attempts=tuple(records),
            )

        if last_verdict is not None:
            kind = FailureKind.QUALITY_REJECTED
        elif last_edit is not None and last_edit.failure_kind is not None:
            kind = last_edit.failure_kind
        else:
            kind = FailureKind.EDIT_SERVICE_FAILED
        log.warning("All inpainting attempts failed", failure_kind=kind.value)
        return _fallback(
            kind,
            attempt_count=self.max_attempts,
            attempts=records,
            quality_score=best.score if best else None,
        )

    async def _edit_safely(self, photo, mime_type, mask, instructions, log) -> EditResult:
        try:
            return await self.client.edit(photo, mime_type, mask, instructions)
        except Exception as e:
            log.exception("Inpainting client raised")
            return EditResult(success=False, error=str(e), failure_kind=FailureKind.EDIT_SERVICE_FAILED)

    async def can_attempt(self, image: bytes | str, mime_type: str) -> PreflightResult:
        validation = validate_input_image(image)
        if not validation.valid:
            return PreflightResult(can_attempt=False, reason=validation.issues[0])

        photo, declared_mime = decode_image_payload(image)
        landmarks = await self.detector.detect(photo, sniff_mime(photo) or declared_mime or mime_type)
        if landmarks is None:
            return PreflightResult(can_attempt=False, reason="No face detected")
        if landmarks.confidence < settings.pipeline.confidence_floor:
            return PreflightResult(can_attempt=False, reason="Face detection confidence too low")
        return PreflightResult(can_attempt=True, landmarks=landmarks)


def _apply_decision(
    decision: FallbackDecision, requests: list[EditRequest], look_description: str
) -> tuple[list[EditRequest], str]:
    if decision.action == FallbackAction.RETRY_WITH_SIMPLER_PROMPT:
        return [composer.simplify(r) for r in requests], composer.simplify_text(look_description)
    if decision.action == FallbackAction.REDUCE_INTENSITY:
        requests = [composer.reduce_intensity(r) for r in requests]
    if decision.drop_zone is not None:
        requests = [r for r in requests if r.zone != decision.drop_zone]
    return requests, look_description


def _record(attempt, requests, zones, edit, verdict, action, dropped_zone, started) -> AttemptRecord:
    return AttemptRecord(
        attempt=attempt,
        requests=tuple(requests),
        target_zones=tuple(zones),
        edit_success=edit.success,
        edit_error=edit.error,
        verdict=verdict,
        action=action,
        dropped_zone=dropped_zone,
        elapsed_ms=int((time.monotonic() - started) * 1000),
    )


def _fallback(
    kind: FailureKind,
    *,
    attempt_count: int = 0,
    attempts: Sequence[AttemptRecord] = (),
    quality_score: float | None = None,
) -> PipelineOutcome:
    return PipelineOutcome(
        success=False,
        fallback_used=True,
        fallback_reason=FALLBACK_REASONS[kind],
        quality_score=quality_score,
        attempt_count=attempt_count,
        failure_kind=kind,
        attempts=tuple(attempts),
    )


async def run_pipeline(
    image: bytes | str,
    mime_type: str,
    edit_requests: Sequence[EditRequest],
    look_title: str,
    look_description: str,
    session_id: str | None = None,
    *,
    pipeline: InpaintingPipeline | None = None,
) -> PipelineOutcome:
    pipeline = pipeline or InpaintingPipeline()
    outcome = await pipeline.run(image, mime_type, edit_requests, look_title, look_description, session_id)
    logger.info("Inpainting pipeline finished", session_id=session_id, **outcome.summary())
    return outcome


async def can_attempt_inpainting(
    image: bytes | str, mime_type: str, *, pipeline: InpaintingPipeline | None = None
) -> PreflightResult:
    """Cheap pre-flight: is the photo usable and is a face found with enough confidence?"""
    pipeline = pipeline or InpaintingPipeline()
    return await pipeline.can_attempt(image, mime_type)
