import pytest

from makeup_preview.data.constants import (
    DEGRADED_RESULT_REASON,
    FailureKind,
    FallbackAction,
    IssueKind,
    ZoneCategory,
    ZoneId,
)
from makeup_preview.dto.edit import EditRequest, EditResult, TaggedIssue
from makeup_preview.services.inpainting.orchestrator import (
    InpaintingPipeline,
    IssueAnalysis,
    can_attempt_inpainting,
    choose_fallback,
    classify_issues,
    run_pipeline,
)

from conftest import FakeClient, FakeDetector, FakeJudge, encode_image, make_landmarks, verdict

EDITED = EditResult(success=True, image=b"edited-image", content_type="image/png")
FAILED = EditResult(success=False, error="prediction failed", failure_kind=FailureKind.EDIT_SERVICE_FAILED)

THREE_ZONES = [
    EditRequest(zone=ZoneCategory.EYES, description="bold smoky plum shadow", intensity=0.8),
    EditRequest(zone=ZoneCategory.LIPS, description="deep berry matte lipstick", intensity=0.85),
    EditRequest(zone=ZoneCategory.CHEEKS, description="coral blush", intensity=0.6),
]


def _pipeline(judge=None, client=None, landmarks="default"):
    detector = FakeDetector(make_landmarks() if landmarks == "default" else landmarks)
    return InpaintingPipeline(detector, client or FakeClient(EDITED), judge or FakeJudge(verdict(0.8)))


async def _run(pipeline, photo, requests=THREE_ZONES, **kwargs):
    return await run_pipeline(photo, "image/jpeg", requests, "Evening glam", "rich dramatic look", pipeline=pipeline, **kwargs)


def _total_intensity(record):
    return sum(r.intensity for r in record.requests)


async def test_invalid_image_makes_no_calls():
    pipeline = _pipeline()
    outcome = await _run(pipeline, b"not an image")
    assert outcome.fallback_used and not outcome.success
    assert outcome.attempt_count == 0
    assert outcome.failure_kind == FailureKind.INPUT_INVALID
    assert pipeline.detector.calls == 0
    assert pipeline.client.calls == []


async def test_no_face(photo):
    pipeline = _pipeline(landmarks=None)
    outcome = await _run(pipeline, photo)
    assert outcome.failure_kind == FailureKind.FACE_UNDETECTED
    assert outcome.attempt_count == 0
    assert pipeline.client.calls == []


@pytest.mark.parametrize("confidence", [0.0, 0.2, 0.39])
async def test_low_confidence_never_reaches_attempts(photo, confidence):
    pipeline = _pipeline(landmarks=make_landmarks(confidence=confidence))
    outcome = await _run(pipeline, photo)
    assert outcome.failure_kind == FailureKind.LANDMARKS_UNRELIABLE
    assert pipeline.client.calls == []


async def test_borderline_confidence_continues(photo):
    pipeline = _pipeline(landmarks=make_landmarks(confidence=0.45))
    outcome = await _run(pipeline, photo)
    assert outcome.success
    assert len(pipeline.client.calls) == 1


async def test_first_attempt_success(photo):
    pipeline = _pipeline(judge=FakeJudge(verdict(0.82)))
    outcome = await _run(pipeline, photo, session_id="s-1")
    assert outcome.success
    assert not outcome.fallback_used
    assert outcome.fallback_reason is None
    assert outcome.attempt_count == 1
    assert outcome.image == b"edited-image"
    assert outcome.quality_score == pytest.approx(0.82)
    mask = pipeline.client.calls[0]["mask"]
    assert mask.zones == (ZoneId.EYES, ZoneId.LIPS, ZoneId.LEFT_CHEEK, ZoneId.RIGHT_CHEEK)
    assert (mask.width, mask.height) == (256, 256)


async def test_stops_at_first_passing_attempt(photo):
    judge = FakeJudge(verdict(0.5, "slight artifact near eye"), verdict(0.7), verdict(0.9))
    pipeline = _pipeline(judge=judge)
    outcome = await _run(pipeline, photo)
    assert outcome.success and not outcome.fallback_used
    assert outcome.attempt_count == 2
    assert judge.calls == 2


async def test_identity_drift_is_never_retried(photo):
    pipeline = _pipeline(judge=FakeJudge(verdict(0.3, "Looks like a different person")))
    outcome = await _run(pipeline, photo)
    assert outcome.failure_kind == FailureKind.IDENTITY_DRIFT
    assert outcome.attempt_count == 1
    assert outcome.image is None
    assert len(pipeline.client.calls) == 1
    assert outcome.attempts[-1].action == FallbackAction.ABORT


async def test_tagged_identity_issue_aborts(photo):
    issue = TaggedIssue(description="jawline changed", kind=IssueKind.IDENTITY)
    judge = FakeJudge(verdict(0.55, "artifact on lids"), verdict(0.5, issue))
    pipeline = _pipeline(judge=judge)
    outcome = await _run(pipeline, photo)
    assert outcome.failure_kind == FailureKind.IDENTITY_DRIFT
    assert outcome.attempt_count == 2
    assert len(pipeline.client.calls) == 2


async def test_missing_request_list_is_invalid_input(photo):
    pipeline = _pipeline()
    outcome = await run_pipeline(photo, "image/jpeg", None, "t", "d", pipeline=pipeline)
    assert not outcome.success and outcome.fallback_used
    assert outcome.failure_kind == FailureKind.INPUT_INVALID
    assert outcome.attempt_count == 0
    assert pipeline.detector.calls == 0


async def test_zone_dropped_on_final_attempt_exhausts_zones(photo):
    cheeks_only = [EditRequest(zone=ZoneCategory.CHEEKS, description="coral blush", intensity=0.6)]
    judge = FakeJudge(verdict(0.5, "blush artifact"), verdict(0.5, "too heavy overall"), verdict(0.5, "cheek patchy"))
    pipeline = InpaintingPipeline(FakeDetector(make_landmarks()), FakeClient(EDITED), judge, max_attempts=3)
    outcome = await _run(pipeline, photo, requests=cheeks_only)
    assert [r.action for r in outcome.attempts] == [
        FallbackAction.RETRY_WITH_SIMPLER_PROMPT,
        FallbackAction.REDUCE_INTENSITY,
        FallbackAction.SKIP_ZONE,
    ]
    assert not outcome.success and outcome.image is None
    assert outcome.failure_kind == FailureKind.ZONES_EXHAUSTED
    assert outcome.attempt_count == 3


async def test_degraded_success_returns_best_attempt(photo):
    client = FakeClient(
        EditResult(success=True, image=b"first", content_type="image/png"),
        EditResult(success=True, image=b"second", content_type="image/png"),
        EditResult(success=True, image=b"third", content_type="image/png"),
    )
    judge = FakeJudge(verdict(0.45), verdict(0.55), verdict(0.5))
    outcome = await _run(_pipeline(judge=judge, client=client), photo)
    assert outcome.success
    assert outcome.fallback_used
    assert outcome.fallback_reason == DEGRADED_RESULT_REASON
    assert outcome.image == b"second"
    assert outcome.quality_score == pytest.approx(0.55)
    assert outcome.attempt_count == 3


async def test_all_attempts_below_floor(photo):
    judge = FakeJudge(verdict(0.3), verdict(0.2), verdict(0.35))
    outcome = await _run(_pipeline(judge=judge), photo)
    assert not outcome.success
    assert outcome.failure_kind == FailureKind.QUALITY_REJECTED
    assert outcome.image is None
    assert outcome.quality_score == pytest.approx(0.35)


async def test_intensity_never_increases(photo):
    judge = FakeJudge(verdict(0.5, "artifact"), verdict(0.5, "not natural"), verdict(0.5))
    outcome = await _run(_pipeline(judge=judge), photo)
    records = outcome.attempts
    assert len(records) == 3
    for before, after in zip(records, records[1:]):
        assert _total_intensity(after) < _total_intensity(before)
        by_zone = {r.zone: r.intensity for r in before.requests}
        assert all(r.intensity <= by_zone[r.zone] for r in after.requests)


async def test_artifact_then_cheek_issue_drops_cheeks(photo):
    judge = FakeJudge(
        verdict(0.5, "visible artifact around the eyes"),
        verdict(0.5, "cheek blending looks patchy"),
        verdict(0.85),
    )
    pipeline = _pipeline(judge=judge)
    outcome = await _run(pipeline, photo)

    first, second, third = outcome.attempts
    assert first.action == FallbackAction.RETRY_WITH_SIMPLER_PROMPT
    first_by_zone = {r.zone: r.intensity for r in first.requests}
    assert all(r.intensity <= first_by_zone[r.zone] for r in second.requests)
    assert "smoky" not in second.requests[0].description

    assert second.dropped_zone == ZoneCategory.CHEEKS
    assert ZoneCategory.CHEEKS not in {r.zone for r in third.requests}
    assert third.target_zones == (ZoneId.EYES, ZoneId.LIPS)
    assert pipeline.client.calls[2]["mask"].zones == (ZoneId.EYES, ZoneId.LIPS)
    assert "blush" not in pipeline.client.calls[2]["instructions"].positive

    assert outcome.success and outcome.attempt_count == 3


async def test_simplified_look_description_is_used(photo):
    judge = FakeJudge(verdict(0.5, "artifact"), verdict(0.9))
    pipeline = _pipeline(judge=judge)
    await _run(pipeline, photo)
    second_prompt = pipeline.client.calls[1]["instructions"].positive
    assert "subtle subtle look" in second_prompt
    assert "rich dramatic look" not in second_prompt


async def test_dropping_last_zone_stops_immediately(photo):
    cheeks_only = [EditRequest(zone=ZoneCategory.CHEEKS, description="coral blush", intensity=0.6)]
    judge = FakeJudge(verdict(0.5, "blush artifact"), verdict(0.5, "cheek color patchy"), verdict(0.9))
    pipeline = InpaintingPipeline(
        FakeDetector(make_landmarks()), FakeClient(EDITED), judge, max_attempts=5
    )
    outcome = await _run(pipeline, photo, requests=cheeks_only)
    assert not outcome.success and outcome.fallback_used
    assert outcome.failure_kind == FailureKind.ZONES_EXHAUSTED
    assert outcome.attempt_count == 2
    assert len(pipeline.client.calls) == 2


async def test_requested_zone_without_landmarks(photo):
    no_cheeks = make_landmarks(left_cheek=(), right_cheek=())
    cheeks_only = [EditRequest(zone=ZoneCategory.CHEEKS, description="blush", intensity=0.5)]
    pipeline = _pipeline(landmarks=no_cheeks)
    outcome = await _run(pipeline, photo, requests=cheeks_only)
    assert outcome.failure_kind == FailureKind.ZONES_EXHAUSTED
    assert outcome.attempt_count == 0
    assert pipeline.client.calls == []


async def test_edit_failures_degrade_and_report(photo):
    pipeline = _pipeline(client=FakeClient(FAILED))
    outcome = await _run(pipeline, photo)
    assert outcome.failure_kind == FailureKind.EDIT_SERVICE_FAILED
    assert outcome.attempt_count == 3
    actions = [r.action for r in outcome.attempts]
    assert actions[:2] == [FallbackAction.RETRY_WITH_SIMPLER_PROMPT, FallbackAction.REDUCE_INTENSITY]
    assert pipeline.judge.calls == 0


async def test_unconfigured_edit_service_runs_the_ladder(photo):
    unavailable = EditResult(success=False, error="not configured", failure_kind=FailureKind.EDIT_SERVICE_UNAVAILABLE)
    pipeline = _pipeline(client=FakeClient(unavailable, available=False))
    outcome = await _run(pipeline, photo)
    assert outcome.failure_kind == FailureKind.EDIT_SERVICE_UNAVAILABLE
    assert outcome.attempt_count == 3
    assert len(pipeline.client.calls) == 3
    assert [r.action for r in outcome.attempts][:2] == [
        FallbackAction.RETRY_WITH_SIMPLER_PROMPT,
        FallbackAction.REDUCE_INTENSITY,
    ]


async def test_client_exception_is_absorbed(photo):
    class ExplodingClient(FakeClient):
        async def edit(self, *args):
            raise RuntimeError("socket closed")

    judge = FakeJudge(verdict(0.9))
    outcome = await _run(_pipeline(client=ExplodingClient(), judge=judge), photo)
    assert not outcome.success
    assert outcome.failure_kind == FailureKind.EDIT_SERVICE_FAILED
    assert all(not r.edit_success for r in outcome.attempts)


async def test_unexpected_error_becomes_outcome(photo):
    class BrokenDetector:
        async def detect(self, photo, mime_type):
            raise KeyError("boom")

    pipeline = InpaintingPipeline(BrokenDetector(), FakeClient(EDITED), FakeJudge(verdict(0.9)))
    outcome = await _run(pipeline, photo)
    assert outcome.fallback_used and not outcome.success
    assert outcome.fallback_reason


async def test_fallback_reason_has_no_raw_errors(photo):
    outcome = await _run(_pipeline(client=FakeClient(FAILED)), photo)
    assert "prediction failed" not in outcome.fallback_reason


def test_classify_prefers_tags_then_keywords():
    tagged = TaggedIssue(description="odd tone", kind=IssueKind.ARTIFACT, zone=ZoneCategory.LIPS)
    analysis = classify_issues(verdict(0.5, tagged, "blush looks unnatural on the cheek"))
    assert analysis.artifact and analysis.naturalness and not analysis.identity
    assert analysis.zone in (ZoneCategory.LIPS, ZoneCategory.CHEEKS)

    assert classify_issues(verdict(0.5, "eyebrow is too dark")).zone == ZoneCategory.BROWS
    assert classify_issues(verdict(0.5, "glitch on the upper lid")).zone == ZoneCategory.EYES
    assert classify_issues(None) == IssueAnalysis()


def test_fallback_ladder():
    assert choose_fallback(1, IssueAnalysis(artifact=True)).action == FallbackAction.RETRY_WITH_SIMPLER_PROMPT
    assert choose_fallback(1, IssueAnalysis(naturalness=True)).action == FallbackAction.REDUCE_INTENSITY
    assert choose_fallback(1, IssueAnalysis()).action == FallbackAction.RETRY_WITH_SIMPLER_PROMPT
    assert choose_fallback(2, IssueAnalysis()).drop_zone is None
    assert choose_fallback(2, IssueAnalysis(zone=ZoneCategory.LIPS)).drop_zone == ZoneCategory.LIPS
    assert choose_fallback(3, IssueAnalysis(zone=ZoneCategory.EYES)).action == FallbackAction.SKIP_ZONE
    assert choose_fallback(3, IssueAnalysis()).action == FallbackAction.REDUCE_INTENSITY
    assert choose_fallback(2, IssueAnalysis(identity=True, zone=ZoneCategory.EYES)).action == FallbackAction.ABORT


async def test_preflight(photo):
    ok = await can_attempt_inpainting(photo, "image/jpeg", pipeline=_pipeline())
    assert ok.can_attempt and ok.landmarks is not None

    low = await can_attempt_inpainting(photo, "image/jpeg", pipeline=_pipeline(landmarks=make_landmarks(confidence=0.3)))
    assert not low.can_attempt and low.reason == "Face detection confidence too low"

    tiny = await can_attempt_inpainting(encode_image(8, 8), "image/jpeg", pipeline=_pipeline())
    assert tiny.reason == "Image too small (< 10KB)"
