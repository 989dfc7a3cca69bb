# makeup_preview/services/inpainting/inpainting_client.py
from __future__ import annotations

import time
from typing import Sequence

import aiohttp
import structlog

from makeup_preview.data.constants import CATEGORY_ZONE_IDS, FailureKind, ZoneId
from makeup_preview.data.settings import settings
from makeup_preview.dto.edit import EditInstructions, EditMask, EditRequest, EditResult, MakeupZone
from makeup_preview.dto.landmarks import ValidationReport
from makeup_preview.services.clients import (
    ReplicateAsyncClient,
    ReplicateJobError,
    ReplicateTimeoutError,
    factory as ai_client_factory,
)
from makeup_preview.services.utils.image_io import decode_image_payload, looks_like_base64, sniff_mime, to_data_url

from . import composer
from .mask_builder import build_mask, mask_to_data_url

logger = structlog.get_logger(__name__)

MIN_IMAGE_BYTES = 10 * 1024
MAX_IMAGE_BYTES = 10 * 1024 * 1024
SUPPORTED_MIME_TYPES = ("image/jpeg", "image/png", "image/webp")


def validate_input_image(image: bytes | str | None) -> ValidationReport:
    """
    Checks that a photo can be sent to the edit service: size between 10 KB
    and 10 MB and a JPEG/PNG/WebP signature (or data URL prefix).
    """
    if not image:
        return ValidationReport(valid=False, issues=("No image provided",))

    if isinstance(image, str) and not image.strip().startswith("data:") and not looks_like_base64(image):
        return ValidationReport(valid=False, issues=("Invalid image data format",))

    data, declared_mime = decode_image_payload(image)
    if data is None:
        return ValidationReport(valid=False, issues=("Invalid image data format",))

    issues: list[str] = []
    if len(data) < MIN_IMAGE_BYTES:
        issues.append("Image too small (< 10KB)")
    if len(data) > MAX_IMAGE_BYTES:
        issues.append("Image too large (> 10MB)")

    if sniff_mime(data) is None and declared_mime not in SUPPORTED_MIME_TYPES:
        issues.append("Unsupported image format (use JPEG, PNG or WebP)")

    return ValidationReport(valid=not issues, issues=tuple(issues))


class InpaintingClient:
    """
    Runs one masked generative edit on the Replicate inpainting model.

    Client-level exceptions stay inside this class; callers always get an
    EditResult back.
    """

    def __init__(self, replicate_client: ReplicateAsyncClient | None = None) -> None:
        self.replicate_client = replicate_client or ai_client_factory.get_replicate_client()

    @property
    def available(self) -> bool:
        return self.replicate_client is not None

    def _build_inputs(self, image: bytes, mime_type: str, mask: EditMask, instructions: EditInstructions) -> dict:
        cfg = settings.inpainting_model
        return {
            "image": to_data_url(image, mime_type),
            "mask": mask_to_data_url(mask),
            "prompt": instructions.positive,
            "negative_prompt": instructions.negative,
            "num_inference_steps": cfg.num_inference_steps,
            "guidance_scale": cfg.guidance_scale,
            "strength": cfg.strength,
            "scheduler": cfg.scheduler,
            "num_outputs": 1,
        }

    async def edit(
        self,
        image: bytes,
        mime_type: str,
        mask: EditMask,
        instructions: EditInstructions,
    ) -> EditResult:
        started = time.monotonic()

        def _elapsed() -> int:
            return int((time.monotonic() - started) * 1000)

        log = logger.bind(mime_type=mime_type, zones=[z.value for z in mask.zones])

        if self.replicate_client is None:
            log.error("Inpainting service not configured")
            return EditResult(
                success=False,
                error="Inpainting service not configured",
                failure_kind=FailureKind.EDIT_SERVICE_UNAVAILABLE,
                elapsed_ms=_elapsed(),
            )

        cfg = settings.inpainting_model
        try:
            prediction = await self.replicate_client.run(
                cfg.version,
                self._build_inputs(image, mime_type, mask, instructions),
                max_polls=cfg.max_polls,
                poll_interval_s=cfg.poll_interval_s,
                request_timeout_s=cfg.request_timeout_s,
            )
            output_url = ReplicateAsyncClient.extract_first_output_url(prediction)
            if not output_url:
                log.error("Inpainting prediction has no output image")
                return EditResult(
                    success=False,
                    error="No output image from inpainting",
                    failure_kind=FailureKind.EDIT_SERVICE_FAILED,
                    elapsed_ms=_elapsed(),
                )

            result_bytes, content_type = await self.replicate_client.download(output_url)
        except ReplicateTimeoutError as e:
            log.error("Inpainting timed out", error=str(e))
            return EditResult(
                success=False, error=str(e), failure_kind=FailureKind.EDIT_SERVICE_FAILED, elapsed_ms=_elapsed()
            )
        except ReplicateJobError as e:
            log.error("Inpainting prediction failed", error=str(e))
            return EditResult(
                success=False, error=str(e), failure_kind=FailureKind.EDIT_SERVICE_FAILED, elapsed_ms=_elapsed()
            )
        except aiohttp.ClientError as e:
            log.error("Inpainting service unreachable", error=str(e))
            return EditResult(
                success=False, error=str(e), failure_kind=FailureKind.EDIT_SERVICE_UNAVAILABLE, elapsed_ms=_elapsed()
            )
        except Exception as e:
            log.exception("Unexpected inpainting error")
            return EditResult(
                success=False, error=str(e), failure_kind=FailureKind.EDIT_SERVICE_FAILED, elapsed_ms=_elapsed()
            )

        if not result_bytes:
            return EditResult(
                success=False,
                error="Empty inpainting output",
                failure_kind=FailureKind.EDIT_SERVICE_FAILED,
                elapsed_ms=_elapsed(),
            )

        content_type = (content_type or "").split(";")[0].strip() or sniff_mime(result_bytes) or "image/png"
        log.info("Inpainting succeeded", size=len(result_bytes), elapsed_ms=_elapsed())
        return EditResult(success=True, image=result_bytes, content_type=content_type, elapsed_ms=_elapsed())

    async def edit_incremental(
        self,
        image: bytes,
        mime_type: str,
        zones: Sequence[MakeupZone],
        requests: Sequence[EditRequest],
        look_title: str,
        look_description: str,
        width: int,
        height: int,
    ) -> EditResult:
        """
        Edits one zone at a time, feeding each successful output into the next
        edit. A failed zone is skipped and the chain continues from the last
        good image. Fails only when no zone could be edited.
        """
        started = time.monotonic()
        by_zone: dict[ZoneId, list[EditRequest]] = {}
        for request in requests:
            for zone_id in CATEGORY_ZONE_IDS[request.zone]:
                by_zone.setdefault(zone_id, []).append(request)

        current, current_mime = image, mime_type
        edited: list[ZoneId] = []
        last_failure: EditResult | None = None

        for zone in zones:
            zone_requests = by_zone.get(zone.id)
            if not zone_requests:
                continue
            mask = build_mask([zone], width, height)
            if not mask.zones:
                continue
            result = await self.edit(current, current_mime, mask, composer.compose(zone_requests, look_title, look_description))
            if result.success and result.image:
                current, current_mime = result.image, result.content_type or "image/png"
                edited.append(zone.id)
            else:
                logger.warning("Zone edit skipped", zone=zone.id.value, error=result.error)
                last_failure = result

        elapsed_ms = int((time.monotonic() - started) * 1000)
        if not edited:
            if last_failure is not None:
                return last_failure.model_copy(update={"elapsed_ms": elapsed_ms})
            return EditResult(
                success=False,
                error="No requested zone could be masked",
                failure_kind=FailureKind.ZONES_EXHAUSTED,
                elapsed_ms=elapsed_ms,
            )

        logger.info("Incremental inpainting finished", zones=[z.value for z in edited], elapsed_ms=elapsed_ms)
        return EditResult(success=True, image=current, content_type=current_mime, elapsed_ms=elapsed_ms)
