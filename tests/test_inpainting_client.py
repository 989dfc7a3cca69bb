import base64

import aiohttp
import pytest

from makeup_preview.data.constants import FailureKind, ZoneCategory, ZoneId
from makeup_preview.dto.edit import EditInstructions, EditRequest
from makeup_preview.services.clients import ReplicateJobError, ReplicateTimeoutError
from makeup_preview.services.clients import factory as ai_client_factory
from makeup_preview.services.inpainting.inpainting_client import InpaintingClient, validate_input_image
from makeup_preview.services.inpainting.mask_builder import build_mask, build_zones

from conftest import encode_image

INSTRUCTIONS = EditInstructions(positive="soft pink lips", negative="different person")


class FakeReplicate:
    def __init__(self, prediction=None, error=None, download=(b"\x89PNG\r\n\x1a\n" + b"0" * 2048, "image/png")):
        self.prediction = prediction if prediction is not None else {"status": "succeeded", "output": ["https://x/out.png"]}
        self.error = error
        self._download = download
        self.runs = []
        self.downloads = []

    async def run(self, version, inputs, **kwargs):
        self.runs.append((version, inputs, kwargs))
        if self.error:
            raise self.error
        return self.prediction

    async def download(self, url):
        self.downloads.append(url)
        return self._download


@pytest.fixture
def mask(landmarks):
    return build_mask(build_zones(landmarks), 64, 64, [ZoneId.LIPS])


async def test_edit_success(photo, mask):
    replicate = FakeReplicate()
    result = await InpaintingClient(replicate).edit(photo, "image/jpeg", mask, INSTRUCTIONS)

    assert result.success
    assert result.content_type == "image/png"
    assert replicate.downloads == ["https://x/out.png"]
    _, inputs, kwargs = replicate.runs[0]
    assert inputs["prompt"] == "soft pink lips"
    assert inputs["negative_prompt"] == "different person"
    assert inputs["mask"].startswith("data:image/png;base64,")
    assert inputs["num_inference_steps"] == 30
    assert inputs["guidance_scale"] == 7.5
    assert inputs["strength"] == 0.75
    assert inputs["scheduler"] == "K_EULER_ANCESTRAL"
    assert kwargs["max_polls"] == 60
    assert kwargs["poll_interval_s"] == 2.0


@pytest.mark.parametrize(
    "error, kind",
    [
        (ReplicateJobError("failed"), FailureKind.EDIT_SERVICE_FAILED),
        (ReplicateTimeoutError("timeout"), FailureKind.EDIT_SERVICE_FAILED),
        (aiohttp.ClientConnectionError("down"), FailureKind.EDIT_SERVICE_UNAVAILABLE),
        (RuntimeError("boom"), FailureKind.EDIT_SERVICE_FAILED),
    ],
)
async def test_edit_errors_become_results(photo, mask, error, kind):
    result = await InpaintingClient(FakeReplicate(error=error)).edit(photo, "image/jpeg", mask, INSTRUCTIONS)
    assert not result.success
    assert result.failure_kind == kind
    assert result.image is None


async def test_edit_without_output(photo, mask):
    replicate = FakeReplicate(prediction={"status": "succeeded", "output": []})
    result = await InpaintingClient(replicate).edit(photo, "image/jpeg", mask, INSTRUCTIONS)
    assert result.failure_kind == FailureKind.EDIT_SERVICE_FAILED
    assert replicate.downloads == []


async def test_unconfigured_service(photo, mask, monkeypatch):
    monkeypatch.setattr(ai_client_factory, "get_replicate_client", lambda: None)
    client = InpaintingClient()
    assert not client.available
    result = await client.edit(photo, "image/jpeg", mask, INSTRUCTIONS)
    assert result.failure_kind == FailureKind.EDIT_SERVICE_UNAVAILABLE


def test_validate_accepts_supported_formats(photo):
    assert validate_input_image(photo).valid
    assert validate_input_image(base64.b64encode(photo).decode()).valid
    assert validate_input_image("data:image/jpeg;base64," + base64.b64encode(photo).decode()).valid
    assert validate_input_image(encode_image(256, 256, fmt="PNG")).valid


def test_validate_rejects_bad_input(photo):
    assert validate_input_image(None).issues == ("No image provided",)
    assert validate_input_image("not base64 at all!").issues == ("Invalid image data format",)
    assert "Image too small (< 10KB)" in validate_input_image(encode_image(16, 16)).issues
    assert "Image too large (> 10MB)" in validate_input_image(b"\xff\xd8\xff" + b"0" * (10 * 1024 * 1024)).issues
    report = validate_input_image(b"GIF89a" + b"0" * 20000)
    assert report.issues == ("Unsupported image format (use JPEG, PNG or WebP)",)


class ChainedReplicate(FakeReplicate):
    """Each run yields a distinct output; runs listed in `failing` raise."""

    def __init__(self, failing=()):
        super().__init__()
        self.failing = set(failing)

    async def run(self, version, inputs, **kwargs):
        self.runs.append((version, inputs, kwargs))
        if len(self.runs) in self.failing:
            raise ReplicateJobError("zone failed")
        return {"status": "succeeded", "output": [f"https://x/out{len(self.runs)}.png"]}

    async def download(self, url):
        self.downloads.append(url)
        return b"\x89PNG\r\n\x1a\n" + url.encode(), "image/png"


LIPS_AND_CHEEKS = [
    EditRequest(zone=ZoneCategory.LIPS, description="nude gloss", intensity=0.5),
    EditRequest(zone=ZoneCategory.CHEEKS, description="peach blush", intensity=0.4),
]


async def test_incremental_edit_chains_zones_and_skips_failures(photo, landmarks):
    replicate = ChainedReplicate(failing={2})
    result = await InpaintingClient(replicate).edit_incremental(
        photo, "image/jpeg", build_zones(landmarks), LIPS_AND_CHEEKS, "Soft glow", "fresh look", 64, 64
    )

    assert result.success
    assert result.content_type == "image/png"
    assert result.image.endswith(b"https://x/out3.png")
    assert len(replicate.runs) == 3

    lips_inputs, left_cheek_inputs, right_cheek_inputs = (inputs for _, inputs, _ in replicate.runs)
    assert lips_inputs["image"].startswith("data:image/jpeg;base64,")
    assert "nude gloss" in lips_inputs["prompt"] and "blush" not in lips_inputs["prompt"]
    assert "peach blush" in left_cheek_inputs["prompt"]
    lips_output = base64.b64encode(b"\x89PNG\r\n\x1a\nhttps://x/out1.png").decode()
    assert left_cheek_inputs["image"] == f"data:image/png;base64,{lips_output}"
    # The failed left cheek is skipped; the right cheek continues from the lips output.
    assert right_cheek_inputs["image"] == left_cheek_inputs["image"]


async def test_incremental_edit_fails_when_every_zone_fails(photo, landmarks):
    replicate = FakeReplicate(error=ReplicateJobError("down"))
    result = await InpaintingClient(replicate).edit_incremental(
        photo, "image/jpeg", build_zones(landmarks), LIPS_AND_CHEEKS, "Soft glow", "fresh look", 64, 64
    )
    assert not result.success
    assert result.failure_kind == FailureKind.EDIT_SERVICE_FAILED
    assert len(replicate.runs) == 3


async def test_incremental_edit_without_matching_zones(photo, landmarks):
    no_lips = [z for z in build_zones(landmarks) if z.id != ZoneId.LIPS]
    lips_only = LIPS_AND_CHEEKS[:1]
    replicate = FakeReplicate()
    result = await InpaintingClient(replicate).edit_incremental(
        photo, "image/jpeg", no_lips, lips_only, "Soft glow", "fresh look", 64, 64
    )
    assert result.failure_kind == FailureKind.ZONES_EXHAUSTED
    assert replicate.runs == []
