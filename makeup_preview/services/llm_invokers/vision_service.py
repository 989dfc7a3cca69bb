# File: makeup_preview/services/llm_invokers/vision_service.py
import asyncio
import json
import re
import time
from typing import Any, TypeVar

import openai
import structlog
from pydantic import BaseModel, ValidationError

from makeup_preview.data.settings import settings
from makeup_preview.services.clients import factory as ai_client_factory
from makeup_preview.services.utils.image_io import to_data_url

logger = structlog.get_logger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)

_FENCE_OPEN_RE = re.compile(r"^```(?:json)?\s*\n?")
_FENCE_CLOSE_RE = re.compile(r"\n?\s*```\s*$")
_OBJECT_RE = re.compile(r"\{[\s\S]*\}")


class VisionUnavailableError(RuntimeError):
    pass


def extract_json_object(content: str) -> dict[str, Any]:
    """
    Parses a JSON object out of a model reply, tolerating markdown code
    fences and leading/trailing chatter.
    """
    text = _FENCE_OPEN_RE.sub("", content.strip())
    text = _FENCE_CLOSE_RE.sub("", text).strip()
    if match := _OBJECT_RE.search(text):
        text = match.group(0)
    data = json.loads(text)
    if not isinstance(data, dict):
        raise json.JSONDecodeError("Expected a JSON object", text, 0)
    return data


class VisionService:
    """
    Sends one or more images plus an instruction to a vision-capable model and
    validates the JSON reply against a pydantic model.
    """

    def __init__(self, client: Any | None = None, model: str | None = None) -> None:
        if client is None:
            configured = ai_client_factory.get_vision_client_and_model()
            client, default_model = configured if configured else (None, None)
            model = model or default_model
        self.client = client
        self.model = model or settings.vision.model

    @property
    def available(self) -> bool:
        return self.client is not None

    async def _call_model(self, messages: list[dict[str, Any]]) -> str:
        """Calls the model, retrying transport errors with a linear backoff."""
        log = logger.bind(model=self.model)
        max_retries = settings.vision.max_retries
        backoff_base = 1.5

        for attempt in range(1, max_retries + 1):
            try:
                started = time.monotonic()
                response = await self.client.chat.completions.create(
                    model=self.model,
                    messages=messages,
                    max_tokens=settings.vision.max_tokens,
                    temperature=settings.vision.temperature,
                    response_format={"type": "json_object"},
                )
                duration_ms = int((time.monotonic() - started) * 1000)
                content = response.choices[0].message.content if response.choices else None
                log.info("Received vision response", duration_ms=duration_ms, attempt=attempt)
                if not content:
                    raise ValueError("Vision model returned an empty response.")
                return content
            except (asyncio.TimeoutError, openai.APIConnectionError, openai.RateLimitError) as e:
                if attempt < max_retries:
                    await asyncio.sleep(backoff_base * attempt)
                    continue
                log.error("Vision call failed after maximum retries.", error=str(e))
                raise
        raise RuntimeError("Exhausted all retries for vision call.")

    async def analyze(
        self,
        prompt: str,
        images: list[tuple[bytes, str]],
        output_model: type[ModelT],
    ) -> ModelT:
        """
        Asks the model to answer `prompt` about `images` with a JSON object that
        follows `output_model`'s schema.

        Raises VisionUnavailableError when no model is configured and ValueError
        when the reply cannot be validated.
        """
        if not self.available:
            raise VisionUnavailableError("No vision model configured.")

        schema = json.dumps(output_model.model_json_schema(), indent=2)
        content: list[dict[str, Any]] = [
            {
                "type": "text",
                "text": f"{prompt}\n\nReturn ONLY a JSON object that follows this schema:\n```json\n{schema}\n```",
            }
        ]
        for image_bytes, mime_type in images:
            content.append({"type": "image_url", "image_url": {"url": to_data_url(image_bytes, mime_type)}})

        raw = await self._call_model([{"role": "user", "content": content}])
        try:
            return output_model.model_validate(extract_json_object(raw))
        except (json.JSONDecodeError, ValidationError) as e:
            logger.error("Vision model returned malformed JSON.", error=str(e), response=raw[:500])
            raise ValueError("Failed to parse a valid structured response from the vision model.") from e
