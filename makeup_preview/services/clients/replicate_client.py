# File: makeup_preview/services/clients/replicate_client.py
from __future__ import annotations

import asyncio
import json
import os
from typing import Any

import aiohttp
import structlog

from makeup_preview.data.settings import settings
from makeup_preview.services.utils import http_client

logger = structlog.get_logger(__name__)

MAX_HTTP_RETRIES = 3
TERMINAL_SUCCESS = {"succeeded"}
TERMINAL_FAILURE = {"failed", "canceled"}


class ServiceNotConfiguredError(RuntimeError):
    pass


class ReplicateJobError(Exception):
    pass


class ReplicateTimeoutError(ReplicateJobError):
    pass


class ReplicateAsyncClient:
    """
    Async client for the Replicate predictions API.

    A prediction is submitted once and then polled at a fixed interval for a
    bounded number of polls. Retrying a different request is the caller's
    business; this client only waits for the one it submitted.
    """

    def __init__(
        self,
        api_token: str | None = None,
        base_url: str | None = None,
        concurrency_limit: int | None = None,
    ) -> None:
        secret = settings.api_urls.replicate_api_token.get_secret_value() if settings.api_urls.replicate_api_token else None
        self._api_token = api_token or os.getenv("REPLICATE_API_TOKEN") or secret
        if not self._api_token:
            raise ServiceNotConfiguredError(
                "REPLICATE_API_TOKEN is missing. Set env var or API_URLS__REPLICATE_API_TOKEN."
            )
        self._base_url = (base_url or str(settings.api_urls.replicate)).rstrip("/")
        limit = concurrency_limit or settings.client_concurrency_limit
        self._sem = asyncio.Semaphore(limit)
        logger.info("ReplicateAsyncClient initialized", concurrency=limit)

    @property
    def _headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self._api_token}", "Content-Type": "application/json"}

    async def run(
        self,
        version: str,
        inputs: dict[str, Any],
        *,
        max_polls: int,
        poll_interval_s: float,
        request_timeout_s: float | None = None,
    ) -> dict[str, Any]:
        """
        Submits a prediction and polls until it reaches a terminal state.
        Returns the succeeded prediction payload.
        """
        async with self._sem:
            submit_resp = await self._retry_request(
                "POST", f"{self._base_url}/predictions", json_data={"version": version, "input": inputs}
            )
            prediction_id = submit_resp.get("id")
            if not prediction_id:
                raise ReplicateJobError(f"Invalid submit response: {submit_resp}")

            urls = submit_resp.get("urls") or {}
            get_url = urls.get("get") or f"{self._base_url}/predictions/{prediction_id}"
            cancel_url = urls.get("cancel") or f"{get_url}/cancel"
            logger.info("replicate.submit.ok", prediction_id=prediction_id, version=version[:12])

            try:
                return await asyncio.wait_for(
                    self._poll_until_done(get_url, max_polls=max_polls, poll_interval_s=poll_interval_s),
                    timeout=request_timeout_s,
                )
            except asyncio.TimeoutError:
                try:
                    await self._retry_request("POST", cancel_url)
                    logger.warning("replicate.prediction.cancelled", prediction_id=prediction_id)
                except Exception:
                    logger.exception("replicate.prediction.cancel.failed", prediction_id=prediction_id)
                raise ReplicateTimeoutError(f"Prediction timed out (id={prediction_id})")

    async def _poll_until_done(self, get_url: str, *, max_polls: int, poll_interval_s: float) -> dict[str, Any]:
        for poll in range(1, max_polls + 1):
            await asyncio.sleep(poll_interval_s)
            try:
                prediction = await self._retry_request("GET", get_url)
            except aiohttp.ClientResponseError as e:
                logger.warning("replicate.poll.failed", poll=poll, status=e.status)
                continue

            state = prediction.get("status")
            logger.debug("replicate.status", state=state, poll=poll)

            if state in TERMINAL_SUCCESS:
                return prediction
            if state in TERMINAL_FAILURE:
                raise ReplicateJobError(f"Prediction ended with state={state}: {prediction.get('error')}")

        raise ReplicateTimeoutError(f"Prediction did not finish after {max_polls} polls")

    async def download(self, url: str) -> tuple[bytes, str | None]:
        return await self._retry_request("GET", url, headers={}, response_type="bytes")

    async def _retry_request(
        self,
        method: str,
        url: str,
        headers: dict | None = None,
        json_data: dict | None = None,
        response_type: str = "json",
    ) -> Any:
        session = await http_client.session()
        request_headers = self._headers if headers is None else headers
        for i in range(MAX_HTTP_RETRIES + 1):
            try:
                async with session.request(method, url, headers=request_headers, json=json_data) as resp:
                    resp.raise_for_status()

                    if response_type == "bytes":
                        return await resp.read(), resp.headers.get("Content-Type")

                    text = await resp.text()
                    return json.loads(text) if text else {}
            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                if i >= MAX_HTTP_RETRIES:
                    logger.error("HTTP request failed after all retries", method=method, url=url, error=str(e))
                    raise
                await asyncio.sleep(0.3 * (2 ** i))
        raise AssertionError("Unreachable")

    @staticmethod
    def extract_first_output_url(prediction: dict[str, Any]) -> str | None:
        output = prediction.get("output")
        if isinstance(output, list):
            output = output[0] if output else None
        if isinstance(output, str) and output:
            return output
        if isinstance(output, dict):
            return output.get("url") or output.get("image")
        return None
