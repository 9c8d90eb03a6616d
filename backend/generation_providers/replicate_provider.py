"""
Replicate Generation Provider

Runs photo restoration and video animation as Replicate predictions:
- POST /models/{owner}/{name}/predictions to create
- GET  /predictions/{id} to poll
- POST /predictions/{id}/cancel to cancel

Network errors, 5xx and 429 responses raise ProviderUnavailableError so
the tracker keeps polling; other 4xx responses raise ProviderRequestError.
"""

from typing import Optional, Dict, Any

import httpx

from models.job_record import JobKind
from utils.logger import logger

from .base import (
    GenerationProvider,
    ProviderConfigError,
    ProviderJob,
    ProviderRequestError,
    ProviderStatus,
    ProviderUnavailableError,
)

DEFAULT_PHOTO_PROMPT = (
    "repair and restore this damaged photo, fix tears, scratches, stains, and "
    "imperfections while preserving all original details and facial features"
)
DEFAULT_VIDEO_PROMPT = "bring this photo to life with subtle, natural movement"
VIDEO_NEGATIVE_PROMPT = "blurry, distorted, low quality, static, frozen"

_STATUS_MAP = {
    "starting": ProviderStatus.STARTING,
    "processing": ProviderStatus.PROCESSING,
    "succeeded": ProviderStatus.SUCCEEDED,
    "failed": ProviderStatus.FAILED,
    "canceled": ProviderStatus.CANCELED,
}


class ReplicateJobProvider(GenerationProvider):
    """Replicate HTTP API client"""

    def __init__(
        self,
        api_token: Optional[str] = None,
        api_base: str = "https://api.replicate.com/v1",
        photo_model: str = "flux-kontext-apps/restore-image",
        video_model: str = "kwaivgi/kling-v2.1",
        timeout: float = 30.0,
        client: Optional[httpx.AsyncClient] = None,
        config: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(config)
        if not api_token and client is None:
            raise ProviderConfigError("REPLICATE_API_TOKEN is not configured")

        self.api_base = api_base.rstrip("/")
        self.models = {
            JobKind.PHOTO: photo_model,
            JobKind.VIDEO: video_model,
        }
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(timeout, connect=10.0),
            headers={
                "Authorization": f"Bearer {api_token}",
                "Content-Type": "application/json",
            },
        )

    @property
    def name(self) -> str:
        return "replicate"

    def _build_input(self, kind: JobKind, input_ref: str, prompt: Optional[str]) -> Dict[str, Any]:
        if kind == JobKind.VIDEO:
            return {
                "prompt": prompt or DEFAULT_VIDEO_PROMPT,
                "start_image": input_ref,
                "mode": "standard",
                "duration": 5,
                "negative_prompt": VIDEO_NEGATIVE_PROMPT,
            }
        return {
            "prompt": prompt or DEFAULT_PHOTO_PROMPT,
            "input_image": input_ref,
            "output_format": "png",
        }

    async def _request(self, method: str, path: str, json: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        url = f"{self.api_base}{path}"
        try:
            response = await self._client.request(method, url, json=json)
        except httpx.TimeoutException as e:
            raise ProviderUnavailableError(f"Replicate timeout: {e}") from e
        except httpx.HTTPError as e:
            raise ProviderUnavailableError(f"Replicate network error: {e}") from e

        if response.status_code == 429 or response.status_code >= 500:
            logger.warning(f"Replicate {method} {path} -> {response.status_code}")
            raise ProviderUnavailableError(
                f"Replicate returned {response.status_code}",
                status_code=response.status_code,
            )
        if response.status_code >= 400:
            raise ProviderRequestError(
                f"Replicate rejected {method} {path}: {response.status_code} {response.text}",
                status_code=response.status_code,
            )
        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError as e:
            raise ProviderUnavailableError(f"Replicate returned an unreadable body for {method} {path}: {e}") from e

    @staticmethod
    def _parse_output(output: Any) -> Optional[str]:
        """Predictions return a URL or a list of URLs"""
        if isinstance(output, list):
            return output[0] if output else None
        return output

    def _to_job(self, data: Dict[str, Any]) -> ProviderJob:
        if not isinstance(data, dict) or not data.get("id"):
            raise ProviderUnavailableError(f"Replicate response has no prediction id: {str(data)[:200]}")
        status = _STATUS_MAP.get(data.get("status", ""), ProviderStatus.PROCESSING)
        error_text = data.get("error")
        if status == ProviderStatus.CANCELED and not error_text:
            error_text = "canceled"
        return ProviderJob(
            job_id=data["id"],
            status=status,
            result_ref=self._parse_output(data.get("output")) if status == ProviderStatus.SUCCEEDED else None,
            error_text=str(error_text) if error_text else None,
            raw=data,
        )

    async def create(self, kind: JobKind, input_ref: str, prompt: Optional[str] = None) -> ProviderJob:
        kind = JobKind(kind)
        model = self.models[kind]
        data = await self._request(
            "POST",
            f"/models/{model}/predictions",
            json={"input": self._build_input(kind, input_ref, prompt)},
        )
        job = self._to_job(data)
        logger.info(f"Replicate {kind.value} prediction created: {job.job_id} ({model})")
        return job

    async def get(self, job_id: str) -> ProviderJob:
        return self._to_job(await self._request("GET", f"/predictions/{job_id}"))

    async def cancel(self, job_id: str) -> None:
        await self._request("POST", f"/predictions/{job_id}/cancel")
        logger.info(f"Replicate prediction canceled: {job_id}")

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
