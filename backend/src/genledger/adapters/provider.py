"""Inference provider adapter.

The engine talks to the provider through ``submit`` and ``get_status``. Provider
output comes back in several shapes (a URL string, a list, objects carrying a
``url`` or ``href``, or wrapped under ``output``/``images``/``video``/``result``);
it is normalized here into output descriptors so the rest of the engine only
sees plain URL lists.
"""
from dataclasses import dataclass, field
from typing import Any, Callable, Optional, Union

import httpx
import structlog

from genledger.config import settings
from genledger.errors import ProviderError
from genledger.models.job import JobStatus

logger = structlog.get_logger(__name__)

NESTED_OUTPUT_KEYS = ("output", "images", "video", "result")

STATUS_MAP = {
    "starting": JobStatus.STARTING,
    "processing": JobStatus.PROCESSING,
    "succeeded": JobStatus.SUCCEEDED,
    "failed": JobStatus.FAILED,
    "canceled": JobStatus.CANCELED,
    "cancelled": JobStatus.CANCELED,
}


def _is_http_url(value: Any) -> bool:
    return isinstance(value, str) and value.startswith("http")


@dataclass(frozen=True)
class StringUrl:
    value: str

    def resolve(self) -> Optional[str]:
        return self.value if _is_http_url(self.value) else None


@dataclass(frozen=True)
class ObjectWithUrl:
    url: Union[str, Callable[[], Any]]

    def resolve(self) -> Optional[str]:
        value = self.url() if callable(self.url) else self.url
        value = str(value) if value is not None else None
        return value if _is_http_url(value) else None


@dataclass(frozen=True)
class ObjectWithHref:
    href: str

    def resolve(self) -> Optional[str]:
        return self.href if _is_http_url(self.href) else None


OutputDescriptor = Union[StringUrl, ObjectWithUrl, ObjectWithHref]


def parse_output(raw: Any) -> list[OutputDescriptor]:
    """
    Normalize raw provider output into descriptors.

    Args:
        raw: ``output`` field of a provider prediction

    Returns:
        Descriptors in provider order (may be empty)
    """
    if raw is None:
        return []
    if isinstance(raw, str):
        return [StringUrl(raw)]
    if isinstance(raw, (list, tuple)):
        descriptors: list[OutputDescriptor] = []
        for item in raw:
            descriptors.extend(parse_output(item))
        return descriptors
    if isinstance(raw, dict):
        if "url" in raw:
            return [ObjectWithUrl(raw["url"])]
        if "href" in raw:
            return [ObjectWithHref(raw["href"])]
        for key in NESTED_OUTPUT_KEYS:
            if key in raw:
                return parse_output(raw[key])
        return []
    url_attr = getattr(raw, "url", None)
    if url_attr is not None:
        return [ObjectWithUrl(url_attr)]
    return []


def output_urls(descriptors: list[OutputDescriptor]) -> list[str]:
    """Resolve descriptors to usable URLs, dropping anything that is not http(s)."""
    urls = []
    for descriptor in descriptors:
        url = descriptor.resolve()
        if url:
            urls.append(url)
    return urls


@dataclass
class ProviderStatus:
    """Provider-reported state of a job, in the engine's vocabulary."""

    status: JobStatus
    output_urls: list[str] = field(default_factory=list)
    error: Optional[str] = None
    provider_status: Optional[str] = None


class ReplicateProvider:
    """Adapter for the Replicate predictions HTTP API."""

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        api_token: Optional[str] = None,
        base_url: Optional[str] = None,
    ):
        """Initialize provider adapter with an HTTP client and credentials."""
        self.api_token = api_token if api_token is not None else settings.provider_api_token
        self.base_url = (base_url or settings.provider_api_base_url).rstrip("/")
        self.client = client or httpx.AsyncClient(timeout=settings.provider_timeout_seconds)

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_token}",
            "Content-Type": "application/json",
        }

    async def _request(self, method: str, path: str, json: Optional[dict] = None) -> dict[str, Any]:
        try:
            response = await self.client.request(method, f"{self.base_url}{path}", json=json, headers=self._headers())
        except httpx.TimeoutException as e:
            raise ProviderError(f"Provider request timed out: {e}") from e
        except httpx.HTTPError as e:
            raise ProviderError(f"Provider request failed: {e}") from e

        if response.status_code >= 400:
            detail = response.text[:500]
            raise ProviderError(
                f"Provider returned {response.status_code}: {detail}",
                status_code=response.status_code,
            )
        try:
            payload = response.json()
        except ValueError as e:
            raise ProviderError(
                f"Provider returned a non-JSON body: {response.text[:200]}",
                status_code=response.status_code,
            ) from e
        if not isinstance(payload, dict):
            raise ProviderError("Provider returned an unexpected payload", status_code=response.status_code)
        return payload

    async def submit(self, model: str, input: dict[str, Any], webhook_url: Optional[str] = None) -> str:
        """
        Dispatch a prediction.

        Args:
            model: ``owner/name`` or ``owner/name:version``
            input: Model input
            webhook_url: Callback for completion notifications

        Returns:
            Provider prediction id

        Raises:
            ProviderError: If the provider rejects or cannot be reached
        """
        body: dict[str, Any] = {"input": input}
        if webhook_url:
            body["webhook"] = webhook_url
            body["webhook_events_filter"] = ["completed"]

        if ":" in model:
            body["version"] = model.split(":", 1)[1]
            payload = await self._request("POST", "/v1/predictions", json=body)
        else:
            payload = await self._request("POST", f"/v1/models/{model}/predictions", json=body)

        prediction_id = payload.get("id")
        if not prediction_id:
            raise ProviderError("Provider response did not include a prediction id")

        logger.info("provider_prediction_created", provider_ref=prediction_id, model=model)
        return prediction_id

    async def get_status(self, provider_ref: str) -> ProviderStatus:
        """
        Fetch the current state of a prediction.

        Raises:
            ProviderError: If the provider cannot be queried
        """
        payload = await self._request("GET", f"/v1/predictions/{provider_ref}")
        return self.parse_prediction(payload)

    @staticmethod
    def parse_prediction(payload: dict[str, Any]) -> ProviderStatus:
        """Map a prediction payload (polled or pushed) onto the job vocabulary."""
        raw_status = str(payload.get("status") or "").lower()
        status = STATUS_MAP.get(raw_status)
        if status is None:
            logger.warning("provider_status_unrecognized", provider_status=raw_status, provider_ref=payload.get("id"))
            status = JobStatus.PROCESSING

        error = payload.get("error")
        return ProviderStatus(
            status=status,
            output_urls=output_urls(parse_output(payload.get("output"))),
            error=str(error) if error else None,
            provider_status=raw_status,
        )

    async def close(self) -> None:
        await self.client.aclose()
