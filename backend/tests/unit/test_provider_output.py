"""Unit tests for provider output normalization and the provider adapter."""
import httpx
import pytest

from genledger.adapters.provider import (
    ObjectWithHref,
    ObjectWithUrl,
    ReplicateProvider,
    StringUrl,
    output_urls,
    parse_output,
)
from genledger.errors import ProviderError
from genledger.models.job import JobStatus

URL_A = "https://replicate.delivery/pbxt/a.png"
URL_B = "https://replicate.delivery/pbxt/b.png"


class FileOutput:
    """Mimics SDK file objects exposing ``url`` as a method."""

    def __init__(self, url: str):
        self._url = url

    def url(self) -> str:
        return self._url


def test_string_output() -> None:
    assert parse_output(URL_A) == [StringUrl(URL_A)]
    assert output_urls(parse_output(URL_A)) == [URL_A]


def test_list_output_keeps_order() -> None:
    assert output_urls(parse_output([URL_A, URL_B])) == [URL_A, URL_B]


def test_url_and_href_objects() -> None:
    descriptors = parse_output([{"url": URL_A}, {"href": URL_B}])

    assert descriptors == [ObjectWithUrl(URL_A), ObjectWithHref(URL_B)]
    assert output_urls(descriptors) == [URL_A, URL_B]


@pytest.mark.parametrize("key", ["output", "images", "video", "result"])
def test_nested_output(key: str) -> None:
    assert output_urls(parse_output({key: [URL_A, {"url": URL_B}]})) == [URL_A, URL_B]


def test_object_with_callable_url() -> None:
    assert output_urls(parse_output([FileOutput(URL_A), FileOutput(URL_B)])) == [URL_A, URL_B]


def test_non_http_values_are_dropped() -> None:
    raw = ["data:image/png;base64,AAAA", {"url": None}, {"unrelated": 1}, 42, URL_A]

    assert output_urls(parse_output(raw)) == [URL_A]


def test_empty_output() -> None:
    assert parse_output(None) == []
    assert output_urls(parse_output([])) == []


def test_parse_prediction_maps_statuses() -> None:
    succeeded = ReplicateProvider.parse_prediction({"id": "p1", "status": "succeeded", "output": [URL_A]})
    assert succeeded.status == JobStatus.SUCCEEDED
    assert succeeded.output_urls == [URL_A]

    failed = ReplicateProvider.parse_prediction({"id": "p1", "status": "failed", "error": "NSFW content detected"})
    assert failed.status == JobStatus.FAILED
    assert failed.error == "NSFW content detected"

    assert ReplicateProvider.parse_prediction({"status": "cancelled"}).status == JobStatus.CANCELED
    assert ReplicateProvider.parse_prediction({"status": "starting"}).status == JobStatus.STARTING


def test_unknown_status_is_treated_as_in_progress() -> None:
    result = ReplicateProvider.parse_prediction({"id": "p1", "status": "queued"})

    assert result.status == JobStatus.PROCESSING
    assert result.provider_status == "queued"


@pytest.mark.asyncio
async def test_submit_official_model(provider: ReplicateProvider, provider_api) -> None:
    ref = await provider.submit(
        "black-forest-labs/flux-schnell",
        {"prompt": "a lighthouse at dusk"},
        "https://app.example.com/webhooks/provider",
    )

    assert ref == "pred_1"
    created = provider_api.created[0]
    assert created["path"] == "/v1/models/black-forest-labs/flux-schnell/predictions"
    assert created["body"]["input"] == {"prompt": "a lighthouse at dusk"}
    assert created["body"]["webhook"] == "https://app.example.com/webhooks/provider"
    assert created["body"]["webhook_events_filter"] == ["completed"]


@pytest.mark.asyncio
async def test_submit_versioned_model(provider: ReplicateProvider, provider_api) -> None:
    await provider.submit("stability-ai/sdxl:39ed52f2", {"prompt": "a fox"})

    created = provider_api.created[0]
    assert created["path"] == "/v1/predictions"
    assert created["body"]["version"] == "39ed52f2"
    assert "webhook" not in created["body"]


@pytest.mark.asyncio
async def test_submit_rejection_raises_provider_error(provider: ReplicateProvider, provider_api) -> None:
    provider_api.fail_create = True

    with pytest.raises(ProviderError) as exc_info:
        await provider.submit("black-forest-labs/flux-schnell", {"prompt": ""})

    assert exc_info.value.status_code == 422


@pytest.mark.asyncio
async def test_get_status(provider: ReplicateProvider, provider_api) -> None:
    provider_api.set_prediction("pred_9", "succeeded", output={"images": [{"url": URL_A}]})

    status = await provider.get_status("pred_9")

    assert status.status == JobStatus.SUCCEEDED
    assert status.output_urls == [URL_A]


@pytest.mark.asyncio
async def test_network_failure_raises_provider_error() -> None:
    def refuse(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    async with httpx.AsyncClient(transport=httpx.MockTransport(refuse)) as client:
        provider = ReplicateProvider(client=client, api_token="t", base_url="https://api.replicate.test")
        with pytest.raises(ProviderError) as exc_info:
            await provider.get_status("pred_1")

    assert exc_info.value.status_code is None


@pytest.mark.asyncio
async def test_non_json_success_body_raises_provider_error(provider: ReplicateProvider, provider_api) -> None:
    provider_api.html_responses = True

    with pytest.raises(ProviderError) as exc_info:
        await provider.get_status("pred_1")

    assert exc_info.value.status_code == 200
    assert "non-JSON" in str(exc_info.value)


@pytest.mark.asyncio
async def test_non_object_json_body_raises_provider_error() -> None:
    def reply_with_list(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=["pred_1"])

    async with httpx.AsyncClient(transport=httpx.MockTransport(reply_with_list)) as client:
        provider = ReplicateProvider(client=client, api_token="t", base_url="https://api.replicate.test")
        with pytest.raises(ProviderError):
            await provider.submit("black-forest-labs/flux-schnell", {"prompt": "a fox"})
