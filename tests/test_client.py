from __future__ import annotations

from collections.abc import Callable

import httpx
import pytest

from conftest import FakeJobService
from pzp_agent.client import JobClient
from pzp_agent.errors import RemoteServiceError, TransportError
from pzp_agent.models import JobAddress


@pytest.mark.anyio("asyncio")
async def test_requests_carry_namespace_scoped_bearer_token(
    job_service: FakeJobService, make_client: Callable[..., JobClient]
) -> None:
    job_service.add_run("run-1")

    async with make_client() as client:
        page = await client.list_runs("alice", page=1, limit=3)
        await client.get_run("run-1", "alice", namespace="other")

    first, second = job_service.requests
    assert first.headers["Authorization"] == "Bearer ns/s3cret"
    assert first.url.params["user"] == "alice"
    assert second.headers["Authorization"] == "Bearer other/s3cret"
    assert page.total == 1
    assert page.runs[0].id == "run-1"


@pytest.mark.anyio("asyncio")
async def test_create_run_returns_submission_address(
    job_service: FakeJobService, make_client: Callable[..., JobClient]
) -> None:
    async with make_client() as client:
        submission = await client.create_run({"input": {"chartFiles": ["u"], "respack": None}})

    assert submission.run_id == "run-1"
    assert submission.queue_size == 2
    assert submission.queue_time == 75
    assert submission.address_for("alice") == JobAddress("ns", "alice", "run-1")
    assert job_service.created == [{"input": {"chartFiles": ["u"], "respack": None}}]


@pytest.mark.anyio("asyncio")
async def test_latest_run_is_none_without_history(
    make_client: Callable[..., JobClient],
) -> None:
    async with make_client() as client:
        assert await client.latest_run("alice") is None


@pytest.mark.anyio("asyncio")
async def test_error_status_raises_remote_service_error(
    job_service: FakeJobService, make_client: Callable[..., JobClient]
) -> None:
    job_service.fail_with = 503

    async with make_client() as client:
        with pytest.raises(RemoteServiceError) as excinfo:
            await client.list_runs("alice")

    assert excinfo.value.status_code == 503


@pytest.mark.anyio("asyncio")
async def test_unexpected_body_raises_remote_service_error() -> None:
    http_client = httpx.AsyncClient(
        base_url="https://agent.example",
        transport=httpx.MockTransport(lambda request: httpx.Response(200, text="<html>")),
    )
    client = JobClient("https://agent.example", "s3cret", http_client=http_client)

    with pytest.raises(RemoteServiceError):
        await client.get_progress("run-1", "alice")
    await http_client.aclose()


@pytest.mark.anyio("asyncio")
async def test_timeouts_surface_as_transport_errors() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("slow", request=request)

    http_client = httpx.AsyncClient(
        base_url="https://agent.example", transport=httpx.MockTransport(handler)
    )
    client = JobClient("https://agent.example", "s3cret", http_client=http_client)

    with pytest.raises(TransportError) as excinfo:
        await client.cancel_run("run-1", "alice")

    assert excinfo.value.retryable is True
    await http_client.aclose()
