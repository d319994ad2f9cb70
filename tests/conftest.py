"""Shared fixtures for the pzp-agent test-suite."""

from __future__ import annotations

import json
from collections.abc import Callable
from typing import Any

import httpx
import pytest

from pzp_agent.client import JobClient
from pzp_agent.models import ConversationRef
from pzp_agent.transport import LoggingTransport


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
def conversation() -> ConversationRef:
    return ConversationRef(channel_id="channel-1")


@pytest.fixture
def transport() -> LoggingTransport:
    return LoggingTransport(
        file_urls={
            "chart-1": "https://files.example/chart-1.zip",
            "chart-2": "https://files.example/chart-2.pez",
            "pack-1": "https://files.example/respack.zip",
        }
    )


class FakeJobService:
    """In-memory stand-in for the job service behind ``httpx.MockTransport``."""

    def __init__(self, prefix: str = "ns") -> None:
        self.prefix = prefix
        self.runs: list[dict[str, Any]] = []
        self.requests: list[httpx.Request] = []
        self.created: list[dict[str, Any]] = []
        self.progress: dict[str, dict[str, Any]] = {}
        self.fail_with: int | None = None
        self._counter = 0

    def add_run(
        self,
        run_id: str,
        *,
        status: str = "completed",
        completed: bool = True,
        outputs: list[dict[str, str]] | None = None,
    ) -> dict[str, Any]:
        run = {
            "id": run_id,
            "status": status,
            "outputFiles": outputs or [],
            "dateCreated": "2024-05-01T10:00:00Z",
            "dateCompleted": "2024-05-01T10:05:00Z" if completed else None,
        }
        self.runs.insert(0, run)
        return run

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.fail_with is not None:
            return httpx.Response(self.fail_with, json={"message": "unavailable"})

        path = request.url.path
        if request.method == "GET" and path == "/runs":
            page = int(request.url.params.get("page", "1"))
            limit = int(request.url.params.get("limit", "3"))
            start = (page - 1) * limit
            return httpx.Response(
                200,
                json={"runs": self.runs[start : start + limit], "total": len(self.runs)},
            )
        if request.method == "POST" and path == "/runs/new":
            self._counter += 1
            payload = json.loads(request.content)
            self.created.append(payload)
            run_id = f"run-{self._counter}"
            self.add_run(run_id, status="queued", completed=False)
            return httpx.Response(
                200,
                json={
                    "objectId": f"obj-{self._counter}",
                    "runId": run_id,
                    "prefix": self.prefix,
                    "queueSize": 2,
                    "queueTime": 75,
                },
            )
        parts = path.strip("/").split("/")
        if len(parts) >= 2 and parts[0] == "runs":
            run = next((item for item in self.runs if item["id"] == parts[1]), None)
            if run is None:
                return httpx.Response(404, json={"message": "not found"})
            if len(parts) == 2 and request.method == "GET":
                return httpx.Response(200, json=run)
            if parts[2:] == ["progress"]:
                return httpx.Response(
                    200,
                    json=self.progress.get(
                        run["id"], {"status": run["status"], "progress": 0, "eta": 0}
                    ),
                )
            if parts[2:] == ["cancel"] and request.method == "POST":
                run["status"] = "cancelled"
                return httpx.Response(200, json={})
        return httpx.Response(404, json={"message": "unknown route"})


@pytest.fixture
def job_service() -> FakeJobService:
    return FakeJobService()


@pytest.fixture
def make_client(job_service: FakeJobService) -> Callable[..., JobClient]:
    def factory(**kwargs: Any) -> JobClient:
        http_client = httpx.AsyncClient(
            base_url="https://agent.example",
            transport=httpx.MockTransport(job_service.handler),
        )
        return JobClient(
            "https://agent.example",
            "s3cret",
            namespace=kwargs.pop("namespace", "ns"),
            http_client=http_client,
            **kwargs,
        )

    return factory
