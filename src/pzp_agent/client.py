"""Async client for the remote render job service."""

from __future__ import annotations

from typing import Any, Mapping, TypeVar

import httpx
import structlog
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from .errors import RemoteServiceError, TransportError
from .models import RunPage, RunProgress, RunResult, RunSubmission

log = structlog.get_logger(__name__)

DEFAULT_TIMEOUT = 30.0

TModel = TypeVar("TModel", bound=BaseModel)


class JobClient:
    """Typed wrapper around the job service REST endpoints.

    Requests are authenticated with ``Bearer <namespace>/<secret>``. Timeouts
    and connection failures raise :class:`TransportError`; any non-success
    response raises :class:`RemoteServiceError` carrying the status code.
    """

    def __init__(
        self,
        base_url: str,
        secret: str,
        *,
        namespace: str = "",
        timeout: float = DEFAULT_TIMEOUT,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._secret = secret
        self.namespace = namespace
        self._client = http_client or httpx.AsyncClient(
            base_url=base_url.rstrip("/"), timeout=timeout
        )
        self._owns_client = http_client is None

    async def __aenter__(self) -> "JobClient":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    def _headers(self, namespace: str | None) -> dict[str, str]:
        scope = self.namespace if namespace is None else namespace
        return {"Authorization": f"Bearer {scope}/{self._secret}"}

    async def _request(
        self,
        method: str,
        path: str,
        *,
        action: str,
        namespace: str | None = None,
        params: Mapping[str, Any] | None = None,
        json: Any = None,
    ) -> httpx.Response:
        try:
            response = await self._client.request(
                method,
                path,
                params=params,
                json=json,
                headers=self._headers(namespace),
            )
        except httpx.TimeoutException as exc:
            log.warning("client.request.timeout", action=action, path=path)
            raise TransportError(f"Timed out trying to {action}.") from exc
        except httpx.HTTPError as exc:
            log.warning("client.request.failed", action=action, path=path, error=str(exc))
            raise TransportError(f"Failed to {action}: {exc}") from exc

        if response.is_error:
            log.error(
                "client.request.rejected",
                action=action,
                path=path,
                status_code=response.status_code,
            )
            raise RemoteServiceError(
                f"Failed to {action}: {response.reason_phrase or response.status_code}",
                status_code=response.status_code,
            )
        return response

    @staticmethod
    def _parse(response: httpx.Response, model: type[TModel], action: str) -> TModel:
        try:
            return model.model_validate(response.json())
        except (ValueError, PydanticValidationError) as exc:
            raise RemoteServiceError(
                f"Unexpected response while trying to {action}.",
                status_code=response.status_code,
            ) from exc

    async def list_runs(
        self, user: str, page: int = 1, limit: int = 3, *, namespace: str | None = None
    ) -> RunPage:
        action = "fetch runs"
        response = await self._request(
            "GET",
            "/runs",
            action=action,
            namespace=namespace,
            params={"user": user, "page": page, "limit": limit},
        )
        return self._parse(response, RunPage, action)

    async def latest_run(self, user: str, *, namespace: str | None = None) -> RunResult | None:
        """Return the most recent run of ``user`` if there is one."""

        page = await self.list_runs(user, 1, 1, namespace=namespace)
        if page.total == 0 or not page.runs:
            return None
        return page.runs[0]

    async def get_run(
        self, job_id: str, user: str, *, namespace: str | None = None
    ) -> RunResult:
        action = "fetch run"
        response = await self._request(
            "GET",
            f"/runs/{job_id}",
            action=action,
            namespace=namespace,
            params={"user": user},
        )
        return self._parse(response, RunResult, action)

    async def create_run(
        self, payload: Mapping[str, Any], *, namespace: str | None = None
    ) -> RunSubmission:
        action = "create new run"
        response = await self._request(
            "POST", "/runs/new", action=action, namespace=namespace, json=dict(payload)
        )
        submission = self._parse(response, RunSubmission, action)
        log.info(
            "client.run.created",
            run_id=submission.run_id,
            prefix=submission.prefix,
            queue_size=submission.queue_size,
        )
        return submission

    async def get_progress(
        self, job_id: str, user: str, *, namespace: str | None = None
    ) -> RunProgress:
        action = "fetch run progress"
        response = await self._request(
            "GET",
            f"/runs/{job_id}/progress",
            action=action,
            namespace=namespace,
            params={"user": user},
        )
        return self._parse(response, RunProgress, action)

    async def cancel_run(
        self, job_id: str, user: str, *, namespace: str | None = None
    ) -> None:
        await self._request(
            "POST",
            f"/runs/{job_id}/cancel",
            action="cancel run",
            namespace=namespace,
            params={"user": user},
        )
        log.info("client.run.cancel_requested", run_id=job_id, user=user)


__all__ = ["DEFAULT_TIMEOUT", "JobClient"]
