"""Relay finished run artifacts back into the originating conversation."""

from __future__ import annotations

import asyncio
import os
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Sequence

import httpx
import structlog

from .errors import AgentError, TransportError
from .messages import output_display_name
from .models import ConversationRef, OutputFile
from .transport import DEFAULT_TRANSPORT_TIMEOUT, Transport, bounded

log = structlog.get_logger(__name__)

DEFAULT_CONCURRENCY = 2
DEFAULT_DOWNLOAD_TIMEOUT = 300.0


@dataclass
class RelayReport:
    """Outcome of relaying the outputs of one run."""

    delivered: list[str] = field(default_factory=list)
    failed: list[tuple[str, str]] = field(default_factory=list)

    @property
    def delivered_count(self) -> int:
        return len(self.delivered)

    @property
    def failed_count(self) -> int:
        return len(self.failed)


class ArtifactRelay:
    """Download each output file to a scratch location and re-upload it.

    Files are handled independently under a bounded semaphore; a failure is
    logged and recorded in the :class:`RelayReport` while the remaining files
    continue. Scratch files are always removed.
    """

    def __init__(
        self,
        transport: Transport,
        *,
        http_client: httpx.AsyncClient | None = None,
        concurrency: int = DEFAULT_CONCURRENCY,
        scratch_dir: os.PathLike[str] | str | None = None,
        upload_timeout: float | None = DEFAULT_TRANSPORT_TIMEOUT,
        download_timeout: float = DEFAULT_DOWNLOAD_TIMEOUT,
    ) -> None:
        self._transport = transport
        self._client = http_client or httpx.AsyncClient(
            timeout=download_timeout, follow_redirects=True
        )
        self._owns_client = http_client is None
        self._concurrency = max(1, concurrency)
        self._scratch_dir = Path(scratch_dir) if scratch_dir is not None else None
        self._upload_timeout = upload_timeout

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def relay(
        self,
        job_id: str,
        files: Sequence[OutputFile],
        conversation: ConversationRef,
    ) -> RelayReport:
        report = RelayReport()
        semaphore = asyncio.Semaphore(self._concurrency)

        async def _run(file: OutputFile) -> None:
            async with semaphore:
                await self._relay_one(job_id, file, conversation, report)

        await asyncio.gather(*(_run(file) for file in files))
        log.info(
            "relay.finished",
            job_id=job_id,
            delivered=report.delivered_count,
            failed=report.failed_count,
        )
        return report

    async def _relay_one(
        self,
        job_id: str,
        file: OutputFile,
        conversation: ConversationRef,
        report: RelayReport,
    ) -> None:
        display_name = output_display_name(job_id, file.name)
        path: Path | None = None
        try:
            path = self._scratch_path(display_name)
            await self._download(file.url, path)
            await bounded(
                self._transport.upload_file(conversation, path, display_name),
                timeout=self._upload_timeout,
                operation="file upload",
            )
        except Exception as exc:
            log.error(
                "relay.file_failed",
                job_id=job_id,
                file=display_name,
                url=file.url,
                error=str(exc),
                error_type=type(exc).__name__,
                exc_info=not isinstance(exc, (AgentError, httpx.HTTPError, OSError)),
            )
            report.failed.append((display_name, str(exc)))
        else:
            report.delivered.append(display_name)
        finally:
            if path is not None:
                path.unlink(missing_ok=True)

    def _scratch_path(self, display_name: str) -> Path:
        suffix = Path(display_name).suffix
        fd, name = tempfile.mkstemp(prefix="pzp-", suffix=suffix, dir=self._scratch_dir)
        os.close(fd)
        return Path(name)

    async def _download(self, url: str, path: Path) -> None:
        try:
            async with self._client.stream("GET", url) as response:
                response.raise_for_status()
                with path.open("wb") as sink:
                    async for chunk in response.aiter_bytes():
                        sink.write(chunk)
        except httpx.TimeoutException as exc:
            raise TransportError(f"Timed out downloading {url}.") from exc


__all__ = ["ArtifactRelay", "DEFAULT_CONCURRENCY", "RelayReport"]
