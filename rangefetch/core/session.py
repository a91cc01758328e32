"""
Runs one complete download session: handshake, reconciliation, output.
"""

import asyncio
import logging
import os
import time
from contextlib import suppress
from dataclasses import dataclass
from pathlib import Path

import aiofiles
from pathvalidate import sanitize_filename

from rangefetch.api.handshake import perform_handshake
from rangefetch.api.transport import AiohttpTransport
from rangefetch.cli.progress_manager import ProgressManager
from rangefetch.exceptions import OutputError, RangeFetchError
from rangefetch.models.config import FetchConfig
from rangefetch.models.digest import ExpectedDigest
from rangefetch.models.stats import SessionStats
from rangefetch.utils.structured_logger import FetchLogger

from .reconciler import Reconciler

log = logging.getLogger(__name__)

DEFAULT_OUTPUT_NAME = "blob.bin"


@dataclass
class SessionResult:
    """Outcome of a successful session."""

    url: str
    total_length: int
    digest: ExpectedDigest
    attempts: int
    duration_s: float
    output_path: Path | None
    stats: SessionStats


def default_output_path(resource_path: str) -> Path:
    """Derives a safe local file name from the last segment of the resource path."""
    name = sanitize_filename(resource_path.rstrip("/").rsplit("/", 1)[-1])
    return Path(name or DEFAULT_OUTPUT_NAME)


def _discard(path: Path) -> None:
    with suppress(OSError):
        os.remove(path)


async def write_blob(blob: bytes, destination: Path) -> None:
    """
    Writes to a temporary sibling first so a partial file never has the final name.

    Raises:
        OutputError: If the directory, the temporary file or the rename fails.
    """
    temp_path = destination.with_name(f".{destination.name}.part")
    try:
        await asyncio.to_thread(destination.parent.mkdir, parents=True, exist_ok=True)
        async with aiofiles.open(temp_path, "wb") as f:
            await f.write(blob)
        await asyncio.to_thread(os.replace, temp_path, destination)
    except OSError as e:
        await asyncio.to_thread(_discard, temp_path)
        raise OutputError(f"Could not save the blob to '{destination}': {e}") from e


class FetchSession:
    """Coordinates the collaborators of one session from a validated config."""

    def __init__(
        self,
        config: FetchConfig,
        *,
        transport: AiohttpTransport | None = None,
        progress_manager: ProgressManager | None = None,
        events: FetchLogger | None = None,
        cancel_event: asyncio.Event | None = None,
    ):
        self.config = config
        self.transport = transport
        self.progress_manager = progress_manager
        self.events = events
        self.cancel_event = cancel_event
        self.stats = SessionStats()
        self.reconciler: Reconciler | None = None

    async def run(
        self,
        expected_digest: ExpectedDigest | None = None,
        output_path: Path | None = None,
    ) -> SessionResult:
        """
        Downloads and verifies the blob, then writes it if ``output_path`` is set.

        Args:
            expected_digest: Overrides the digest announced by the server.
            output_path: Where to save the verified blob; None skips writing.

        Raises:
            RangeFetchError: Any terminal failure of the session.
        """
        start_time = time.monotonic()
        owned_transport = None
        transport = self.transport
        if transport is None:
            transport = owned_transport = AiohttpTransport(self.config)

        try:
            announcement = await perform_handshake(
                transport, self.config, expected_digest
            )
            log.info(
                f"Blob at [cyan]{self.config.url}[/cyan]: "
                f"{announcement.total_length} bytes, expecting {announcement.digest}"
            )
            if self.events:
                self.events.logger.bind(url=self.config.url)
                self.events.session_started(
                    self.config.url,
                    announcement.total_length,
                    str(announcement.digest),
                )
            if self.progress_manager:
                self.progress_manager.initialize_session(
                    self.config.url, announcement.total_length
                )

            self.reconciler = Reconciler(
                self.config,
                transport,
                announcement.total_length,
                announcement.digest,
                stats=self.stats,
                progress_manager=self.progress_manager,
                events=self.events,
                cancel_event=self.cancel_event,
            )
            blob = await self.reconciler.run()

            if output_path is not None:
                await write_blob(blob, output_path)
                log.debug(f"Saved {len(blob)} bytes to {output_path}")
        except RangeFetchError as e:
            if self.events:
                self.events.session_failed(e, self.stats.attempts)
            raise
        finally:
            if owned_transport is not None:
                await owned_transport.close()

        duration = time.monotonic() - start_time
        if self.events:
            self.events.session_completed(
                announcement.total_length,
                self.stats.attempts,
                duration,
                str(announcement.digest),
            )
        return SessionResult(
            url=self.config.url,
            total_length=announcement.total_length,
            digest=announcement.digest,
            attempts=self.stats.attempts,
            duration_s=duration,
            output_path=output_path,
            stats=self.stats,
        )
