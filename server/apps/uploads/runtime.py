"""Event loop hosting the reconciliation pipeline.

Django serves hooks from WSGI worker threads, while reconciliations and
the orphan reaper are long-lived asyncio tasks. They run on one event
loop owned by a dedicated thread; hook views hand events over to it with
:meth:`PipelineRunner.submit_completion`.
"""

import asyncio
import contextlib
import logging
import threading
from collections.abc import Mapping
from datetime import timedelta
from pathlib import Path
from typing import final

from django.conf import settings

from server.apps.uploads.infrastructure.staging import StagingStore
from server.apps.uploads.logic.concatenator import PartConcatenator
from server.apps.uploads.logic.part_tracker import PartTracker
from server.apps.uploads.logic.pipeline import UploadPipeline
from server.apps.uploads.logic.publisher import SingleFilePublisher
from server.apps.uploads.logic.reaper import OrphanReaper

logger = logging.getLogger(__name__)

_runner_lock = threading.Lock()
_runner: 'PipelineRunner | None' = None


def get_storage_root() -> Path:
    """Get the root of the user-visible volume.

    Returns:
        Storage root from settings or ``./uploads``.
    """
    return Path(getattr(settings, 'UPLOAD_STORAGE_ROOT', 'uploads'))


def get_staging_root() -> Path:
    """Get the directory where the transfer engine stages sessions.

    Returns:
        Staging directory inside the storage root.
    """
    staging_dir = getattr(settings, 'UPLOAD_STAGING_DIR', '.staging')
    return get_storage_root() / staging_dir


def get_part_timeout() -> timedelta:
    """Get the age after which an incomplete split upload is reaped.

    Returns:
        Timeout from settings or default of 1 hour.
    """
    return timedelta(seconds=getattr(settings, 'UPLOAD_PART_TIMEOUT', 3600))


def get_reaper_interval() -> int:
    """Get the number of seconds between two orphan sweeps.

    Returns:
        Interval from settings or default of 900 (15 min).
    """
    return getattr(settings, 'UPLOAD_REAPER_INTERVAL', 900)


def build_staging_store() -> StagingStore:
    """Create the staging store configured in settings."""
    return StagingStore(
        get_staging_root(),
        sidecar_suffix=getattr(settings, 'UPLOAD_SIDECAR_SUFFIX', '.json'),
    )


def build_pipeline(
    tracker: PartTracker | None = None,
) -> tuple[UploadPipeline, OrphanReaper]:
    """Wire the pipeline and its reaper from settings.

    Args:
        tracker: Part tracker to share, a new one by default.

    Returns:
        Pipeline and the reaper sweeping its tracker.
    """
    storage_root = get_storage_root()
    staging = build_staging_store()
    tracker = tracker or PartTracker()

    publisher = SingleFilePublisher(
        storage_root,
        staging,
        flush_poll_interval=getattr(
            settings,
            'UPLOAD_FLUSH_POLL_INTERVAL',
            0.25,
        ),
        flush_poll_attempts=getattr(settings, 'UPLOAD_FLUSH_POLL_ATTEMPTS', 8),
    )
    concatenator = PartConcatenator(
        staging,
        chunk_size=getattr(
            settings,
            'UPLOAD_COPY_CHUNK_SIZE',
            32 * 1024 * 1024,
        ),
    )
    pipeline = UploadPipeline(storage_root, tracker, publisher, concatenator)
    reaper = OrphanReaper(
        tracker,
        staging,
        timeout=get_part_timeout(),
        interval=get_reaper_interval(),
    )
    return pipeline, reaper


@final
class PipelineRunner:
    """Runs the pipeline and the orphan reaper on a background event loop."""

    def __init__(self, pipeline: UploadPipeline, reaper: OrphanReaper) -> None:
        """Initialize the runner without starting it.

        Args:
            pipeline: Pipeline receiving completed sessions.
            reaper: Reaper sweeping the pipeline's tracker.
        """
        self._pipeline = pipeline
        self._reaper = reaper
        self._loop: asyncio.AbstractEventLoop | None = None
        self._thread: threading.Thread | None = None
        self._reaper_task: asyncio.Task[None] | None = None
        self._started = threading.Event()

    @property
    def pipeline(self) -> UploadPipeline:
        """Get the hosted pipeline."""
        return self._pipeline

    @property
    def is_running(self) -> bool:
        """Whether the event loop thread is alive."""
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        """Start the event loop thread and the orphan reaper."""
        if self.is_running:
            return

        loop = asyncio.new_event_loop()
        self._loop = loop
        self._started.clear()
        self._thread = threading.Thread(
            target=self._run_loop,
            args=(loop,),
            name='upload-pipeline',
            daemon=True,
        )
        self._thread.start()
        self._started.wait()
        logger.info('Upload pipeline started')

    def submit_completion(
        self,
        session_id: str,
        raw_metadata: Mapping[str, str],
    ) -> None:
        """Hand a completed session over to the pipeline.

        Safe to call from any thread; returns immediately.

        Args:
            session_id: Completed session.
            raw_metadata: Metadata map the client attached to the session.

        Raises:
            RuntimeError: If the runner is not started.
        """
        if self._loop is None or not self.is_running:
            raise RuntimeError('Upload pipeline is not running')

        self._loop.call_soon_threadsafe(
            self._pipeline.spawn_completion,
            session_id,
            dict(raw_metadata),
        )

    def stop(self, timeout: float | None = None) -> None:
        """Finish running reconciliations, then stop the event loop.

        Args:
            timeout: Seconds to wait for running reconciliations.
        """
        loop = self._loop
        if loop is None or self._thread is None or not self.is_running:
            return

        future = asyncio.run_coroutine_threadsafe(self._shutdown(), loop)
        try:
            future.result(timeout)
        except TimeoutError:
            logger.warning(
                'Stopping with %d reconciliations still running',
                len(self._pipeline.in_flight),
            )
        loop.call_soon_threadsafe(loop.stop)
        self._thread.join()
        loop.close()
        self._loop = None
        self._thread = None
        logger.info('Upload pipeline stopped')

    def _run_loop(self, loop: asyncio.AbstractEventLoop) -> None:
        asyncio.set_event_loop(loop)
        self._reaper_task = loop.create_task(
            self._reaper.run_periodically(),
            name='orphan-reaper',
        )
        loop.call_soon(self._started.set)
        loop.run_forever()

    async def _shutdown(self) -> None:
        if self._reaper_task is not None:
            self._reaper_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._reaper_task
        await self._pipeline.drain()


def get_runner() -> PipelineRunner:
    """Get the process-wide runner, starting it on first use.

    Returns:
        Running PipelineRunner built from settings.
    """
    global _runner  # noqa: PLW0603, WPS420
    with _runner_lock:
        if _runner is None:
            pipeline, reaper = build_pipeline()
            _runner = PipelineRunner(pipeline, reaper)
        if not _runner.is_running:
            _runner.start()
        return _runner


def shutdown_runner(timeout: float | None = None) -> None:
    """Stop the process-wide runner if it was started.

    Args:
        timeout: Seconds to wait for running reconciliations.
    """
    global _runner  # noqa: PLW0603, WPS420
    with _runner_lock:
        if _runner is not None:
            _runner.stop(timeout)
            _runner = None
