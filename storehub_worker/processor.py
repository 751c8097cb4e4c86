"""
Build job processor with a polling claim loop.

Each processor instance polls the job store, atomically claims one queued
job at a time and drives it through fetch -> build -> rewrite -> publish ->
finalize. Several processors may share one store; the atomic claim is the
only coordination between them.
"""

import asyncio
import logging
import shutil
from datetime import UTC
from pathlib import Path

from storehub_common.errors import JobError, PublishError
from storehub_common.models import (
    BuildArtifact,
    BuildJob,
    BuildStatus,
    version_state_for,
)
from storehub_common.repository import JobRepository
from storehub_storage.publisher import INDEX_FILE, ArtifactPublisher
from storehub_storage.rewriter import annotate_index_html, rewrite_index_file

from .build_runner import BuildRunner
from .joblog import JobLog, LogFn
from .source import SourceFetcher

logger = logging.getLogger(__name__)


class JobProcessor:
    """
    Polls for queued build jobs and processes them one at a time.

    The loop:
    1. Claims the next queued job (atomic queued -> running transition)
    2. Runs it to completion; stages never overlap
    3. Records success or failure on the job and its component version
    4. Waits one poll interval and repeats

    Stopping the processor ends the loop after the in-flight job, if any,
    has finished; builds are never interrupted.
    """

    def __init__(
        self,
        repository: JobRepository,
        fetcher: SourceFetcher,
        builder: BuildRunner,
        publisher: ArtifactPublisher,
        scratch_dir: str | Path,
        poll_interval: float = 1.0,
        heartbeat_interval: float = 30.0,
    ):
        """
        Initialize the job processor.

        Args:
            repository: Job store the processor claims from and reports to
            fetcher: Source fetcher producing working trees
            builder: Build runner producing output directories
            publisher: Artifact publisher uploading output directories
            scratch_dir: Directory holding per-job working directories
            poll_interval: Seconds between claim attempts
            heartbeat_interval: Seconds between queued-count heartbeats
        """
        self.repository = repository
        self.fetcher = fetcher
        self.builder = builder
        self.publisher = publisher
        self.scratch_dir = Path(scratch_dir)
        self.poll_interval = poll_interval
        self.heartbeat_interval = heartbeat_interval

        self._running = False
        self._stop_event = asyncio.Event()
        self._task: asyncio.Task | None = None
        self._heartbeat_task: asyncio.Task | None = None
        self._in_flight: asyncio.Task | None = None

    async def start(self) -> None:
        """Start the polling and heartbeat loops."""
        if self._running:
            logger.warning("Processor already running")
            return

        self._running = True
        self._stop_event.clear()
        self._task = asyncio.create_task(self._run_loop())
        self._heartbeat_task = asyncio.create_task(self._heartbeat_loop())
        logger.info("Job processor started")

    async def stop(self) -> None:
        """Stop polling, waiting for the in-flight job to finish."""
        if not self._running:
            return

        logger.info("Stopping job processor...")
        self._running = False
        self._stop_event.set()

        if self._heartbeat_task:
            self._heartbeat_task.cancel()
            try:
                await self._heartbeat_task
            except asyncio.CancelledError:
                pass

        # The poll loop is not cancelled: it exits on its own once the
        # current job is finalized.
        if self._task:
            try:
                await self._task
            except asyncio.CancelledError:
                pass

        if self._in_flight and not self._in_flight.done():
            logger.info("Waiting for in-flight job to finish...")
            try:
                await self._in_flight
            except Exception as e:
                logger.error(f"In-flight job failed during shutdown: {e}", exc_info=True)

        logger.info("Job processor stopped")

    async def run(self, shutdown_event: asyncio.Event) -> None:
        """Process jobs until shutdown_event is set, then stop gracefully."""
        await self.start()
        try:
            await shutdown_event.wait()
        finally:
            await self.stop()

    async def _sleep(self, seconds: float) -> None:
        """Wait for seconds, returning early if the processor is stopped."""
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=seconds)
        except TimeoutError:
            pass

    async def _run_loop(self) -> None:
        """Main polling loop."""
        while self._running:
            try:
                await self.poll_once()
            except Exception as e:
                logger.error(f"Error in polling loop: {e}", exc_info=True)
            await self._sleep(self.poll_interval)

    async def _heartbeat_loop(self) -> None:
        """Periodically log how many jobs are waiting."""
        while self._running:
            await self._sleep(self.heartbeat_interval)
            if not self._running:
                break
            try:
                queued = await self.repository.count_queued_jobs()
                logger.info(f"Heartbeat: queued={queued}")
            except Exception as e:
                logger.warning(f"Heartbeat failed: {e}")

    async def claim_next(self) -> BuildJob | None:
        """Atomically claim one queued job, or return None."""
        return await self.repository.claim_next_job()

    async def poll_once(self) -> BuildStatus | None:
        """
        Attempt one claim and process the claimed job to completion.

        Returns:
            Final status of the processed job, or None if nothing was queued
        """
        job = await self.claim_next()
        if job is None:
            return None

        logger.info(f"Claimed job {job.id} ({job.component}@{job.version})")

        # A claimed job always runs to completion, even if the loop is cancelled
        self._in_flight = asyncio.create_task(self.process(job))
        return await asyncio.shield(self._in_flight)

    def _prepare_work_root(self, job_id: str) -> Path:
        work_root = self.scratch_dir / f"job-{job_id}"
        shutil.rmtree(work_root, ignore_errors=True)
        work_root.mkdir(parents=True, exist_ok=True)
        return work_root

    async def process(self, job: BuildJob) -> BuildStatus:
        """
        Run a claimed job end to end.

        Any stage error is routed to fail(); unexpected errors are treated
        the same way as JobErrors so the job never stays running.

        Args:
            job: A job in status "running"

        Returns:
            The job's terminal status
        """
        log = JobLog(self.repository, job.id)
        work_root = self.scratch_dir / f"job-{job.id}"

        try:
            await log("picked by worker")
            await self.repository.set_version_build_state(
                job.component_id, job.version, version_state_for(BuildStatus.RUNNING)
            )
            work_root = await asyncio.to_thread(self._prepare_work_root, job.id)

            working_dir = await self.fetcher.fetch(job, work_root, log)

            await log("running build (npm) or static fallback...")
            output_dir = await self.builder.run(working_dir, log)

            index_path = output_dir / INDEX_FILE
            if index_path.is_file():
                await log("[STEP] Modifying index.html...")
                await self._annotate_index(job, index_path, log)
                await log("[STEP] Rewriting asset paths in index.html...")
                await self._rewrite_index(index_path, log)
            else:
                await log("[WARN] index.html not found in build output, skipping rewrite")

            await log("[STEP] Uploading files...")
            bundle_url = await asyncio.to_thread(
                self.publisher.publish, job.component, job.version, output_dir
            )
            await log(f"[SUCCESS] Files uploaded. Bundle URL: {bundle_url}")
        except JobError as e:
            await self.fail(job, e)
            return BuildStatus.ERROR
        except Exception as e:
            logger.error(f"Unexpected error processing job {job.id}: {e}", exc_info=True)
            await self.fail(job, e)
            return BuildStatus.ERROR
        finally:
            await asyncio.to_thread(shutil.rmtree, work_root, True)

        await self._succeed(job, bundle_url, log)
        return BuildStatus.SUCCESS

    async def _annotate_index(self, job: BuildJob, index_path: Path, log: LogFn) -> None:
        """
        Embed component metadata into the output's index.html.

        Not fatal: the bundle is still publishable without it, so problems
        are reported as warnings in the job log.
        """
        created = job.created_at.astimezone(UTC).strftime("%Y-%m-%dT%H:%M:%SZ")
        meta = {
            "component-name": job.component,
            "component-version": job.version,
            "build-timestamp": created,
            "component-id": job.component_id,
        }
        config = {
            "name": job.component,
            "version": job.version,
            "componentId": job.component_id,
            "buildTimestamp": created,
        }

        try:
            content = index_path.read_text(encoding="utf-8", errors="surrogateescape")
            annotated = annotate_index_html(content, meta, config)
            if annotated is None:
                await log("[WARN] index.html modification skipped: </head> not found")
                return
            index_path.write_text(annotated, encoding="utf-8", errors="surrogateescape")
        except OSError as e:
            await log(f"[WARN] index.html modification skipped: {e}")

    async def _rewrite_index(self, index_path: Path, log: LogFn) -> None:
        try:
            changed = await asyncio.to_thread(rewrite_index_file, index_path)
        except Exception as e:
            raise PublishError(f"failed to rewrite index.html: {e}") from e
        if changed:
            await log("index.html asset references rewritten")
        else:
            await log("index.html asset references unchanged")

    async def _succeed(self, job: BuildJob, bundle_url: str, log: LogFn) -> None:
        await self.repository.complete_job_success(
            job.id, BuildArtifact(bundle_url=bundle_url)
        )
        await log("build complete")
        await self.repository.mark_version_ready(job.component_id, job.version, bundle_url)
        logger.info(f"Job {job.id} succeeded: {bundle_url}")

    async def fail(self, job: BuildJob, err: BaseException) -> None:
        """
        Finalize a job as failed.

        Appends "ERROR: <message>", marks the job error and its version's
        build state error. No retry is scheduled.
        """
        logger.error(f"Job {job.id} failed: {err}")
        await self.repository.append_log(job.id, f"ERROR: {err}")
        await self.repository.complete_job_error(job.id)
        await self.repository.set_version_build_state(
            job.component_id, job.version, version_state_for(BuildStatus.ERROR)
        )
