"""
Unit tests for JobProcessor.

Runs the processor against a real SQLite repository and the in-memory
object store; source acquisition is faked or mocked at the HTTP layer.
"""

import asyncio
import logging
from datetime import UTC, datetime
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from storehub_common.errors import BuildError
from storehub_common.models import (
    BuildJob,
    BuildRepo,
    BuildStatus,
    ComponentVersion,
    VersionBuildState,
)
from storehub_storage.publisher import ArtifactPublisher
from storehub_worker.build_runner import BuildRunner
from storehub_worker.processor import JobProcessor
from storehub_worker.source import CredentialStore, SourceFetcher

STATIC_SITE = {
    "site/index.html": (
        "<!DOCTYPE html><html><head><title>Button</title>"
        '<script type="module" src="/assets/app.js"></script>'
        "</head><body></body></html>"
    ),
    "site/assets/app.js": "console.log('button')",
    "site/favicon.ico": "ico",
}


async def enqueue(repo, job_id="job-1"):
    await repo.create_version(
        ComponentVersion(id="v1", component_id="cmp-1", version="1.0.0")
    )
    job = BuildJob(
        id=job_id,
        component_id="cmp-1",
        component="button",
        version="1.0.0",
        owner_id="42",
        repo=BuildRepo(owner="acme", repo="widgets"),
        logs=["enqueued"],
        created_at=datetime(2024, 5, 1, 12, 0, tzinfo=UTC),
    )
    await repo.create_job(job)
    await repo.set_version_build_state("cmp-1", "1.0.0", VersionBuildState.QUEUED)
    return job


class TestJobProcessor:
    """Test suite for JobProcessor."""

    @pytest.fixture
    def scratch(self, tmp_path):
        return tmp_path / "scratch"

    @pytest.fixture
    def static_fetcher(self, write_files):
        """Create a fetcher that materializes a static site in the work root."""
        fetcher = MagicMock()

        async def fetch(job, work_root, log):
            await log("fetched")
            write_files(work_root, STATIC_SITE)
            return work_root / "site"

        fetcher.fetch = AsyncMock(side_effect=fetch)
        return fetcher

    @pytest.fixture
    def processor(self, temp_db, static_fetcher, fake_store, scratch):
        """Create a processor with a static fetcher and real builder/publisher."""
        return JobProcessor(
            repository=temp_db,
            fetcher=static_fetcher,
            builder=BuildRunner(),
            publisher=ArtifactPublisher(fake_store),
            scratch_dir=scratch,
            poll_interval=0.05,
            heartbeat_interval=0.05,
        )

    @pytest.mark.asyncio
    async def test_poll_empty_queue(self, processor):
        assert await processor.poll_once() is None

    @pytest.mark.asyncio
    async def test_successful_job(self, processor, temp_db, fake_store, scratch):
        """Test the full pipeline from claim to ready version."""
        await enqueue(temp_db)

        assert await processor.poll_once() is BuildStatus.SUCCESS

        job = await temp_db.get_job("job-1")
        expected_url = (
            "http://cdn.local:9000/bucket/components/button/1.0.0/index.html"
        )
        assert job.status is BuildStatus.SUCCESS
        assert job.artifacts.bundle_url == expected_url
        assert job.started_at is not None
        assert job.ended_at is not None

        assert job.logs[:2] == ["enqueued", "picked by worker"]
        assert "[STEP] Modifying index.html..." in job.logs
        assert f"[SUCCESS] Files uploaded. Bundle URL: {expected_url}" in job.logs
        assert job.logs[-1] == "build complete"

        version = await temp_db.get_version("cmp-1", "1.0.0")
        assert version.build_state is VersionBuildState.READY
        assert version.preview_url == expected_url

        assert not (scratch / "job-1").exists()

    @pytest.mark.asyncio
    async def test_published_index_is_annotated_and_rewritten(
        self, processor, temp_db, fake_store
    ):
        await enqueue(temp_db)

        await processor.poll_once()

        index = fake_store.objects["components/button/1.0.0/index.html"].data.decode()
        assert "<!-- StoreHUBX Component Metadata -->" in index
        assert '<meta content="button" name="component-name"/>' in index or (
            '<meta name="component-name" content="button"/>' in index
        )
        assert "window.__STOREHUBX_COMPONENT__" in index
        assert '"buildTimestamp": "2024-05-01T12:00:00Z"' in index
        assert 'src="assets/app.js"' in index
        assert fake_store.list_keys("components/") == [
            "components/button/1.0.0/assets/app.js",
            "components/button/1.0.0/favicon.ico",
            "components/button/1.0.0/index.html",
        ]

    @pytest.mark.asyncio
    async def test_build_failure(self, processor, temp_db, fake_store):
        """Test that a stage error finalizes the job and version as error."""
        await enqueue(temp_db)
        processor.builder = MagicMock()
        processor.builder.run = AsyncMock(
            side_effect=BuildError("build failed on npm run build: exit code 2")
        )

        assert await processor.poll_once() is BuildStatus.ERROR

        job = await temp_db.get_job("job-1")
        assert job.status is BuildStatus.ERROR
        assert job.artifacts is None
        assert job.logs[-1] == "ERROR: build failed on npm run build: exit code 2"
        version = await temp_db.get_version("cmp-1", "1.0.0")
        assert version.build_state is VersionBuildState.ERROR
        assert fake_store.objects == {}

    @pytest.mark.asyncio
    async def test_unexpected_error_still_finalizes(self, processor, temp_db):
        await enqueue(temp_db)
        processor.fetcher.fetch = AsyncMock(side_effect=RuntimeError("boom"))

        assert await processor.poll_once() is BuildStatus.ERROR

        job = await temp_db.get_job("job-1")
        assert job.status is BuildStatus.ERROR
        assert job.logs[-1] == "ERROR: boom"

    @pytest.mark.asyncio
    async def test_download_404_propagates(self, temp_db, fake_store, scratch):
        """Test that a missing repository fails the job with the HTTP status in its log."""
        await enqueue(temp_db)
        processor = JobProcessor(
            repository=temp_db,
            fetcher=SourceFetcher(CredentialStore(temp_db)),
            builder=BuildRunner(),
            publisher=ArtifactPublisher(fake_store),
            scratch_dir=scratch,
        )
        response = MagicMock()
        response.__enter__.return_value = response
        response.ok = False
        response.status_code = 404
        response.reason = "Not Found"
        response.text = '{"message":"Not Found"}'

        with patch("storehub_worker.source.requests.get", return_value=response):
            assert await processor.poll_once() is BuildStatus.ERROR

        job = await temp_db.get_job("job-1")
        assert job.status is BuildStatus.ERROR
        assert job.logs[-1].startswith("ERROR: download failed: 404 Not Found")
        assert (
            await temp_db.get_version("cmp-1", "1.0.0")
        ).build_state is VersionBuildState.ERROR
        assert fake_store.objects == {}

    @pytest.mark.asyncio
    async def test_missing_head_only_warns(self, processor, temp_db, write_files):
        """Test that an index without </head> is still published."""
        await enqueue(temp_db)

        async def fetch(job, work_root, log):
            write_files(work_root, {"site/index.html": "<p>bare</p>"})
            return work_root / "site"

        processor.fetcher.fetch = AsyncMock(side_effect=fetch)

        assert await processor.poll_once() is BuildStatus.SUCCESS

        job = await temp_db.get_job("job-1")
        assert "[WARN] index.html modification skipped: </head> not found" in job.logs

    @pytest.mark.asyncio
    async def test_missing_index_fails_at_publish(self, processor, temp_db, tmp_path):
        """Test that output without index.html is warned about and then fails publishing."""
        await enqueue(temp_db)
        output = tmp_path / "out"
        (output / "assets").mkdir(parents=True)
        processor.builder = MagicMock()
        processor.builder.run = AsyncMock(return_value=output)

        assert await processor.poll_once() is BuildStatus.ERROR

        job = await temp_db.get_job("job-1")
        assert "[WARN] index.html not found in build output, skipping rewrite" in job.logs
        assert job.logs[-1].startswith("ERROR: failed to read index.html")


class TestProcessorLoop:
    """Test suite for the polling and heartbeat loops."""

    @pytest.mark.asyncio
    async def test_start_stop(self, temp_db, fake_store, tmp_path):
        processor = JobProcessor(
            repository=temp_db,
            fetcher=MagicMock(),
            builder=MagicMock(),
            publisher=ArtifactPublisher(fake_store),
            scratch_dir=tmp_path,
            poll_interval=0.05,
            heartbeat_interval=0.05,
        )

        await processor.start()
        assert processor._running
        await asyncio.sleep(0.15)
        await processor.stop()

        assert not processor._running
        assert processor._task.done()

    @pytest.mark.asyncio
    async def test_loop_processes_queued_job(self, temp_db, fake_store, tmp_path, write_files):
        """Test that a started processor picks up and finishes a queued job."""
        await enqueue(temp_db)
        fetcher = MagicMock()

        async def fetch(job, work_root, log):
            write_files(work_root, STATIC_SITE)
            return work_root / "site"

        fetcher.fetch = AsyncMock(side_effect=fetch)
        processor = JobProcessor(
            repository=temp_db,
            fetcher=fetcher,
            builder=BuildRunner(),
            publisher=ArtifactPublisher(fake_store),
            scratch_dir=tmp_path,
            poll_interval=0.02,
        )

        await processor.start()
        try:
            for _ in range(100):
                job = await temp_db.get_job("job-1")
                if job.status.is_terminal:
                    break
                await asyncio.sleep(0.02)
        finally:
            await processor.stop()

        assert (await temp_db.get_job("job-1")).status is BuildStatus.SUCCESS

    @pytest.mark.asyncio
    async def test_loop_survives_repository_errors(self, fake_store, tmp_path):
        """Test that a failing claim is logged and polling continues."""
        repo = AsyncMock()
        repo.claim_next_job.side_effect = [RuntimeError("database is locked"), None, None]
        repo.count_queued_jobs.return_value = 0
        processor = JobProcessor(
            repository=repo,
            fetcher=MagicMock(),
            builder=MagicMock(),
            publisher=ArtifactPublisher(fake_store),
            scratch_dir=tmp_path,
            poll_interval=0.01,
        )

        await processor.start()
        for _ in range(100):
            if repo.claim_next_job.call_count >= 2:
                break
            await asyncio.sleep(0.01)
        repo.claim_next_job.side_effect = None
        repo.claim_next_job.return_value = None
        await processor.stop()

        assert repo.claim_next_job.call_count >= 2

    @pytest.mark.asyncio
    async def test_heartbeat_logs_queue_depth(self, temp_db, fake_store, tmp_path, caplog):
        await enqueue(temp_db)
        processor = JobProcessor(
            repository=temp_db,
            fetcher=MagicMock(),
            builder=MagicMock(),
            publisher=ArtifactPublisher(fake_store),
            scratch_dir=tmp_path,
            poll_interval=60,
            heartbeat_interval=0.02,
        )
        # Keep the job queued: the first poll happens immediately, so claim nothing
        processor.claim_next = AsyncMock(return_value=None)

        with caplog.at_level(logging.INFO, logger="storehub_worker.processor"):
            await processor.start()
            await asyncio.sleep(0.1)
            await processor.stop()

        assert "Heartbeat: queued=1" in caplog.text

    @pytest.mark.asyncio
    async def test_run_until_shutdown(self, temp_db, fake_store, tmp_path):
        """Test that run() returns once the shutdown event is set."""
        processor = JobProcessor(
            repository=temp_db,
            fetcher=MagicMock(),
            builder=MagicMock(),
            publisher=ArtifactPublisher(fake_store),
            scratch_dir=tmp_path,
            poll_interval=0.01,
        )
        shutdown = asyncio.Event()

        runner = asyncio.create_task(processor.run(shutdown))
        await asyncio.sleep(0.05)
        shutdown.set()
        await asyncio.wait_for(runner, timeout=5)

        assert not processor._running
