"""
SQLite implementation of the job repository.

Uses aiosqlite for async operations. Several worker processes may share one
database file; the claim protocol relies only on SQLite's write lock and a
status compare-and-swap, not on any external locking.
"""

import asyncio
import logging
from datetime import UTC, datetime

import aiosqlite

from storehub_common.models import (
    BuildArtifact,
    BuildJob,
    BuildRepo,
    BuildStatus,
    ComponentVersion,
    User,
    VersionBuildState,
)
from storehub_common.repository import JobRepository

logger = logging.getLogger(__name__)

# Upper bound on candidates tried per claim call
MAX_CLAIM_ATTEMPTS = 20

_JOB_COLUMNS = """
    id, component_id, component, version, status, owner_id,
    repo_owner, repo_name, repo_path, repo_ref, repo_commit,
    bundle_url, created_at, updated_at, started_at, ended_at
"""


def _now() -> datetime:
    return datetime.now(UTC)


def _to_iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def _from_iso(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


class SQLiteJobRepository(JobRepository):
    """
    SQLite-based job storage implementation.

    Uses a single database file with multiple tables:
    - build_jobs: Job metadata, source coordinates and status
    - build_logs: Append-only log lines with foreign key to build_jobs
    - component_versions: Versions whose build state the worker mirrors
    - users: Owners and their encrypted access tokens
    """

    def __init__(self, db_path: str = "storehub.db", timeout: float = 30.0):
        """
        Initialize the SQLite repository.

        Args:
            db_path: Path to the SQLite database file
            timeout: Seconds to wait for another connection's write lock
        """
        self.db_path = db_path
        self.timeout = timeout
        self._connection: aiosqlite.Connection | None = None
        # Claims share one connection; only one may hold a transaction at a time
        self._claim_lock = asyncio.Lock()

    async def _get_connection(self) -> aiosqlite.Connection:
        """Get or create database connection."""
        if self._connection is None:
            self._connection = await aiosqlite.connect(
                self.db_path, timeout=self.timeout
            )
            await self._connection.execute("PRAGMA foreign_keys = ON")
        return self._connection

    async def initialize(self) -> None:
        """Create database tables and indexes if they don't exist."""
        conn = await self._get_connection()

        await conn.execute("""
            CREATE TABLE IF NOT EXISTS users (
                provider_id TEXT PRIMARY KEY,
                username TEXT NOT NULL DEFAULT '',
                access_token TEXT,
                created_at TEXT NOT NULL
            )
        """)

        await conn.execute("""
            CREATE TABLE IF NOT EXISTS component_versions (
                id TEXT PRIMARY KEY,
                component_id TEXT NOT NULL,
                version TEXT NOT NULL,
                build_state TEXT NOT NULL DEFAULT 'none',
                preview_url TEXT,
                commit_sha TEXT NOT NULL DEFAULT '',
                created_by TEXT NOT NULL DEFAULT '',
                created_at TEXT NOT NULL,
                UNIQUE (component_id, version)
            )
        """)

        await conn.execute("""
            CREATE TABLE IF NOT EXISTS build_jobs (
                id TEXT PRIMARY KEY,
                component_id TEXT NOT NULL,
                component TEXT NOT NULL,
                version TEXT NOT NULL,
                status TEXT NOT NULL,
                owner_id TEXT NOT NULL DEFAULT '',
                repo_owner TEXT NOT NULL,
                repo_name TEXT NOT NULL,
                repo_path TEXT NOT NULL DEFAULT '',
                repo_ref TEXT NOT NULL DEFAULT '',
                repo_commit TEXT NOT NULL DEFAULT '',
                bundle_url TEXT,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                started_at TEXT,
                ended_at TEXT
            )
        """)

        # Indexes for filtering by component/version/status
        await conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_build_jobs_status
            ON build_jobs(status)
        """)
        await conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_build_jobs_component_version
            ON build_jobs(component, version)
        """)

        await conn.execute("""
            CREATE TABLE IF NOT EXISTS build_logs (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                job_id TEXT NOT NULL,
                line TEXT NOT NULL,
                created_at TEXT NOT NULL,
                FOREIGN KEY (job_id) REFERENCES build_jobs(id) ON DELETE CASCADE
            )
        """)
        await conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_build_logs_job_id
            ON build_logs(job_id)
        """)

        await conn.commit()

    async def close(self) -> None:
        """Close the database connection."""
        if self._connection:
            await self._connection.close()
            self._connection = None

    # Build jobs

    def _row_to_job(self, row: tuple, logs: list[str]) -> BuildJob:
        (
            job_id,
            component_id,
            component,
            version,
            status,
            owner_id,
            repo_owner,
            repo_name,
            repo_path,
            repo_ref,
            repo_commit,
            bundle_url,
            created_at_str,
            updated_at_str,
            started_at_str,
            ended_at_str,
        ) = row
        return BuildJob(
            id=job_id,
            component_id=component_id,
            component=component,
            version=version,
            status=BuildStatus(status),
            owner_id=owner_id,
            repo=BuildRepo(
                owner=repo_owner,
                repo=repo_name,
                path=repo_path,
                ref=repo_ref,
                commit=repo_commit,
            ),
            logs=logs,
            artifacts=BuildArtifact(bundle_url=bundle_url) if bundle_url else None,
            created_at=datetime.fromisoformat(created_at_str),
            updated_at=datetime.fromisoformat(updated_at_str),
            started_at=_from_iso(started_at_str),
            ended_at=_from_iso(ended_at_str),
        )

    async def create_job(self, job: BuildJob) -> None:
        """
        Create a new job in the database together with its initial log lines.

        Args:
            job: BuildJob to persist
        """
        conn = await self._get_connection()

        await conn.execute(
            f"""
            INSERT INTO build_jobs ({_JOB_COLUMNS})
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                job.id,
                job.component_id,
                job.component,
                job.version,
                job.status.value,
                job.owner_id,
                job.repo.owner,
                job.repo.repo,
                job.repo.path,
                job.repo.ref,
                job.repo.commit,
                job.artifacts.bundle_url if job.artifacts else None,
                job.created_at.isoformat(),
                job.updated_at.isoformat(),
                _to_iso(job.started_at),
                _to_iso(job.ended_at),
            ),
        )
        created_at = job.created_at.isoformat()
        await conn.executemany(
            "INSERT INTO build_logs (job_id, line, created_at) VALUES (?, ?, ?)",
            [(job.id, line, created_at) for line in job.logs],
        )
        await conn.commit()

    async def _get_logs(self, job_id: str) -> list[str]:
        conn = await self._get_connection()
        cursor = await conn.execute(
            "SELECT line FROM build_logs WHERE job_id = ? ORDER BY id",
            (job_id,),
        )
        rows = await cursor.fetchall()
        return [row[0] for row in rows]

    async def get_job(self, job_id: str) -> BuildJob | None:
        """
        Retrieve a job with its full log.

        Args:
            job_id: UUID of the job to retrieve

        Returns:
            BuildJob if found, None otherwise
        """
        conn = await self._get_connection()

        cursor = await conn.execute(
            f"SELECT {_JOB_COLUMNS} FROM build_jobs WHERE id = ?",
            (job_id,),
        )
        row = await cursor.fetchone()

        if row is None:
            return None

        return self._row_to_job(row, await self._get_logs(job_id))

    async def list_jobs(self, status: BuildStatus | None = None) -> list[BuildJob]:
        """
        List jobs without their logs, newest first.

        Args:
            status: Only return jobs in this status
        """
        conn = await self._get_connection()

        if status is None:
            cursor = await conn.execute(
                f"SELECT {_JOB_COLUMNS} FROM build_jobs ORDER BY created_at DESC"
            )
        else:
            cursor = await conn.execute(
                f"""
                SELECT {_JOB_COLUMNS} FROM build_jobs
                WHERE status = ?
                ORDER BY created_at DESC
                """,
                (status.value,),
            )

        rows = await cursor.fetchall()
        # Don't load logs for listing efficiency
        return [self._row_to_job(row, []) for row in rows]

    async def claim_next_job(self) -> BuildJob | None:
        """
        Atomically move one queued job to running.

        Picks the oldest queued job and performs UPDATE ... WHERE status =
        'queued' inside one BEGIN IMMEDIATE transaction. Concurrent claimers
        wait on the write lock; an UPDATE matching no row retries with the
        next candidate. Claims made through the same repository instance are
        serialized, since they share one connection.

        Returns:
            The claimed job, or None if no queued job is available
        """
        conn = await self._get_connection()

        async with self._claim_lock:
            job_id = await self._claim_in_transaction(conn)
        if job_id is None:
            return None
        return await self.get_job(job_id)

    async def _claim_in_transaction(self, conn: aiosqlite.Connection) -> str | None:
        for _ in range(MAX_CLAIM_ATTEMPTS):
            await conn.execute("BEGIN IMMEDIATE")
            try:
                async with conn.execute(
                    """
                    SELECT id FROM build_jobs
                    WHERE status = ?
                    ORDER BY created_at
                    LIMIT 1
                    """,
                    (BuildStatus.QUEUED.value,),
                ) as cursor:
                    row = await cursor.fetchone()
                if row is None:
                    await conn.rollback()
                    return None

                job_id = row[0]
                now = _now().isoformat()
                cursor = await conn.execute(
                    """
                    UPDATE build_jobs
                    SET status = ?, started_at = ?, updated_at = ?
                    WHERE id = ? AND status = ?
                    """,
                    (
                        BuildStatus.RUNNING.value,
                        now,
                        now,
                        job_id,
                        BuildStatus.QUEUED.value,
                    ),
                )
                claimed = cursor.rowcount == 1
                await conn.commit()
            except Exception:
                await conn.rollback()
                raise

            if claimed:
                return job_id

            logger.debug(f"Lost claim race for job {job_id}, retrying")

        return None

    async def append_log(self, job_id: str, line: str) -> None:
        """
        Append a log line to a job.

        Args:
            job_id: UUID of the job
            line: Log line to append
        """
        conn = await self._get_connection()
        now = _now().isoformat()

        await conn.execute(
            "INSERT INTO build_logs (job_id, line, created_at) VALUES (?, ?, ?)",
            (job_id, line, now),
        )
        await conn.execute(
            "UPDATE build_jobs SET updated_at = ? WHERE id = ?",
            (now, job_id),
        )
        await conn.commit()

    async def _finish_job(
        self, job_id: str, status: BuildStatus, bundle_url: str | None
    ) -> None:
        conn = await self._get_connection()
        now = _now().isoformat()

        # Terminal statuses are only reachable from running, which also keeps
        # ended_at from ever being written twice.
        cursor = await conn.execute(
            """
            UPDATE build_jobs
            SET status = ?, ended_at = ?, updated_at = ?,
                bundle_url = COALESCE(?, bundle_url)
            WHERE id = ? AND status = ?
            """,
            (status.value, now, now, bundle_url, job_id, BuildStatus.RUNNING.value),
        )
        finished = cursor.rowcount == 1
        await conn.commit()

        if not finished:
            raise ValueError(f"Job {job_id} is not running, cannot mark {status.value}")

    async def complete_job_success(self, job_id: str, artifact: BuildArtifact) -> None:
        """
        Mark a running job as succeeded.

        Raises:
            ValueError: If the job is not running
        """
        await self._finish_job(job_id, BuildStatus.SUCCESS, artifact.bundle_url)

    async def complete_job_error(self, job_id: str) -> None:
        """
        Mark a running job as failed.

        Raises:
            ValueError: If the job is not running
        """
        await self._finish_job(job_id, BuildStatus.ERROR, None)

    async def count_queued_jobs(self) -> int:
        conn = await self._get_connection()
        cursor = await conn.execute(
            "SELECT COUNT(*) FROM build_jobs WHERE status = ?",
            (BuildStatus.QUEUED.value,),
        )
        row = await cursor.fetchone()
        return row[0] if row else 0

    # Component versions

    async def create_version(self, version: ComponentVersion) -> None:
        conn = await self._get_connection()

        await conn.execute(
            """
            INSERT INTO component_versions
                (id, component_id, version, build_state, preview_url,
                 commit_sha, created_by, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                version.id,
                version.component_id,
                version.version,
                version.build_state.value,
                version.preview_url,
                version.commit_sha,
                version.created_by,
                version.created_at.isoformat(),
            ),
        )
        await conn.commit()

    async def get_version(
        self, component_id: str, version: str
    ) -> ComponentVersion | None:
        conn = await self._get_connection()

        cursor = await conn.execute(
            """
            SELECT id, component_id, version, build_state, preview_url,
                   commit_sha, created_by, created_at
            FROM component_versions
            WHERE component_id = ? AND version = ?
            """,
            (component_id, version),
        )
        row = await cursor.fetchone()

        if row is None:
            return None

        (
            version_id,
            component_id,
            version_str,
            build_state,
            preview_url,
            commit_sha,
            created_by,
            created_at_str,
        ) = row
        return ComponentVersion(
            id=version_id,
            component_id=component_id,
            version=version_str,
            build_state=VersionBuildState(build_state),
            preview_url=preview_url,
            commit_sha=commit_sha,
            created_by=created_by,
            created_at=datetime.fromisoformat(created_at_str),
        )

    async def set_version_build_state(
        self, component_id: str, version: str, state: VersionBuildState
    ) -> None:
        """
        Update the build state mirrored on a version.

        A missing version is not an error; the mirror is eventually consistent
        and the version record belongs to the API layer.
        """
        conn = await self._get_connection()

        cursor = await conn.execute(
            """
            UPDATE component_versions SET build_state = ?
            WHERE component_id = ? AND version = ?
            """,
            (state.value, component_id, version),
        )
        await conn.commit()

        if cursor.rowcount == 0:
            logger.warning(
                f"No version {version} for component {component_id}, "
                f"build state {state.value} not recorded"
            )

    async def mark_version_ready(
        self, component_id: str, version: str, preview_url: str
    ) -> None:
        conn = await self._get_connection()

        cursor = await conn.execute(
            """
            UPDATE component_versions SET build_state = ?, preview_url = ?
            WHERE component_id = ? AND version = ?
            """,
            (VersionBuildState.READY.value, preview_url, component_id, version),
        )
        await conn.commit()

        if cursor.rowcount == 0:
            logger.warning(
                f"No version {version} for component {component_id}, "
                "preview URL not recorded"
            )

    # Users

    async def create_user(self, user: User) -> None:
        conn = await self._get_connection()

        await conn.execute(
            """
            INSERT INTO users (provider_id, username, access_token, created_at)
            VALUES (?, ?, ?, ?)
            """,
            (
                user.provider_id,
                user.username,
                user.access_token,
                user.created_at.isoformat(),
            ),
        )
        await conn.commit()

    async def get_user(self, provider_id: str) -> User | None:
        conn = await self._get_connection()

        cursor = await conn.execute(
            """
            SELECT provider_id, username, access_token, created_at
            FROM users WHERE provider_id = ?
            """,
            (provider_id,),
        )
        row = await cursor.fetchone()

        if row is None:
            return None

        provider_id, username, access_token, created_at_str = row
        return User(
            provider_id=provider_id,
            username=username,
            access_token=access_token,
            created_at=datetime.fromisoformat(created_at_str),
        )

    async def get_user_access_token(self, provider_id: str) -> str | None:
        user = await self.get_user(provider_id)
        if user is None or not user.access_token:
            return None
        return user.access_token
