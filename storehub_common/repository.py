"""
Abstract repository interface for build job persistence.

This module defines the contract that any database implementation must follow,
allowing easy swapping between SQLite, PostgreSQL, a document store, etc.
"""

from abc import ABC, abstractmethod

from .models import (
    BuildArtifact,
    BuildJob,
    BuildStatus,
    ComponentVersion,
    User,
    VersionBuildState,
)


class JobRepository(ABC):
    """
    Abstract base class for build job storage operations.

    Implementations must provide async-safe access to job data, handle their
    own connection management, and make claim_next_job atomic across
    processes sharing the same store.
    """

    @abstractmethod
    async def initialize(self) -> None:
        """
        Initialize the database (create tables, etc.).

        Called once at application startup.
        """
        pass

    @abstractmethod
    async def close(self) -> None:
        """
        Close database connections and cleanup resources.

        Called at application shutdown.
        """
        pass

    # Build jobs

    @abstractmethod
    async def create_job(self, job: BuildJob) -> None:
        """
        Create a new job in the database.

        Args:
            job: BuildJob to persist, including its initial log lines

        Raises:
            Exception: If a job with the same ID already exists
        """
        pass

    @abstractmethod
    async def get_job(self, job_id: str) -> BuildJob | None:
        """
        Retrieve a job with its full log.

        Args:
            job_id: UUID of the job to retrieve

        Returns:
            BuildJob if found, None otherwise
        """
        pass

    @abstractmethod
    async def list_jobs(self, status: BuildStatus | None = None) -> list[BuildJob]:
        """
        List jobs (without logs), optionally filtered by status.

        Args:
            status: Only return jobs in this status

        Returns:
            List of BuildJob objects ordered by creation time, newest first
        """
        pass

    @abstractmethod
    async def claim_next_job(self) -> BuildJob | None:
        """
        Atomically claim one queued job.

        Finds a job with status "queued" and moves it to "running", setting
        started_at and updated_at, as a single compare-and-swap on the status
        field. Two callers racing for the same job never both succeed.

        Returns:
            The claimed (now running) job, or None if nothing is queued
        """
        pass

    @abstractmethod
    async def append_log(self, job_id: str, line: str) -> None:
        """
        Append a line to a job's log and bump updated_at.

        Args:
            job_id: UUID of the job
            line: Log line to append
        """
        pass

    @abstractmethod
    async def complete_job_success(self, job_id: str, artifact: BuildArtifact) -> None:
        """
        Mark a running job as succeeded and record its artifact.

        Args:
            job_id: UUID of the job
            artifact: Descriptor of the published bundle
        """
        pass

    @abstractmethod
    async def complete_job_error(self, job_id: str) -> None:
        """
        Mark a running job as failed.

        Args:
            job_id: UUID of the job
        """
        pass

    @abstractmethod
    async def count_queued_jobs(self) -> int:
        """Return the number of jobs still waiting to be claimed."""
        pass

    # Component versions

    @abstractmethod
    async def create_version(self, version: ComponentVersion) -> None:
        """
        Create a component version record.

        Raises:
            Exception: If (component_id, version) already exists
        """
        pass

    @abstractmethod
    async def get_version(
        self, component_id: str, version: str
    ) -> ComponentVersion | None:
        """
        Retrieve a component version.

        Args:
            component_id: Component the version belongs to
            version: Version string, e.g. "0.1.0"

        Returns:
            ComponentVersion if found, None otherwise
        """
        pass

    @abstractmethod
    async def set_version_build_state(
        self, component_id: str, version: str, state: VersionBuildState
    ) -> None:
        """Update the build state mirrored on a version."""
        pass

    @abstractmethod
    async def mark_version_ready(
        self, component_id: str, version: str, preview_url: str
    ) -> None:
        """Set a version's build state to ready and record its preview URL."""
        pass

    # Users (credential store)

    @abstractmethod
    async def create_user(self, user: User) -> None:
        """
        Create a user record.

        Raises:
            Exception: If a user with the same provider ID already exists
        """
        pass

    @abstractmethod
    async def get_user(self, provider_id: str) -> User | None:
        """Retrieve a user by provider identity."""
        pass

    @abstractmethod
    async def get_user_access_token(self, provider_id: str) -> str | None:
        """
        Return the user's encrypted access token.

        Returns:
            The ciphertext, or None if the user or token does not exist
        """
        pass
