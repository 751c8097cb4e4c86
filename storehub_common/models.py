"""
Data models for build job storage.

These models represent the domain objects used throughout the worker,
independent of the underlying storage mechanism.
"""

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any, assert_never


class BuildStatus(str, Enum):
    """
    Lifecycle status of a build job.

    Jobs progress through states: queued -> running -> success | error.
    Terminal states are never left again.
    """

    QUEUED = "queued"
    RUNNING = "running"
    SUCCESS = "success"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        match self:
            case BuildStatus.SUCCESS | BuildStatus.ERROR:
                return True
            case BuildStatus.QUEUED | BuildStatus.RUNNING:
                return False
            case _:
                assert_never(self)

    def can_transition_to(self, next_status: "BuildStatus") -> bool:
        """Return True if moving from this status to next_status is allowed."""
        match self:
            case BuildStatus.QUEUED:
                return next_status is BuildStatus.RUNNING
            case BuildStatus.RUNNING:
                return next_status in (BuildStatus.SUCCESS, BuildStatus.ERROR)
            case BuildStatus.SUCCESS | BuildStatus.ERROR:
                return False
            case _:
                assert_never(self)


class VersionBuildState(str, Enum):
    """Build state mirrored onto a component version."""

    NONE = "none"
    QUEUED = "queued"
    RUNNING = "running"
    READY = "ready"
    ERROR = "error"


def version_state_for(status: BuildStatus) -> VersionBuildState:
    """Map a job status to the build state shown on its version."""
    match status:
        case BuildStatus.QUEUED:
            return VersionBuildState.QUEUED
        case BuildStatus.RUNNING:
            return VersionBuildState.RUNNING
        case BuildStatus.SUCCESS:
            return VersionBuildState.READY
        case BuildStatus.ERROR:
            return VersionBuildState.ERROR
        case _:
            assert_never(status)


def _isoformat(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


@dataclass
class BuildRepo:
    """Source coordinates of the repository a job builds from."""

    owner: str
    repo: str
    path: str = ""  # folder inside the repo where the component lives
    ref: str = ""  # branch or tag
    commit: str = ""  # optional pinned sha

    def to_dict(self) -> dict[str, str]:
        return {
            "owner": self.owner,
            "repo": self.repo,
            "path": self.path,
            "ref": self.ref,
            "commit": self.commit,
        }


@dataclass
class BuildArtifact:
    """Descriptor of a published bundle."""

    bundle_url: str

    def to_dict(self) -> dict[str, str]:
        return {"bundle_url": self.bundle_url}


@dataclass
class User:
    """
    Owner of build jobs, as far as the worker is concerned.

    The access token is stored encrypted and only decrypted by the worker
    when it downloads a private repository.
    """

    provider_id: str
    username: str = ""
    access_token: str | None = None  # ciphertext, never plaintext
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    def to_dict(self) -> dict[str, Any]:
        """Convert user to dictionary format (token is never included)."""
        return {
            "provider_id": self.provider_id,
            "username": self.username,
            "has_token": bool(self.access_token),
            "created_at": _isoformat(self.created_at),
        }


@dataclass
class ComponentVersion:
    """
    A published version of a component.

    build_state and preview_url are written by the worker as a side effect
    of job status changes.
    """

    id: str
    component_id: str
    version: str
    build_state: VersionBuildState = VersionBuildState.NONE
    preview_url: str | None = None
    commit_sha: str = ""
    created_by: str = ""
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "component_id": self.component_id,
            "version": self.version,
            "build_state": self.build_state.value,
            "preview_url": self.preview_url,
            "commit_sha": self.commit_sha,
            "created_by": self.created_by,
            "created_at": _isoformat(self.created_at),
        }


@dataclass
class BuildJob:
    """
    One build attempt for a specific component version.

    The log is append-only; started_at is set at claim time and ended_at
    when the job reaches a terminal status.
    """

    id: str
    component_id: str
    component: str  # slug
    version: str
    owner_id: str
    repo: BuildRepo
    status: BuildStatus = BuildStatus.QUEUED
    logs: list[str] = field(default_factory=list)
    artifacts: BuildArtifact | None = None
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    updated_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    started_at: datetime | None = None
    ended_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert job to dictionary format (for API responses)."""
        return {
            "id": self.id,
            "component_id": self.component_id,
            "component": self.component,
            "version": self.version,
            "status": self.status.value,
            "owner_id": self.owner_id,
            "repo": self.repo.to_dict(),
            "logs": list(self.logs),
            "artifacts": self.artifacts.to_dict() if self.artifacts else None,
            "created_at": _isoformat(self.created_at),
            "updated_at": _isoformat(self.updated_at),
            "started_at": _isoformat(self.started_at),
            "ended_at": _isoformat(self.ended_at),
        }

    def to_summary_dict(self) -> dict[str, Any]:
        """Convert job to summary format (without logs, for listings)."""
        return {
            "job_id": self.id,
            "component": self.component,
            "version": self.version,
            "status": self.status.value,
            "started_at": _isoformat(self.started_at),
            "ended_at": _isoformat(self.ended_at),
        }
