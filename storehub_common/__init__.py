"""
StoreHub Common module.

This module contains shared domain models, errors and interfaces used across
the build worker components (worker, storage, persistence, admin).

The common module has no dependencies on other storehub_* modules, making it
a pure domain layer that can be imported by any component.
"""

from .errors import (
    AcquisitionError,
    BuildError,
    ConfigError,
    JobError,
    PublishError,
    StoreHubError,
    TokenCipherError,
)
from .models import (
    BuildArtifact,
    BuildJob,
    BuildRepo,
    BuildStatus,
    ComponentVersion,
    User,
    VersionBuildState,
    version_state_for,
)
from .repository import JobRepository

__all__ = [
    "AcquisitionError",
    "BuildArtifact",
    "BuildError",
    "BuildJob",
    "BuildRepo",
    "BuildStatus",
    "ComponentVersion",
    "ConfigError",
    "JobError",
    "JobRepository",
    "PublishError",
    "StoreHubError",
    "TokenCipherError",
    "User",
    "VersionBuildState",
    "version_state_for",
]
