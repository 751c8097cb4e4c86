"""
Error taxonomy for the build worker.

Configuration errors are fatal at process start. Every JobError is terminal
for the job that raised it and is finalized through the processor's single
failure path; nothing here is retried.
"""


class StoreHubError(Exception):
    """Base class for all worker errors."""


class ConfigError(StoreHubError):
    """A required setting is missing or invalid."""


class TokenCipherError(StoreHubError):
    """An access token could not be encrypted or decrypted."""


class JobError(StoreHubError):
    """An error that ends the current job."""


class AcquisitionError(JobError):
    """Downloading, extracting or locating the source failed."""


class BuildError(JobError):
    """The toolchain failed or produced no output."""


class PublishError(JobError):
    """Uploading the bundle to the object store failed."""
