"""
StoreHub Worker module.

This module contains the build worker: source acquisition, the npm build
runner and the polling job processor that ties them to the storage layer.
"""

from .build_runner import BuildRunner, find_output_dir
from .joblog import JobLog, LogFn
from .processor import JobProcessor
from .source import CredentialStore, SourceFetcher, resolve_ref

__all__ = [
    "BuildRunner",
    "CredentialStore",
    "JobLog",
    "JobProcessor",
    "LogFn",
    "SourceFetcher",
    "find_output_dir",
    "resolve_ref",
]
