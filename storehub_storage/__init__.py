"""
StoreHub Storage module.

This module turns a build output directory into a published bundle:
content type resolution, index.html asset rewriting, output path
classification and upload to an S3-compatible object store.
"""

from .content_types import resolve_content_type
from .object_store import MinioObjectStore, ObjectStore, build_public_url
from .publisher import (
    ArtifactPublisher,
    AssetFile,
    RootFile,
    Skip,
    classify_output_path,
    ensure_content_type,
)
from .rewriter import (
    annotate_index_html,
    ensure_html_doctype,
    rewrite_index_file,
    rewrite_index_html,
)

__all__ = [
    "ArtifactPublisher",
    "AssetFile",
    "MinioObjectStore",
    "ObjectStore",
    "RootFile",
    "Skip",
    "annotate_index_html",
    "build_public_url",
    "classify_output_path",
    "ensure_content_type",
    "ensure_html_doctype",
    "resolve_content_type",
    "rewrite_index_file",
    "rewrite_index_html",
]
