"""
Artifact publisher for build output directories.

Uploads a build's output to components/<component>/<version>/ and returns
the public URL of its index.html. Layout rules:

- everything under assets/ is uploaded recursively, keeping subfolders
- other files directly in the output root are uploaded next to index.html
- files nested in any other folder are not uploaded
- index.html is rewritten (see rewriter) and uploaded last
"""

import logging
import os
import posixpath
from dataclasses import dataclass
from pathlib import Path
from typing import assert_never

from storehub_common.errors import PublishError

from .content_types import resolve_content_type
from .object_store import ObjectStore
from .rewriter import ASSETS_DIR, ensure_html_doctype, rewrite_index_html

logger = logging.getLogger(__name__)

INDEX_FILE = "index.html"


@dataclass(frozen=True)
class AssetFile:
    """A file under assets/; rel_path is relative to assets/."""

    rel_path: str


@dataclass(frozen=True)
class RootFile:
    """A file directly in the output root (other than index.html)."""

    name: str


@dataclass(frozen=True)
class Skip:
    """A file the publisher does not upload in the file passes."""

    reason: str


OutputPath = AssetFile | RootFile | Skip


def classify_output_path(rel_path: str) -> OutputPath:
    """
    Decide how a file in the output directory is published.

    Args:
        rel_path: Path relative to the output directory, "/" separated

    Returns:
        AssetFile for anything under assets/ (any depth), RootFile for a
        top-level file, Skip for index.html and files nested elsewhere
    """
    parts = [p for p in rel_path.replace("\\", "/").split("/") if p not in ("", ".")]
    if not parts:
        return Skip("empty path")
    if parts[0] == ASSETS_DIR and len(parts) > 1:
        return AssetFile("/".join(parts[1:]))
    if len(parts) > 1:
        return Skip("nested outside assets/")
    if parts[0] == INDEX_FILE:
        return Skip("index.html is uploaded last")
    return RootFile(parts[0])


def component_prefix(component: str, version: str) -> str:
    return posixpath.join("components", component, version)


def object_key(component: str, version: str, path: AssetFile | RootFile) -> str:
    """Return the object key for a publishable output file."""
    prefix = component_prefix(component, version)
    match path:
        case AssetFile(rel_path=rel):
            return posixpath.join(prefix, ASSETS_DIR, rel)
        case RootFile(name=name):
            return posixpath.join(prefix, name)
        case _:
            assert_never(path)


def ensure_content_type(store: ObjectStore, key: str, content_type: str) -> bool:
    """
    Make the store serve key with content_type.

    Some backends ignore the content type sent with streaming uploads, so
    this checks what is actually stored and fixes it server-side, falling
    back to downloading and re-uploading the object.

    Returns:
        False if the stored type already matched (nothing written), True if
        it was changed
    """
    current = store.stat_content_type(key)
    if current.lower() == content_type.lower():
        return False

    try:
        store.copy_with_content_type(key, content_type)
    except Exception as e:
        logger.debug(f"Server-side copy failed for {key} ({e}), re-uploading")
        store.put_bytes(key, store.get_bytes(key), content_type)
    return True


def ensure_content_type_best_effort(
    store: ObjectStore, key: str, content_type: str
) -> None:
    """
    Best-effort variant of ensure_content_type.

    The object was already uploaded with the right content type hint; a
    failure here only means the hint may not have stuck, so it is logged and
    never escalated.
    """
    try:
        if ensure_content_type(store, key, content_type):
            logger.info(f"Fixed content type of {key} to {content_type}")
    except Exception as e:
        logger.warning(f"Could not verify content type of {key}: {e}")


class ArtifactPublisher:
    """Uploads build output directories to an object store."""

    def __init__(self, store: ObjectStore):
        """
        Initialize the publisher.

        Args:
            store: Object store the bundle is uploaded to
        """
        self.store = store

    def _upload_file(self, key: str, local_path: Path) -> None:
        content_type = resolve_content_type(local_path.name)
        logger.debug(f"Uploading {local_path} -> {key} ({content_type})")
        try:
            self.store.put_file(key, str(local_path), content_type)
        except Exception as e:
            raise PublishError(f"upload failed {local_path} -> {key}: {e}") from e
        ensure_content_type_best_effort(self.store, key, content_type)

    def _iter_asset_files(self, dist_dir: Path):
        assets_dir = dist_dir / ASSETS_DIR
        if not assets_dir.is_dir():
            return
        for dirpath, dirnames, filenames in os.walk(assets_dir):
            dirnames.sort()
            for filename in sorted(filenames):
                yield Path(dirpath) / filename

    def _iter_root_files(self, dist_dir: Path):
        for entry in sorted(dist_dir.iterdir()):
            if entry.is_file():
                yield entry

    def publish(self, component: str, version: str, dist_dir: str | Path) -> str:
        """
        Publish an output directory as components/<component>/<version>/.

        Args:
            component: Component slug
            version: Version string
            dist_dir: Build output directory containing index.html

        Returns:
            Public URL of the uploaded index.html

        Raises:
            PublishError: If the directory is invalid or an upload fails
        """
        dist_path = Path(dist_dir)
        if not dist_path.is_dir():
            raise PublishError(f"dist path is not a directory: {dist_path}")

        index_path = dist_path / INDEX_FILE
        try:
            index_bytes = index_path.read_bytes()
        except OSError as e:
            raise PublishError(f"failed to read index.html from dist: {e}") from e

        try:
            rewritten, changed = rewrite_index_html(index_bytes, dist_path)
        except Exception as e:
            raise PublishError(f"failed to rewrite index.html: {e}") from e
        if changed:
            logger.info(f"Rewrote asset references in {index_path}")

        uploaded = 0
        for local_path in [
            *self._iter_asset_files(dist_path),
            *self._iter_root_files(dist_path),
        ]:
            rel = local_path.relative_to(dist_path).as_posix()
            classified = classify_output_path(rel)
            match classified:
                case AssetFile() | RootFile():
                    self._upload_file(
                        object_key(component, version, classified), local_path
                    )
                    uploaded += 1
                case Skip(reason=reason):
                    logger.debug(f"Skipping {rel}: {reason}")
                case _:
                    assert_never(classified)

        index_key = posixpath.join(component_prefix(component, version), INDEX_FILE)
        index_content_type = resolve_content_type(INDEX_FILE)
        try:
            self.store.put_bytes(
                index_key, ensure_html_doctype(rewritten), index_content_type
            )
        except Exception as e:
            raise PublishError(f"upload failed {INDEX_FILE} -> {index_key}: {e}") from e
        ensure_content_type_best_effort(self.store, index_key, index_content_type)

        logger.info(
            f"Published {uploaded + 1} files for {component}@{version} to {index_key}"
        )
        return self.store.public_url(index_key)
