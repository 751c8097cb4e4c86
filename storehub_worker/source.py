"""
Source acquisition for build jobs.

Downloads a repository archive from the GitHub API (authenticated with the
job owner's token when one is stored), extracts it into the job's scratch
directory and resolves the folder the component lives in.
"""

import asyncio
import logging
import zipfile
from pathlib import Path, PurePosixPath

import requests

from storehub_common.crypto import decrypt_token
from storehub_common.errors import AcquisitionError, TokenCipherError
from storehub_common.models import BuildJob
from storehub_common.repository import JobRepository

from .joblog import LogFn

logger = logging.getLogger(__name__)

GITHUB_API_URL = "https://api.github.com"
DOWNLOAD_TIMEOUT = 60.0
ARCHIVE_NAME = "repo.zip"
CHUNK_SIZE = 64 * 1024


def resolve_ref(commit: str = "", ref: str = "") -> str:
    """Return the ref to download: pinned commit, then ref, then "main"."""
    for candidate in (commit, ref, "main"):
        if candidate:
            return candidate
    return "main"


class CredentialStore:
    """
    Looks up and decrypts the access token of a job's owner.

    A missing user, missing token or undecryptable token all mean "download
    anonymously"; public repositories still build.
    """

    def __init__(self, repository: JobRepository, token_key: str | None = None):
        """
        Initialize the credential store.

        Args:
            repository: Repository holding user records
            token_key: AES key; defaults to the TOKEN_ENC_KEY environment variable
        """
        self.repository = repository
        self.token_key = token_key

    async def get_token(self, owner_id: str) -> str | None:
        if not owner_id:
            return None

        blob = await self.repository.get_user_access_token(owner_id)
        if not blob:
            logger.debug(f"No access token stored for user {owner_id}")
            return None

        try:
            token = decrypt_token(blob, self.token_key)
        except TokenCipherError as e:
            logger.warning(f"Could not decrypt access token for {owner_id}: {e}")
            return None
        return token or None


def download_archive(
    owner: str,
    repo: str,
    ref: str,
    dest_dir: Path,
    token: str | None = None,
    api_url: str = GITHUB_API_URL,
    timeout: float = DOWNLOAD_TIMEOUT,
) -> Path:
    """
    Download the zipball of owner/repo at ref into dest_dir/repo.zip.

    Raises:
        AcquisitionError: On network failure or a non-2xx response
    """
    url = f"{api_url.rstrip('/')}/repos/{owner}/{repo}/zipball/{ref}"
    headers = {"Accept": "application/vnd.github+json"}
    if token:
        headers["Authorization"] = f"Bearer {token}"

    dest_dir.mkdir(parents=True, exist_ok=True)
    archive_path = dest_dir / ARCHIVE_NAME

    try:
        with requests.get(url, headers=headers, stream=True, timeout=timeout) as response:
            if not response.ok:
                body = response.text[:500]
                raise AcquisitionError(
                    f"download failed: {response.status_code} {response.reason} | {body}"
                )
            with open(archive_path, "wb") as f:
                for chunk in response.iter_content(chunk_size=CHUNK_SIZE):
                    f.write(chunk)
    except requests.exceptions.RequestException as e:
        raise AcquisitionError(f"download failed: {e}") from e

    return archive_path


def extract_archive(archive_path: Path, dest_dir: Path) -> Path:
    """
    Extract a repository zipball and return its top-level directory.

    Hosting providers wrap the tree in a single "<owner>-<repo>-<sha>/"
    folder; that folder is the returned root.

    Raises:
        AcquisitionError: If the archive is unreadable, escapes dest_dir or
            does not have exactly one top-level directory
    """
    try:
        with zipfile.ZipFile(archive_path) as zf:
            names = zf.namelist()
            top_level = set()
            for name in names:
                path = PurePosixPath(name)
                if path.is_absolute() or ".." in path.parts:
                    raise AcquisitionError(f"unzip failed: unsafe entry {name!r}")
                top_level.add(path.parts[0])

            if len(top_level) != 1:
                raise AcquisitionError(
                    f"unzip failed: expected one top-level directory, found {len(top_level)}"
                )
            zf.extractall(dest_dir)
    except (zipfile.BadZipFile, OSError) as e:
        raise AcquisitionError(f"unzip failed: {e}") from e

    top_dir = dest_dir / top_level.pop()
    if not top_dir.is_dir():
        raise AcquisitionError("unzip failed: archive root is not a directory")
    return top_dir


def resolve_working_dir(top_dir: Path, sub_path: str = "") -> Path:
    """
    Return the folder to build: sub_path beneath top_dir, or top_dir itself.

    Raises:
        AcquisitionError: If the sub-path does not exist in the repository
    """
    sub_path = sub_path.strip("/")
    if not sub_path:
        return top_dir

    working = top_dir / PurePosixPath(sub_path)
    try:
        working.resolve().relative_to(top_dir.resolve())
    except ValueError:
        raise AcquisitionError(f"invalid path in repo: {sub_path}") from None
    if not working.is_dir():
        raise AcquisitionError(f"invalid path in repo: {sub_path}")
    return working


class SourceFetcher:
    """Materializes the working tree a job builds from."""

    def __init__(
        self,
        credentials: CredentialStore,
        api_url: str = GITHUB_API_URL,
        timeout: float = DOWNLOAD_TIMEOUT,
    ):
        self.credentials = credentials
        self.api_url = api_url
        self.timeout = timeout

    async def fetch(self, job: BuildJob, work_root: Path, log: LogFn) -> Path:
        """
        Download and extract the job's repository.

        Args:
            job: Job whose source coordinates are fetched
            work_root: Scratch directory exclusive to this job
            log: Job log writer

        Returns:
            Working directory containing the component source

        Raises:
            AcquisitionError: On any download, extraction or path failure
        """
        ref = resolve_ref(job.repo.commit, job.repo.ref)
        token = await self.credentials.get_token(job.owner_id)

        auth = "authenticated" if token else "anonymous"
        await log(
            f"downloading repository zip {job.repo.owner}/{job.repo.repo}@{ref} ({auth})..."
        )
        archive_path = await asyncio.to_thread(
            download_archive,
            job.repo.owner,
            job.repo.repo,
            ref,
            work_root,
            token,
            self.api_url,
            self.timeout,
        )

        await log("extracting zip...")
        top_dir = await asyncio.to_thread(extract_archive, archive_path, work_root)

        working = resolve_working_dir(top_dir, job.repo.path)
        await log(f"working directory: {working.relative_to(work_root).as_posix()}")
        return working
