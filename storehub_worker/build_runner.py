"""
Build execution for component sources.

Runs the npm toolchain when the working directory has a package.json,
streaming both output streams into the job log, and locates the directory
to publish.
"""

import asyncio
import contextlib
import logging
import os
from pathlib import Path

from storehub_common.errors import BuildError

from .joblog import LogFn

logger = logging.getLogger(__name__)

DEFAULT_BUILD_COMMANDS: tuple[tuple[str, ...], ...] = (
    ("npm", "ci"),
    ("npm", "run", "build"),
)
OUTPUT_DIR_CANDIDATES = ("dist", "build")
MANIFEST_FILE = "package.json"
INDEX_FILE = "index.html"

READ_CHUNK = 64 * 1024
# Longest output line kept in the job log
MAX_LINE_BYTES = 64 * 1024


def find_output_dir(working_dir: Path, toolchain_ran: bool) -> Path:
    """
    Locate the directory to publish.

    dist/ then build/ are preferred, then the working directory itself.
    Without a toolchain run the working directory must hold an index.html
    to count as a static site at all.

    Raises:
        BuildError: If no output can be found
    """
    has_index = (working_dir / INDEX_FILE).is_file()
    if toolchain_ran or has_index:
        for name in OUTPUT_DIR_CANDIDATES:
            candidate = working_dir / name
            if candidate.is_dir():
                return candidate
        if has_index:
            return working_dir

    raise BuildError("no build output found (need package.json+build or index.html)")


class BuildRunner:
    """Runs a fixed build toolchain and reports its output directory."""

    def __init__(
        self,
        commands: tuple[tuple[str, ...], ...] = DEFAULT_BUILD_COMMANDS,
        env: dict[str, str] | None = None,
    ):
        """
        Initialize the build runner.

        Args:
            commands: Commands run in order when a package manifest exists
            env: Extra environment variables for the toolchain
        """
        self.commands = commands
        self.env = env or {}

    async def _emit(self, raw: bytes, tag: str, log: LogFn, truncated: bool = False) -> None:
        text = raw.decode("utf-8", errors="replace").rstrip()
        if truncated:
            text += " ...(truncated)"
        if text:
            await log(f"[{tag}] {text}")

    async def _pump(self, stream: asyncio.StreamReader, tag: str, log: LogFn) -> None:
        """
        Forward every line of one output stream to the job log.

        Reads fixed-size chunks rather than lines so an overlong line cannot
        stall the stream; such a line is logged cut at MAX_LINE_BYTES and its
        remainder discarded.
        """
        pending = b""
        skipping = False
        while True:
            chunk = await stream.read(READ_CHUNK)
            if not chunk:
                break
            pending += chunk
            *lines, pending = pending.split(b"\n")
            for line in lines:
                if skipping:
                    # Tail of a line already logged as truncated
                    skipping = False
                    continue
                await self._emit(line, tag, log)

            if skipping:
                pending = b""
            elif len(pending) > MAX_LINE_BYTES:
                await self._emit(pending[:MAX_LINE_BYTES], tag, log, truncated=True)
                pending = b""
                skipping = True

        if pending and not skipping:
            await self._emit(pending, tag, log)

    async def run_command(self, command: tuple[str, ...], cwd: Path, log: LogFn) -> None:
        """
        Run one toolchain command, streaming its output.

        stdout and stderr are drained concurrently and completely before the
        exit status is awaited.

        Raises:
            BuildError: If the command cannot start or exits non-zero
        """
        tool = command[0]
        try:
            process = await asyncio.create_subprocess_exec(
                *command,
                cwd=str(cwd),
                env={**os.environ, **self.env},
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise BuildError(f"failed to start command {list(command)}: {e}") from e

        assert process.stdout is not None and process.stderr is not None, (
            "stdout and stderr should be available when PIPE is specified"
        )

        try:
            await asyncio.gather(
                self._pump(process.stdout, tool, log),
                self._pump(process.stderr, f"{tool} ERROR", log),
            )
        except BaseException:
            # Never leave the toolchain running behind a failed drain
            if process.returncode is None:
                with contextlib.suppress(ProcessLookupError):
                    process.kill()
            await process.wait()
            raise
        returncode = await process.wait()

        if returncode != 0:
            raise BuildError(
                f"build failed on {' '.join(command)}: exit code {returncode}"
            )

    async def run(self, working_dir: Path, log: LogFn) -> Path:
        """
        Build the working directory and return the directory to publish.

        Args:
            working_dir: Extracted component source
            log: Job log writer

        Raises:
            BuildError: On toolchain failure or missing output
        """
        toolchain_ran = False
        if (working_dir / MANIFEST_FILE).is_file():
            for command in self.commands:
                await log(f"$ {' '.join(command)}")
                await self.run_command(command, working_dir, log)
            toolchain_ran = True
        else:
            await log("no package.json found, publishing static files as-is")

        output_dir = find_output_dir(working_dir, toolchain_ran)
        await log(f"build output: {output_dir.relative_to(working_dir).as_posix()}")
        return output_dir
