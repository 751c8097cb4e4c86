"""Job log writer shared by the worker stages."""

import logging
from collections.abc import Awaitable, Callable

from storehub_common.repository import JobRepository

logger = logging.getLogger(__name__)

LogFn = Callable[[str], Awaitable[None]]


class JobLog:
    """
    Appends lines to a job's log and echoes them to the process logger.

    Instances are callable so stages can take a plain LogFn.
    """

    def __init__(self, repository: JobRepository, job_id: str):
        self.repository = repository
        self.job_id = job_id

    async def __call__(self, line: str) -> None:
        logger.info(f"[job {self.job_id}] {line}")
        await self.repository.append_log(self.job_id, line)
