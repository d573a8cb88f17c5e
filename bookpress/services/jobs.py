"""One background book-processing task per user."""

import asyncio
import functools
import logging
from typing import Awaitable, Callable, Dict, List, Optional

from bookpress.errors import AlreadyProcessing
from bookpress.models.book import JobStatus

logger = logging.getLogger(__name__)


class BookJobs:
    """In-flight guard and last-result record, keyed by user id.

    A second submission while the user's previous book is still running is
    rejected (first submission wins).  The slot is released when the task
    ends for any reason, cancellation included.  All methods must be called
    from the event loop that runs the tasks.
    """

    def __init__(self):
        self._tasks: Dict[str, asyncio.Task] = {}
        self._status: Dict[str, JobStatus] = {}

    def submit(
        self,
        user_id: str,
        filename: str,
        work: Callable[[], Awaitable[List[str]]],
    ) -> asyncio.Task:
        """Start ``work()`` in the background for *user_id*.

        Raises:
            AlreadyProcessing: a book for *user_id* is still running.
        """
        if user_id in self._tasks:
            raise AlreadyProcessing(f"User {user_id} already has a book in progress")

        task = asyncio.get_running_loop().create_task(work(), name=f"book:{user_id}")
        self._tasks[user_id] = task
        self._status[user_id] = JobStatus(user_id=user_id, filename=filename, state="processing")
        task.add_done_callback(functools.partial(self._on_done, user_id, filename))
        logger.info("Jobs: started %r for user %s", filename, user_id)
        return task

    def is_processing(self, user_id: str) -> bool:
        return user_id in self._tasks

    def status(self, user_id: str) -> Optional[JobStatus]:
        return self._status.get(user_id)

    def cancel(self, user_id: str) -> bool:
        """Request cancellation of *user_id*'s running book; False if none is running."""
        task = self._tasks.get(user_id)
        if task is None:
            return False
        task.cancel()
        return True

    def _on_done(self, user_id: str, filename: str, task: asyncio.Task) -> None:
        if self._tasks.get(user_id) is task:
            del self._tasks[user_id]

        if task.cancelled():
            status = JobStatus(user_id=user_id, filename=filename, state="cancelled")
            logger.info("Jobs: %r for user %s cancelled", filename, user_id)
        elif task.exception() is not None:
            exc = task.exception()
            status = JobStatus(user_id=user_id, filename=filename, state="failed", detail=str(exc))
            logger.error("Jobs: %r for user %s failed – %s", filename, user_id, exc, exc_info=exc)
        else:
            pages = task.result()
            status = JobStatus(
                user_id=user_id,
                filename=filename,
                state="done" if pages else "failed",
                pages=pages,
                detail=None if pages else "No pages could be published",
            )
            logger.info("Jobs: %r for user %s finished with %d pages", filename, user_id, len(pages))
        self._status[user_id] = status
