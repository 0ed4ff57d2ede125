import logging
import traceback
from datetime import timedelta
from threading import Event

from jobrow.core.base import StopWorker
from jobrow.core.core_sync import Queue
from jobrow.models.job import Job
from jobrow.registry import HandlerRegistry


logger = logging.getLogger(__name__)


class Worker:
    """Drain one queue, running every job through its registered handler.

    A job that raises is released with a linear backoff of
    ``backoff * attempts`` seconds, until it fails on its
    ``max_attempts``-th reservation; then it is moved to the failed jobs
    table. Job failures are logged and never escape ``run()``.

    Examples:

        Process jobs from the "emails" queue forever
        >>> worker = Worker(queue, registry, queue_name="emails")
        >>> worker.run()

        Process at most 10 jobs and return
        >>> Worker(queue, registry, max_jobs=10).run()

    Args:
        queue (Queue): Queue to take jobs from.
        registry (HandlerRegistry): Handlers for the job types.
        queue_name (str): Name of the queue to drain. Defaults to "default".
        max_jobs (int): Stop after processing this many jobs. 0 means
            run forever. Defaults to 0.
        sleep (float): Seconds to wait when the queue is empty.
            Defaults to 3.
        max_attempts (int): Reservation count at which a failing job is
            moved to the failed jobs table. Defaults to 3.
        backoff (int): Seconds of delay per attempt before a failed job
            is retried. Defaults to 60.
        reclaim_after (int | timedelta | None): Return reservations older
            than this many seconds to the queue before every poll that finds
            nothing. Defaults to None, which never reclaims.
    """

    def __init__(
        self,
        queue: Queue,
        registry: HandlerRegistry,
        queue_name: str = Queue.DEFAULT,
        max_jobs: int = 0,
        sleep: float = 3,
        max_attempts: int = 3,
        backoff: int = 60,
        reclaim_after: int | timedelta | None = None,
    ) -> None:
        if max_jobs < 0:
            raise ValueError("max_jobs cannot be negative")
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if isinstance(backoff, bool) or not isinstance(backoff, int) or backoff < 0:
            raise ValueError("backoff must be a non-negative integer number of seconds")

        self.queue = queue
        self.registry = registry
        self.queue_name = queue_name
        self.max_jobs = max_jobs
        self.sleep = sleep
        self.max_attempts = max_attempts
        self.backoff = backoff
        self.reclaim_after = reclaim_after
        self.processed = 0
        self.stop_event = Event()

    def run(self) -> int:
        """Launch the worker loop.

        Blocks until ``max_jobs`` jobs were processed, ``stop()`` is called,
        a handler raises ``StopWorker`` or the process is interrupted.

        Returns:
            int: Number of jobs processed by this call.
        """
        logger.info(f"Starting worker for queue {self.queue_name}")
        processed_before = self.processed

        while not self.stop_event.is_set():
            try:
                job = self.work_once()
                if job is None:
                    self.stop_event.wait(self.sleep)
                    continue
            except StopWorker:
                logger.debug("Worker interrupted by StopWorker signal")
                break
            except KeyboardInterrupt:
                logger.info("Worker interrupted by KeyboardInterrupt signal")
                break

            if self.max_jobs and self.processed - processed_before >= self.max_jobs:
                break

        processed = self.processed - processed_before
        logger.info(
            f"Worker for queue {self.queue_name} stopped after {processed} jobs"
        )
        return processed

    def stop(self) -> None:
        """Request the worker to stop.

        The worker stops after processing the current job or after the
        current wait period is over.
        """
        self.stop_event.set()

    def work_once(self) -> Job | None:
        """Pop one job and process it.

        Returns:
            (Job | None): The processed job or None if the queue was empty.
        """
        job = self.queue.pop(self.queue_name)
        if job is None:
            if self.reclaim_after is not None:
                self.queue.reclaim(self.reclaim_after, self.queue_name)
            return None

        self.process(job)
        return job

    def process(self, job: Job) -> bool:
        """Run a reserved job and apply the retry policy to the outcome.

        Returns:
            bool: True if the handler succeeded and the job was deleted.
        """
        try:
            handler = self.registry.resolve(job.job_type)
            handler(job.data)
        except StopWorker:
            self._succeed(job)
            raise
        except KeyboardInterrupt:
            # Hand the job back so it does not stay reserved forever.
            self.queue.release(job.id)
            raise
        except Exception as e:
            self._fail(job, e)
            return False

        self._succeed(job)
        return True

    def _succeed(self, job: Job) -> None:
        self.queue.delete_job(job.id)
        self.processed += 1
        logger.debug(f"Job {job.id} processed successfully (attempt {job.attempts})")

    def _fail(self, job: Job, exception: Exception) -> None:
        self.processed += 1
        logger.error(
            f"Failed to process job {job.id} (attempt {job.attempts}): {exception}",
            exc_info=exception,
        )

        if job.attempts >= self.max_attempts:
            logger.debug(
                f"Job {job.id} has reached the maximum number of attempts ({self.max_attempts})"
            )
            error_trace = "".join(traceback.format_exception(exception))
            self.queue.mark_failed(job.id, error_trace)
        else:
            delay = self.backoff * job.attempts
            logger.debug(f"Rescheduling job {job.id} in {delay} seconds")
            self.queue.release(job.id, delay)
