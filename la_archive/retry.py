import logging
import time
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeoutError

logger = logging.getLogger(__name__)

DEFAULT_MAX_RETRIES = 3
DEFAULT_TIMEOUT_SECONDS = 300
TIMEOUT_GRACE_SECONDS = 5  # the operation enforces `timeout` itself; the grace covers its wind-down


class Exhausted(Exception):
    """Raised when every attempt of an operation has failed."""

    def __init__(self, attempts, last_error):
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(f"gave up after {attempts} attempt(s): {last_error}")


class OperationTimeout(Exception):
    pass


class RetryExecutor:
    """Runs one remote operation at a time with a hard timeout and exponential backoff.

    Each attempt runs on its own single-worker pool, which is joined before
    the attempt returns, so two operations are never in flight together.
    Operations are expected to stop on their own once `timeout` has passed
    (LogAnalyticsClient.query does); the executor waits `timeout + grace`
    before it reports the attempt as timed out and then waits for the worker
    to finish.
    """

    def __init__(self, max_retries=DEFAULT_MAX_RETRIES, timeout=DEFAULT_TIMEOUT_SECONDS,
                 grace_seconds=TIMEOUT_GRACE_SECONDS, sleep=time.sleep):
        if max_retries < 1:
            raise ValueError("max_retries must be at least 1")
        self.max_retries = max_retries
        self.timeout = timeout
        self.grace_seconds = grace_seconds
        self._sleep = sleep

    def _run_once(self, operation, args, kwargs):
        worker = ThreadPoolExecutor(max_workers=1, thread_name_prefix="la-query")
        try:
            future = worker.submit(operation, *args, **kwargs)
            try:
                return future.result(timeout=self.timeout + self.grace_seconds)
            except FuturesTimeoutError:
                future.cancel()
                logger.warning(f"⚠️ Operation exceeded {self.timeout + self.grace_seconds}s, "
                               f"waiting for the worker to stop")
                raise OperationTimeout(
                    f"operation exceeded {self.timeout + self.grace_seconds}s") from None
        finally:
            worker.shutdown(wait=True)

    def execute(self, operation, *args, **kwargs):
        attempt = 0
        last_error = None
        while attempt < self.max_retries:
            attempt += 1
            try:
                return self._run_once(operation, args, kwargs)
            except Exception as e:
                last_error = e
                if attempt >= self.max_retries:
                    break
                delay = 2 ** (attempt - 1)
                logger.warning(
                    f"Attempt {attempt}/{self.max_retries} failed: {e}. Backing off for {delay}s...")
                self._sleep(delay)

        logger.error(f"Max retries exceeded ({self.max_retries}). Last error: {last_error}")
        raise Exhausted(attempt, last_error)
