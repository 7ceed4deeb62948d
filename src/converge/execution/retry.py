"""Retries with bounded exponential backoff, and per-operation timeouts."""

import threading
from typing import Any, Callable, Dict, Optional
from tenacity import Retrying, retry_if_exception_type, stop_after_attempt, wait_exponential
from ..config.settings import RetrySettings
from ..utils.errors import TransientProviderError
from ..utils.logging import get_logger

logger = get_logger("execution.retry")


class OperationRunner:
    """
    Runs provider calls with a timeout and retries transient failures.

    Each timed attempt gets its own daemon thread. A timed-out call is
    abandoned, not interrupted: its thread may still finish in the
    background, but it never holds up another attempt. The timeout counts
    as a transient failure, so it is retried like one.
    """

    def __init__(self, retry: RetrySettings, timeout: Optional[float] = None):
        self.retry = retry
        self.timeout = timeout
        self._local = threading.local()

    @property
    def last_attempts(self) -> int:
        """Attempts made by the most recent ``run`` on the calling thread."""
        return getattr(self._local, "attempts", 0)

    def run(self, description: str, fn: Callable[..., Any], *args: Any) -> Any:
        """Call ``fn(*args)``; raise the last error once attempts are exhausted."""
        self._local.attempts = 0
        retrying = Retrying(
            retry=retry_if_exception_type(TransientProviderError),
            stop=stop_after_attempt(self.retry.max_attempts),
            wait=wait_exponential(multiplier=1, min=self.retry.backoff_min, max=self.retry.backoff_max),
            before_sleep=lambda state: logger.warning(
                f"{description}: attempt {state.attempt_number} failed "
                f"({state.outcome.exception()}), retrying in {state.next_action.sleep:.1f}s"
            ),
            reraise=True,
        )
        return retrying(self._attempt, description, fn, *args)

    def _attempt(self, description: str, fn: Callable[..., Any], *args: Any) -> Any:
        self._local.attempts += 1
        if self.timeout is None:
            return fn(*args)

        outcome: Dict[str, Any] = {}

        def call() -> None:
            try:
                outcome["value"] = fn(*args)
            except Exception as e:
                outcome["error"] = e

        worker = threading.Thread(target=call, name=f"converge-op {description}", daemon=True)
        worker.start()
        worker.join(self.timeout)
        if worker.is_alive():
            logger.debug(f"{description}: abandoning call on {worker.name}")
            raise TransientProviderError(f"{description} timed out after {self.timeout}s")
        if "error" in outcome:
            raise outcome["error"]
        return outcome.get("value")
