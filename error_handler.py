"""
Error handling for completion generation calls.

The cache itself never raises for normal inputs; failures only come from the
remote generation call made by the client. This module classifies those
failures, keeps a record of them and retries the recoverable ones.
"""
import time
import threading
import traceback
from typing import Dict, Any, List, Optional, Callable, Tuple
from datetime import datetime
from collections import defaultdict

from logger_config import get_logger

logger = get_logger("completion.errors", "client")


class ErrorHandler:
    """
    Tracks errors raised by generation calls and retries the recoverable
    ones with exponential backoff.
    """

    # Errors worth retrying: the call may succeed a moment later
    RECOVERABLE_ERRORS = (
        TimeoutError,
        ConnectionError,
    )

    # SDK exception names that signal the same conditions
    RECOVERABLE_NAMES = (
        "TimeoutError", "ConnectionError", "RateLimitError",
        "InternalServerError", "ServiceUnavailable",
    )

    def __init__(
        self,
        max_retries: int = 2,
        retry_interval: float = 0.5,
        sleep: Callable[[float], None] = time.sleep,
        max_recorded: int = 100
    ):
        """
        Initialize the error handler.

        Args:
            max_retries: Maximum number of retry attempts for recoverable errors
            retry_interval: Base interval (in seconds) between retry attempts
            sleep: Function used to wait between attempts
            max_recorded: Number of most recent error details kept
        """
        if max_retries < 0:
            raise ValueError(f"max_retries must be >= 0, got {max_retries}")
        self.max_retries = max_retries
        self.retry_interval = retry_interval
        self.max_recorded = max_recorded
        self._sleep = sleep
        self._lock = threading.Lock()
        self.error_counts: Dict[str, int] = defaultdict(int)
        self.error_details: List[Dict[str, Any]] = []

    @classmethod
    def from_config(cls, config_manager) -> "ErrorHandler":
        return cls(
            max_retries=int(config_manager.get("client.max_retries", 2)),
            retry_interval=float(config_manager.get("client.retry_interval", 0.5)),
        )

    def handle_error(self, error: Exception, context: Optional[Dict[str, Any]] = None) -> None:
        """
        Record an error with context information.

        Args:
            error: Exception that was raised
            context: Dictionary with contextual information about the error
        """
        context = context or {}
        error_type = self.categorize_error(error)
        details = {
            "timestamp": datetime.now().isoformat(),
            "error_type": error_type,
            "error_message": str(error),
            "recoverable": self.is_recoverable(error),
            "stack_trace": "".join(traceback.format_exception(type(error), error, error.__traceback__)),
            "context": context,
        }
        with self._lock:
            self.error_counts[error_type] += 1
            self.error_details.append(details)
            if len(self.error_details) > self.max_recorded:
                del self.error_details[0]

        self.log_error(error, context)

    def log_error(self, error: Exception, context: Dict[str, Any]) -> None:
        context_str = ", ".join(f"{k}={v}" for k, v in context.items())
        logger.error(f"Error: {type(error).__name__}: {error} - Context: {context_str}")

    def is_recoverable(self, error: Exception) -> bool:
        if isinstance(error, self.RECOVERABLE_ERRORS):
            return True
        error_type = self.categorize_error(error)
        return any(name in error_type for name in self.RECOVERABLE_NAMES)

    def should_retry(self, error: Exception, retry_count: int) -> bool:
        """
        Determine if an operation should be retried.

        Args:
            error: Exception raised by the last attempt
            retry_count: Number of retries already made

        Returns:
            True if operation should be retried, False otherwise
        """
        if retry_count >= self.max_retries:
            return False
        return self.is_recoverable(error)

    def retry_operation(
        self,
        operation: Callable,
        args: Optional[Tuple] = None,
        kwargs: Optional[Dict[str, Any]] = None
    ) -> Tuple[bool, Any]:
        """
        Run an operation, retrying recoverable failures with exponential backoff.

        Args:
            operation: Function to call
            args: Positional arguments for the function
            kwargs: Keyword arguments for the function

        Returns:
            Tuple of (success, result/error)
        """
        args = args or ()
        kwargs = kwargs or {}
        retry_count = 0

        while True:
            try:
                result = operation(*args, **kwargs)
                if retry_count > 0:
                    logger.info(f"Operation succeeded on retry attempt {retry_count}")
                return True, result
            except Exception as e:
                self.handle_error(e, {"operation": getattr(operation, "__name__", repr(operation)),
                                      "attempt": retry_count + 1})
                if not self.should_retry(e, retry_count):
                    if self.is_recoverable(e):
                        logger.error(
                            f"Operation failed after {retry_count} retries. "
                            f"Last error: {type(e).__name__}: {e}"
                        )
                    return False, e

                retry_count += 1
                wait_time = self.retry_interval * (2 ** (retry_count - 1))
                logger.warning(
                    f"Retry attempt {retry_count}/{self.max_retries} after error: "
                    f"{type(e).__name__}: {e} - Waiting {wait_time:.2f}s"
                )
                self._sleep(wait_time)

    def get_error_summary(self) -> Dict[str, Any]:
        """
        Get summary of all errors encountered.

        Returns:
            Dictionary with error summary
        """
        with self._lock:
            return {
                "total_errors": sum(self.error_counts.values()),
                "error_count_by_type": dict(self.error_counts),
                "recoverable_errors": sum(1 for error in self.error_details if error["recoverable"]),
                "unrecoverable_errors": sum(1 for error in self.error_details if not error["recoverable"]),
                "latest_error": self.error_details[-1] if self.error_details else None
            }

    def categorize_error(self, error: Exception) -> str:
        return type(error).__name__

    def reset(self) -> None:
        with self._lock:
            self.error_counts.clear()
            self.error_details.clear()
