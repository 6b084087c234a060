"""Retries for storage writes and health checks for the service's components."""

import asyncio
import logging
import random
import time
from datetime import datetime
from functools import wraps
from typing import Any, Callable, Dict, List, Optional, Type

from .exceptions import StorageError, TransientError, WorkflowEngineError
from .logging import get_logger, log_with_context


logger = get_logger(__name__)


class RetryConfig:
    """Exponential backoff settings and the exception types worth retrying."""

    def __init__(
        self,
        max_attempts: int = 3,
        base_delay: float = 0.1,
        max_delay: float = 2.0,
        jitter: bool = True,
        retryable_exceptions: Optional[List[Type[Exception]]] = None
    ):
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.jitter = jitter
        self.retryable_exceptions = tuple(retryable_exceptions or (TransientError, StorageError))

    def is_retryable(self, error: Exception) -> bool:
        if not isinstance(error, self.retryable_exceptions):
            return False
        # Engine errors carry their own verdict, e.g. NotFoundError is final
        return not isinstance(error, WorkflowEngineError) or error.recoverable

    def backoff(self, attempt: int) -> float:
        """Seconds to wait after failed attempt number `attempt` (1-based)."""
        delay = min(self.base_delay * 2 ** (attempt - 1), self.max_delay)
        return delay * random.uniform(0.5, 1.0) if self.jitter else delay


def with_retry(config: Optional[RetryConfig] = None):
    """Retry the decorated function on retryable errors, then re-raise the last one."""
    config = config or RetryConfig()

    def decorator(func: Callable) -> Callable:
        operation = func.__qualname__

        @wraps(func)
        def wrapper(*args, **kwargs):
            attempt = 1
            while True:
                try:
                    return func(*args, **kwargs)
                except Exception as e:
                    if attempt >= config.max_attempts or not config.is_retryable(e):
                        if attempt > 1:
                            log_with_context(logger, logging.ERROR,
                                             f"Giving up on {operation} after {attempt} attempts: {e}",
                                             operation=operation, error_type=type(e).__name__)
                        raise
                    log_with_context(logger, logging.WARNING,
                                     f"Retrying {operation} (attempt {attempt}/{config.max_attempts}): {e}",
                                     operation=operation, error_type=type(e).__name__, attempt=attempt)
                    time.sleep(config.backoff(attempt))
                    attempt += 1

        return wrapper

    return decorator


def _check_result(status: str, message: str, started: float, **extra) -> Dict[str, Any]:
    result = {
        "status": status,
        "message": message,
        "duration_ms": round((time.perf_counter() - started) * 1000, 2),
        "timestamp": datetime.utcnow().isoformat(),
    }
    result.update(extra)
    return result


class HealthChecker:
    """Registry of named component checks.

    A check is a plain or async callable. It passes by returning (a string or
    a dict merged into the result) and fails by raising.
    """

    def __init__(self):
        self.checks: Dict[str, Dict[str, Any]] = {}
        self.last_results: Dict[str, Dict[str, Any]] = {}

    def register_check(self, name: str, check_func: Callable, timeout: float = 5.0):
        self.checks[name] = {"func": check_func, "timeout": timeout}
        logger.info(f"Registered health check: {name}")

    def clear(self):
        self.checks.clear()
        self.last_results.clear()

    async def run_check(self, name: str) -> Dict[str, Any]:
        started = time.perf_counter()
        check = self.checks.get(name)
        if check is None:
            return _check_result("error", f"Health check '{name}' not found", started)

        func, timeout = check["func"], check["timeout"]
        try:
            if asyncio.iscoroutinefunction(func):
                outcome = await asyncio.wait_for(func(), timeout=timeout)
            else:
                outcome = await asyncio.wait_for(asyncio.to_thread(func), timeout=timeout)
        except asyncio.TimeoutError:
            result = _check_result("timeout", f"Health check timed out after {timeout}s", started)
        except Exception as e:
            result = _check_result("unhealthy", str(e), started, error_type=type(e).__name__)
        else:
            message = outcome if isinstance(outcome, str) else "Check passed"
            result = _check_result("healthy", message, started)
            if isinstance(outcome, dict):
                result.update(outcome)

        self.last_results[name] = result
        return result

    async def run_all_checks(self) -> Dict[str, Any]:
        results = {name: await self.run_check(name) for name in list(self.checks)}
        healthy = all(result["status"] == "healthy" for result in results.values())
        return {
            "overall_status": "healthy" if healthy else "unhealthy",
            "checks": results,
            "timestamp": datetime.utcnow().isoformat(),
        }


health_checker = HealthChecker()
