"""Decorator implementations for error logging, performance monitoring and retries."""
import asyncio
import logging
import random
import time
from functools import wraps
from typing import Any, Awaitable, Callable, Optional, TypeVar

from chunked_transfer.core.exceptions import (
    ErrorCategory,
    ErrorSeverity,
    TransferException,
)
from chunked_transfer.utils.logger import get_logger

logger: logging.Logger = get_logger(__name__)

# Type variables shared by decorators
F = TypeVar('F', bound=Callable[..., Any])
AsyncF = TypeVar('AsyncF', bound=Callable[..., Awaitable[Any]])


def async_exception_handler(
    exception_type: type = Exception,
    default_message: str = "Async operation failed",
    log_error: bool = True,
    reraise: bool = True,
    custom_handler: Optional[Callable[[Exception], Any]] = None
):
    """
    Exception handling decorator for coroutines.

    Args:
        exception_type: Exception type to capture.
        default_message: Fallback message when wrapping foreign exceptions.
        log_error: Whether to log the error automatically.
        reraise: Whether to re-raise the original exception.
        custom_handler: Optional callback to transform the exception.
    """

    def decorator(func: AsyncF) -> AsyncF:
        @wraps(func)
        async def wrapper(*args, **kwargs):
            try:
                return await func(*args, **kwargs)
            except Exception as e:
                if log_error:
                    if isinstance(e, TransferException):
                        logger.error(
                            f"Async function {func.__name__} failed: {e.message}",
                            extra={"error_details": e.to_dict()},
                            exc_info=True
                        )
                    else:
                        logger.error(
                            f"Async function {func.__name__} failed: {str(e)}",
                            exc_info=True
                        )

                if custom_handler:
                    if asyncio.iscoroutinefunction(custom_handler):
                        return await custom_handler(e)
                    return custom_handler(e)

                if not isinstance(e, exception_type) and exception_type is not Exception:
                    if isinstance(e, TransferException):
                        raise
                    raise TransferException(
                        message=default_message,
                        error_code="ASYNC_EXECUTION_ERROR",
                        category=ErrorCategory.SYSTEM,
                        severity=ErrorSeverity.MEDIUM,
                        original_error=e
                    ) from e

                if reraise:
                    raise
                return None

        return wrapper  # type: ignore

    # Support decorator usage without parentheses
    if callable(exception_type) and not isinstance(exception_type, type):
        func = exception_type
        exception_type = Exception
        return decorator(func)  # type: ignore

    return decorator


def _performance_payload(op_name: str, execution_time: float, include_args: bool, args, kwargs) -> dict:
    log_info = {
        "operation": op_name,
        "execution_time": execution_time,
        "status": "success"
    }
    if include_args:
        log_info["args"] = str(args)[:200]
        log_info["kwargs"] = str(kwargs)[:200]
    return log_info


def performance_monitor(
    operation_name: Optional[str] = None,
    log_slow_operations: bool = True,
    slow_threshold: float = 1.0,
    include_args: bool = False
):
    """
    Decorator for measuring sync function latency and flagging slow calls.

    Args:
        operation_name: Custom label for the monitored operation.
        log_slow_operations: Emit warnings when threshold is exceeded.
        slow_threshold: Seconds beyond which the call is considered slow.
        include_args: Attach arguments to the log payload.
    """

    def decorator(func: F) -> F:
        @wraps(func)
        def wrapper(*args, **kwargs):
            op_name = operation_name or f"{func.__module__}.{func.__name__}"
            start_time = time.time()

            try:
                result = func(*args, **kwargs)
            except Exception as e:
                execution_time = time.time() - start_time
                logger.error(
                    f"Operation failed: {op_name} in {execution_time:.2f}s",
                    extra={"error": str(e), "execution_time": execution_time}
                )
                raise

            execution_time = time.time() - start_time
            log_info = _performance_payload(op_name, execution_time, include_args, args, kwargs)
            if log_slow_operations and execution_time > slow_threshold:
                logger.warning(f"Slow operation detected: {log_info}")
            else:
                logger.debug(f"Operation completed: {log_info}")
            return result

        return wrapper  # type: ignore

    return decorator


def async_performance_monitor(
    operation_name: Optional[str] = None,
    log_slow_operations: bool = True,
    slow_threshold: float = 1.0,
    include_args: bool = False
):
    """Async equivalent of performance_monitor."""

    def decorator(func: AsyncF) -> AsyncF:
        @wraps(func)
        async def wrapper(*args, **kwargs):
            op_name = operation_name or f"{func.__module__}.{func.__name__}"
            start_time = time.time()

            try:
                result = await func(*args, **kwargs)
            except Exception as e:
                execution_time = time.time() - start_time
                logger.error(
                    f"Async operation failed: {op_name} in {execution_time:.2f}s",
                    extra={"error": str(e), "execution_time": execution_time}
                )
                raise

            execution_time = time.time() - start_time
            log_info = _performance_payload(op_name, execution_time, include_args, args, kwargs)
            if log_slow_operations and execution_time > slow_threshold:
                logger.warning(f"Slow async operation detected: {log_info}")
            else:
                logger.debug(f"Async operation completed: {log_info}")
            return result

        return wrapper  # type: ignore

    return decorator


def async_retry(
    max_attempts: int = 3,
    delay: float = 1.0,
    exponential_base: float = 2.0,
    jitter: bool = True,
    exceptions: tuple = (Exception,),
    retry_if: Optional[Callable[[Exception], bool]] = None
):
    """
    Retry decorator with exponential backoff for coroutines.

    Args:
        max_attempts: Maximum number of attempts, the first call included.
        delay: Delay in seconds before the first retry.
        exponential_base: Base multiplier used for backoff.
        jitter: Whether to introduce randomness to delays.
        exceptions: Tuple of exception types that trigger retries.
        retry_if: Optional predicate; an exception it rejects propagates at once.
    """

    def decorator(func: AsyncF) -> AsyncF:
        @wraps(func)
        async def wrapper(*args, **kwargs):
            for attempt in range(max_attempts):
                try:
                    return await func(*args, **kwargs)
                except exceptions as e:
                    if retry_if is not None and not retry_if(e):
                        raise

                    if attempt == max_attempts - 1:
                        logger.error(f"Async function {func.__name__} failed after {max_attempts} attempts: {e}")
                        raise

                    wait_time = delay * (exponential_base ** attempt)
                    if jitter:
                        wait_time *= (0.5 + random.random() * 0.5)

                    logger.warning(
                        f"Async function {func.__name__} attempt {attempt + 1} failed, "
                        f"retrying in {wait_time:.2f}s: {e}"
                    )
                    await asyncio.sleep(wait_time)

        return wrapper  # type: ignore

    return decorator
