"""
Retry utilities with exponential backoff for outbound API calls
(Gemini, Spotify, YouTube, backend storage)
"""

import asyncio
import logging
from functools import wraps
from typing import Callable, Any, Optional, Type, Tuple
import random

logger = logging.getLogger(__name__)


class RetryableError(Exception):
    """Base class for errors that should trigger retries"""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class APIError(RetryableError):
    """Upstream server errors (5xx) that should be retried"""
    pass


class NetworkError(RetryableError):
    """Transport-level errors and timeouts that should be retried"""
    pass


class RateLimitError(RetryableError):
    """Rate limit errors that should be retried with longer backoff"""
    pass


class UpstreamError(Exception):
    """Non-retryable upstream failure (4xx other than 408/429)"""

    def __init__(self, message: str, status_code: int):
        super().__init__(message)
        self.status_code = status_code


def exponential_backoff(
    max_retries: int = 3,
    base_delay: float = 1.0,
    max_delay: float = 60.0,
    exponential_base: float = 2.0,
    jitter: bool = True,
    retryable_exceptions: Tuple[Type[Exception], ...] = (APIError, NetworkError, RateLimitError)
):
    """
    Decorator for exponential backoff retry logic on coroutines

    Args:
        max_retries: Maximum number of retry attempts
        base_delay: Initial delay in seconds
        max_delay: Maximum delay in seconds
        exponential_base: Base for exponential calculation
        jitter: Whether to add random jitter to prevent thundering herd
        retryable_exceptions: Tuple of exception types that should trigger retries
    """
    def decorator(func: Callable) -> Callable:
        @wraps(func)
        async def wrapper(*args, **kwargs) -> Any:
            for attempt in range(max_retries + 1):
                try:
                    return await func(*args, **kwargs)
                except retryable_exceptions as e:
                    if attempt == max_retries:
                        logger.error(f"Function {func.__name__} failed after {max_retries} retries: {str(e)}")
                        raise

                    delay = min(base_delay * (exponential_base ** attempt), max_delay)
                    if jitter:
                        delay = delay * (0.5 + random.random() * 0.5)
                    if isinstance(e, RateLimitError):
                        delay = max(delay, min(30.0, max_delay))

                    logger.warning(
                        f"Function {func.__name__} failed on attempt {attempt + 1}/{max_retries + 1}: {str(e)}. "
                        f"Retrying in {delay:.2f} seconds..."
                    )
                    await asyncio.sleep(delay)

        return wrapper

    return decorator


def convert_http_error(response_status: int, error_message: str) -> Exception:
    """Convert HTTP status codes to appropriate exception types"""
    if response_status == 429:
        return RateLimitError(f"Rate limit exceeded: {error_message}", response_status)
    elif response_status in (408, 502, 503, 504):
        return NetworkError(f"Network error ({response_status}): {error_message}", response_status)
    elif 500 <= response_status < 600:
        return APIError(f"Server error ({response_status}): {error_message}", response_status)
    else:
        return UpstreamError(f"HTTP error ({response_status}): {error_message}", response_status)
