"""Retry with compensation, and explicit best-effort calls."""

from collections.abc import Callable
from typing import Any, TypeVar

from cluster_assembler.exceptions import ClusterAssemblerError, RetryExhaustedError
from cluster_assembler.logging_config import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

DEFAULT_ATTEMPTS = 3


def best_effort(call: Callable[[], Any], description: str) -> bool:
    """Run a call whose failure must not stop the caller.

    Returns:
        True if the call succeeded, False if it raised a cluster assembly error
    """
    try:
        call()
    except ClusterAssemblerError as e:
        logger.warning(f"Ignoring failure to {description}: {e.message}")
        return False
    return True


def attempt_with_compensation(
    attempt: Callable[[], T],
    compensate: Callable[[], Any],
    description: str,
    attempts: int = DEFAULT_ATTEMPTS,
) -> T:
    """Run ``attempt`` until it succeeds, compensating between failures.

    ``compensate`` runs after every failed attempt except the last one and is
    itself best-effort.

    Raises:
        RetryExhaustedError: If every attempt failed; the last failure is the cause
    """
    last_error: ClusterAssemblerError | None = None
    for number in range(1, attempts + 1):
        try:
            return attempt()
        except ClusterAssemblerError as e:
            last_error = e
            logger.warning(f"Attempt {number}/{attempts} to {description} failed: {e.message}")
            if number < attempts:
                best_effort(compensate, f"clean up after failed attempt to {description}")

    raise RetryExhaustedError(
        f"Failed to {description} after {attempts} attempts",
        last_error.format_message() if last_error else None,
    ) from last_error
