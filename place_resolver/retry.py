import asyncio
from typing import Awaitable, Callable, Optional

from loguru import logger
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    retry_if_result,
    stop_after_attempt,
    wait_fixed,
)

from place_resolver.config import MAX_ATTEMPTS, RETRY_DELAY_MS
from place_resolver.models import Candidate

StrategyFn = Callable[[], Awaitable[Optional[Candidate]]]


async def _sleep(seconds: float) -> None:
    await asyncio.sleep(seconds)


def _log_attempt(label: str, max_attempts: int):
    def before(retry_state: RetryCallState) -> None:
        logger.debug(f"🔁 {label} attempt {retry_state.attempt_number}/{max_attempts}")
    return before


def _log_failure(label: str):
    def before_sleep(retry_state: RetryCallState) -> None:
        outcome = retry_state.outcome
        if outcome is not None and outcome.failed:
            logger.warning(f"⚠️ {label} attempt {retry_state.attempt_number} failed: {outcome.exception()}")
        else:
            logger.debug(f"{label} attempt {retry_state.attempt_number} found nothing")
    return before_sleep


async def with_retry(
    strategy_fn: StrategyFn,
    max_attempts: int = MAX_ATTEMPTS,
    delay_ms: int = RETRY_DELAY_MS,
    label: str = "strategy",
) -> Optional[Candidate]:
    """
    Call a strategy until it yields a candidate or the attempts run out.

    The wait between attempts is fixed. A raised exception counts the same as
    an empty result; cancellation is not an exception here and propagates.

    Args:
        strategy_fn: Zero-argument coroutine factory for one attempt.
        max_attempts (int): Upper bound on calls.
        delay_ms (int): Pause after each unsuccessful attempt except the last.
        label (str): Name used in log lines.

    Returns:
        Optional[Candidate]: First successful result, or None.
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")

    retrying = AsyncRetrying(
        stop=stop_after_attempt(max_attempts),
        wait=wait_fixed(delay_ms / 1000),
        retry=retry_if_result(lambda r: r is None) | retry_if_exception_type(Exception),
        retry_error_callback=lambda _: None,
        before=_log_attempt(label, max_attempts),
        before_sleep=_log_failure(label),
        sleep=_sleep,
    )
    return await retrying(strategy_fn)
