"""
Condition polling - bounded "wait until" used by navigation and element waits.
"""
import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional, Union

from cdpwright import js
from cdpwright.core.errors import CDPTimeoutError
from cdpwright.core.models import ElementState, WaitSpec, WaitUntil

logger = logging.getLogger("cdpwright")

Predicate = Callable[[], Awaitable[Any]]
Evaluator = Callable[[str], Awaitable[Any]]

NAVIGATION_INTERVAL = 0.1
ELEMENT_INTERVAL = 0.35
FUNCTION_INTERVAL = 0.1
RAF_INTERVAL = 0.016

# Fixed quiet periods standing in for in-flight request tracking.
NETWORK_IDLE_QUIET = {
    WaitUntil.NETWORKIDLE0: 0.5,
    WaitUntil.NETWORKIDLE2: 0.3,
}


async def wait_until(
    predicate: Predicate,
    *,
    timeout: float,
    interval: float,
    description: str = "condition",
) -> Any:
    """
    Poll ``predicate`` until it returns a truthy value and return that value.

    Evaluations are at least ``interval`` apart. An exception raised by the
    predicate counts as "not yet satisfied"; the last one is chained onto the
    CDPTimeoutError raised once ``timeout`` seconds have elapsed.
    """
    loop = asyncio.get_running_loop()
    start = loop.time()
    deadline = start + timeout
    last_error: Optional[BaseException] = None
    attempts = 0

    while True:
        remaining = deadline - loop.time()
        if remaining > 0:
            attempts += 1
            try:
                result = await asyncio.wait_for(predicate(), timeout=remaining)
            except asyncio.TimeoutError as e:
                last_error = e
            except asyncio.CancelledError:
                raise
            except Exception as e:
                last_error = e
                logger.debug(
                    f"Predicate for {description} raised, treating as unsatisfied: {e}",
                    extra={"error_type": type(e).__name__},
                )
            else:
                if result:
                    logger.debug(
                        f"Condition met: {description}",
                        extra={"attempts": attempts, "duration_ms": (loop.time() - start) * 1000},
                    )
                    return result

        remaining = deadline - loop.time()
        if remaining <= 0:
            break
        await asyncio.sleep(min(interval, remaining))

    raise CDPTimeoutError(
        f"Timed out after {timeout}s waiting for {description}",
        timeout=timeout,
        method="wait_until",
        attempts=attempts,
    ) from last_error


async def wait_for_spec(spec: WaitSpec) -> Any:
    return await wait_until(
        spec.predicate,
        timeout=spec.timeout,
        interval=spec.interval,
        description=spec.description,
    )


# =============================================================================
# Canonical predicates
# =============================================================================

def readiness_satisfied(ready_state: Any, mode: WaitUntil) -> bool:
    """Map a document.readyState value onto a navigation mode."""
    if mode is WaitUntil.DOMCONTENTLOADED:
        return ready_state in ("interactive", "complete")
    return ready_state == "complete"


def coerce_wait_until(mode: Union[WaitUntil, str, None]) -> WaitUntil:
    """Unknown modes fall back to 'load'."""
    if mode is None:
        return WaitUntil.LOAD
    try:
        return WaitUntil(mode)
    except ValueError:
        logger.warning(f"Unknown wait_until mode {mode!r}, using 'load'")
        return WaitUntil.LOAD


def navigation_predicate(evaluate: Evaluator, mode: Union[WaitUntil, str] = WaitUntil.LOAD) -> Predicate:
    """
    Build a predicate over ``document.readyState``.

    ``evaluate`` runs an expression in the page and returns its value.
    """
    mode = coerce_wait_until(mode)

    async def check() -> bool:
        ready_state = await evaluate(js.READY_STATE)
        if not readiness_satisfied(ready_state, mode):
            return False
        quiet = NETWORK_IDLE_QUIET.get(mode)
        if quiet:
            await asyncio.sleep(quiet)
        return True

    return check


def element_predicate(evaluate: Evaluator, selector: str, state: Union[ElementState, str] = ElementState.VISIBLE) -> Predicate:
    """Build a predicate for ``selector`` reaching ``state``."""
    state = ElementState(state)

    async def exists() -> bool:
        return await evaluate(js.call_expression(js.ELEMENT_EXISTS, selector)) is True

    async def visible() -> bool:
        if not await exists():
            return False
        return await evaluate(js.call_expression(js.ELEMENT_VISIBLE, selector)) is True

    async def check() -> bool:
        if state is ElementState.ATTACHED:
            return await exists()
        if state is ElementState.DETACHED:
            return not await exists()
        if state is ElementState.VISIBLE:
            return await visible()
        return not await visible()

    return check


def navigation_spec(evaluate: Evaluator, mode: Union[WaitUntil, str], timeout: float,
                    interval: float = NAVIGATION_INTERVAL) -> WaitSpec:
    mode = coerce_wait_until(mode)
    return WaitSpec(
        predicate=navigation_predicate(evaluate, mode),
        interval=interval,
        timeout=timeout,
        wait_until=mode,
        description=f"navigation ({mode.value})",
    )


def element_spec(evaluate: Evaluator, selector: str, state: Union[ElementState, str], timeout: float,
                 interval: float = ELEMENT_INTERVAL) -> WaitSpec:
    state = ElementState(state)
    return WaitSpec(
        predicate=element_predicate(evaluate, selector, state),
        interval=interval,
        timeout=timeout,
        element_state=state,
        description=f'selector "{selector}" to be {state.value}',
    )


def polling_interval(polling: Union[str, float, int, None]) -> float:
    """Translate a ``polling`` option ("raf" or seconds) into an interval."""
    if polling == "raf":
        return RAF_INTERVAL
    if isinstance(polling, (int, float)) and not isinstance(polling, bool) and polling > 0:
        return float(polling)
    return FUNCTION_INTERVAL
