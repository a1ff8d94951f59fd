import asyncio
from collections.abc import Callable


async def wait_until(pred: Callable[[], bool], *, timeout: float = 2.0, interval: float = 0.005, what: str = ""):
    """Poll `pred()` until it is true; fail the test on timeout."""
    try:
        async with asyncio.timeout(timeout):
            while not pred():
                await asyncio.sleep(interval)
    except TimeoutError:
        raise AssertionError(f"condition not reached within {timeout}s: {what}") from None
