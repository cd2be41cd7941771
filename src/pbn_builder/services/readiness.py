import asyncio
import logging
import time
from collections.abc import Awaitable, Callable

from pbn_builder.errors import ReadinessTimeout

logger = logging.getLogger(__name__)


async def wait_until(
    check: Callable[[], Awaitable[bool]],
    *,
    timeout: float,
    initial_delay: float = 1.0,
    max_delay: float = 10.0,
    description: str = "condition",
) -> int:
    """以指數退避輪詢 check()，直到回傳 True；逾時則拋出 ReadinessTimeout。

    回傳嘗試次數。check() 拋出的例外不會被吞掉。
    """
    deadline = time.monotonic() + timeout
    delay = initial_delay
    attempts = 0
    while True:
        attempts += 1
        if await check():
            logger.info("%s ready after %d attempt(s)", description, attempts)
            return attempts
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            raise ReadinessTimeout(f"Timed out after {timeout:.0f}s waiting for {description}")
        logger.debug("Waiting for %s (attempt %d), sleeping %.1fs", description, attempts, delay)
        await asyncio.sleep(min(delay, remaining))
        delay = min(delay * 2, max_delay)
