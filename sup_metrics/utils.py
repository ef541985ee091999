import re
import time
import asyncio
from collections import namedtuple

ZERO_ADDRESS = '0x0000000000000000000000000000000000000000'

WEI_PER_TOKEN = 10 ** 18

pattern = re.compile(r"(?<=[a-z])(?=[A-Z])|(?<=[A-Z])(?=[A-Z][a-z])")
def camel_to_snake(a_str):
    return pattern.sub('_', a_str).lower()

def now_ts():
    return int(time.time())

def chunk_list(lst, step):
    """Split a list into chunks of size `step`."""
    return [lst[i:i + step] for i in range(0, len(lst), step)]

def to_tokens(amount):
    """18-decimal fixed point integer -> whole tokens, rounded down."""
    return int(amount) // WEI_PER_TOKEN

# One entry per item of a fan-out.  Exactly one of value / error is meaningful.
Settled = namedtuple('Settled', ['ok', 'value', 'error'])

async def settle_all(coros, limit=None):
    """
    Await every coroutine, at most `limit` at a time, and return a Settled per
    coroutine in input order.  A failing item never aborts its siblings.
    """

    semaphore = asyncio.Semaphore(limit) if limit else None

    async def settle(coro):
        try:
            if semaphore is None:
                value = await coro
            else:
                async with semaphore:
                    value = await coro
        except Exception as e:
            return Settled(False, None, e)
        return Settled(True, value, None)

    return await asyncio.gather(*(settle(coro) for coro in coros))

async def gather_or_cancel(*aws):
    """
    Like asyncio.gather, but the first failure cancels the unfinished siblings
    and waits for them to wind down before it propagates.
    """

    tasks = [asyncio.ensure_future(aw) for aw in aws]
    try:
        return await asyncio.gather(*tasks)
    except BaseException:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise

def successes(items, settled):
    """Pair inputs with their settled values, dropping failures and None values."""
    for item, result in zip(items, settled):
        if result.ok and result.value is not None:
            yield item, result.value
