"""
Batch runner - Executes many workflow items in bounded concurrent batches.

With ``continue_on_fail`` an OperationError for one item is recorded on that
item's result and the remaining items still run. Without it the first error
propagates, the rest of its batch is cancelled and later batches are not
started.
"""

import asyncio
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Generic, TypeVar

from loguru import logger

from lirax.services.errors import OperationError

T = TypeVar("T")


@dataclass
class BatchItemResult(Generic[T]):
    """Outcome of one batch item."""

    index: int
    result: T | None = None
    error: OperationError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def to_dict(self) -> dict[str, Any]:
        if self.error is not None:
            return {"index": self.index, "error": self.error.to_dict()}
        if hasattr(self.result, "to_dict"):
            return {"index": self.index, "result": self.result.to_dict()}
        return {"index": self.index, "result": self.result}


async def run_batch(
    items: Sequence[Any],
    execute: Callable[[Any], Awaitable[T]],
    continue_on_fail: bool = False,
    batch_size: int = 10,
    delay_between_batches_ms: float = 0,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> list[BatchItemResult[T]]:
    """
    Run execute(item) for every item, batch_size items at a time.

    Results are returned in item order.

    Raises:
        OperationError: The first item failure when continue_on_fail is False
    """
    batch_size = max(1, batch_size)
    results: list[BatchItemResult[T]] = []

    async def run_one(index: int, item: Any) -> BatchItemResult[T]:
        try:
            return BatchItemResult(index=index, result=await execute(item))
        except OperationError as e:
            if not continue_on_fail:
                raise
            logger.warning(f"Batch item {index} failed, continuing: {e.message}")
            return BatchItemResult(index=index, error=e)

    for start in range(0, len(items), batch_size):
        chunk = items[start : start + batch_size]
        tasks = [
            asyncio.ensure_future(run_one(start + offset, item))
            for offset, item in enumerate(chunk)
        ]
        try:
            batch_results = await asyncio.gather(*tasks)
        except BaseException:
            # Cancel the failed item's siblings
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise
        results.extend(batch_results)

        more = start + batch_size < len(items)
        if more and delay_between_batches_ms > 0:
            await sleep(delay_between_batches_ms / 1000)

    failed = sum(1 for r in results if not r.ok)
    if failed:
        logger.info(f"Batch finished: {len(results) - failed} ok, {failed} failed")
    return results
