from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Generic, List, Optional, Sequence, TypeVar

from .errors import ValidationError

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")


@dataclass
class BatchResult(Generic[T, R]):
    item: T
    value: Optional[R] = None
    error: Optional[BaseException] = None

    @property
    def ok(self) -> bool:
        return self.error is None


async def _guarded(item: T, task: Callable[[T], Awaitable[R]], label: str) -> BatchResult[T, R]:
    try:
        value = await task(item)
    except asyncio.CancelledError:
        raise
    except Exception as exc:
        logger.warning("%s failed for %r: %s", label, item, exc)
        return BatchResult(item=item, error=exc)
    return BatchResult(item=item, value=value)


async def run_bounded(
    items: Sequence[T],
    limit: int,
    task: Callable[[T], Awaitable[R]],
    label: str = "task",
) -> List[BatchResult[T, R]]:
    """Run ``task`` over ``items`` in sequential batches of ``limit``.

    Every task in a batch is joined before the next batch starts, so at most
    ``limit`` tasks are ever in flight. A failing item becomes a result with
    ``error`` set and never aborts the batch. Exactly one result is returned
    per input item.
    """

    if limit < 1:
        raise ValidationError(f"Concurrency limit must be at least 1, got {limit}.")

    items = list(items)
    results: List[BatchResult[T, R]] = []
    for start in range(0, len(items), limit):
        batch = items[start:start + limit]
        results.extend(await asyncio.gather(*(_guarded(item, task, label) for item in batch)))
    return results


def successes(results: Sequence[BatchResult[T, R]]) -> List[R]:
    return [result.value for result in results if result.ok and result.value is not None]


fetch_all = run_bounded
