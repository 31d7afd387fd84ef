"""Bounded-concurrency runner for per-product work.

``concurrency`` worker coroutines pull items from one shared iterator, so
at most that many items are in flight and no more than that many tasks ever
exist, however long the input is. A failing item is recorded on its own
``TaskOutcome`` and never cancels the others.
"""
import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable, Generic, Iterable, List, Optional, TypeVar

import structlog

logger = structlog.get_logger(__name__)

ItemT = TypeVar("ItemT")
ResultT = TypeVar("ResultT")


@dataclass
class TaskOutcome(Generic[ItemT, ResultT]):
    """Result of one item: either ``result`` or the exception it raised."""
    index: int
    item: ItemT
    result: Optional[ResultT] = None
    error: Optional[BaseException] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class BoundedScheduler:
    """Run an async worker over many items with a fixed ceiling."""

    def __init__(self, concurrency: int = 6):
        if concurrency < 1:
            raise ValueError("concurrency must be >= 1")
        self.concurrency = concurrency
        self.in_flight = 0
        self.max_in_flight = 0

    async def run(
        self,
        items: Iterable[ItemT],
        worker: Callable[[ItemT], Awaitable[ResultT]],
    ) -> List[TaskOutcome[ItemT, ResultT]]:
        """Process every item and return outcomes in input order.

        Args:
            items: Items to process; consumed lazily
            worker: Coroutine function applied to each item

        Returns:
            One TaskOutcome per item
        """
        source = iter(enumerate(items))
        outcomes: List[TaskOutcome[ItemT, ResultT]] = []

        async def drain() -> None:
            # next() on a shared iterator is safe: no await between check and take
            for index, item in source:
                outcome: TaskOutcome[ItemT, ResultT] = TaskOutcome(index=index, item=item)
                self.in_flight += 1
                self.max_in_flight = max(self.max_in_flight, self.in_flight)
                try:
                    outcome.result = await worker(item)
                except Exception as e:
                    outcome.error = e
                    logger.warning(
                        "scheduled_task_failed",
                        index=index,
                        error=str(e),
                        error_type=type(e).__name__,
                    )
                finally:
                    self.in_flight -= 1
                outcomes.append(outcome)

        await asyncio.gather(*(drain() for _ in range(self.concurrency)))
        outcomes.sort(key=lambda o: o.index)
        return outcomes
