from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Coroutine, Iterable, Literal, Optional, Set

from hear_and_there.errors import PartialItemFailure, RunCancelled, ValidationError

logger = logging.getLogger(__name__)

ItemStatus = Literal["complete", "failed"]


@dataclass(frozen=True, slots=True)
class WorkItem:
    index: int
    kind: str
    payload: Any = None


@dataclass(frozen=True, slots=True)
class ItemOutcome:
    index: int
    kind: str
    status: ItemStatus
    value: Any = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status == "complete"


def _check_indices(items: list[WorkItem]) -> None:
    indices = sorted(item.index for item in items)
    if indices != list(range(len(items))):
        raise ValidationError(
            f"Work item indices must be unique and cover 0..{len(items) - 1}, got {indices}"
        )


async def fan_out(
    items: Iterable[WorkItem],
    task_fn: Callable[[WorkItem], Awaitable[Any]],
    *,
    concurrency: Optional[int] = None,
) -> list[ItemOutcome]:
    """
    Run `task_fn` for every item concurrently and collect one outcome per item.

    The result has the same length as `items` and position i holds the outcome of the
    item whose index is i. A failing item yields a `failed` outcome instead of failing
    the batch. RunCancelled from any item cancels the remaining items and propagates.
    """
    work = list(items)
    _check_indices(work)
    if not work:
        return []

    semaphore = asyncio.Semaphore(max(1, concurrency)) if concurrency else None

    async def _run(item: WorkItem) -> ItemOutcome:
        try:
            if semaphore is None:
                value = await task_fn(item)
            else:
                async with semaphore:
                    value = await task_fn(item)
        except Exception as exc:
            failure = PartialItemFailure(item.index, exc)
            logger.warning(
                "Work item failed. index=%s kind=%s error=%s",
                item.index,
                item.kind,
                type(exc).__name__,
            )
            return ItemOutcome(index=item.index, kind=item.kind, status="failed", error=str(failure))
        return ItemOutcome(index=item.index, kind=item.kind, status="complete", value=value)

    tasks = [asyncio.create_task(_run(item)) for item in work]
    try:
        outcomes = await asyncio.gather(*tasks)
    except (RunCancelled, asyncio.CancelledError):
        for task in tasks:
            if not task.done():
                task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise

    ordered: list[Optional[ItemOutcome]] = [None] * len(work)
    for outcome in outcomes:
        ordered[outcome.index] = outcome
    return [o for o in ordered if o is not None]


class DetachedTasks:
    """
    Owner of fire-and-forget work started on behalf of a request.

    A detached task never propagates its failure to the code that started it; the
    failure is logged from the task's done-callback instead.
    """

    def __init__(self) -> None:
        self._tasks: Set[asyncio.Task] = set()

    def spawn(self, coro: Coroutine[Any, Any, Any], *, name: str) -> asyncio.Task:
        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._log_task_result)
        return task

    @property
    def pending(self) -> int:
        return sum(1 for t in self._tasks if not t.done())

    async def drain(self, *, timeout_seconds: Optional[float] = None) -> None:
        """Wait for every running detached task, e.g. before process shutdown."""
        pending = [t for t in self._tasks if not t.done()]
        if not pending:
            return
        done, still_pending = await asyncio.wait(pending, timeout=timeout_seconds)
        if still_pending:
            logger.warning(
                "Detached tasks still running after drain timeout. pending=%d timeout_seconds=%s",
                len(still_pending),
                timeout_seconds,
            )

    def _log_task_result(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        try:
            task.result()
        except asyncio.CancelledError:
            return
        except Exception:
            logger.exception("Detached task failed. name=%s", task.get_name())
