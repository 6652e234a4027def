"""Cooperative cancellation for suspension points (generation, tool calls)."""

import asyncio
import contextvars
import inspect
import logging
from collections.abc import Awaitable
from typing import TypeVar

from plangraph.errors import StepAborted

logger = logging.getLogger(__name__)

T = TypeVar("T")


class AbortSignal:
    """
    External cancellation signal shared by a run.

    Nodes wrap every suspension point in `race()`; an abort or timeout
    surfaces as an exception that the node folds into its ordinary
    failure path.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self.reason: str | None = None

    @property
    def aborted(self) -> bool:
        return self._event.is_set()

    def abort(self, reason: str = "Aborted") -> None:
        if not self._event.is_set():
            self.reason = reason
            self._event.set()
            logger.info(f"⏹ Abort requested: {reason}")

    def raise_if_aborted(self) -> None:
        if self.aborted:
            raise StepAborted(self.reason or "Aborted")

    async def race(self, awaitable: Awaitable[T], timeout: float | None = None) -> T:
        """
        Await `awaitable` unless the signal fires or `timeout` elapses first.

        Raises:
            StepAborted: the signal fired before the awaitable finished
            TimeoutError: the awaitable did not finish within `timeout`
        """
        if self.aborted:
            if inspect.iscoroutine(awaitable):
                awaitable.close()
            raise StepAborted(self.reason or "Aborted")
        work = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self._event.wait())
        try:
            done, _ = await asyncio.wait(
                {work, waiter}, timeout=timeout, return_when=asyncio.FIRST_COMPLETED
            )
            if work in done:
                return work.result()
            work.cancel()
            if waiter in done:
                raise StepAborted(self.reason or "Aborted")
            raise TimeoutError(f"Step timed out after {timeout}s")
        finally:
            waiter.cancel()


# Abort signal of the graph run executing in the current task. Set by
# WorkflowGraph.execute so nodes can guard their suspension points.
_current_abort: contextvars.ContextVar[AbortSignal | None] = contextvars.ContextVar(
    "_current_abort", default=None
)


def get_current_abort() -> AbortSignal | None:
    return _current_abort.get()


def set_current_abort(signal: AbortSignal | None) -> contextvars.Token:
    return _current_abort.set(signal)


def reset_current_abort(token: contextvars.Token) -> None:
    _current_abort.reset(token)
