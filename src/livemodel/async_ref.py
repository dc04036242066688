"""
Fetch-backed state cell.

An AsyncRef starts with a synchronous default and is replaced by the result
of a background fetch. It is a single-writer cell: at most one refresh task
is in flight, a second refresh() returns the running task, and cancel()
abandons it.

    class Account(Model):
        id = Meta(default=0, type=int)

        def state(self):
            return {**super().state(), 'profile': AsyncRef({}, lambda: api.profile(self.id))}

    account = Account({'id': 3})
    await account.ref('profile').refresh()
    account.profile  # resolved value

State transitions:
    DEFAULT -> REFRESHING -> RESOLVED
    REFRESHING -> (cancel or fetch error) -> previous state
    RESOLVED -> REFRESHING (explicit refresh)
"""

import asyncio
import inspect
import logging
from enum import Enum
from typing import Any, Awaitable, Callable, List, Optional

from livemodel.meta import UNDEFINED

logger = logging.getLogger(__name__)

Subscriber = Callable[[Any, Any], None]


class CellState(Enum):
    DEFAULT = "default"
    REFRESHING = "refreshing"
    RESOLVED = "resolved"


class AsyncRef:
    """Single-writer cell resolved by an awaitable factory."""

    def __init__(self, default: Any = None, fetch: Optional[Callable[[], Awaitable[Any]]] = None):
        """
        Args:
            default: Value reported until the first successful fetch
            fetch: Zero-argument callable returning an awaitable (or a plain value)
        """
        self._default = default
        self._fetch = fetch
        self._resolved: Any = UNDEFINED
        self._state = CellState.DEFAULT
        self._task: Optional[asyncio.Task] = None
        self._subscribers: List[Subscriber] = []

    @property
    def state(self) -> CellState:
        return self._state

    @property
    def value(self) -> Any:
        """Last resolved value, or the default before the first resolution."""
        return self._default if self._resolved is UNDEFINED else self._resolved

    @property
    def pending(self) -> bool:
        return self._task is not None and not self._task.done()

    def subscribe(self, fn: Subscriber) -> None:
        """Call fn(value, prev) whenever the cell resolves."""
        self._subscribers.append(fn)

    def unsubscribe(self, fn: Subscriber) -> None:
        self._subscribers = [s for s in self._subscribers if s is not fn]

    def refresh(self) -> 'asyncio.Task':
        """Start a fetch, or return the one already in flight.

        Must be called with a running event loop.

        Returns:
            The task; awaiting it yields the resolved value.
        """
        if self.pending:
            return self._task
        if self._fetch is None:
            raise ValueError("AsyncRef has no fetch function to refresh from")

        self._state = CellState.REFRESHING
        self._task = asyncio.get_running_loop().create_task(self._run())
        logger.debug(f"AsyncRef refresh started: {self!r}")
        return self._task

    def cancel(self) -> bool:
        """Cancel the in-flight refresh.

        Returns:
            True if a task was cancelled.
        """
        if not self.pending:
            return False
        self._task.cancel()
        self._task = None
        self._settle()
        logger.debug(f"AsyncRef refresh cancelled: {self!r}")
        return True

    def _settle(self) -> None:
        self._state = CellState.DEFAULT if self._resolved is UNDEFINED else CellState.RESOLVED

    async def _run(self) -> Any:
        try:
            result = self._fetch()
            if inspect.isawaitable(result):
                result = await result
        except asyncio.CancelledError:
            # cancel() already settled; only a task cancelled from outside needs it here
            if self._task is asyncio.current_task():
                self._task = None
                self._settle()
            raise
        except Exception as e:
            logger.warning(f"AsyncRef fetch failed: {e}")
            if self._task is asyncio.current_task():
                self._task = None
                self._settle()
            raise

        prev = self.value
        self._resolved = result
        self._state = CellState.RESOLVED
        self._task = None
        self._notify(result, prev)
        return result

    def _notify(self, value: Any, prev: Any) -> None:
        for fn in list(self._subscribers):
            try:
                fn(value, prev)
            except Exception as e:
                logger.warning(f"Error in AsyncRef subscriber: {e}")

    def __repr__(self) -> str:
        return f"AsyncRef(state={self._state.value}, value={self.value!r})"
