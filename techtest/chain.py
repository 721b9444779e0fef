"""
Ordered queue of deferred operations.

Items run strictly in the order they were enqueued, each awaited before the
next starts. The first failure stops the queue and propagates unchanged.
"""

import inspect
import logging
from typing import Any, Callable, List, Tuple

from techtest.core.exceptions import UsageError

logger = logging.getLogger(__name__)

ChainItem = Callable[[], Any]


class PendingChain:
    """
    Single-use queue of sync or async callables.

    Example:
        chain = PendingChain()
        chain.enqueue("write", lambda: vfs.write("/a", "x"))
        chain.enqueue("check", check_coroutine_function)
        await chain.drain()
    """

    def __init__(self) -> None:
        self._items: List[Tuple[str, ChainItem]] = []
        self._drained = False

    def __len__(self) -> int:
        return len(self._items)

    @property
    def drained(self) -> bool:
        return self._drained

    def check_open(self) -> None:
        """
        Raises:
            UsageError: If the chain has already been drained
        """
        if self._drained:
            raise UsageError("Test session has already run; create a new one")

    def enqueue(self, label: str, call: ChainItem) -> None:
        """Append a deferred operation; ``call`` may return an awaitable."""
        self.check_open()
        self._items.append((label, call))

    async def drain(self) -> None:
        """
        Run all items in order.

        Raises:
            UsageError: If called a second time
            Exception: The first error raised by an item, unchanged
        """
        self.check_open()
        self._drained = True

        for index, (label, call) in enumerate(self._items, start=1):
            logger.debug(f"[{index}/{len(self._items)}] {label}")
            result = call()
            if inspect.isawaitable(result):
                await result
