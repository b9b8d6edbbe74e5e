"""In-process cancellation primitives.

An AbortController is a one-shot broadcaster. Its AbortSignal is the
read-only view handed to consumers: listeners can be attached to it and it
exposes an AbortFuture that settles at the same moment the listeners are
scheduled. Both are driven by the single ``abort()`` call, so they always
fire together.
"""

import asyncio
import functools
import logging
import time
import weakref
from typing import Callable, Generator, Optional

logger = logging.getLogger(__name__)

AbortListener = Callable[[], None]


def _running_loop() -> Optional[asyncio.AbstractEventLoop]:
    try:
        return asyncio.get_running_loop()
    except RuntimeError:
        return None


class AbortFuture:
    """Awaitable that settles once the signal fires.

    Not bound to any event loop: every ``await`` waits on its own loop
    future, so cancelling one waiter does not affect the others.
    """

    def __init__(self, controller: "AbortController"):
        self._controller = controller

    def done(self) -> bool:
        return self._controller.aborted

    def add_done_callback(self, fn: Callable[["AbortFuture"], None]) -> None:
        """Call ``fn(self)`` once when the signal fires."""
        self._controller._add_listener(functools.partial(fn, self))

    def remove_done_callback(self, fn: Callable[["AbortFuture"], None]) -> int:
        """Remove a done callback. Returns the number of callbacks removed."""
        controller = self._controller
        matches = [
            listener for listener in controller._listeners
            if isinstance(listener, functools.partial)
            and listener.func is fn
            and listener.args == (self,)
        ]
        for listener in matches:
            controller._remove_listener(listener)
        return len(matches)

    def __await__(self) -> Generator:
        controller = self._controller
        if controller.aborted:
            return
        waiter = controller._create_waiter(asyncio.get_running_loop())
        yield from waiter.__await__()

    def __repr__(self) -> str:
        return f"AbortFuture(done={self.done()})"


class AbortSignal:
    """Read-only view of an AbortController.

    Usage:
        signal.add_listener(lambda: print("aborted"))
        await signal.wait()
    """

    def __init__(self, controller: "AbortController"):
        self._controller = controller
        self.future = AbortFuture(controller)

    @property
    def aborted(self) -> bool:
        """Whether the signal has fired."""
        return self._controller.aborted

    async def wait(self) -> None:
        """Wait until the signal fires."""
        await self.future

    def add_listener(self, listener: AbortListener) -> None:
        """Register a callback to be invoked once when the signal fires.

        Listeners added after the signal has fired are scheduled right away.
        """
        self._controller._add_listener(listener)

    def remove_listener(self, listener: AbortListener) -> None:
        """Unregister a callback. Unknown callbacks are ignored."""
        self._controller._remove_listener(listener)

    def __repr__(self) -> str:
        return f"AbortSignal(aborted={self.aborted})"


class AbortController:
    """One-shot abort broadcaster.

    ``abort()`` fires at most once. Linked child controllers are aborted
    synchronously, so ``aborted`` is consistent down a chain immediately;
    listeners run on a later turn of the event loop.

    A parent holds its children weakly. A child that has listeners or
    pending waiters is pinned by its parent, and transitively by every
    ancestor, until it aborts or its last waiter goes away.
    """

    def __init__(self):
        self._aborted = False
        self._parent: Optional[AbortController] = None
        self._listeners: list[AbortListener] = []
        self._waiters: list[asyncio.Future] = []
        self._children: "weakref.WeakSet[AbortController]" = weakref.WeakSet()
        self._pinned: set[AbortController] = set()
        self._expires_at: Optional[float] = None
        self._timer: Optional[asyncio.TimerHandle] = None
        self.signal = AbortSignal(self)

    @property
    def aborted(self) -> bool:
        if not self._aborted:
            self._abort_if_overdue()
        return self._aborted

    def abort(self) -> None:
        """Fire the signal. Calling this again is a no-op."""
        if self._aborted:
            return
        self._aborted = True
        self._expires_at = None

        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

        parent, self._parent = self._parent, None
        if parent is not None:
            parent._release(self)

        children = list(self._children)
        self._children = weakref.WeakSet()
        self._pinned = set()
        for child in children:
            child.abort()

        listeners, self._listeners = self._listeners, []
        self._dispatch(listeners)

        waiters, self._waiters = self._waiters, []
        for waiter in waiters:
            if not waiter.done():
                waiter.set_result(None)

        logger.debug(
            f"Abort fired ({len(listeners)} listeners, {len(waiters)} waiters, "
            f"{len(children)} linked)"
        )

    def link(self, parent: AbortSignal) -> None:
        """Abort this controller whenever ``parent`` fires."""
        parent_controller = parent._controller
        if parent_controller.aborted:
            self.abort()
            return
        self._parent = parent_controller
        parent_controller._children.add(self)
        self._refresh_pin()

    def abort_after(
        self,
        seconds: float,
        loop: Optional[asyncio.AbstractEventLoop] = None,
    ) -> None:
        """Schedule a one-shot abort after ``seconds``.

        The timer starts right away on ``loop`` or the running loop. Without
        either it starts the first time the signal is observed inside a
        running loop; reading ``aborted`` after the expiry fires it as well.
        The timer is released as soon as the controller aborts for any
        reason.
        """
        if self._aborted:
            return
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        self._expires_at = time.monotonic() + seconds

        if loop is None:
            loop = _running_loop()
        if loop is not None:
            self._timer = loop.call_later(seconds, self._expire)

    def _arm(self) -> None:
        loop = _running_loop()
        if loop is None:
            return
        node = self
        while node is not None:
            if node._expires_at is not None and node._timer is None:
                delay = max(0.0, node._expires_at - time.monotonic())
                node._timer = loop.call_later(delay, node._expire)
            node = node._parent

    def _abort_if_overdue(self) -> None:
        now = time.monotonic()
        node = self
        while node is not None:
            if node._expires_at is not None and now >= node._expires_at:
                node.abort()
                return
            node = node._parent

    def _expire(self) -> None:
        self._timer = None
        logger.debug("Abort timer expired")
        self.abort()

    def _has_waiters(self) -> bool:
        return bool(self._listeners or self._waiters or self._pinned)

    def _refresh_pin(self) -> None:
        parent = self._parent
        if parent is None or self._aborted:
            return
        if self._has_waiters():
            if self not in parent._pinned:
                parent._pinned.add(self)
                parent._refresh_pin()
        elif self in parent._pinned:
            parent._pinned.discard(self)
            parent._refresh_pin()

    def _release(self, child: "AbortController") -> None:
        self._children.discard(child)
        if child in self._pinned:
            self._pinned.discard(child)
            self._refresh_pin()

    def _add_listener(self, listener: AbortListener) -> None:
        if self.aborted:
            self._dispatch([listener])
            return
        self._listeners.append(listener)
        self._refresh_pin()
        self._arm()

    def _remove_listener(self, listener: AbortListener) -> None:
        try:
            self._listeners.remove(listener)
        except ValueError:
            return
        self._refresh_pin()

    def _create_waiter(self, loop: asyncio.AbstractEventLoop) -> asyncio.Future:
        waiter = loop.create_future()
        if self.aborted:
            waiter.set_result(None)
            return waiter
        self._waiters.append(waiter)
        waiter.add_done_callback(self._discard_waiter)
        self._refresh_pin()
        self._arm()
        return waiter

    def _discard_waiter(self, waiter: asyncio.Future) -> None:
        if waiter in self._waiters:
            self._waiters.remove(waiter)
            self._refresh_pin()

    def _dispatch(self, listeners: list[AbortListener]) -> None:
        loop = _running_loop()
        for listener in listeners:
            if loop is not None:
                loop.call_soon(self._invoke, listener)
            else:
                self._invoke(listener)

    @staticmethod
    def _invoke(listener: AbortListener) -> None:
        try:
            listener()
        except Exception:
            logger.exception("Abort listener raised")

    def __repr__(self) -> str:
        return f"AbortController(aborted={self._aborted})"
