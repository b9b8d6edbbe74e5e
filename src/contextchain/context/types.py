"""The public context contract.

A context is passed as a ``ctx`` argument down the call chain to carry
scoped information, API instances and abort signals.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from typing import Any, Callable, Hashable, Optional, TypeVar, Union

from ..cancellation import AbortFuture, AbortSignal
from ..interfaces import ApiItem, ApiRef

T = TypeVar('T')


class Context(ABC):
    """Immutable, derivable context.

    Every ``with_*`` method returns a new context that wraps the current
    one; the current one is never changed.
    """

    @property
    @abstractmethod
    def abort_signal(self) -> AbortSignal:
        """Fires when the current context or any of its parents abort."""
        pass

    @property
    def abort_future(self) -> AbortFuture:
        """Settles when the current context or any of its parents abort.

        Usable from synchronous code; awaiting it needs a running loop.
        """
        return self.abort_signal.future

    @property
    def aborted(self) -> bool:
        return self.abort_signal.aborted

    @property
    @abstractmethod
    def deadline(self) -> Optional[datetime]:
        """The point in time when this context times out, if any."""
        pass

    @abstractmethod
    def with_abort(self) -> tuple["Context", Callable[[], None]]:
        """Create a derived context that can be aborted by the caller.

        The derived context aborts when any parent aborts or when the
        returned function is called.

        Returns:
            The derived context and the function that aborts it
        """
        pass

    @abstractmethod
    def with_timeout(self, timeout: Union[timedelta, float]) -> "Context":
        """Create a derived context that aborts after ``timeout``.

        It also aborts when any parent aborts. The deadline of the derived
        context is never later than that of a parent.

        Args:
            timeout: A timedelta or a number of seconds
        """
        pass

    @abstractmethod
    def with_apis(self, *apis: ApiItem) -> "Context":
        """Create a derived context holding the given set of APIs.

        Each ApiRef requires the existing context to already resolve that
        API, and passes the exact same instance through. Each ApiFactory
        creates a new instance; its dependencies may be among the existing
        context's APIs or among the other given factories.

        Raises:
            ApiResolutionError: If the set cannot be resolved
        """
        pass

    @abstractmethod
    def api(self, ref: ApiRef[T]) -> Optional[T]:
        """Resolve an API reference to an instance registered in the context."""
        pass

    @abstractmethod
    def with_value(
        self,
        key: Hashable,
        value: Union[T, Callable[[Optional[T]], T]],
    ) -> "Context":
        """Create a derived context with a key-value pair set.

        Args:
            key: The key of the value to set
            value: The value, or a function that accepts the previous value
                   (or None if not set yet) and computes the new one
        """
        pass

    @abstractmethod
    def value(self, key: Hashable, default: Any = None) -> Any:
        """Get a stored value by key, or ``default`` if never set."""
        pass
