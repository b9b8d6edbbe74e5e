"""Root context creation and the immutable context node."""

import logging
from collections import ChainMap
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Hashable, Iterator, Mapping, Optional, Union

from ..apis import ContextApis, create_apis
from ..cancellation import AbortController, AbortSignal
from ..config import ContextConfig
from ..interfaces import ApiItem, ApiRef
from .types import Context

logger = logging.getLogger(__name__)

_MISSING = object()


class ContextNode(Context):
    """One immutable link in a context chain.

    Only the fields a derivation sets are stored on the node; everything
    else is looked up through the parent. Several nodes may share a parent.
    """

    def __init__(
        self,
        parent: Optional["ContextNode"] = None,
        controller: Optional[AbortController] = None,
        deadline: Optional[datetime] = None,
        apis: Optional[ContextApis] = None,
        values: Optional[Mapping[Hashable, Any]] = None,
    ):
        if parent is None and controller is None:
            raise ValueError("A root context needs its own abort controller")
        self._parent = parent
        self._controller = controller
        self._deadline = deadline
        self._apis = apis
        self._values = values

    def _lineage(self) -> Iterator["ContextNode"]:
        node = self
        while node is not None:
            yield node
            node = node._parent

    @property
    def parent(self) -> Optional["ContextNode"]:
        return self._parent

    @property
    def abort_signal(self) -> AbortSignal:
        for node in self._lineage():
            if node._controller is not None:
                return node._controller.signal
        raise AssertionError("context chain has no abort controller")

    @property
    def deadline(self) -> Optional[datetime]:
        for node in self._lineage():
            if node._deadline is not None:
                return node._deadline
        return None

    def with_abort(self) -> tuple["ContextNode", Callable[[], None]]:
        controller = AbortController()
        controller.link(self.abort_signal)
        return ContextNode(parent=self, controller=controller), controller.abort

    def with_timeout(self, timeout: Union[timedelta, float]) -> "ContextNode":
        seconds = (
            timeout.total_seconds() if isinstance(timeout, timedelta) else float(timeout)
        )
        if seconds < 0:
            raise ValueError(f"timeout must not be negative, got {seconds}s")

        deadline = datetime.now(timezone.utc) + timedelta(seconds=seconds)
        parent_deadline = self.deadline
        if parent_deadline is not None and parent_deadline < deadline:
            deadline = parent_deadline

        controller = AbortController()
        controller.link(self.abort_signal)
        controller.abort_after(seconds)
        return ContextNode(parent=self, controller=controller, deadline=deadline)

    def with_apis(self, *apis: ApiItem) -> "ContextNode":
        previous = ChainMap(
            *(node._apis for node in self._lineage() if node._apis is not None)
        )
        return ContextNode(parent=self, apis=create_apis(apis, previous))

    def api(self, ref: ApiRef) -> Any:
        for node in self._lineage():
            if node._apis is not None and ref.id in node._apis:
                return node._apis[ref.id]
        return None

    def with_value(self, key: Hashable, value: Any) -> "ContextNode":
        if callable(value):
            value = value(self.value(key))
        return ContextNode(parent=self, values={key: value})

    def value(self, key: Hashable, default: Any = None) -> Any:
        for node in self._lineage():
            if node._values is not None:
                found = node._values.get(key, _MISSING)
                if found is not _MISSING:
                    return found
        return default

    def __repr__(self) -> str:
        depth = sum(1 for _ in self._lineage())
        return (
            f"ContextNode(depth={depth}, aborted={self.aborted}, "
            f"deadline={self.deadline})"
        )


class RootContext:
    """Entry point for creating context chains.

    Usage:
        ctx = RootContext.create()
        ctx, abort = ctx.with_abort()
        ctx = ctx.with_value("request-id", "abc").with_timeout(5.0)
    """

    @staticmethod
    def create() -> ContextNode:
        """Create a root context that never aborts on its own."""
        return ContextNode(controller=AbortController())

    @staticmethod
    def from_config(config: ContextConfig) -> ContextNode:
        """Create a root context from configuration.

        Values from the config are set on the chain in order, and a default
        timeout, if configured, is applied last.

        Raises:
            ValueError: If the configuration is invalid
        """
        errors = config.validate()
        if errors:
            raise ValueError(f"Invalid configuration: {errors}")

        if config.debug:
            logging.getLogger("contextchain").setLevel(logging.DEBUG)

        ctx = RootContext.create()
        for key, value in config.values.items():
            # Bind the value so callables are stored as-is
            ctx = ctx.with_value(key, lambda _previous, value=value: value)
        if config.default_timeout_seconds is not None:
            ctx = ctx.with_timeout(config.default_timeout_seconds)

        logger.info(
            f"Created root context for instance: {config.instance_id} "
            f"({len(config.values)} values, timeout={config.default_timeout_seconds})"
        )
        return ctx
