"""Context chain.

Immutable contexts carrying abort signals, deadlines, API instances and
values down a call chain.
"""

from .types import Context
from .root import ContextNode, RootContext

__all__ = ["Context", "ContextNode", "RootContext"]
