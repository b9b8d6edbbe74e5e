"""contextchain - scoped context propagation and API resolution.

Usage:
    from contextchain import RootContext, create_api_ref, create_api_factory

    config_ref = create_api_ref("core.config")
    ctx = RootContext.create().with_apis(
        create_api_factory(config_ref, lambda deps: {"debug": True}),
    )
    ctx, abort = ctx.with_abort()
    ctx.api(config_ref)
"""

from .apis import (
    ApiResolutionError,
    CircularDependencyError,
    ContextApis,
    MissingParentInstanceError,
    UnresolvedDependencyError,
    create_apis,
)
from .cancellation import AbortController, AbortFuture, AbortSignal
from .config import ContextConfig
from .context import Context, ContextNode, RootContext
from .interfaces import (
    AnyApiFactory,
    AnyApiRef,
    ApiFactory,
    ApiRef,
    create_api_factory,
    create_api_ref,
)

__all__ = [
    "AbortController",
    "AbortFuture",
    "AbortSignal",
    "AnyApiFactory",
    "AnyApiRef",
    "ApiFactory",
    "ApiRef",
    "ApiResolutionError",
    "CircularDependencyError",
    "Context",
    "ContextApis",
    "ContextConfig",
    "ContextNode",
    "MissingParentInstanceError",
    "RootContext",
    "UnresolvedDependencyError",
    "create_api_factory",
    "create_api_ref",
    "create_apis",
]
