"""Core interfaces for contextchain.

API references and factories are the declarations the resolver and the
context chain operate on. A reference only names an API slot; a factory
describes how to produce the instance for one.
"""

import re
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Callable, Generic, Mapping, Optional, TypeVar, Union

T = TypeVar('T')

# Dot separated lowercase segments, e.g. "core.config" or "plugin.catalog-client"
_API_ID_PATTERN = re.compile(r"^[a-z][a-z0-9]*(?:[._-][a-z0-9]+)*$")


@dataclass(frozen=True)
class ApiRef(Generic[T]):
    """A stable identifier for an API slot.

    Two references name the same API if and only if their ids match. The
    type parameter exists for static checking only; a reference never
    carries an instance.

    Attributes:
        id: Globally unique identifier of the API
    """
    id: str

    def __repr__(self) -> str:
        return f"ApiRef(id={self.id!r})"


@dataclass(frozen=True, eq=False)
class ApiFactory(Generic[T]):
    """Declares how to produce the instance for an API.

    Attributes:
        api: The reference this factory produces an instance for
        deps: Dependency references keyed by the name under which the
              resolved instance is handed to ``produce``
        produce: Called with ``{name: instance}`` for every entry in ``deps``
    """
    api: ApiRef[T]
    deps: Mapping[str, ApiRef] = field(default_factory=dict)
    produce: Optional[Callable[[dict[str, Any]], T]] = None

    def __post_init__(self):
        if not callable(self.produce):
            api_id = getattr(self.api, "id", self.api)
            raise TypeError(f"produce for API {api_id} must be callable")

    def __repr__(self) -> str:
        deps = ", ".join(f"{name}={ref.id}" for name, ref in self.deps.items())
        return f"ApiFactory(api={self.api.id!r}, deps=[{deps}])"


AnyApiRef = ApiRef[Any]
AnyApiFactory = ApiFactory[Any]
ApiItem = Union[AnyApiRef, AnyApiFactory]


def create_api_ref(id: str) -> ApiRef:
    """Create a validated API reference.

    Args:
        id: Identifier such as ``"core.config"``

    Returns:
        An ApiRef for the given id

    Raises:
        ValueError: If the id is empty or malformed
    """
    if not isinstance(id, str) or not _API_ID_PATTERN.match(id):
        raise ValueError(
            f"API id must be dot separated lowercase segments, got {id!r}"
        )
    return ApiRef(id)


def create_api_factory(
    api: ApiRef[T],
    produce: Callable[[dict[str, Any]], T],
    deps: Optional[Mapping[str, ApiRef]] = None,
) -> ApiFactory[T]:
    """Create an API factory declaration.

    Args:
        api: The reference the factory produces an instance for
        produce: Builds the instance from resolved dependencies
        deps: Dependency references keyed by name (default: none)

    Returns:
        A frozen ApiFactory

    Raises:
        TypeError: If ``api`` or any dependency is not an ApiRef, or
                   ``produce`` is not callable
    """
    if not isinstance(api, ApiRef):
        raise TypeError(f"api must be an ApiRef, got {type(api).__name__}")

    deps = dict(deps or {})
    for name, ref in deps.items():
        if not isinstance(ref, ApiRef):
            raise TypeError(
                f"Dependency {name!r} of API {api.id} must be an ApiRef, "
                f"got {type(ref).__name__}"
            )

    return ApiFactory(api=api, deps=MappingProxyType(deps), produce=produce)


def is_factory(item: ApiItem) -> bool:
    """Return True if the item is a factory rather than a bare reference."""
    return isinstance(item, ApiFactory)
