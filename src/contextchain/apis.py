"""API instance resolution.

Turns a list of references and factories into a new set of API instances,
either by transferring instances over from a previous set or by invoking
factories in dependency order.
"""

import logging
from types import MappingProxyType
from typing import Any, Iterable, Mapping, Optional

from .interfaces import AnyApiFactory, ApiItem, is_factory

logger = logging.getLogger(__name__)

# A set of API instances, keyed by their ApiRef id
ContextApis = Mapping[str, Any]


class ApiResolutionError(ValueError):
    """Base class for failures while resolving a set of APIs.

    Attributes:
        api_id: The id the resolution failed on
    """

    def __init__(self, message: str, api_id: str):
        super().__init__(message)
        self.api_id = api_id


class MissingParentInstanceError(ApiResolutionError):
    """A bare reference was given but the previous set has no such instance."""

    def __init__(self, api_id: str):
        super().__init__(
            f"The desired API {api_id} did not exist in the parent context",
            api_id,
        )


class CircularDependencyError(ApiResolutionError):
    """A factory transitively depends on itself."""

    def __init__(self, chain: list[str]):
        super().__init__(
            f"Circular API dependencies: {' -> '.join(chain)}",
            chain[-1],
        )
        self.chain = chain


class UnresolvedDependencyError(ApiResolutionError):
    """A dependency is neither declared as a factory nor present upstream."""

    def __init__(self, chain: list[str]):
        super().__init__(
            f"Could not resolve API dependency in chain, {' -> '.join(chain)}",
            chain[-1],
        )
        self.chain = chain


def create_apis(
    items: Iterable[ApiItem],
    previous: Optional[ContextApis] = None,
) -> ContextApis:
    """Create a new set of API instances.

    Each bare reference transfers the exact instance from ``previous``. Each
    factory is invoked once, after every factory it depends on, and may
    depend on other given factories or on anything present in ``previous``.
    Instances from ``previous`` that are not referenced are not carried over.

    Args:
        items: References to transfer and factories to instantiate
        previous: The instance set of the parent context, if any

    Returns:
        A new read-only instance set

    Raises:
        MissingParentInstanceError: A reference is absent from ``previous``
        CircularDependencyError: Factories depend on each other in a cycle
        UnresolvedDependencyError: A dependency cannot be satisfied
    """
    items = list(items)
    previous = previous if previous is not None else {}
    factories = [item for item in items if is_factory(item)]
    result: dict[str, Any] = {}

    # Transfer over everything that has a bare ref in the new set
    for item in items:
        if is_factory(item):
            continue
        if item.id not in previous:
            raise MissingParentInstanceError(item.id)
        result[item.id] = previous[item.id]

    # Arrange factories so that dependencies come before their dependents
    queue: list[AnyApiFactory] = []

    def enqueue_depth_first(factory: AnyApiFactory, seen: list[str]) -> None:
        for dep_ref in factory.deps.values():
            if dep_ref.id in seen:
                raise CircularDependencyError([*seen, dep_ref.id])

            dep_factory = next(
                (f for f in factories if f.api.id == dep_ref.id), None
            )
            if dep_factory is not None:
                enqueue_depth_first(dep_factory, [*seen, dep_ref.id])
            elif dep_ref.id not in previous:
                raise UnresolvedDependencyError([*seen, dep_ref.id])

        if not any(queued is factory for queued in queue):
            queue.append(factory)

    for factory in factories:
        enqueue_depth_first(factory, [factory.api.id])

    for factory in queue:
        # A replacement built in this same resolution wins over the previous one
        dependencies = {
            name: result[ref.id] if ref.id in result else previous.get(ref.id)
            for name, ref in factory.deps.items()
        }
        result[factory.api.id] = factory.produce(dependencies)

    logger.debug(
        f"Resolved {len(result)} APIs "
        f"({len(items) - len(factories)} transferred, {len(queue)} built)"
    )
    return MappingProxyType(result)
