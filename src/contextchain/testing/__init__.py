"""Testing utilities for contextchain."""

from itertools import permutations
from typing import Iterator, Sequence, TypeVar

T = TypeVar('T')


def all_permutations(items: Sequence[T]) -> Iterator[list[T]]:
    """Yield every ordering of ``items``.

    Used to check that API resolution does not depend on declaration order.
    """
    for ordering in permutations(items):
        yield list(ordering)


__all__ = ["all_permutations"]
