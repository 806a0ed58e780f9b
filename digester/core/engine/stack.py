"""
Array-backed stack used for the engine's object, parameter, text and match
stacks.
"""

from typing import Generic, Iterator, List, TypeVar

T = TypeVar("T")


class EmptyStackError(IndexError):
    """Raised when popping or peeking past the bottom of a stack."""

    pass


class ArrayStack(Generic[T]):
    """LIFO stack with indexed peeking from the top."""

    def __init__(self) -> None:
        self._items: List[T] = []

    def push(self, item: T) -> T:
        self._items.append(item)
        return item

    def pop(self) -> T:
        if not self._items:
            raise EmptyStackError("pop from empty stack")
        return self._items.pop()

    def peek(self, n: int = 0) -> T:
        """Return the item ``n`` positions below the top without removing it."""
        if n < 0 or n >= len(self._items):
            raise EmptyStackError(f"no item at depth {n} (size {len(self._items)})")
        return self._items[-(n + 1)]

    def bottom(self) -> T:
        if not self._items:
            raise EmptyStackError("bottom of empty stack")
        return self._items[0]

    def clear(self) -> None:
        self._items.clear()

    def empty(self) -> bool:
        return not self._items

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[T]:
        # top first, like walking peek(0), peek(1), ...
        return reversed(self._items)

    def __repr__(self) -> str:
        return f"ArrayStack({self._items!r})"
