from __future__ import annotations

from typing import Callable, List, Sequence, TypeVar

T = TypeVar("T")


def chunk_by_char_limit(
    items: Sequence[T],
    *,
    max_chars: int,
    max_items: int,
    size_of: Callable[[T], int] = len,
) -> List[List[T]]:
    """Greedy split preserving order. An item larger than ``max_chars`` gets its own chunk."""
    batches: List[List[T]] = []
    current: List[T] = []
    char_count = 0
    for item in items:
        item_len = size_of(item)
        if current and (char_count + item_len > max_chars or len(current) >= max_items):
            batches.append(current)
            current = []
            char_count = 0
        current.append(item)
        char_count += item_len
    if current:
        batches.append(current)
    return batches


def halve(items: Sequence[T]) -> List[List[T]]:
    if len(items) <= 1:
        return [list(items)]
    middle = (len(items) + 1) // 2
    return [list(items[:middle]), list(items[middle:])]
