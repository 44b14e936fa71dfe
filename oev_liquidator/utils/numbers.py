"""
Number Utilities
================

Integer-safe percentage math for token amounts and list batching.
"""

from typing import Iterator, List, Sequence, TypeVar, Union

from ..config import PERCENTAGE_VALUE_MANTISSA

T = TypeVar("T")


def get_percentage_value(value: Union[int, float], percent: float) -> Union[int, float]:
    """
    Return `percent`% of `value`.

    Token amounts are ints that may exceed float precision, so they are scaled
    by PERCENTAGE_VALUE_MANTISSA and divided back in integer arithmetic
    (truncating towards zero for non-negative amounts).

    Args:
        value: Amount (int for token amounts, float for durations)
        percent: Percentage, e.g. 80 or 200

    Returns:
        Same type as `value`
    """
    if isinstance(value, float):
        return value * percent / 100

    scaled_percent = int(percent * PERCENTAGE_VALUE_MANTISSA)
    return value * scaled_percent // PERCENTAGE_VALUE_MANTISSA // 100


def chunk(items: Sequence[T], size: int) -> Iterator[List[T]]:
    """Yield consecutive slices of at most `size` items."""
    if size <= 0:
        raise ValueError("chunk size must be positive")
    for start in range(0, len(items), size):
        yield list(items[start:start + size])
