from .numbers import chunk, get_percentage_value

__all__ = [
    "chunk",
    "get_percentage_value",
]
