from .batching import chunk_by_char_limit, halve
from .text import extract_placeholders, placeholders_match

__all__ = [
    "chunk_by_char_limit",
    "halve",
    "extract_placeholders",
    "placeholders_match",
]
