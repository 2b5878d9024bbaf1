"""Repository base classes bound to the ambient unit of work."""

from .base import BaseRepository, SortToken, apply_sorting, parse_sort_tokens

__all__ = ["BaseRepository", "SortToken", "apply_sorting", "parse_sort_tokens"]
