"""Query object base classes."""

from .base import QueryBase, SortDirection

__all__ = ["QueryBase", "SortDirection"]
