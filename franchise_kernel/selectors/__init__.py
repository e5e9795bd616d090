"""Read-only query selectors."""

from franchise_kernel.selectors.base import BaseSelector

__all__ = ["BaseSelector"]
