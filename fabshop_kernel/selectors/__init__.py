"""Read-only selectors."""

from fabshop_kernel.selectors.base import BaseSelector

__all__ = ["BaseSelector"]
