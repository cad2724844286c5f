"""Read-only selectors."""

from lab_kernel.selectors.request_selector import BookedSlot, RequestSelector

__all__ = ["BookedSlot", "RequestSelector"]
