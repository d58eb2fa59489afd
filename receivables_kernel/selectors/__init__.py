"""Read-only selectors for the receivables kernel."""

from receivables_kernel.selectors.base import BaseSelector
from receivables_kernel.selectors.open_items import OpenItemSelector, sort_open_items, to_open_item

__all__ = ["BaseSelector", "OpenItemSelector", "sort_open_items", "to_open_item"]
