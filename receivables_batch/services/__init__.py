"""receivables_batch.services -- executor and scanner."""

from receivables_batch.services.executor import BatchExecutor
from receivables_batch.services.suggestion_scanner import (
    SuggestionGroupResult,
    SuggestionScanner,
    SuggestionScanResult,
)

__all__ = [
    "BatchExecutor",
    "SuggestionGroupResult",
    "SuggestionScanner",
    "SuggestionScanResult",
]
