"""
Module: receivables_engines.allocation
Responsibility:
    Split a payment across ordered open debt documents, and order those
    documents for a given allocation mode.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import receivables_kernel.domain and logging.

Invariants enforced:
    - Conservation: total_allocated + unallocated == source_amount.
    - Each line is min(remaining, outstanding) of its target, in target
      order; targets with nothing outstanding receive no line.
    - Purity: no clock access, no I/O.  Identical inputs give identical
      results, which is what makes a dry-run preview safe.

Failure modes:
    - None.  A non-positive amount or an empty target list yields no
      lines and leaves the whole amount unallocated.

Usage:
    from receivables_engines.allocation import AllocationEngine

    engine = AllocationEngine()
    ordered = engine.order_targets(open_items, AllocationMode.FIFO)
    result = engine.allocate(Decimal("600000"), ordered)
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from uuid import UUID

from receivables_engines.tracer import traced_engine
from receivables_kernel.domain.dtos import AllocationTargetRef, OpenItem
from receivables_kernel.domain.types import AllocationMode, TargetType
from receivables_kernel.logging_config import get_logger

logger = get_logger("engines.allocation")

_ZERO = Decimal("0")


@dataclass(frozen=True)
class AllocationLine:
    """
    Amount assigned to one debt document.

    Guarantees:
        - ``amount`` > 0.
    """

    target_id: UUID
    target_type: TargetType
    amount: Decimal

    def to_target_ref(self) -> AllocationTargetRef:
        return AllocationTargetRef(self.target_id, self.target_type, self.amount)


@dataclass(frozen=True)
class AllocationResult:
    """
    Complete allocation result.

    Guarantees:
        - ``total_allocated + unallocated == source_amount``.
    Non-goals:
        - Does not persist the result; callers are responsible for storage.
    """

    source_amount: Decimal
    lines: tuple[AllocationLine, ...]
    total_allocated: Decimal
    unallocated: Decimal

    @property
    def is_fully_allocated(self) -> bool:
        return self.unallocated <= _ZERO

    @property
    def allocation_count(self) -> int:
        return len(self.lines)


class AllocationEngine:
    """
    Greedy, order-preserving allocation of a payment.

    Contract:
        Pure functions.  No I/O, no database access.
    Guarantees:
        - Lines follow target order; the first targets are paid in full
          before later ones receive anything.
    Non-goals:
        - Does not load targets or decide which mode to use; callers pass
          items already sorted by the open-item resolver.
    """

    @traced_engine("allocation", "1.0", fingerprint_fields=("amount", "targets"))
    def allocate(self, amount: Decimal, targets: Sequence[OpenItem]) -> AllocationResult:
        """
        Allocate ``amount`` across ``targets`` in order.

        Args:
            amount: Money available to allocate.
            targets: Open items in the order they should be paid.

        Returns:
            AllocationResult with one line per target that received money.
        """
        if amount <= _ZERO or not targets:
            if targets:
                logger.debug("allocation_nothing_to_allocate", extra={"amount": str(amount)})
            return AllocationResult(
                source_amount=amount,
                lines=(),
                total_allocated=_ZERO,
                unallocated=amount,
            )

        remaining = amount
        lines: list[AllocationLine] = []
        for target in targets:
            if remaining <= _ZERO:
                break
            allocated = min(remaining, target.outstanding_amount)
            if allocated <= _ZERO:
                continue
            lines.append(AllocationLine(target.target_id, target.target_type, allocated))
            remaining -= allocated

        total_allocated = amount - remaining
        logger.debug(
            "allocation_computed",
            extra={
                "amount": str(amount),
                "target_count": len(targets),
                "line_count": len(lines),
                "unallocated": str(remaining),
            },
        )
        return AllocationResult(
            source_amount=amount,
            lines=tuple(lines),
            total_allocated=total_allocated,
            unallocated=remaining,
        )

    def order_targets(
        self,
        items: Sequence[OpenItem],
        mode: AllocationMode,
        selected: Sequence[AllocationTargetRef] = (),
        applied_period_start: date | None = None,
    ) -> list[OpenItem]:
        """
        Order resolver-sorted open items for ``mode``.

        MANUAL / BY_INVOICE keep the caller's selection order and drop
        selections that are no longer open; with nothing usable selected
        they fall back to resolver order.  BY_PERIOD moves items dated in
        the applied month to the front.
        """
        if mode.uses_selection and selected:
            by_key = {(item.target_type, item.target_id): item for item in items}
            ordered: list[OpenItem] = []
            seen: set[tuple[TargetType, UUID]] = set()
            for ref in selected:
                item = by_key.get(ref.key)
                if item is not None and ref.key not in seen:
                    ordered.append(item)
                    seen.add(ref.key)
            if ordered:
                return ordered
            logger.info(
                "allocation_selection_fallback",
                extra={"mode": mode.value, "selected_count": len(selected)},
            )
            return list(items)

        if mode == AllocationMode.BY_PERIOD and applied_period_start is not None:
            period = (applied_period_start.year, applied_period_start.month)
            in_period = [i for i in items if (i.issue_date.year, i.issue_date.month) == period]
            rest = [i for i in items if (i.issue_date.year, i.issue_date.month) != period]
            return in_period + rest

        return list(items)
