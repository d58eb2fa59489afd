"""
BalanceReconcileService -- detects and corrects customer balance drift.

Responsibility:
    Compares every customer's stored ``current_balance`` with the balance
    recomputed from documents and receipts, reports the customers that
    drifted beyond tolerance and, when asked, writes the recomputed value
    back.

Architecture position:
    Services -- owns its transaction boundary.  Reads through
    BalanceProjector.expected_balances (three grouped aggregates).

Invariants enforced:
    - A dry run writes nothing.
    - A correction sets current_balance to the expected value, moves the
      customer's version by one and records CUSTOMER_BALANCE_RECONCILE with
      both values.
    - A correction only lands on the balance it was computed from; a delta
      committed in between fails the run with OptimisticLockError.

Audit relevance:
    One CUSTOMER_BALANCE_RECONCILE entry per corrected customer.
"""

from __future__ import annotations

from decimal import Decimal
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.orm.attributes import set_committed_value

from receivables_kernel.db.engine import transaction_scope
from receivables_kernel.domain.types import AuditAction
from receivables_kernel.exceptions import OptimisticLockError, ValidationError
from receivables_kernel.logging_config import LogContext, get_logger
from receivables_kernel.models.party import Customer
from receivables_services.base import LifecycleService
from receivables_services.types import BalanceDrift, BalanceReconcileResult

logger = get_logger("services.balance_reconcile")

_ZERO = Decimal("0")


class BalanceReconcileService(LifecycleService):
    """
    Customer balance drift check.

    Non-goals:
        - Does NOT check access; callers schedule it as an administrative
          job.
    """

    def run(
        self,
        apply_corrections: bool = False,
        tolerance: Decimal | None = None,
        max_items: int | None = None,
        actor_id: UUID | None = None,
    ) -> BalanceReconcileResult:
        """
        Compare stored and expected balances for every customer.

        Args:
            apply_corrections: Write the expected balance to every drifted
                customer.
            tolerance: Drift at or below this is ignored.  Defaults to
                ``reconcile_tolerance``.
            max_items: Number of drifts returned, largest first.  Capped at
                ``reconcile_max_items_cap``.
            actor_id: Attribution for corrections.
        """
        tol = self._config.reconcile_tolerance if tolerance is None else Decimal(str(tolerance))
        if tol < 0:
            raise ValidationError("tolerance must not be negative")
        limit = self._config.reconcile_max_items if max_items is None else max_items
        if limit <= 0:
            raise ValidationError("max_items must be greater than 0")
        limit = min(limit, self._config.reconcile_max_items_cap)

        with LogContext.bind(operation="balance_reconcile"):
            with transaction_scope(self._session, "balance_reconcile"):
                customers = self._session.scalars(
                    select(Customer).order_by(Customer.tax_code).execution_options(populate_existing=True)
                ).all()
                expected = self._balances.expected_balances()

                drifts: list[BalanceDrift] = []
                for customer in customers:
                    drift = BalanceDrift(
                        customer_tax_code=customer.tax_code,
                        current_balance=customer.current_balance,
                        expected_balance=expected.get(customer.tax_code, _ZERO),
                    )
                    if drift.absolute_drift > tol:
                        drifts.append(drift)

                updated = 0
                if apply_corrections:
                    by_code = {c.tax_code: c for c in customers}
                    for drift in drifts:
                        self._correct(by_code[drift.customer_tax_code], drift, actor_id)
                        updated += 1
                    self._session.flush()

            drifts.sort(key=lambda d: (-d.absolute_drift, d.customer_tax_code))
            result = BalanceReconcileResult(
                checked_customers=len(customers),
                drifted_customers=len(drifts),
                total_abs_drift=sum((d.absolute_drift for d in drifts), _ZERO),
                max_abs_drift=drifts[0].absolute_drift if drifts else _ZERO,
                updated_customers=updated,
                top_drifts=tuple(drifts[:limit]),
            )
            log = logger.warning if drifts else logger.info
            log(
                "balance_reconcile_completed",
                extra={
                    "checked_customers": result.checked_customers,
                    "drifted_customers": result.drifted_customers,
                    "total_abs_drift": str(result.total_abs_drift),
                    "max_abs_drift": str(result.max_abs_drift),
                    "updated_customers": result.updated_customers,
                },
            )
            return result

    def _correct(self, customer: Customer, drift: BalanceDrift, actor_id: UUID | None) -> None:
        # Guarded on the observed balance: deltas from approvals and voids
        # move current_balance without touching version.
        result = self._session.execute(
            update(Customer)
            .where(
                Customer.id == customer.id,
                Customer.version == customer.version,
                Customer.current_balance == drift.current_balance,
            )
            .values(
                current_balance=drift.expected_balance,
                version=Customer.version + 1,
                updated_by_id=actor_id,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            logger.warning(
                "balance_correction_conflict",
                extra={"customer_tax_code": customer.tax_code, "observed_balance": str(drift.current_balance)},
            )
            raise OptimisticLockError("Customer", str(customer.id), customer.version, None)
        set_committed_value(customer, "current_balance", drift.expected_balance)
        set_committed_value(customer, "version", customer.version + 1)
        set_committed_value(customer, "updated_by_id", actor_id)
        self._audit.record(
            AuditAction.CUSTOMER_BALANCE_RECONCILE,
            "Customer",
            customer.id,
            actor_id,
            before={"current_balance": drift.current_balance},
            after={
                "current_balance": drift.expected_balance,
                "difference": drift.difference,
            },
        )
