"""
Shared wiring for the receivables lifecycle services.

Every lifecycle service owns its transaction boundary: it builds the
flush-only kernel services on the session it was given, runs one operation
inside ``transaction_scope`` and commits or rolls back as a whole.
"""

from __future__ import annotations

from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from receivables_config import ReceivablesConfig, get_active_config
from receivables_engines.allocation import AllocationEngine
from receivables_kernel.db.types import round_money, to_money
from receivables_kernel.domain.clock import Clock, SystemClock
from receivables_kernel.exceptions import EntityNotFoundError, InvalidAmountError, MissingFieldError
from receivables_kernel.models.party import Customer, Seller
from receivables_kernel.selectors.open_items import OpenItemSelector
from receivables_kernel.services.access_policy import AccessPolicy
from receivables_kernel.services.audit_service import AuditLogService, AuditSink, AuditTrail
from receivables_kernel.services.balance_projector import BalanceProjector
from receivables_kernel.services.period_lock_service import PeriodLockService
from receivables_services.allocation_writer import AllocationWriter


class LifecycleService:
    """
    Base for services that own a transaction boundary.

    Contract:
        Subclasses wrap each public operation in
        ``transaction_scope(self._session, name)``.  Kernel collaborators
        only flush.
    """

    def __init__(
        self,
        session: Session,
        audit_sink: AuditSink | None = None,
        access_policy: AccessPolicy | None = None,
        clock: Clock | None = None,
        config: ReceivablesConfig | None = None,
    ):
        self._session = session
        self._config = config or get_active_config()
        self._clock = clock or SystemClock()
        self._access = access_policy or AccessPolicy(
            admin_roles=self._config.admin_roles,
            override_roles=self._config.override_roles,
        )
        self._audit = AuditTrail(audit_sink or AuditLogService(session, self._clock))
        self._locks = PeriodLockService(
            session,
            self._access,
            self._audit,
            self._clock,
            period_types=self._config.lock_period_types,
        )
        self._balances = BalanceProjector(session, self._clock)
        self._open_items = OpenItemSelector(session, self._config.default_payment_terms_days)
        self._engine = AllocationEngine()

    def _writer(self) -> AllocationWriter:
        return AllocationWriter(self._session, self._clock)

    def _get_customer(self, tax_code: str | None) -> Customer:
        if not tax_code or not tax_code.strip():
            raise MissingFieldError("customer_tax_code")
        customer = self._session.scalars(
            select(Customer).where(Customer.tax_code == tax_code.strip())
        ).one_or_none()
        if customer is None:
            raise EntityNotFoundError("Customer", tax_code)
        return customer

    def _ensure_seller(self, seller_tax_code: str | None) -> str:
        if not seller_tax_code or not seller_tax_code.strip():
            raise MissingFieldError("seller_tax_code")
        code = seller_tax_code.strip()
        exists = self._session.scalars(
            select(Seller.id).where(Seller.seller_tax_code == code)
        ).first()
        if exists is None:
            raise EntityNotFoundError("Seller", code)
        return code

    def _get_entity(self, model: type, entity_id: UUID, include_deleted: bool = False):
        entity = self._session.get(model, entity_id, populate_existing=True)
        if entity is None or (not include_deleted and entity.deleted_at is not None):
            raise EntityNotFoundError(model.__name__, str(entity_id))
        return entity

    @staticmethod
    def _parse_amount(amount: Decimal | int | str | None, field_name: str = "amount") -> Decimal:
        """Caller money input as a positive Decimal with at most two places.  Floats are refused."""
        if amount is None:
            raise MissingFieldError(field_name)
        try:
            value = to_money(amount)
        except ValueError as exc:
            raise InvalidAmountError(field_name, amount) from exc
        if not value.is_finite() or value <= 0 or round_money(value) != value:
            raise InvalidAmountError(field_name, amount)
        return value
