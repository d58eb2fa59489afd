"""
Module: receivables_kernel.models.party
Responsibility: ORM models for the two parties of every receivable: the
    seller (our legal entity, by tax code) and the customer (by tax code).
Architecture position: Kernel > Models.  Imports only db/.

Invariants enforced:
    - tax codes are unique per table.
    - Customer.current_balance is the signed net amount owed and is mutated
      only through BalanceProjector, atomically with allocations/reversals.
"""

from decimal import Decimal
from uuid import UUID

from sqlalchemy import Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from receivables_kernel.db.base import TrackedBase, UUIDString, VersionedMixin


class Seller(TrackedBase):
    """A selling legal entity identified by its tax code."""

    __tablename__ = "sellers"

    __table_args__ = (
        UniqueConstraint("seller_tax_code", name="uq_sellers_tax_code"),
    )

    seller_tax_code: Mapped[str] = mapped_column(String(32), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    status: Mapped[str] = mapped_column(String(16), default="ACTIVE", nullable=False)

    def __repr__(self) -> str:
        return f"<Seller {self.seller_tax_code}: {self.name}>"


class Customer(VersionedMixin, TrackedBase):
    """
    A customer identified by its tax code.

    Contract:
        ``accountant_owner_id`` drives access control (owner or Admin may
        manage the customer's receipts).  ``payment_terms_days`` derives due
        dates; when NULL the configured default applies.

    Guarantees:
        - tax_code is unique (uq_customers_tax_code).
        - current_balance defaults to 0.
    """

    __tablename__ = "customers"

    __table_args__ = (
        UniqueConstraint("tax_code", name="uq_customers_tax_code"),
        Index("idx_customers_owner", "accountant_owner_id"),
    )

    tax_code: Mapped[str] = mapped_column(String(32), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    accountant_owner_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    credit_limit: Mapped[Decimal | None] = mapped_column(nullable=True)
    current_balance: Mapped[Decimal] = mapped_column(default=Decimal("0"), nullable=False)
    payment_terms_days: Mapped[int | None] = mapped_column(nullable=True)
    status: Mapped[str] = mapped_column(String(16), default="ACTIVE", nullable=False)

    def __repr__(self) -> str:
        return f"<Customer {self.tax_code}: balance={self.current_balance}>"
