"""
Access policy consumed by the lifecycle services.

Authentication and role management live elsewhere; the engine only needs
the acting user id (for attribution) and two yes/no decisions:

* may this actor manage receipts/debt of this customer?
  (Admin, or the customer's accountant owner)
* may this actor commit into a locked period? (override roles)
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from uuid import UUID

from receivables_kernel.exceptions import AccessDeniedError
from receivables_kernel.logging_config import get_logger
from receivables_kernel.models.party import Customer

logger = get_logger("services.access_policy")


@dataclass(frozen=True)
class ActorContext:
    """The authenticated user performing an operation."""

    user_id: UUID
    roles: frozenset[str] = field(default_factory=frozenset)

    @classmethod
    def of(cls, user_id: UUID, *roles: str) -> ActorContext:
        return cls(user_id=user_id, roles=frozenset(roles))

    def has_any_role(self, roles: Iterable[str]) -> bool:
        wanted = {r.lower() for r in roles}
        return any(r.lower() in wanted for r in self.roles)


class AccessPolicy:
    """
    Role checks for receivables operations.

    Contract:
        ``ensure_can_manage`` raises AccessDeniedError unless the actor holds
        an admin role or owns the customer.  ``can_override_period_lock``
        answers whether the actor holds an override role.
    """

    def __init__(
        self,
        admin_roles: Iterable[str] = ("Admin",),
        override_roles: Iterable[str] = ("Admin", "Supervisor"),
    ):
        self._admin_roles = tuple(admin_roles)
        self._override_roles = tuple(override_roles)

    def is_admin(self, actor: ActorContext) -> bool:
        return actor.has_any_role(self._admin_roles)

    def can_manage(self, actor: ActorContext, customer: Customer) -> bool:
        if self.is_admin(actor):
            return True
        return customer.accountant_owner_id is not None and customer.accountant_owner_id == actor.user_id

    def ensure_can_manage(self, actor: ActorContext, customer: Customer, operation: str) -> None:
        if not self.can_manage(actor, customer):
            logger.warning(
                "access_denied",
                extra={
                    "user_id": str(actor.user_id),
                    "operation": operation,
                    "customer_tax_code": customer.tax_code,
                },
            )
            raise AccessDeniedError(str(actor.user_id), operation, customer.tax_code)

    def ensure_admin(self, actor: ActorContext, operation: str) -> None:
        if not self.is_admin(actor):
            raise AccessDeniedError(str(actor.user_id), operation)

    def can_override_period_lock(self, actor: ActorContext) -> bool:
        return actor.has_any_role(self._override_roles)
