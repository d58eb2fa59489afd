"""
Receivables configuration schema.

``ReceivablesConfig`` is the runtime configuration artifact: a frozen
dataclass validated on construction.  YAML files are parsed into it by
``receivables_config.loader``; services receive it (or the values they
need from it) through their constructors.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Any

from receivables_kernel.domain.types import AllocationPriority, PeriodType

# ---------------------------------------------------------------------------
# Batch schedules
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class BatchScheduleDef:
    """Declarative batch job schedule from YAML."""

    name: str
    task_type: str
    frequency: str  # "hourly", "daily", ...
    parameters: dict[str, Any] = field(default_factory=dict)
    max_retries: int = 3
    is_active: bool = True


# ---------------------------------------------------------------------------
# Root
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ReceivablesConfig:
    """
    Validated runtime configuration.

    Guarantees:
        - Batch sizes and caps are positive; reconcile_max_items never
          exceeds reconcile_max_items_cap.
        - Role tuples are non-empty.
        - reconcile_tolerance is a non-negative Decimal.

    Raises:
        ValueError: from ``__post_init__`` on any violated rule.
    """

    config_id: str = "receivables-default"
    version: int = 1
    default_allocation_priority: AllocationPriority = AllocationPriority.ISSUE_DATE
    default_payment_terms_days: int = 30
    admin_roles: tuple[str, ...] = ("Admin",)
    override_roles: tuple[str, ...] = ("Admin", "Supervisor")
    lock_period_types: tuple[PeriodType, ...] = (
        PeriodType.MONTH,
        PeriodType.QUARTER,
        PeriodType.YEAR,
    )
    scanner_batch_size: int = 200
    scanner_max_receipts: int = 5000
    reconcile_tolerance: Decimal = Decimal("0.01")
    reconcile_max_items: int = 20
    reconcile_max_items_cap: int = 200
    schedules: tuple[BatchScheduleDef, ...] = ()

    def __post_init__(self) -> None:
        if self.default_payment_terms_days < 0:
            raise ValueError("default_payment_terms_days must be >= 0")
        if not self.admin_roles:
            raise ValueError("admin_roles must not be empty")
        if not self.override_roles:
            raise ValueError("override_roles must not be empty")
        if not self.lock_period_types:
            raise ValueError("lock_period_types must not be empty")
        if self.scanner_batch_size <= 0:
            raise ValueError("scanner_batch_size must be positive")
        if self.scanner_max_receipts <= 0:
            raise ValueError("scanner_max_receipts must be positive")
        if self.reconcile_tolerance < 0:
            raise ValueError("reconcile_tolerance must be >= 0")
        if self.reconcile_max_items_cap <= 0:
            raise ValueError("reconcile_max_items_cap must be positive")
        if not 0 < self.reconcile_max_items <= self.reconcile_max_items_cap:
            raise ValueError(
                "reconcile_max_items must be between 1 and reconcile_max_items_cap"
            )

    @classmethod
    def with_defaults(cls) -> ReceivablesConfig:
        return cls()

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ReceivablesConfig:
        """
        Build from a parsed YAML mapping.  Missing keys take defaults.

        Raises:
            ValueError: unknown keys, bad enum values or bad numbers.
        """
        allocation = data.get("allocation", {}) or {}
        access = data.get("access", {}) or {}
        locks = data.get("period_locks", {}) or {}
        scanner = data.get("scanner", {}) or {}
        reconcile = data.get("reconcile", {}) or {}

        known = {"config_id", "version", "allocation", "access", "period_locks",
                 "scanner", "reconcile", "schedules"}
        unknown = set(data) - known
        if unknown:
            raise ValueError(f"Unknown configuration sections: {sorted(unknown)}")

        defaults = cls()
        kwargs: dict[str, Any] = {
            "config_id": str(data.get("config_id", defaults.config_id)),
            "version": int(data.get("version", defaults.version)),
            "default_allocation_priority": AllocationPriority(
                str(allocation.get("default_priority", defaults.default_allocation_priority.value)).upper()
            ),
            "default_payment_terms_days": int(
                allocation.get("default_payment_terms_days", defaults.default_payment_terms_days)
            ),
            "admin_roles": tuple(access.get("admin_roles", defaults.admin_roles)),
            "override_roles": tuple(access.get("override_roles", defaults.override_roles)),
            "lock_period_types": tuple(
                PeriodType(str(v).upper())
                for v in locks.get("period_types", [p.value for p in defaults.lock_period_types])
            ),
            "scanner_batch_size": int(scanner.get("batch_size", defaults.scanner_batch_size)),
            "scanner_max_receipts": int(scanner.get("max_receipts", defaults.scanner_max_receipts)),
            "reconcile_tolerance": _parse_decimal(
                reconcile.get("tolerance", defaults.reconcile_tolerance), "reconcile.tolerance"
            ),
            "reconcile_max_items": int(reconcile.get("max_items", defaults.reconcile_max_items)),
            "reconcile_max_items_cap": int(
                reconcile.get("max_items_cap", defaults.reconcile_max_items_cap)
            ),
            "schedules": tuple(_parse_schedule(s) for s in data.get("schedules", []) or []),
        }
        return cls(**kwargs)


def _parse_decimal(value: Any, name: str) -> Decimal:
    if isinstance(value, float):
        value = str(value)
    try:
        return Decimal(str(value))
    except InvalidOperation as exc:
        raise ValueError(f"{name} is not a number: {value!r}") from exc


def _parse_schedule(data: dict[str, Any]) -> BatchScheduleDef:
    return BatchScheduleDef(
        name=data["name"],
        task_type=data["task_type"],
        frequency=data.get("frequency", "daily"),
        parameters=dict(data.get("parameters", {}) or {}),
        max_retries=int(data.get("max_retries", 3)),
        is_active=bool(data.get("is_active", True)),
    )
