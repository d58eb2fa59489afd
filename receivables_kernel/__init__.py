"""
Receivables Kernel

The stateful core of the receivables engine:
- Debt documents (invoices, advances) and receipts with optimistic versioning
- Allocation rows linking cash to debt
- Period locks with audited override
- Running customer balances kept in step with every allocation
"""

__version__ = "0.1.0"
