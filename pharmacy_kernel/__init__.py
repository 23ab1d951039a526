"""
Pharmacy Kernel - batch ledger core.

Owns the inventory batch records and their invariants:
- Stock per medicine is always the sum of live batch quantities
- Quantity mutations are atomic and never go negative
- Every administrative correction and FEFO override is audited
"""

__version__ = "0.1.0"
