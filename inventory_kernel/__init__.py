"""
Inventory Kernel

Per-product stock ledger with immutable costing and period-lock governance:
- Optimistic, version-checked stock movements and atomic reservations
- FIFO / LIFO / weighted-average / standard costing with frozen COGS
- Costing method locked on first purchase
- Fiscal period gate with approval-gated, single-use overrides
"""

__version__ = "0.1.0"
