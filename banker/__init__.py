"""
Banker - Source Package

A small virtual-currency ledger: per-user balances, transfers and
invoices, recorded in an append-only ledger.

DESIGN PRINCIPLES:
1. Balances never go negative
2. Every money movement is recorded exactly once
3. Conditional writes instead of locks
4. Fail visibly with a specific error kind
5. Storage layer is swappable
"""

__version__ = "1.0.0"
__author__ = "Banker Team"
