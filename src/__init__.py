"""
Ledger - Source Package

A personal finance ledger: accounts, categories and income/expense
records, with derived dashboard figures.

DESIGN PRINCIPLES:
1. The store is the source of truth for balances
2. Every mutation is followed by a full reload
3. Derived figures are pure functions of one snapshot
4. Every mutation is auditable
5. Storage layer is swappable
"""

__version__ = "1.0.0"
__author__ = "Personal Accountant Team"
