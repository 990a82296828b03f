"""
FinTrack - Ledger Core

The ledger and recurring-projection engine behind a personal finance
tracker: it records money movements, derives summary metrics, projects
recurring transactions forward, tracks category budgets and raises
notifications when thresholds are crossed.

DESIGN PRINCIPLES:
1. In-memory state is authoritative for the caller; persistence follows
2. Business-rule rejections are values, not exceptions
3. Generated data is idempotent: re-running never duplicates
4. Every mutation is auditable
5. Storage layer is swappable
"""

__version__ = "1.0.0"
__author__ = "FinTrack Team"
