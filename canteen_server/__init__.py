"""
Canteen meal-ticketing backend: prepaid balances, meal scheduling and
counter redemption over a DuckDB ledger.
"""

__version__ = "1.0.0"
