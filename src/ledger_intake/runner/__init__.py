"""
CLI runner module.

Provides commands:
- init: Write a default config file
- consent: Show or answer the import privacy notice
- import: Run the intake pipeline on a document
- estimate: Outlier-resistant monthly expense estimate
- invoices: List imported invoices
- status: Ledger statistics
"""

from .main import create_cli, main

__all__ = [
    "create_cli",
    "main",
]
