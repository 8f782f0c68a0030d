"""
Extracted financial documents → Noise filtering → Installments → Idempotent ledger

Turns the untrusted line items an AI extraction service reads from invoices and
bank statements into a deduplicated, idempotent ledger, with admission control
in front of the pipeline and field-level encryption for data at rest.
"""

__version__ = "0.1.0"
