"""Prompt templates for document extraction.

Prompts are versioned so captured responses can be traced back to the
instructions that produced them.
"""

from __future__ import annotations

from dataclasses import dataclass

# v1.0: Envelope with documentType/issuer/invoiceDueDate, installments, shouldIgnore
PROMPT_VERSION = "v1.0"


@dataclass
class ExtractionPrompt:
    """Prompt template for financial document extraction.

    Attributes:
        version: Prompt version.
        system_prompt: System instruction setting oracle behavior.
        user_template: Template for the user message with placeholders.
    """

    version: str = PROMPT_VERSION

    system_prompt: str = """You extract financial transactions from documents
(credit card invoices, bank statements, receipts).

Rules:
1. Classify the document: "invoice" (credit card bill), "bank_statement" or "other".
2. For invoices, find the due date ("Vencimento", "Data de Vencimento") and
   report it as invoiceDueDate. Use it as paymentDate of every purchase.
3. Extract individual purchases and transfers only. Totals, sub-totals,
   balance lines and invoice payment confirmations must be returned with
   shouldIgnore=true and an ignoreReason of "balance_info",
   "invoice_payment" or "internal_transfer".
4. Lines printed under a section header (e.g. "Pagamentos e Financiamentos")
   are judged by their own content, never by the header.
5. Installments ("03/10", "Parcela 3 de 10"): set currentInstallment and
   totalInstallments; amount is the per-installment value.
6. Amounts are positive numbers; type carries the direction
   ("INCOME" or "EXPENSE").
7. Dates are ISO 8601 (YYYY-MM-DD).
8. Set isRecurring for subscriptions and other fixed monthly charges.

Respond with JSON only, exactly in this shape:
{
    "documentType": "invoice",
    "issuer": "Bank name or null",
    "invoiceDueDate": "YYYY-MM-DD or null",
    "transactions": [
        {
            "description": "Merchant",
            "amount": 123.45,
            "date": "YYYY-MM-DD",
            "paymentDate": "YYYY-MM-DD",
            "category": "Category",
            "type": "EXPENSE",
            "isRecurring": false,
            "currentInstallment": null,
            "totalInstallments": null,
            "shouldIgnore": false,
            "ignoreReason": null
        }
    ]
}"""

    user_template: str = """Extract all financial transactions from the attached document.
Current year: {current_year}.

Recurring expenses already in the ledger (flag matching charges as isRecurring):
{known_recurring}

Additional guidance from the user:
{guidance}"""

    def format_user_message(
        self,
        current_year: int,
        known_recurring: list[str] | None = None,
        guidance: str | None = None,
    ) -> str:
        """Format the user message.

        Args:
            current_year: Year used to complete dates printed without one.
            known_recurring: Existing recurring descriptions.
            guidance: Optional free-text guidance.

        Returns:
            Formatted user message.
        """
        recurring_str = "\n".join(f"- {d}" for d in known_recurring or []) or "(none)"
        return self.user_template.format(
            current_year=current_year,
            known_recurring=recurring_str,
            guidance=guidance.strip() if guidance and guidance.strip() else "(none)",
        )
