"""
Import consent gate.

No document reaches the extraction oracle unless an accepted consent
record exists for the current privacy notice version. Bumping the notice
version invalidates earlier consents.
"""

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field

from ..schemas.ledger import ConsentRecord
from ..state_store.base import LedgerStore

logger = logging.getLogger(__name__)

CURRENT_NOTICE_VERSION = "1.0"


@dataclass(frozen=True)
class PrivacyNotice:
    version: str
    title: str
    description: str
    data_processed: list[str] = field(default_factory=list)
    third_parties: list[str] = field(default_factory=list)
    retention: str = ""

    def render(self) -> str:
        """Plain-text rendering for terminals."""
        lines = [f"{self.title} (v{self.version})", "", self.description, ""]
        lines.append("Data processed:")
        lines.extend(f"  - {item}" for item in self.data_processed)
        lines.append("Third parties:")
        lines.extend(f"  - {item}" for item in self.third_parties)
        lines.extend(["", self.retention])
        return "\n".join(lines)


def import_privacy_notice(version: str = CURRENT_NOTICE_VERSION) -> PrivacyNotice:
    """The privacy notice shown before the first import."""
    return PrivacyNotice(
        version=version,
        title="Privacy Notice - Document Import",
        description="When you import financial documents, your data is processed as follows:",
        data_processed=[
            "Document content (credit card invoice, bank statement)",
            "Extracted transactions (description, amount, date)",
            "Issuer information (bank, card)",
        ],
        third_parties=["Google Gemini - extraction of transactions from the document"],
        retention=(
            "Extracted data is stored locally. The original document is not stored "
            "after processing."
        ),
    )


class ConsentGate:
    """Checks and records the user's decision on the privacy notice."""

    def __init__(
        self,
        store: LedgerStore,
        notice_version: str = CURRENT_NOTICE_VERSION,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.notice_version = notice_version
        self._clock = clock

    @property
    def notice(self) -> PrivacyNotice:
        return import_privacy_notice(self.notice_version)

    def has_consent(self) -> bool:
        """True if an accepted consent exists for the current notice version."""
        record = self.store.get_consent()
        if record is None:
            return False
        return record.accepted and record.version == self.notice_version

    def record_decision(self, accepted: bool) -> ConsentRecord:
        """Persist an explicit decision, overwriting any earlier one."""
        record = ConsentRecord(
            accepted=accepted,
            timestamp=self._clock(),
            version=self.notice_version,
        )
        self.store.put_consent(record)
        logger.info(
            f"Import consent {'accepted' if accepted else 'declined'} "
            f"(notice v{self.notice_version})"
        )
        return record
