"""
CLI main entry point.
"""

import argparse
import logging
import sys
from datetime import date
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Optional

from ..admission.consent import ConsentGate
from ..admission.documents import SourceDocument
from ..admission.rate_limit import ImportRateLimiter
from ..config import Config, ConfigValidationError, create_default_config, load_config
from ..crypto.field_codec import CryptoFailure
from ..estimator.projection import annotate_projection, estimate_from_ledger
from ..oracle.base import OracleError
from ..schemas.ledger import InvoiceRecord
from ..schemas.outcomes import (
    Committed,
    ConsentRequired,
    DocumentRejected,
    DuplicateDetected,
    ExtractionRejected,
    IntakeOutcome,
    NoTransactionsFound,
    RateLimited,
)
from ..services.intake import ImportContext, build_codec, build_oracle, build_pipeline
from ..state_store import SQLiteLedgerStore

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILURE = 1
# Duplicate, rate-limited or consent-required: nothing wrong, nothing imported
EXIT_NOT_IMPORTED = 2


def setup_logging(verbose: bool = False) -> None:
    """Configure logging."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    # httpx logs full request URLs at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)


def _decimal_arg(value: str) -> Decimal:
    try:
        return Decimal(value.replace(",", "."))
    except InvalidOperation as e:
        raise argparse.ArgumentTypeError(f"not a number: {value}") from e


def _date_arg(value: str) -> date:
    try:
        return date.fromisoformat(value)
    except ValueError as e:
        raise argparse.ArgumentTypeError(f"expected YYYY-MM-DD, got: {value}") from e


def create_cli() -> argparse.ArgumentParser:
    """Create CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="ledger-intake",
        description="Import financial documents into a deduplicated ledger",
    )

    parser.add_argument(
        "-c",
        "--config",
        type=Path,
        default=Path("config.yaml"),
        help="Path to config file (default: config.yaml)",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    # init command
    init_parser = subparsers.add_parser("init", help="Write a default config file")
    init_parser.add_argument(
        "--force",
        action="store_true",
        help="Overwrite an existing config file",
    )

    # consent command
    consent_parser = subparsers.add_parser("consent", help="Show or answer the import privacy notice")
    consent_parser.add_argument(
        "action",
        choices=["show", "accept", "decline"],
        help="show the notice, or record a decision",
    )

    # import command
    import_parser = subparsers.add_parser("import", help="Import a financial document")
    import_parser.add_argument("file", type=Path, help="Document to import (PDF or image)")
    import_parser.add_argument(
        "--media-type",
        type=str,
        help="Media type (default: guessed from the file extension)",
    )
    import_parser.add_argument(
        "--guidance",
        type=str,
        help="Free-text hint passed to the extraction oracle",
    )
    import_parser.add_argument(
        "--owner",
        type=str,
        help="Account holder name (overrides owner_name from config)",
    )
    import_parser.add_argument(
        "--replay",
        type=Path,
        help="Use a captured oracle response (JSON file) instead of calling the oracle",
    )

    # estimate command
    estimate_parser = subparsers.add_parser("estimate", help="Estimate typical monthly expenses")
    estimate_parser.add_argument(
        "--income",
        type=_decimal_arg,
        default=Decimal("0"),
        help="Monthly income (default: 0, not configured)",
    )
    estimate_parser.add_argument(
        "--as-of",
        type=_date_arg,
        help="Reference date YYYY-MM-DD (default: today)",
    )

    # invoices command
    subparsers.add_parser("invoices", help="List imported invoices")

    # status command
    subparsers.add_parser("status", help="Show ledger status and statistics")

    return parser


def _require_valid(config: Config, needs_oracle: bool = True) -> None:
    errors = config.validate()
    if not needs_oracle:
        errors = [e for e in errors if not e.startswith("oracle.")]
    if errors:
        raise ConfigValidationError("; ".join(errors))


def cmd_init(config_path: Path, force: bool) -> int:
    """Write a default config file."""
    if config_path.exists() and not force:
        print(f"❌ Config file already exists: {config_path} (use --force to overwrite)")
        return EXIT_FAILURE

    create_default_config(config_path)
    print(f"✓ Wrote default config to {config_path}")
    return EXIT_OK


def cmd_consent(config: Config, action: str) -> int:
    """Show the privacy notice or record a decision."""
    store = SQLiteLedgerStore(config.state_db_path)
    gate = ConsentGate(store, notice_version=config.consent.notice_version)

    if action == "show":
        print(gate.notice.render())
        print()
        state = "accepted" if gate.has_consent() else "not given"
        print(f"Current consent: {state}")
        return EXIT_OK

    gate.record_decision(accepted=action == "accept")
    if action == "accept":
        print(f"✓ Consent recorded (notice v{gate.notice_version})")
    else:
        print("✓ Consent declined; imports are disabled")
    return EXIT_OK


def _due_label(record: InvoiceRecord) -> str:
    return record.due_date if record.has_due_date else "no due date"


def _print_outcome(outcome: IntakeOutcome) -> int:
    if isinstance(outcome, Committed):
        print(f"✓ Imported {len(outcome.entries)} entries")
        if outcome.invoice_record:
            record = outcome.invoice_record
            print(f"  📄 Invoice due {_due_label(record)}, total {record.total_amount}")
        report = outcome.report
        if report.noise_total:
            details = ", ".join(f"{k}: {v}" for k, v in sorted(report.noise_dropped.items()))
            print(f"  ⏭  Ignored {report.noise_total} non-transaction lines ({details})")
        if report.duplicate_subscriptions:
            print(f"  ⏭  Skipped {report.duplicate_subscriptions} subscriptions already in the ledger")
        if report.validation_errors:
            print(f"  ⚠️  Dropped {len(report.validation_errors)} invalid records")
        return EXIT_OK

    if isinstance(outcome, DuplicateDetected):
        print(
            f"⏭  Invoice already imported (due {outcome.due_date}, "
            f"imported {outcome.imported_at}); nothing committed"
        )
        return EXIT_NOT_IMPORTED

    if isinstance(outcome, RateLimited):
        minutes = max(1, outcome.retry_after_seconds // 60)
        print(f"⏳ Import limit reached; try again in about {minutes} min")
        return EXIT_NOT_IMPORTED

    if isinstance(outcome, ConsentRequired):
        print(f"🔒 Consent required (notice v{outcome.notice_version}). Run: ledger-intake consent show")
        return EXIT_NOT_IMPORTED

    if isinstance(outcome, NoTransactionsFound):
        print("∅ No transactions found in the document")
        return EXIT_FAILURE

    if isinstance(outcome, DocumentRejected):
        print(f"❌ Document rejected: {outcome.reason}")
        return EXIT_FAILURE

    if isinstance(outcome, ExtractionRejected):
        print(f"❌ Extraction rejected: {outcome.error}")
        for detail in outcome.details[:10]:
            print(f"    {detail}")
        return EXIT_FAILURE

    print(f"❌ Unknown outcome: {outcome!r}")
    return EXIT_FAILURE


def cmd_import(
    config: Config,
    file: Path,
    media_type: Optional[str] = None,
    guidance: Optional[str] = None,
    owner: Optional[str] = None,
    replay: Optional[Path] = None,
) -> int:
    """Run the intake pipeline on one document."""
    _require_valid(config, needs_oracle=replay is None)

    try:
        document = SourceDocument.from_path(file, media_type)
    except OSError as e:
        print(f"❌ Cannot read {file}: {e}")
        return EXIT_FAILURE

    try:
        oracle = build_oracle(config, replay)
    except OracleError as e:
        print(f"❌ {e}")
        return EXIT_FAILURE

    print(f"📥 Importing {file.name} with {oracle.name}...")
    with oracle:
        pipeline = build_pipeline(config, oracle=oracle)
        try:
            outcome = pipeline.submit(document, ImportContext(owner_name=owner, guidance=guidance))
        except OracleError as e:
            print(f"❌ Extraction failed: {e}")
            return EXIT_FAILURE
        except CryptoFailure as e:
            print(f"❌ Encryption failed: {e}")
            return EXIT_FAILURE

    return _print_outcome(outcome)


def cmd_estimate(config: Config, income: Decimal, as_of: Optional[date] = None) -> int:
    """Print the outlier-resistant monthly estimate."""
    _require_valid(config, needs_oracle=False)

    store = SQLiteLedgerStore(config.state_db_path)
    codec = build_codec(config, store)
    entries = store.list_entries()
    if codec:
        entries = [codec.reveal_entry(entry) for entry in entries]

    estimate = estimate_from_ledger(entries, income, as_of)

    print("\n📈 Monthly Estimate")
    print("=" * 40)
    print(f"  Months with data:       {len(estimate.monthly_totals)}")
    if estimate.outliers:
        print(f"  Outlier months ignored: {', '.join(str(v) for v in estimate.outliers)}")
    print(f"  Average expense:        {estimate.average_expense}")
    print(f"  Recurring baseline:     {estimate.recurring_baseline}")
    print(f"  Typical expense:        {estimate.typical_expense}")
    print(f"  Income:                 {estimate.income}")
    print("  " + annotate_projection(f"Savings potential: {estimate.savings_potential}", estimate.quality))
    print()
    for scenario in estimate.scenarios:
        print(f"  {scenario.name:<12} ({scenario.rate * 100:.0f}%): {scenario.monthly_amount}")
    print()
    print(f"  Data quality: {estimate.quality.score:.0f}/100 ({estimate.quality.level.value})")
    for caveat in estimate.quality.caveats:
        print(f"    ⚠️  {caveat}")
    print()
    return EXIT_OK


def cmd_invoices(config: Config) -> int:
    """List imported invoices."""
    _require_valid(config, needs_oracle=False)

    store = SQLiteLedgerStore(config.state_db_path)
    codec = build_codec(config, store)
    invoices = store.list_invoices()

    if not invoices:
        print("No invoices imported yet")
        return EXIT_OK

    print(f"\n📄 Imported invoices ({len(invoices)})")
    print("=" * 60)
    for record in invoices:
        issuer = codec.reveal_value(record.issuer, "issuer") if codec and record.issuer else record.issuer
        print(
            f"  {_due_label(record):<10}  {str(record.total_amount):>12}  "
            f"{record.transaction_count:>3} entries  {issuer or '-'}  (imported {record.imported_at})"
        )
    print()
    return EXIT_OK


def cmd_status(config: Config) -> int:
    """Show ledger status."""
    store = SQLiteLedgerStore(config.state_db_path)
    stats = store.get_stats()
    gate = ConsentGate(store, notice_version=config.consent.notice_version)
    limiter = ImportRateLimiter(
        store,
        max_imports=config.limits.max_imports_per_hour,
        window_seconds=config.limits.window_seconds,
    )
    decision = limiter.check()

    print("\n📊 Ledger Status")
    print("=" * 40)
    print(f"  Entries total:          {stats['entries_total']}")
    print(f"  Expenses:               {stats['entries_expense']}")
    print(f"  Income:                 {stats['entries_income']}")
    print(f"  Recurring:              {stats['entries_recurring']}")
    print(f"  Invoices imported:      {stats['invoices_total']}")
    print(f"  Consent:                {'accepted' if gate.has_consent() else 'required'}")
    print(f"  Imports left this hour: {decision.remaining}")
    print(f"  Encryption:             {'on' if config.encryption.enabled else 'off'}")
    print()

    return EXIT_OK


def main(args: list[str] | None = None) -> int:
    """Main entry point."""
    parser = create_cli()
    parsed = parser.parse_args(args)

    setup_logging(parsed.verbose)

    if not parsed.command:
        parser.print_help()
        return EXIT_FAILURE

    if parsed.command == "init":
        return cmd_init(parsed.config, parsed.force)

    # Load config
    try:
        config = load_config(parsed.config)
    except Exception as e:
        print(f"❌ Failed to load config: {e}")
        return EXIT_FAILURE

    # Route to command
    try:
        if parsed.command == "consent":
            return cmd_consent(config, parsed.action)
        elif parsed.command == "import":
            return cmd_import(
                config,
                parsed.file,
                media_type=parsed.media_type,
                guidance=parsed.guidance,
                owner=parsed.owner,
                replay=parsed.replay,
            )
        elif parsed.command == "estimate":
            return cmd_estimate(config, parsed.income, parsed.as_of)
        elif parsed.command == "invoices":
            return cmd_invoices(config)
        elif parsed.command == "status":
            return cmd_status(config)
        else:
            parser.print_help()
            return EXIT_FAILURE
    except ConfigValidationError as e:
        print(f"❌ Invalid configuration: {e}")
        return EXIT_FAILURE


if __name__ == "__main__":
    sys.exit(main())
