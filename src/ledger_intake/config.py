"""
Configuration management (SSOT).

This module defines ALL configuration for ledger-intake.
All config keys are defined here; no other module should invent config keys.

Key invariants:
- Secrets (oracle API key, encryption user id) may come from the environment
  and are never written back by create_default_config()
- The derived encryption key is never part of the configuration
"""

import os
from dataclasses import dataclass, field
from decimal import Decimal
from pathlib import Path

import yaml


class ConfigValidationError(Exception):
    """Raised when configuration validation fails."""

    pass


# Known renderings of the same subscription brand (lowercase, normalized).
DEFAULT_SUBSCRIPTION_ALIASES: list[list[str]] = [
    ["netflix", "netflix com", "netflix.com", "nflx"],
    ["spotify", "spotify ab", "spotify premium", "spotify brasil"],
    ["amazon prime", "prime video", "amazon video", "amazonprime", "amzn prime"],
    ["disney plus", "disneyplus", "disney streaming"],
    ["hbo max", "hbomax", "max hbo"],
    ["youtube premium", "google youtube premium", "youtubepremium"],
    ["apple com bill", "apple.com/bill", "icloud", "apple icloud"],
    ["google one", "google storage", "googleone"],
    ["globoplay", "globo play"],
    ["deezer", "deezer premium"],
    ["paramount plus", "paramountplus"],
    ["microsoft 365", "office 365", "ms 365"],
    ["ifood club", "clube ifood"],
    ["uber one", "uber pass"],
]


@dataclass
class OracleConfig:
    """Document-extraction oracle configuration.

    provider:
    - gemini: Google Gemini generateContent API (requires api_key)
    - replay: replays previously captured extraction JSON (no network)
    """

    provider: str = "gemini"
    api_key: str | None = None
    model: str = "gemini-2.5-flash"
    base_url: str = "https://generativelanguage.googleapis.com/v1beta"
    # Read timeout for a single extraction call (seconds)
    timeout_seconds: int = 60


@dataclass
class ImportLimitsConfig:
    """Admission limits for document imports."""

    # Sliding-window cap on imports
    max_imports_per_hour: int = 20
    window_seconds: int = 3600
    # Upper bound on the document size handed to the oracle
    max_document_bytes: int = 4 * 1024 * 1024


@dataclass
class ConsentConfig:
    """Privacy notice versioning."""

    # Bump when the privacy notice changes; older consents stop counting
    notice_version: str = "1.0"


@dataclass
class EncryptionConfig:
    """Field-level encryption settings."""

    enabled: bool = False
    # Identifier the key is derived from (never persisted with the data)
    user_id: str | None = None
    iterations: int = 100_000


@dataclass
class AmountValidationConfig:
    """Amount validation settings (SSOT)."""

    # Oracles often sign expenses negatively; type carries the direction
    allow_sign_normalization: bool = True
    # Maximum amount value (sanity check)
    max_amount: Decimal = Decimal("1000000")


@dataclass
class SubscriptionMatchingConfig:
    """Duplicate subscription matching settings."""

    # Shorter normalized string must be at least this share of the longer one
    containment_ratio: float = 0.60
    aliases: list[list[str]] = field(
        default_factory=lambda: [list(group) for group in DEFAULT_SUBSCRIPTION_ALIASES]
    )


@dataclass
class Config:
    """Application configuration (SSOT).

    All configuration is centralized here. No other module should define
    configuration keys or defaults.
    """

    oracle: OracleConfig = field(default_factory=OracleConfig)
    limits: ImportLimitsConfig = field(default_factory=ImportLimitsConfig)
    consent: ConsentConfig = field(default_factory=ConsentConfig)
    encryption: EncryptionConfig = field(default_factory=EncryptionConfig)
    amount_validation: AmountValidationConfig = field(default_factory=AmountValidationConfig)
    subscriptions: SubscriptionMatchingConfig = field(default_factory=SubscriptionMatchingConfig)
    state_db_path: Path = field(default_factory=lambda: Path("data/ledger.db"))

    # Account holder name, used to recognize transfers between own accounts
    owner_name: str | None = None

    def validate(self) -> list[str]:
        """Validate configuration completeness and consistency.

        Returns:
            List of validation errors (empty if valid)
        """
        errors: list[str] = []

        if self.oracle.provider not in ("gemini", "replay"):
            errors.append(f"oracle.provider must be 'gemini' or 'replay', got: {self.oracle.provider}")
        if self.oracle.provider == "gemini" and not self.oracle.api_key:
            errors.append("oracle.api_key is required for the gemini provider (or set GEMINI_API_KEY)")
        if self.oracle.timeout_seconds <= 0:
            errors.append("oracle.timeout_seconds must be positive")

        if self.limits.max_imports_per_hour <= 0:
            errors.append("limits.max_imports_per_hour must be positive")
        if self.limits.window_seconds <= 0:
            errors.append("limits.window_seconds must be positive")
        if self.limits.max_document_bytes <= 0:
            errors.append("limits.max_document_bytes must be positive")

        if self.encryption.enabled and not self.encryption.user_id:
            errors.append("encryption.user_id is required when encryption is enabled")
        if self.encryption.iterations < 1:
            errors.append("encryption.iterations must be >= 1")

        if not 0.0 < self.subscriptions.containment_ratio <= 1.0:
            errors.append("subscriptions.containment_ratio must be in (0, 1]")

        if self.amount_validation.max_amount <= 0:
            errors.append("amount_validation.max_amount must be positive")

        return errors


def load_config(config_path: Path) -> Config:
    """
    Load configuration from YAML file.

    Environment variables can override config values:
    - GEMINI_API_KEY
    - LEDGER_INTAKE_ORACLE (gemini/replay)
    - LEDGER_INTAKE_MODEL
    - LEDGER_INTAKE_DB
    - LEDGER_INTAKE_OWNER
    - LEDGER_INTAKE_ENCRYPTION (true/false)
    - LEDGER_INTAKE_USER_ID
    - LEDGER_INTAKE_MAX_IMPORTS_PER_HOUR
    """
    if config_path.exists():
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
    else:
        data = {}

    # Oracle config
    oracle_data = data.get("oracle", {})
    oracle = OracleConfig(
        provider=os.environ.get("LEDGER_INTAKE_ORACLE", oracle_data.get("provider", "gemini")),
        api_key=os.environ.get("GEMINI_API_KEY", oracle_data.get("api_key")),
        model=os.environ.get("LEDGER_INTAKE_MODEL", oracle_data.get("model", "gemini-2.5-flash")),
        base_url=oracle_data.get("base_url", "https://generativelanguage.googleapis.com/v1beta"),
        timeout_seconds=int(oracle_data.get("timeout_seconds", 60)),
    )

    # Import limits
    limits_data = data.get("limits", {})
    max_imports = limits_data.get("max_imports_per_hour", 20)
    max_imports_env = os.environ.get("LEDGER_INTAKE_MAX_IMPORTS_PER_HOUR", "")
    if max_imports_env:
        try:
            max_imports = int(max_imports_env)
        except ValueError:
            pass  # Keep file/default value
    limits = ImportLimitsConfig(
        max_imports_per_hour=int(max_imports),
        window_seconds=int(limits_data.get("window_seconds", 3600)),
        max_document_bytes=int(limits_data.get("max_document_bytes", 4 * 1024 * 1024)),
    )

    consent_data = data.get("consent", {})
    consent = ConsentConfig(notice_version=str(consent_data.get("notice_version", "1.0")))

    # Encryption
    enc_data = data.get("encryption", {})
    enc_enabled_env = os.environ.get("LEDGER_INTAKE_ENCRYPTION", "").lower()
    enc_enabled = enc_data.get("enabled", False)
    if enc_enabled_env == "true":
        enc_enabled = True
    elif enc_enabled_env == "false":
        enc_enabled = False

    encryption = EncryptionConfig(
        enabled=bool(enc_enabled),
        user_id=os.environ.get("LEDGER_INTAKE_USER_ID", enc_data.get("user_id")),
        iterations=int(enc_data.get("iterations", 100_000)),
    )

    # Amount validation
    amount_data = data.get("amount_validation", {})
    amount_validation = AmountValidationConfig(
        allow_sign_normalization=amount_data.get("allow_sign_normalization", True),
        max_amount=Decimal(str(amount_data.get("max_amount", "1000000"))),
    )

    # Subscription matching
    subs_data = data.get("subscriptions", {})
    aliases = subs_data.get("aliases")
    subscriptions = SubscriptionMatchingConfig(
        containment_ratio=float(subs_data.get("containment_ratio", 0.60)),
    )
    if aliases is not None:
        subscriptions.aliases = [[str(name) for name in group] for group in aliases]

    state_db = os.environ.get("LEDGER_INTAKE_DB", data.get("state_db_path", "data/ledger.db"))

    return Config(
        oracle=oracle,
        limits=limits,
        consent=consent,
        encryption=encryption,
        amount_validation=amount_validation,
        subscriptions=subscriptions,
        state_db_path=Path(state_db),
        owner_name=os.environ.get("LEDGER_INTAKE_OWNER", data.get("owner_name")),
    )


def create_default_config(config_path: Path) -> None:
    """Create a default configuration file."""
    default_config = """# ledger-intake configuration
#
# Secrets can be supplied through the environment instead of this file:
# - GEMINI_API_KEY          oracle API key
# - LEDGER_INTAKE_USER_ID   identifier the encryption key is derived from

# Document-extraction oracle
oracle:
  provider: "gemini"                       # gemini | replay
  api_key: null                            # or GEMINI_API_KEY
  model: "gemini-2.5-flash"
  base_url: "https://generativelanguage.googleapis.com/v1beta"
  timeout_seconds: 60

# Admission control
limits:
  max_imports_per_hour: 20                 # Sliding one-hour window
  window_seconds: 3600
  max_document_bytes: 4194304              # 4 MiB

consent:
  notice_version: "1.0"                    # Bump to require consent again

# Field-level encryption of sensitive ledger fields at rest
encryption:
  enabled: false
  user_id: null                            # or LEDGER_INTAKE_USER_ID
  iterations: 100000                       # PBKDF2-HMAC-SHA256 rounds

# Amount validation (SSOT)
amount_validation:
  allow_sign_normalization: true           # Accept negative amounts, keep type
  max_amount: 1000000                      # Sanity check maximum

# Duplicate subscription detection
subscriptions:
  containment_ratio: 0.60
  # aliases:                               # Replaces the built-in alias table
  #   - ["netflix", "netflix com", "nflx"]

# Account holder name (recognizes transfers between own accounts)
owner_name: null

# State database path
state_db_path: "data/ledger.db"
"""

    config_path.parent.mkdir(parents=True, exist_ok=True)
    with open(config_path, "w") as f:
        f.write(default_config)
