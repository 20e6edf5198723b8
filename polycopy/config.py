"""
Copy engine configuration.

Validated frozen dataclasses. All monetary values use Decimal.
Environment (and .env via python-dotenv) is read only by from_env().
"""

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Optional
import os

from dotenv import load_dotenv

from polycopy.errors import StartupError
from polycopy.retry import RetryPolicy


@dataclass(frozen=True, slots=True)
class ApiEndpoints:
    """Polymarket hosts and chain settings."""
    clob_host: str = "https://clob.polymarket.com"
    data_api: str = "https://data-api.polymarket.com"
    gamma_api: str = "https://gamma-api.polymarket.com"
    chain_id: int = 137                        # Polygon mainnet
    signature_type: int = 0                    # EOA
    request_timeout_seconds: float = 30.0

    def __post_init__(self) -> None:
        if self.request_timeout_seconds <= 0:
            raise ValueError(f"request_timeout_seconds must be positive: {self.request_timeout_seconds}")


@dataclass(frozen=True, slots=True)
class LiveConfig:
    """
    Live polling loop settings.
    """
    poll_interval_seconds: float = 10.0        # Idle delay after each tick
    trades_page_limit: int = 50                # Most-recent fills per poll
    submission_timeout_seconds: float = 30.0   # Beyond this the outcome is unknown
    requeue_max_attempts: int = 2              # Re-attempts for failed copies
    requeue_max_age_seconds: int = 300         # Failed copies older than this are dropped

    def __post_init__(self) -> None:
        if self.poll_interval_seconds < 0:
            raise ValueError(f"poll_interval_seconds must be non-negative: {self.poll_interval_seconds}")
        if self.trades_page_limit <= 0:
            raise ValueError(f"trades_page_limit must be positive: {self.trades_page_limit}")
        if self.submission_timeout_seconds <= 0:
            raise ValueError(f"submission_timeout_seconds must be positive: {self.submission_timeout_seconds}")
        if self.requeue_max_attempts < 0:
            raise ValueError(f"requeue_max_attempts must be non-negative: {self.requeue_max_attempts}")


@dataclass(frozen=True, slots=True)
class SimulationConfig:
    """
    Dry-run risk parameters, applied uniformly to the single virtual budget.
    """
    budget: Decimal = Decimal("100")
    copy_percentage: Decimal = Decimal("0.25")
    max_trade_size: Decimal = Decimal("10")

    def __post_init__(self) -> None:
        if self.budget < Decimal("0"):
            raise ValueError(f"budget must be non-negative: {self.budget}")
        if not (Decimal("0") < self.copy_percentage <= Decimal("1")):
            raise ValueError(f"copy_percentage must be 0-1: {self.copy_percentage}")
        if self.max_trade_size <= Decimal("0"):
            raise ValueError(f"max_trade_size must be positive: {self.max_trade_size}")


@dataclass(frozen=True, slots=True)
class CopyTradeConfig:
    """
    Master configuration.
    """
    db_path: str = "copytrade.db"
    bot_secret: Optional[str] = field(default=None, repr=False)

    api: ApiEndpoints = field(default_factory=ApiEndpoints)
    live: LiveConfig = field(default_factory=LiveConfig)
    retry: RetryPolicy = field(default_factory=RetryPolicy)
    simulation: SimulationConfig = field(default_factory=SimulationConfig)

    def require_secret(self) -> str:
        """Return BOT_SECRET or fail startup."""
        if not self.bot_secret:
            raise StartupError("Missing BOT_SECRET env variable")
        return self.bot_secret

    @classmethod
    def from_env(cls) -> "CopyTradeConfig":
        """Create config from environment variables (and .env)."""
        load_dotenv()

        return cls(
            db_path=os.getenv("COPYTRADE_DB", "copytrade.db"),
            bot_secret=os.getenv("BOT_SECRET") or None,
            api=ApiEndpoints(
                clob_host=os.getenv("CLOB_HOST", "https://clob.polymarket.com"),
                data_api=os.getenv("DATA_API_BASE", "https://data-api.polymarket.com"),
                gamma_api=os.getenv("GAMMA_API_BASE", "https://gamma-api.polymarket.com"),
                chain_id=int(os.getenv("CHAIN_ID", "137")),
                signature_type=int(os.getenv("SIGNATURE_TYPE", "0")),
                request_timeout_seconds=float(os.getenv("REQUEST_TIMEOUT_SECONDS", "30")),
            ),
            live=LiveConfig(
                poll_interval_seconds=float(os.getenv("POLL_INTERVAL_SECONDS", "10")),
                trades_page_limit=int(os.getenv("TRADES_PAGE_LIMIT", "50")),
                submission_timeout_seconds=float(os.getenv("SUBMISSION_TIMEOUT_SECONDS", "30")),
                requeue_max_attempts=int(os.getenv("REQUEUE_MAX_ATTEMPTS", "2")),
                requeue_max_age_seconds=int(os.getenv("REQUEUE_MAX_AGE_SECONDS", "300")),
            ),
            retry=RetryPolicy(
                max_attempts=int(os.getenv("SUBMIT_MAX_ATTEMPTS", "3")),
                delay_seconds=float(os.getenv("SUBMIT_RETRY_DELAY_SECONDS", "0")),
                backoff=float(os.getenv("SUBMIT_RETRY_BACKOFF", "1.0")),
            ),
        )
