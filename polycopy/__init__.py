"""
Polymarket copy trading

Mirrors the BUY fills of one observed wallet into managed accounts, or
simulates doing so against a virtual budget.

Components:
- sizing: Copy notional / share sizing shared by both modes
- simulation: Dry-run replay with mark-to-market PnL
- live: Polling runner with dedup ledger, retry and requeue
- storage: SQLite account store and copy ledger
- market_data: Data API / Gamma API client
- executor_adapter: Order submission (py-clob-client)
"""

from polycopy.config import (
    ApiEndpoints,
    CopyTradeConfig,
    LiveConfig,
    SimulationConfig,
)
from polycopy.errors import (
    CopyTradeError,
    DecryptionError,
    InsufficientBudgetError,
    MarketDataError,
    MissingSecretError,
    StartupError,
    SubmissionError,
    SubmissionOutcomeUnknown,
    SubmissionRejected,
)
from polycopy.live import CopyOutcome, CopyStatus, FailedTradeQueue, LiveRunner, LiveStats, RunnerState
from polycopy.models import ManagedAccount, Market, RiskConfig, Side, Trade
from polycopy.retry import RetryPolicy, submit_with_retry
from polycopy.simulation import SimulationContext, SimulationReport, SimulationRunner, mark_to_market
from polycopy.sizing import ShareSizingResult, SizingResult, SkipReason, size, size_shares

__version__ = "1.0.0"

__all__ = [
    # Config
    "ApiEndpoints",
    "CopyTradeConfig",
    "LiveConfig",
    "SimulationConfig",
    "RetryPolicy",
    # Errors
    "CopyTradeError",
    "DecryptionError",
    "InsufficientBudgetError",
    "MarketDataError",
    "MissingSecretError",
    "StartupError",
    "SubmissionError",
    "SubmissionOutcomeUnknown",
    "SubmissionRejected",
    # Models
    "ManagedAccount",
    "Market",
    "RiskConfig",
    "Side",
    "Trade",
    # Sizing
    "ShareSizingResult",
    "SizingResult",
    "SkipReason",
    "size",
    "size_shares",
    # Runners
    "CopyOutcome",
    "CopyStatus",
    "FailedTradeQueue",
    "LiveRunner",
    "LiveStats",
    "RunnerState",
    "SimulationContext",
    "SimulationReport",
    "SimulationRunner",
    "mark_to_market",
    "submit_with_retry",
]
