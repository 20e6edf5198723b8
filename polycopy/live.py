"""
Live copy runner.

Polls the observed trader and mirrors every new BUY into each managed
account:

    POLLING --(new trades or requeued copies)--> PROCESSING --> POLLING

Trades older than process start are never copied (cold start). Within a tick
trades are processed oldest first and accounts strictly one after another, so
budget debits never race. last_seen_timestamp only moves forward; a late trade
with an older timestamp is dropped.

Per (trade, account): not a buy -> skip; already in the copy ledger -> skip;
sized to zero -> skip; otherwise submit with retry and, on confirmation,
record the copy and debit the budget in one transaction. One account's failure
never affects another account or trade.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from polycopy.config import LiveConfig
from polycopy.errors import SubmissionOutcomeUnknown
from polycopy.executor_adapter import OrderSubmitter
from polycopy.market_data import MarketDataClient
from polycopy.models import ManagedAccount, Side, Trade
from polycopy.retry import RetryPolicy, submit_with_retry
from polycopy.sessions import SessionManager
from polycopy.sizing import SkipReason, size
from polycopy.storage import CopyTradeDB

logger = logging.getLogger(__name__)

ZERO = Decimal("0")


class RunnerState(Enum):
    POLLING = "polling"
    PROCESSING = "processing"


class CopyStatus(Enum):
    COPIED = "copied"
    SKIPPED = "skipped"
    FAILED = "failed"
    UNKNOWN = "unknown"      # Submission result indeterminate and unreconciled


@dataclass(frozen=True)
class CopyOutcome:
    """Result of handling one (trade, account) pair."""

    status: CopyStatus
    account_id: int
    tx_hash: str
    notional: Decimal = ZERO
    skip_reason: Optional[SkipReason] = None
    order_id: Optional[str] = None
    error: Optional[str] = None
    requeue: bool = False    # Confirmed submission failure, eligible for another attempt


@dataclass
class LiveStats:
    """Statistics for the runner session."""
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    ticks: int = 0
    trades_seen: int = 0
    copies: int = 0
    skips: int = 0
    failures: int = 0
    unknown_outcomes: int = 0
    requeued: int = 0
    errors: int = 0
    notional_copied: Decimal = ZERO

    def record(self, outcome: CopyOutcome) -> None:
        if outcome.status == CopyStatus.COPIED:
            self.copies += 1
            self.notional_copied += outcome.notional
        elif outcome.status == CopyStatus.SKIPPED:
            self.skips += 1
        elif outcome.status == CopyStatus.UNKNOWN:
            self.unknown_outcomes += 1
        else:
            self.failures += 1

    def to_dict(self) -> Dict[str, Any]:
        return {
            "started_at": self.started_at.isoformat(),
            "runtime_seconds": (datetime.now(timezone.utc) - self.started_at).total_seconds(),
            "ticks": self.ticks,
            "trades_seen": self.trades_seen,
            "copies": self.copies,
            "skips": self.skips,
            "failures": self.failures,
            "unknown_outcomes": self.unknown_outcomes,
            "requeued": self.requeued,
            "errors": self.errors,
            "notional_copied": float(self.notional_copied),
        }


@dataclass
class PendingCopy:
    trade: Trade
    account_id: int
    attempts: int = 0


class FailedTradeQueue:
    """
    Process-local requeue for copies whose submission definitely failed.

    Those trades are already behind last_seen_timestamp, so without this they
    would never be tried again. Entries are re-attempted on later ticks, at
    most max_attempts times and only while the trade is younger than
    max_age_seconds.
    """

    def __init__(self, max_attempts: int = 2, max_age_seconds: int = 300):
        self.max_attempts = max_attempts
        self.max_age_seconds = max_age_seconds
        self._pending: Dict[tuple, PendingCopy] = {}

    def push(self, trade: Trade, account_id: int, attempts: int = 0) -> bool:
        """
        Queue a failed copy.

        Returns:
            False if the attempt budget is spent (entry dropped)
        """
        if attempts >= self.max_attempts:
            logger.warning(
                f"Giving up on {trade.transaction_hash} for account {account_id} "
                f"after {attempts} requeued attempts"
            )
            return False
        key = (account_id, trade.transaction_hash)
        self._pending[key] = PendingCopy(trade=trade, account_id=account_id, attempts=attempts)
        return True

    def drain(self, now: float) -> List[PendingCopy]:
        """Remove and return entries still fresh enough to retry."""
        items = list(self._pending.values())
        self._pending.clear()

        fresh = []
        for item in items:
            age = now - item.trade.timestamp
            if age > self.max_age_seconds:
                logger.warning(
                    f"Dropping stale requeued copy {item.trade.transaction_hash} "
                    f"for account {item.account_id} (age {age:.0f}s)"
                )
                continue
            fresh.append(item)
        return sorted(fresh, key=lambda p: p.trade.timestamp)

    def __len__(self) -> int:
        return len(self._pending)


class LiveRunner:
    """
    Continuous copy execution for all managed accounts.

    Runs until stop() is called. Stop requests are honoured between ticks and
    during the idle delay, never mid-tick.
    """

    def __init__(
        self,
        trader_address: str,
        market_data: MarketDataClient,
        store: CopyTradeDB,
        sessions: SessionManager,
        config: Optional[LiveConfig] = None,
        retry_policy: Optional[RetryPolicy] = None,
        clock: Callable[[], float] = time.time,
    ):
        """
        Args:
            trader_address: Wallet being copied
            market_data: Trade source
            store: Accounts and copy ledger
            sessions: Per-account order submitters
            config: Poll interval and requeue limits
            retry_policy: Submission retry policy
            clock: Unix time source (injected for tests)
        """
        self.trader_address = trader_address
        self.market_data = market_data
        self.store = store
        self.sessions = sessions
        self.config = config or LiveConfig()
        self.retry_policy = retry_policy or RetryPolicy()
        self._clock = clock

        self.state = RunnerState.POLLING
        self.last_seen_timestamp = int(clock())
        self.requeue = FailedTradeQueue(
            max_attempts=self.config.requeue_max_attempts,
            max_age_seconds=self.config.requeue_max_age_seconds,
        )
        self.stats = LiveStats()
        self._stop = asyncio.Event()

    def stop(self) -> None:
        """Request shutdown at the next tick boundary."""
        self._stop.set()
        logger.info("Stop requested")

    @property
    def stopping(self) -> bool:
        return self._stop.is_set()

    async def run(self, max_ticks: Optional[int] = None) -> None:
        """
        Main polling loop.

        Args:
            max_ticks: Stop after this many ticks (None = until stopped)
        """
        logger.info("=" * 60)
        logger.info(f"LIVE COPY TRADING: monitoring {self.trader_address}")
        logger.info(f"Poll interval: {self.config.poll_interval_seconds}s | "
                    f"retry: {self.retry_policy.max_attempts} attempts")
        logger.info(f"Ignoring trades at or before {self.last_seen_timestamp}")
        logger.info("=" * 60)

        ticks = 0
        while not self._stop.is_set():
            try:
                await self.tick()
            except asyncio.CancelledError:
                logger.info("Runner cancelled")
                raise
            except Exception as e:
                self.stats.errors += 1
                logger.error(f"Polling error: {e}")

            ticks += 1
            self.stats.ticks += 1
            if max_ticks and ticks >= max_ticks:
                break

            await self._idle()

        logger.info("Live runner stopped")
        logger.info(f"Final stats: {self.stats.to_dict()}")

    async def _idle(self) -> None:
        """Sleep for the poll interval, waking early on stop()."""
        try:
            await asyncio.wait_for(self._stop.wait(), timeout=self.config.poll_interval_seconds)
        except asyncio.TimeoutError:
            pass

    async def tick(self) -> int:
        """
        One poll + processing burst.

        Returns:
            Number of new trades processed

        Raises:
            MarketDataError: trade fetch failed (nothing processed)
            sqlite3.Error: account load failed (nothing processed, last_seen_timestamp kept)
        """
        trades = await self.market_data.fetch_trades(self.trader_address)

        new_trades = sorted(
            (t for t in trades if t.timestamp > self.last_seen_timestamp),
            key=lambda t: t.timestamp,
        )
        if not new_trades and not self.requeue:
            return 0

        self.state = RunnerState.PROCESSING
        try:
            # A failed load leaves the trades and requeue untouched for the next poll
            accounts = {a.account_id: a for a in self.store.list_accounts_with_config()}
            if new_trades:
                self.last_seen_timestamp = max(
                    self.last_seen_timestamp, max(t.timestamp for t in new_trades)
                )
            pending = self.requeue.drain(self._clock())
            self.sessions.retain(accounts)

            for item in pending:
                account = accounts.get(item.account_id)
                if account is None:
                    logger.warning(f"Account {item.account_id} gone; dropping requeued copy")
                    continue
                logger.info(
                    f"Retrying failed copy {item.trade.transaction_hash} for {account.address} "
                    f"(requeue attempt {item.attempts + 1})"
                )
                await self._handle(accounts, account, item.trade, item.attempts + 1)

            for trade in new_trades:
                self.stats.trades_seen += 1
                logger.info(
                    f"New trade {trade.transaction_hash}: {trade.side.value} {trade.size} "
                    f"@ {trade.price} on {trade.asset_id}"
                )
                for account_id in list(accounts):
                    await self._handle(accounts, accounts[account_id], trade, 0)
        finally:
            self.state = RunnerState.POLLING

        return len(new_trades)

    async def _handle(
        self,
        accounts: Dict[int, ManagedAccount],
        account: ManagedAccount,
        trade: Trade,
        attempts: int,
    ) -> CopyOutcome:
        outcome = await self.copy_trade(account, trade)
        self.stats.record(outcome)

        if outcome.status == CopyStatus.COPIED:
            # Later trades this tick must see the debited budget
            accounts[account.account_id] = replace(
                account, budget_remaining=max(ZERO, account.budget_remaining - outcome.notional)
            )
        elif outcome.requeue and self.requeue.push(trade, account.account_id, attempts):
            self.stats.requeued += 1

        return outcome

    async def copy_trade(self, account: ManagedAccount, trade: Trade) -> CopyOutcome:
        """
        Copy one trade into one account. Never raises.

        Calling this twice for the same (account, trade) places at most one
        order: the copy ledger is checked before sizing.
        """
        tx_hash = trade.transaction_hash
        try:
            if trade.side != Side.BUY:
                return CopyOutcome(CopyStatus.SKIPPED, account.account_id, tx_hash,
                                   skip_reason=SkipReason.NOT_BUY)

            if self.store.has_copy(account.account_id, tx_hash):
                logger.info(f"⏭ Already copied {tx_hash} for {account.address}")
                return CopyOutcome(CopyStatus.SKIPPED, account.account_id, tx_hash,
                                   skip_reason=SkipReason.ALREADY_COPIED)

            sizing = size(trade, account.risk, account.budget_remaining)
            if sizing.skipped:
                logger.info(
                    f"⏭ Skipped for {account.address} ({sizing.skip_reason.value}, "
                    f"budget ${account.budget_remaining})"
                )
                return CopyOutcome(CopyStatus.SKIPPED, account.account_id, tx_hash,
                                   skip_reason=sizing.skip_reason)

            session = await self.sessions.get(account)
            return await self._submit(account, trade, session, sizing.notional)

        except Exception as e:
            logger.error(f"❌ Failed for {account.address}: {e}")
            return CopyOutcome(CopyStatus.FAILED, account.account_id, tx_hash, error=str(e))

    async def _submit(
        self,
        account: ManagedAccount,
        trade: Trade,
        session: OrderSubmitter,
        notional: Decimal,
    ) -> CopyOutcome:
        tx_hash = trade.transaction_hash
        started = int(self._clock())

        try:
            confirmation = await submit_with_retry(
                lambda: session.submit_market_order(trade.asset_id, Side.BUY, notional),
                self.retry_policy,
            )
        except SubmissionOutcomeUnknown as e:
            return await self._reconcile(account, trade, session, notional, started, e)
        except Exception as e:
            logger.error(f"❌ Order failed for {account.address} on {tx_hash}: {e}")
            return CopyOutcome(CopyStatus.FAILED, account.account_id, tx_hash,
                               notional=notional, error=str(e), requeue=True)

        self._record(account, trade, notional, confirmation.order_id)
        logger.info(
            f"✅ LIVE ORDER {account.address} ${notional:.2f} on {trade.asset_id} "
            f"order={confirmation.order_id}"
        )
        return CopyOutcome(CopyStatus.COPIED, account.account_id, tx_hash,
                           notional=notional, order_id=confirmation.order_id)

    async def _reconcile(
        self,
        account: ManagedAccount,
        trade: Trade,
        session: OrderSubmitter,
        notional: Decimal,
        started: int,
        cause: Exception,
    ) -> CopyOutcome:
        """
        Resolve an indeterminate submission by asking the exchange for our fill.

        Found -> treat as copied. Not found or lookup failed -> leave
        unrecorded for manual review; never resubmit.
        """
        tx_hash = trade.transaction_hash
        logger.warning(f"Outcome unknown for {account.address} on {tx_hash}: {cause}; reconciling")

        try:
            order_id = await session.find_fill_since(trade.asset_id, started)
        except Exception as e:
            logger.critical(
                f"UNRECONCILED copy {tx_hash} for {account.address} (${notional:.2f}): "
                f"fill lookup failed: {e}. Manual review required."
            )
            return CopyOutcome(CopyStatus.UNKNOWN, account.account_id, tx_hash,
                               notional=notional, error=str(cause))

        if order_id is None:
            logger.critical(
                f"UNRECONCILED copy {tx_hash} for {account.address} (${notional:.2f}): "
                f"no fill found. Not recorded; manual review required."
            )
            return CopyOutcome(CopyStatus.UNKNOWN, account.account_id, tx_hash,
                               notional=notional, error=str(cause))

        self._record(account, trade, notional, order_id)
        logger.info(f"✅ Reconciled {tx_hash} for {account.address}: fill {order_id}")
        return CopyOutcome(CopyStatus.COPIED, account.account_id, tx_hash,
                           notional=notional, order_id=order_id)

    def _record(self, account: ManagedAccount, trade: Trade, notional: Decimal, order_id: str) -> None:
        """Write copy + debit atomically. A failure here means an order exists with no ledger row."""
        try:
            self.store.record_copy_and_debit(
                account.account_id, trade.transaction_hash, trade.condition_id, notional
            )
        except Exception as e:
            logger.critical(
                f"Order {order_id} placed for {account.address} but ledger write failed: {e}"
            )
            raise

    def get_status(self) -> Dict[str, Any]:
        """Get runner status."""
        return {
            "trader_address": self.trader_address,
            "state": self.state.value,
            "last_seen_timestamp": self.last_seen_timestamp,
            "requeued_pending": len(self.requeue),
            "sessions": len(self.sessions),
            "stats": self.stats.to_dict(),
        }
