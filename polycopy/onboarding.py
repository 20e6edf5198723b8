"""
Managed account onboarding.

Validates a wallet against the CLOB (address, API creds, USDC collateral
balance and allowances), then stores its encrypted key and copy config.
Allowances are only checked here; approving spenders is done outside this
tool.
"""

import logging
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Dict, List

from polycopy.config import ApiEndpoints, CopyTradeConfig
from polycopy.crypto import encrypt
from polycopy.errors import StartupError
from polycopy.executor_adapter import create_clob_client
from polycopy.models import RiskConfig
from polycopy.storage import CopyTradeDB

logger = logging.getLogger(__name__)

USDC_BASE_UNITS = Decimal("1000000")


@dataclass(frozen=True)
class WalletStatus:
    """Collateral state of a wallet as reported by the CLOB."""

    address: str
    balance: Decimal                                    # USDC
    allowances: Dict[str, str] = field(default_factory=dict)

    @property
    def missing_allowances(self) -> List[str]:
        return [spender for spender, amount in self.allowances.items() if _is_zero(amount)]

    @property
    def trade_ready(self) -> bool:
        return self.balance > 0 and not self.missing_allowances


def _is_zero(value: Any) -> bool:
    if value is None or value == "":
        return True
    try:
        return Decimal(str(value)) == 0
    except InvalidOperation:
        return True


def check_wallet(client: Any, signature_type: int = 0) -> WalletStatus:
    """
    Read collateral balance and allowances.

    Raises:
        StartupError: zero balance or any zero allowance
    """
    from py_clob_client.clob_types import AssetType, BalanceAllowanceParams

    address = client.get_address()
    logger.info(f"🔎 Validating wallet: {address}")

    resp = client.get_balance_allowance(
        BalanceAllowanceParams(asset_type=AssetType.COLLATERAL, signature_type=signature_type)
    )
    if not isinstance(resp, dict):
        raise StartupError(f"Unexpected balance response for {address}: {resp}")

    try:
        balance = Decimal(str(resp.get("balance") or "0")) / USDC_BASE_UNITS
    except InvalidOperation as e:
        raise StartupError(f"Unparseable balance for {address}: {resp.get('balance')}") from e

    status = WalletStatus(
        address=address,
        balance=balance,
        allowances=dict(resp.get("allowances") or {}),
    )
    logger.info(f"USDC balance: {status.balance}")

    if status.balance <= 0:
        raise StartupError(f"Wallet {address} has zero USDC balance")
    if status.missing_allowances:
        raise StartupError(
            f"Allowances missing for {address}: {', '.join(status.missing_allowances)}"
        )

    logger.info("✅ All allowances already set")
    return status


def add_account(
    store: CopyTradeDB,
    config: CopyTradeConfig,
    private_key: str,
    copy_percentage: Decimal,
    max_trade_size: Decimal,
    budget: Decimal,
    connect: Callable[[str, ApiEndpoints], Any] = create_clob_client,
) -> int:
    """
    Validate a wallet and store it as a managed account.

    Re-running for an existing address replaces its copy config and budget.

    Returns:
        Account ID

    Raises:
        StartupError: BOT_SECRET missing, or wallet not trade-ready
        ValueError: invalid copy parameters
    """
    secret = config.require_secret()

    RiskConfig(copy_percentage=copy_percentage, max_trade_size=max_trade_size)
    if budget < 0:
        raise ValueError(f"budget must be non-negative: {budget}")

    client = connect(private_key, config.api)
    status = check_wallet(client, config.api.signature_type)

    account_id = store.upsert_account(
        address=status.address,
        encrypted_private_key=encrypt(private_key, secret),
        copy_percentage=copy_percentage,
        max_trade_size=max_trade_size,
        budget=budget,
    )
    logger.info(
        f"✅ Account {account_id} saved & configured: {status.address} "
        f"(copy {copy_percentage}, max ${max_trade_size}, budget ${budget})"
    )
    return account_id
