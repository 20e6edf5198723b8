"""Tests for managed account onboarding."""

import pytest
import tempfile
from decimal import Decimal
from pathlib import Path

from polycopy.config import CopyTradeConfig
from polycopy.crypto import decrypt
from polycopy.errors import StartupError
from polycopy.onboarding import add_account, check_wallet
from polycopy.storage import CopyTradeDB

SECRET = "test-bot-secret"
KEY = "0x" + "c" * 64


class FakeWalletClient:
    """Stand-in for an authenticated ClobClient."""

    def __init__(self, balance="25000000", allowances=None, address="0xWallet"):
        self.balance = balance
        self.allowances = allowances if allowances is not None else {
            "0xExchange": "115792089237316195423570985008687907853269984665640564039457584007913129639935",
            "0xNegRiskExchange": "1000000",
        }
        self.address = address
        self.params = []

    def get_address(self):
        return self.address

    def get_balance_allowance(self, params):
        self.params.append(params)
        return {"balance": self.balance, "allowances": self.allowances}


@pytest.fixture
def store():
    with tempfile.TemporaryDirectory() as tmpdir:
        yield CopyTradeDB(str(Path(tmpdir) / "test.db"))


def register(store, client, config=None, **kwargs):
    params = {
        "copy_percentage": Decimal("0.25"),
        "max_trade_size": Decimal("10"),
        "budget": Decimal("100"),
    }
    params.update(kwargs)
    return add_account(
        store,
        config or CopyTradeConfig(bot_secret=SECRET),
        KEY,
        connect=lambda private_key, api: client,
        **params,
    )


class TestCheckWallet:

    def test_trade_ready_wallet(self):
        status = check_wallet(FakeWalletClient())

        assert status.address == "0xWallet"
        assert status.balance == Decimal("25")
        assert status.trade_ready
        assert status.missing_allowances == []

    def test_zero_balance(self):
        with pytest.raises(StartupError, match="zero USDC balance"):
            check_wallet(FakeWalletClient(balance="0"))

    def test_missing_balance(self):
        with pytest.raises(StartupError):
            check_wallet(FakeWalletClient(balance=None))

    def test_zero_allowance(self):
        client = FakeWalletClient(allowances={"0xExchange": "1000", "0xNegRiskAdapter": "0"})

        with pytest.raises(StartupError, match="0xNegRiskAdapter"):
            check_wallet(client)


class TestAddAccount:

    def test_stores_encrypted_key_and_config(self, store):
        account_id = register(store, FakeWalletClient())

        account = store.list_accounts_with_config()[0]
        assert account.account_id == account_id
        assert account.address == "0xWallet"
        assert account.encrypted_private_key != KEY
        assert decrypt(account.encrypted_private_key, SECRET) == KEY
        assert account.budget_remaining == Decimal("100")

    def test_rerun_updates_config(self, store):
        first = register(store, FakeWalletClient())
        second = register(store, FakeWalletClient(), budget=Decimal("40"), copy_percentage=Decimal("0.5"))

        assert first == second
        account = store.list_accounts_with_config()[0]
        assert account.budget_remaining == Decimal("40")
        assert account.copy_percentage == Decimal("0.5")

    def test_requires_secret(self, store):
        client = FakeWalletClient()

        with pytest.raises(StartupError, match="BOT_SECRET"):
            register(store, client, config=CopyTradeConfig())

        assert client.params == []
        assert store.list_accounts_with_config() == []

    def test_invalid_wallet_is_not_stored(self, store):
        with pytest.raises(StartupError):
            register(store, FakeWalletClient(balance="0"))

        assert store.list_accounts_with_config() == []

    def test_invalid_copy_parameters(self, store):
        with pytest.raises(ValueError):
            register(store, FakeWalletClient(), copy_percentage=Decimal("2"))
        with pytest.raises(ValueError):
            register(store, FakeWalletClient(), budget=Decimal("-5"))
