"""
Per-account signing sessions.

Maps account id -> authenticated OrderSubmitter. Sessions are created on first
use (decrypt the key, derive API creds) and reused for the lifetime of the
process, so an account is never re-authenticated every tick. Accounts removed
from the store are evicted via retain().
"""

import asyncio
import logging
from typing import Callable, Dict, Iterable, Optional

from polycopy.config import CopyTradeConfig
from polycopy.crypto import decrypt
from polycopy.executor_adapter import ClobOrderSubmitter, OrderSubmitter
from polycopy.models import ManagedAccount

logger = logging.getLogger(__name__)

# private key -> submitter. Blocking; run off the event loop.
SubmitterFactory = Callable[[str], OrderSubmitter]


class SessionManager:
    """Owns the account id -> session mapping. Not a global singleton."""

    def __init__(
        self,
        secret: Optional[str],
        factory: SubmitterFactory,
    ):
        """
        Args:
            secret: BOT_SECRET used to decrypt account keys
            factory: Builds an authenticated submitter from a private key
        """
        self._secret = secret
        self._factory = factory
        self._sessions: Dict[int, OrderSubmitter] = {}

    @classmethod
    def for_clob(cls, config: CopyTradeConfig) -> "SessionManager":
        """Session manager producing live CLOB submitters."""
        def factory(private_key: str) -> OrderSubmitter:
            return ClobOrderSubmitter.connect(
                private_key,
                config.api,
                timeout_seconds=config.live.submission_timeout_seconds,
            )

        return cls(config.bot_secret, factory)

    async def get(self, account: ManagedAccount) -> OrderSubmitter:
        """
        Return the cached session for `account`, creating it on a miss.

        Raises:
            DecryptionError: key cannot be decrypted
            Exception: session creation failure (nothing is cached)
        """
        session = self._sessions.get(account.account_id)
        if session is not None:
            return session

        private_key = decrypt(account.encrypted_private_key, self._secret)
        session = await asyncio.to_thread(self._factory, private_key)
        self._sessions[account.account_id] = session

        logger.info(f"Session created for account {account.account_id} ({account.address})")
        return session

    def evict(self, account_id: int) -> None:
        if self._sessions.pop(account_id, None) is not None:
            logger.info(f"Session evicted for account {account_id}")

    def retain(self, account_ids: Iterable[int]) -> None:
        """Evict sessions for accounts not in `account_ids`."""
        keep = set(account_ids)
        for account_id in list(self._sessions):
            if account_id not in keep:
                self.evict(account_id)

    def __contains__(self, account_id: int) -> bool:
        return account_id in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)
