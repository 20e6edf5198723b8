"""
Exception taxonomy for the copy engine.

Skips (not-a-buy, budget exhausted, already copied) are NOT errors; they are
reported through SkipReason. Everything raised here is either surfaced to the
enclosing tick (and logged) or fatal at startup.
"""


class CopyTradeError(Exception):
    """Base class for all copy engine errors."""
    pass


class MarketDataError(CopyTradeError):
    """Raised when a trade or market fetch fails."""
    pass


class SubmissionError(CopyTradeError):
    """Raised when an order submission does not produce a confirmation."""
    pass


class SubmissionRejected(SubmissionError):
    """The exchange definitely did not accept the order."""
    pass


class SubmissionOutcomeUnknown(SubmissionError):
    """
    The submission result could not be observed (timeout, dropped connection).

    The exchange may or may not have accepted the order. Never retry blindly
    and never record success without reconciliation.
    """
    pass


class DecryptionError(CopyTradeError):
    """Raised when an encrypted private key cannot be decrypted."""
    pass


class MissingSecretError(DecryptionError):
    """Raised when BOT_SECRET is not configured."""
    pass


class StartupError(CopyTradeError):
    """Fatal configuration failure. Aborts before any trading begins."""
    pass


class InsufficientBudgetError(CopyTradeError):
    """Raised when a debit would drive an account budget negative."""
    pass
