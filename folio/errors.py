"""Error taxonomy for collaborator failures and risk-gate skips."""


class FolioError(Exception):
    """Base class for folio errors."""


class TransportFailure(FolioError):
    """Network error, timeout or non-2xx response from a collaborator."""


class ValidationFailure(FolioError):
    """A collaborator answered, but the payload is unusable."""


class SkipReason:
    """Reason codes for a decision that produced no trade. Not errors."""
    HOLD = "hold"
    AUTO_TRADE_DISABLED = "auto_trade_disabled"
    NO_PRICE = "no_price"
    DAILY_LIMIT = "daily_limit"
    COOLDOWN = "cooldown"
    MAX_POSITION = "max_position"
    ZERO_SIZE = "zero_size"
    LEDGER_WRITE_FAILED = "ledger_write_failed"
