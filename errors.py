from typing import Any, Optional


class LedgerError(Exception):
    """Base class for every error raised by the ledger."""

    error_code: str = "LEDGER_ERROR"


class EngineError(LedgerError):
    """A single transaction was rejected. The ledger is left unchanged."""

    error_code = "ENGINE_ERROR"

    def __init__(self, transaction: Any, detail: str):
        super().__init__(detail)
        self.transaction = transaction
        self.detail = detail


class AccountLocked(EngineError):
    error_code = "ACCOUNT_LOCKED"


class InsufficientFunds(EngineError):
    error_code = "INSUFFICIENT_FUNDS"


class InvalidDispute(EngineError):
    error_code = "INVALID_DISPUTE"


class InvalidResolve(EngineError):
    error_code = "INVALID_RESOLVE"


class InvalidChargeback(EngineError):
    error_code = "INVALID_CHARGEBACK"


class SourceError(LedgerError):
    """A whole source could not be replayed."""

    error_code = "SOURCE_ERROR"

    def __init__(self, source: str, detail: str):
        super().__init__(f"{source}: {detail}")
        self.source = source
        self.detail = detail


class SourceUnreadable(SourceError):
    error_code = "SOURCE_UNREADABLE"


class MalformedRow(SourceError):
    error_code = "MALFORMED_ROW"

    def __init__(self, source: str, detail: str, line: Optional[int] = None):
        if line is not None:
            detail = f"line {line}: {detail}"
        super().__init__(source, detail)
        self.line = line
