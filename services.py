import asyncio
from typing import AsyncIterable, AsyncIterator, Callable, Iterable, List, Optional, Sequence
import structlog

from config import Settings, get_settings
from errors import (
    AccountLocked,
    EngineError,
    InsufficientFunds,
    InvalidChargeback,
    InvalidDispute,
    InvalidResolve,
    SourceError,
)
from models import (
    Account,
    Chargeback,
    Deposit,
    Dispute,
    DisputeState,
    Resolve,
    StoredTransaction,
    Transaction,
    TransactionKind,
    Withdrawal,
)
from repositories import (
    AccountRepository,
    InMemoryAccountLedger,
    InMemoryTransactionStore,
    TransactionRepository,
)
import storage

logger = structlog.get_logger()

SourceReader = Callable[[str, Settings], AsyncIterator[Transaction]]


class TransactionEngine:
    """
    Applies transactions one at a time to a transaction store and an account ledger.

    ``apply`` either mutates exactly one account or raises an ``EngineError``
    and leaves both repositories untouched. It never suspends.

    Besides ``InvalidDispute``, a dispute raises ``InsufficientFunds`` when the
    disputed amount exceeds the available funds, so ``available`` stays
    non-negative.
    """

    def __init__(self, transaction_repo: TransactionRepository, account_repo: AccountRepository):
        self.transaction_repo = transaction_repo
        self.account_repo = account_repo

    def apply(self, transaction: Transaction) -> None:
        account = self.account_repo.get_or_create(transaction.client_id)

        if transaction.kind == TransactionKind.deposit:
            self._apply_deposit(account, transaction)
        elif transaction.kind == TransactionKind.withdrawal:
            self._apply_withdrawal(account, transaction)
        elif transaction.kind == TransactionKind.dispute:
            self._apply_dispute(account, transaction)
        elif transaction.kind == TransactionKind.resolve:
            self._apply_resolve(account, transaction)
        elif transaction.kind == TransactionKind.chargeback:
            self._apply_chargeback(account, transaction)
        else:
            raise TypeError(f"Unsupported transaction: {transaction!r}")

    def _apply_deposit(self, account: Account, transaction: Deposit) -> None:
        if account.locked:
            raise AccountLocked(transaction, f"Account {account.client_id} is locked")

        account.available += transaction.amount
        self.transaction_repo.record(transaction)

        logger.debug(
            "Deposit applied",
            client_id=account.client_id,
            tx_id=transaction.tx_id,
            amount=str(transaction.amount),
            available=str(account.available),
        )

    def _apply_withdrawal(self, account: Account, transaction: Withdrawal) -> None:
        if account.locked:
            raise AccountLocked(transaction, f"Account {account.client_id} is locked")

        if account.available < transaction.amount:
            raise InsufficientFunds(
                transaction,
                f"Available {account.available} is less than requested {transaction.amount}",
            )

        account.available -= transaction.amount
        self.transaction_repo.record(transaction)

        logger.debug(
            "Withdrawal applied",
            client_id=account.client_id,
            tx_id=transaction.tx_id,
            amount=str(transaction.amount),
            available=str(account.available),
        )

    def _apply_dispute(self, account: Account, transaction: Dispute) -> None:
        stored = self._referenced(transaction, InvalidDispute)

        if stored.state != DisputeState.undisputed:
            raise InvalidDispute(
                transaction, f"Transaction {transaction.tx_id} is already {stored.state.value}"
            )

        # withdrawals are frozen the same way as deposits
        if account.available < stored.amount:
            raise InsufficientFunds(
                transaction,
                f"Available {account.available} cannot cover disputed {stored.amount}",
            )

        account.available -= stored.amount
        account.held += stored.amount
        self.transaction_repo.set_dispute_state(transaction.tx_id, DisputeState.disputed)

        logger.debug(
            "Dispute opened",
            client_id=account.client_id,
            tx_id=transaction.tx_id,
            held=str(account.held),
        )

    def _apply_resolve(self, account: Account, transaction: Resolve) -> None:
        stored = self._referenced(transaction, InvalidResolve)

        if stored.state != DisputeState.disputed:
            raise InvalidResolve(
                transaction, f"Transaction {transaction.tx_id} is {stored.state.value}, not disputed"
            )

        account.held -= stored.amount
        account.available += stored.amount
        self.transaction_repo.set_dispute_state(transaction.tx_id, DisputeState.resolved)

        logger.debug(
            "Dispute resolved",
            client_id=account.client_id,
            tx_id=transaction.tx_id,
            available=str(account.available),
        )

    def _apply_chargeback(self, account: Account, transaction: Chargeback) -> None:
        stored = self._referenced(transaction, InvalidChargeback)

        if stored.state != DisputeState.disputed:
            raise InvalidChargeback(
                transaction, f"Transaction {transaction.tx_id} is {stored.state.value}, not disputed"
            )

        account.held -= stored.amount
        account.locked = True
        self.transaction_repo.set_dispute_state(transaction.tx_id, DisputeState.charged_back)

        logger.info(
            "Chargeback applied, account locked",
            client_id=account.client_id,
            tx_id=transaction.tx_id,
            amount=str(stored.amount),
        )

    def _referenced(self, transaction: Transaction, error_class) -> StoredTransaction:
        """The stored transaction a dispute-lifecycle row points at, owned by the same client."""
        stored = self.transaction_repo.lookup(transaction.tx_id)

        if stored is None:
            raise error_class(transaction, f"Transaction {transaction.tx_id} not found")

        if stored.client_id != transaction.client_id:
            raise error_class(
                transaction,
                f"Transaction {transaction.tx_id} belongs to client {stored.client_id}",
            )

        return stored


class SourceProcessor:
    """
    Replays one source into its own ledger.

    Rejected transactions are logged and skipped. A ``SourceError`` raised
    while reading aborts the replay and propagates to the caller.
    """

    def __init__(
        self,
        source: str = "<memory>",
        transaction_repo: Optional[TransactionRepository] = None,
        account_repo: Optional[AccountRepository] = None,
    ):
        self.source = source
        self.transaction_repo = transaction_repo if transaction_repo is not None else InMemoryTransactionStore()
        self.account_repo = account_repo if account_repo is not None else InMemoryAccountLedger()
        self.engine = TransactionEngine(self.transaction_repo, self.account_repo)
        self.applied = 0
        self.rejected = 0

    async def process(self, transactions: AsyncIterable[Transaction]) -> List[Account]:
        logger.info("Replaying source", source=self.source)

        async for transaction in transactions:
            try:
                self.engine.apply(transaction)
            except EngineError as e:
                self.rejected += 1
                logger.warning(
                    "Transaction rejected",
                    source=self.source,
                    error_code=e.error_code,
                    detail=e.detail,
                    kind=transaction.kind.value,
                    client_id=transaction.client_id,
                    tx_id=transaction.tx_id,
                )
                continue
            self.applied += 1

        accounts = self.account_repo.snapshot()

        logger.info(
            "Source replayed",
            source=self.source,
            applied=self.applied,
            rejected=self.rejected,
            accounts=len(accounts),
        )

        return accounts


def combine_accounts(results: Iterable[List[Account]]) -> List[Account]:
    """
    Concatenate per-source account lists in order.

    Each source is an isolated ledger, so a client seen in two sources shows
    up twice. Nothing is merged by client id.
    """
    combined: List[Account] = []
    for accounts in results:
        combined.extend(accounts)
    return combined


class LedgerAggregator:
    """Fans out one ``SourceProcessor`` per source and concatenates what succeeds."""

    def __init__(self, settings: Optional[Settings] = None, reader: Optional[SourceReader] = None):
        self.settings = settings or get_settings()
        self.reader = reader or storage.read_transactions
        self.failed_sources: List[str] = []

    async def run(self, sources: Sequence[str]) -> List[Account]:
        self.failed_sources = []
        semaphore = asyncio.Semaphore(max(1, self.settings.max_concurrent_sources))

        results = await asyncio.gather(
            *(self._replay(source, semaphore) for source in sources),
            return_exceptions=True,
        )

        successful: List[List[Account]] = []
        for source, result in zip(sources, results):
            if isinstance(result, asyncio.CancelledError):
                raise result
            if isinstance(result, SourceError):
                logger.error(
                    "Source failed",
                    source=source,
                    error_code=result.error_code,
                    detail=result.detail,
                )
            elif isinstance(result, Exception):
                logger.error(
                    "Source failed with unexpected error",
                    source=source,
                    error=str(result),
                    exc_info=result,
                )
            elif isinstance(result, BaseException):
                raise result
            else:
                successful.append(result)
                continue
            self.failed_sources.append(source)

        accounts = combine_accounts(successful)

        logger.info(
            "Sources aggregated",
            sources=len(sources),
            failed=len(self.failed_sources),
            accounts=len(accounts),
        )

        return accounts

    async def _replay(self, source: str, semaphore: asyncio.Semaphore) -> List[Account]:
        async with semaphore:
            processor = SourceProcessor(source)
            return await processor.process(self.reader(source, self.settings))


# Factory function for dependency injection
def get_ledger_aggregator(
    settings: Optional[Settings] = None,
    reader: Optional[SourceReader] = None,
) -> LedgerAggregator:
    return LedgerAggregator(settings, reader)
