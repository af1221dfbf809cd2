from abc import ABC, abstractmethod
from typing import Dict, List, Optional

from models import Account, DisputeState, FundsTransaction, StoredTransaction


class TransactionRepository(ABC):
    @abstractmethod
    def record(self, transaction: FundsTransaction) -> None:
        """Store a deposit or withdrawal.

        A repeated id overwrites the earlier entry, unless that entry is
        currently disputed, in which case the earlier entry is kept.
        """
        pass

    @abstractmethod
    def lookup(self, tx_id: int) -> Optional[StoredTransaction]:
        """Get stored transaction by id. Returns None if it was never recorded."""
        pass

    @abstractmethod
    def set_dispute_state(self, tx_id: int, state: DisputeState) -> None:
        """Move a stored transaction to another dispute state."""
        pass

    @abstractmethod
    def __len__(self) -> int:
        pass


class AccountRepository(ABC):
    @abstractmethod
    def get_or_create(self, client_id: int) -> Account:
        """Get the client's account, opening an empty one on first reference."""
        pass

    @abstractmethod
    def snapshot(self) -> List[Account]:
        """Copies of every account, ordered by client id."""
        pass

    @abstractmethod
    def __len__(self) -> int:
        pass


class InMemoryTransactionStore(TransactionRepository):
    def __init__(self):
        self.store: Dict[int, StoredTransaction] = {}

    def record(self, transaction: FundsTransaction) -> None:
        existing = self.store.get(transaction.tx_id)
        # an open dispute pins the entry until it is resolved or charged back
        if existing is not None and existing.state == DisputeState.disputed:
            return
        self.store[transaction.tx_id] = StoredTransaction(transaction=transaction)

    def lookup(self, tx_id: int) -> Optional[StoredTransaction]:
        return self.store.get(tx_id)

    def set_dispute_state(self, tx_id: int, state: DisputeState) -> None:
        if tx_id not in self.store:
            raise KeyError(f"Transaction {tx_id} was never recorded")
        self.store[tx_id].state = state

    def __len__(self) -> int:
        return len(self.store)


class InMemoryAccountLedger(AccountRepository):
    def __init__(self):
        self.accounts: Dict[int, Account] = {}

    def get_or_create(self, client_id: int) -> Account:
        account = self.accounts.get(client_id)
        if account is None:
            account = Account(client_id=client_id)
            self.accounts[client_id] = account
        return account

    def snapshot(self) -> List[Account]:
        return [self.accounts[client_id].model_copy() for client_id in sorted(self.accounts)]

    def __len__(self) -> int:
        return len(self.accounts)
