import random
from decimal import Decimal
from typing import List, Optional

from models import (
    MAX_CLIENT_ID,
    MAX_TX_ID,
    Chargeback,
    Deposit,
    Dispute,
    Resolve,
    Transaction,
    Withdrawal,
)


def generate_transactions(
    num_txns: int,
    num_clients: int,
    rng: Optional[random.Random] = None,
    max_amount: int = 10000,
) -> List[Transaction]:
    """
    Build a random transaction stream for load testing.

    The first transaction moves funds. Every later one is equally likely to be
    a deposit, a withdrawal, or a dispute/resolve/chargeback that points at a
    transaction generated earlier in the stream.
    """
    if num_txns < 0:
        raise ValueError("num_txns cannot be negative")
    if not 1 <= num_clients <= MAX_CLIENT_ID:
        raise ValueError(f"num_clients must be between 1 and {MAX_CLIENT_ID}")
    if max_amount < 0:
        raise ValueError("max_amount cannot be negative")

    rng = rng or random.Random()
    transactions: List[Transaction] = []
    for _ in range(num_txns):
        transactions.append(_random_transaction(transactions, num_clients, max_amount, rng))
    return transactions


def _random_transaction(
    previous: List[Transaction],
    num_clients: int,
    max_amount: int,
    rng: random.Random,
) -> Transaction:
    choice = rng.randint(0, 4) if previous else rng.randint(0, 1)

    if choice <= 1:
        variant = Deposit if choice == 0 else Withdrawal
        return variant(
            client_id=rng.randint(1, num_clients),
            tx_id=rng.randint(0, MAX_TX_ID),
            amount=_random_amount(rng, max_amount),
        )

    target = rng.choice(previous)
    variant = (Dispute, Resolve, Chargeback)[choice - 2]
    return variant(client_id=target.client_id, tx_id=target.tx_id)


def _random_amount(rng: random.Random, max_amount: int) -> Decimal:
    return Decimal(rng.randint(0, max_amount * 10**4)).scaleb(-4)
