import asyncio
import csv
from itertools import islice
from typing import AsyncIterator, Dict, Iterable, List, Optional, TextIO
from pydantic import ValidationError
import structlog

from config import Settings, get_settings
from errors import MalformedRow, SourceUnreadable
from models import Account, AccountRecord, Transaction, TransactionRecord

logger = structlog.get_logger()

INPUT_FIELDS = ["type", "client", "tx", "amount"]
REQUIRED_INPUT_FIELDS = {"type", "client", "tx"}
OUTPUT_FIELDS = ["client", "available", "held", "total", "locked"]


async def read_transactions(source: str, settings: Optional[Settings] = None) -> AsyncIterator[Transaction]:
    """
    Yield the transactions of one CSV source in file order.

    Lines are pulled from disk in batches on a worker thread, so this is the
    only place a source replay suspends.
    """
    settings = settings or get_settings()
    batch_size = max(1, settings.read_batch_size)

    try:
        handle = await asyncio.to_thread(open, source, "r", newline="", encoding="utf-8")
    except OSError as e:
        raise SourceUnreadable(source, str(e)) from e

    with handle:
        header: Optional[List[str]] = None
        line = 0

        while True:
            try:
                batch = await asyncio.to_thread(lambda: list(islice(handle, batch_size)))
            except (OSError, UnicodeDecodeError) as e:
                raise SourceUnreadable(source, str(e)) from e
            if not batch:
                break

            for values in csv.reader(batch):
                line += 1
                values = [value.strip() for value in values]
                if not any(values):
                    continue

                if header is None:
                    header = _parse_header(source, values, line)
                    continue

                record = _parse_row(source, header, values, line, settings.skip_malformed_rows)
                if record is not None:
                    yield record.to_transaction()

    logger.debug("Source read", source=source, lines=line)


def _parse_header(source: str, values: List[str], line: int) -> List[str]:
    header = [value.lower() for value in values]
    missing = REQUIRED_INPUT_FIELDS - set(header)
    if missing:
        raise MalformedRow(source, f"header is missing columns: {', '.join(sorted(missing))}", line)
    return header


def _parse_row(
    source: str,
    header: List[str],
    values: List[str],
    line: int,
    skip_malformed: bool,
) -> Optional[TransactionRecord]:
    try:
        if len(values) > len(header):
            raise ValueError(f"expected at most {len(header)} fields, got {len(values)}")
        row: Dict[str, str] = dict(zip(header, values))
        return TransactionRecord.model_validate(row)
    except (ValidationError, ValueError) as e:
        if not skip_malformed:
            raise MalformedRow(source, _describe(e), line) from e
        logger.warning("Skipping malformed row", source=source, line=line, error=_describe(e))
        return None


def _describe(error: Exception) -> str:
    if isinstance(error, ValidationError):
        return "; ".join(
            f"{'.'.join(str(part) for part in err['loc']) or 'row'}: {err['msg']}"
            for err in error.errors()
        )
    return str(error)


def write_accounts(accounts: Iterable[Account], sink: TextIO) -> None:
    """Render accounts as CSV with money to 4 decimal places."""
    writer = csv.DictWriter(sink, fieldnames=OUTPUT_FIELDS, lineterminator="\n")
    writer.writeheader()
    for account in accounts:
        writer.writerow(AccountRecord.from_account(account).model_dump())


def write_transactions(transactions: Iterable[Transaction], sink: TextIO) -> None:
    """Render transactions in the same CSV shape ``read_transactions`` accepts."""
    writer = csv.DictWriter(sink, fieldnames=INPUT_FIELDS, lineterminator="\n")
    writer.writeheader()
    for transaction in transactions:
        writer.writerow(TransactionRecord.from_transaction(transaction).model_dump(mode="json"))
