import io
import pytest
from decimal import Decimal

from config import TestingSettings
from errors import MalformedRow, SourceUnreadable
from models import Account, Chargeback, Deposit, Dispute, Resolve, TransactionKind, Withdrawal
from services import LedgerAggregator
from storage import read_transactions, write_accounts, write_transactions


async def collect(path, settings=None):
    return [tx async for tx in read_transactions(str(path), settings or TestingSettings())]


@pytest.fixture
def write_csv(tmp_path):
    def _write(name, content):
        path = tmp_path / name
        path.write_text(content)
        return str(path)
    return _write


class TestReadTransactions:
    """Test the CSV source reader."""

    @pytest.mark.asyncio
    async def test_reads_all_kinds(self, write_csv):
        """Test every kind parses, with padding and a missing trailing amount column."""
        path = write_csv("tx.csv", (
            "type, client, tx, amount\n"
            "deposit, 1, 1, 1.0\n"
            "withdrawal, 1, 2, 0.5\n"
            "\n"
            "dispute, 1, 1,\n"
            "resolve, 1, 1\n"
            "Chargeback, 1, 2, \n"
        ))

        transactions = await collect(path)

        assert transactions == [
            Deposit(client_id=1, tx_id=1, amount=Decimal("1.0")),
            Withdrawal(client_id=1, tx_id=2, amount=Decimal("0.5")),
            Dispute(client_id=1, tx_id=1),
            Resolve(client_id=1, tx_id=1),
            Chargeback(client_id=1, tx_id=2),
        ]

    @pytest.mark.asyncio
    async def test_amount_rounded_to_four_places(self, write_csv):
        """Test amounts with more than 4 decimal places are rounded half-even."""
        path = write_csv("tx.csv", "type,client,tx,amount\ndeposit,1,1,1.23455\ndeposit,1,2,2.00005\n")

        transactions = await collect(path)

        assert [tx.amount for tx in transactions] == [Decimal("1.2346"), Decimal("2.0000")]

    @pytest.mark.asyncio
    async def test_amount_on_dispute_is_dropped(self, write_csv):
        """Test an amount given on a dispute row does not reach the transaction."""
        path = write_csv("tx.csv", "type,client,tx,amount\ndispute,3,9,4.0\n")

        [transaction] = await collect(path)

        assert transaction.kind == TransactionKind.dispute
        assert not hasattr(transaction, "amount")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("row", [
        "transfer,1,1,1.0",
        "deposit,1,1,",
        "deposit,1,1,-1.0",
        "deposit,1,1,abc",
        "deposit,x,1,1.0",
        "deposit,70000,1,1.0",
        "deposit,1,-1,1.0",
        "deposit,1,1,1.0,extra",
    ])
    async def test_malformed_row_is_source_fatal(self, write_csv, row):
        """Test an invalid row aborts the source with its line number."""
        path = write_csv("tx.csv", f"type,client,tx,amount\ndeposit,1,5,1.0\n{row}\n")

        with pytest.raises(MalformedRow) as excinfo:
            await collect(path)

        assert excinfo.value.line == 3
        assert excinfo.value.source == path

    @pytest.mark.asyncio
    async def test_skip_malformed_rows(self, write_csv):
        """Test malformed rows are skipped when configured to do so."""
        path = write_csv("tx.csv", "type,client,tx,amount\ntransfer,1,1,1.0\ndeposit,1,2,1.0\n")

        transactions = await collect(path, TestingSettings(skip_malformed_rows=True))

        assert transactions == [Deposit(client_id=1, tx_id=2, amount=Decimal("1.0"))]

    @pytest.mark.asyncio
    async def test_missing_header_columns(self, write_csv):
        """Test a file without the required header is malformed."""
        path = write_csv("tx.csv", "deposit,1,1,1.0\n")

        with pytest.raises(MalformedRow) as excinfo:
            await collect(path)

        assert excinfo.value.line == 1

    @pytest.mark.asyncio
    async def test_missing_file(self, tmp_path):
        """Test a path that cannot be opened is unreadable."""
        with pytest.raises(SourceUnreadable):
            await collect(tmp_path / "nope.csv")

    @pytest.mark.asyncio
    async def test_empty_file(self, write_csv):
        """Test an empty file yields no transactions."""
        assert await collect(write_csv("empty.csv", "")) == []


class TestWriters:
    """Test CSV rendering."""

    def test_write_accounts(self):
        """Test accounts render with four decimal places and lowercase booleans."""
        sink = io.StringIO()

        write_accounts([
            Account(client_id=1, available=Decimal("7"), held=Decimal("0")),
            Account(client_id=2, available=Decimal("1.5"), held=Decimal("0.25"), locked=True),
        ], sink)

        assert sink.getvalue() == (
            "client,available,held,total,locked\n"
            "1,7.0000,0.0000,7.0000,false\n"
            "2,1.5000,0.2500,1.7500,true\n"
        )

    def test_write_accounts_empty(self):
        """Test an empty ledger still renders the header."""
        sink = io.StringIO()

        write_accounts([], sink)

        assert sink.getvalue() == "client,available,held,total,locked\n"

    @pytest.mark.asyncio
    async def test_written_transactions_read_back(self, write_csv):
        """Test generated CSV is accepted by the reader unchanged."""
        transactions = [
            Deposit(client_id=1, tx_id=1, amount=Decimal("12.3456")),
            Dispute(client_id=1, tx_id=1),
        ]
        sink = io.StringIO()

        write_transactions(transactions, sink)

        assert sink.getvalue() == "type,client,tx,amount\ndeposit,1,1,12.3456\ndispute,1,1,\n"
        assert await collect(write_csv("gen.csv", sink.getvalue())) == transactions


class TestFileAggregation:
    """Test the aggregator against real files."""

    @pytest.mark.asyncio
    async def test_mixed_sources(self, write_csv, tmp_path):
        """Test good files are combined while bad and missing files are dropped."""
        first = write_csv("a.csv", "type,client,tx,amount\ndeposit,1,1,5.0\n")
        second = write_csv("b.csv", "type,client,tx,amount\ndeposit,1,1,7.0\nwithdrawal,2,2,1.0\n")
        broken = write_csv("c.csv", "type,client,tx,amount\ndeposit,3,1,1.0\nrefund,3,2,1.0\n")
        missing = str(tmp_path / "d.csv")

        aggregator = LedgerAggregator(TestingSettings())
        accounts = await aggregator.run([first, second, broken, missing])

        assert [(a.client_id, a.available) for a in accounts] == [
            (1, Decimal("5.0")),
            (1, Decimal("7.0")),
            (2, Decimal("0")),
        ]
        assert aggregator.failed_sources == [broken, missing]
