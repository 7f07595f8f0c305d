import unittest
from uuid import UUID

from roundbilling.errors import BalanceUnavailableError, StoreWriteFailedError
from roundbilling.models import EntryKind
from roundbilling.services.ledger_store import LedgerStore
from roundbilling.services.ledger_writer import MAX_TOKENS, MIN_TOKENS, append_debit, build_debit_entry, clamp_tokens
from tests.fakes import BILLABLE, GOLFER, FakeLedgerTable, build_event, build_settings, client_error, run_async


def make_store(table: FakeLedgerTable) -> LedgerStore:
    return LedgerStore(table, build_settings())


class TestBuildDebitEntry(unittest.TestCase):
    def test_fields(self):
        entry = build_debit_entry(build_event(), 10, 100, created_at=123)
        UUID(entry.id)
        self.assertEqual(entry.available_tokens, 90)
        self.assertEqual(entry.transaction_value, 10)
        self.assertEqual(entry.kind, EntryKind.DEBIT)
        self.assertEqual(entry.third_party_round_id, "scorecard-77")
        self.assertEqual(entry.round_id, "round-1")
        self.assertEqual(entry.original_source, "mobile_app")
        self.assertEqual(entry.golfer_id, GOLFER)
        self.assertEqual(entry.entity_id, BILLABLE)
        self.assertEqual(entry.golfer_last_name, "Lovelace")
        self.assertEqual(entry.created_at, 123)

    def test_fresh_id_per_entry(self):
        event = build_event()
        self.assertNotEqual(build_debit_entry(event, 1, 5).id, build_debit_entry(event, 1, 5).id)

    def test_balance_may_go_negative(self):
        self.assertEqual(build_debit_entry(build_event(), 10, 4).available_tokens, -6)

    def test_clamped_to_stored_range(self):
        self.assertEqual(clamp_tokens(MIN_TOKENS - 5), MIN_TOKENS)
        self.assertEqual(clamp_tokens(MAX_TOKENS + 5), MAX_TOKENS)
        self.assertEqual(build_debit_entry(build_event(), 10, MIN_TOKENS).available_tokens, MIN_TOKENS)


class TestAppendDebit(unittest.TestCase):
    def test_appends_one_entry(self):
        table = FakeLedgerTable()
        entry = run_async(append_debit(make_store(table), build_event(), 10, 100))
        self.assertEqual(len(table.puts), 1)
        self.assertEqual(table.puts[0]["id"], entry.id)
        self.assertEqual(table.puts[0]["available_tokens"], 90)
        self.assertEqual(table.puts[0]["transaction_type"]["debit_or_credit"], "debit")

    def test_missing_balance_writes_nothing(self):
        table = FakeLedgerTable()
        with self.assertRaises(BalanceUnavailableError) as ctx:
            run_async(append_debit(make_store(table), build_event(), 10, None))
        self.assertEqual(ctx.exception.golfer_id, GOLFER)
        self.assertEqual(table.puts, [])

    def test_store_failure_propagates(self):
        table = FakeLedgerTable()
        table.write_error = client_error("InternalServerError", "PutItem")
        with self.assertRaises(StoreWriteFailedError) as ctx:
            run_async(append_debit(make_store(table), build_event(), 10, 100))
        self.assertIs(ctx.exception.__cause__, table.write_error)
