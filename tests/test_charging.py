import unittest
from unittest.mock import patch

from roundbilling.errors import BalanceUnavailableError, FeeNotFoundError, StoreReadFailedError, StoreWriteFailedError
from roundbilling.models import EntryKind
from roundbilling.services import charging
from roundbilling.services.charging import AnomalyKind, Outcome, RoundFeeProcessor
from roundbilling.services.ledger_store import LedgerStore
from tests.fakes import (
    BILLABLE,
    GOLFER,
    OTHER_ENTITY,
    FakeLedgerTable,
    build_event,
    build_settings,
    client_error,
    entry_item,
    fee_item,
    run_async,
)

CREDIT_ID = "5d1c7a2e-3b4f-4c6d-8e9f-0a1b2c3d4e5f"
DEBIT_ID = "7e8f9a0b-1c2d-4e3f-9a4b-5c6d7e8f9a0b"


def ledger(*extra, fees=True):
    items = [entry_item(CREDIT_ID, available_tokens=100, value=100, kind="credit", created_at=1_000)]
    if fees:
        items += [fee_item("fee-18", "cost_18Holes", 10), fee_item("fee-9", "cost_9Holes", 6)]
    return FakeLedgerTable(items + list(extra))


def processor(table, **overrides):
    settings = build_settings(**overrides)
    return RoundFeeProcessor(LedgerStore(table, settings), settings)


def with_transaction_id(event, transaction_id):
    return event.model_copy(update={"round": event.round.model_copy(update={"transaction_id": transaction_id})})


class TestDecide(unittest.TestCase):
    def test_ignores_other_task_types(self):
        table = ledger()
        decision = run_async(processor(table).decide(build_event(task_type="send_receipt")))
        self.assertEqual(decision.outcome, Outcome.SKIP)
        self.assertEqual(decision.reason, "not_round_fee_task")
        self.assertEqual(table.get_calls, [])

    def test_ignores_event_without_round(self):
        event = build_event().model_copy(update={"round": None})
        decision = run_async(processor(ledger()).decide(event))
        self.assertEqual(decision.outcome, Outcome.SKIP)
        self.assertEqual(decision.reason, "no_round")

    def test_admin_panel_rounds_are_skipped(self):
        for txn in (None, DEBIT_ID):
            table = ledger()
            decision = run_async(processor(table).decide(build_event(source="admin_panel", transaction_id=txn)))
            self.assertEqual(decision.outcome, Outcome.SKIP)
            self.assertEqual(decision.reason, "admin_panel_source")
            self.assertEqual(table.get_calls, [])

    def test_non_billable_entities_are_skipped(self):
        for txn in (None, DEBIT_ID):
            table = ledger()
            decision = run_async(processor(table).decide(build_event(entity_id=OTHER_ENTITY, transaction_id=txn)))
            self.assertEqual(decision.outcome, Outcome.SKIP)
            self.assertEqual(decision.reason, "entity_not_billable")
            self.assertEqual(table.query_calls, [])

    def test_billable_set_is_configurable(self):
        decision = run_async(
            processor(ledger(fee_item("fee-o", "cost_18Holes", 3, entity_id=OTHER_ENTITY)), billable_entity_ids=frozenset({OTHER_ENTITY})).decide(
                build_event(entity_id=OTHER_ENTITY)
            )
        )
        self.assertEqual(decision.outcome, Outcome.CHARGE)
        self.assertEqual(decision.cost, 3)

    def test_null_source_is_in_scope(self):
        decision = run_async(processor(ledger()).decide(build_event(source=None)))
        self.assertEqual(decision.outcome, Outcome.CHARGE)
        self.assertEqual(decision.cost, 10)

    def test_charge_uses_round_size_tier(self):
        self.assertEqual(run_async(processor(ledger()).decide(build_event(holes=18))).cost, 10)
        self.assertEqual(run_async(processor(ledger()).decide(build_event(holes=9))).cost, 6)

    def test_existing_debit_is_already_charged(self):
        table = ledger(entry_item(DEBIT_ID, kind="debit", value=10, available_tokens=90, created_at=2_000))
        decision = run_async(processor(table).decide(build_event(transaction_id=DEBIT_ID)))
        self.assertEqual(decision.outcome, Outcome.ALREADY_CHARGED)
        self.assertEqual(decision.linked_entry.id, DEBIT_ID)

    def test_missing_linked_entry_is_inconsistent(self):
        decision = run_async(processor(ledger()).decide(build_event(transaction_id=DEBIT_ID)))
        self.assertEqual(decision.outcome, Outcome.ANOMALY)
        self.assertEqual(decision.anomaly, AnomalyKind.INCONSISTENT_LEDGER_STATE)

    def test_unknown_entry_kind_is_unexpected(self):
        table = ledger(entry_item(DEBIT_ID, kind="adjustment"))
        decision = run_async(processor(table).decide(build_event(transaction_id=DEBIT_ID)))
        self.assertEqual(decision.anomaly, AnomalyKind.UNEXPECTED_ENTRY_KIND)
        self.assertEqual(decision.linked_entry.kind, EntryKind.UNKNOWN)

    def test_malformed_id_out_of_scope_still_flagged(self):
        decision = run_async(processor(ledger()).decide(build_event(transaction_id="nope", source="admin_panel")))
        self.assertEqual(decision.outcome, Outcome.SKIP)
        self.assertEqual(decision.anomaly, AnomalyKind.MALFORMED_TRANSACTION_ID)

    def test_missing_fee_fails(self):
        with self.assertRaises(FeeNotFoundError):
            run_async(processor(ledger(fees=False)).decide(build_event()))


class TestProcessScenarios(unittest.TestCase):
    def test_scenario_a_charges_once(self):
        table = ledger()
        result = run_async(processor(table).process(build_event(holes=18)))

        self.assertEqual(result.outcome, Outcome.CHARGE)
        self.assertEqual(result.balance_before, 100)
        self.assertEqual(len(table.puts), 1)
        written = table.puts[0]
        self.assertEqual(written["available_tokens"], 90)
        self.assertEqual(written["transaction_value"], 10)
        self.assertEqual(written["transaction_type"]["debit_or_credit"], "debit")
        self.assertEqual(result.to_dict()["entry_id"], written["id"])

    def test_scenario_b_replay_with_new_id_is_already_charged(self):
        table = ledger()
        proc = processor(table)
        first = run_async(proc.process(build_event()))
        replay = with_transaction_id(build_event(), first.entry.id)

        for _ in range(3):
            result = run_async(proc.process(replay))
            self.assertEqual(result.outcome, Outcome.ALREADY_CHARGED)
            self.assertIsNone(result.entry)
        self.assertEqual(len(table.puts), 1)

    def test_scenario_c_malformed_id_never_charges(self):
        table = ledger()
        with patch.object(charging, "audit_event") as audit:
            result = run_async(processor(table).process(build_event(transaction_id="not-a-guid")))

        self.assertEqual(result.outcome, Outcome.ANOMALY)
        self.assertEqual(result.decision.anomaly, AnomalyKind.MALFORMED_TRANSACTION_ID)
        self.assertEqual(table.puts, [])
        self.assertEqual(table.get_calls, [])
        self.assertEqual(audit.call_args.args[0], "round_fee_anomaly")
        self.assertEqual(audit.call_args.kwargs["anomaly"], "malformed_transaction_id")

    def test_scenario_d_linked_credit_is_anomaly(self):
        table = ledger()
        result = run_async(processor(table).process(build_event(transaction_id=CREDIT_ID)))
        self.assertEqual(result.outcome, Outcome.ANOMALY)
        self.assertEqual(result.decision.anomaly, AnomalyKind.UNEXPECTED_ENTRY_KIND)
        self.assertEqual(table.puts, [])

    def test_no_history_blocks_charge(self):
        table = FakeLedgerTable([fee_item("fee-18", "cost_18Holes", 10)])
        with patch.object(charging, "audit_event") as audit:
            with self.assertRaises(BalanceUnavailableError):
                run_async(processor(table).process(build_event()))
        self.assertEqual(table.puts, [])
        self.assertEqual(audit.call_args.args[0], "round_fee_failed")
        self.assertEqual(audit.call_args.kwargs["error_code"], "BILLING_BALANCE_UNAVAILABLE")

    def test_latest_entry_without_balance_blocks_charge(self):
        credit = entry_item(CREDIT_ID, created_at=1_000)
        del credit["available_tokens"]
        table = FakeLedgerTable([credit, fee_item("fee-18", "cost_18Holes", 10)])
        with self.assertRaises(BalanceUnavailableError):
            run_async(processor(table).process(build_event()))
        self.assertEqual(table.puts, [])

    def test_null_balance_is_not_zero(self):
        table = ledger(entry_item(DEBIT_ID, kind="debit", available_tokens=None, created_at=2_000))
        with self.assertRaises(BalanceUnavailableError):
            run_async(processor(table).process(build_event()))
        self.assertEqual(table.puts, [])

    def test_write_failure_propagates(self):
        table = ledger()
        table.write_error = client_error("InternalServerError", "PutItem")
        with self.assertRaises(StoreWriteFailedError):
            run_async(processor(table).process(build_event()))

    def test_read_failure_propagates(self):
        table = ledger()
        table.read_error = client_error()
        with self.assertRaises(StoreReadFailedError):
            run_async(processor(table).process(build_event(transaction_id=DEBIT_ID)))

    def test_sequential_rounds_chain_balances(self):
        table = ledger()
        proc = processor(table)
        run_async(proc.process(build_event(holes=18)))
        # index catches up before the next round
        second = run_async(proc.process(build_event(holes=9)))
        self.assertEqual(second.balance_before, 90)
        self.assertEqual(second.entry.available_tokens, 84)

    def test_fee_schedule_loaded_once(self):
        table = ledger()
        proc = processor(table)
        run_async(proc.process(build_event()))
        run_async(proc.process(build_event(holes=9)))
        fee_queries = [c for c in table.query_calls if c["IndexName"] == "type-index"]
        self.assertEqual(len(fee_queries), 1)

    def test_skip_does_not_load_fees(self):
        table = ledger()
        run_async(processor(table).process(build_event(source="admin_panel")))
        self.assertEqual(table.query_calls, [])

    def test_charged_audit_records_amounts(self):
        with patch.object(charging, "audit_event") as audit:
            run_async(processor(ledger()).process(build_event()))
        self.assertEqual(audit.call_args.args, ("round_fee_charged", GOLFER))
        fields = audit.call_args.kwargs
        self.assertEqual(fields["cost"], 10)
        self.assertEqual(fields["balance_before"], 100)
        self.assertEqual(fields["available_tokens"], 90)
        self.assertEqual(fields["entity_id"], BILLABLE)
