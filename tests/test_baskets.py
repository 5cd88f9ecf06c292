"""
Basket provisioner and registry tests.

Critical invariant tested:
    A creation without a BasketCreated event never yields a record.
"""

import os
import shutil
import tempfile
import unittest

from securemint.baskets import (
    BasketProvisioner,
    BasketRecord,
    InMemoryBasketRegistry,
    JsonFileBasketRegistry,
)
from securemint.errors import CreationUnconfirmed, InfrastructureError
from securemint.instruction import parse_instruction
from securemint.ledger import BASKET_CREATED_EVENT, InMemoryLedger, LedgerEvent, TxStatus
from securemint.submitter import ReportSubmitter, SubmissionStatus

from tests.support import BASKET_ADMIN, BASKET_FACTORY, ScriptedLedger, basket_payload, make_config, receipt


class FailingRegistry(InMemoryBasketRegistry):
    def register(self, record):
        raise OSError("disk full")


class TestBasketProvisioner(unittest.TestCase):

    def setUp(self):
        self.ledger = InMemoryLedger.from_config(make_config())
        self.registry = InMemoryBasketRegistry()
        self.provisioner = BasketProvisioner(
            self.ledger,
            ReportSubmitter(self.ledger),
            BASKET_FACTORY,
            registry=self.registry
        )
        self.instruction = parse_instruction(basket_payload())

    def test_confirmed_creation(self):
        result = self.provisioner.provision(self.instruction)

        self.assertEqual(result.outcome.status, SubmissionStatus.SUCCESS)
        record = result.record
        self.assertEqual(record.name, "Treasury Basket")
        self.assertEqual(record.symbol, "TBSK")
        self.assertEqual(record.admin, BASKET_ADMIN)
        self.assertEqual(record.creation_tx_hash, result.outcome.transaction_hash)
        self.assertNotEqual(record.asset_contract, record.enforcement_consumer)
        self.assertEqual(self.registry.list(), [record])

    def test_missing_event_is_unconfirmed(self):
        self.ledger.emit_creation_events = False

        with self.assertRaises(CreationUnconfirmed) as ctx:
            self.provisioner.provision(self.instruction)

        self.assertIsNotNone(ctx.exception.transaction_hash)
        self.assertEqual(self.registry.list(), [])

    def test_policy_rejection_yields_no_record(self):
        self.ledger.blacklist_address(BASKET_ADMIN)

        result = self.provisioner.provision(self.instruction)

        self.assertEqual(result.outcome.status, SubmissionStatus.POLICY_REJECTED)
        self.assertIsNone(result.record)
        self.assertEqual(self.registry.list(), [])

    def test_registry_failure_is_reported(self):
        provisioner = BasketProvisioner(
            self.ledger, ReportSubmitter(self.ledger), BASKET_FACTORY, registry=FailingRegistry()
        )

        result = provisioner.provision(self.instruction)

        self.assertIsNotNone(result.record)
        self.assertIn("disk full", result.registry_error)


class TestCreationEventParsing(unittest.TestCase):

    def setUp(self):
        self.ledger = ScriptedLedger()
        self.provisioner = BasketProvisioner(self.ledger, ReportSubmitter(self.ledger), BASKET_FACTORY)
        self.instruction = parse_instruction(basket_payload())
        self.tx = "0x" + "ef" * 32
        self.ledger.queue(receipt(TxStatus.SUCCESS, tx=self.tx))

    def _event(self, **args):
        base = {
            "creator": BASKET_FACTORY,
            "admin": BASKET_ADMIN,
            "stablecoin": "0x" + "51" * 20,
            "mintingConsumer": "0x" + "52" * 20,
            "name": "Treasury Basket",
            "symbol": "TBSK",
        }
        base.update(args)
        return LedgerEvent(BASKET_CREATED_EVENT, BASKET_FACTORY, base)

    def test_addresses_taken_from_event(self):
        self.ledger.logs[self.tx] = [LedgerEvent("OwnershipTransferred", BASKET_FACTORY, {}), self._event()]

        record = self.provisioner.provision(self.instruction).record

        self.assertEqual(record.asset_contract, "0x" + "51" * 20)
        self.assertEqual(record.enforcement_consumer, "0x" + "52" * 20)

    def test_event_for_another_admin_is_ignored(self):
        self.ledger.logs[self.tx] = [self._event(admin="0x" + "dd" * 20)]

        with self.assertRaises(CreationUnconfirmed):
            self.provisioner.provision(self.instruction)

    def test_malformed_event_addresses(self):
        self.ledger.logs[self.tx] = [self._event(stablecoin="0x0")]

        with self.assertRaises(CreationUnconfirmed):
            self.provisioner.provision(self.instruction)

    def test_success_without_hash(self):
        self.ledger.receipts.clear()
        self.ledger.queue(receipt(TxStatus.SUCCESS, tx=None))

        with self.assertRaises(CreationUnconfirmed):
            self.provisioner.provision(self.instruction)

    def test_failed_creation_returns_outcome(self):
        self.ledger.receipts.clear()
        self.ledger.queue(receipt(TxStatus.REVERTED, "out of gas"))

        result = self.provisioner.provision(self.instruction)

        self.assertEqual(result.outcome.status, SubmissionStatus.FAILED)
        self.assertIsNone(result.record)

    def test_network_failure_propagates(self):
        self.ledger.receipts.clear()
        self.ledger.queue(InfrastructureError("rpc down"))

        with self.assertRaises(InfrastructureError):
            self.provisioner.provision(self.instruction)


class TestRegistries(unittest.TestCase):

    def setUp(self):
        self.tmpdir = tempfile.mkdtemp()
        self.record = BasketRecord(
            name="Treasury Basket",
            symbol="TBSK",
            asset_contract="0x" + "51" * 20,
            enforcement_consumer="0x" + "52" * 20,
            admin=BASKET_ADMIN,
            creation_tx_hash="0x" + "ef" * 32,
        )

    def tearDown(self):
        shutil.rmtree(self.tmpdir)

    def test_in_memory_rejects_duplicates(self):
        registry = InMemoryBasketRegistry()
        registry.register(self.record)

        with self.assertRaises(ValueError):
            registry.register(self.record)
        self.assertEqual(registry.get("0x" + "51" * 20), self.record)

    def test_json_file_persists(self):
        path = os.path.join(self.tmpdir, "data", "baskets.json")
        JsonFileBasketRegistry(path).register(self.record)

        reopened = JsonFileBasketRegistry(path)

        self.assertEqual(reopened.list(), [self.record])
        with self.assertRaises(ValueError):
            reopened.register(self.record)

    def test_json_file_missing_is_empty(self):
        registry = JsonFileBasketRegistry(os.path.join(self.tmpdir, "none.json"))
        self.assertEqual(registry.list(), [])
        self.assertIsNone(registry.get("0x" + "51" * 20))

    def test_record_round_trip(self):
        self.assertEqual(BasketRecord.from_dict(self.record.to_dict()), self.record)


if __name__ == "__main__":
    unittest.main()
