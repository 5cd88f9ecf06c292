"""
Shared fixtures for the Secure Mint test suite.

Everything external is replaced by in-memory doubles: the simulated
ledger, static or scripted reserve sources, and a scripted gateway for
exact control over ledger answers.
"""

import threading
from collections import deque
from datetime import datetime, timezone
from typing import Any, Deque, Dict, List, Optional

from securemint.config import WorkflowConfig, workflow_config_from_dict
from securemint.errors import InfrastructureError
from securemint.ledger import InMemoryLedger, LedgerEvent, LedgerGateway, TxStatus, WriteReceipt
from securemint.reserves import ReserveAggregator, ReserveAttestation, ReserveSource, StaticReserveSource, coerce_reserve_value
from securemint.signing import ReportSigner, SignedReport
from securemint.workflow import WorkflowOrchestrator

UNITS = 10 ** 18

STABLECOIN = "0x" + "11" * 20
MINTING_CONSUMER = "0x" + "22" * 20
BRIDGE_CONSUMER = "0x" + "33" * 20
BASKET_FACTORY = "0x" + "44" * 20
BENEFICIARY = "0x" + "aa" * 20
DESTINATION_BENEFICIARY = "0x" + "bb" * 20
BASKET_ADMIN = "0x" + "cc" * 20

DESTINATION_CHAIN = "ethereum-testnet-sepolia"
DESTINATION_SELECTOR = 16015286601757825753


def config_dict(**overrides) -> Dict[str, Any]:
    data = {
        "source_chain": {
            "stablecoin_address": STABLECOIN,
            "minting_consumer_address": MINTING_CONSUMER,
            "bridge_consumer_address": BRIDGE_CONSUMER,
            "basket_factory_address": BASKET_FACTORY,
            "chain_selector": 3478487238524512106,
        },
        "destination_chains": {
            DESTINATION_CHAIN: {"chain_selector": DESTINATION_SELECTOR},
        },
        "reserve_sources": ["static:1000000"],
        "decimals": 18,
        "min_reserve_sources": 1,
    }
    data.update(overrides)
    return data


def make_config(**overrides) -> WorkflowConfig:
    return workflow_config_from_dict(config_dict(**overrides))


def mint_payload(**overrides) -> Dict[str, Any]:
    data = {
        "messageType": "MINT",
        "transactionId": "TXN-20250101-0001",
        "beneficiary": {"account": BENEFICIARY, "name": "Alice Treasury"},
        "amount": "50000",
        "currency": "USD",
        "valueDate": "2025-01-01",
        "bankReference": "SWIFT-MT103-0001",
    }
    data.update(overrides)
    return data


def bridged_mint_payload(**overrides) -> Dict[str, Any]:
    data = mint_payload(crossChain={
        "enabled": True,
        "destinationChain": DESTINATION_CHAIN,
        "beneficiary": DESTINATION_BENEFICIARY,
    })
    data.update(overrides)
    return data


def basket_payload(**overrides) -> Dict[str, Any]:
    data = {
        "messageType": "CREATE_BASKET",
        "transactionId": "TXN-BASKET-0001",
        "basketName": "Treasury Basket",
        "basketSymbol": "TBSK",
        "basketAdmin": BASKET_ADMIN,
    }
    data.update(overrides)
    return data


def make_orchestrator(
    reserve: str = "1000000",
    supply_tokens: int = 900000,
    config: Optional[WorkflowConfig] = None,
    ledger: Optional[InMemoryLedger] = None,
    sources: Optional[List[ReserveSource]] = None,
    min_sources: int = 1,
    **kwargs
):
    """Orchestrator over a simulated ledger; returns (orchestrator, ledger)."""
    config = config or make_config()
    if ledger is None:
        ledger = InMemoryLedger.from_config(config, initial_supply=supply_tokens * UNITS)
    aggregator = ReserveAggregator(sources or [StaticReserveSource(reserve)], min_sources=min_sources)
    return WorkflowOrchestrator(config, ledger, aggregator, **kwargs), ledger


# =============================================================================
# Reserve source doubles
# =============================================================================

class RawReserveSource(ReserveSource):
    """Reports an arbitrary raw value, validated at read time like a remote source."""

    def __init__(self, raw: Any, source_id: str = "raw"):
        self.raw = raw
        self._source_id = source_id

    @property
    def source_id(self) -> str:
        return self._source_id

    def read(self) -> ReserveAttestation:
        return ReserveAttestation(
            value=coerce_reserve_value(self.raw),
            observed_at=datetime.now(timezone.utc),
            source=self._source_id,
        )


class FailingReserveSource(ReserveSource):
    def __init__(self, source_id: str = "down"):
        self._source_id = source_id

    @property
    def source_id(self) -> str:
        return self._source_id

    def read(self) -> ReserveAttestation:
        raise InfrastructureError(f"{self._source_id} unreachable")


class CountingReserveSource(StaticReserveSource):
    def __init__(self, value: Any, source_id: str = "counting"):
        super().__init__(value, source_id=source_id)
        self.reads = 0

    def read(self) -> ReserveAttestation:
        self.reads += 1
        return super().read()


class BlockingReserveSource(ReserveSource):
    """Blocks until released; used to exercise the fan-out timeout."""

    def __init__(self, value: Any, source_id: str = "slow"):
        self.value = value
        self.release = threading.Event()
        self._source_id = source_id

    @property
    def source_id(self) -> str:
        return self._source_id

    def read(self) -> ReserveAttestation:
        self.release.wait(5)
        return ReserveAttestation(
            value=coerce_reserve_value(self.value),
            observed_at=datetime.now(timezone.utc),
            source=self._source_id,
        )


# =============================================================================
# Ledger doubles
# =============================================================================

class ScriptedLedger(LedgerGateway):
    """
    Gateway returning pre-programmed answers.

    Each queued receipt is either a WriteReceipt or an exception to raise.
    """

    def __init__(self, supply: int = 0):
        self.signer = ReportSigner()
        self.signer.generate_key_pair("kid:scripted")
        self.supply = supply
        self.receipts: Deque[Any] = deque()
        self.logs: Dict[str, List[LedgerEvent]] = {}
        self.submissions: List[tuple] = []
        self.tamper_reports = False

    def queue(self, *receipts):
        self.receipts.extend(receipts)

    def read_ledger_value(self, contract_ref: str, query: str) -> int:
        return self.supply

    def generate_report(self, payload: bytes) -> SignedReport:
        if self.tamper_reports:
            payload = payload[:-1] + bytes([payload[-1] ^ 0x01])
        return self.signer.sign(payload)

    def submit_report(self, consumer_ref: str, report: SignedReport, gas_limit: int) -> WriteReceipt:
        self.submissions.append((consumer_ref, report, gas_limit))
        answer = self.receipts.popleft() if self.receipts else WriteReceipt(TxStatus.SUCCESS, "0x" + "ab" * 32)
        if isinstance(answer, Exception):
            raise answer
        return answer

    def read_receipt_logs(self, transaction_hash: str) -> List[LedgerEvent]:
        return list(self.logs.get(transaction_hash, []))


class BridgeOutageLedger(InMemoryLedger):
    """Simulated ledger whose bridge consumer is unreachable."""

    def submit_report(self, consumer_ref: str, report: SignedReport, gas_limit: int) -> WriteReceipt:
        if consumer_ref.lower() == BRIDGE_CONSUMER:
            raise InfrastructureError("bridge RPC connection reset")
        return super().submit_report(consumer_ref, report, gas_limit)


def receipt(status: TxStatus = TxStatus.SUCCESS, error: Optional[str] = None, tx: str = "0x" + "cd" * 32) -> WriteReceipt:
    return WriteReceipt(status=status, transaction_hash=tx, error_message=error)
