"""
Secure Mint Ledger Ports

The workflow depends on four ledger-side capabilities, modelled as one
injected interface:

    read_ledger_value   read on-ledger state (e.g. total supply)
    generate_report     attest an encoded payload
    submit_report       execute a report against an enforcement consumer
    read_receipt_logs   events emitted by a committed transaction

HttpLedgerGateway talks to the external ledger-report service.
InMemoryLedger is a self-contained simulated ledger for development and
tests: it signs reports locally, enforces a blacklist and volume policy
at the consumers, tracks supply, and deploys baskets through a factory.
"""

import base64
import hashlib
import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Set, Tuple

import requests

from .encoding import (
    BridgeTransferReport,
    CreateBasketReport,
    EncodingError,
    MintReport,
    decode_report,
)
from .errors import FailureCode, InfrastructureError
from .instruction import normalize_address
from .signing import ReportSigner, SignedReport, verify_report

logger = logging.getLogger(__name__)

QUERY_TOTAL_SUPPLY = "totalSupply"
QUERY_BALANCE_OF = "balanceOf"

BASKET_CREATED_EVENT = "BasketCreated"


class TxStatus(str, Enum):
    """Execution status reported by the ledger for a submitted report."""
    SUCCESS = "SUCCESS"
    REVERTED = "REVERTED"
    FATAL = "FATAL"


@dataclass(frozen=True)
class WriteReceipt:
    """Raw ledger answer to a report submission."""
    status: TxStatus
    transaction_hash: Optional[str] = None
    error_message: Optional[str] = None


@dataclass(frozen=True)
class LedgerEvent:
    """A decoded event from a transaction receipt."""
    name: str
    address: str
    args: Dict[str, Any] = field(default_factory=dict)


class LedgerGateway(ABC):
    """Ledger-side capabilities consumed by the workflow."""

    @abstractmethod
    def read_ledger_value(self, contract_ref: str, query: str) -> int:
        """Read an integer value from a ledger contract."""
        pass

    @abstractmethod
    def generate_report(self, payload: bytes) -> SignedReport:
        """Produce an attested wrapper for an encoded payload."""
        pass

    @abstractmethod
    def submit_report(self, consumer_ref: str, report: SignedReport, gas_limit: int) -> WriteReceipt:
        """
        Execute a report against an enforcement consumer.

        Raises:
            InfrastructureError: the result could not be obtained
        """
        pass

    @abstractmethod
    def read_receipt_logs(self, transaction_hash: str) -> List[LedgerEvent]:
        """Events emitted by a committed transaction."""
        pass

    def read_total_supply(self, contract_ref: str) -> int:
        return self.read_ledger_value(contract_ref, QUERY_TOTAL_SUPPLY)


# =============================================================================
# HTTP adapter for the ledger-report service
# =============================================================================

class HttpLedgerGateway(LedgerGateway):
    """
    Client for the ledger-report service.

    Endpoints:
        POST /reads                       {"contract", "query"} -> {"value"}
        POST /reports                     {"payload"} -> SignedReport
        POST /writes                      {"receiver", "report", "gas_limit"}
                                          -> {"status", "tx_hash", "error_message"}
        GET  /receipts/<tx_hash>/logs     -> {"logs": [{"event", "address", "args"}]}
    """

    def __init__(self, base_url: str, timeout: float = 10.0, session: Optional[requests.Session] = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()

    def _call(self, method: str, path: str, body: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        url = f"{self.base_url}{path}"
        try:
            r = self.session.request(method, url, json=body, timeout=self.timeout)
            r.raise_for_status()
            data = r.json()
        except requests.Timeout as e:
            raise InfrastructureError(f"{method} {url} timed out: {e}", code=FailureCode.TIMEOUT)
        except requests.RequestException as e:
            raise InfrastructureError(f"{method} {url} failed: {e}")
        except ValueError as e:
            raise InfrastructureError(f"{method} {url} returned a non-JSON body: {e}")

        if not isinstance(data, dict):
            raise InfrastructureError(f"{method} {url} returned unexpected body")
        return data

    def read_ledger_value(self, contract_ref: str, query: str) -> int:
        data = self._call("POST", "/reads", {"contract": contract_ref, "query": query})
        try:
            return int(data["value"])
        except (KeyError, TypeError, ValueError):
            raise InfrastructureError(f"ledger read {query} on {contract_ref} returned no integer value")

    def generate_report(self, payload: bytes) -> SignedReport:
        data = self._call("POST", "/reports", {"payload": base64.b64encode(payload).decode("ascii")})
        try:
            return SignedReport.from_dict(data)
        except (ValueError, TypeError) as e:
            raise InfrastructureError(f"report service returned a malformed report: {e}")

    def submit_report(self, consumer_ref: str, report: SignedReport, gas_limit: int) -> WriteReceipt:
        data = self._call("POST", "/writes", {
            "receiver": consumer_ref,
            "report": report.to_dict(),
            "gas_limit": str(gas_limit),
        })
        try:
            status = TxStatus(data.get("status"))
        except ValueError:
            raise InfrastructureError(f"ledger returned unknown status {data.get('status')!r}")
        return WriteReceipt(
            status=status,
            transaction_hash=data.get("tx_hash"),
            error_message=data.get("error_message") or None,
        )

    def read_receipt_logs(self, transaction_hash: str) -> List[LedgerEvent]:
        data = self._call("GET", f"/receipts/{transaction_hash}/logs")
        events = []
        for log in data.get("logs", []):
            if not isinstance(log, dict) or "event" not in log:
                continue
            events.append(LedgerEvent(
                name=log["event"],
                address=log.get("address", ""),
                args=dict(log.get("args") or {}),
            ))
        return events


# =============================================================================
# Simulated ledger
# =============================================================================

class ConsumerKind(str, Enum):
    MINT = "MINT"
    BRIDGE = "BRIDGE"
    FACTORY = "FACTORY"


@dataclass
class _Consumer:
    kind: ConsumerKind
    token: Optional[str] = None


class InMemoryLedger(LedgerGateway):
    """
    Simulated ledger with enforcement consumers.

    WARNING: Not suitable for production.
    - Not persistent
    - Reports are attested by a local key, not a signing network

    Policy:
        mint consumer    rejects blacklisted recipients
        bridge consumer  rejects blacklisted senders or beneficiaries and
                         amounts outside the optional volume limits
        factory          deploys a token + mint consumer pair and emits
                         BasketCreated
    """

    def __init__(self, signer: Optional[ReportSigner] = None):
        if signer is None:
            signer = ReportSigner()
            signer.generate_key_pair("kid:local-report-001")
        self.signer = signer
        self.trust_store = signer.trust_store()

        self._consumers: Dict[str, _Consumer] = {}
        self._supply: Dict[str, int] = {}
        self._balances: Dict[Tuple[str, str], int] = {}
        self._logs: Dict[str, List[LedgerEvent]] = {}
        self._faults: Dict[str, InfrastructureError] = {}
        self._lock = threading.Lock()
        self._nonce = 0

        self.blacklist: Set[str] = set()
        self.bridge_volume_limits: Optional[Tuple[int, int]] = None
        self.emit_creation_events = True

        self.reports_generated = 0
        self.submissions: List[Tuple[str, SignedReport]] = []
        self.bridged: List[BridgeTransferReport] = []

    @classmethod
    def from_config(cls, config, initial_supply: int = 0, signer: Optional[ReportSigner] = None) -> "InMemoryLedger":
        """Build a ledger whose contracts match a WorkflowConfig."""
        ledger = cls(signer=signer)
        chain = config.source_chain
        ledger.deploy_token(chain.stablecoin_address, initial_supply)
        ledger.register_consumer(chain.minting_consumer_address, ConsumerKind.MINT, chain.stablecoin_address)
        ledger.register_consumer(chain.bridge_consumer_address, ConsumerKind.BRIDGE, chain.stablecoin_address)
        if chain.basket_factory_address:
            ledger.register_consumer(chain.basket_factory_address, ConsumerKind.FACTORY)
        return ledger

    # ------------------------------------------------------------------
    # Setup
    # ------------------------------------------------------------------

    def deploy_token(self, token: str, initial_supply: int = 0, holder: Optional[str] = None):
        token = normalize_address(token)
        with self._lock:
            self._supply[token] = initial_supply
            if initial_supply and holder:
                self._balances[(token, normalize_address(holder))] = initial_supply

    def register_consumer(self, consumer: str, kind: ConsumerKind, token: Optional[str] = None):
        with self._lock:
            self._consumers[normalize_address(consumer)] = _Consumer(
                kind=kind,
                token=normalize_address(token) if token else None
            )

    def blacklist_address(self, address: str):
        self.blacklist.add(normalize_address(address))

    def inject_fault(self, operation: str, error: Optional[InfrastructureError] = None):
        """Make the next call to ``operation`` raise an infrastructure error."""
        self._faults[operation] = error or InfrastructureError(f"simulated {operation} outage")

    def balance_of(self, token: str, account: str) -> int:
        return self._balances.get((normalize_address(token), normalize_address(account)), 0)

    @property
    def write_count(self) -> int:
        return len(self.submissions)

    # ------------------------------------------------------------------
    # LedgerGateway
    # ------------------------------------------------------------------

    def _maybe_fail(self, operation: str):
        error = self._faults.pop(operation, None)
        if error is not None:
            raise error

    def read_ledger_value(self, contract_ref: str, query: str) -> int:
        self._maybe_fail("read_ledger_value")
        token = normalize_address(contract_ref)
        with self._lock:
            if token not in self._supply:
                raise InfrastructureError(f"execution reverted: no contract at {token}")
            if query == QUERY_TOTAL_SUPPLY:
                return self._supply[token]
            if query.startswith(QUERY_BALANCE_OF + ":"):
                account = normalize_address(query.split(":", 1)[1])
                return self._balances.get((token, account), 0)
        raise InfrastructureError(f"unsupported ledger query {query!r}")

    def generate_report(self, payload: bytes) -> SignedReport:
        self._maybe_fail("generate_report")
        self.reports_generated += 1
        return self.signer.sign(payload)

    def submit_report(self, consumer_ref: str, report: SignedReport, gas_limit: int) -> WriteReceipt:
        self._maybe_fail("submit_report")
        consumer_ref = normalize_address(consumer_ref)

        with self._lock:
            self.submissions.append((consumer_ref, report))
            tx_hash = self._next_tx_hash(report)

            consumer = self._consumers.get(consumer_ref)
            if consumer is None:
                return WriteReceipt(TxStatus.FATAL, tx_hash, f"no consumer deployed at {consumer_ref}")

            if not verify_report(report, self.trust_store):
                return WriteReceipt(TxStatus.REVERTED, tx_hash, "InvalidReport: signature verification failed")

            try:
                decoded = decode_report(report.payload)
            except EncodingError as e:
                return WriteReceipt(TxStatus.REVERTED, tx_hash, f"InvalidReport: {e}")

            if consumer.kind == ConsumerKind.MINT and isinstance(decoded, MintReport):
                error = self._apply_mint(consumer.token, decoded)
            elif consumer.kind == ConsumerKind.BRIDGE and isinstance(decoded, BridgeTransferReport):
                error = self._apply_bridge(consumer.token, decoded)
            elif consumer.kind == ConsumerKind.FACTORY and isinstance(decoded, CreateBasketReport):
                error = self._apply_create(consumer_ref, decoded, tx_hash)
            else:
                error = f"UnsupportedInstruction: {type(decoded).__name__} at {consumer.kind.value} consumer"

            if error:
                return WriteReceipt(TxStatus.REVERTED, tx_hash, error)
            self._logs.setdefault(tx_hash, [])
            return WriteReceipt(TxStatus.SUCCESS, tx_hash)

    def read_receipt_logs(self, transaction_hash: str) -> List[LedgerEvent]:
        self._maybe_fail("read_receipt_logs")
        with self._lock:
            if transaction_hash not in self._logs:
                raise InfrastructureError(f"receipt not found for {transaction_hash}")
            return list(self._logs[transaction_hash])

    # ------------------------------------------------------------------
    # Consumer behaviour (lock held)
    # ------------------------------------------------------------------

    def _policy_rejected(self, reason: str) -> str:
        return f"PolicyRunRejected: {reason}"

    def _apply_mint(self, token: str, report: MintReport) -> Optional[str]:
        recipient = normalize_address(report.recipient)
        if recipient in self.blacklist:
            return self._policy_rejected(f"address {recipient} is blacklisted")
        self._supply[token] += report.amount
        key = (token, recipient)
        self._balances[key] = self._balances.get(key, 0) + report.amount
        return None

    def _apply_bridge(self, token: str, report: BridgeTransferReport) -> Optional[str]:
        sender = normalize_address(report.sender)
        beneficiary = normalize_address(report.beneficiary)
        for party in (sender, beneficiary):
            if party in self.blacklist:
                return self._policy_rejected(f"address {party} is blacklisted")
        if self.bridge_volume_limits:
            low, high = self.bridge_volume_limits
            if not low <= report.amount <= high:
                return self._policy_rejected(f"volume {report.amount} outside [{low}, {high}]")

        key = (token, sender)
        balance = self._balances.get(key, 0)
        if balance < report.amount:
            return f"ERC20InsufficientBalance: {sender} holds {balance}, needs {report.amount}"

        # lock-and-burn on the source ledger
        self._balances[key] = balance - report.amount
        self._supply[token] -= report.amount
        self.bridged.append(report)
        return None

    def _apply_create(self, factory: str, report: CreateBasketReport, tx_hash: str) -> Optional[str]:
        admin = normalize_address(report.admin)
        if admin in self.blacklist:
            return self._policy_rejected(f"address {admin} is blacklisted")

        token = self._derive_address(factory, "token")
        consumer = self._derive_address(factory, "consumer")
        self._supply[token] = 0
        self._consumers[consumer] = _Consumer(kind=ConsumerKind.MINT, token=token)

        events = []
        if self.emit_creation_events:
            events.append(LedgerEvent(
                name=BASKET_CREATED_EVENT,
                address=factory,
                args={
                    "creator": factory,
                    "admin": admin,
                    "stablecoin": token,
                    "mintingConsumer": consumer,
                    "name": report.name,
                    "symbol": report.symbol,
                },
            ))
        self._logs[tx_hash] = events
        return None

    def _next_tx_hash(self, report: SignedReport) -> str:
        self._nonce += 1
        seed = f"{report.report_id}:{self._nonce}".encode("utf-8")
        return "0x" + hashlib.sha256(seed).hexdigest()

    def _derive_address(self, factory: str, salt: str) -> str:
        self._nonce += 1
        seed = f"{factory}:{salt}:{self._nonce}".encode("utf-8")
        return "0x" + hashlib.sha256(seed).hexdigest()[:40]
