"""
Secure Mint Basket Provisioner

Deploys a new asset contract + enforcement consumer pair through the
factory endpoint, then confirms the deployment from the receipt's event
log. The two new addresses are only ever taken from a BasketCreated
event: a successful submission without that event raises
CreationUnconfirmed and produces no record.

Confirmed baskets are recorded in an optional BasketRegistry. Records
are immutable once registered.
"""

import json
import logging
import os
import tempfile
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from .errors import CreationUnconfirmed
from .instruction import CreateBasketInstruction, is_address, normalize_address
from .ledger import BASKET_CREATED_EVENT, LedgerEvent, LedgerGateway
from .logging_config import audit_log
from .submitter import ReportSubmitter, SubmissionOutcome

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BasketRecord:
    """A deployed asset + enforcement consumer pair."""
    name: str
    symbol: str
    asset_contract: str
    enforcement_consumer: str
    admin: str
    creation_tx_hash: str
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "symbol": self.symbol,
            "asset_contract": self.asset_contract,
            "enforcement_consumer": self.enforcement_consumer,
            "admin": self.admin,
            "creation_tx_hash": self.creation_tx_hash,
            "created_at": self.created_at.isoformat().replace("+00:00", "Z"),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BasketRecord":
        return cls(
            name=data["name"],
            symbol=data["symbol"],
            asset_contract=data["asset_contract"],
            enforcement_consumer=data["enforcement_consumer"],
            admin=data["admin"],
            creation_tx_hash=data["creation_tx_hash"],
            created_at=datetime.fromisoformat(data["created_at"].replace("Z", "+00:00")),
        )


class BasketRegistry(ABC):
    """
    Abstract interface for recording deployed baskets.

    Implementations must reject a second record for the same asset contract.
    """

    @abstractmethod
    def register(self, record: BasketRecord) -> None:
        """
        Store a new record.

        Raises:
            ValueError: a record for the asset contract already exists
        """
        pass

    @abstractmethod
    def list(self) -> List[BasketRecord]:
        """All records in registration order."""
        pass

    def get(self, asset_contract: str) -> Optional[BasketRecord]:
        asset_contract = asset_contract.lower()
        for record in self.list():
            if record.asset_contract == asset_contract:
                return record
        return None


class InMemoryBasketRegistry(BasketRegistry):
    """
    In-memory basket registry for testing.

    WARNING: Not suitable for production - not persistent.
    """

    def __init__(self):
        self._records: List[BasketRecord] = []
        self._lock = threading.Lock()

    def register(self, record: BasketRecord) -> None:
        with self._lock:
            if any(r.asset_contract == record.asset_contract for r in self._records):
                raise ValueError(f"Basket already registered for {record.asset_contract}")
            self._records.append(record)

    def list(self) -> List[BasketRecord]:
        with self._lock:
            return list(self._records)


class JsonFileBasketRegistry(BasketRegistry):
    """
    Basket registry persisted as a JSON array.

    Writes replace the file atomically; a missing file is an empty registry.
    """

    def __init__(self, path: str):
        self.path = Path(path)
        self._lock = threading.Lock()

    def _load(self) -> List[BasketRecord]:
        if not self.path.exists():
            return []
        with open(self.path, "r", encoding="utf-8") as f:
            data = json.load(f)
        return [BasketRecord.from_dict(d) for d in data]

    def _store(self, records: List[BasketRecord]):
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=str(self.path.parent), suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump([r.to_dict() for r in records], f, indent=2)
            os.replace(tmp, self.path)
        except BaseException:
            if os.path.exists(tmp):
                os.unlink(tmp)
            raise

    def register(self, record: BasketRecord) -> None:
        with self._lock:
            records = self._load()
            if any(r.asset_contract == record.asset_contract for r in records):
                raise ValueError(f"Basket already registered for {record.asset_contract}")
            records.append(record)
            self._store(records)

    def list(self) -> List[BasketRecord]:
        with self._lock:
            return self._load()


@dataclass(frozen=True)
class ProvisioningResult:
    """Submission outcome plus the confirmed record, when there is one."""
    outcome: SubmissionOutcome
    record: Optional[BasketRecord] = None
    registry_error: Optional[str] = None


def find_creation_event(events: List[LedgerEvent], instruction: CreateBasketInstruction) -> Optional[LedgerEvent]:
    """The BasketCreated event matching the instruction, if present."""
    for event in events:
        if event.name != BASKET_CREATED_EVENT:
            continue
        args = event.args
        admin = args.get("admin")
        if isinstance(admin, str) and admin.lower() != instruction.admin:
            continue
        if args.get("symbol") not in (None, instruction.symbol):
            continue
        return event
    return None


class BasketProvisioner:
    """
    Provisions baskets via a factory consumer.

    Args:
        ledger: Gateway used to read the creation receipt
        submitter: Submitter used for the creation report
        factory_ref: Address of the basket factory consumer
        gas_limit: Gas budget for the creation write
        registry: Optional registry that receives confirmed records
    """

    def __init__(
        self,
        ledger: LedgerGateway,
        submitter: ReportSubmitter,
        factory_ref: str,
        gas_limit: int = 5_000_000,
        registry: Optional[BasketRegistry] = None
    ):
        self.ledger = ledger
        self.submitter = submitter
        self.factory_ref = factory_ref
        self.gas_limit = gas_limit
        self.registry = registry

    def provision(self, instruction: CreateBasketInstruction) -> ProvisioningResult:
        """
        Submit a creation report and confirm it from the receipt log.

        Returns:
            ProvisioningResult; ``record`` is set only for a confirmed creation

        Raises:
            CreationUnconfirmed: success reported but no usable creation event
            InfrastructureError: report generation, submission or log read failed
        """
        outcome = self.submitter.create_basket(
            self.factory_ref,
            name=instruction.name,
            symbol=instruction.symbol,
            admin=instruction.admin,
            gas_limit=self.gas_limit
        )
        if not outcome.succeeded:
            return ProvisioningResult(outcome=outcome)

        if not outcome.transaction_hash:
            raise CreationUnconfirmed("Creation reported success without a transaction hash")

        events = self.ledger.read_receipt_logs(outcome.transaction_hash)
        event = find_creation_event(events, instruction)
        if event is None:
            raise CreationUnconfirmed(
                f"No {BASKET_CREATED_EVENT} event in receipt of {outcome.transaction_hash}",
                transaction_hash=outcome.transaction_hash
            )

        asset = event.args.get("stablecoin")
        consumer = event.args.get("mintingConsumer")
        if not is_address(asset) or not is_address(consumer):
            raise CreationUnconfirmed(
                f"{BASKET_CREATED_EVENT} event in {outcome.transaction_hash} carries malformed addresses",
                transaction_hash=outcome.transaction_hash
            )

        record = BasketRecord(
            name=instruction.name,
            symbol=instruction.symbol,
            asset_contract=normalize_address(asset),
            enforcement_consumer=normalize_address(consumer),
            admin=instruction.admin,
            creation_tx_hash=outcome.transaction_hash,
        )
        audit_log.basket_created(record.name, record.symbol, record.asset_contract, record.enforcement_consumer)

        # the creation is committed on-ledger; a registry failure is reported, not rolled back
        registry_error = None
        if self.registry is not None:
            try:
                self.registry.register(record)
            except (OSError, ValueError) as e:
                registry_error = f"registry write failed: {e}"
                logger.error("Basket %s created but not registered: %s", record.asset_contract, e)

        return ProvisioningResult(outcome=outcome, record=record, registry_error=registry_error)
