"""
Secure Mint Report Submitter

Encodes an instruction into its canonical payload, obtains an attested
report for it, submits the report to an enforcement consumer, and
classifies the ledger's answer:

    SUCCESS          the write committed
    POLICY_REJECTED  an enforcement policy refused the write
    FAILED           the write did not commit for any other reason

Policy rejection is recognized by marker substrings in the ledger's error
text. The markers are checked even when the ledger reports success,
because some consumers surface a policy refusal as a successful call with
an error message attached.

Network, RPC and timeout failures are not classified here; they propagate
as InfrastructureError.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, List, Optional

from .config import DEFAULT_POLICY_REJECTION_MARKERS
from .encoding import BridgeTransferReport, CreateBasketReport, MintReport, Report, encode_report
from .errors import InfrastructureError
from .hashing import report_id as compute_report_id
from .ledger import LedgerGateway, TxStatus, WriteReceipt
from .logging_config import audit_log

logger = logging.getLogger(__name__)


class SubmissionStatus(str, Enum):
    SUCCESS = "SUCCESS"
    POLICY_REJECTED = "POLICY_REJECTED"
    FAILED = "FAILED"


@dataclass(frozen=True)
class SubmissionOutcome:
    """Interpreted result of one ledger write."""
    status: SubmissionStatus
    transaction_hash: Optional[str] = None
    error_detail: Optional[str] = None
    report_id: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.status == SubmissionStatus.SUCCESS

    def to_dict(self):
        return {
            "status": self.status.value,
            "transaction_hash": self.transaction_hash,
            "error_detail": self.error_detail,
            "report_id": self.report_id,
        }


class ReportSubmitter:
    """
    Submits canonical reports through a LedgerGateway.

    Args:
        ledger: Ledger gateway used for report generation and writes
        policy_markers: Substrings that identify a policy rejection
    """

    def __init__(self, ledger: LedgerGateway, policy_markers: Optional[Iterable[str]] = None):
        self.ledger = ledger
        self.policy_markers: List[str] = list(policy_markers or DEFAULT_POLICY_REJECTION_MARKERS)

    def is_policy_rejection(self, error_text: Optional[str]) -> bool:
        if not error_text:
            return False
        return any(marker in error_text for marker in self.policy_markers)

    def interpret(self, receipt: WriteReceipt) -> SubmissionStatus:
        """Classify a raw write receipt."""
        if self.is_policy_rejection(receipt.error_message):
            return SubmissionStatus.POLICY_REJECTED
        if receipt.status == TxStatus.SUCCESS:
            return SubmissionStatus.SUCCESS
        return SubmissionStatus.FAILED

    def submit(self, report: Report, consumer_ref: str, gas_limit: int, stage: str) -> SubmissionOutcome:
        """
        Encode, attest and submit one report.

        Raises:
            InfrastructureError: report generation or the write could not complete
        """
        payload = encode_report(report)
        expected_id = compute_report_id(payload)

        signed = self.ledger.generate_report(payload)
        if signed.payload != payload or signed.report_id != expected_id:
            raise InfrastructureError(
                f"Report service attested a different payload (expected {expected_id}, got {signed.report_id})",
                stage=stage
            )

        logger.info("Submitting %s report %s to %s", stage, expected_id, consumer_ref)
        receipt = self.ledger.submit_report(consumer_ref, signed, gas_limit)

        status = self.interpret(receipt)
        detail = receipt.error_message
        if status == SubmissionStatus.FAILED and not detail:
            detail = f"ledger returned {receipt.status.value}"

        outcome = SubmissionOutcome(
            status=status,
            transaction_hash=receipt.transaction_hash,
            error_detail=detail if status != SubmissionStatus.SUCCESS else None,
            report_id=expected_id,
        )
        audit_log.submission_outcome(
            stage=stage,
            status=status.value,
            transaction_hash=outcome.transaction_hash,
            error_detail=outcome.error_detail
        )
        return outcome

    def mint(
        self,
        consumer_ref: str,
        recipient: str,
        amount: int,
        bank_reference: str,
        gas_limit: int
    ) -> SubmissionOutcome:
        report = MintReport(recipient=recipient, amount=amount, bank_reference=bank_reference)
        return self.submit(report, consumer_ref, gas_limit, stage="mint")

    def bridge_transfer(
        self,
        consumer_ref: str,
        destination_chain_selector: int,
        sender: str,
        beneficiary: str,
        amount: int,
        bank_reference: str,
        gas_limit: int
    ) -> SubmissionOutcome:
        report = BridgeTransferReport(
            destination_chain_selector=destination_chain_selector,
            sender=sender,
            beneficiary=beneficiary,
            amount=amount,
            bank_reference=bank_reference,
        )
        return self.submit(report, consumer_ref, gas_limit, stage="bridge")

    def create_basket(
        self,
        factory_ref: str,
        name: str,
        symbol: str,
        admin: str,
        gas_limit: int
    ) -> SubmissionOutcome:
        report = CreateBasketReport(name=name, symbol=symbol, admin=admin)
        return self.submit(report, factory_ref, gas_limit, stage="provisioning")
