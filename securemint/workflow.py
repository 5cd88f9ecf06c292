"""
Secure Mint Workflow Orchestrator

Sequences one instruction through the issuance pipeline and produces
exactly one WorkflowResult for it.

    MINT           PARSING -> CHECKING_RESERVES -> MINTING -> [BRIDGING] -> DONE
    CREATE_BASKET  PARSING -> PROVISIONING -> DONE

Any state may exit early with a terminal failure result. Business
outcomes (insufficient reserves, policy rejection) and infrastructure
failures are both returned as results; run() does not raise for any
instruction-level failure.

CRITICAL: No issuance report is submitted unless a collateralization
decision computed within the same run approved it. Reserve readings are
never reused across runs.

Mint-then-bridge is not atomic. If bridging fails after the mint
committed, the result carries the committed mint transaction, the failed
bridge reference, and ``partial=True``. Nothing is rolled back.
"""

import dataclasses
import json
import logging
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple, Union

import requests

from .baskets import BasketProvisioner, BasketRecord, BasketRegistry
from .collateral import CollateralizationDecision, check_collateralization, to_exact_base_units
from .config import IDEMPOTENCY_ENABLED, LEDGER_SERVICE_URL, WorkflowConfig
from .errors import (
    ConfigurationError,
    CreationUnconfirmed,
    FailureCode,
    InfrastructureError,
    MalformedInstruction,
    ReserveUnavailable,
    SecureMintError,
)
from .idempotency import ClaimState, IdempotencyStore, InMemoryIdempotencyStore
from .instruction import CreateBasketInstruction, Instruction, MintInstruction, parse_instruction
from .ledger import HttpLedgerGateway, InMemoryLedger, LedgerGateway
from .logging_config import audit_log, bind_transaction_id
from .reserves import ReserveAggregator, reserve_source_from_entry
from .submitter import ReportSubmitter, SubmissionStatus

logger = logging.getLogger(__name__)


class WorkflowState(str, Enum):
    """States of a single run. ADMISSION precedes PARSING when deduplicating."""
    ADMISSION = "ADMISSION"
    PARSING = "PARSING"
    CHECKING_RESERVES = "CHECKING_RESERVES"
    MINTING = "MINTING"
    BRIDGING = "BRIDGING"
    PROVISIONING = "PROVISIONING"
    DONE = "DONE"


class ResultKind(str, Enum):
    SUCCESS = "SUCCESS"
    RESERVE_REJECTED = "RESERVE_REJECTED"
    POLICY_REJECTED = "POLICY_REJECTED"
    INFRASTRUCTURE_FAILURE = "INFRASTRUCTURE_FAILURE"
    MALFORMED_INSTRUCTION = "MALFORMED_INSTRUCTION"


@dataclass(frozen=True)
class WorkflowResult:
    """
    Terminal result of one run.

    ``stage`` is the state in which the run ended. ``mint_tx`` is only set
    for a committed mint; ``failed_tx`` references a write that did not
    commit (a rejected or failed submission, or an unconfirmed creation).
    """
    kind: ResultKind
    transaction_id: str
    stage: WorkflowState
    failure_code: Optional[FailureCode] = None
    detail: Optional[str] = None
    instruction_kind: Optional[str] = None
    mint_tx: Optional[str] = None
    bridge_tx: Optional[str] = None
    failed_tx: Optional[str] = None
    deficit: Optional[int] = None
    deficit_amount: Optional[Decimal] = None
    collateralization: Optional[CollateralizationDecision] = None
    basket: Optional[BasketRecord] = None
    partial: bool = False
    replayed: bool = False
    states: Tuple[WorkflowState, ...] = field(default_factory=tuple)

    @property
    def ok(self) -> bool:
        return self.kind == ResultKind.SUCCESS

    @property
    def is_business_rejection(self) -> bool:
        return self.kind in (ResultKind.RESERVE_REJECTED, ResultKind.POLICY_REJECTED)

    @property
    def committed_write(self) -> bool:
        """True when the run left a ledger write behind."""
        return (
            self.mint_tx is not None
            or self.basket is not None
            or self.failure_code == FailureCode.CREATION_UNCONFIRMED
        )

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {
            "kind": self.kind.value,
            "transaction_id": self.transaction_id,
            "instruction_kind": self.instruction_kind,
            "stage": self.stage.value,
            "failure_code": self.failure_code.value if self.failure_code else None,
            "detail": self.detail,
            "mint_tx": self.mint_tx,
            "bridge_tx": self.bridge_tx,
            "failed_tx": self.failed_tx,
            "partial": self.partial,
            "replayed": self.replayed,
            "states": [s.value for s in self.states],
        }
        if self.deficit is not None:
            d["deficit"] = str(self.deficit)
            d["deficit_amount"] = str(self.deficit_amount)
        if self.collateralization is not None:
            d["collateralization"] = self.collateralization.to_dict()
        if self.basket is not None:
            d["basket"] = self.basket.to_dict()
        return d


def _peek_transaction_id(raw: Any) -> str:
    """Best-effort transactionId from a payload that failed validation."""
    if isinstance(raw, (bytes, bytearray)):
        try:
            raw = raw.decode("utf-8")
        except UnicodeDecodeError:
            return ""
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except ValueError:
            return ""
    if isinstance(raw, dict) and isinstance(raw.get("transactionId"), str):
        return raw["transactionId"]
    return ""


class WorkflowOrchestrator:
    """
    Runs instructions end to end against injected collaborators.

    Args:
        config: Validated deployment configuration
        ledger: Ledger gateway (report generation, reads, writes, receipts)
        reserve_aggregator: Produces the trusted reserve for every mint check
        registry: Optional basket registry for confirmed creations
        idempotency_store: Optional transactionId deduplication
    """

    def __init__(
        self,
        config: WorkflowConfig,
        ledger: LedgerGateway,
        reserve_aggregator: ReserveAggregator,
        registry: Optional[BasketRegistry] = None,
        idempotency_store: Optional[IdempotencyStore] = None
    ):
        self.config = config
        self.ledger = ledger
        self.reserve_aggregator = reserve_aggregator
        self.registry = registry
        self.idempotency_store = idempotency_store
        self.submitter = ReportSubmitter(ledger, config.policy_rejection_markers)

        factory = config.source_chain.basket_factory_address
        self.provisioner: Optional[BasketProvisioner] = None
        if factory:
            self.provisioner = BasketProvisioner(
                ledger,
                self.submitter,
                factory,
                gas_limit=config.create_basket_gas_limit,
                registry=registry
            )

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    def run(self, raw: Union[Instruction, bytes, str, Dict[str, Any]]) -> WorkflowResult:
        """
        Process one instruction to a terminal result.

        Accepts a raw payload (parsed here) or an already-typed Instruction.
        """
        trace: List[WorkflowState] = []

        if isinstance(raw, (MintInstruction, CreateBasketInstruction)):
            instruction = raw
        else:
            self._enter(trace, WorkflowState.PARSING)
            try:
                instruction = parse_instruction(raw, decimals=self.config.decimals)
            except MalformedInstruction as e:
                transaction_id = _peek_transaction_id(raw)
                with bind_transaction_id(transaction_id):
                    result = self._failure(
                        ResultKind.MALFORMED_INSTRUCTION, transaction_id, WorkflowState.PARSING, e, trace
                    )
                    self._report(result)
                return result

        transaction_id = instruction.transaction_id
        with bind_transaction_id(transaction_id):
            amount = str(instruction.amount) if isinstance(instruction, MintInstruction) else None
            audit_log.instruction_received(instruction.kind.value, amount)

            admitted = self._admit(transaction_id, instruction, trace)
            if admitted is not None:
                self._report(admitted)
                return admitted

            try:
                result = self._dispatch(instruction, trace)
            except BaseException:
                self._settle(transaction_id, None)
                raise

            self._settle(transaction_id, result)
            self._report(result)
            return result

    def _dispatch(self, instruction: Instruction, trace: List[WorkflowState]) -> WorkflowResult:
        if isinstance(instruction, MintInstruction):
            return self._run_mint(instruction, trace)
        if isinstance(instruction, CreateBasketInstruction):
            return self._run_create_basket(instruction, trace)
        raise TypeError(f"Unsupported instruction type: {type(instruction).__name__}")

    # ------------------------------------------------------------------
    # MINT path
    # ------------------------------------------------------------------

    def _run_mint(self, instruction: MintInstruction, trace: List[WorkflowState]) -> WorkflowResult:
        tid = instruction.transaction_id
        kind = instruction.kind.value

        selector = None
        if instruction.bridging_requested:
            selector = self.config.destination_selector(instruction.cross_chain.destination_chain)
            if selector is None:
                error = MalformedInstruction(
                    f"Unknown destination chain: {instruction.cross_chain.destination_chain!r}",
                    code=FailureCode.UNKNOWN_DESTINATION,
                    field="crossChain.destinationChain"
                )
                return self._failure(ResultKind.MALFORMED_INSTRUCTION, tid, WorkflowState.PARSING, error, trace, kind)
        try:
            requested = to_exact_base_units(instruction.amount, self.config.decimals)
        except MalformedInstruction as e:
            return self._failure(ResultKind.MALFORMED_INSTRUCTION, tid, WorkflowState.PARSING, e, trace, kind)

        self._enter(trace, WorkflowState.CHECKING_RESERVES)
        try:
            current_supply = self.ledger.read_total_supply(self.config.source_chain.stablecoin_address)
            aggregation = self.reserve_aggregator.aggregate()
        except (ReserveUnavailable, InfrastructureError) as e:
            return self._failure(
                ResultKind.INFRASTRUCTURE_FAILURE, tid, WorkflowState.CHECKING_RESERVES, e, trace, kind
            )

        decision = check_collateralization(
            aggregation.trusted.value,
            current_supply,
            requested,
            self.config.decimals
        )
        audit_log.reserve_check(
            approved=decision.approved,
            trusted_reserve=decision.trusted_reserve,
            current_supply=decision.current_supply,
            requested_amount=decision.requested_amount,
            sources_used=aggregation.trusted.sample_size,
            deficit=decision.deficit
        )

        if not decision.approved:
            return WorkflowResult(
                kind=ResultKind.RESERVE_REJECTED,
                transaction_id=tid,
                stage=WorkflowState.CHECKING_RESERVES,
                failure_code=FailureCode.INSUFFICIENT_RESERVES,
                detail=(
                    f"Projected supply {decision.projected_supply} exceeds trusted reserve "
                    f"{decision.trusted_reserve} by {decision.deficit} base units"
                ),
                instruction_kind=kind,
                deficit=decision.deficit,
                deficit_amount=decision.deficit_amount,
                collateralization=decision,
                states=tuple(trace),
            )

        return self._issue(instruction, decision, selector, trace)

    def _issue(
        self,
        instruction: MintInstruction,
        decision: CollateralizationDecision,
        selector: Optional[int],
        trace: List[WorkflowState]
    ) -> WorkflowResult:
        if not decision.approved:
            raise RuntimeError("Issuance requires an approved collateralization decision")

        tid = instruction.transaction_id
        kind = instruction.kind.value
        chain = self.config.source_chain
        amount = decision.requested_amount

        # Bridged mints land on the bridge consumer, which then sends them on
        if instruction.bridging_requested:
            recipient = chain.bridge_consumer_address
        else:
            recipient = instruction.beneficiary_account

        self._enter(trace, WorkflowState.MINTING)
        try:
            mint = self.submitter.mint(
                chain.minting_consumer_address,
                recipient=recipient,
                amount=amount,
                bank_reference=instruction.bank_reference,
                gas_limit=self.config.mint_gas_limit
            )
        except InfrastructureError as e:
            return self._failure(
                ResultKind.INFRASTRUCTURE_FAILURE, tid, WorkflowState.MINTING, e, trace, kind,
                collateralization=decision
            )

        if mint.status == SubmissionStatus.POLICY_REJECTED:
            return self._outcome_failure(
                ResultKind.POLICY_REJECTED, FailureCode.POLICY_REJECTED, tid, WorkflowState.MINTING,
                mint.error_detail, trace, kind, failed_tx=mint.transaction_hash, collateralization=decision
            )
        if mint.status == SubmissionStatus.FAILED:
            return self._outcome_failure(
                ResultKind.INFRASTRUCTURE_FAILURE, FailureCode.SUBMISSION_FAILED, tid, WorkflowState.MINTING,
                mint.error_detail, trace, kind, failed_tx=mint.transaction_hash, collateralization=decision
            )

        if not instruction.bridging_requested:
            return self._success(tid, trace, kind, mint_tx=mint.transaction_hash, collateralization=decision)

        self._enter(trace, WorkflowState.BRIDGING)
        try:
            bridge = self.submitter.bridge_transfer(
                chain.bridge_consumer_address,
                destination_chain_selector=selector,
                sender=recipient,
                beneficiary=instruction.cross_chain.beneficiary,
                amount=amount,
                bank_reference=instruction.bank_reference,
                gas_limit=self.config.bridge_gas_limit
            )
        except InfrastructureError as e:
            return self._failure(
                ResultKind.INFRASTRUCTURE_FAILURE, tid, WorkflowState.BRIDGING, e, trace, kind,
                mint_tx=mint.transaction_hash, partial=True, collateralization=decision
            )

        if bridge.status == SubmissionStatus.POLICY_REJECTED:
            return self._outcome_failure(
                ResultKind.POLICY_REJECTED, FailureCode.POLICY_REJECTED, tid, WorkflowState.BRIDGING,
                bridge.error_detail, trace, kind, mint_tx=mint.transaction_hash,
                failed_tx=bridge.transaction_hash, partial=True, collateralization=decision
            )
        if bridge.status == SubmissionStatus.FAILED:
            return self._outcome_failure(
                ResultKind.INFRASTRUCTURE_FAILURE, FailureCode.SUBMISSION_FAILED, tid, WorkflowState.BRIDGING,
                bridge.error_detail, trace, kind, mint_tx=mint.transaction_hash,
                failed_tx=bridge.transaction_hash, partial=True, collateralization=decision
            )

        return self._success(
            tid, trace, kind,
            mint_tx=mint.transaction_hash,
            bridge_tx=bridge.transaction_hash,
            collateralization=decision
        )

    # ------------------------------------------------------------------
    # CREATE_BASKET path
    # ------------------------------------------------------------------

    def _run_create_basket(self, instruction: CreateBasketInstruction, trace: List[WorkflowState]) -> WorkflowResult:
        tid = instruction.transaction_id
        kind = instruction.kind.value

        self._enter(trace, WorkflowState.PROVISIONING)
        if self.provisioner is None:
            error = ConfigurationError("Basket factory address is not configured", stage="PROVISIONING")
            return self._failure(ResultKind.INFRASTRUCTURE_FAILURE, tid, WorkflowState.PROVISIONING, error, trace, kind)

        try:
            provisioned = self.provisioner.provision(instruction)
        except CreationUnconfirmed as e:
            return self._failure(
                ResultKind.INFRASTRUCTURE_FAILURE, tid, WorkflowState.PROVISIONING, e, trace, kind,
                failed_tx=e.transaction_hash
            )
        except InfrastructureError as e:
            return self._failure(ResultKind.INFRASTRUCTURE_FAILURE, tid, WorkflowState.PROVISIONING, e, trace, kind)

        outcome = provisioned.outcome
        if outcome.status == SubmissionStatus.POLICY_REJECTED:
            return self._outcome_failure(
                ResultKind.POLICY_REJECTED, FailureCode.POLICY_REJECTED, tid, WorkflowState.PROVISIONING,
                outcome.error_detail, trace, kind, failed_tx=outcome.transaction_hash
            )
        if outcome.status == SubmissionStatus.FAILED:
            return self._outcome_failure(
                ResultKind.INFRASTRUCTURE_FAILURE, FailureCode.SUBMISSION_FAILED, tid, WorkflowState.PROVISIONING,
                outcome.error_detail, trace, kind, failed_tx=outcome.transaction_hash
            )

        return self._success(tid, trace, kind, basket=provisioned.record, detail=provisioned.registry_error)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _enter(self, trace: List[WorkflowState], state: WorkflowState):
        trace.append(state)
        logger.debug("Entering %s", state.value)

    def _success(self, tid: str, trace: List[WorkflowState], kind: str, **fields) -> WorkflowResult:
        self._enter(trace, WorkflowState.DONE)
        return WorkflowResult(
            kind=ResultKind.SUCCESS,
            transaction_id=tid,
            stage=WorkflowState.DONE,
            instruction_kind=kind,
            states=tuple(trace),
            **fields
        )

    def _failure(
        self,
        result_kind: ResultKind,
        tid: str,
        stage: WorkflowState,
        error: SecureMintError,
        trace: List[WorkflowState],
        kind: Optional[str] = None,
        **fields
    ) -> WorkflowResult:
        return WorkflowResult(
            kind=result_kind,
            transaction_id=tid,
            stage=stage,
            failure_code=error.code,
            detail=error.message,
            instruction_kind=kind,
            states=tuple(trace),
            **fields
        )

    def _outcome_failure(
        self,
        result_kind: ResultKind,
        code: FailureCode,
        tid: str,
        stage: WorkflowState,
        detail: Optional[str],
        trace: List[WorkflowState],
        kind: str,
        **fields
    ) -> WorkflowResult:
        return WorkflowResult(
            kind=result_kind,
            transaction_id=tid,
            stage=stage,
            failure_code=code,
            detail=detail,
            instruction_kind=kind,
            states=tuple(trace),
            **fields
        )

    def _admit(self, tid: str, instruction: Instruction, trace: List[WorkflowState]) -> Optional[WorkflowResult]:
        """None when this run owns the transactionId, else the result to return instead."""
        if self.idempotency_store is None:
            return None

        claim = self.idempotency_store.claim(tid)
        if claim.state == ClaimState.ACQUIRED:
            return None

        if claim.state == ClaimState.IN_FLIGHT:
            logger.warning("Rejecting duplicate of in-flight transaction %s", tid)
            return WorkflowResult(
                kind=ResultKind.INFRASTRUCTURE_FAILURE,
                transaction_id=tid,
                stage=WorkflowState.ADMISSION,
                failure_code=FailureCode.DUPLICATE_IN_FLIGHT,
                detail=f"Transaction {tid} is already being processed",
                instruction_kind=instruction.kind.value,
                states=tuple(trace) + (WorkflowState.ADMISSION,),
            )

        logger.info("Replaying stored result for transaction %s", tid)
        return dataclasses.replace(claim.result, replayed=True)

    def _settle(self, tid: str, result: Optional[WorkflowResult]):
        if self.idempotency_store is None:
            return
        if result is not None and result.committed_write:
            self.idempotency_store.complete(tid, result)
        else:
            self.idempotency_store.release(tid)

    def _report(self, result: WorkflowResult):
        audit_log.workflow_complete(
            result.kind.value,
            result.stage.value,
            result.failure_code.value if result.failure_code else None
        )


def build_orchestrator(
    config: WorkflowConfig,
    ledger: Optional[LedgerGateway] = None,
    registry: Optional[BasketRegistry] = None,
    idempotency_store: Optional[IdempotencyStore] = None,
    session: Optional[requests.Session] = None,
    simulate: bool = False,
    initial_supply: int = 0
) -> WorkflowOrchestrator:
    """
    Wire an orchestrator from configuration.

    Without an explicit ledger, ``simulate`` selects an InMemoryLedger built
    from the config; otherwise the HTTP ledger-report service is used.

    Raises:
        ConfigurationError: a reserve source entry cannot be built
    """
    try:
        sources = [
            reserve_source_from_entry(
                entry,
                timeout=config.http_timeout_seconds,
                static_value=config.static_reserve,
                session=session
            )
            for entry in config.reserve_sources
        ]
        aggregator = ReserveAggregator(
            sources,
            min_sources=config.min_reserve_sources,
            timeout=config.http_timeout_seconds
        )
    except ValueError as e:
        raise ConfigurationError(f"Invalid reserve source configuration: {e}")

    if ledger is None:
        if simulate:
            ledger = InMemoryLedger.from_config(config, initial_supply=initial_supply)
        else:
            ledger = HttpLedgerGateway(LEDGER_SERVICE_URL, timeout=config.http_timeout_seconds, session=session)

    if idempotency_store is None and IDEMPOTENCY_ENABLED:
        idempotency_store = InMemoryIdempotencyStore()

    return WorkflowOrchestrator(
        config,
        ledger,
        aggregator,
        registry=registry,
        idempotency_store=idempotency_store
    )


def run_workflow(
    instruction: Union[Instruction, bytes, str, Dict[str, Any]],
    orchestrator: WorkflowOrchestrator
) -> WorkflowResult:
    """Run one instruction through an orchestrator."""
    return orchestrator.run(instruction)
