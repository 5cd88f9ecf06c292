"""
Secure Mint

Secure issuance workflow for a reserve-backed digital asset.

Every bank-transfer instruction runs through one sequential pipeline:

    parse -> prove collateralization -> policy-gated mint -> [policy-gated bridge]

or, for new assets:

    parse -> provision basket (asset + enforcement consumer pair)

New supply is never issued unless trusted reserves, reduced with the
median over independent attestations fetched in the same run, cover the
projected supply. Business rejections (insufficient reserves, policy)
and infrastructure failures are distinct results, never crashes.

Usage:
    from securemint import (
        InMemoryLedger,
        StaticReserveSource,
        ReserveAggregator,
        WorkflowOrchestrator,
        workflow_config_from_dict,
    )

    config = workflow_config_from_dict({...})
    ledger = InMemoryLedger.from_config(config)
    aggregator = ReserveAggregator([StaticReserveSource("1000000")])
    orchestrator = WorkflowOrchestrator(config, ledger, aggregator)

    result = orchestrator.run(instruction_json)
    if result.ok:
        print(result.mint_tx, result.bridge_tx)
    else:
        print(result.kind, result.stage, result.detail)
"""

__version__ = "1.0.0"

# Errors
from .errors import (
    FailureCode,
    SecureMintError,
    MalformedInstruction,
    ReserveUnavailable,
    InfrastructureError,
    CreationUnconfirmed,
    ConfigurationError,
)

# Instructions
from .instruction import (
    InstructionKind,
    MintInstruction,
    CreateBasketInstruction,
    CrossChainRoute,
    parse_instruction,
    instruction_to_dict,
)

# Configuration
from .config import (
    WorkflowConfig,
    load_workflow_config,
    workflow_config_from_dict,
)

# Reserves and collateralization
from .reserves import (
    ReserveAttestation,
    ReserveSource,
    StaticReserveSource,
    HttpReserveSource,
    ReserveAggregator,
    lower_median,
)
from .collateral import (
    CollateralizationDecision,
    check_collateralization,
    to_base_units,
)

# Reports and ledger
from .encoding import (
    MintReport,
    BridgeTransferReport,
    CreateBasketReport,
    encode_report,
    decode_report,
)
from .signing import SignedReport, ReportSigner, verify_report
from .ledger import (
    LedgerGateway,
    HttpLedgerGateway,
    InMemoryLedger,
    LedgerEvent,
    WriteReceipt,
    TxStatus,
)
from .submitter import ReportSubmitter, SubmissionOutcome, SubmissionStatus

# Baskets
from .baskets import (
    BasketRecord,
    BasketRegistry,
    InMemoryBasketRegistry,
    JsonFileBasketRegistry,
    BasketProvisioner,
)

# Orchestration
from .idempotency import IdempotencyStore, InMemoryIdempotencyStore
from .workflow import (
    WorkflowState,
    ResultKind,
    WorkflowResult,
    WorkflowOrchestrator,
    build_orchestrator,
    run_workflow,
)

__all__ = [
    # Errors
    "FailureCode",
    "SecureMintError",
    "MalformedInstruction",
    "ReserveUnavailable",
    "InfrastructureError",
    "CreationUnconfirmed",
    "ConfigurationError",

    # Instructions
    "InstructionKind",
    "MintInstruction",
    "CreateBasketInstruction",
    "CrossChainRoute",
    "parse_instruction",
    "instruction_to_dict",

    # Configuration
    "WorkflowConfig",
    "load_workflow_config",
    "workflow_config_from_dict",

    # Reserves and collateralization
    "ReserveAttestation",
    "ReserveSource",
    "StaticReserveSource",
    "HttpReserveSource",
    "ReserveAggregator",
    "lower_median",
    "CollateralizationDecision",
    "check_collateralization",
    "to_base_units",

    # Reports and ledger
    "MintReport",
    "BridgeTransferReport",
    "CreateBasketReport",
    "encode_report",
    "decode_report",
    "SignedReport",
    "ReportSigner",
    "verify_report",
    "LedgerGateway",
    "HttpLedgerGateway",
    "InMemoryLedger",
    "LedgerEvent",
    "WriteReceipt",
    "TxStatus",
    "ReportSubmitter",
    "SubmissionOutcome",
    "SubmissionStatus",

    # Baskets
    "BasketRecord",
    "BasketRegistry",
    "InMemoryBasketRegistry",
    "JsonFileBasketRegistry",
    "BasketProvisioner",

    # Orchestration
    "IdempotencyStore",
    "InMemoryIdempotencyStore",
    "WorkflowState",
    "ResultKind",
    "WorkflowResult",
    "WorkflowOrchestrator",
    "build_orchestrator",
    "run_workflow",
]
