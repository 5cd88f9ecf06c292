"""
Secure Mint Error Taxonomy

Infrastructure and input failures are raised as exceptions from the
components that detect them and converted into a terminal WorkflowResult
by the orchestrator. Business outcomes (insufficient reserves, policy
rejection) are never raised; they travel as values.
"""

from enum import Enum
from typing import Optional


class FailureCode(str, Enum):
    """Machine-readable failure codes carried by errors and results."""
    MISSING_FIELD = "MISSING_FIELD"
    INVALID_FIELD = "INVALID_FIELD"
    NON_POSITIVE_AMOUNT = "NON_POSITIVE_AMOUNT"
    PRECISION_EXCEEDED = "PRECISION_EXCEEDED"
    UNKNOWN_DESTINATION = "UNKNOWN_DESTINATION"
    RESERVE_UNAVAILABLE = "RESERVE_UNAVAILABLE"
    INSUFFICIENT_RESERVES = "INSUFFICIENT_RESERVES"
    POLICY_REJECTED = "POLICY_REJECTED"
    SUBMISSION_FAILED = "SUBMISSION_FAILED"
    NETWORK_ERROR = "NETWORK_ERROR"
    TIMEOUT = "TIMEOUT"
    CREATION_UNCONFIRMED = "CREATION_UNCONFIRMED"
    NOT_CONFIGURED = "NOT_CONFIGURED"
    DUPLICATE_IN_FLIGHT = "DUPLICATE_IN_FLIGHT"


class SecureMintError(Exception):
    """Base class for all secure mint errors."""

    default_code = FailureCode.INVALID_FIELD

    def __init__(
        self,
        message: str,
        code: Optional[FailureCode] = None,
        stage: Optional[str] = None
    ):
        self.message = message
        self.code = code or self.default_code
        self.stage = stage
        super().__init__(message)


class MalformedInstruction(SecureMintError):
    """Raised when an instruction fails schema validation. Never retried."""

    default_code = FailureCode.INVALID_FIELD

    def __init__(self, message: str, code: Optional[FailureCode] = None, field: Optional[str] = None):
        self.field = field
        super().__init__(message, code=code, stage="PARSING")


class ReserveUnavailable(SecureMintError):
    """Raised when no trustworthy reserve reading could be obtained."""

    default_code = FailureCode.RESERVE_UNAVAILABLE


class InfrastructureError(SecureMintError):
    """Network, RPC or timeout failure at an external call."""

    default_code = FailureCode.NETWORK_ERROR


class CreationUnconfirmed(SecureMintError):
    """A creation submission reported success but emitted no creation event."""

    default_code = FailureCode.CREATION_UNCONFIRMED

    def __init__(self, message: str, transaction_hash: Optional[str] = None):
        self.transaction_hash = transaction_hash
        super().__init__(message, stage="PROVISIONING")


class ConfigurationError(SecureMintError):
    """Raised when workflow configuration is missing or invalid."""

    default_code = FailureCode.NOT_CONFIGURED
