"""
Secure Mint Instruction Parser/Validator

Decodes an incoming bank-transfer instruction and validates its shape.
Two instruction kinds exist, discriminated by ``messageType``:

    MINT           issue new tokens against a bank transfer, optionally
                   bridging them to a second ledger
    CREATE_BASKET  deploy a new asset + enforcement consumer pair

Validation is purely structural; no external call is ever made while
parsing. Any failure raises MalformedInstruction.
"""

import json
import re
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Dict, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, StrictBool, StrictStr, ValidationError, field_validator

from .errors import FailureCode, MalformedInstruction


# 20-byte hex account reference, 0x-prefixed
ADDRESS_PATTERN = re.compile(r'^0x[0-9a-fA-F]{40}$')


def is_address(value: str) -> bool:
    return isinstance(value, str) and bool(ADDRESS_PATTERN.match(value))


def normalize_address(value: str) -> str:
    """Return the lowercase form of a well-formed address."""
    if not is_address(value):
        raise ValueError(f"Invalid address '{value}': must be 0x followed by 40 hex characters")
    return "0x" + value[2:].lower()


class InstructionKind(str, Enum):
    MINT = "MINT"
    CREATE_BASKET = "CREATE_BASKET"


@dataclass(frozen=True)
class CrossChainRoute:
    """Bridging leg requested by a mint instruction."""
    destination_chain: str
    beneficiary: str


@dataclass(frozen=True)
class MintInstruction:
    """Issue ``amount`` of the asset for ``beneficiary_account``."""
    transaction_id: str
    beneficiary_account: str
    amount: Decimal
    currency: str
    bank_reference: str
    beneficiary_name: Optional[str] = None
    value_date: Optional[str] = None
    cross_chain: Optional[CrossChainRoute] = None

    kind = InstructionKind.MINT

    @property
    def bridging_requested(self) -> bool:
        return self.cross_chain is not None


@dataclass(frozen=True)
class CreateBasketInstruction:
    """Deploy a new asset contract and its enforcement consumer."""
    transaction_id: str
    name: str
    symbol: str
    admin: str

    kind = InstructionKind.CREATE_BASKET


Instruction = Union[MintInstruction, CreateBasketInstruction]


# ============================================================
# Wire schema
# ============================================================

class _BeneficiaryModel(BaseModel):
    model_config = ConfigDict(extra="ignore")

    account: StrictStr
    name: Optional[StrictStr] = None


class _CrossChainModel(BaseModel):
    model_config = ConfigDict(extra="ignore")

    enabled: StrictBool
    destinationChain: StrictStr = Field(min_length=1)
    beneficiary: StrictStr


class _InstructionModel(BaseModel):
    """Field-level shape of both instruction kinds, mirroring the wire format."""
    model_config = ConfigDict(extra="ignore")

    messageType: Literal["MINT", "CREATE_BASKET"]
    transactionId: StrictStr = Field(min_length=1)
    beneficiary: Optional[_BeneficiaryModel] = None
    amount: Optional[StrictStr] = None
    currency: Optional[StrictStr] = None
    valueDate: Optional[StrictStr] = None
    bankReference: Optional[StrictStr] = None
    crossChain: Optional[_CrossChainModel] = None
    basketName: Optional[StrictStr] = None
    basketSymbol: Optional[StrictStr] = None
    basketAdmin: Optional[StrictStr] = None

    @field_validator("transactionId")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("transactionId must not be blank")
        return value


def _require(value: Optional[str], field: str) -> str:
    if value is None or (isinstance(value, str) and not value.strip()):
        raise MalformedInstruction(
            f"Missing required field: {field}",
            code=FailureCode.MISSING_FIELD,
            field=field
        )
    return value


def _address(value: Optional[str], field: str) -> str:
    value = _require(value, field)
    if not is_address(value):
        raise MalformedInstruction(
            f"Field {field} is not a well-formed address: {value!r}",
            code=FailureCode.INVALID_FIELD,
            field=field
        )
    return normalize_address(value)


def parse_amount(raw: str, decimals: Optional[int] = None) -> Decimal:
    """
    Parse a positive decimal currency amount.

    If ``decimals`` is given, amounts with more fractional digits than the
    asset supports are rejected instead of being silently truncated.
    """
    try:
        amount = Decimal(raw.strip())
    except (InvalidOperation, AttributeError):
        raise MalformedInstruction(
            f"Amount is not a decimal number: {raw!r}",
            code=FailureCode.INVALID_FIELD,
            field="amount"
        )

    if not amount.is_finite():
        raise MalformedInstruction(
            f"Amount is not finite: {raw!r}",
            code=FailureCode.INVALID_FIELD,
            field="amount"
        )
    if amount <= 0:
        raise MalformedInstruction(
            f"Amount must be positive, got {raw!r}",
            code=FailureCode.NON_POSITIVE_AMOUNT,
            field="amount"
        )
    if decimals is not None and -amount.as_tuple().exponent > decimals:
        raise MalformedInstruction(
            f"Amount {raw!r} has more than {decimals} fractional digits",
            code=FailureCode.PRECISION_EXCEEDED,
            field="amount"
        )
    return amount


def _format_validation_error(exc: ValidationError) -> MalformedInstruction:
    first = exc.errors()[0]
    field = ".".join(str(p) for p in first.get("loc", ())) or None
    code = FailureCode.MISSING_FIELD if first.get("type") == "missing" else FailureCode.INVALID_FIELD
    return MalformedInstruction(
        f"Invalid instruction field {field}: {first.get('msg')}",
        code=code,
        field=field
    )


def parse_instruction(raw: Union[bytes, str, Dict[str, Any]], decimals: Optional[int] = None) -> Instruction:
    """
    Decode and validate a raw instruction payload.

    Args:
        raw: JSON bytes/str, or an already-decoded mapping
        decimals: Asset precision; when set, over-precise amounts are rejected

    Returns:
        MintInstruction or CreateBasketInstruction

    Raises:
        MalformedInstruction: on any missing, wrong-typed or invalid field
    """
    if isinstance(raw, (bytes, bytearray)):
        try:
            raw = raw.decode("utf-8")
        except UnicodeDecodeError:
            raise MalformedInstruction("Instruction payload is not UTF-8")

    if isinstance(raw, str):
        if not raw.strip():
            raise MalformedInstruction("Instruction payload is required", code=FailureCode.MISSING_FIELD)
        try:
            raw = json.loads(raw)
        except json.JSONDecodeError as e:
            raise MalformedInstruction(f"Instruction payload is not valid JSON: {e.msg}")

    if not isinstance(raw, dict):
        raise MalformedInstruction("Instruction payload must be a JSON object")

    try:
        model = _InstructionModel.model_validate(raw)
    except ValidationError as e:
        raise _format_validation_error(e)

    if model.messageType == InstructionKind.CREATE_BASKET.value:
        return CreateBasketInstruction(
            transaction_id=model.transactionId,
            name=_require(model.basketName, "basketName"),
            symbol=_require(model.basketSymbol, "basketSymbol"),
            admin=_address(model.basketAdmin, "basketAdmin"),
        )

    if model.beneficiary is None:
        raise MalformedInstruction(
            "Missing required field: beneficiary",
            code=FailureCode.MISSING_FIELD,
            field="beneficiary"
        )

    cross_chain = None
    if model.crossChain is not None and model.crossChain.enabled:
        cross_chain = CrossChainRoute(
            destination_chain=model.crossChain.destinationChain,
            beneficiary=_address(model.crossChain.beneficiary, "crossChain.beneficiary"),
        )

    return MintInstruction(
        transaction_id=model.transactionId,
        beneficiary_account=_address(model.beneficiary.account, "beneficiary.account"),
        beneficiary_name=model.beneficiary.name,
        amount=parse_amount(_require(model.amount, "amount"), decimals),
        currency=_require(model.currency, "currency"),
        bank_reference=_require(model.bankReference, "bankReference"),
        value_date=model.valueDate,
        cross_chain=cross_chain,
    )


def instruction_to_dict(instruction: Instruction) -> Dict[str, Any]:
    """Render an Instruction back into wire-format field names."""
    if isinstance(instruction, CreateBasketInstruction):
        return {
            "messageType": instruction.kind.value,
            "transactionId": instruction.transaction_id,
            "basketName": instruction.name,
            "basketSymbol": instruction.symbol,
            "basketAdmin": instruction.admin,
        }

    d: Dict[str, Any] = {
        "messageType": instruction.kind.value,
        "transactionId": instruction.transaction_id,
        "beneficiary": {"account": instruction.beneficiary_account},
        "amount": str(instruction.amount),
        "currency": instruction.currency,
        "bankReference": instruction.bank_reference,
    }
    if instruction.beneficiary_name:
        d["beneficiary"]["name"] = instruction.beneficiary_name
    if instruction.value_date:
        d["valueDate"] = instruction.value_date
    if instruction.cross_chain:
        d["crossChain"] = {
            "enabled": True,
            "destinationChain": instruction.cross_chain.destination_chain,
            "beneficiary": instruction.cross_chain.beneficiary,
        }
    return d
