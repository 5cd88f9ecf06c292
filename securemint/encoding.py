"""
Secure Mint Canonical Report Encoding

Every ledger write is described by a fixed-layout binary payload built
from 32-byte big-endian words, the layout used by EVM consumers:

    MINT (128 bytes)
        uint8    instruction type = 1
        address  recipient
        uint256  amount (base units)
        bytes32  bank reference

    CREATE_BASKET (dynamic)
        uint8    instruction type = 2
        address  admin
        string   name      (offset word, then length + padded bytes in tail)
        string   symbol

    BRIDGE_TRANSFER (192 bytes)
        uint8    instruction type = 3
        uint64   destination chain selector
        address  sender
        address  beneficiary
        uint256  amount (base units)
        bytes32  bank reference

Encoding is deterministic: the same report always yields identical bytes.
The bank reference is UTF-8 encoded then truncated or zero-padded to
exactly 32 bytes.
"""

from dataclasses import dataclass
from typing import List, Tuple, Union

from .instruction import normalize_address

WORD = 32
BANK_REFERENCE_LENGTH = 32

INSTRUCTION_MINT = 1
INSTRUCTION_CREATE_BASKET = 2
INSTRUCTION_BRIDGE_TRANSFER = 3


class EncodingError(ValueError):
    """Raised when a value does not fit its fixed-width slot or a payload is malformed."""


# ============================================================
# Primitive words
# ============================================================

def encode_uint(value: int, bits: int = 256) -> bytes:
    if isinstance(value, bool) or not isinstance(value, int):
        raise EncodingError(f"uint{bits} requires an int, got {type(value).__name__}")
    if value < 0 or value >= 2 ** bits:
        raise EncodingError(f"value {value} does not fit in uint{bits}")
    return value.to_bytes(WORD, "big")


def encode_address(address: str) -> bytes:
    try:
        normalized = normalize_address(address)
    except ValueError as e:
        raise EncodingError(str(e))
    return b"\x00" * 12 + bytes.fromhex(normalized[2:])


def bank_reference_bytes32(reference: str) -> bytes:
    """UTF-8 bytes of the reference, truncated or zero-padded to 32 bytes."""
    raw = reference.encode("utf-8")[:BANK_REFERENCE_LENGTH]
    return raw.ljust(BANK_REFERENCE_LENGTH, b"\x00")


def _encode_string_tail(value: str) -> bytes:
    raw = value.encode("utf-8")
    padded_len = -(-len(raw) // WORD) * WORD
    return encode_uint(len(raw)) + raw.ljust(padded_len, b"\x00")


def _words(payload: bytes) -> List[bytes]:
    if len(payload) % WORD:
        raise EncodingError(f"payload length {len(payload)} is not a multiple of {WORD}")
    return [payload[i:i + WORD] for i in range(0, len(payload), WORD)]


def _decode_uint(word: bytes, bits: int = 256) -> int:
    value = int.from_bytes(word, "big")
    if value >= 2 ** bits:
        raise EncodingError(f"word overflows uint{bits}")
    return value


def _decode_address(word: bytes) -> str:
    if word[:12] != b"\x00" * 12:
        raise EncodingError("address word has non-zero padding")
    return "0x" + word[12:].hex()


def _decode_string(payload: bytes, offset: int) -> str:
    if offset % WORD or offset + WORD > len(payload):
        raise EncodingError(f"invalid string offset {offset}")
    length = int.from_bytes(payload[offset:offset + WORD], "big")
    start = offset + WORD
    if start + length > len(payload):
        raise EncodingError("string runs past end of payload")
    try:
        return payload[start:start + length].decode("utf-8")
    except UnicodeDecodeError:
        raise EncodingError("string is not valid UTF-8")


def decode_bank_reference(word: bytes) -> str:
    """Inverse of bank_reference_bytes32 for references that fit in 32 bytes."""
    return word.rstrip(b"\x00").decode("utf-8", errors="replace")


# ============================================================
# Report types
# ============================================================

@dataclass(frozen=True)
class MintReport:
    recipient: str
    amount: int
    bank_reference: str

    instruction_type = INSTRUCTION_MINT

    def encode(self) -> bytes:
        return b"".join([
            encode_uint(INSTRUCTION_MINT, 8),
            encode_address(self.recipient),
            encode_uint(self.amount),
            bank_reference_bytes32(self.bank_reference),
        ])


@dataclass(frozen=True)
class BridgeTransferReport:
    destination_chain_selector: int
    sender: str
    beneficiary: str
    amount: int
    bank_reference: str

    instruction_type = INSTRUCTION_BRIDGE_TRANSFER

    def encode(self) -> bytes:
        return b"".join([
            encode_uint(INSTRUCTION_BRIDGE_TRANSFER, 8),
            encode_uint(self.destination_chain_selector, 64),
            encode_address(self.sender),
            encode_address(self.beneficiary),
            encode_uint(self.amount),
            bank_reference_bytes32(self.bank_reference),
        ])


@dataclass(frozen=True)
class CreateBasketReport:
    name: str
    symbol: str
    admin: str

    instruction_type = INSTRUCTION_CREATE_BASKET

    def encode(self) -> bytes:
        head_size = 4 * WORD
        name_tail = _encode_string_tail(self.name)
        symbol_tail = _encode_string_tail(self.symbol)
        return b"".join([
            encode_uint(INSTRUCTION_CREATE_BASKET, 8),
            encode_address(self.admin),
            encode_uint(head_size),
            encode_uint(head_size + len(name_tail)),
            name_tail,
            symbol_tail,
        ])


Report = Union[MintReport, BridgeTransferReport, CreateBasketReport]


def encode_report(report: Report) -> bytes:
    """Canonical payload for a report."""
    return report.encode()


def decode_report(payload: bytes) -> Report:
    """
    Parse a canonical payload back into its report type.

    Raises:
        EncodingError: unknown instruction type or malformed layout
    """
    words = _words(payload)
    if not words:
        raise EncodingError("empty payload")

    tag = _decode_uint(words[0], 8)

    if tag == INSTRUCTION_MINT:
        if len(words) != 4:
            raise EncodingError(f"mint payload must be 4 words, got {len(words)}")
        return MintReport(
            recipient=_decode_address(words[1]),
            amount=_decode_uint(words[2]),
            bank_reference=decode_bank_reference(words[3]),
        )

    if tag == INSTRUCTION_BRIDGE_TRANSFER:
        if len(words) != 6:
            raise EncodingError(f"bridge payload must be 6 words, got {len(words)}")
        return BridgeTransferReport(
            destination_chain_selector=_decode_uint(words[1], 64),
            sender=_decode_address(words[2]),
            beneficiary=_decode_address(words[3]),
            amount=_decode_uint(words[4]),
            bank_reference=decode_bank_reference(words[5]),
        )

    if tag == INSTRUCTION_CREATE_BASKET:
        if len(words) < 4:
            raise EncodingError("create basket payload too short")
        return CreateBasketReport(
            admin=_decode_address(words[1]),
            name=_decode_string(payload, _decode_uint(words[2])),
            symbol=_decode_string(payload, _decode_uint(words[3])),
        )

    raise EncodingError(f"unknown instruction type {tag}")


def payload_layout(payload: bytes) -> List[Tuple[int, str]]:
    """Word offsets and hex content, for diagnostics."""
    return [(i * WORD, w.hex()) for i, w in enumerate(_words(payload))]
