"""
Secure Mint Report Attestation

Wraps a canonical report payload in a tamper-evident envelope signed
with Ed25519 (RFC 8032). In production the ledger-report service
produces these envelopes; ReportSigner is the local generator used by
the simulated ledger and by tests.
"""

import base64
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional, Tuple

from nacl.exceptions import BadSignatureError
from nacl.signing import SigningKey, VerifyKey

from .hashing import report_id as compute_report_id

SIGNATURE_ALGORITHM = "Ed25519"


@dataclass(frozen=True)
class SignedReport:
    """
    Attested wrapper for one encoded instruction.

    Produced for exactly one ledger write and never reused.
    """
    payload: bytes
    report_id: str
    issued_at: str
    signatures: Tuple[Dict[str, str], ...] = field(default_factory=tuple)

    def signing_input(self) -> bytes:
        return signing_input(self.payload, self.issued_at)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "payload": _b64(self.payload),
            "report_id": self.report_id,
            "issued_at": self.issued_at,
            "signatures": [dict(s) for s in self.signatures],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SignedReport":
        required = ["payload", "report_id", "issued_at"]
        missing = [f for f in required if f not in data]
        if missing:
            raise ValueError(f"Missing required fields: {missing}")
        return cls(
            payload=base64.b64decode(data["payload"]),
            report_id=data["report_id"],
            issued_at=data["issued_at"],
            signatures=tuple(dict(s) for s in data.get("signatures", [])),
        )


def signing_input(payload: bytes, issued_at: str) -> bytes:
    """Bytes covered by a report signature: timestamp then payload."""
    return issued_at.encode("utf-8") + b"\x00" + payload


def _b64(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def _utc_stamp(moment: datetime) -> str:
    return moment.isoformat().replace("+00:00", "Z")


@dataclass
class ReportKey:
    """One Ed25519 key registered with a ReportSigner."""
    key_id: str
    seed: bytes
    public_key: bytes
    not_before: datetime
    not_after: datetime

    def is_valid_at(self, moment: datetime) -> bool:
        return self.not_before <= moment <= self.not_after

    def to_trust_store_entry(self) -> Dict[str, Any]:
        return {
            "key_id": self.key_id,
            "algorithm": SIGNATURE_ALGORITHM,
            "public_key": _b64(self.public_key),
            "not_before": _utc_stamp(self.not_before),
            "not_after": _utc_stamp(self.not_after),
        }


class ReportSigner:
    """Local report generator holding one or more Ed25519 keys."""

    def __init__(self, signer_id: str = "local-report-signer"):
        self.signer_id = signer_id
        self._registered: Dict[str, ReportKey] = {}
        self._active: Optional[str] = None

    def generate_key_pair(self, key_id: str, validity_days: int = 90) -> ReportKey:
        """Register a fresh key; the first key registered becomes active."""
        seed, public_key = generate_signing_key()
        issued = datetime.now(timezone.utc)
        key = ReportKey(
            key_id=key_id,
            seed=seed,
            public_key=public_key,
            not_before=issued,
            not_after=issued + timedelta(days=validity_days),
        )
        self._registered[key_id] = key
        self._active = self._active or key_id
        return key

    def set_active_key(self, key_id: str):
        if key_id not in self._registered:
            raise ValueError(f"Unknown report key: {key_id}")
        self._active = key_id

    def sign(self, payload: bytes, key_id: Optional[str] = None) -> SignedReport:
        """
        Attest a canonical payload.

        Raises:
            ValueError: no usable key
        """
        chosen = key_id or self._active
        key = self._registered.get(chosen) if chosen else None
        if key is None:
            raise ValueError(f"No report key available (requested {chosen!r})")

        moment = datetime.now(timezone.utc)
        if not key.is_valid_at(moment):
            raise ValueError(f"Report key {chosen} is outside its validity window")

        issued_at = _utc_stamp(moment)
        signed = SigningKey(key.seed).sign(signing_input(payload, issued_at))

        return SignedReport(
            payload=payload,
            report_id=compute_report_id(payload),
            issued_at=issued_at,
            signatures=({
                "signer_id": self.signer_id,
                "key_id": chosen,
                "algorithm": SIGNATURE_ALGORITHM,
                "sig": _b64(signed.signature),
            },),
        )

    def trust_store(self) -> Dict[str, str]:
        """key_id -> base64 public key for every registered key."""
        return {key.key_id: _b64(key.public_key) for key in self._registered.values()}


def verify_report(report: SignedReport, trust_store: Dict[str, str]) -> bool:
    """
    Check that a report is intact and signed by a trusted key.

    Returns False for an unknown key, a tampered payload, a report id that
    does not match the payload, or a bad signature.
    """
    if report.report_id != compute_report_id(report.payload):
        return False
    if not report.signatures:
        return False

    for sig in report.signatures:
        public_key = trust_store.get(sig.get("key_id", ""))
        if not public_key:
            return False
        try:
            VerifyKey(base64.b64decode(public_key)).verify(
                report.signing_input(),
                base64.b64decode(sig.get("sig", ""))
            )
        except (BadSignatureError, ValueError):
            return False
    return True


def generate_signing_key() -> Tuple[bytes, bytes]:
    """
    Generate an Ed25519 key pair.

    Returns:
        Tuple of (seed_bytes, public_key_bytes)
    """
    key = SigningKey.generate()
    return bytes(key), bytes(key.verify_key)
