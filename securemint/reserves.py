"""
Secure Mint Reserve Attestation Aggregator

Produces one trusted reserve figure per mint check from N independent
reserve readings, reduced with the median. With N sources the result
tolerates up to floor((N-1)/2) faulty readings. With N=1 there is no
fault tolerance: the single reading is trusted as-is.

Readings are fetched concurrently (bounded fan-out, one worker per
source) and joined before reducing. Nothing is cached across calls.
"""

import logging
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, List, Optional, Sequence, Tuple

import requests

from .errors import FailureCode, InfrastructureError, ReserveUnavailable

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReserveAttestation:
    """A single reserve reading, or the reduced trusted reading."""
    value: Decimal
    observed_at: datetime
    source: str
    sample_size: int = 1

    def to_dict(self):
        return {
            "value": str(self.value),
            "observed_at": self.observed_at.isoformat().replace("+00:00", "Z"),
            "source": self.source,
            "sample_size": self.sample_size,
        }


class InvalidReserveReading(ValueError):
    """A reserve source answered with an unusable figure."""


# Largest decimal exponent a reserve figure may carry; anything beyond
# exceeds every uint256 supply at any precision
MAX_RESERVE_EXPONENT = 77


def coerce_reserve_value(raw: Any) -> Decimal:
    """Convert a reported reserve figure to Decimal, rejecting garbage."""
    if isinstance(raw, bool) or raw is None:
        raise InvalidReserveReading(f"reserve value is not numeric: {raw!r}")
    try:
        value = Decimal(str(raw))
    except InvalidOperation:
        raise InvalidReserveReading(f"reserve value is not numeric: {raw!r}")
    if not value.is_finite():
        raise InvalidReserveReading(f"reserve value is not finite: {raw!r}")
    if value < 0:
        raise InvalidReserveReading(f"reserve value is negative: {raw!r}")
    if value.adjusted() > MAX_RESERVE_EXPONENT:
        raise InvalidReserveReading(f"reserve value is out of range: {raw!r}")
    return value


def _parse_timestamp(raw: Optional[str]) -> datetime:
    if not raw:
        return datetime.now(timezone.utc)
    try:
        parsed = datetime.fromisoformat(raw.replace("Z", "+00:00"))
    except (ValueError, AttributeError):
        return datetime.now(timezone.utc)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class ReserveSource(ABC):
    """One independent reserve reading capability."""

    @property
    @abstractmethod
    def source_id(self) -> str:
        pass

    @abstractmethod
    def read(self) -> ReserveAttestation:
        """
        Fetch one reading.

        Raises:
            InfrastructureError: source unreachable or timed out
            InvalidReserveReading: source answered with an unusable value
        """
        pass


class StaticReserveSource(ReserveSource):
    """
    Fixed reserve figure for local and low-assurance deployments.

    WARNING: Provides no independent attestation.
    """

    def __init__(self, value: Any, source_id: str = "static", observed_at: Optional[datetime] = None):
        self._value = coerce_reserve_value(value)
        self._source_id = source_id
        self._observed_at = observed_at

    @property
    def source_id(self) -> str:
        return self._source_id

    def read(self) -> ReserveAttestation:
        return ReserveAttestation(
            value=self._value,
            observed_at=self._observed_at or datetime.now(timezone.utc),
            source=self._source_id,
        )


class HttpReserveSource(ReserveSource):
    """
    Reserve reading from a custodian proof-of-reserve endpoint.

    Expects a JSON body of the form::

        {"totalReserve": 1000000.00, "currency": "USD", "lastUpdated": "..."}
    """

    def __init__(
        self,
        url: str,
        timeout: float = 10.0,
        session: Optional[requests.Session] = None,
        value_field: str = "totalReserve"
    ):
        self.url = url
        self.timeout = timeout
        self.session = session or requests.Session()
        self.value_field = value_field

    @property
    def source_id(self) -> str:
        return self.url

    def read(self) -> ReserveAttestation:
        try:
            r = self.session.get(self.url, timeout=self.timeout)
            r.raise_for_status()
            data = r.json()
        except requests.Timeout as e:
            raise InfrastructureError(f"Reserve source {self.url} timed out: {e}", code=FailureCode.TIMEOUT)
        except requests.RequestException as e:
            raise InfrastructureError(f"Reserve source {self.url} unreachable: {e}")
        except ValueError as e:
            raise InvalidReserveReading(f"Reserve source {self.url} returned non-JSON body: {e}")

        if not isinstance(data, dict) or self.value_field not in data:
            raise InvalidReserveReading(f"Reserve source {self.url} response has no {self.value_field}")

        return ReserveAttestation(
            value=coerce_reserve_value(data[self.value_field]),
            observed_at=_parse_timestamp(data.get("lastUpdated")),
            source=self.url,
        )


def reserve_source_from_entry(
    entry: str,
    timeout: float = 10.0,
    static_value: Optional[Any] = None,
    session: Optional[requests.Session] = None
) -> ReserveSource:
    """
    Build a reserve source from a configuration entry.

    ``static:<value>`` and ``file://`` entries become static sources;
    anything else is treated as an HTTP(S) URL.
    """
    if entry.startswith("static:"):
        return StaticReserveSource(entry[len("static:"):], source_id=entry)
    if entry.startswith("file://"):
        if static_value is None:
            raise ValueError(f"file:// reserve source {entry} requires a static reserve value")
        return StaticReserveSource(static_value, source_id=entry)
    return HttpReserveSource(entry, timeout=timeout, session=session)


def lower_median(values: Sequence[Decimal]) -> Decimal:
    """
    Median of the values; for an even count, the lower middle element.

    The result is always one of the observed readings.
    """
    if not values:
        raise ValueError("median of empty sequence")
    ordered = sorted(values)
    return ordered[(len(ordered) - 1) // 2]


@dataclass
class AggregationFailure:
    source: str
    reason: str


@dataclass
class AggregationOutcome:
    """Trusted reserve plus the individual readings it was derived from."""
    trusted: ReserveAttestation
    readings: List[ReserveAttestation] = field(default_factory=list)
    failures: List[AggregationFailure] = field(default_factory=list)


class ReserveAggregator:
    """
    Fans out to every configured source, joins, and reduces with the median.

    Args:
        sources: Independent reserve sources (at least one)
        min_sources: Quorum of valid readings required to produce a value
        timeout: Upper bound for the whole fan-out in seconds
    """

    def __init__(
        self,
        sources: Sequence[ReserveSource],
        min_sources: int = 1,
        timeout: Optional[float] = None
    ):
        if not sources:
            raise ValueError("at least one reserve source is required")
        if min_sources < 1 or min_sources > len(sources):
            raise ValueError(f"min_sources must be between 1 and {len(sources)}")
        self.sources = list(sources)
        self.min_sources = min_sources
        self.timeout = timeout

    def aggregate(self) -> AggregationOutcome:
        """
        Read all sources and reduce to one trusted reading.

        Raises:
            ReserveUnavailable: fewer than ``min_sources`` valid readings
        """
        results = self._read_all()

        readings: List[ReserveAttestation] = []
        failures: List[AggregationFailure] = []
        for source, reading, error in results:
            if reading is not None:
                readings.append(reading)
            else:
                failures.append(AggregationFailure(source=source.source_id, reason=error))
                logger.warning("Reserve source %s failed: %s", source.source_id, error)

        if len(readings) < self.min_sources:
            raise ReserveUnavailable(
                f"Only {len(readings)} of {len(self.sources)} reserve sources returned a valid "
                f"reading (quorum {self.min_sources}): "
                + "; ".join(f"{f.source}: {f.reason}" for f in failures),
                stage="CHECKING_RESERVES"
            )

        value = lower_median([r.value for r in readings])
        trusted = ReserveAttestation(
            value=value,
            observed_at=min(r.observed_at for r in readings),
            source=f"median:{len(readings)}/{len(self.sources)}",
            sample_size=len(readings),
        )
        logger.info(
            "Trusted reserve %s from %d of %d sources",
            value, len(readings), len(self.sources)
        )
        return AggregationOutcome(trusted=trusted, readings=readings, failures=failures)

    def _read_all(self) -> List[Tuple[ReserveSource, Optional[ReserveAttestation], Optional[str]]]:
        if len(self.sources) == 1:
            return [self._read_one(self.sources[0])]

        executor = ThreadPoolExecutor(max_workers=len(self.sources), thread_name_prefix="reserve-read")
        try:
            futures = {executor.submit(self._read_one, s): s for s in self.sources}
            done, _ = wait(futures, timeout=self.timeout)
            results = []
            for future, source in futures.items():
                if future in done:
                    results.append(future.result())
                else:
                    results.append((source, None, "timed out waiting for reading"))
            return results
        finally:
            executor.shutdown(wait=False, cancel_futures=True)

    @staticmethod
    def _read_one(source: ReserveSource) -> Tuple[ReserveSource, Optional[ReserveAttestation], Optional[str]]:
        try:
            return source, source.read(), None
        except (InfrastructureError, InvalidReserveReading) as e:
            return source, None, str(e)
