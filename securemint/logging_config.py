"""
Logging configuration for Secure Mint.

Provides structured JSON logging for audit trails and operator diagnosis.
Every record emitted during a workflow run carries the transactionId of
the instruction being processed.
"""

import json
import logging
import sys
import time
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Iterator, Optional

# Correlation key for the run currently being processed
transaction_id_var: ContextVar[str] = ContextVar('transaction_id', default='')

PLAIN_FORMAT = '%(asctime)s %(levelname)-8s [%(name)s] %(message)s'


class StructuredFormatter(logging.Formatter):
    """
    One JSON object per record.

    Source location, the bound transactionId, any traceback and the
    ``extra_fields`` attached by AuditLogger are merged into the object.
    """

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": time.strftime('%Y-%m-%dT%H:%M:%SZ', time.gmtime(record.created)),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        bound = transaction_id_var.get()
        if bound:
            entry["transaction_id"] = bound
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        entry.update(getattr(record, 'extra_fields', {}))

        return json.dumps(entry, default=str)


class AuditLogger:
    """
    Specialized logger for workflow audit events.

    Business outcomes (reserve or policy rejection) are logged at WARNING,
    infrastructure failures at ERROR. Neither carries a traceback.
    """

    def __init__(self, name: str = "securemint.audit"):
        self._logger = logging.getLogger(name)

    def _emit(self, level: int, event_type: str, summary: str, **fields) -> None:
        record = self._logger.makeRecord(
            self._logger.name, level, "", 0, f"{event_type}: {summary}", (), None
        )
        record.extra_fields = {
            "event_type": event_type,
            "transaction_id": transaction_id_var.get(),
            **fields
        }
        self._logger.handle(record)

    def instruction_received(self, kind: str, amount: Optional[str] = None) -> None:
        self._emit(
            logging.INFO, "INSTRUCTION_RECEIVED", f"{kind} instruction received",
            instruction_kind=kind, amount=amount
        )

    def reserve_check(
        self,
        approved: bool,
        trusted_reserve: int,
        current_supply: int,
        requested_amount: int,
        sources_used: int,
        deficit: Optional[int] = None
    ) -> None:
        """Log a collateralization decision; base-unit integers are logged as strings."""
        self._emit(
            logging.INFO if approved else logging.WARNING,
            "RESERVE_CHECK",
            "Reserves cover projected supply" if approved else "Insufficient reserves",
            approved=approved,
            trusted_reserve=str(trusted_reserve),
            current_supply=str(current_supply),
            requested_amount=str(requested_amount),
            sources_used=sources_used,
            deficit=None if deficit is None else str(deficit)
        )

    def submission_outcome(
        self,
        stage: str,
        status: str,
        transaction_hash: Optional[str] = None,
        error_detail: Optional[str] = None
    ) -> None:
        if status == "SUCCESS":
            level = logging.INFO
        elif status == "POLICY_REJECTED":
            level = logging.WARNING
        else:
            level = logging.ERROR
        self._emit(
            level, "SUBMISSION_OUTCOME", f"{stage} submission {status}",
            stage=stage, status=status, transaction_hash=transaction_hash, error_detail=error_detail
        )

    def basket_created(self, name: str, symbol: str, asset_contract: str, consumer: str) -> None:
        self._emit(
            logging.INFO, "BASKET_CREATED", f"Basket {symbol} created at {asset_contract}",
            name=name, symbol=symbol, asset_contract=asset_contract, enforcement_consumer=consumer
        )

    def workflow_complete(self, kind: str, stage: Optional[str], failure_code: Optional[str] = None) -> None:
        """Log the terminal result of a run."""
        if kind == "SUCCESS":
            level = logging.INFO
        elif kind in ("RESERVE_REJECTED", "POLICY_REJECTED", "MALFORMED_INSTRUCTION"):
            level = logging.WARNING
        else:
            level = logging.ERROR
        self._emit(
            level, "WORKFLOW_COMPLETE", f"Workflow finished: {kind}",
            result_kind=kind, stage=stage, failure_code=failure_code
        )


def configure_logging(
    level: str = "INFO",
    json_format: bool = True,
    log_file: Optional[str] = None
) -> None:
    """
    Replace the root handlers with a stdout handler and, optionally, a file handler.

    Args:
        level: Root log level name
        json_format: StructuredFormatter when true, a plain text line otherwise
        log_file: Optional path that also receives every record
    """
    formatter = StructuredFormatter() if json_format else logging.Formatter(PLAIN_FORMAT)

    handlers = [logging.StreamHandler(sys.stdout)]
    if log_file:
        handlers.append(logging.FileHandler(log_file))

    root = logging.getLogger()
    root.setLevel(level.upper())
    for existing in list(root.handlers):
        root.removeHandler(existing)
    for handler in handlers:
        handler.setFormatter(formatter)
        root.addHandler(handler)


@contextmanager
def bind_transaction_id(transaction_id: str) -> Iterator[str]:
    """Bind a transactionId to every log record emitted inside the block."""
    token = transaction_id_var.set(transaction_id)
    try:
        yield transaction_id
    finally:
        transaction_id_var.reset(token)


def get_transaction_id() -> str:
    """Get the transactionId bound to the current context."""
    return transaction_id_var.get()


# Global audit logger instance
audit_log = AuditLogger()
