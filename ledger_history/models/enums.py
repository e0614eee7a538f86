from enum import Enum


class VerificationResult(str, Enum):
    OK = "OK"
    HASH_MISMATCH = "HASH_MISMATCH"
    NOT_FOUND = "NOT_FOUND"
    PENDING = "PENDING"
    UNKNOWN = "UNKNOWN"


class AggregateState(str, Enum):
    CONFORME = "Conforme"
    INCONSISTENTE = "Inconsistente"
    PARTIAL = "Partial"


class TaskStatus(str, Enum):
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class InconsistencySeverity(str, Enum):
    """Severity of a derived inconsistency record."""

    WARNING = "WARNING"    # Not ledger-validated because strict mode is off
    ERROR = "ERROR"        # Some events failed verification (Partial)
    CRITICAL = "CRITICAL"  # No event passed verification (Inconsistente)
